"""
main.py – FastAPI app entry point (slim wire-up only).
Connects routes and lifespan. No business logic here.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .deps import get_notifier, get_reconciler, get_store, settings
from .routes import catalog, kitchen, orders, system, webhook

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Preparing store at %s", settings.database_url)
    get_store().init_schema()
    degraded = await get_reconciler().start()
    if any(degraded.values()):
        logger.warning("Started with local mirror data for: %s",
                       ", ".join(k for k, v in degraded.items() if v))
    logger.info("Ready.")
    yield
    await get_reconciler().stop()
    await get_notifier().aclose()
    logger.info("Shutdown.")


app = FastAPI(
    title="Kopi POS API",
    description="Order lifecycle, kitchen display and recipe costing for a coffee shop.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

app.include_router(system.router)
app.include_router(orders.router)
app.include_router(kitchen.router)
app.include_router(catalog.router)
app.include_router(webhook.router)
