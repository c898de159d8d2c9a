"""routes/system.py – /health"""
from datetime import datetime, timezone

from fastapi import APIRouter

from ..deps import get_reconciler

router = APIRouter(tags=["System"])


@router.get("/health")
async def health():
    reconciler = get_reconciler()
    return {
        "status":   "ok",
        "time":     datetime.now(timezone.utc).isoformat(),
        "degraded": reconciler.degraded_status(),
        "counts":   reconciler.counts(),
    }
