"""
core/cache.py – OfflineCache class.
Responsibility: durable local mirror of each entity collection, served
when the remote store cannot be reached.

One JSON file per key (array of records). Mirror I/O runs in the executor;
writes go to a temp file and are swapped in with os.replace.
"""
import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel

from ..errors import RemoteUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

STORAGE_KEYS: dict[str, str] = {
    "materials":   "kopi_materials",
    "menu_items":  "kopi_menu_items",
    "orders":      "kopi_orders",
    "kds_tickets": "kopi_kds_tickets",
}


@dataclass
class CacheRead(Generic[T]):
    records: list[T]
    degraded: bool = False
    error: Optional[str] = None


class OfflineCache:
    """Read-through mirror: fresh data overwrites it, outages are served from it."""

    def __init__(self, cache_dir: str | Path) -> None:
        self._dir = Path(cache_dir)

    # ── Public API ─────────────────────────────────────────────────────────────

    async def read_through(
        self,
        key: str,
        model: type[T],
        loader: Callable[[], Awaitable[list[T]]],
    ) -> CacheRead[T]:
        """Remote read with mirror fallback. `degraded=True` means mirror data."""
        try:
            records = await loader()
        except RemoteUnavailable as e:
            logger.warning("Remote read for %s failed (%s), serving local mirror", key, e)
            return CacheRead(await self.load(key, model), degraded=True, error=str(e))
        if records:
            await self.save(key, records)
        return CacheRead(records)

    async def save(self, key: str, records: list[T]) -> bool:
        """Overwrite the mirror wholesale. A failed write is logged, never raised."""
        payload = [r.model_dump(mode="json") for r in records]
        try:
            await asyncio.get_event_loop().run_in_executor(None, self._write, key, payload)
            return True
        except OSError as e:
            logger.error("Could not write local mirror %s: %s", key, e)
            return False

    async def load(self, key: str, model: type[T]) -> list[T]:
        return await asyncio.get_event_loop().run_in_executor(None, self._read, key, model)

    def path_for(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    # ── Private ────────────────────────────────────────────────────────────────

    def _write(self, key: str, payload: list[dict]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        tmp  = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    def _read(self, key: str, model: type[T]) -> list[T]:
        path = self.path_for(key)
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return [model.model_validate(item) for item in raw]
        except (OSError, ValueError, TypeError) as e:
            logger.error("Local mirror %s is unreadable, ignoring it: %s", key, e)
            return []
