"""
core/reconciler.py – Reconciler class.
Responsibility: keep one in-memory collection per entity type consistent
with the store, fed by change events and full refreshes.

Rules:
  - insert  → add, or replace if the id is already present (never duplicate)
  - update  → replace the whole record with the incoming payload
  - delete  → remove by id, absent id is a no-op
  - after every event a background full refresh replaces the collection;
    concurrent refreshes race and the last one to finish wins.
Commands never write collections; this module is the only writer.
"""
import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PayloadError

from ..errors import RemoteUnavailable
from ..models import EntityChange, KdsTicket, Material, MenuItem, Order
from .cache import STORAGE_KEYS, CacheRead, OfflineCache
from .feed import ChangeFeed

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

Listener = Callable[[str], None]


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    model: type[BaseModel]
    loader: str                          # PersistentStore method returning the full list
    tables: tuple[str, ...]              # events merged into the collection
    refresh_on: tuple[str, ...] = ()     # events that only trigger a refresh
    sort_key: Optional[Callable] = None
    newest_first: bool = False

    @property
    def cache_key(self) -> str:
        return STORAGE_KEYS.get(self.name, f"kopi_{self.name}")


DEFAULT_SPECS: tuple[CollectionSpec, ...] = (
    CollectionSpec(
        "materials", Material, "list_materials", ("materials",),
        sort_key=lambda m: m.name.lower(),
    ),
    CollectionSpec(
        "menu_items", MenuItem, "list_menu_items", ("menu_items",),
        refresh_on=("ingredients", "materials"),
        sort_key=lambda m: (m.category, m.name),
    ),
    # order events carry no lines or tickets: those only arrive via refresh
    CollectionSpec(
        "orders", Order, "list_orders", ("orders",),
        refresh_on=("order_items", "kds_tickets"),
        sort_key=lambda o: o.date, newest_first=True,
    ),
    CollectionSpec(
        "kds_tickets", KdsTicket, "list_kds_tickets", ("kds_tickets",),
        sort_key=lambda t: t.created_at or _EPOCH,
    ),
)


class Collection(Generic[T]):
    """id → latest full record. Every mutation is one step, no partial state."""

    def __init__(self, spec: CollectionSpec) -> None:
        self.spec     = spec
        self.degraded = False
        self.loaded   = False
        self._records: dict[str, T] = {}

    def upsert(self, record: T) -> bool:
        """Returns True when the id was new."""
        is_new = record.id not in self._records
        self._records[record.id] = record
        return is_new

    def remove(self, record_id: Optional[str]) -> bool:
        return self._records.pop(record_id, None) is not None

    def replace(self, records: list[T]) -> None:
        self._records = {r.id: r for r in records}
        self.loaded = True

    def get(self, record_id: str) -> Optional[T]:
        return self._records.get(record_id)

    def snapshot(self) -> list[T]:
        records = list(self._records.values())
        if self.spec.sort_key is not None:
            records.sort(key=self.spec.sort_key, reverse=self.spec.newest_first)
        return records

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records


class Reconciler:
    """Single source of truth for client-side entity collections."""

    def __init__(
        self,
        store,
        feed: ChangeFeed,
        cache: OfflineCache,
        specs: tuple[CollectionSpec, ...] = DEFAULT_SPECS,
    ) -> None:
        self._store = store
        self._feed  = feed
        self._cache = cache
        self._collections: dict[str, Collection] = {s.name: Collection(s) for s in specs}
        self._routes: dict[str, list[tuple[Collection, bool]]] = {}
        for coll in self._collections.values():
            for table in coll.spec.tables:
                self._routes.setdefault(table, []).append((coll, True))
            for table in coll.spec.refresh_on:
                self._routes.setdefault(table, []).append((coll, False))
        self._adapter: TypeAdapter = TypeAdapter(EntityChange)
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []
        self._stack: Optional[AsyncExitStack] = None

    # ── Public: lifecycle ──────────────────────────────────────────────────────

    @property
    def tables(self) -> list[str]:
        return sorted(self._routes)

    @property
    def running(self) -> bool:
        return self._stack is not None

    async def start(self) -> dict[str, bool]:
        """Subscribe to every table, then load every collection. Returns degraded flags."""
        if self._stack is not None:
            return self.degraded_status()
        stack = AsyncExitStack()
        try:
            for table in self.tables:
                await stack.enter_async_context(await self._feed.subscribe(table, self.apply))
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        return await self.load_all()

    async def stop(self) -> None:
        """Release every subscription, then wait for in-flight refreshes."""
        stack, self._stack = self._stack, None
        try:
            if stack is not None:
                await stack.aclose()
        finally:
            await self.drain()

    @asynccontextmanager
    async def watch(self, *tables: str) -> AsyncIterator["Reconciler"]:
        """Scoped subscription: released on every exit path."""
        async with AsyncExitStack() as stack:
            for table in tables or self.tables:
                await stack.enter_async_context(await self._feed.subscribe(table, self.apply))
            yield self

    async def drain(self) -> None:
        """Wait until no background refresh is pending."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Public: loading ────────────────────────────────────────────────────────

    async def load_all(self) -> dict[str, bool]:
        """Load every collection concurrently; one failure does not stop the rest."""
        names = list(self._collections)
        results = await asyncio.gather(*(self.load(n) for n in names), return_exceptions=True)
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error("Initial load of %s failed: %s", name, result)
                self._collections[name].degraded = True
        return self.degraded_status()

    async def load(self, name: str) -> CacheRead:
        """Explicit refresh through the offline cache."""
        coll = self._collection(name)
        loader = getattr(self._store, coll.spec.loader)
        result = await self._cache.read_through(coll.spec.cache_key, coll.spec.model, loader)
        if result.degraded and coll.loaded:
            # in-memory state is at least as recent as the mirror
            logger.warning("Keeping in-memory %s (%d records) while degraded", name, len(coll))
        else:
            coll.replace(result.records)
        coll.degraded = result.degraded
        logger.info("Loaded %s: %d records%s", name, len(result.records),
                    " (local mirror)" if result.degraded else "")
        self._notify(name)
        return result

    async def refresh(self, name: str) -> bool:
        """Full refresh straight from the store; the snapshot replaces the collection."""
        coll = self._collection(name)
        try:
            records = await getattr(self._store, coll.spec.loader)()
        except RemoteUnavailable as e:
            coll.degraded = True
            logger.warning("Refresh of %s failed, keeping current state: %s", name, e)
            self._notify(name)
            return False
        coll.replace(records)
        coll.degraded = False
        if records:
            await self._cache.save(coll.spec.cache_key, records)
        self._notify(name)
        return True

    # ── Public: change events ──────────────────────────────────────────────────

    async def apply(self, payload: dict) -> None:
        """Change-feed callback: parse, merge, schedule refreshes."""
        try:
            change = self._adapter.validate_python(payload)
        except PayloadError as e:
            logger.warning("Dropping malformed change on %s: %s", payload.get("table"), e)
            return

        touched: list[str] = []
        for coll, merge in self._routes.get(change.table, ()):
            if merge:
                self._merge(coll, change)
            touched.append(coll.spec.name)
            self._schedule_refresh(coll.spec.name)
        for name in touched:
            self._notify(name)

    # ── Public: read access ────────────────────────────────────────────────────

    def snapshot(self, name: str) -> list:
        return self._collection(name).snapshot()

    def get(self, name: str, record_id: str):
        return self._collection(name).get(record_id)

    def is_degraded(self, name: str) -> bool:
        return self._collection(name).degraded

    def degraded_status(self) -> dict[str, bool]:
        return {name: coll.degraded for name, coll in self._collections.items()}

    def counts(self) -> dict[str, int]:
        return {name: len(coll) for name, coll in self._collections.items()}

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Called with the collection name after each change. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    # ── Private ────────────────────────────────────────────────────────────────

    def _collection(self, name: str) -> Collection:
        if name not in self._collections:
            raise KeyError(f"Unknown collection: {name}")
        return self._collections[name]

    @staticmethod
    def _merge(coll: Collection, change) -> None:
        if change.event_type == "delete":
            removed = coll.remove(change.record_id)
            logger.debug("%s delete %s (%s)", coll.spec.name, change.record_id,
                         "removed" if removed else "absent")
            return
        is_new = coll.upsert(change.new)
        logger.debug("%s %s %s (%s)", coll.spec.name, change.event_type, change.record_id,
                     "added" if is_new else "replaced")

    def _schedule_refresh(self, name: str) -> None:
        task = asyncio.create_task(self.refresh(name))
        self._tasks.add(task)
        task.add_done_callback(self._refresh_done)

    def _refresh_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background refresh crashed: %r", task.exception())

    def _notify(self, name: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(name)
            except Exception:
                logger.exception("Listener failed for %s", name)
