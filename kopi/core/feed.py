"""
core/feed.py – ChangeFeed + Subscription.
Responsibility: in-process publish/subscribe of row-level change events.

Each subscribe() returns a handle owned by the caller; releasing it is the
caller's job (unsubscribe() or `async with`).
"""
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Callback = Callable[[dict], Union[None, Awaitable[None]]]


class Subscription:
    """Handle to one (table, callback) registration."""

    def __init__(self, feed: "ChangeFeed", table: str, callback: Callback) -> None:
        self._feed    = feed
        self.table    = table
        self.callback = callback
        self._active  = True

    @property
    def active(self) -> bool:
        return self._active

    async def unsubscribe(self) -> None:
        """Release the registration. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._feed._remove(self)
        logger.info("Unsubscribed from %s", self.table)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.unsubscribe()

    def __repr__(self) -> str:
        return f"<Subscription table={self.table} active={self._active}>"


class ChangeFeed:
    """Delivers {table, eventType, new, old} payloads to table subscribers."""

    def __init__(self) -> None:
        self._subs: dict[str, list[Subscription]] = {}

    # ── Public API ─────────────────────────────────────────────────────────────

    async def subscribe(self, table: str, callback: Callback) -> Subscription:
        sub = Subscription(self, table, callback)
        self._subs.setdefault(table, []).append(sub)
        logger.info("Subscribed to %s (%d active)", table, len(self._subs[table]))
        return sub

    async def publish(
        self,
        table: str,
        event_type: str,
        new: Optional[dict] = None,
        old: Optional[dict] = None,
    ) -> int:
        """Deliver one change to every subscriber of `table`. Returns the fan-out."""
        subs = list(self._subs.get(table, ()))
        for sub in subs:
            payload = {"table": table, "eventType": event_type, "new": new, "old": old}
            try:
                result = sub.callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscriber on %s failed handling %s", table, event_type)
        return len(subs)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self._subs.get(table, ()))
        return sum(len(s) for s in self._subs.values())

    # ── Private ────────────────────────────────────────────────────────────────

    def _remove(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.table, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subs.pop(sub.table, None)
