"""
core/webhook.py – WebhookNotifier class.
Responsibility: POST a `new_order` notification to the configured endpoint
after each successful order creation, fire-and-forget.

Settings saved in the store override the env defaults. Delivery failures
are logged and never reach the order command.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import requests

from ..errors import KopiError
from ..models import Order, WebhookSettings, WebhookTestResponse

logger = logging.getLogger(__name__)


def build_new_order_payload(order: Order, names: dict[str, str], now: Optional[datetime] = None) -> dict:
    """`{event, timestamp, data}` with the order row and its named lines."""
    now = now or datetime.now(timezone.utc)
    data = order.model_dump(mode="json", exclude={"items", "kds_tickets"})
    data["items"] = [
        {
            "menu_item_id":  line.menu_item_id,
            "name":          names.get(line.menu_item_id)
                             or (line.menu_item.name if line.menu_item else None),
            "quantity":      line.quantity,
            "price_at_time": line.price_at_time,
        }
        for line in order.items
    ]
    return {"event": "new_order", "timestamp": now.isoformat(), "data": data}


def build_test_payload(now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    return {
        "event": "test",
        "timestamp": now.isoformat(),
        "data": {
            "message": "This is a test order from Kopi",
            "order": {
                "id": "test-123",
                "customer_name": "Test Customer",
                "total": 25000,
                "items": [{"name": "Test Coffee", "quantity": 1, "price": 25000}],
            },
        },
    }


class WebhookNotifier:
    def __init__(
        self,
        store,
        defaults: Optional[WebhookSettings] = None,
        timeout: float = 5.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self._store    = store
        self._defaults = defaults or WebhookSettings()
        self._timeout  = timeout
        self._http     = http or requests.Session()
        self._tasks: set[asyncio.Task] = set()

    # ── Public API ─────────────────────────────────────────────────────────────

    async def get_settings(self) -> WebhookSettings:
        """Saved settings, else the env defaults. Store outages fall back too."""
        try:
            saved = await self._store.get_webhook_settings()
        except KopiError as e:
            logger.warning("Webhook settings unavailable, using defaults: %s", e)
            return self._defaults
        return saved or self._defaults

    async def save_settings(self, url: str, is_enabled: bool) -> WebhookSettings:
        settings = await self._store.save_webhook_settings(url.strip(), is_enabled)
        logger.info("Webhook %s (%s)", "enabled" if settings.is_enabled else "disabled", settings.url or "no url")
        return settings

    def order_created(self, order: Order, names: dict[str, str]) -> None:
        """Schedule the `new_order` POST. Never raises."""
        task = asyncio.create_task(self._deliver_new_order(order, names))
        self._tasks.add(task)
        task.add_done_callback(self._delivery_done)

    async def send_test(self, url: Optional[str] = None) -> WebhookTestResponse:
        if not url:
            url = (await self.get_settings()).url
        if not url:
            return WebhookTestResponse(success=False, message="Please enter a webhook URL first")
        try:
            await self._post(url, build_test_payload())
        except requests.RequestException as e:
            logger.warning("Webhook test to %s failed: %s", url, e)
            return WebhookTestResponse(success=False, message=f"Webhook test failed: {e}")
        return WebhookTestResponse(
            success=True, message="Webhook test successful! Your endpoint responded correctly.",
        )

    async def aclose(self) -> None:
        """Wait for in-flight deliveries, then release the HTTP session."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._http.close()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ── Private ────────────────────────────────────────────────────────────────

    async def _deliver_new_order(self, order: Order, names: dict[str, str]) -> bool:
        settings = await self.get_settings()
        if not settings.is_enabled or not settings.url:
            return False
        try:
            await self._post(settings.url, build_new_order_payload(order, names))
        except requests.RequestException as e:
            logger.error("Failed to send webhook for order %s: %s", order.id, e)
            return False
        logger.info("Webhook sent for order %s", order.id)
        return True

    async def _post(self, url: str, payload: dict) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._post_sync, url, payload)

    def _delivery_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Webhook delivery crashed: %r", task.exception())

    def _post_sync(self, url: str, payload: dict) -> None:
        resp = self._http.post(url, json=payload, timeout=self._timeout)
        resp.raise_for_status()
