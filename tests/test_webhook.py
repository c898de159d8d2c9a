"""
tests/test_webhook.py – WebhookNotifier: payload shape, fire-and-forget delivery.
"""
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests

from kopi.core.webhook import WebhookNotifier, build_new_order_payload
from kopi.errors import RemoteUnavailable
from kopi.models import WebhookSettings
from conftest import make_order


def _notifier(saved=None, http=None, **kw) -> WebhookNotifier:
    store = MagicMock()
    store.get_webhook_settings = AsyncMock(return_value=saved)
    return WebhookNotifier(store, http=http or MagicMock(spec=requests.Session), **kw)


class TestPayload:
    def test_new_order_shape(self):
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        payload = build_new_order_payload(make_order(), {"menu-1": "Kopi Susu"}, now=now)
        assert payload["event"] == "new_order"
        assert payload["timestamp"] == now.isoformat()
        assert payload["data"]["id"] == "o-1"
        assert payload["data"]["total"] == 36000
        assert "kds_tickets" not in payload["data"]
        assert payload["data"]["items"] == [
            {"menu_item_id": "menu-1", "name": "Kopi Susu", "quantity": 2, "price_at_time": 18000},
        ]


class TestDelivery:
    @pytest.mark.asyncio
    async def test_posts_when_enabled(self):
        http = MagicMock(spec=requests.Session)
        n = _notifier(WebhookSettings(url="http://hook", is_enabled=True), http=http, timeout=3)
        n.order_created(make_order(), {"menu-1": "Kopi Susu"})
        await n.aclose()
        http.post.assert_called_once()
        args, kwargs = http.post.call_args
        assert args[0] == "http://hook"
        assert kwargs["json"]["event"] == "new_order"
        assert kwargs["timeout"] == 3

    @pytest.mark.asyncio
    async def test_skipped_when_disabled(self):
        http = MagicMock(spec=requests.Session)
        n = _notifier(WebhookSettings(url="http://hook", is_enabled=False), http=http)
        n.order_created(make_order(), {})
        await n.aclose()
        http.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_env_defaults_used_without_saved_settings(self):
        http = MagicMock(spec=requests.Session)
        n = _notifier(None, http=http, defaults=WebhookSettings(url="http://env", is_enabled=True))
        n.order_created(make_order(), {})
        await n.aclose()
        assert http.post.call_args.args[0] == "http://env"

    @pytest.mark.asyncio
    async def test_failure_never_raises(self):
        http = MagicMock(spec=requests.Session)
        http.post.side_effect = requests.ConnectionError("refused")
        n = _notifier(WebhookSettings(url="http://hook", is_enabled=True), http=http)
        assert await n._deliver_new_order(make_order(), {}) is False

    @pytest.mark.asyncio
    async def test_unexpected_error_logged_and_task_released(self, caplog):
        http = MagicMock(spec=requests.Session)
        http.post.side_effect = RuntimeError("encoder bug")
        n = _notifier(WebhookSettings(url="http://hook", is_enabled=True), http=http)
        with caplog.at_level(logging.ERROR, logger="kopi.core.webhook"):
            n.order_created(make_order(), {})
            await n.aclose()
        assert n.pending == 0
        assert "Webhook delivery crashed" in caplog.text
        assert "encoder bug" in caplog.text

    @pytest.mark.asyncio
    async def test_settings_outage_falls_back(self):
        store = MagicMock()
        store.get_webhook_settings = AsyncMock(side_effect=RemoteUnavailable("down"))
        defaults = WebhookSettings(url="http://env", is_enabled=True)
        n = WebhookNotifier(store, defaults=defaults, http=MagicMock(spec=requests.Session))
        assert await n.get_settings() == defaults


class TestSendTest:
    @pytest.mark.asyncio
    async def test_success(self):
        http = MagicMock(spec=requests.Session)
        result = await _notifier(http=http).send_test("http://hook")
        assert result.success is True
        assert http.post.call_args.kwargs["json"]["event"] == "test"

    @pytest.mark.asyncio
    async def test_http_error(self):
        http = MagicMock(spec=requests.Session)
        http.post.return_value.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        result = await _notifier(http=http).send_test("http://hook")
        assert result.success is False
        assert "500" in result.message

    @pytest.mark.asyncio
    async def test_no_url(self):
        result = await _notifier().send_test(None)
        assert result.success is False
