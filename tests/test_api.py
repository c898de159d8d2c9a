"""
tests/test_api.py – Integration tests via FastAPI TestClient.
Scenarios: every endpoint returns the right status + schema, and error
classes map to their HTTP status.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from kopi.errors import EmptyOrder, InvalidTransition, NotFound, RemoteUnavailable, StaleTicket
from kopi.models import KitchenBoard, WebhookSettings, WebhookTestResponse
from conftest import make_material, make_menu_item, make_order, make_ticket


# ── Fixtures ───────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_services():
    """Patch every service singleton; no database, no network."""
    with (
        patch("kopi.deps._reconciler") as m_rec,
        patch("kopi.deps._lifecycle") as m_life,
        patch("kopi.deps._catalog") as m_cat,
        patch("kopi.deps._notifier") as m_hook,
        patch("kopi.deps._kitchen") as m_kitchen,
    ):
        snapshots = {
            "orders":      [make_order()],
            "menu_items":  [make_menu_item()],
            "materials":   [make_material()],
            "kds_tickets": [make_ticket()],
        }
        m_rec.snapshot.side_effect = lambda name: snapshots[name]
        m_rec.is_degraded.return_value = False
        m_rec.degraded_status.return_value = {k: False for k in snapshots}
        m_rec.counts.return_value = {k: len(v) for k, v in snapshots.items()}
        m_life.create_order   = AsyncMock(return_value=make_order())
        m_life.complete_order = AsyncMock(return_value=make_order(status="completed", payment="cash"))
        m_life.cancel_order   = AsyncMock(return_value=make_order(status="cancelled"))
        m_life.advance_ticket = AsyncMock(return_value=make_ticket(status="preparing"))
        m_life.delete_order   = AsyncMock(return_value=None)
        m_cat.create_material  = AsyncMock(return_value=make_material())
        m_cat.update_material  = AsyncMock(return_value=make_material(name="Susu Oat"))
        m_cat.delete_material  = AsyncMock(return_value=None)
        m_cat.create_menu_item = AsyncMock(return_value=make_menu_item())
        m_cat.update_menu_item = AsyncMock(return_value=make_menu_item(price=20000))
        m_cat.delete_menu_item = AsyncMock(return_value=None)
        m_hook.get_settings  = AsyncMock(return_value=WebhookSettings(url="http://hook", is_enabled=True))
        m_hook.save_settings = AsyncMock(return_value=WebhookSettings(url="http://new", is_enabled=False))
        m_hook.send_test     = AsyncMock(return_value=WebhookTestResponse(success=True, message="ok"))
        m_kitchen.board.return_value = KitchenBoard(new=[make_order()])
        yield MagicMock(reconciler=m_rec, lifecycle=m_life, catalog=m_cat, notifier=m_hook)


def _order_log(mock_services) -> None:
    """Three orders; o-3 is 2024-05-02 01:00 in UTC+7, i.e. 2024-05-01 in UTC."""
    wib = timezone(timedelta(hours=7))
    orders = [
        make_order(id="o-1", customer_name="Budi", phone=None),
        make_order(id="o-2", customer_name=None, phone="0812-555-01",
                   date=datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc)),
        make_order(id="o-3", customer_name="Sari", phone="0813",
                   date=datetime(2024, 5, 2, 1, 0, tzinfo=wib)),
    ]
    mock_services.reconciler.snapshot.side_effect = lambda name: orders


@pytest.fixture
def client(mock_services):
    from kopi.main import app
    return TestClient(app)


# ── /health ────────────────────────────────────────────────────────────────────

class TestHealth:
    def test_health_ok(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"
        assert r.json()["counts"]["orders"] == 1


# ── /orders ────────────────────────────────────────────────────────────────────

class TestOrders:
    def test_list(self, client):
        r = client.get("/orders")
        assert r.status_code == 200
        assert r.json()["degraded"] is False
        assert r.json()["items"][0]["id"] == "o-1"

    def test_list_filtered_by_status(self, client):
        r = client.get("/orders?status=completed")
        assert r.json()["items"] == []

    def test_search_by_name_or_phone(self, client, mock_services):
        _order_log(mock_services)
        r = client.get("/orders?q=bUdI")
        assert [o["id"] for o in r.json()["items"]] == ["o-1"]
        r = client.get("/orders?q=0812")
        assert [o["id"] for o in r.json()["items"]] == ["o-2"]

    def test_blank_search_returns_all(self, client, mock_services):
        _order_log(mock_services)
        assert len(client.get("/orders?q=%20").json()["items"]) == 3

    def test_filter_by_utc_business_date(self, client, mock_services):
        _order_log(mock_services)
        r = client.get("/orders?date=2024-05-01")
        assert sorted(o["id"] for o in r.json()["items"]) == ["o-1", "o-3"]
        assert client.get("/orders?date=2024-05-03").json()["items"] == []

    def test_search_and_date_combined(self, client, mock_services):
        _order_log(mock_services)
        r = client.get("/orders?q=sari&date=2024-05-01")
        assert [o["id"] for o in r.json()["items"]] == ["o-3"]

    def test_bad_date_is_422(self, client):
        assert client.get("/orders?date=yesterday").status_code == 422

    def test_create(self, client, mock_services):
        r = client.post("/orders", json={
            "customer_name": "Budi", "additional": "less sugar",
            "items": [{"menu_item_id": "menu-1", "quantity": 2}],
        })
        assert r.status_code == 201
        assert r.json()["total"] == 36000
        kwargs = mock_services.lifecycle.create_order.call_args.kwargs
        assert kwargs["notes"] == "less sugar"

    def test_create_empty_is_400(self, client, mock_services):
        mock_services.lifecycle.create_order.side_effect = EmptyOrder()
        r = client.post("/orders", json={"items": []})
        assert r.status_code == 400

    def test_complete(self, client):
        r = client.post("/orders/o-1/complete", json={"payment": "cash"})
        assert r.status_code == 200
        assert r.json()["payment"] == "cash"

    def test_complete_terminal_is_409(self, client, mock_services):
        mock_services.lifecycle.complete_order.side_effect = InvalidTransition("order", "cancelled", "completed")
        r = client.post("/orders/o-1/complete", json={"payment": "cash"})
        assert r.status_code == 409

    def test_cancel_unknown_is_404(self, client, mock_services):
        mock_services.lifecycle.cancel_order.side_effect = NotFound("Order", "x")
        assert client.post("/orders/x/cancel").status_code == 404

    def test_advance_ticket(self, client):
        r = client.post("/orders/o-1/ticket", json={"status": "preparing"})
        assert r.status_code == 200
        assert r.json()["status"] == "preparing"

    def test_stale_ticket_is_409(self, client, mock_services):
        mock_services.lifecycle.advance_ticket.side_effect = StaleTicket("o-1", "completed")
        r = client.post("/orders/o-1/ticket", json={"status": "ready"})
        assert r.status_code == 409
        assert "no longer tracked" in r.json()["detail"]

    def test_store_down_is_503(self, client, mock_services):
        mock_services.lifecycle.cancel_order.side_effect = RemoteUnavailable("timed out")
        assert client.post("/orders/o-1/cancel").status_code == 503

    def test_delete(self, client):
        assert client.delete("/orders/o-1").status_code == 204


# ── /kitchen ───────────────────────────────────────────────────────────────────

class TestKitchen:
    def test_board(self, client):
        r = client.get("/kitchen")
        assert r.status_code == 200
        assert [o["id"] for o in r.json()["new"]] == ["o-1"]


# ── /materials, /menu ──────────────────────────────────────────────────────────

class TestCatalog:
    def test_list_materials(self, client):
        r = client.get("/materials")
        assert r.status_code == 200
        assert r.json()["items"][0]["name"] == "Susu UHT"

    def test_create_material(self, client):
        r = client.post("/materials", json={
            "name": "Susu UHT", "unit": "ml", "package_size": 1000, "purchase_price": 18000,
        })
        assert r.status_code == 201

    def test_create_material_bad_unit_is_422(self, client):
        r = client.post("/materials", json={
            "name": "Susu", "unit": "liter", "package_size": 1, "purchase_price": 1,
        })
        assert r.status_code == 422

    def test_update_material(self, client):
        r = client.put("/materials/mat-1", json={"name": "Susu Oat"})
        assert r.json()["name"] == "Susu Oat"

    def test_delete_material(self, client):
        assert client.delete("/materials/mat-1").status_code == 204

    def test_menu_active_only(self, client, mock_services):
        r = client.get("/menu?active_only=true")
        assert r.status_code == 200
        assert len(r.json()["items"]) == 1

    def test_create_menu_item(self, client):
        r = client.post("/menu", json={
            "name": "Kopi Susu", "category": "Coffee", "price": 18000,
            "ingredients": [{"name": "Espresso", "cost": 3000}],
        })
        assert r.status_code == 201

    def test_update_menu_item(self, client):
        r = client.put("/menu/menu-1", json={"price": 20000})
        assert r.json()["price"] == 20000

    def test_delete_menu_item(self, client):
        assert client.delete("/menu/menu-1").status_code == 204


# ── /webhook ───────────────────────────────────────────────────────────────────

class TestWebhook:
    def test_get(self, client):
        assert client.get("/webhook").json()["url"] == "http://hook"

    def test_put(self, client, mock_services):
        r = client.put("/webhook", json={"url": "http://new", "is_enabled": False})
        assert r.status_code == 200
        mock_services.notifier.save_settings.assert_awaited_once_with("http://new", False)

    def test_send_test(self, client):
        r = client.post("/webhook/test", json={"url": "http://hook"})
        assert r.json() == {"success": True, "message": "ok"}
