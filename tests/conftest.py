"""tests/conftest.py – shared fixtures for all tests."""
from datetime import datetime, timezone

import pytest

from kopi.core.cache import OfflineCache
from kopi.core.catalog import CatalogService
from kopi.core.feed import ChangeFeed
from kopi.core.lifecycle import OrderLifecycle
from kopi.core.store import PersistentStore
from kopi.models import KdsTicket, Material, MenuItem, Order, OrderItem, OrderLineIn


# ── Global: reset engine cache between tests ───────────────────────────────────

@pytest.fixture(autouse=True)
def clear_engine_cache():
    """Dispose SQLAlchemy engines around each test so tmp databases don't leak."""
    from kopi.db import session as sess_module
    sess_module.dispose_all()
    yield
    sess_module.dispose_all()


# ── Helpers ────────────────────────────────────────────────────────────────────

NOW = datetime(2024, 5, 1, 8, 30, 15, 123000, tzinfo=timezone.utc)


def make_material(**kw) -> Material:
    defaults = dict(id="mat-1", name="Susu UHT", unit="ml", package_size=1000,
                    purchase_price=18000, created_at=NOW, updated_at=NOW)
    defaults.update(kw)
    return Material(**defaults)


def make_menu_item(**kw) -> MenuItem:
    defaults = dict(id="menu-1", name="Kopi Susu", category="Coffee", price=18000,
                    cost=6000, status="active", created_at=NOW, updated_at=NOW)
    defaults.update(kw)
    return MenuItem(**defaults)


def make_ticket(**kw) -> KdsTicket:
    defaults = dict(id="t-1", order_id="o-1", status="new", created_at=NOW, updated_at=NOW)
    defaults.update(kw)
    return KdsTicket(**defaults)


def make_order(**kw) -> Order:
    defaults = dict(
        id="o-1", customer_name="Budi", total=36000, status="pending", date=NOW,
        created_at=NOW, updated_at=NOW,
        items=[OrderItem(id="oi-1", order_id="o-1", menu_item_id="menu-1",
                         quantity=2, price_at_time=18000, created_at=NOW)],
    )
    defaults.update(kw)
    if "kds_tickets" not in kw:
        defaults["kds_tickets"] = [make_ticket(order_id=defaults["id"], id=f"t-{defaults['id']}")]
    return Order(**defaults)


def line(menu_item_id: str, quantity: int = 1) -> OrderLineIn:
    return OrderLineIn(menu_item_id=menu_item_id, quantity=quantity)


async def seed_menu(store: PersistentStore, name: str = "Kopi Susu", price: int = 18000,
                    status: str = "active") -> MenuItem:
    return await store.create_menu_item(
        {"name": name, "category": "Coffee", "price": price, "cost": 0, "status": status}, [],
    )


# ── Fixtures ───────────────────────────────────────────────────────────────────

@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'kopi.db'}"


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def store(db_url, feed) -> PersistentStore:
    s = PersistentStore(db_url, feed, timeout=5.0)
    s.init_schema()
    return s


@pytest.fixture
def cache(tmp_path) -> OfflineCache:
    return OfflineCache(tmp_path / "cache")


@pytest.fixture
def lifecycle(store) -> OrderLifecycle:
    return OrderLifecycle(store)


@pytest.fixture
def catalog(store) -> CatalogService:
    return CatalogService(store)


@pytest.fixture
def events(feed):
    """Records every change the store publishes, in order."""
    received: list[dict] = []
    original = feed.publish

    async def recording(table, event_type, new=None, old=None):
        received.append({"table": table, "eventType": event_type, "new": new, "old": old})
        return await original(table, event_type, new=new, old=old)

    feed.publish = recording
    return received
