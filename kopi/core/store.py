"""
core/store.py – PersistentStore class.
Responsibility: CRUD and read-models over SQLAlchemy, plus one row-level
change event per touched row, published to the ChangeFeed after commit.

Blocking ORM work runs in run_in_executor so the event loop never blocks.
Reads are bounded by `timeout` on the event loop. Writes are bounded by the
same value as the connection lock timeout, so a write either commits and
publishes its events or rolls back. Database failures surface as
RemoteUnavailable, constraint violations as ValidationError.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..db import models as orm
from ..db.session import db_session, init_db
from ..errors import NotFound, RemoteUnavailable, ValidationError
from ..models import (
    KdsTicket, Material, MenuItem, Order, OrderDraft, TicketStatus, WebhookSettings,
)
from .feed import ChangeFeed

logger = logging.getLogger(__name__)

# (table, event_type, new_row, old_row)
Change = tuple[str, str, Optional[dict], Optional[dict]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _row(obj) -> dict:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


def _ref(obj) -> dict:
    return {"id": obj.id}


class PersistentStore:
    """Async facade over the relational store."""

    def __init__(self, database_url: str, feed: ChangeFeed, timeout: float = 10.0) -> None:
        self._url     = database_url
        self._feed    = feed
        self._timeout = timeout

    def init_schema(self) -> None:
        init_db(self._url, self._timeout)

    # ── Public: reads ──────────────────────────────────────────────────────────

    async def list_materials(self) -> list[Material]:
        return await self._run(self._fetch_materials)

    async def list_menu_items(self) -> list[MenuItem]:
        return await self._run(self._fetch_menu_items)

    async def list_orders(self) -> list[Order]:
        """Orders with items and tickets, business date descending."""
        return await self._run(self._fetch_orders)

    async def list_kds_tickets(self) -> list[KdsTicket]:
        return await self._run(self._fetch_kds_tickets)

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self._run(self._fetch_order, order_id)

    async def menu_items_by_id(self, ids: Iterable[str]) -> dict[str, MenuItem]:
        return await self._run(self._fetch_menu_items_by_id, list(set(ids)))

    async def materials_by_id(self, ids: Iterable[str]) -> dict[str, Material]:
        return await self._run(self._fetch_materials_by_id, list(set(ids)))

    async def get_webhook_settings(self) -> Optional[WebhookSettings]:
        return await self._run(self._fetch_webhook_settings)

    # ── Public: order writes ───────────────────────────────────────────────────

    async def insert_order(self, draft: OrderDraft) -> Order:
        """Order + lines + one `new` ticket, in a single transaction."""
        return await self._write(self._do_insert_order, draft)

    async def update_order_status(
        self, order_id: str, expected: str, status: str, payment: Optional[str] = None,
    ) -> Optional[Order]:
        """Compare-and-set on orders.status. None when the status was not `expected`."""
        return await self._write(self._do_update_order_status, order_id, expected, status, payment)

    async def update_ticket_status(
        self, ticket_id: str, expected: TicketStatus, status: TicketStatus,
    ) -> Optional[KdsTicket]:
        """Compare-and-set on a ticket whose order is still pending."""
        return await self._write(self._do_update_ticket_status, ticket_id, expected, status)

    async def delete_order(self, order_id: str) -> None:
        await self._write(self._do_delete_order, order_id)

    # ── Public: catalog writes ─────────────────────────────────────────────────

    async def create_material(self, fields: dict) -> Material:
        return await self._write(self._do_create_material, fields)

    async def update_material(self, material_id: str, fields: dict) -> Material:
        return await self._write(self._do_update_material, material_id, fields)

    async def delete_material(self, material_id: str) -> None:
        await self._write(self._do_delete_material, material_id)

    async def create_menu_item(self, fields: dict, ingredients: list[dict]) -> MenuItem:
        return await self._write(self._do_create_menu_item, fields, ingredients)

    async def update_menu_item(
        self, menu_item_id: str, fields: dict, ingredients: Optional[list[dict]] = None,
    ) -> MenuItem:
        """`ingredients=None` keeps the current list; a list replaces it."""
        return await self._write(self._do_update_menu_item, menu_item_id, fields, ingredients)

    async def delete_menu_item(self, menu_item_id: str) -> None:
        await self._write(self._do_delete_menu_item, menu_item_id)

    async def save_webhook_settings(self, url: str, is_enabled: bool) -> WebhookSettings:
        return await self._write(self._do_save_webhook_settings, url, is_enabled)

    # ── Private: execution ─────────────────────────────────────────────────────

    async def _write(self, fn, *args):
        # unbounded wait: the lock timeout on the connection rolls a stuck write back
        result, changes = await self._run(fn, *args, bounded=False)
        for table, event_type, new, old in changes:
            await self._feed.publish(table, event_type, new=new, old=old)
        return result

    async def _run(self, fn, *args, bounded: bool = True):
        loop = asyncio.get_event_loop()
        name = getattr(fn, "__name__", "call")
        future = loop.run_in_executor(None, fn, *args)
        try:
            if not bounded:
                return await future
            return await asyncio.wait_for(future, self._timeout)
        except asyncio.TimeoutError as e:
            logger.error("Store call %s timed out after %.1fs", name, self._timeout)
            raise RemoteUnavailable(f"Store call {name} timed out") from e
        except IntegrityError as e:
            raise ValidationError(f"Rejected by store constraints: {e.orig}") from e
        except DBAPIError as e:
            logger.error("Store call %s failed: %s", name, e)
            raise RemoteUnavailable(f"Store unavailable: {e.orig}") from e

    # ── Private: read helpers ──────────────────────────────────────────────────

    @staticmethod
    def _order_query(session: Session):
        return session.query(orm.Order).options(
            selectinload(orm.Order.items),
            selectinload(orm.Order.kds_tickets),
        )

    def _fetch_materials(self) -> list[Material]:
        with db_session(self._url, self._timeout) as session:
            rows = session.query(orm.Material).order_by(orm.Material.name).all()
            return [Material.model_validate(r) for r in rows]

    def _fetch_menu_items(self) -> list[MenuItem]:
        with db_session(self._url, self._timeout) as session:
            rows = (
                session.query(orm.MenuItem)
                .options(selectinload(orm.MenuItem.ingredients))
                .order_by(orm.MenuItem.category, orm.MenuItem.name)
                .all()
            )
            return [MenuItem.model_validate(r) for r in rows]

    def _fetch_orders(self) -> list[Order]:
        with db_session(self._url, self._timeout) as session:
            rows = self._order_query(session).order_by(orm.Order.date.desc()).all()
            return [Order.model_validate(r) for r in rows]

    def _fetch_order(self, order_id: str) -> Optional[Order]:
        with db_session(self._url, self._timeout) as session:
            row = self._order_query(session).filter(orm.Order.id == order_id).one_or_none()
            return Order.model_validate(row) if row is not None else None

    def _fetch_kds_tickets(self) -> list[KdsTicket]:
        with db_session(self._url, self._timeout) as session:
            rows = session.query(orm.KdsTicket).order_by(orm.KdsTicket.created_at).all()
            return [KdsTicket.model_validate(r) for r in rows]

    def _fetch_menu_items_by_id(self, ids: list[str]) -> dict[str, MenuItem]:
        if not ids:
            return {}
        with db_session(self._url, self._timeout) as session:
            rows = (
                session.query(orm.MenuItem)
                .options(selectinload(orm.MenuItem.ingredients))
                .filter(orm.MenuItem.id.in_(ids))
                .all()
            )
            return {r.id: MenuItem.model_validate(r) for r in rows}

    def _fetch_materials_by_id(self, ids: list[str]) -> dict[str, Material]:
        if not ids:
            return {}
        with db_session(self._url, self._timeout) as session:
            rows = session.query(orm.Material).filter(orm.Material.id.in_(ids)).all()
            return {r.id: Material.model_validate(r) for r in rows}

    def _fetch_webhook_settings(self) -> Optional[WebhookSettings]:
        with db_session(self._url, self._timeout) as session:
            row = session.get(orm.WebhookSetting, 1)
            return WebhookSettings.model_validate(row) if row is not None else None

    # ── Private: order writes ──────────────────────────────────────────────────

    def _do_insert_order(self, draft: OrderDraft) -> tuple[Order, list[Change]]:
        now = utcnow()
        with db_session(self._url, self._timeout) as session:
            order = orm.Order(
                id=new_id(),
                customer_name=draft.customer_name,
                phone=draft.phone,
                additional=draft.additional,
                total=draft.total,
                status="pending",
                payment=None,
                date=draft.date,
                created_at=now,
                updated_at=now,
            )
            order.items = [
                orm.OrderItem(
                    id=new_id(),
                    menu_item_id=line.menu_item_id,
                    quantity=line.quantity,
                    price_at_time=line.price_at_time,
                    position=pos,
                    created_at=now,
                )
                for pos, line in enumerate(draft.lines)
            ]
            ticket = orm.KdsTicket(id=new_id(), status="new", created_at=now, updated_at=now)
            order.kds_tickets = [ticket]
            session.add(order)
            session.flush()

            changes: list[Change] = [("orders", "insert", _row(order), None)]
            changes += [("order_items", "insert", _row(i), None) for i in order.items]
            changes.append(("kds_tickets", "insert", _row(ticket), None))
            return Order.model_validate(order), changes

    def _do_update_order_status(self, order_id, expected, status, payment):
        values = {"status": status, "updated_at": utcnow()}
        if payment is not None:
            values["payment"] = payment
        with db_session(self._url, self._timeout) as session:
            result = session.execute(
                update(orm.Order)
                .where(orm.Order.id == order_id, orm.Order.status == expected)
                .values(**values)
            )
            if result.rowcount == 0:
                return None, []
            row = self._order_query(session).filter(orm.Order.id == order_id).one()
            return Order.model_validate(row), [("orders", "update", _row(row), {"id": order_id})]

    def _do_update_ticket_status(self, ticket_id, expected, status):
        pending_orders = select(orm.Order.id).where(orm.Order.status == "pending")
        with db_session(self._url, self._timeout) as session:
            result = session.execute(
                update(orm.KdsTicket)
                .where(
                    orm.KdsTicket.id == ticket_id,
                    orm.KdsTicket.status == expected,
                    orm.KdsTicket.order_id.in_(pending_orders),
                )
                .values(status=status, updated_at=utcnow())
            )
            if result.rowcount == 0:
                return None, []
            row = session.get(orm.KdsTicket, ticket_id)
            return KdsTicket.model_validate(row), [("kds_tickets", "update", _row(row), {"id": ticket_id})]

    def _do_delete_order(self, order_id: str):
        with db_session(self._url, self._timeout) as session:
            order = self._order_query(session).filter(orm.Order.id == order_id).one_or_none()
            if order is None:
                raise NotFound("Order", order_id)
            changes: list[Change] = [("order_items", "delete", None, _row(i)) for i in order.items]
            changes += [("kds_tickets", "delete", None, _row(t)) for t in order.kds_tickets]
            changes.append(("orders", "delete", None, _row(order)))
            session.delete(order)
            return None, changes

    # ── Private: catalog writes ────────────────────────────────────────────────

    def _do_create_material(self, fields: dict):
        now = utcnow()
        with db_session(self._url, self._timeout) as session:
            row = orm.Material(id=new_id(), created_at=now, updated_at=now, **fields)
            session.add(row)
            session.flush()
            return Material.model_validate(row), [("materials", "insert", _row(row), None)]

    def _do_update_material(self, material_id: str, fields: dict):
        with db_session(self._url, self._timeout) as session:
            row = session.get(orm.Material, material_id)
            if row is None:
                raise NotFound("Material", material_id)
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.flush()
            return Material.model_validate(row), [("materials", "update", _row(row), _ref(row))]

    def _do_delete_material(self, material_id: str):
        with db_session(self._url, self._timeout) as session:
            row = session.get(orm.Material, material_id)
            if row is None:
                raise NotFound("Material", material_id)
            # weak reference: ingredients keep their frozen cost, lose the link
            linked = session.query(orm.Ingredient).filter(orm.Ingredient.material_id == material_id).all()
            for ing in linked:
                ing.material_id = None
            session.flush()
            changes: list[Change] = [("ingredients", "update", _row(i), _ref(i)) for i in linked]
            changes.append(("materials", "delete", None, _row(row)))
            session.delete(row)
            return None, changes

    @staticmethod
    def _build_ingredients(ingredients: list[dict], now: datetime) -> list[orm.Ingredient]:
        return [
            orm.Ingredient(id=new_id(), position=pos, created_at=now, **ing)
            for pos, ing in enumerate(ingredients)
        ]

    def _do_create_menu_item(self, fields: dict, ingredients: list[dict]):
        now = utcnow()
        with db_session(self._url, self._timeout) as session:
            row = orm.MenuItem(id=new_id(), created_at=now, updated_at=now, **fields)
            row.ingredients = self._build_ingredients(ingredients, now)
            session.add(row)
            session.flush()
            changes: list[Change] = [("menu_items", "insert", _row(row), None)]
            changes += [("ingredients", "insert", _row(i), None) for i in row.ingredients]
            return MenuItem.model_validate(row), changes

    def _do_update_menu_item(self, menu_item_id: str, fields: dict, ingredients: Optional[list[dict]]):
        now = utcnow()
        with db_session(self._url, self._timeout) as session:
            row = session.get(orm.MenuItem, menu_item_id)
            if row is None:
                raise NotFound("MenuItem", menu_item_id)
            changes: list[Change] = []
            if ingredients is not None:
                # delete-orphan removes the previous list on flush
                changes += [("ingredients", "delete", None, _row(old)) for old in row.ingredients]
                row.ingredients = self._build_ingredients(ingredients, now)
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = now
            session.flush()
            if ingredients is not None:
                changes += [("ingredients", "insert", _row(i), None) for i in row.ingredients]
            changes.append(("menu_items", "update", _row(row), _ref(row)))
            return MenuItem.model_validate(row), changes

    def _do_delete_menu_item(self, menu_item_id: str):
        with db_session(self._url, self._timeout) as session:
            row = session.get(orm.MenuItem, menu_item_id)
            if row is None:
                raise NotFound("MenuItem", menu_item_id)
            changes: list[Change] = [("ingredients", "delete", None, _row(i)) for i in row.ingredients]
            changes.append(("menu_items", "delete", None, _row(row)))
            session.delete(row)
            session.flush()
            return None, changes

    def _do_save_webhook_settings(self, url: str, is_enabled: bool):
        with db_session(self._url, self._timeout) as session:
            row = session.get(orm.WebhookSetting, 1) or orm.WebhookSetting(id=1)
            row.url = url
            row.is_enabled = is_enabled
            row.updated_at = utcnow()
            session.add(row)
            session.flush()
            return WebhookSettings.model_validate(row), []
