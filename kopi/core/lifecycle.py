"""
core/lifecycle.py – OrderLifecycle class.
Responsibility: validate and apply order / kitchen-ticket state transitions.

Order:  pending → completed | cancelled   (both terminal)
Ticket: new → preparing → ready, new → ready allowed, never backwards.

Commands only write through the store; the reconciled collections pick the
change up from the feed. Concurrent commands are settled by compare-and-set
in the store, so a transition is either fully applied or not at all.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..errors import EmptyOrder, InvalidTransition, NotFound, StaleTicket, ValidationError
from ..models import DraftLine, KdsTicket, Order, OrderDraft, OrderLineIn

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending":   frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

TICKET_TRANSITIONS: dict[str, frozenset[str]] = {
    "new":       frozenset({"preparing", "ready"}),
    "preparing": frozenset({"ready"}),
    "ready":     frozenset(),
}

TICKET_STATUSES = ("new", "preparing", "ready")
PAYMENT_METHODS = ("cash", "qris", "transfer")


def can_transition_order(current: str, target: str) -> bool:
    return target in ORDER_TRANSITIONS.get(current, ())


def can_advance_ticket(current: str, target: str) -> bool:
    """Forward moves only. Same-state is handled by the caller as a no-op."""
    return target in TICKET_TRANSITIONS.get(current, ())


def latest_ticket(order: Order) -> Optional[KdsTicket]:
    if not order.kds_tickets:
        return None
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return max(order.kds_tickets, key=lambda t: t.created_at or epoch)


class OrderLifecycle:
    def __init__(self, store, notifier=None) -> None:
        self._store    = store
        self._notifier = notifier

    # ── Public API ─────────────────────────────────────────────────────────────

    async def create_order(
        self,
        items: Iterable[OrderLineIn],
        customer_name: Optional[str] = None,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> Order:
        """
        Price every line from the current menu, persist order + lines + one
        `new` ticket atomically, then fire the new-order webhook.
        """
        lines = list(items)
        if not lines:
            raise EmptyOrder()
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError(f"Quantity must be > 0 (got {line.quantity} for {line.menu_item_id})")

        menu = await self._store.menu_items_by_id(l.menu_item_id for l in lines)
        draft_lines: list[DraftLine] = []
        for line in lines:
            item = menu.get(line.menu_item_id)
            if item is None:
                raise ValidationError(f"Unknown menu item: {line.menu_item_id}")
            if item.status != "active":
                raise ValidationError(f"Menu item '{item.name}' is not available")
            draft_lines.append(DraftLine(
                menu_item_id=item.id, quantity=line.quantity, price_at_time=item.price,
            ))

        if date is None:
            date = datetime.now(timezone.utc)
        elif date.tzinfo is None:
            date = date.replace(tzinfo=timezone.utc)

        draft = OrderDraft(
            customer_name=_blank_to_none(customer_name),
            phone=_blank_to_none(phone),
            additional=_blank_to_none(notes),
            date=date,
            total=sum(l.price_at_time * l.quantity for l in draft_lines),
            lines=draft_lines,
        )
        order = await self._store.insert_order(draft)
        logger.info("Order %s created: %d lines, total=%d", order.id, len(order.items), order.total)

        if self._notifier is not None:
            self._notifier.order_created(order, {i.id: i.name for i in menu.values()})
        return order

    async def complete_order(self, order_id: str, payment: Optional[str]) -> Order:
        if payment not in PAYMENT_METHODS:
            raise ValidationError(
                f"Payment method must be one of {', '.join(PAYMENT_METHODS)} (got {payment!r})"
            )
        return await self._transition(order_id, "completed", payment)

    async def cancel_order(self, order_id: str) -> Order:
        return await self._transition(order_id, "cancelled")

    async def advance_ticket(self, order_id: str, target: str) -> KdsTicket:
        """Move the order's latest ticket forward. Same status is a no-op."""
        if target not in TICKET_STATUSES:
            raise ValidationError(f"Unknown ticket status: {target!r}")

        order, ticket = await self._load_ticket(order_id)
        if ticket.status == target:
            return ticket
        if not can_advance_ticket(ticket.status, target):
            raise InvalidTransition("ticket", ticket.status, target)

        updated = await self._store.update_ticket_status(ticket.id, ticket.status, target)
        if updated is not None:
            logger.info("Ticket %s of order %s: %s → %s", ticket.id, order_id, ticket.status, target)
            return updated

        # lost a race: report against the state that won
        order, ticket = await self._load_ticket(order_id)
        if ticket.status == target:
            return ticket
        raise InvalidTransition("ticket", ticket.status, target)

    async def delete_order(self, order_id: str) -> None:
        await self._store.delete_order(order_id)
        logger.info("Order %s deleted", order_id)

    # ── Private ────────────────────────────────────────────────────────────────

    async def _get(self, order_id: str) -> Order:
        order = await self._store.get_order(order_id)
        if order is None:
            raise NotFound("Order", order_id)
        return order

    async def _load_ticket(self, order_id: str) -> tuple[Order, KdsTicket]:
        order = await self._get(order_id)
        if order.status != "pending":
            raise StaleTicket(order_id, order.status)
        ticket = latest_ticket(order)
        if ticket is None:
            raise NotFound("KdsTicket for order", order_id)
        return order, ticket

    async def _transition(self, order_id: str, target: str, payment: Optional[str] = None) -> Order:
        order = await self._get(order_id)
        if not can_transition_order(order.status, target):
            raise InvalidTransition("order", order.status, target)

        updated = await self._store.update_order_status(order_id, order.status, target, payment)
        if updated is None:
            current = await self._get(order_id)
            raise InvalidTransition("order", current.status, target)
        logger.info("Order %s: %s → %s%s", order_id, order.status, target,
                    f" ({payment})" if payment else "")
        return updated


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None
