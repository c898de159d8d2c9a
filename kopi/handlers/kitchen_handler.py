"""
handlers/kitchen_handler.py – KitchenHandler class.
Responsibility: kitchen display board built from the reconciled `orders`
collection, served over REST and pushed over WS /ws/kitchen.
"""
import asyncio
import logging
from datetime import datetime, timezone

from fastapi import WebSocket, WebSocketDisconnect

from ..core.lifecycle import latest_ticket
from ..core.reconciler import Reconciler
from ..models import KitchenBoard

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class KitchenHandler:
    """Pending orders grouped by their latest ticket status, oldest first."""

    def __init__(self, reconciler: Reconciler) -> None:
        self._reconciler = reconciler

    def board(self) -> KitchenBoard:
        lanes: dict[str, list] = {"new": [], "preparing": [], "ready": []}
        for order in self._reconciler.snapshot("orders"):
            if order.status != "pending":
                continue
            ticket = latest_ticket(order)
            lanes[ticket.status if ticket else "new"].append(order)
        for orders in lanes.values():
            orders.sort(key=lambda o: o.created_at or o.date or _EPOCH)
        return KitchenBoard(**lanes, degraded=self._reconciler.is_degraded("orders"))

    # ── WebSocket ─────────────────────────────────────────────────────────────

    async def handle_ws(self, websocket: WebSocket) -> None:
        """Send the board, then again after every change to `orders`."""
        await websocket.accept()
        changed = asyncio.Event()

        def on_change(name: str) -> None:
            if name == "orders":
                changed.set()

        remove   = self._reconciler.add_listener(on_change)
        receiver = asyncio.create_task(self._drain_client(websocket))
        try:
            await websocket.send_json(self.board().model_dump(mode="json"))
            while not receiver.done():
                waiter = asyncio.create_task(changed.wait())
                await asyncio.wait({waiter, receiver}, return_when=asyncio.FIRST_COMPLETED)
                waiter.cancel()
                if receiver.done():
                    break
                changed.clear()
                await websocket.send_json(self.board().model_dump(mode="json"))
        except WebSocketDisconnect:
            logger.info("Kitchen WebSocket disconnected")
        except Exception as e:
            logger.error("Kitchen WebSocket error: %s", e)
        finally:
            remove()
            receiver.cancel()

    # ── Private helpers ────────────────────────────────────────────────────────

    @staticmethod
    async def _drain_client(websocket: WebSocket) -> None:
        """Returns when the client goes away; incoming messages are ignored."""
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Kitchen WebSocket disconnected")
