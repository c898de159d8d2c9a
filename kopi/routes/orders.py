"""routes/orders.py – /orders and order lifecycle commands"""
from datetime import date, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ..deps import get_lifecycle, get_reconciler
from ..errors import KopiError
from ..models import (
    AdvanceTicketRequest, CompleteOrderRequest, CreateOrderRequest, KdsTicket, Order,
    OrderListResponse,
)

router = APIRouter(tags=["Orders"])


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    status: Optional[str]  = Query(default=None, description="pending | completed | cancelled"),
    q:      Optional[str]  = Query(default=None, description="Customer name or phone, case-insensitive"),
    day:    Optional[date] = Query(default=None, alias="date", description="Business date (UTC), YYYY-MM-DD"),
):
    reconciler = get_reconciler()
    items = reconciler.snapshot("orders")
    if status:
        items = [o for o in items if o.status == status]
    if q and q.strip():
        needle = q.strip().lower()
        items = [o for o in items if needle in (o.customer_name or "").lower()
                 or needle in (o.phone or "").lower()]
    if day is not None:
        items = [o for o in items if o.date.astimezone(timezone.utc).date() == day]
    return OrderListResponse(items=items, degraded=reconciler.is_degraded("orders"))


@router.post("/orders", response_model=Order, status_code=201)
async def create_order(req: CreateOrderRequest):
    try:
        return await get_lifecycle().create_order(
            req.items,
            customer_name=req.customer_name,
            phone=req.phone,
            notes=req.additional,
            date=req.date,
        )
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/orders/{order_id}/complete", response_model=Order)
async def complete_order(order_id: str, req: CompleteOrderRequest):
    try:
        return await get_lifecycle().complete_order(order_id, req.payment)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/orders/{order_id}/cancel", response_model=Order)
async def cancel_order(order_id: str):
    try:
        return await get_lifecycle().cancel_order(order_id)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/orders/{order_id}/ticket", response_model=KdsTicket)
async def advance_ticket(order_id: str, req: AdvanceTicketRequest):
    """Move the kitchen ticket forward. 409 when the order already left `pending`."""
    try:
        return await get_lifecycle().advance_ticket(order_id, req.status)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/orders/{order_id}", status_code=204)
async def delete_order(order_id: str):
    try:
        await get_lifecycle().delete_order(order_id)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
