"""routes/kitchen.py – GET /kitchen, WS /ws/kitchen"""
from fastapi import APIRouter, WebSocket

from ..deps import get_kitchen
from ..models import KitchenBoard

router = APIRouter(tags=["Kitchen"])


@router.get("/kitchen", response_model=KitchenBoard)
async def kitchen_board():
    return get_kitchen().board()


@router.websocket("/ws/kitchen")
async def ws_kitchen(websocket: WebSocket):
    await get_kitchen().handle_ws(websocket)
