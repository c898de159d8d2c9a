"""routes/catalog.py – /materials, /menu"""
from fastapi import APIRouter, HTTPException

from ..deps import get_catalog, get_reconciler
from ..errors import KopiError
from ..models import (
    Material, MaterialIn, MaterialListResponse, MaterialUpdate,
    MenuItem, MenuItemIn, MenuItemUpdate, MenuListResponse,
)

router = APIRouter(tags=["Catalog"])


# ── Materials ──────────────────────────────────────────────────────────────────

@router.get("/materials", response_model=MaterialListResponse)
async def list_materials():
    reconciler = get_reconciler()
    return MaterialListResponse(
        items=reconciler.snapshot("materials"), degraded=reconciler.is_degraded("materials"),
    )


@router.post("/materials", response_model=Material, status_code=201)
async def create_material(req: MaterialIn):
    try:
        return await get_catalog().create_material(req)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/materials/{material_id}", response_model=Material)
async def update_material(material_id: str, req: MaterialUpdate):
    try:
        return await get_catalog().update_material(material_id, req)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/materials/{material_id}", status_code=204)
async def delete_material(material_id: str):
    try:
        await get_catalog().delete_material(material_id)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# ── Menu ───────────────────────────────────────────────────────────────────────

@router.get("/menu", response_model=MenuListResponse)
async def list_menu(active_only: bool = False):
    reconciler = get_reconciler()
    items = reconciler.snapshot("menu_items")
    if active_only:
        items = [m for m in items if m.status == "active"]
    return MenuListResponse(items=items, degraded=reconciler.is_degraded("menu_items"))


@router.post("/menu", response_model=MenuItem, status_code=201)
async def create_menu_item(req: MenuItemIn):
    try:
        return await get_catalog().create_menu_item(req)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/menu/{menu_item_id}", response_model=MenuItem)
async def update_menu_item(menu_item_id: str, req: MenuItemUpdate):
    try:
        return await get_catalog().update_menu_item(menu_item_id, req)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/menu/{menu_item_id}", status_code=204)
async def delete_menu_item(menu_item_id: str):
    try:
        await get_catalog().delete_menu_item(menu_item_id)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
