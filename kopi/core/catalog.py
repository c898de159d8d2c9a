"""
core/catalog.py – CatalogService class.
Responsibility: materials and menu items (recipes). Ingredient costs are
computed once at save time from the linked material; nothing is
recomputed when a material's price changes later.
"""
import logging
from typing import Optional

from ..errors import ValidationError
from ..models import (
    IngredientIn, Material, MaterialIn, MaterialUpdate, MenuItem, MenuItemIn, MenuItemUpdate,
)
from .costing import ingredient_cost, menu_cost

logger = logging.getLogger(__name__)


class CatalogService:
    def __init__(self, store) -> None:
        self._store = store

    # ── Materials ──────────────────────────────────────────────────────────────

    async def create_material(self, req: MaterialIn) -> Material:
        fields = req.model_dump()
        self._check_material(fields)
        material = await self._store.create_material(fields)
        logger.info("Material %s created (%s)", material.id, material.name)
        return material

    async def update_material(self, material_id: str, req: MaterialUpdate) -> Material:
        fields = req.model_dump(exclude_none=True)
        self._check_material(fields)
        return await self._store.update_material(material_id, fields)

    async def delete_material(self, material_id: str) -> None:
        await self._store.delete_material(material_id)
        logger.info("Material %s deleted", material_id)

    # ── Menu items ─────────────────────────────────────────────────────────────

    async def create_menu_item(self, req: MenuItemIn) -> MenuItem:
        fields = req.model_dump(exclude={"ingredients"})
        self._check_menu_fields(fields)
        ingredients = await self._cost_ingredients(req.ingredients)
        fields["cost"] = menu_cost(i["cost"] for i in ingredients)
        item = await self._store.create_menu_item(fields, ingredients)
        logger.info("Menu item %s created (%s, cost=%d)", item.id, item.name, item.cost)
        return item

    async def update_menu_item(self, menu_item_id: str, req: MenuItemUpdate) -> MenuItem:
        fields = req.model_dump(exclude={"ingredients"}, exclude_none=True)
        self._check_menu_fields(fields)
        ingredients: Optional[list[dict]] = None
        if req.ingredients is not None:
            ingredients = await self._cost_ingredients(req.ingredients)
            fields["cost"] = menu_cost(i["cost"] for i in ingredients)
        return await self._store.update_menu_item(menu_item_id, fields, ingredients)

    async def delete_menu_item(self, menu_item_id: str) -> None:
        await self._store.delete_menu_item(menu_item_id)
        logger.info("Menu item %s deleted", menu_item_id)

    # ── Private ────────────────────────────────────────────────────────────────

    async def _cost_ingredients(self, ingredients: list[IngredientIn]) -> list[dict]:
        """Ingredient rows ready for the store, each with its frozen cost."""
        materials = await self._store.materials_by_id(
            i.material_id for i in ingredients if i.material_id
        )
        rows: list[dict] = []
        for ing in ingredients:
            if ing.material_id:
                material = materials.get(ing.material_id)
                if material is None:
                    raise ValidationError(f"Unknown material: {ing.material_id}")
                if ing.quantity is None:
                    raise ValidationError(f"Quantity required for material '{material.name}'")
                unit = ing.unit or material.unit
                rows.append({
                    "name": ing.name.strip() or material.name,
                    "material_id": material.id,
                    "quantity": ing.quantity,
                    "unit": unit,
                    "cost": ingredient_cost(material, ing.quantity, unit),
                })
                continue
            if not ing.name.strip():
                raise ValidationError("Ingredient name is required")
            if ing.cost is None or ing.cost < 0:
                raise ValidationError(f"Ingredient '{ing.name}' needs a cost >= 0")
            rows.append({
                "name": ing.name.strip(),
                "material_id": None,
                "quantity": ing.quantity,
                "unit": ing.unit,
                "cost": ing.cost,
            })
        return rows

    @staticmethod
    def _check_material(fields: dict) -> None:
        if "name" in fields and not fields["name"].strip():
            raise ValidationError("Material name is required")
        if "package_size" in fields and fields["package_size"] <= 0:
            raise ValidationError("Package size must be > 0")
        if "purchase_price" in fields and fields["purchase_price"] < 0:
            raise ValidationError("Purchase price must be >= 0")

    @staticmethod
    def _check_menu_fields(fields: dict) -> None:
        for key in ("name", "category"):
            if key in fields and not fields[key].strip():
                raise ValidationError(f"Menu item {key} is required")
        if "price" in fields and fields["price"] < 0:
            raise ValidationError("Price must be >= 0")
