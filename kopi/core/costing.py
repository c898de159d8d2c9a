"""
core/costing.py – Pure recipe-costing helpers (HPP).
All money in IDR integers; per-unit cost stays a float until rounded.
"""
import math
from typing import Iterable, Optional

from ..errors import ValidationError
from ..models import Material

# factor to convert a quantity into the base unit of its family
_UNIT_SCALE: dict[str, tuple[str, int]] = {
    "g":   ("mass", 1),
    "kg":  ("mass", 1000),
    "ml":  ("volume", 1),
    "pcs": ("count", 1),
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def unit_cost(material: Material) -> float:
    """Price of one `material.unit`. 0 for a package of size 0."""
    if material.package_size <= 0:
        return 0.0
    return material.purchase_price / material.package_size


def convert_quantity(quantity: float, from_unit: str, to_unit: str) -> float:
    if from_unit == to_unit:
        return quantity
    src, dst = _UNIT_SCALE.get(from_unit), _UNIT_SCALE.get(to_unit)
    if src is None or dst is None or src[0] != dst[0]:
        raise ValidationError(f"Cannot convert {from_unit} to {to_unit}")
    return quantity * src[1] / dst[1]


def ingredient_cost(material: Material, quantity: float, unit: Optional[str] = None) -> int:
    """round(unit_cost × quantity), `quantity` expressed in `unit` (default: material's)."""
    if quantity < 0:
        raise ValidationError("Ingredient quantity must be >= 0")
    if unit is not None:
        quantity = convert_quantity(quantity, unit, material.unit)
    return round_half_up(unit_cost(material) * quantity)


def menu_cost(costs: Iterable[int]) -> int:
    return sum(costs)


def margin_percent(price: int, cost: int) -> float:
    if price <= 0:
        return 0.0
    return (price - cost) / price * 100
