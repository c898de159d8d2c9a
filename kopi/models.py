"""
models.py – Pydantic schemas: entity records, request/response bodies and
the tagged change-feed variants parsed at the reconciler boundary.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

Unit          = Literal["ml", "g", "kg", "pcs"]
MenuStatus    = Literal["active", "inactive"]
OrderStatus   = Literal["pending", "completed", "cancelled"]
TicketStatus  = Literal["new", "preparing", "ready"]
PaymentMethod = Literal["cash", "qris", "transfer"]
EventType     = Literal["insert", "update", "delete"]


# ── Entity Records ─────────────────────────────────────────────────────────────

class Material(BaseModel):
    id: str
    name: str
    unit: Unit
    package_size: int   = Field(gt=0, description="Package content, in `unit`")
    purchase_price: int = Field(ge=0, description="Price of one package (IDR)")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Ingredient(BaseModel):
    id: str
    menu_item_id: Optional[str] = None
    material_id: Optional[str]  = None
    name: str
    quantity: Optional[float] = None
    unit: Optional[Unit]      = None
    cost: int = Field(ge=0)
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MenuItem(BaseModel):
    id: str
    name: str
    category: str
    price: int = Field(ge=0)
    cost: int  = Field(ge=0, description="Sum of ingredient costs at last save")
    status: MenuStatus = "active"
    ingredients: List[Ingredient] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MenuItemSnapshot(BaseModel):
    """Denormalised menu item carried by each order line in the read-model."""
    id: str
    name: str
    category: str
    price: int
    cost: int
    status: MenuStatus

    class Config:
        from_attributes = True


class OrderItem(BaseModel):
    id: str
    order_id: Optional[str] = None
    menu_item_id: str
    quantity: int      = Field(gt=0)
    price_at_time: int = Field(ge=0, description="MenuItem.price frozen at order creation")
    created_at: Optional[datetime] = None
    menu_item: Optional[MenuItemSnapshot] = None

    class Config:
        from_attributes = True


class KdsTicket(BaseModel):
    id: str
    order_id: str
    status: TicketStatus = "new"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Order(BaseModel):
    id: str
    customer_name: Optional[str] = None
    phone: Optional[str]         = None
    total: int = Field(ge=0, description="Σ price_at_time × quantity, frozen at creation")
    status: OrderStatus = "pending"
    payment: Optional[PaymentMethod] = None
    additional: Optional[str] = Field(default=None, description="Free-text order notes")
    date: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItem] = []
    kds_tickets: List[KdsTicket] = []

    class Config:
        from_attributes = True


class WebhookSettings(BaseModel):
    url: str = ""
    is_enabled: bool = False
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ── Internal: order draft handed to the store ─────────────────────────────────

class DraftLine(BaseModel):
    menu_item_id: str
    quantity: int
    price_at_time: int


class OrderDraft(BaseModel):
    customer_name: Optional[str] = None
    phone: Optional[str]         = None
    additional: Optional[str]    = None
    date: datetime
    total: int
    lines: List[DraftLine]


# ── Request Models ─────────────────────────────────────────────────────────────

class OrderLineIn(BaseModel):
    menu_item_id: str = Field(..., description="Menu item being ordered")
    quantity: int     = Field(default=1, description="Must be > 0")


class CreateOrderRequest(BaseModel):
    customer_name: Optional[str] = None
    phone: Optional[str]         = None
    additional: Optional[str]    = Field(default=None, description="Order notes")
    date: Optional[datetime]     = Field(default=None, description="Business date, defaults to now")
    items: List[OrderLineIn]     = []


class CompleteOrderRequest(BaseModel):
    payment: Optional[str] = Field(default=None, description="cash | qris | transfer")


class AdvanceTicketRequest(BaseModel):
    status: str = Field(..., description="new | preparing | ready")


class MaterialIn(BaseModel):
    name: str
    unit: Unit
    package_size: int
    purchase_price: int


class MaterialUpdate(BaseModel):
    name: Optional[str]           = None
    unit: Optional[Unit]          = None
    package_size: Optional[int]   = None
    purchase_price: Optional[int] = None


class IngredientIn(BaseModel):
    name: str = ""
    material_id: Optional[str] = Field(default=None, description="Cost derived from this material")
    quantity: Optional[float]  = None
    unit: Optional[Unit]       = None
    cost: Optional[int]        = Field(default=None, description="Manual cost when no material")


class MenuItemIn(BaseModel):
    name: str
    category: str
    price: int
    status: MenuStatus = "active"
    ingredients: List[IngredientIn] = []


class MenuItemUpdate(BaseModel):
    name: Optional[str]       = None
    category: Optional[str]   = None
    price: Optional[int]      = None
    status: Optional[MenuStatus] = None
    ingredients: Optional[List[IngredientIn]] = None


class WebhookSettingsIn(BaseModel):
    url: str = ""
    is_enabled: bool = False


class WebhookTestRequest(BaseModel):
    url: Optional[str] = Field(default=None, description="Defaults to the saved URL")


# ── Response Models ────────────────────────────────────────────────────────────

class OrderListResponse(BaseModel):
    items: List[Order]
    degraded: bool = Field(description="True when served from the local mirror")


class MenuListResponse(BaseModel):
    items: List[MenuItem]
    degraded: bool


class MaterialListResponse(BaseModel):
    items: List[Material]
    degraded: bool


class KitchenBoard(BaseModel):
    new: List[Order]       = []
    preparing: List[Order] = []
    ready: List[Order]     = []
    degraded: bool = False


class WebhookTestResponse(BaseModel):
    success: bool
    message: str


# ── Change Feed Variants ───────────────────────────────────────────────────────

class RowRef(BaseModel):
    """`old` payload of a change; only the primary key is guaranteed."""
    id: str

    class Config:
        extra = "allow"


class _Change(BaseModel):
    event_type: EventType = Field(alias="eventType")
    old: Optional[RowRef] = None

    class Config:
        populate_by_name = True

    @field_validator("event_type", mode="before")
    @classmethod
    def _lower(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("new", "old", mode="before", check_fields=False)
    @classmethod
    def _empty_row(cls, v):
        # feeds send {} for the side of the change that has no row
        return None if v == {} else v

    @model_validator(mode="after")
    def _check_payload(self):
        new = getattr(self, "new", None)
        if self.event_type == "delete" and self.old is None and new is None:
            raise ValueError("delete event carries no row id")
        if self.event_type != "delete" and new is None:
            raise ValueError(f"{self.event_type} event carries no new row")
        return self

    @property
    def record_id(self) -> Optional[str]:
        new = getattr(self, "new", None)
        if new is not None:
            return new.id
        return self.old.id if self.old else None


class MaterialChange(_Change):
    table: Literal["materials"]
    new: Optional[Material] = None


class MenuItemChange(_Change):
    table: Literal["menu_items"]
    new: Optional[MenuItem] = None


class IngredientChange(_Change):
    table: Literal["ingredients"]
    new: Optional[Ingredient] = None


class OrderChange(_Change):
    table: Literal["orders"]
    new: Optional[Order] = None


class OrderItemChange(_Change):
    table: Literal["order_items"]
    new: Optional[OrderItem] = None


class KdsTicketChange(_Change):
    table: Literal["kds_tickets"]
    new: Optional[KdsTicket] = None


EntityChange = Annotated[
    Union[MaterialChange, MenuItemChange, IngredientChange,
          OrderChange, OrderItemChange, KdsTicketChange],
    Field(discriminator="table"),
]
