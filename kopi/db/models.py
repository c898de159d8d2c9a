"""
db/models.py – SQLAlchemy ORM tables of the persistent store.

Money columns are INTEGER (IDR, no fractions). Status columns are plain
strings guarded by CHECK constraints. Timestamps are stored as UTC.
"""
from datetime import timezone

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime, also on backends (SQLite) that drop the offset."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    pass


class Material(Base):
    __tablename__ = "materials"
    __table_args__ = (
        CheckConstraint("unit IN ('ml', 'g', 'kg', 'pcs')", name="ck_materials_unit"),
        CheckConstraint("package_size > 0", name="ck_materials_package_size"),
        CheckConstraint("purchase_price >= 0", name="ck_materials_purchase_price"),
    )

    id             = Column(String(36), primary_key=True)
    name           = Column(Text,       nullable=False, index=True)
    unit           = Column(String(8),  nullable=False)
    package_size   = Column(Integer,    nullable=False)
    purchase_price = Column(Integer,    nullable=False)
    created_at     = Column(UTCDateTime)
    updated_at     = Column(UTCDateTime)

    def __repr__(self) -> str:
        return f"<Material id={self.id} name={self.name!r}>"


class MenuItem(Base):
    __tablename__ = "menu_items"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_menu_items_price"),
        CheckConstraint("cost >= 0", name="ck_menu_items_cost"),
        CheckConstraint("status IN ('active', 'inactive')", name="ck_menu_items_status"),
    )

    id         = Column(String(36), primary_key=True)
    name       = Column(Text,       nullable=False)
    category   = Column(Text,       nullable=False, index=True)
    price      = Column(Integer,    nullable=False)
    cost       = Column(Integer,    nullable=False, default=0)
    status     = Column(String(16), nullable=False, default="active", index=True)
    created_at = Column(UTCDateTime)
    updated_at = Column(UTCDateTime)

    ingredients = relationship(
        "Ingredient", cascade="all, delete-orphan", order_by="Ingredient.position",
    )

    def __repr__(self) -> str:
        return f"<MenuItem id={self.id} name={self.name!r}>"


class Ingredient(Base):
    __tablename__ = "ingredients"
    __table_args__ = (CheckConstraint("cost >= 0", name="ck_ingredients_cost"),)

    id           = Column(String(36), primary_key=True)
    menu_item_id = Column(String(36), ForeignKey("menu_items.id", ondelete="CASCADE"),
                          nullable=False, index=True)
    material_id  = Column(String(36), ForeignKey("materials.id", ondelete="SET NULL"),
                          nullable=True)
    name         = Column(Text,       nullable=False)
    quantity     = Column(Float,      nullable=True)
    unit         = Column(String(8),  nullable=True)
    cost         = Column(Integer,    nullable=False)
    position     = Column(Integer,    nullable=False, default=0)
    created_at   = Column(UTCDateTime)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_orders_total"),
        CheckConstraint("status IN ('pending', 'completed', 'cancelled')", name="ck_orders_status"),
        CheckConstraint(
            "payment IS NULL OR payment IN ('cash', 'qris', 'transfer')", name="ck_orders_payment",
        ),
    )

    id            = Column(String(36), primary_key=True)
    customer_name = Column(Text,       nullable=True)
    phone         = Column(Text,       nullable=True)
    total         = Column(Integer,    nullable=False)
    status        = Column(String(16), nullable=False, default="pending", index=True)
    payment       = Column(String(16), nullable=True)
    additional    = Column(Text,       nullable=True)
    date          = Column(UTCDateTime, nullable=False, index=True)
    created_at    = Column(UTCDateTime)
    updated_at    = Column(UTCDateTime)

    items       = relationship("OrderItem", cascade="all, delete-orphan", order_by="OrderItem.position")
    kds_tickets = relationship("KdsTicket", cascade="all, delete-orphan", order_by="KdsTicket.created_at")

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total={self.total}>"


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity"),
        CheckConstraint("price_at_time >= 0", name="ck_order_items_price"),
    )

    id            = Column(String(36), primary_key=True)
    order_id      = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    menu_item_id  = Column(String(36), ForeignKey("menu_items.id"), nullable=False)
    quantity      = Column(Integer,    nullable=False)
    price_at_time = Column(Integer,    nullable=False)
    position      = Column(Integer,    nullable=False, default=0)
    created_at    = Column(UTCDateTime)

    menu_item = relationship("MenuItem", lazy="joined")


class KdsTicket(Base):
    __tablename__ = "kds_tickets"
    __table_args__ = (
        CheckConstraint("status IN ('new', 'preparing', 'ready')", name="ck_kds_tickets_status"),
    )

    id         = Column(String(36), primary_key=True)
    order_id   = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    status     = Column(String(16), nullable=False, default="new", index=True)
    created_at = Column(UTCDateTime)
    updated_at = Column(UTCDateTime)


class WebhookSetting(Base):
    __tablename__ = "webhook_settings"

    id         = Column(Integer, primary_key=True)
    url        = Column(Text,    nullable=False, default="")
    is_enabled = Column(Boolean, nullable=False, default=False)
    updated_at = Column(UTCDateTime)
