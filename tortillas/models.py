"""
SQLAlchemy Database Models

Order lifecycle and table allocation for the Las Tortillas locations:
- Menu catalog (read-only for the ordering flow)
- Dine-in tables with per-location numbering
- Orders with immutable line items and a status workflow
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Text,
    Enum,
    Boolean,
    JSON,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tortillas.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _values_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Persist the wire value ("dine-in"), not the member name ("DINE_IN")
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    RECEIVED = "received"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Allowed edges when strict transitions are enabled
FORWARD_TRANSITIONS = {
    OrderStatus.RECEIVED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY, OrderStatus.CANCELLED},
    OrderStatus.READY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


class OrderType(str, enum.Enum):
    DELIVERY = "delivery"
    TAKEAWAY = "takeaway"
    DINE_IN = "dine-in"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class TableStatus(str, enum.Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class MenuItem(Base):
    """
    Orderable catalog entry.

    Prices are in the restaurant currency (AOA) and are copied onto
    order items at submission time.
    """
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    category = Column(String(60), nullable=False, index=True)
    preparation_time = Column(Integer, nullable=False, default=15)
    available = Column(Boolean, nullable=False, default=True)
    customizations = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<MenuItem #{self.id} - {self.name} - {self.price}>"


class DiningTable(Base):
    """
    Dine-in table of one location.

    ``table_number`` is what guests see; it is unique per location only.
    """
    __tablename__ = "tables"
    __table_args__ = (
        UniqueConstraint("location_id", "table_number", name="uq_tables_location_number"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    table_number = Column(Integer, nullable=False)
    location_id = Column(String(40), nullable=False, index=True)
    seats = Column(Integer, nullable=False)
    status = Column(
        _values_enum(TableStatus, "table_status"),
        default=TableStatus.AVAILABLE,
        nullable=False,
        index=True
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Table {self.location_id}#{self.table_number} - {self.status.value}>"


class Order(Base):
    """
    Main Order table.

    Amounts and items are fixed at creation; afterwards only the status,
    notes and delivery estimate change.
    """
    __tablename__ = "orders"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # ORDER TYPE & PLACE
    # =========================================================================
    order_type = Column(_values_enum(OrderType, "order_type"), nullable=False, index=True)
    location_id = Column(String(40), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("tables.id", ondelete="SET NULL"), nullable=True)

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(30), nullable=False, index=True)
    customer_email = Column(String(255), nullable=True)
    delivery_address = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Numeric(12, 2), nullable=False)
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)

    # =========================================================================
    # PAYMENT INFO
    # =========================================================================
    payment_method = Column(_values_enum(PaymentMethod, "payment_method"), nullable=False)
    payment_status = Column(
        _values_enum(PaymentStatus, "payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False
    )

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        _values_enum(OrderStatus, "order_status"),
        default=OrderStatus.RECEIVED,
        nullable=False,
        index=True
    )
    preparation_time = Column(Integer, nullable=False)
    estimated_delivery_time = Column(DateTime(timezone=True), nullable=False)

    # Client-generated key; a resubmitted cart maps onto the same order
    idempotency_key = Column(String(64), nullable=True, unique=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    @property
    def is_dine_in(self) -> bool:
        return self.order_type == OrderType.DINE_IN and self.table_id is not None

    def __repr__(self):
        return f"<Order #{self.id} - {self.order_type.value} - {self.customer_name} - {self.status.value}>"


class OrderItem(Base):
    """One line of an order. ``unit_price`` is a copy, not a live reference."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    customizations = Column(JSON, nullable=False, default=list)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem order={self.order_id} item={self.menu_item_id} x{self.quantity}>"
