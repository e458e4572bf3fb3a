"""
Pydantic Schemas for Request/Response Validation

Wire shapes for the menu, tables, storefront cart, order submission,
order lifecycle, kitchen queue, analytics and sync events.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator

from tortillas.models import (
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
    TableStatus,
)


# =============================================================================
# MENU
# =============================================================================

class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120, examples=["Tacos al Pastor"])
    description: Optional[str] = Field(None, max_length=1000)
    price: Decimal = Field(..., ge=0, examples=["1500"])
    category: str = Field(..., min_length=1, max_length=60, examples=["Tacos"])
    preparation_time: int = Field(default=15, gt=0, le=240)
    available: bool = True
    customizations: List[str] = Field(default_factory=list)


class MenuItemUpdate(BaseModel):
    """Partial update; omitted fields are left untouched."""
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[Decimal] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1, max_length=60)
    preparation_time: Optional[int] = Field(None, gt=0, le=240)
    available: Optional[bool] = None
    customizations: Optional[List[str]] = None

    @field_validator("name", "price", "category", "preparation_time", "available", "customizations")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v


class MenuItemResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    price: Decimal
    category: str
    preparation_time: int
    available: bool
    customizations: List[str]

    class Config:
        from_attributes = True


# =============================================================================
# TABLES
# =============================================================================

class TableCreate(BaseModel):
    table_number: int = Field(..., ge=1, examples=[3])
    location_id: str = Field(..., min_length=1, max_length=40, examples=["ilha"])
    seats: int = Field(..., ge=1, le=12, examples=[4])
    status: TableStatus = TableStatus.AVAILABLE


class TableUpdate(BaseModel):
    table_number: Optional[int] = Field(None, ge=1)
    location_id: Optional[str] = Field(None, min_length=1, max_length=40)
    seats: Optional[int] = Field(None, ge=1, le=12)
    status: Optional[TableStatus] = None


class TableStatusUpdate(BaseModel):
    status: TableStatus


class TableResponse(BaseModel):
    id: int
    table_number: int
    location_id: str
    seats: int
    status: TableStatus
    created_at: datetime

    class Config:
        from_attributes = True


class TableAvailability(BaseModel):
    """Tables of one location plus the counts behind "no tables available"."""
    location_id: str
    total: int
    available: int
    tables: List[TableResponse]

    @property
    def has_available(self) -> bool:
        return self.available > 0


# =============================================================================
# STOREFRONT SESSION
# =============================================================================

class CustomerInfo(BaseModel):
    """
    Checkout form state.

    Kept permissive on purpose: it is persisted while the customer is still
    typing. Completeness is checked by the order composer.
    """
    name: str = ""
    phone: str = ""
    email: Optional[str] = None
    delivery_address: Optional[str] = None
    order_type: OrderType = OrderType.DELIVERY
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = None
    table_id: Optional[int] = None


class CartLine(BaseModel):
    menu_item_id: int
    quantity: int = Field(..., ge=1)
    customizations: List[str] = Field(default_factory=list)

    @field_validator("customizations")
    @classmethod
    def normalize_customizations(cls, v: List[str]) -> List[str]:
        # Order-insensitive set semantics, stored sorted
        return sorted(set(v))

    @property
    def key(self) -> tuple[int, tuple[str, ...]]:
        return (self.menu_item_id, tuple(self.customizations))


class CartItemAdd(BaseModel):
    menu_item_id: int
    customizations: List[str] = Field(default_factory=list)


class CartItemUpdate(BaseModel):
    menu_item_id: int
    customizations: List[str] = Field(default_factory=list)
    quantity: int = Field(..., examples=[2])


class CartLineView(BaseModel):
    menu_item_id: int
    name: str
    unit_price: Decimal
    quantity: int
    customizations: List[str]
    line_total: Decimal


class CartView(BaseModel):
    session_id: str
    location_id: str
    lines: List[CartLineView]
    item_count: int
    subtotal: Decimal


# =============================================================================
# ORDER SUBMISSION
# =============================================================================

class OrderItemDraft(BaseModel):
    """Single item in an order submission, priced at composition time."""
    menu_item_id: int
    quantity: int = Field(..., ge=1, le=99)
    unit_price: Decimal = Field(..., ge=0)
    customizations: List[str] = Field(default_factory=list)
    subtotal: Optional[Decimal] = None

    @model_validator(mode="after")
    def check_subtotal(self) -> "OrderItemDraft":
        expected = self.unit_price * self.quantity
        if self.subtotal is None:
            self.subtotal = expected
        elif self.subtotal != expected:
            raise ValueError(
                f"subtotal {self.subtotal} != unit_price × quantity ({expected})"
            )
        return self


class OrderDraft(BaseModel):
    """Order part of a submission."""

    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_phone: str = Field(..., min_length=1, max_length=30)
    customer_email: Optional[str] = Field(None, max_length=255)
    delivery_address: Optional[str] = Field(None, max_length=255)
    order_type: OrderType
    location_id: str = Field(..., min_length=1, max_length=40)
    table_id: Optional[int] = None
    subtotal: Decimal = Field(..., ge=0)
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0)
    total_amount: Decimal = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.RECEIVED
    notes: Optional[str] = Field(None, max_length=1000)
    preparation_time: int = Field(..., gt=0)
    estimated_delivery_time: datetime

    @field_validator("customer_name", "customer_phone")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("customer_email")
    @classmethod
    def empty_email_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def check_order_type_fields(self) -> "OrderDraft":
        if self.order_type == OrderType.DELIVERY and not (self.delivery_address or "").strip():
            raise ValueError("delivery_address is required for delivery orders")
        if self.order_type == OrderType.DINE_IN and self.table_id is None:
            raise ValueError("table_id is required for dine-in orders")
        if self.order_type != OrderType.DINE_IN and self.table_id is not None:
            raise ValueError("table_id is only allowed for dine-in orders")
        if self.status != OrderStatus.RECEIVED:
            raise ValueError("new orders start in status 'received'")
        if self.payment_status != PaymentStatus.PENDING:
            raise ValueError("new orders start with payment status 'pending'")
        return self


class OrderSubmission(BaseModel):
    """Body of POST /api/orders. Written as one transaction."""
    order: OrderDraft
    items: List[OrderItemDraft] = Field(..., min_length=1)
    idempotency_key: Optional[str] = Field(None, min_length=8, max_length=64)


# =============================================================================
# ORDER LIFECYCLE
# =============================================================================

class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderDetailsUpdate(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)
    estimated_delivery_time: Optional[datetime] = None


class OrderItemResponse(BaseModel):
    id: int
    menu_item_id: int
    quantity: int
    unit_price: Decimal
    customizations: List[str]
    subtotal: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: int
    order_type: OrderType
    location_id: str
    table_id: Optional[int]
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    delivery_address: Optional[str]
    notes: Optional[str]
    subtotal: Decimal
    delivery_fee: Decimal
    total_amount: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    preparation_time: int
    estimated_delivery_time: datetime
    created_at: datetime
    updated_at: Optional[datetime]
    completed_at: Optional[datetime]
    items: List[OrderItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    """Response after a checkout."""
    success: bool
    message: str
    order: OrderResponse
    replayed: bool = False


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


# =============================================================================
# KITCHEN & ANALYTICS
# =============================================================================

class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class KitchenTicket(BaseModel):
    order: OrderResponse
    minutes_elapsed: int
    target_minutes: int
    urgency: UrgencyLevel
    estimated_completion: datetime


class KitchenQueueResponse(BaseModel):
    location_id: Optional[str]
    tickets: List[KitchenTicket]


class TrackingStep(BaseModel):
    status: OrderStatus
    label: str
    done: bool
    current: bool


class OrderTrackingResponse(BaseModel):
    """What the customer tracking page shows."""
    order_id: int
    status: OrderStatus
    status_label: str
    steps: List[TrackingStep]
    estimated_delivery_time: datetime
    time_remaining: str


class AnalyticsPeriod(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


class AnalyticsSummary(BaseModel):
    period: AnalyticsPeriod
    location_id: Optional[str]
    since: datetime
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    orders_by_status: dict[str, int]
    orders_by_type: dict[str, int]
    orders_by_location: dict[str, int]


class ReportExportResponse(BaseModel):
    queued: bool
    task_id: Optional[str]
    period: AnalyticsPeriod
    orders: int


# =============================================================================
# SYNC EVENTS
# =============================================================================

class EventType(str, Enum):
    ORDERS = "orders"
    ORDER_STATUS = "order-status"
    TABLES = "tables"


class SyncEvent(BaseModel):
    """Push notification telling viewers which state to re-fetch."""
    type: EventType
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# GENERIC
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    suggestion: Optional[str] = None
    problems: Optional[List[str]] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    events: str
    environment: str
    timestamp: datetime
