"""
Order Composer

Turns a cart plus checkout form into an order submission: validates the
input, computes subtotal, delivery fee, total and the estimated ready time,
and snapshots each item's current price onto the order lines.

Nothing here touches the store; the result is handed to a submitter.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from tortillas.core.config import Settings, get_settings
from tortillas.core.errors import ConflictError, ValidationError
from tortillas.models import OrderType, TableStatus
from tortillas.schemas import (
    CustomerInfo,
    OrderDraft,
    OrderItemDraft,
    OrderSubmission,
    TableResponse,
)
from tortillas.services.cart import CartService

logger = logging.getLogger(__name__)


def delivery_fee_for(order_type: OrderType, settings: Optional[Settings] = None) -> Decimal:
    """Fixed surcharge for delivery orders, zero otherwise."""
    settings = settings or get_settings()
    return settings.delivery_fee if order_type == OrderType.DELIVERY else Decimal("0")


class OrderComposer:
    """
    Stateless order builder.

    Example:
        >>> composer = OrderComposer()
        >>> submission = composer.compose(cart, customer, "ilha", tables)
        >>> submission.order.total_amount
        Decimal('3500')
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings or get_settings()
        self.clock = clock

    # =========================================================================
    # CALCULATIONS
    # =========================================================================

    def delivery_fee(self, order_type: OrderType) -> Decimal:
        return delivery_fee_for(order_type, self.settings)

    def preparation_time(self, cart: CartService, order_type: OrderType) -> int:
        """Slowest item in the cart, plus the travel buffer for delivery."""
        times = []
        for line in cart.lines:
            item = cart.menu_item(line.menu_item_id)
            times.append(item.preparation_time if item and item.preparation_time else
                         self.settings.default_preparation_minutes)
        minutes = max(times, default=self.settings.default_preparation_minutes)
        if order_type == OrderType.DELIVERY:
            minutes += self.settings.delivery_buffer_minutes
        return minutes

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(
        self,
        cart: CartService,
        customer: CustomerInfo,
        location_id: str,
        tables: Optional[Iterable[TableResponse]] = None,
    ) -> None:
        """
        Check everything that can be checked before submission.

        Raises:
            ValidationError: listing every missing or inconsistent field
            ConflictError: the chosen table exists but is not available
        """
        problems = []

        if not self.settings.is_known_location(location_id):
            problems.append(f"Unknown location '{location_id}'")
        if not customer.name.strip():
            problems.append("Name is required")
        if not customer.phone.strip():
            problems.append("Phone is required")
        if customer.order_type == OrderType.DELIVERY and not (customer.delivery_address or "").strip():
            problems.append("Delivery address is required for delivery orders")

        if cart.is_empty:
            problems.append("Cart is empty")
        for line in cart.lines:
            item = cart.menu_item(line.menu_item_id)
            if item is None:
                problems.append(f"Menu item #{line.menu_item_id} is no longer on the menu")
            elif not item.available:
                problems.append(f"'{item.name}' is currently unavailable")

        unavailable_table = None
        if customer.order_type == OrderType.DINE_IN:
            if customer.table_id is None:
                problems.append("Select a table for dine-in orders")
            else:
                table = next(
                    (t for t in (tables or []) if t.id == customer.table_id),
                    None,
                )
                if table is None or table.location_id != location_id:
                    problems.append(f"Table #{customer.table_id} does not exist at this location")
                elif table.status != TableStatus.AVAILABLE:
                    unavailable_table = table

        if problems:
            logger.info(f"Order for {location_id} rejected before submission: {problems}")
            raise ValidationError("; ".join(problems), problems=problems)

        if unavailable_table is not None:
            raise ConflictError(
                f"Table {unavailable_table.table_number} is {unavailable_table.status.value}",
                suggestion="Choose a different table",
            )

    # =========================================================================
    # COMPOSITION
    # =========================================================================

    def compose(
        self,
        cart: CartService,
        customer: CustomerInfo,
        location_id: str,
        tables: Optional[Iterable[TableResponse]] = None,
        idempotency_key: Optional[str] = None,
    ) -> OrderSubmission:
        """Validate and build the submission payload."""
        tables = list(tables or [])
        self.validate(cart, customer, location_id, tables)

        order_type = customer.order_type
        items = [
            OrderItemDraft(
                menu_item_id=line.menu_item_id,
                quantity=line.quantity,
                unit_price=cart.unit_price(line),
                customizations=list(line.customizations),
            )
            for line in cart.lines
        ]
        subtotal = sum((item.subtotal for item in items), Decimal("0"))
        fee = self.delivery_fee(order_type)
        minutes = self.preparation_time(cart, order_type)

        order = OrderDraft(
            customer_name=customer.name.strip(),
            customer_phone=customer.phone.strip(),
            customer_email=customer.email,
            delivery_address=(
                customer.delivery_address.strip() if order_type == OrderType.DELIVERY else None
            ),
            order_type=order_type,
            location_id=location_id,
            table_id=customer.table_id if order_type == OrderType.DINE_IN else None,
            subtotal=subtotal,
            delivery_fee=fee,
            total_amount=subtotal + fee,
            payment_method=customer.payment_method,
            notes=(customer.notes or "").strip() or None,
            preparation_time=minutes,
            estimated_delivery_time=self.clock() + timedelta(minutes=minutes),
        )

        return OrderSubmission(order=order, items=items, idempotency_key=idempotency_key)
