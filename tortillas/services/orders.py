"""
Order State Machine

Creates orders atomically and drives their status workflow:

    received -> preparing -> ready -> delivered
         \\__________\\__________\\____> cancelled

Entering delivered/cancelled frees the dine-in table. Admins may set any
status at any time unless STRICT_STATUS_TRANSITIONS is enabled, in which
case only the edges drawn above are accepted.

Every committed change is followed by sync events; a failed publish never
undoes the write.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tortillas.core.config import get_settings
from tortillas.core.errors import ConflictError, NotFoundError, OrderingError, ValidationError
from tortillas.models import (
    FORWARD_TRANSITIONS,
    TERMINAL_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    utcnow,
)
from tortillas.schemas import EventType, OrderDetailsUpdate, OrderSubmission
from tortillas.services.catalog import CatalogService
from tortillas.services.composer import delivery_fee_for
from tortillas.services.events import BaseEventBroker, get_event_broker
from tortillas.services.tables import TableService

logger = logging.getLogger(__name__)


class OrderService:
    """Order writes and reads for one database session."""

    def __init__(self, db: AsyncSession, broker: Optional[BaseEventBroker] = None):
        self.db = db
        self.broker = broker or get_event_broker()
        self.settings = get_settings()
        self.tables = TableService(db, self.broker)
        self.catalog = CatalogService(db)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_order(self, order_id: int) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order #{order_id} not found")
        return order

    async def find_by_idempotency_key(self, key: str) -> Optional[Order]:
        result = await self.db.execute(select(Order).where(Order.idempotency_key == key))
        return result.scalar_one_or_none()

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        location_id: Optional[str] = None,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[int, list[Order]]:
        """
        Newest first.

        Returns:
            (total matching orders, the requested page)
        """
        conditions = []
        if status is not None:
            conditions.append(Order.status == status)
        if location_id:
            conditions.append(Order.location_id == location_id)
        if active_only:
            conditions.append(Order.status.not_in(list(TERMINAL_STATUSES)))

        count_result = await self.db.execute(select(func.count(Order.id)).where(*conditions))
        total = count_result.scalar() or 0

        result = await self.db.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return total, list(result.scalars().all())

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_order(self, submission: OrderSubmission) -> tuple[Order, bool]:
        """
        Write an order, its items and the table assignment in one transaction.

        Returns:
            (order, replayed) where replayed is True when the idempotency key
            matched an order created earlier

        Raises:
            ValidationError: unknown location, unknown menu items or amounts
                that do not add up
            ConflictError: the dine-in table is no longer available
        """
        key = submission.idempotency_key
        if key:
            existing = await self.find_by_idempotency_key(key)
            if existing is not None:
                logger.info(f"Replayed submission {key} -> order #{existing.id}")
                return existing, True

        try:
            await self._check_submission(submission)
            order = await self._insert(submission)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            if key:
                existing = await self.find_by_idempotency_key(key)
                if existing is not None:
                    logger.info(f"Concurrent submission {key} resolved to order #{existing.id}")
                    return existing, True
            raise ConflictError(
                "Order could not be stored",
                suggestion="Refresh and try again",
            )
        except OrderingError:
            await self.db.rollback()
            raise

        logger.info(
            f"Order #{order.id} created: {order.order_type.value} at {order.location_id}, "
            f"total {order.total_amount} {self.settings.currency}"
        )

        await self.broker.publish(EventType.ORDERS, {
            "action": "created",
            "order_id": order.id,
            "location_id": order.location_id,
            "status": order.status.value,
        })
        if order.table_id is not None:
            await self._announce_table(order, "occupied")
        return order, False

    async def _check_submission(self, submission: OrderSubmission) -> None:
        draft = submission.order
        problems = []

        if not self.settings.is_known_location(draft.location_id):
            problems.append(f"Unknown location '{draft.location_id}'")

        known = await self.catalog.items_by_id(item.menu_item_id for item in submission.items)
        missing = sorted({item.menu_item_id for item in submission.items} - set(known))
        if missing:
            problems.append(f"Unknown menu items: {missing}")

        items_total = sum((item.subtotal for item in submission.items), Decimal("0"))
        fee = delivery_fee_for(draft.order_type, self.settings)
        if draft.subtotal != items_total:
            problems.append(f"subtotal {draft.subtotal} does not match the items ({items_total})")
        if draft.delivery_fee != fee:
            problems.append(f"delivery_fee {draft.delivery_fee} should be {fee} for {draft.order_type.value}")
        if draft.total_amount != items_total + fee:
            problems.append(f"total_amount {draft.total_amount} should be {items_total + fee}")

        if problems:
            logger.warning(f"Rejected order submission: {problems}")
            raise ValidationError("; ".join(problems), problems=problems)

    async def _insert(self, submission: OrderSubmission) -> Order:
        draft = submission.order

        if draft.order_type == OrderType.DINE_IN:
            await self.tables.assign(draft.table_id, draft.location_id)

        order = Order(**draft.model_dump(), idempotency_key=submission.idempotency_key)
        order.items = [
            OrderItem(
                menu_item_id=item.menu_item_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                customizations=list(item.customizations),
                subtotal=item.subtotal,
            )
            for item in submission.items
        ]
        self.db.add(order)
        await self.db.flush()
        return order

    # =========================================================================
    # STATUS WORKFLOW
    # =========================================================================

    async def transition(self, order_id: int, target: OrderStatus) -> Order:
        """
        Move an order to ``target``.

        Setting the current status again changes nothing and publishes
        nothing.

        Raises:
            NotFoundError: unknown order id
            ConflictError: forbidden edge in strict mode, or the table of a
                reopened dine-in order has been taken meanwhile
        """
        order = await self.get_order(order_id)
        current = order.status
        if current == target:
            logger.debug(f"Order #{order_id} already {target.value}")
            return order

        if self.settings.strict_status_transitions and target not in FORWARD_TRANSITIONS[current]:
            raise ConflictError(
                f"Order #{order_id} cannot go from {current.value} to {target.value}",
                suggestion=self._allowed_hint(current),
            )

        table_change = None
        try:
            if target.is_terminal and not current.is_terminal:
                order.completed_at = utcnow()
                if order.is_dine_in:
                    await self.tables.release(order.table_id)
                    table_change = "released"
            elif current.is_terminal and not target.is_terminal:
                # Reopened by an admin: the guests are back at their table
                order.completed_at = None
                if order.is_dine_in:
                    await self.tables.assign(order.table_id, order.location_id)
                    table_change = "occupied"

            order.status = target
            await self.db.commit()
        except OrderingError:
            await self.db.rollback()
            raise

        logger.info(f"Order #{order.id}: {current.value} -> {target.value}")

        await self.broker.publish(EventType.ORDER_STATUS, {
            "order_id": order.id,
            "location_id": order.location_id,
            "status": target.value,
            "previous": current.value,
        })
        await self.broker.publish(EventType.ORDERS, {
            "action": "status",
            "order_id": order.id,
            "location_id": order.location_id,
        })
        if table_change:
            await self._announce_table(order, table_change)
        return order

    @staticmethod
    def _allowed_hint(current: OrderStatus) -> str:
        allowed = sorted(s.value for s in FORWARD_TRANSITIONS[current])
        if not allowed:
            return f"{current.value} is final"
        return f"Allowed next: {', '.join(allowed)}"

    async def update_details(self, order_id: int, data: OrderDetailsUpdate) -> Order:
        """Edit notes or the delivery estimate. Amounts and items stay fixed."""
        order = await self.get_order(order_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return order

        for field, value in changes.items():
            setattr(order, field, value)
        await self.db.commit()

        logger.info(f"Order #{order.id} details updated: {sorted(changes)}")
        await self.broker.publish(EventType.ORDERS, {
            "action": "updated",
            "order_id": order.id,
            "location_id": order.location_id,
        })
        return order

    async def delete_order(self, order_id: int) -> None:
        order = await self.get_order(order_id)
        frees_table = order.is_dine_in and not order.status.is_terminal

        if frees_table:
            await self.tables.release(order.table_id)
        await self.db.delete(order)
        await self.db.commit()

        logger.info(f"Order #{order_id} deleted")
        await self.broker.publish(EventType.ORDERS, {
            "action": "deleted",
            "order_id": order_id,
            "location_id": order.location_id,
        })
        if frees_table:
            await self._announce_table(order, "released")

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _announce_table(self, order: Order, change: str) -> None:
        await self.broker.publish(EventType.TABLES, {
            "action": change,
            "table_id": order.table_id,
            "location_id": order.location_id,
            "order_id": order.id,
        })
