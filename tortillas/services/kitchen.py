"""
Kitchen Queue

Active orders ranked for the kitchen display. Each order type has a target
time; the further past it an order is, the higher its urgency.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from tortillas.models import Order, OrderType, as_utc
from tortillas.schemas import KitchenTicket, OrderResponse, UrgencyLevel

# Target minutes from order to hand-off
TARGET_MINUTES = {
    OrderType.DELIVERY: 45,
    OrderType.TAKEAWAY: 20,
    OrderType.DINE_IN: 25,
}

URGENCY_RANK = {
    UrgencyLevel.CRITICAL: 4,
    UrgencyLevel.HIGH: 3,
    UrgencyLevel.MEDIUM: 2,
    UrgencyLevel.LOW: 1,
}


def assess_urgency(minutes_elapsed: int, target_minutes: int) -> UrgencyLevel:
    if minutes_elapsed > target_minutes * 1.5:
        return UrgencyLevel.CRITICAL
    if minutes_elapsed > target_minutes:
        return UrgencyLevel.HIGH
    if minutes_elapsed > target_minutes * 0.7:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def build_ticket(order: Order, now: Optional[datetime] = None) -> KitchenTicket:
    now = now or datetime.now(timezone.utc)
    elapsed = max(0, int((now - as_utc(order.created_at)).total_seconds() // 60))
    target = TARGET_MINUTES[order.order_type]
    remaining = max(0, target - elapsed)

    return KitchenTicket(
        order=OrderResponse.model_validate(order),
        minutes_elapsed=elapsed,
        target_minutes=target,
        urgency=assess_urgency(elapsed, target),
        estimated_completion=now + timedelta(minutes=remaining),
    )


def build_queue(orders: Iterable[Order], now: Optional[datetime] = None) -> list[KitchenTicket]:
    """Most urgent first; within one level, the oldest first."""
    now = now or datetime.now(timezone.utc)
    tickets = [build_ticket(order, now) for order in orders]
    tickets.sort(key=lambda t: (URGENCY_RANK[t.urgency], t.minutes_elapsed), reverse=True)
    return tickets
