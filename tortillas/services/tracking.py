"""
Customer order tracking: progress steps and remaining-time label.
"""

from datetime import datetime, timezone
from typing import Optional

from tortillas.models import Order, OrderStatus, as_utc
from tortillas.schemas import OrderTrackingResponse, TrackingStep

STATUS_LABELS = {
    OrderStatus.RECEIVED: "Received",
    OrderStatus.PREPARING: "Preparing",
    OrderStatus.READY: "Ready",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}

HAPPY_PATH = [
    OrderStatus.RECEIVED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERED,
]


def status_steps(status: OrderStatus) -> list[TrackingStep]:
    path = HAPPY_PATH
    if status == OrderStatus.CANCELLED:
        path = [OrderStatus.RECEIVED, OrderStatus.CANCELLED]

    position = path.index(status)
    return [
        TrackingStep(
            status=step,
            label=STATUS_LABELS[step],
            done=index <= position,
            current=index == position,
        )
        for index, step in enumerate(path)
    ]


def eta_label(estimated: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    minutes = max(0, int((as_utc(estimated) - now).total_seconds() // 60))
    if minutes == 0:
        return "arriving now"
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60}h {minutes % 60}min"


def track(order: Order, now: Optional[datetime] = None) -> OrderTrackingResponse:
    return OrderTrackingResponse(
        order_id=order.id,
        status=order.status,
        status_label=STATUS_LABELS[order.status],
        steps=status_steps(order.status),
        estimated_delivery_time=order.estimated_delivery_time,
        time_remaining=eta_label(order.estimated_delivery_time, now),
    )
