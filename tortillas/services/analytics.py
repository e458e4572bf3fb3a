"""
Order Statistics

Counts and revenue per period for the admin dashboard, computed in SQL.
Periods start at midnight UTC: today, the last 7 days, or the last
calendar month.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tortillas.models import Order, as_utc
from tortillas.schemas import AnalyticsPeriod, AnalyticsSummary

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def period_start(period: AnalyticsPeriod, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    today = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    if period == AnalyticsPeriod.TODAY:
        return today
    if period == AnalyticsPeriod.WEEK:
        return today - timedelta(days=7)

    # Same day of the previous month, clamped to that month's length
    year, month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)
    first_of_this = today.replace(day=1)
    last_day_prev = (first_of_this - timedelta(days=1)).day
    return today.replace(year=year, month=month, day=min(today.day, last_day_prev))


class AnalyticsService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def summary(
        self,
        period: AnalyticsPeriod = AnalyticsPeriod.TODAY,
        location_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AnalyticsSummary:
        since = period_start(period, now)
        conditions = [Order.created_at >= since]
        if location_id:
            conditions.append(Order.location_id == location_id)

        totals = await self.db.execute(
            select(func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
            .where(*conditions)
        )
        count, revenue = totals.one()
        revenue = Decimal(str(revenue)).quantize(CENT)
        average = (revenue / count).quantize(CENT) if count else Decimal("0.00")

        return AnalyticsSummary(
            period=period,
            location_id=location_id,
            since=since,
            total_orders=count,
            total_revenue=revenue,
            average_order_value=average,
            orders_by_status=await self._count_by(Order.status, conditions),
            orders_by_type=await self._count_by(Order.order_type, conditions),
            orders_by_location=await self._count_by(Order.location_id, conditions),
        )

    async def _count_by(self, column, conditions: list) -> dict[str, int]:
        result = await self.db.execute(
            select(column, func.count(Order.id)).where(*conditions).group_by(column)
        )
        return {
            (key.value if hasattr(key, "value") else key): n
            for key, n in result.all()
        }

    async def report_rows(
        self,
        period: AnalyticsPeriod,
        location_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """Orders of a period as JSON-safe rows for the report worker."""
        since = period_start(period, now)
        query = select(Order).where(Order.created_at >= since).order_by(Order.created_at)
        if location_id:
            query = query.where(Order.location_id == location_id)
        result = await self.db.execute(query)

        rows = []
        for order in result.scalars().all():
            rows.append({
                "order_id": order.id,
                "created_at": as_utc(order.created_at).isoformat(),
                "location_id": order.location_id,
                "order_type": order.order_type.value,
                "table_id": order.table_id,
                "customer_name": order.customer_name,
                "customer_phone": order.customer_phone,
                "items": "; ".join(
                    f"{item.quantity}x #{item.menu_item_id}"
                    + (f" ({', '.join(item.customizations)})" if item.customizations else "")
                    for item in order.items
                ),
                "subtotal": str(order.subtotal),
                "delivery_fee": str(order.delivery_fee),
                "total_amount": str(order.total_amount),
                "payment_method": order.payment_method.value,
                "payment_status": order.payment_status.value,
                "status": order.status.value,
            })
        logger.debug(f"{len(rows)} orders since {since.isoformat()} for the report")
        return rows
