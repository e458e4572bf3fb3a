"""
Synced Views

Each viewer keeps its own snapshot of authoritative state and refreshes it

    - every ``interval`` seconds,
    - as soon as a relevant push event arrives,
    - right after a mutation it performed itself.

Refreshes of one view never overlap, so the snapshot taken after a
mutation always reflects that mutation. A failed refresh is logged and the
previous snapshot stays on screen.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Generic, Optional, TypeVar

from tortillas.core.config import get_settings
from tortillas.core.errors import OrderingError
from tortillas.models import OrderStatus, TableStatus
from tortillas.schemas import (
    AnalyticsPeriod,
    AnalyticsSummary,
    EventType,
    KitchenQueueResponse,
    OrderListResponse,
    OrderResponse,
    OrderTrackingResponse,
    SyncEvent,
    TableCreate,
    TableResponse,
)
from tortillas.sync.client import OrderingClient

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class SyncedView(ABC, Generic[T]):
    """Base class for a polled, push-accelerated snapshot."""

    topics: frozenset[EventType] = frozenset()

    def __init__(
        self,
        client: OrderingClient,
        interval: float,
        location_id: Optional[str] = None,
    ):
        self.client = client
        self.interval = interval
        self.location_id = location_id
        self.snapshot: Optional[T] = None
        self.last_error: Optional[OrderingError] = None
        self.refreshed_at: Optional[datetime] = None
        self.refresh_count = 0
        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def fetch(self) -> T:
        """Load the current state from the service."""

    async def refresh(self) -> Optional[T]:
        """Re-fetch now. Returns the snapshot, stale if the fetch failed."""
        async with self._lock:
            try:
                snapshot = await self.fetch()
            except OrderingError as e:
                self.last_error = e
                logger.warning(f"{self.name}: refresh failed ({e.detail}), keeping previous snapshot")
                return self.snapshot

            self.snapshot = snapshot
            self.last_error = None
            self.refreshed_at = datetime.now(timezone.utc)
            self.refresh_count += 1
            return snapshot

    async def mutate(self, operation: Awaitable[R]) -> R:
        """
        Run a write and re-fetch right after it, successful or not.

        Errors of the write itself propagate to the caller.
        """
        try:
            return await operation
        finally:
            await self.refresh()

    # =========================================================================
    # PUSH
    # =========================================================================

    def wants(self, event: SyncEvent) -> bool:
        if event.type not in self.topics:
            return False
        location = event.data.get("location_id")
        return self.location_id is None or location is None or location == self.location_id

    def notify(self, event: SyncEvent) -> None:
        """Push callback: schedule an immediate refresh for relevant events."""
        if self.wants(event):
            self._wake.set()

    # =========================================================================
    # POLL LOOP
    # =========================================================================

    async def run(self) -> None:
        while True:
            await self.refresh()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"{self.name}-poll")
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None


class OrderTrackingView(SyncedView[OrderTrackingResponse]):
    """Customer page following a single order."""

    topics = frozenset({EventType.ORDER_STATUS, EventType.ORDERS})

    def __init__(self, client: OrderingClient, order_id: int, interval: Optional[float] = None):
        super().__init__(client, interval or get_settings().tracking_poll_seconds)
        self.order_id = order_id

    def wants(self, event: SyncEvent) -> bool:
        return super().wants(event) and event.data.get("order_id") in (None, self.order_id)

    async def fetch(self) -> OrderTrackingResponse:
        return await self.client.get_tracking(self.order_id)


class KitchenView(SyncedView[KitchenQueueResponse]):
    """Kitchen display: open orders by urgency."""

    topics = frozenset({EventType.ORDERS, EventType.ORDER_STATUS})

    def __init__(
        self,
        client: OrderingClient,
        location_id: Optional[str] = None,
        interval: Optional[float] = None,
    ):
        super().__init__(client, interval or get_settings().kitchen_poll_seconds, location_id)

    async def fetch(self) -> KitchenQueueResponse:
        return await self.client.kitchen_queue(self.location_id)

    async def advance(self, order_id: int, status: OrderStatus) -> OrderResponse:
        return await self.mutate(self.client.update_order_status(order_id, status))


@dataclass
class DashboardSnapshot:
    orders: OrderListResponse
    stats: AnalyticsSummary


class AdminDashboardView(SyncedView[DashboardSnapshot]):
    """Admin order list plus statistics."""

    topics = frozenset({EventType.ORDERS, EventType.ORDER_STATUS})

    def __init__(
        self,
        client: OrderingClient,
        location_id: Optional[str] = None,
        period: AnalyticsPeriod = AnalyticsPeriod.TODAY,
        interval: Optional[float] = None,
    ):
        super().__init__(client, interval or get_settings().dashboard_poll_seconds, location_id)
        self.period = period

    async def fetch(self) -> DashboardSnapshot:
        orders = await self.client.list_orders(location_id=self.location_id)
        stats = await self.client.analytics_summary(self.period, self.location_id)
        return DashboardSnapshot(orders=orders, stats=stats)

    async def set_status(self, order_id: int, status: OrderStatus) -> OrderResponse:
        return await self.mutate(self.client.update_order_status(order_id, status))

    async def delete_order(self, order_id: int) -> None:
        await self.mutate(self.client.delete_order(order_id))


class TableBoardView(SyncedView[list[TableResponse]]):
    """Admin table screen of one location."""

    topics = frozenset({EventType.TABLES})

    def __init__(self, client: OrderingClient, location_id: str, interval: Optional[float] = None):
        super().__init__(client, interval or get_settings().dashboard_poll_seconds, location_id)

    async def fetch(self) -> list[TableResponse]:
        return await self.client.list_tables(self.location_id)

    @property
    def available(self) -> list[TableResponse]:
        return [t for t in self.snapshot or [] if t.status == TableStatus.AVAILABLE]

    async def add_table(self, table_number: int, seats: int) -> TableResponse:
        table = TableCreate(table_number=table_number, location_id=self.location_id, seats=seats)
        return await self.mutate(self.client.create_table(table))

    async def set_status(self, table_id: int, status: TableStatus) -> TableResponse:
        return await self.mutate(self.client.set_table_status(table_id, status))

    async def remove_table(self, table_id: int) -> None:
        await self.mutate(self.client.delete_table(table_id))
