"""
In-Memory Event Broker

Fans events out to subscribers of the same process through asyncio queues.
Used in development mode and in tests; a multi-worker deployment needs the
Redis broker so that every worker's websockets see every event.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from tortillas.schemas import SyncEvent
from tortillas.services.events.base import BaseEventBroker

logger = logging.getLogger(__name__)


class MemoryEventBroker(BaseEventBroker):
    """
    Process-local broker.

    Each subscription owns a bounded queue. A subscriber that stops reading
    loses its oldest events rather than blocking publishers; it will still
    converge through polling.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: set[asyncio.Queue] = set()
        logger.info(f"MemoryEventBroker initialized (queue_size={queue_size})")

    @property
    def provider_name(self) -> str:
        return "memory"

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def _publish(self, event: SyncEvent) -> int:
        for queue in list(self._subscribers):
            if queue.full():
                dropped = queue.get_nowait()
                logger.warning(f"Slow subscriber, dropped '{dropped.type.value}' event")
            queue.put_nowait(event)
        return len(self._subscribers)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[AsyncIterator[SyncEvent]]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)

        async def events() -> AsyncIterator[SyncEvent]:
            while True:
                yield await queue.get()

        try:
            yield events()
        finally:
            self._subscribers.discard(queue)

    async def health_check(self) -> bool:
        return True
