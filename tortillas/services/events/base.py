"""
Event Broker Abstract Base Class

Defines the push channel of the sync layer. Writers publish a SyncEvent
after every committed change; each connected viewer holds a subscription
and re-fetches when a relevant event arrives.

Push is an optimization: a lost event only delays a viewer until its next
poll tick, so publishing never raises into the write path.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any, AsyncIterator, Optional

from tortillas.schemas import EventType, SyncEvent

logger = logging.getLogger(__name__)


class BaseEventBroker(ABC):
    """Abstract base class for event brokers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the broker name."""
        pass

    @abstractmethod
    async def _publish(self, event: SyncEvent) -> int:
        """Deliver one event. Returns the number of receivers reached."""
        pass

    @abstractmethod
    def subscribe(self) -> AbstractAsyncContextManager[AsyncIterator[SyncEvent]]:
        """
        Open a subscription.

        Usage:
            async with broker.subscribe() as events:
                async for event in events:
                    ...
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check broker connectivity."""
        pass

    async def close(self) -> None:
        """Release connections. No-op by default."""
        return None

    async def publish(
        self,
        event_type: EventType,
        data: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Publish an event, logging instead of raising on failure.

        Returns:
            True if the broker accepted the event
        """
        event = SyncEvent(type=event_type, data=data or {})
        try:
            receivers = await self._publish(event)
        except Exception as e:
            logger.warning(f"Push of '{event.type.value}' failed ({e}); viewers will catch up on their next poll")
            return False

        logger.debug(f"Published '{event.type.value}' to {receivers} receiver(s): {event.data}")
        return True
