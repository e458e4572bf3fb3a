"""
Event Broker Factory

Returns the in-memory or Redis event broker based on ENV_MODE.

Usage:
    from tortillas.services.events import get_event_broker

    broker = get_event_broker()
    await broker.publish(EventType.ORDERS, {"action": "created", "order_id": 12})
"""

import logging
from functools import lru_cache

from tortillas.core.config import get_settings
from tortillas.services.events.base import BaseEventBroker
from tortillas.services.events.memory import MemoryEventBroker
from tortillas.services.events.redis_broker import RedisEventBroker

logger = logging.getLogger(__name__)


@lru_cache()
def get_event_broker() -> BaseEventBroker:
    """Get the configured event broker."""
    settings = get_settings()

    if settings.use_redis:
        logger.info(f"Event Broker: Using RedisEventBroker ({settings.env_mode.value} mode)")
        return RedisEventBroker()

    logger.info("Event Broker: Using MemoryEventBroker (development mode)")
    return MemoryEventBroker()


def reset_event_broker() -> None:
    """Clear the cached broker instance."""
    get_event_broker.cache_clear()


__all__ = [
    "get_event_broker",
    "reset_event_broker",
    "BaseEventBroker",
    "MemoryEventBroker",
    "RedisEventBroker",
]
