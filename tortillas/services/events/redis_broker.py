"""
Redis Event Broker

Publishes sync events on a Redis pub/sub channel so that websocket
connections held by any API worker receive them.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from tortillas.core.config import get_settings
from tortillas.schemas import SyncEvent
from tortillas.services.events.base import BaseEventBroker

logger = logging.getLogger(__name__)


class RedisEventBroker(BaseEventBroker):
    """Broker backed by Redis pub/sub."""

    def __init__(self, redis_url: Optional[str] = None, channel: Optional[str] = None):
        settings = get_settings()
        self.redis_url = redis_url or settings.redis_url
        self.channel = channel or settings.events_channel
        self._redis = aioredis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,  # Fail fast if Redis is down
        )
        logger.info(f"RedisEventBroker initialized (channel={self.channel})")

    @property
    def provider_name(self) -> str:
        return "redis"

    async def _publish(self, event: SyncEvent) -> int:
        return await self._redis.publish(self.channel, event.model_dump_json())

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[AsyncIterator[SyncEvent]]:
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self.channel)

        async def events() -> AsyncIterator[SyncEvent]:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield SyncEvent.model_validate_json(message["data"])
                except ValueError as e:
                    logger.error(f"Discarding malformed event on {self.channel}: {e}")

        try:
            yield events()
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()
