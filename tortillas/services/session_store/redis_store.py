"""
Redis Session Store

Persists storefront sessions in Redis with a sliding expiry, so a cart
survives reloads and API restarts and is shared by all workers.
"""

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from tortillas.core.config import get_settings
from tortillas.core.errors import TransientError
from tortillas.services.session_store.base import BaseSessionStore

logger = logging.getLogger(__name__)


class RedisSessionStore(BaseSessionStore):
    """Session store backed by Redis strings with TTL."""

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        settings = get_settings()
        self.ttl = ttl_seconds or settings.session_ttl_seconds
        self.redis = aioredis.from_url(
            redis_url or settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
        )
        logger.info(f"RedisSessionStore initialized (ttl={self.ttl}s)")

    @property
    def provider_name(self) -> str:
        return "redis"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis.get(key)
        except RedisError as e:
            raise TransientError(f"Session store unavailable: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.redis.setex(key, self.ttl, value)
        except RedisError as e:
            raise TransientError(f"Session store unavailable: {e}") from e

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self.redis.delete(*keys)
        except RedisError as e:
            raise TransientError(f"Session store unavailable: {e}") from e

    async def health_check(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
