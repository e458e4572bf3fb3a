"""
Session Store Factory

Returns the in-memory or Redis session store based on ENV_MODE.
"""

import logging
from functools import lru_cache

from tortillas.core.config import get_settings
from tortillas.services.session_store.base import BaseSessionStore
from tortillas.services.session_store.memory import MemorySessionStore
from tortillas.services.session_store.redis_store import RedisSessionStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_session_store() -> BaseSessionStore:
    """Get the configured session store."""
    settings = get_settings()

    if settings.use_redis:
        logger.info(f"Session Store: Using RedisSessionStore ({settings.env_mode.value} mode)")
        return RedisSessionStore()

    logger.info("Session Store: Using MemorySessionStore (development mode)")
    return MemorySessionStore(ttl_seconds=settings.session_ttl_seconds)


def reset_session_store() -> None:
    """Clear the cached store instance."""
    get_session_store.cache_clear()


__all__ = [
    "get_session_store",
    "reset_session_store",
    "BaseSessionStore",
    "MemorySessionStore",
    "RedisSessionStore",
]
