"""
In-Memory Session Store

Dictionary-backed store with expiry, for development and tests.
"""

import logging
import time
from typing import Optional

from tortillas.services.session_store.base import BaseSessionStore

logger = logging.getLogger(__name__)


class MemorySessionStore(BaseSessionStore):
    """Process-local store. Entries vanish on restart."""

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl = ttl_seconds
        self._memory_store: dict[str, tuple[float, str]] = {}

    @property
    def provider_name(self) -> str:
        return "memory"

    async def get(self, key: str) -> Optional[str]:
        entry = self._memory_store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at < time.monotonic():
            del self._memory_store[key]
            return None
        return value

    async def set(self, key: str, value: str) -> None:
        self._memory_store[key] = (time.monotonic() + self.ttl, value)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._memory_store.pop(key, None)

    async def health_check(self) -> bool:
        return True
