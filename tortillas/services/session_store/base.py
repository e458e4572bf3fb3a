"""
Session Store Abstract Base Class

Key-value storage for per-session storefront state (serialized cart,
customer info, pending submission key). Values are JSON strings.
"""

from abc import ABC, abstractmethod
from typing import Optional


class BaseSessionStore(ABC):
    """Abstract base class for session stores."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, refreshing its expiry."""
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        """Remove keys; missing keys are ignored."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass
