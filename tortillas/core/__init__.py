"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from tortillas.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from tortillas.core.errors import (
    OrderingError,
    ValidationError,
    ConflictError,
    NotFoundError,
    TransientError,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "OrderingError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "TransientError",
]
