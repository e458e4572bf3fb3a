"""
Viewer-side sync: API client, polled views and the push listener.
"""

from tortillas.sync.client import OrderingClient
from tortillas.sync.push import PushListener
from tortillas.sync.views import (
    AdminDashboardView,
    KitchenView,
    OrderTrackingView,
    SyncedView,
    TableBoardView,
)

__all__ = [
    "OrderingClient",
    "PushListener",
    "SyncedView",
    "OrderTrackingView",
    "KitchenView",
    "AdminDashboardView",
    "TableBoardView",
]
