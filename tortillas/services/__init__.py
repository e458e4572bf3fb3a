"""
                        Services Module

Business logic of the ordering service. Collaborators that differ between
development and deployment follow the factory pattern (in-memory vs Redis
implementation chosen by ENV_MODE).

Services:
    - catalog: Menu lookups
    - cart / session_store: Storefront cart persisted per session and location
    - composer / checkout: Cart to order submission
    - tables: Table allocation
    - orders: Order state machine
    - events: Push channel for sync events
    - kitchen / tracking / analytics: Read models for viewers
    - reports: Excel report export
"""

from tortillas.services.reports import ReportExporter

__all__ = ["ReportExporter"]
