"""
Ordering API Client

Async HTTP client for the ordering service, used by viewers (kitchen
display, admin dashboard, tracking page) and remote storefronts.

HTTP failures come back as the same exceptions the service raises
internally:

    400 / 422      -> ValidationError
    404            -> NotFoundError
    409            -> ConflictError
    5xx, network   -> TransientError
    bad 2xx body   -> TransientError

Nothing is retried here; retrying is the caller's decision.
"""

import logging
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from tortillas.core.config import get_settings
from tortillas.core.errors import (
    ConflictError,
    NotFoundError,
    OrderingError,
    TransientError,
    ValidationError,
)
from tortillas.models import OrderStatus, TableStatus
from tortillas.schemas import (
    AnalyticsPeriod,
    AnalyticsSummary,
    KitchenQueueResponse,
    MenuItemResponse,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
    OrderSubmission,
    OrderTrackingResponse,
    TableAvailability,
    TableCreate,
    TableResponse,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def error_from_response(response: httpx.Response) -> OrderingError:
    """Map an error response onto the error taxonomy."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    detail = body.get("detail") or response.reason_phrase or f"HTTP {response.status_code}"
    suggestion = body.get("suggestion")

    if response.status_code == 422 and isinstance(detail, list):
        # FastAPI request validation errors
        problems = [
            f"{'.'.join(str(p) for p in err.get('loc', [])[1:])}: {err.get('msg')}"
            for err in detail
        ]
        return ValidationError("; ".join(problems), problems=problems)

    detail = str(detail)
    if response.status_code in (400, 422):
        return ValidationError(detail, problems=body.get("problems"), suggestion=suggestion)
    if response.status_code == 404:
        return NotFoundError(detail, suggestion)
    if response.status_code == 409:
        return ConflictError(detail, suggestion)
    return TransientError(detail, suggestion)


class OrderingClient:
    """
    Thin typed wrapper over the REST API.

    Example:
        >>> async with OrderingClient("http://localhost:8001") as client:
        ...     queue = await client.kitchen_queue("ilha")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.http_timeout_seconds,
        )

    async def __aenter__(self) -> "OrderingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e!r}")
            raise TransientError(f"Service unreachable: {e}", suggestion="Try again") from e

        if response.is_error:
            error = error_from_response(response)
            logger.info(f"{method} {path} -> {response.status_code}: {error.detail}")
            raise error

        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"{method} {path} returned a non-JSON body")
            raise TransientError(f"Unreadable response from {path}", suggestion="Try again") from e

    @staticmethod
    def _parse(model: type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except SchemaError as e:
            logger.warning(f"Unexpected {model.__name__} payload: {e}")
            raise TransientError(f"Unexpected {model.__name__} payload", suggestion="Try again") from e

    @staticmethod
    def _params(**values) -> dict[str, Any]:
        return {k: v for k, v in values.items() if v is not None}

    # =========================================================================
    # MENU & TABLES
    # =========================================================================

    async def list_menu_items(self, available_only: bool = False) -> list[MenuItemResponse]:
        data = await self._request("GET", "/api/menu-items", params={"available": available_only})
        return [self._parse(MenuItemResponse, item) for item in data]

    async def list_tables(self, location_id: Optional[str] = None) -> list[TableResponse]:
        data = await self._request("GET", "/api/tables", params=self._params(location=location_id))
        return [self._parse(TableResponse, t) for t in data]

    async def table_availability(self, location_id: str) -> TableAvailability:
        data = await self._request("GET", "/api/tables/availability", params={"location": location_id})
        return self._parse(TableAvailability, data)

    async def create_table(self, table: TableCreate) -> TableResponse:
        data = await self._request("POST", "/api/tables", json=table.model_dump(mode="json"))
        return self._parse(TableResponse, data)

    async def set_table_status(self, table_id: int, status: TableStatus) -> TableResponse:
        data = await self._request("PATCH", f"/api/tables/{table_id}/status", json={"status": status.value})
        return self._parse(TableResponse, data)

    async def delete_table(self, table_id: int) -> None:
        await self._request("DELETE", f"/api/tables/{table_id}")

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(self, submission: OrderSubmission) -> OrderCreateResponse:
        data = await self._request("POST", "/api/orders", json=submission.model_dump(mode="json"))
        return self._parse(OrderCreateResponse, data)

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        location_id: Optional[str] = None,
        active_only: bool = False,
        limit: int = 50,
    ) -> OrderListResponse:
        params = self._params(
            status=status.value if status else None,
            location=location_id,
            active=active_only,
            limit=limit,
        )
        data = await self._request("GET", "/api/orders", params=params)
        return self._parse(OrderListResponse, data)

    async def get_order(self, order_id: int) -> OrderResponse:
        return self._parse(OrderResponse, await self._request("GET", f"/api/orders/{order_id}"))

    async def get_tracking(self, order_id: int) -> OrderTrackingResponse:
        data = await self._request("GET", f"/api/orders/{order_id}/tracking")
        return self._parse(OrderTrackingResponse, data)

    async def update_order_status(self, order_id: int, status: OrderStatus) -> OrderResponse:
        data = await self._request("PATCH", f"/api/orders/{order_id}/status", json={"status": status.value})
        return self._parse(OrderResponse, data)

    async def delete_order(self, order_id: int) -> None:
        await self._request("DELETE", f"/api/orders/{order_id}")

    # =========================================================================
    # KITCHEN & ANALYTICS
    # =========================================================================

    async def kitchen_queue(self, location_id: Optional[str] = None) -> KitchenQueueResponse:
        data = await self._request("GET", "/api/kitchen/queue", params=self._params(location=location_id))
        return self._parse(KitchenQueueResponse, data)

    async def analytics_summary(
        self,
        period: AnalyticsPeriod = AnalyticsPeriod.TODAY,
        location_id: Optional[str] = None,
    ) -> AnalyticsSummary:
        params = self._params(period=period.value, location=location_id)
        data = await self._request("GET", "/api/analytics/summary", params=params)
        return self._parse(AnalyticsSummary, data)
