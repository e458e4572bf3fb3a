"""
FastAPI Application Entry Point

Las Tortillas Ordering Service - order lifecycle and table allocation.
Runs with in-memory collaborators in development and Redis-backed ones in
staging/production.

Endpoints:
    - /api/menu-items: Catalog (read by the storefront, edited by admins)
    - /api/tables: Dine-in tables per location
    - /api/orders: Order submission and status workflow
    - /api/sessions: Server-held storefront cart and checkout
    - /api/kitchen/queue: Kitchen display queue
    - /api/analytics: Order statistics and report export
    - /ws: Push channel for live viewers
    - GET /health: System health check
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from kombu.exceptions import OperationalError as BrokerUnavailable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

# Internal imports
from tortillas.core.config import get_settings, setup_logging
from tortillas.core.errors import OrderingError, TransientError, ValidationError
from tortillas.database import async_session_maker, get_db, init_db, engine
from tortillas.models import OrderStatus, OrderType
from tortillas.schemas import (
    AnalyticsPeriod,
    AnalyticsSummary,
    CartItemAdd,
    CartItemUpdate,
    CartView,
    CustomerInfo,
    ErrorResponse,
    EventType,
    HealthResponse,
    KitchenQueueResponse,
    MenuItemCreate,
    MenuItemResponse,
    MenuItemUpdate,
    MessageResponse,
    OrderCreateResponse,
    OrderDetailsUpdate,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    OrderSubmission,
    OrderTrackingResponse,
    ReportExportResponse,
    TableAvailability,
    TableCreate,
    TableResponse,
    TableStatusUpdate,
    TableUpdate,
)
from tortillas.services.analytics import AnalyticsService
from tortillas.services.cart import CartService
from tortillas.services.catalog import CatalogService
from tortillas.services.checkout import CheckoutService
from tortillas.services.events import BaseEventBroker, get_event_broker
from tortillas.services.kitchen import build_queue
from tortillas.services.orders import OrderService
from tortillas.services.session_store import BaseSessionStore, get_session_store
from tortillas.services.tables import TableService
from tortillas.services.tracking import track
from tortillas.tasks import export_orders_report

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Locations: {', '.join(settings.locations_list)}")
    logger.info("=" * 60)

    await init_db()

    if settings.is_development and settings.seed_sample_data:
        async with async_session_maker() as db:
            await CatalogService(db).seed_sample_menu()
            await TableService(db).seed_sample_tables()

    broker = get_event_broker()
    store = get_session_store()
    logger.info(f"Event Broker: {broker.provider_name}")
    logger.info(f"Session Store: {store.provider_name}")
    logger.info("Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await broker.close()
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Online ordering back end for the Las Tortillas restaurants: cart, "
        "checkout, dine-in table allocation, order status workflow and live "
        "updates for kitchen and admin screens."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def check_location(location_id: Optional[str]) -> None:
    if location_id is not None and not settings.is_known_location(location_id):
        raise ValidationError(
            f"Unknown location '{location_id}'",
            suggestion=f"Use one of: {', '.join(settings.locations_list)}",
        )


async def load_cart(
    session_id: str,
    location_id: str,
    db: AsyncSession,
    store: BaseSessionStore,
) -> CartService:
    """Restore a storefront cart with live menu prices."""
    check_location(location_id)
    items = await CatalogService(db).list_items()
    catalog = [MenuItemResponse.model_validate(item) for item in items]
    return await CartService.load(store, session_id, location_id, catalog)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, Any]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "locations": settings.locations_list,
        "documentation": "/docs",
        "health": "/health",
        "events": "/ws",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check push channel
    events_status = "healthy" if await broker.health_check() else "unhealthy"

    overall = "operational" if db_status == "healthy" and events_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        events=f"{events_status} ({broker.provider_name})",
        environment=settings.env_mode.value,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.get("/api/menu-items", response_model=list[MenuItemResponse], tags=["Menu"])
async def list_menu_items(
    category: Optional[str] = Query(None),
    available: bool = Query(False, description="Only items currently available"),
    db: AsyncSession = Depends(get_db),
) -> list[MenuItemResponse]:
    items = await CatalogService(db).list_items(category=category, available_only=available)
    return [MenuItemResponse.model_validate(item) for item in items]


@app.get("/api/menu-items/{item_id}", response_model=MenuItemResponse, responses=ERROR_RESPONSES, tags=["Menu"])
async def get_menu_item(item_id: int, db: AsyncSession = Depends(get_db)) -> MenuItemResponse:
    return MenuItemResponse.model_validate(await CatalogService(db).get_item(item_id))


@app.post("/api/menu-items", response_model=MenuItemResponse, status_code=status.HTTP_201_CREATED, tags=["Menu"])
async def create_menu_item(data: MenuItemCreate, db: AsyncSession = Depends(get_db)) -> MenuItemResponse:
    return MenuItemResponse.model_validate(await CatalogService(db).create_item(data))


@app.put("/api/menu-items/{item_id}", response_model=MenuItemResponse, responses=ERROR_RESPONSES, tags=["Menu"])
async def update_menu_item(
    item_id: int,
    data: MenuItemUpdate,
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    return MenuItemResponse.model_validate(await CatalogService(db).update_item(item_id, data))


@app.delete("/api/menu-items/{item_id}", response_model=MessageResponse, responses=ERROR_RESPONSES, tags=["Menu"])
async def delete_menu_item(item_id: int, db: AsyncSession = Depends(get_db)) -> MessageResponse:
    await CatalogService(db).delete_item(item_id)
    return MessageResponse(message=f"Menu item #{item_id} deleted")


# =============================================================================
# TABLE ENDPOINTS
# =============================================================================

@app.get("/api/tables", response_model=list[TableResponse], tags=["Tables"])
async def list_tables(
    location: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> list[TableResponse]:
    """All tables of a location (or every location) with their current status."""
    check_location(location)
    tables = await TableService(db, broker).list_by_location(location)
    return [TableResponse.model_validate(t) for t in tables]


@app.get("/api/tables/availability", response_model=TableAvailability, tags=["Tables"])
async def table_availability(
    location: str = Query(...),
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> TableAvailability:
    check_location(location)
    return await TableService(db, broker).availability_summary(location)


@app.get("/api/tables/{table_id}", response_model=TableResponse, responses=ERROR_RESPONSES, tags=["Tables"])
async def get_table(
    table_id: int,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> TableResponse:
    return TableResponse.model_validate(await TableService(db, broker).get_table(table_id))


@app.post(
    "/api/tables",
    response_model=TableResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def create_table(
    data: TableCreate,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> TableResponse:
    """Create a table. The number must be unique within its location."""
    return TableResponse.model_validate(await TableService(db, broker).create(data))


@app.put("/api/tables/{table_id}", response_model=TableResponse, responses=ERROR_RESPONSES, tags=["Tables"])
async def update_table(
    table_id: int,
    data: TableUpdate,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> TableResponse:
    return TableResponse.model_validate(await TableService(db, broker).update(table_id, data))


@app.patch("/api/tables/{table_id}/status", response_model=TableResponse, responses=ERROR_RESPONSES, tags=["Tables"])
async def update_table_status(
    table_id: int,
    data: TableStatusUpdate,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> TableResponse:
    return TableResponse.model_validate(await TableService(db, broker).set_status(table_id, data.status))


@app.delete("/api/tables/{table_id}", response_model=MessageResponse, responses=ERROR_RESPONSES, tags=["Tables"])
async def delete_table(
    table_id: int,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> MessageResponse:
    await TableService(db, broker).delete(table_id)
    return MessageResponse(message=f"Table #{table_id} deleted")


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    submission: OrderSubmission,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> OrderCreateResponse:
    """
    Create an order with its items in one transaction.

    Resending the same ``idempotency_key`` returns the order created the
    first time instead of a duplicate.
    """
    logger.info(f"Creating {submission.order.order_type.value} order for: {submission.order.customer_name}")
    order, replayed = await OrderService(db, broker).create_order(submission)

    return OrderCreateResponse(
        success=True,
        message="Order already placed" if replayed else "Order placed successfully!",
        order=OrderResponse.model_validate(order),
        replayed=replayed,
    )


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    location: Optional[str] = Query(None),
    active: bool = Query(False, description="Only orders not yet delivered or cancelled"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> OrderListResponse:
    """Retrieve a page of orders, newest first."""
    check_location(location)
    total, orders = await OrderService(db, broker).list_orders(
        status=status,
        location_id=location,
        active_only=active,
        skip=skip,
        limit=limit,
    )
    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get("/api/orders/{order_id}", response_model=OrderResponse, responses=ERROR_RESPONSES, tags=["Orders"])
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> OrderResponse:
    """Get a specific order by ID."""
    return OrderResponse.model_validate(await OrderService(db, broker).get_order(order_id))


@app.get(
    "/api/orders/{order_id}/tracking",
    response_model=OrderTrackingResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order_tracking(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> OrderTrackingResponse:
    """Progress steps and remaining time for the customer tracking page."""
    return track(await OrderService(db, broker).get_order(order_id))


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> OrderResponse:
    order = await OrderService(db, broker).transition(order_id, data.status)
    return OrderResponse.model_validate(order)


@app.patch("/api/orders/{order_id}", response_model=OrderResponse, responses=ERROR_RESPONSES, tags=["Orders"])
async def update_order_details(
    order_id: int,
    data: OrderDetailsUpdate,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> OrderResponse:
    order = await OrderService(db, broker).update_details(order_id, data)
    return OrderResponse.model_validate(order)


@app.delete("/api/orders/{order_id}", response_model=MessageResponse, responses=ERROR_RESPONSES, tags=["Orders"])
async def delete_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> MessageResponse:
    await OrderService(db, broker).delete_order(order_id)
    return MessageResponse(message=f"Order #{order_id} deleted")


# =============================================================================
# STOREFRONT SESSION ENDPOINTS
# =============================================================================

@app.get("/api/sessions/{session_id}/{location_id}/cart", response_model=CartView, responses=ERROR_RESPONSES, tags=["Storefront"])
async def get_cart(
    session_id: str,
    location_id: str,
    db: AsyncSession = Depends(get_db),
    store: BaseSessionStore = Depends(get_session_store),
) -> CartView:
    cart = await load_cart(session_id, location_id, db, store)
    return cart.view()


@app.delete("/api/sessions/{session_id}/{location_id}/cart", response_model=CartView, responses=ERROR_RESPONSES, tags=["Storefront"])
async def clear_cart(
    session_id: str,
    location_id: str,
    db: AsyncSession = Depends(get_db),
    store: BaseSessionStore = Depends(get_session_store),
) -> CartView:
    cart = await load_cart(session_id, location_id, db, store)
    await cart.clear()
    return cart.view()


@app.post("/api/sessions/{session_id}/{location_id}/cart/items", response_model=CartView, responses=ERROR_RESPONSES, tags=["Storefront"])
async def add_cart_item(
    session_id: str,
    location_id: str,
    data: CartItemAdd,
    db: AsyncSession = Depends(get_db),
    store: BaseSessionStore = Depends(get_session_store),
) -> CartView:
    """Add one unit; the same item with the same options bumps the quantity."""
    cart = await load_cart(session_id, location_id, db, store)
    item = cart.menu_item(data.menu_item_id)
    if item is None:
        item = MenuItemResponse.model_validate(await CatalogService(db).get_item(data.menu_item_id))
    await cart.add_item(item, data.customizations)
    return cart.view()


@app.patch("/api/sessions/{session_id}/{location_id}/cart/items", response_model=CartView, responses=ERROR_RESPONSES, tags=["Storefront"])
async def update_cart_item(
    session_id: str,
    location_id: str,
    data: CartItemUpdate,
    db: AsyncSession = Depends(get_db),
    store: BaseSessionStore = Depends(get_session_store),
) -> CartView:
    """Set a line's quantity; 0 removes it."""
    cart = await load_cart(session_id, location_id, db, store)
    await cart.update_quantity(data.menu_item_id, data.customizations, data.quantity)
    return cart.view()


@app.get("/api/sessions/{session_id}/{location_id}/customer", response_model=CustomerInfo, responses=ERROR_RESPONSES, tags=["Storefront"])
async def get_customer_info(
    session_id: str,
    location_id: str,
    db: AsyncSession = Depends(get_db),
    store: BaseSessionStore = Depends(get_session_store),
) -> CustomerInfo:
    cart = await load_cart(session_id, location_id, db, store)
    return cart.customer_info()


@app.put("/api/sessions/{session_id}/{location_id}/customer", response_model=CustomerInfo, responses=ERROR_RESPONSES, tags=["Storefront"])
async def save_customer_info(
    session_id: str,
    location_id: str,
    data: CustomerInfo,
    db: AsyncSession = Depends(get_db),
    store: BaseSessionStore = Depends(get_session_store),
) -> CustomerInfo:
    cart = await load_cart(session_id, location_id, db, store)
    await cart.save_customer_info(data)
    return cart.customer_info()


@app.post(
    "/api/sessions/{session_id}/{location_id}/checkout",
    response_model=OrderCreateResponse,
    responses=ERROR_RESPONSES,
    tags=["Storefront"],
)
async def checkout(
    session_id: str,
    location_id: str,
    db: AsyncSession = Depends(get_db),
    store: BaseSessionStore = Depends(get_session_store),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> OrderCreateResponse:
    """
    Turn the saved cart and customer info into an order.

    The cart is cleared only when the order was stored; on any error it
    stays as it was so the customer can fix the problem and retry.
    """
    cart = await load_cart(session_id, location_id, db, store)

    tables = []
    if cart.customer_info().order_type == OrderType.DINE_IN:
        rows = await TableService(db, broker).list_by_location(location_id)
        tables = [TableResponse.model_validate(t) for t in rows]

    orders = OrderService(db, broker)
    order, replayed = await CheckoutService(cart).submit(orders.create_order, tables)

    return OrderCreateResponse(
        success=True,
        message="Order already placed" if replayed else "Order placed successfully!",
        order=OrderResponse.model_validate(order),
        replayed=replayed,
    )


@app.delete("/api/sessions/{session_id}", response_model=MessageResponse, tags=["Storefront"])
async def clear_session(
    session_id: str,
    store: BaseSessionStore = Depends(get_session_store),
) -> MessageResponse:
    """Forget carts and customer info of the session at every location."""
    cart = CartService(store, session_id, settings.locations_list[0])
    await cart.clear_all(settings.locations_list)
    return MessageResponse(message="All saved data cleared")


# =============================================================================
# KITCHEN & ANALYTICS ENDPOINTS
# =============================================================================

@app.get("/api/kitchen/queue", response_model=KitchenQueueResponse, tags=["Kitchen"])
async def kitchen_queue(
    location: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> KitchenQueueResponse:
    """Open orders, most urgent first."""
    check_location(location)
    _, orders = await OrderService(db, broker).list_orders(location_id=location, active_only=True, limit=500)
    return KitchenQueueResponse(location_id=location, tickets=build_queue(orders))


@app.get("/api/analytics/summary", response_model=AnalyticsSummary, tags=["Analytics"])
async def analytics_summary(
    period: AnalyticsPeriod = Query(AnalyticsPeriod.TODAY),
    location: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> AnalyticsSummary:
    check_location(location)
    return await AnalyticsService(db).summary(period, location)


@app.post(
    "/api/analytics/export",
    response_model=ReportExportResponse,
    responses={503: {"model": ErrorResponse}},
    tags=["Analytics"],
)
async def export_report(
    period: AnalyticsPeriod = Query(AnalyticsPeriod.TODAY),
    location: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> ReportExportResponse:
    """Queue an Excel export of the period's orders on the Celery worker."""
    check_location(location)
    rows = await AnalyticsService(db).report_rows(period, location)

    try:
        task = export_orders_report.delay(period.value, rows)
    except BrokerUnavailable as e:
        logger.error(f"Could not queue report export: {e}")
        raise TransientError("Report worker is unavailable", suggestion="Try again later")

    logger.info(f"Report export queued: task {task.id}, {len(rows)} orders")
    return ReportExportResponse(queued=True, task_id=task.id, period=period, orders=len(rows))


# =============================================================================
# PUSH CHANNEL
# =============================================================================

@app.websocket("/ws")
async def events_socket(websocket: WebSocket, topics: Optional[str] = None) -> None:
    """
    Stream sync events to a viewer.

    ``?topics=orders,order-status`` limits the stream; without it every
    event is sent. Events only say what changed: viewers re-fetch.
    """
    try:
        wanted = {EventType(t.strip()) for t in topics.split(",") if t.strip()} if topics else set()
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    broker = get_event_broker()

    async def forward() -> None:
        async with broker.subscribe() as events:
            async for event in events:
                if wanted and event.type not in wanted:
                    continue
                await websocket.send_text(event.model_dump_json())

    sender = asyncio.create_task(forward())
    try:
        while True:
            # Client messages are only keep-alives
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Push viewer disconnected")
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderingError)
async def ordering_exception_handler(request: Request, exc: OrderingError) -> JSONResponse:
    """Report domain errors with their status code and suggestion."""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )

