"""
Shared fixtures.

The app runs against an in-memory SQLite database (one shared connection)
with in-memory broker and session store, driven through httpx's ASGI
transport. Lifespan is not run, so nothing is seeded implicitly.
"""

import os

os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SEED_SAMPLE_DATA"] = "false"

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tortillas.database import Base, get_db
from tortillas.main import app
from tortillas.models import OrderType, PaymentMethod
from tortillas.schemas import (
    MenuItemResponse,
    OrderDraft,
    OrderItemDraft,
    OrderSubmission,
    SyncEvent,
)
from tortillas.services.catalog import CatalogService
from tortillas.services.events import MemoryEventBroker, get_event_broker
from tortillas.services.session_store import MemorySessionStore, get_session_store


class RecordingBroker(MemoryEventBroker):
    """Memory broker that also keeps every published event."""

    def __init__(self):
        super().__init__()
        self.published: list[SyncEvent] = []

    async def _publish(self, event: SyncEvent) -> int:
        self.published.append(event)
        return await super()._publish(event)

    def types(self) -> list[str]:
        return [event.type.value for event in self.published]


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def broker() -> RecordingBroker:
    return RecordingBroker()


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore(ttl_seconds=3600)


@pytest.fixture
async def menu(session_maker) -> dict[str, MenuItemResponse]:
    """Sample menu, keyed by item name."""
    async with session_maker() as session:
        catalog = CatalogService(session)
        await catalog.seed_sample_menu()
        items = await catalog.list_items()
        return {item.name: MenuItemResponse.model_validate(item) for item in items}


@pytest.fixture
async def client(session_maker, broker, store):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_broker] = lambda: broker
    app.dependency_overrides[get_session_store] = lambda: store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_submission():
    """Build a consistent submission for one menu item."""

    def build(
        item: MenuItemResponse,
        quantity: int = 1,
        order_type: OrderType = OrderType.TAKEAWAY,
        table_id: Optional[int] = None,
        location_id: str = "ilha",
        idempotency_key: Optional[str] = None,
    ) -> OrderSubmission:
        subtotal = item.price * quantity
        fee = Decimal("500") if order_type == OrderType.DELIVERY else Decimal("0")
        order = OrderDraft(
            customer_name="Ana Silva",
            customer_phone="+244 923 000 111",
            delivery_address="Rua da Missão 12" if order_type == OrderType.DELIVERY else None,
            order_type=order_type,
            location_id=location_id,
            table_id=table_id,
            subtotal=subtotal,
            delivery_fee=fee,
            total_amount=subtotal + fee,
            payment_method=PaymentMethod.CASH,
            preparation_time=item.preparation_time,
            estimated_delivery_time=datetime.now(timezone.utc),
        )
        return OrderSubmission(
            order=order,
            items=[OrderItemDraft(menu_item_id=item.id, quantity=quantity, unit_price=item.price)],
            idempotency_key=idempotency_key,
        )

    return build
