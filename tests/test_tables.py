"""Table allocation: per-location numbering and conditional assignment."""

import pytest

from tortillas.core.errors import ConflictError, NotFoundError, ValidationError
from tortillas.models import OrderStatus, OrderType, TableStatus
from tortillas.schemas import TableCreate, TableUpdate
from tortillas.services.orders import OrderService
from tortillas.services.tables import TableService


@pytest.fixture
def tables(db, broker):
    return TableService(db, broker)


async def test_table_numbers_are_unique_per_location(tables):
    await tables.create(TableCreate(table_number=3, location_id="ilha", seats=4))

    with pytest.raises(ConflictError, match="already exists"):
        await tables.create(TableCreate(table_number=3, location_id="ilha", seats=2))

    other = await tables.create(TableCreate(table_number=3, location_id="talatona", seats=2))

    assert other.location_id == "talatona"
    assert [t.seats for t in await tables.list_by_location("ilha")] == [4]


async def test_create_rejects_unknown_location(tables):
    with pytest.raises(ValidationError):
        await tables.create(TableCreate(table_number=1, location_id="benguela", seats=4))


async def test_list_is_ordered_by_number(tables):
    for number in (4, 1, 2):
        await tables.create(TableCreate(table_number=number, location_id="ilha", seats=4))

    assert [t.table_number for t in await tables.list_by_location("ilha")] == [1, 2, 4]


async def test_availability_summary(tables):
    first = await tables.create(TableCreate(table_number=1, location_id="ilha", seats=4))
    await tables.create(TableCreate(table_number=2, location_id="ilha", seats=4, status=TableStatus.MAINTENANCE))
    await tables.assign(first.id, "ilha")

    summary = await tables.availability_summary("ilha")

    assert (summary.total, summary.available) == (2, 0)
    assert not summary.has_available


async def test_renumbering_onto_taken_number_is_rejected(tables):
    await tables.create(TableCreate(table_number=1, location_id="ilha", seats=4))
    second = await tables.create(TableCreate(table_number=2, location_id="ilha", seats=4))

    with pytest.raises(ConflictError):
        await tables.update(second.id, TableUpdate(table_number=1))

    moved = await tables.update(second.id, TableUpdate(location_id="movel", table_number=1))
    assert (moved.location_id, moved.table_number) == ("movel", 1)


async def test_assign_is_conditional(tables):
    table = await tables.create(TableCreate(table_number=5, location_id="ilha", seats=4))

    assigned = await tables.assign(table.id, "ilha")
    assert assigned.status == TableStatus.OCCUPIED

    with pytest.raises(ConflictError, match="no longer available"):
        await tables.assign(table.id, "ilha")


async def test_assign_checks_location(tables):
    table = await tables.create(TableCreate(table_number=5, location_id="ilha", seats=4))

    with pytest.raises(ValidationError):
        await tables.assign(table.id, "talatona")


async def test_reserved_table_cannot_be_assigned(tables):
    table = await tables.create(TableCreate(table_number=5, location_id="ilha", seats=4, status=TableStatus.RESERVED))

    with pytest.raises(ConflictError):
        await tables.assign(table.id, "ilha")


async def test_release_makes_table_available(tables):
    table = await tables.create(TableCreate(table_number=5, location_id="ilha", seats=4))
    await tables.assign(table.id, "ilha")

    released = await tables.release(table.id)

    assert released.status == TableStatus.AVAILABLE
    assert await tables.release(9999) is None


async def test_set_status_publishes_event(tables, broker):
    table = await tables.create(TableCreate(table_number=5, location_id="ilha", seats=4))
    broker.published.clear()

    await tables.set_status(table.id, TableStatus.MAINTENANCE)
    await tables.set_status(table.id, TableStatus.MAINTENANCE)

    assert broker.types() == ["tables"]
    assert broker.published[0].data["status"] == "maintenance"


async def test_table_held_by_active_order_cannot_be_deleted(db, broker, tables, menu, make_submission):
    table = await tables.create(TableCreate(table_number=5, location_id="ilha", seats=4))
    orders = OrderService(db, broker)
    order, _ = await orders.create_order(
        make_submission(menu["Tacos al Pastor"], order_type=OrderType.DINE_IN, table_id=table.id)
    )

    with pytest.raises(ConflictError, match="in use"):
        await tables.delete(table.id)

    await orders.transition(order.id, OrderStatus.DELIVERED)
    await tables.delete(table.id)

    with pytest.raises(NotFoundError):
        await tables.get_table(table.id)
