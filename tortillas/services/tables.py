"""
Table Allocator

Per-location dine-in tables and their occupancy.

Assignment is a conditional update (available -> occupied in one
statement), so two dine-in orders racing for the same table cannot both
win: the later one gets a ConflictError instead of double-booking.
"""

import logging
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tortillas.core.config import get_settings
from tortillas.core.errors import ConflictError, NotFoundError, ValidationError
from tortillas.models import DiningTable, Order, OrderType, TableStatus, TERMINAL_STATUSES, utcnow
from tortillas.schemas import EventType, TableAvailability, TableCreate, TableResponse, TableUpdate
from tortillas.services.events import BaseEventBroker, get_event_broker

logger = logging.getLogger(__name__)


SAMPLE_TABLES = {
    "ilha": [(1, 4), (2, 2), (3, 6), (4, 4)],
    "talatona": [(1, 6), (2, 4), (3, 4)],
}


class TableService:
    """Table records and occupancy for one database session."""

    def __init__(self, db: AsyncSession, broker: Optional[BaseEventBroker] = None):
        self.db = db
        self.broker = broker or get_event_broker()
        self.settings = get_settings()

    # =========================================================================
    # READS
    # =========================================================================

    async def list_by_location(self, location_id: Optional[str] = None) -> list[DiningTable]:
        query = select(DiningTable).order_by(DiningTable.location_id, DiningTable.table_number)
        if location_id:
            query = query.where(DiningTable.location_id == location_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def availability_summary(self, location_id: str) -> TableAvailability:
        tables = await self.list_by_location(location_id)
        return TableAvailability(
            location_id=location_id,
            total=len(tables),
            available=sum(1 for t in tables if t.status == TableStatus.AVAILABLE),
            tables=[TableResponse.model_validate(t) for t in tables],
        )

    async def get_table(self, table_id: int) -> DiningTable:
        table = await self.db.get(DiningTable, table_id)
        if table is None:
            raise NotFoundError(f"Table #{table_id} not found")
        return table

    async def _number_taken(
        self,
        location_id: str,
        table_number: int,
        exclude_id: Optional[int] = None,
    ) -> bool:
        query = select(DiningTable.id).where(
            DiningTable.location_id == location_id,
            DiningTable.table_number == table_number,
        )
        if exclude_id is not None:
            query = query.where(DiningTable.id != exclude_id)
        result = await self.db.execute(query)
        return result.first() is not None

    def _duplicate(self, location_id: str, table_number: int) -> ConflictError:
        return ConflictError(
            f"Table {table_number} already exists at location '{location_id}'",
            suggestion="Pick a different table number",
        )

    def _check_location(self, location_id: str) -> None:
        if not self.settings.is_known_location(location_id):
            raise ValidationError(f"Unknown location '{location_id}'")

    # =========================================================================
    # ADMIN WRITES
    # =========================================================================

    async def create(self, data: TableCreate) -> DiningTable:
        """Create a table; the number must be free within its location."""
        self._check_location(data.location_id)
        if await self._number_taken(data.location_id, data.table_number):
            raise self._duplicate(data.location_id, data.table_number)

        table = DiningTable(**data.model_dump())
        self.db.add(table)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race against another create with the same number
            await self.db.rollback()
            raise self._duplicate(data.location_id, data.table_number)

        await self.db.refresh(table)
        logger.info(f"Table {table.location_id}#{table.table_number} created (id={table.id})")
        await self._announce("created", table)
        return table

    async def update(self, table_id: int, data: TableUpdate) -> DiningTable:
        table = await self.get_table(table_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        location_id = changes.get("location_id", table.location_id)
        table_number = changes.get("table_number", table.table_number)
        if "location_id" in changes:
            self._check_location(location_id)
        if (location_id, table_number) != (table.location_id, table.table_number):
            if await self._number_taken(location_id, table_number, exclude_id=table.id):
                raise self._duplicate(location_id, table_number)

        for field, value in changes.items():
            setattr(table, field, value)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise self._duplicate(location_id, table_number)

        await self.db.refresh(table)
        logger.info(f"Table #{table.id} updated: {changes}")
        await self._announce("updated", table)
        return table

    async def set_status(self, table_id: int, status: TableStatus) -> DiningTable:
        """Manual override from the admin table screen."""
        table = await self.get_table(table_id)
        if table.status == status:
            return table

        previous = table.status
        table.status = status
        await self.db.commit()
        await self.db.refresh(table)
        logger.info(f"Table {table.location_id}#{table.table_number}: {previous.value} -> {status.value} (manual)")
        await self._announce("status", table)
        return table

    async def delete(self, table_id: int) -> None:
        table = await self.get_table(table_id)

        active = await self.db.execute(
            select(func.count(Order.id)).where(
                Order.table_id == table_id,
                Order.order_type == OrderType.DINE_IN,
                Order.status.not_in(list(TERMINAL_STATUSES)),
            )
        )
        if (active.scalar() or 0) > 0:
            raise ConflictError(
                f"Table {table.table_number} is in use by an active order",
                suggestion="Finish or cancel the order first",
            )

        await self.db.delete(table)
        await self.db.commit()
        logger.info(f"Table {table.location_id}#{table.table_number} deleted")
        await self._announce("deleted", table)

    # =========================================================================
    # OCCUPANCY (called inside order transactions, no commit here)
    # =========================================================================

    async def assign(self, table_id: int, location_id: str) -> DiningTable:
        """
        Mark a table occupied if, and only if, it is still available.

        Raises:
            ValidationError: the table does not exist at ``location_id``
            ConflictError: the table is no longer available
        """
        table = await self.db.get(DiningTable, table_id)
        if table is None or table.location_id != location_id:
            raise ValidationError(f"Table #{table_id} does not exist at location '{location_id}'")

        result = await self.db.execute(
            update(DiningTable)
            .where(
                DiningTable.id == table_id,
                DiningTable.status == TableStatus.AVAILABLE,
            )
            .values(status=TableStatus.OCCUPIED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.refresh(table)
            raise ConflictError(
                f"Table {table.table_number} is no longer available ({table.status.value})",
                suggestion="Choose a different table",
            )

        await self.db.refresh(table)
        logger.info(f"Table {location_id}#{table.table_number} assigned")
        return table

    async def release(self, table_id: int) -> Optional[DiningTable]:
        table = await self.db.get(DiningTable, table_id)
        if table is None:
            logger.warning(f"Release of missing table #{table_id} ignored")
            return None

        await self.db.execute(
            update(DiningTable)
            .where(DiningTable.id == table_id)
            .values(status=TableStatus.AVAILABLE, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(table)
        logger.info(f"Table {table.location_id}#{table.table_number} released")
        return table

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _announce(self, action: str, table: DiningTable) -> None:
        await self.broker.publish(EventType.TABLES, {
            "action": action,
            "table_id": table.id,
            "location_id": table.location_id,
            "status": table.status.value,
        })

    async def seed_sample_tables(self) -> int:
        """Insert sample tables when none exist. Returns tables added."""
        existing = await self.db.execute(select(DiningTable.id).limit(1))
        if existing.first() is not None:
            return 0

        count = 0
        for location_id, tables in SAMPLE_TABLES.items():
            for number, seats in tables:
                self.db.add(DiningTable(table_number=number, location_id=location_id, seats=seats))
                count += 1
        await self.db.commit()
        logger.info(f"Seeded {count} sample tables")
        return count
