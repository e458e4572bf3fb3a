"""
Catalog Reader

Read access to the orderable menu. The ordering flow never changes menu
items; the create/update/delete helpers back the admin menu screen.
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tortillas.core.errors import NotFoundError
from tortillas.models import MenuItem
from tortillas.schemas import MenuItemCreate, MenuItemUpdate

logger = logging.getLogger(__name__)


SAMPLE_MENU = [
    {
        "name": "Tacos al Pastor",
        "description": "Porco marinado com ananás, cebola e coentro",
        "price": Decimal("1500"),
        "category": "Tacos",
        "preparation_time": 15,
        "customizations": ["sem cebola", "extra coentro", "picante"],
    },
    {
        "name": "Tacos de Carnitas",
        "description": "Tacos tradicionais mexicanos com carne de porco desfiada, cebola e coentro",
        "price": Decimal("1500"),
        "category": "Tacos",
        "preparation_time": 15,
        "customizations": ["sem cebola", "extra coentro", "picante"],
    },
    {
        "name": "Quesadilla de Queijo",
        "description": "Tortilla de farinha recheada com queijo derretido e servida com molho",
        "price": Decimal("1200"),
        "category": "Quesadillas",
        "preparation_time": 10,
        "customizations": ["extra queijo", "com guacamole"],
    },
    {
        "name": "Burrito de Frango",
        "description": "Tortilla recheada com frango grelhado, arroz, feijão e pico de gallo",
        "price": Decimal("2200"),
        "category": "Burritos",
        "preparation_time": 20,
        "customizations": ["sem feijão", "extra queijo", "picante"],
    },
    {
        "name": "Nachos Supremos",
        "description": "Nachos com queijo, guacamole, natas e jalapeños",
        "price": Decimal("1800"),
        "category": "Entradas",
        "preparation_time": 12,
        "customizations": ["sem jalapeños", "extra guacamole"],
    },
    {
        "name": "Limonada Natural",
        "description": "Limonada feita na hora",
        "price": Decimal("600"),
        "category": "Bebidas",
        "preparation_time": 5,
        "customizations": [],
    },
]


class CatalogService:
    """Menu lookups for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_items(
        self,
        category: Optional[str] = None,
        available_only: bool = False,
    ) -> list[MenuItem]:
        query = select(MenuItem).order_by(MenuItem.category, MenuItem.name)
        if category:
            query = query.where(MenuItem.category == category)
        if available_only:
            query = query.where(MenuItem.available.is_(True))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_item(self, item_id: int) -> MenuItem:
        item = await self.db.get(MenuItem, item_id)
        if item is None:
            raise NotFoundError(f"Menu item #{item_id} not found")
        return item

    async def items_by_id(self, ids: Iterable[int]) -> dict[int, MenuItem]:
        wanted = set(ids)
        if not wanted:
            return {}
        result = await self.db.execute(select(MenuItem).where(MenuItem.id.in_(wanted)))
        return {item.id: item for item in result.scalars().all()}

    # =========================================================================
    # ADMIN
    # =========================================================================

    async def create_item(self, data: MenuItemCreate) -> MenuItem:
        item = MenuItem(**data.model_dump())
        self.db.add(item)
        await self.db.commit()
        await self.db.refresh(item)
        logger.info(f"Menu item #{item.id} '{item.name}' created")
        return item

    async def update_item(self, item_id: int, data: MenuItemUpdate) -> MenuItem:
        item = await self.get_item(item_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(item, field, value)
        await self.db.commit()
        await self.db.refresh(item)
        logger.info(f"Menu item #{item.id} updated")
        return item

    async def delete_item(self, item_id: int) -> None:
        item = await self.get_item(item_id)
        await self.db.delete(item)
        await self.db.commit()
        logger.info(f"Menu item #{item_id} deleted")

    async def seed_sample_menu(self) -> int:
        """Insert the sample menu if the catalog is empty. Returns items added."""
        existing = await self.db.execute(select(MenuItem.id).limit(1))
        if existing.first() is not None:
            return 0

        self.db.add_all(MenuItem(**entry) for entry in SAMPLE_MENU)
        await self.db.commit()
        logger.info(f"Seeded {len(SAMPLE_MENU)} sample menu items")
        return len(SAMPLE_MENU)
