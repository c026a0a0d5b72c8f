"""
SQL Catalog Implementation

Reads and adjusts the ``food_items`` table through the caller's session.

Stock writes are single conditional UPDATE statements. The decrement
carries its own guard (``WHERE stock_quantity >= :qty``) so two
transactions racing for the last unit cannot both succeed: the loser's
UPDATE matches zero rows once the winner's change is visible (or after
it waits on the winner's row lock under Postgres read committed).
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.models import FoodItem
from canteen.services.catalog.base import BaseCatalog, FoodItemSnapshot

logger = logging.getLogger(__name__)


def _snapshot(row) -> FoodItemSnapshot:
    return FoodItemSnapshot(
        id=row.id,
        name=row.name,
        description=row.description,
        price=row.price,
        stock_quantity=row.stock_quantity,
        availability=bool(row.availability),
    )


_SNAPSHOT_COLUMNS = (
    FoodItem.id,
    FoodItem.name,
    FoodItem.description,
    FoodItem.price,
    FoodItem.stock_quantity,
    FoodItem.availability,
)


class SqlCatalog(BaseCatalog):
    """Catalog backed by the shared relational store."""

    @property
    def provider_name(self) -> str:
        return "sql"

    async def get_item(self, db: AsyncSession, food_item_id: int) -> Optional[FoodItemSnapshot]:
        result = await db.execute(
            select(*_SNAPSHOT_COLUMNS).where(FoodItem.id == food_item_id)
        )
        row = result.one_or_none()
        return _snapshot(row) if row else None

    async def get_items(
        self,
        db: AsyncSession,
        food_item_ids: Iterable[int],
    ) -> dict[int, FoodItemSnapshot]:
        ids = set(food_item_ids)
        if not ids:
            return {}
        result = await db.execute(
            select(*_SNAPSHOT_COLUMNS).where(FoodItem.id.in_(ids))
        )
        return {row.id: _snapshot(row) for row in result}

    async def list_available(self, db: AsyncSession) -> list[FoodItemSnapshot]:
        result = await db.execute(
            select(*_SNAPSHOT_COLUMNS)
            .where(FoodItem.availability.is_(True))
            .order_by(FoodItem.name)
        )
        return [_snapshot(row) for row in result]

    async def try_debit(self, db: AsyncSession, food_item_id: int, quantity: int) -> bool:
        if quantity < 1:
            raise ValueError(f"Debit quantity must be positive, got {quantity}")

        result = await db.execute(
            update(FoodItem)
            .where(FoodItem.id == food_item_id, FoodItem.stock_quantity >= quantity)
            .values(stock_quantity=FoodItem.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        taken = result.rowcount == 1
        logger.debug(
            f"Debit food item #{food_item_id} x{quantity}: "
            f"{'ok' if taken else 'short'}"
        )
        return taken

    async def credit(self, db: AsyncSession, food_item_id: int, quantity: int) -> None:
        if quantity < 1:
            raise ValueError(f"Credit quantity must be positive, got {quantity}")

        await db.execute(
            update(FoodItem)
            .where(FoodItem.id == food_item_id)
            .values(stock_quantity=FoodItem.stock_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        logger.debug(f"Credit food item #{food_item_id} x{quantity}")
