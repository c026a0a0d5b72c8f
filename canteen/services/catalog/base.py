"""
Catalog View Abstract Base Class

Defines the contract the ordering engine needs from the catalog:
read food item snapshots, and adjust stock with conditional writes.
Catalog management itself (creating items, editing prices, images)
lives elsewhere; the engine never changes anything but stock.

Every write method runs on the caller's session so that stock changes
commit or roll back together with the order rows they belong to.

Design Pattern: Strategy Pattern
    - The services depend on BaseCatalog, not on a concrete table layout
    - Tests can swap in an implementation that injects failures
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class FoodItemSnapshot:
    """
    Point-in-time view of a catalog entry.

    Attributes:
        id: Food item identifier
        name: Display name (used in error messages)
        price: Current unit price
        stock_quantity: Units on hand when the snapshot was read
        availability: Whether the catalog currently offers the item
    """
    id: int
    name: str
    price: Decimal
    stock_quantity: int
    availability: bool
    description: Optional[str] = None

    @property
    def orderable_quantity(self) -> int:
        """Units that can be ordered right now; unavailable items offer none."""
        return self.stock_quantity if self.availability else 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "stock_quantity": self.stock_quantity,
            "availability": self.availability,
        }


class BaseCatalog(ABC):
    """
    Abstract base class for catalog access.

    Example:
        >>> catalog = get_catalog()
        >>> item = await catalog.get_item(db, 7)
        >>> if await catalog.try_debit(db, 7, 2):
        ...     print("two units taken")
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the catalog backend."""
        pass

    @abstractmethod
    async def get_item(self, db: AsyncSession, food_item_id: int) -> Optional[FoodItemSnapshot]:
        """
        Read one food item.

        Returns:
            FoodItemSnapshot, or None if the item does not exist
        """
        pass

    @abstractmethod
    async def get_items(
        self,
        db: AsyncSession,
        food_item_ids: Iterable[int],
    ) -> dict[int, FoodItemSnapshot]:
        """Read several food items at once, keyed by id. Unknown ids are omitted."""
        pass

    @abstractmethod
    async def list_available(self, db: AsyncSession) -> list[FoodItemSnapshot]:
        """List items currently offered on the menu."""
        pass

    @abstractmethod
    async def try_debit(self, db: AsyncSession, food_item_id: int, quantity: int) -> bool:
        """
        Compare-and-decrement stock.

        Takes ``quantity`` units in a single conditional write that only
        applies while ``stock_quantity >= quantity``.

        Returns:
            bool: True if the units were taken, False if stock was short
        """
        pass

    @abstractmethod
    async def credit(self, db: AsyncSession, food_item_id: int, quantity: int) -> None:
        """Return ``quantity`` units to stock."""
        pass
