"""
Cart Aggregator

Owns the (user, food item) -> quantity arena. Adding to the cart is an
admission check against current stock, not a reservation: stock is
never touched here and is verified again when the order is placed.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.config import get_settings
from canteen.core.exceptions import InsufficientStock, NotFound, StockShortage
from canteen.models import CartItem, FoodItem
from canteen.services.catalog import BaseCatalog, FoodItemSnapshot, get_catalog
from canteen.services.transactions import RetryableRace, run_in_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    """A cart row joined with the live catalog entry it points at."""
    cart_item_id: int
    user_id: str
    quantity: int
    item: FoodItemSnapshot

    @property
    def food_item_id(self) -> int:
        return self.item.id

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def price(self) -> Decimal:
        return self.item.price

    @property
    def stock_quantity(self) -> int:
        return self.item.stock_quantity

    @property
    def availability(self) -> bool:
        return self.item.availability

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.item.price

    @property
    def is_orderable(self) -> bool:
        """Whether current stock still covers this line."""
        return self.quantity <= self.item.orderable_quantity


async def load_cart(db: AsyncSession, user_id: str) -> list[CartLine]:
    """
    Read a user's cart joined with live food item fields, oldest line first.

    Shared by cart listing and order placement so both see the same
    picture of price and stock.
    """
    result = await db.execute(
        select(
            CartItem.id.label("cart_item_id"),
            CartItem.user_id,
            CartItem.quantity,
            FoodItem.id,
            FoodItem.name,
            FoodItem.description,
            FoodItem.price,
            FoodItem.stock_quantity,
            FoodItem.availability,
        )
        .join(FoodItem, FoodItem.id == CartItem.food_item_id)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.id)
    )
    return [
        CartLine(
            cart_item_id=row.cart_item_id,
            user_id=row.user_id,
            quantity=row.quantity,
            item=FoodItemSnapshot(
                id=row.id,
                name=row.name,
                description=row.description,
                price=row.price,
                stock_quantity=row.stock_quantity,
                availability=bool(row.availability),
            ),
        )
        for row in result
    ]


class CartService:
    """
    Cart CRUD with a stock ceiling on admission.

    Each operation touches a single cart row; adds use a conditional
    update on that row so two concurrent adds cannot both slip past
    the ceiling check with the same starting quantity.
    """

    def __init__(self, catalog: Optional[BaseCatalog] = None, max_retries: Optional[int] = None):
        settings = get_settings()
        self.catalog = catalog or get_catalog()
        self.max_retries = settings.cart_max_retries if max_retries is None else max_retries

    async def add_item(
        self,
        db: AsyncSession,
        user_id: str,
        food_item_id: int,
        quantity: int,
    ) -> CartLine:
        """
        Add ``quantity`` units of a food item to the user's cart.

        Creates the row if absent, otherwise increments it.

        Raises:
            NotFound: Unknown food item
            InsufficientStock: Cart quantity would exceed current stock
        """
        if quantity < 1:
            raise ValueError(f"Quantity must be at least 1, got {quantity}")

        async def work() -> CartLine:
            item = await self.catalog.get_item(db, food_item_id)
            if item is None:
                raise NotFound(f"Food item #{food_item_id} not found")

            existing = await self._find_row(db, user_id, food_item_id)
            current = existing.quantity if existing else 0
            wanted = current + quantity
            available = item.orderable_quantity

            if wanted > available:
                remaining = max(available - current, 0)
                if current:
                    detail = f"Cannot add {quantity} more {item.name}. Only {remaining} more available."
                else:
                    detail = f"Not enough stock for {item.name}. Available: {available}"
                raise InsufficientStock(
                    [StockShortage(item.id, item.name, wanted, available)],
                    detail=detail,
                )

            if existing:
                result = await db.execute(
                    update(CartItem)
                    .where(CartItem.id == existing.id, CartItem.quantity == current)
                    .values(quantity=wanted)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise RetryableRace(f"cart row #{existing.id} changed concurrently")
                cart_item_id = existing.id
            else:
                row = CartItem(user_id=user_id, food_item_id=food_item_id, quantity=wanted)
                db.add(row)
                try:
                    await db.flush()
                except IntegrityError as exc:
                    raise RetryableRace(f"cart row for item #{food_item_id} inserted concurrently") from exc
                cart_item_id = row.id

            return CartLine(cart_item_id=cart_item_id, user_id=user_id, quantity=wanted, item=item)

        line = await run_in_transaction(
            db, work, attempts=self.max_retries + 1, operation="Add to cart"
        )
        logger.info(
            f"Cart: user {user_id} now has {line.quantity} x {line.name} "
            f"(cart item #{line.cart_item_id})"
        )
        return line

    async def _find_row(self, db: AsyncSession, user_id: str, food_item_id: int):
        """The user's cart row (id, quantity) for a food item, or None."""
        result = await db.execute(
            select(CartItem.id, CartItem.quantity).where(
                CartItem.user_id == user_id,
                CartItem.food_item_id == food_item_id,
            )
        )
        return result.one_or_none()

    async def set_quantity(
        self,
        db: AsyncSession,
        cart_item_id: int,
        quantity: int,
    ) -> Optional[CartLine]:
        """
        Replace a cart row's quantity.

        A quantity below 1 removes the row. No stock check happens here:
        the cart is a wish list and placement re-validates.

        Returns:
            The updated line, or None if the row was removed

        Raises:
            NotFound: Unknown cart row (only when not removing)
        """
        if quantity < 1:
            await self.remove_item(db, cart_item_id)
            return None

        async def work() -> CartLine:
            result = await db.execute(
                update(CartItem)
                .where(CartItem.id == cart_item_id)
                .values(quantity=quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFound(f"Cart item #{cart_item_id} not found")

            row = (
                await db.execute(
                    select(CartItem.user_id, CartItem.food_item_id).where(CartItem.id == cart_item_id)
                )
            ).one()
            item = await self.catalog.get_item(db, row.food_item_id)
            return CartLine(cart_item_id=cart_item_id, user_id=row.user_id, quantity=quantity, item=item)

        line = await run_in_transaction(
            db, work, attempts=self.max_retries + 1, operation="Update cart"
        )
        logger.info(f"Cart: item #{cart_item_id} set to {quantity}")
        return line

    async def remove_item(self, db: AsyncSession, cart_item_id: int) -> bool:
        """
        Delete a cart row. Removing a row that is already gone is a no-op.

        Returns:
            bool: True if a row was deleted
        """
        async def work() -> bool:
            result = await db.execute(
                delete(CartItem)
                .where(CartItem.id == cart_item_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

        removed = await run_in_transaction(
            db, work, attempts=self.max_retries + 1, operation="Remove from cart"
        )
        if removed:
            logger.info(f"Cart: item #{cart_item_id} removed")
        return removed

    async def list_cart(self, db: AsyncSession, user_id: str) -> list[CartLine]:
        return await load_cart(db, user_id)

    async def count(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            select(func.count(CartItem.id)).where(CartItem.user_id == user_id)
        )
        return result.scalar() or 0


@lru_cache()
def get_cart_service() -> CartService:
    """Get the shared cart service instance."""
    return CartService()


__all__ = ["CartLine", "CartService", "get_cart_service", "load_cart"]
