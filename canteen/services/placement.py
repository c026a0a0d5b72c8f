"""
Order Placement Transaction

Drains a user's cart into a new Order and its OrderItem rows while
taking the ordered units out of stock, as one all-or-nothing unit:

    1. snapshot the cart joined with current price and stock
    2. validate every line against the snapshot stock
    3. insert the order (status Pending)
    4. insert one OrderItem per line, priced from the snapshot
    5. compare-and-decrement stock for every line
    6. delete the snapshotted cart rows (a row that is gone or whose
       quantity changed means another request got there first: retry)
    7. commit

If step 5 finds that a concurrent order already took the stock, the
whole attempt is rolled back and retried from step 1. Once the budget
is spent the caller gets InsufficientStock naming the contended items.
"""

import logging
from functools import lru_cache
from typing import Optional

from sqlalchemy import and_, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.config import get_settings
from canteen.core.exceptions import EmptyCart, InsufficientStock, StockShortage
from canteen.models import CartItem, Order, OrderItem, OrderStatus
from canteen.services.cart import CartLine, load_cart
from canteen.services.catalog import BaseCatalog, get_catalog
from canteen.services.ledger import OrderSummary
from canteen.services.transactions import RetryableRace, run_in_transaction

logger = logging.getLogger(__name__)


class OrderPlacementService:
    """
    Converts carts into orders against finite stock.

    Attributes:
        catalog: Catalog view used for the conditional stock writes
        max_retries: Retries after a lost stock race before it is surfaced
    """

    def __init__(self, catalog: Optional[BaseCatalog] = None, max_retries: Optional[int] = None):
        settings = get_settings()
        self.catalog = catalog or get_catalog()
        self.max_retries = settings.placement_max_retries if max_retries is None else max_retries

    async def place_order(self, db: AsyncSession, user_id: str) -> OrderSummary:
        """
        Place an order from everything in the user's cart.

        Args:
            db: Session with no transaction in progress
            user_id: Caller-supplied user identifier

        Returns:
            OrderSummary: The committed order and its lines

        Raises:
            EmptyCart: Nothing in the cart
            InsufficientStock: A line exceeds stock (no writes happen)
            Conflict: The store kept aborting the transaction
        """
        summary = await run_in_transaction(
            db,
            lambda: self._attempt(db, user_id),
            attempts=self.max_retries + 1,
            operation=f"Place order for user {user_id}",
        )
        logger.info(
            f"Order #{summary.id} placed for user {user_id}: "
            f"{summary.item_count} line(s), subtotal {summary.subtotal}"
        )
        return summary

    async def _attempt(self, db: AsyncSession, user_id: str) -> OrderSummary:
        # Step 1: snapshot. Prices are never re-read after this point.
        lines = await load_cart(db, user_id)
        if not lines:
            raise EmptyCart(f"Cart is empty for user {user_id}")

        # Step 2: validate against the snapshot
        shortages = [
            StockShortage(line.food_item_id, line.name, line.quantity, line.item.orderable_quantity)
            for line in lines
            if not line.is_orderable
        ]
        if shortages:
            logger.warning(
                f"Order for user {user_id} rejected: short on "
                f"{[s.food_item_id for s in shortages]}"
            )
            raise InsufficientStock(shortages)

        # Steps 3-4: order header and frozen-price lines
        order = await self._create_order(db, user_id, lines)

        # Step 5: compare-and-decrement, in id order so concurrent
        # placements lock food item rows in the same sequence
        await self._debit_stock(db, lines)

        # Step 6
        await self._clear_cart(db, user_id, lines)

        names = {line.food_item_id: line.name for line in lines}
        return OrderSummary.from_order(order, names)

    async def _create_order(self, db: AsyncSession, user_id: str, lines: list[CartLine]) -> Order:
        order = Order(
            user_id=user_id,
            status=OrderStatus.PENDING,
            items=[
                OrderItem(
                    food_item_id=line.food_item_id,
                    quantity=line.quantity,
                    price_at_order=line.price,
                )
                for line in lines
            ],
        )
        db.add(order)
        await db.flush()
        return order

    async def _debit_stock(self, db: AsyncSession, lines: list[CartLine]) -> None:
        for line in sorted(lines, key=lambda line: line.food_item_id):
            if not await self.catalog.try_debit(db, line.food_item_id, line.quantity):
                current = await self.catalog.get_item(db, line.food_item_id)
                available = current.orderable_quantity if current else 0
                raise RetryableRace(
                    f"stock for food item #{line.food_item_id} taken concurrently",
                    on_exhausted=InsufficientStock(
                        [StockShortage(line.food_item_id, line.name, line.quantity, available)]
                    ),
                )

    async def _clear_cart(self, db: AsyncSession, user_id: str, lines: list[CartLine]) -> None:
        # Each snapshotted row must still exist with the snapshotted quantity
        result = await db.execute(
            delete(CartItem)
            .where(
                CartItem.user_id == user_id,
                or_(*[
                    and_(CartItem.id == line.cart_item_id, CartItem.quantity == line.quantity)
                    for line in lines
                ]),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(lines):
            raise RetryableRace(f"cart for user {user_id} changed while the order was being placed")


@lru_cache()
def get_placement_service() -> OrderPlacementService:
    """Get the shared order placement service instance."""
    return OrderPlacementService()
