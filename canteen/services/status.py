"""
Order Status Machine

Moves orders through Pending -> Processing -> Ready -> Completed, with
Cancelled reachable from any open state, and keeps stock in step:

    - entering Cancelled returns every ordered unit to stock
    - leaving Cancelled takes the units again (compare-and-decrement);
      if stock no longer covers them the transition is refused
    - every other move leaves stock alone

The status write is ``UPDATE orders SET status = :new WHERE id = :id
AND status = :old``. A duplicate or concurrent request that finds the
status already moved matches no rows, re-reads, and becomes a no-op,
so each logical transition adjusts stock exactly once.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.config import get_settings
from canteen.core.exceptions import (
    InsufficientStock,
    InvalidStatus,
    InvalidTransition,
    NotFound,
    StockShortage,
)
from canteen.models import Order, OrderItem, OrderStatus
from canteen.services.catalog import BaseCatalog, get_catalog
from canteen.services.transactions import RetryableRace, run_in_transaction

logger = logging.getLogger(__name__)


# Forward path; Cancelled sits outside it
FORWARD_PATH = (
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
)


class StockLine(Protocol):
    food_item_id: int
    quantity: int


def stock_deltas(
    old: OrderStatus,
    new: OrderStatus,
    items: Iterable[StockLine],
) -> dict[int, int]:
    """
    Stock adjustment implied by a status change, per food item.

    Positive values return units to stock, negative values take them.
    Pure: no storage access.

    Example:
        >>> stock_deltas(OrderStatus.PENDING, OrderStatus.CANCELLED, items)
        {7: 2, 9: 1}
    """
    if old == new:
        return {}
    if new == OrderStatus.CANCELLED:
        sign = 1
    elif old == OrderStatus.CANCELLED:
        sign = -1
    else:
        return {}

    deltas: dict[int, int] = defaultdict(int)
    for item in items:
        deltas[item.food_item_id] += sign * item.quantity
    return {food_item_id: delta for food_item_id, delta in deltas.items() if delta}


def check_transition(old: OrderStatus, new: OrderStatus) -> None:
    """
    Refuse moves the workflow does not allow.

    Completed is final. Cancelled can be reopened into any open state
    (Pending, Processing, Ready). Open orders can move forward along
    the path, skipping steps, or be cancelled.

    Raises:
        InvalidTransition: The move is not allowed
    """
    if old == new:
        return
    if old == OrderStatus.COMPLETED:
        raise InvalidTransition(f"Order is already {old.value}; it cannot become {new.value}")
    if new == OrderStatus.CANCELLED:
        return
    if old == OrderStatus.CANCELLED:
        if new == OrderStatus.COMPLETED:
            raise InvalidTransition("A cancelled order must be reopened before it is completed")
        return
    if FORWARD_PATH.index(new) < FORWARD_PATH.index(old):
        raise InvalidTransition(f"Order cannot move back from {old.value} to {new.value}")


@dataclass(frozen=True)
class StatusChange:
    """
    Outcome of a status request.

    Attributes:
        order_id: Order that was addressed
        previous_status: Status found when the request was applied
        status: Status after the request
        changed: False when the order already had the requested status
        stock_deltas: Stock adjustment applied, per food item
    """
    order_id: int
    previous_status: OrderStatus
    status: OrderStatus
    changed: bool
    stock_deltas: dict[int, int] = field(default_factory=dict)

    @property
    def restocked(self) -> bool:
        return any(delta > 0 for delta in self.stock_deltas.values())


class OrderStatusService:
    """Applies status transitions and their compensating stock writes."""

    def __init__(self, catalog: Optional[BaseCatalog] = None, max_retries: Optional[int] = None):
        settings = get_settings()
        self.catalog = catalog or get_catalog()
        self.max_retries = settings.status_max_retries if max_retries is None else max_retries

    async def set_status(
        self,
        db: AsyncSession,
        order_id: int,
        new_status: "str | OrderStatus",
    ) -> StatusChange:
        """
        Move an order to ``new_status``.

        Args:
            db: Session with no transaction in progress
            order_id: Order to update
            new_status: Target status (case-insensitive string or enum)

        Returns:
            StatusChange: What happened, including any stock adjustment

        Raises:
            InvalidStatus: Unknown status value
            InvalidTransition: Move not allowed from the current status
            NotFound: Unknown order
            InsufficientStock: Reopening a cancelled order needs stock
                that is no longer there (status left unchanged)
            Conflict: Kept losing to concurrent updates
        """
        try:
            target = OrderStatus.parse(new_status)
        except ValueError as exc:
            raise InvalidStatus(str(exc)) from exc

        change = await run_in_transaction(
            db,
            lambda: self._attempt(db, order_id, target),
            attempts=self.max_retries + 1,
            operation=f"Set order #{order_id} status",
        )

        if change.changed:
            logger.info(
                f"Order #{order_id}: {change.previous_status.value} -> {change.status.value}"
                + (f" (stock {change.stock_deltas})" if change.stock_deltas else "")
            )
        else:
            logger.info(f"Order #{order_id} already {change.status.value}; nothing to do")
        return change

    async def _attempt(self, db: AsyncSession, order_id: int, target: OrderStatus) -> StatusChange:
        current = await self._current_status(db, order_id)
        if current is None:
            raise NotFound(f"Order #{order_id} not found")

        if current == target:
            return StatusChange(order_id, current, target, changed=False)

        check_transition(current, target)

        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise RetryableRace(f"order #{order_id} left {current.value} concurrently")

        items = (
            await db.execute(
                select(OrderItem.food_item_id, OrderItem.quantity).where(OrderItem.order_id == order_id)
            )
        ).all()
        deltas = stock_deltas(current, target, items)
        await self._apply(db, deltas)

        return StatusChange(order_id, current, target, changed=True, stock_deltas=deltas)

    async def _current_status(self, db: AsyncSession, order_id: int) -> Optional[OrderStatus]:
        result = await db.execute(select(Order.status).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def _apply(self, db: AsyncSession, deltas: dict[int, int]) -> None:
        short: dict[int, int] = {}
        for food_item_id in sorted(deltas):
            delta = deltas[food_item_id]
            if delta > 0:
                await self.catalog.credit(db, food_item_id, delta)
            elif not await self.catalog.try_debit(db, food_item_id, -delta):
                short[food_item_id] = -delta

        if short:
            current = await self.catalog.get_items(db, short)
            raise InsufficientStock([
                StockShortage(
                    food_item_id,
                    current[food_item_id].name if food_item_id in current else None,
                    requested,
                    current[food_item_id].orderable_quantity if food_item_id in current else 0,
                )
                for food_item_id, requested in short.items()
            ])


@lru_cache()
def get_status_service() -> OrderStatusService:
    """Get the shared order status service instance."""
    return OrderStatusService()
