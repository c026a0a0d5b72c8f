"""
Order Ledger

Read side of committed orders: single orders, a user's current and
past orders, admin listings, bills and daily revenue.

Every amount here is derived from OrderItem rows (quantity times
price_at_order), never from live catalog prices, so a price change in
the catalog cannot move an existing order's total.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from functools import lru_cache
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.config import get_settings
from canteen.core.exceptions import NotFound
from canteen.models import ACTIVE_STATUSES, Order, OrderItem, OrderStatus
from canteen.services.catalog import BaseCatalog, get_catalog

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round an amount to cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderLine:
    id: int
    food_item_id: int
    name: Optional[str]
    quantity: int
    price_at_order: Decimal

    @property
    def line_total(self) -> Decimal:
        return to_money(self.quantity * self.price_at_order)


@dataclass(frozen=True)
class OrderSummary:
    """An order with its immutable lines and computed subtotal."""
    id: int
    user_id: str
    status: OrderStatus
    created_at: Optional[datetime]
    lines: list[OrderLine] = field(default_factory=list)

    @property
    def items(self) -> list[OrderLine]:
        return self.lines

    @property
    def subtotal(self) -> Decimal:
        return to_money(sum((line.line_total for line in self.lines), Decimal("0")))

    @property
    def total_amount(self) -> Decimal:
        return self.subtotal

    @property
    def item_count(self) -> int:
        return len(self.lines)

    @classmethod
    def from_order(cls, order: Order, names: Optional[dict[int, str]] = None) -> "OrderSummary":
        names = names or {}
        return cls(
            id=order.id,
            user_id=order.user_id,
            status=order.status,
            created_at=order.created_at,
            lines=[
                OrderLine(
                    id=item.id,
                    food_item_id=item.food_item_id,
                    name=names.get(item.food_item_id),
                    quantity=item.quantity,
                    price_at_order=to_money(item.price_at_order),
                )
                for item in order.items
            ],
        )


@dataclass(frozen=True)
class Bill:
    """
    Customer-facing totals for an order.

    Attributes:
        subtotal: Sum of quantity * price_at_order
        tax: Flat tax on the subtotal
        delivery_fee: Flat delivery charge
        total: subtotal + tax + delivery_fee
        currency: Currency code
    """
    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    total: Decimal
    currency: str


def build_bill(
    summary: OrderSummary,
    tax_rate: Optional[Decimal] = None,
    delivery_fee: Optional[Decimal] = None,
    currency: Optional[str] = None,
) -> Bill:
    """Compute the bill for an order from its ledger lines."""
    settings = get_settings()
    tax_rate = settings.tax_rate if tax_rate is None else tax_rate
    delivery_fee = settings.delivery_fee if delivery_fee is None else delivery_fee

    subtotal = summary.subtotal
    tax = to_money(subtotal * Decimal(tax_rate))
    fee = to_money(delivery_fee)
    return Bill(
        subtotal=subtotal,
        tax=tax,
        delivery_fee=fee,
        total=subtotal + tax + fee,
        currency=currency or settings.currency,
    )


class OrderLedger:
    """Read accessors over Order and OrderItem rows."""

    def __init__(self, catalog: Optional[BaseCatalog] = None):
        self.catalog = catalog or get_catalog()

    async def _summaries(self, db: AsyncSession, orders: Iterable[Order]) -> list[OrderSummary]:
        orders = list(orders)
        food_item_ids = {item.food_item_id for order in orders for item in order.items}
        items = await self.catalog.get_items(db, food_item_ids)
        names = {item_id: snapshot.name for item_id, snapshot in items.items()}
        return [OrderSummary.from_order(order, names) for order in orders]

    async def get_order(self, db: AsyncSession, order_id: int) -> OrderSummary:
        """
        Fetch one order with its lines.

        Raises:
            NotFound: Unknown order
        """
        result = await db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order #{order_id} not found")
        return (await self._summaries(db, [order]))[0]

    async def get_current_order(self, db: AsyncSession, user_id: str) -> Optional[OrderSummary]:
        """Most recent order the user is still waiting on, if any."""
        result = await db.execute(
            select(Order)
            .where(Order.user_id == user_id, Order.status.in_(ACTIVE_STATUSES))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(1)
        )
        order = result.scalar_one_or_none()
        if order is None:
            return None
        return (await self._summaries(db, [order]))[0]

    async def list_user_orders(self, db: AsyncSession, user_id: str) -> list[OrderSummary]:
        """A user's order history, newest first."""
        result = await db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return await self._summaries(db, result.scalars().all())

    async def list_orders(
        self,
        db: AsyncSession,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> list[OrderSummary]:
        """All orders (optionally one status), newest first."""
        query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        if status is not None:
            query = query.where(Order.status == status)
        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)

        result = await db.execute(query)
        return await self._summaries(db, result.scalars().all())

    async def count_orders(self, db: AsyncSession, status: Optional[OrderStatus] = None) -> int:
        query = select(func.count(Order.id))
        if status is not None:
            query = query.where(Order.status == status)
        result = await db.execute(query)
        return result.scalar() or 0

    async def revenue_for_day(self, db: AsyncSession, day: Optional[date] = None) -> Decimal:
        """
        Sum of subtotals of the orders created on ``day`` (UTC).
        Cancelled orders do not count.
        """
        day = day or datetime.now(timezone.utc).date()
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)

        result = await db.execute(
            select(OrderItem.quantity, OrderItem.price_at_order)
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                Order.created_at >= start,
                Order.created_at < end,
                Order.status != OrderStatus.CANCELLED,
            )
        )
        revenue = sum(
            (to_money(row.quantity * row.price_at_order) for row in result),
            Decimal("0"),
        )
        return to_money(revenue)


@lru_cache()
def get_order_ledger() -> OrderLedger:
    """Get the shared order ledger instance."""
    return OrderLedger()
