"""
Store Verification Script

Checks the order store for integrity after a simulation run.
Run from project root: python scripts/verify.py
"""

import asyncio
import sys
from datetime import datetime

from sqlalchemy import func, select

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from canteen.database import async_session_maker, engine
from canteen.models import CartItem, FoodItem, Order, OrderItem, OrderStatus


async def verify_store() -> bool:
    """Verify stock, order lines and carts are consistent."""

    print("=" * 60)
    print("🔍 STORE VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 60)

    problems = []

    async with async_session_maker() as db:
        negative = (
            await db.execute(select(FoodItem.name, FoodItem.stock_quantity).where(FoodItem.stock_quantity < 0))
        ).all()
        for row in negative:
            problems.append(f"Negative stock: {row.name} = {row.stock_quantity}")

        empty_orders = (
            await db.execute(
                select(Order.id)
                .outerjoin(OrderItem, OrderItem.order_id == Order.id)
                .group_by(Order.id)
                .having(func.count(OrderItem.id) == 0)
            )
        ).scalars().all()
        for order_id in empty_orders:
            problems.append(f"Order #{order_id} has no lines")

        bad_lines = (
            await db.execute(
                select(OrderItem.id).where((OrderItem.quantity < 1) | (OrderItem.price_at_order < 0))
            )
        ).scalars().all()
        for line_id in bad_lines:
            problems.append(f"Order line #{line_id} has an invalid quantity or price")

        bad_cart = (
            await db.execute(select(CartItem.id).where(CartItem.quantity < 1))
        ).scalars().all()
        for cart_item_id in bad_cart:
            problems.append(f"Cart item #{cart_item_id} has quantity < 1")

        by_status = (
            await db.execute(select(Order.status, func.count(Order.id)).group_by(Order.status))
        ).all()

    await engine.dispose()

    # Statistics
    print("\n📊 STATISTICS:")
    counts = {status: count for status, count in by_status}
    for status in OrderStatus:
        print(f"   {status.value:<12} {counts.get(status, 0)}")

    if problems:
        print(f"\n❌ {len(problems)} problem(s) found:")
        for problem in problems:
            print(f"   - {problem}")
    else:
        print("\n✅ No integrity problems found")

    print("=" * 60)
    return not problems


if __name__ == "__main__":
    ok = asyncio.run(verify_store())
    sys.exit(0 if ok else 1)
