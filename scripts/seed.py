"""
Menu Seeding Script

Creates the tables and loads a small demo menu.
Run from project root: python scripts/seed.py [--reset]
"""

import asyncio
import sys
import argparse
from decimal import Decimal

from sqlalchemy import delete, select

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from canteen.database import async_session_maker, engine, init_db
from canteen.models import CartItem, FoodItem, Order, OrderItem

DEMO_MENU = [
    {"name": "Masala Dosa", "description": "Crisp rice crepe with potato filling", "price": "80.00", "stock": 25},
    {"name": "Idli Sambar", "description": "Steamed rice cakes, lentil stew", "price": "50.00", "stock": 30},
    {"name": "Veg Biryani", "description": "Basmati rice, vegetables, spices", "price": "150.00", "stock": 10},
    {"name": "Paneer Butter Masala", "description": "Cottage cheese in tomato gravy", "price": "180.00", "stock": 8},
    {"name": "Gulab Jamun", "description": "Two pieces", "price": "40.00", "stock": 5},
    {"name": "Masala Chai", "description": None, "price": "20.00", "stock": 100},
    {"name": "Chef's Special Thali", "description": "Limited daily batch", "price": "250.00", "stock": 3},
]


async def seed(reset: bool = False) -> None:
    await init_db()

    async with async_session_maker() as db:
        async with db.begin():
            if reset:
                for model in (OrderItem, Order, CartItem, FoodItem):
                    await db.execute(delete(model))
                print("🧹 Existing data removed")

            existing = set((await db.execute(select(FoodItem.name))).scalars().all())
            added = 0
            for entry in DEMO_MENU:
                if entry["name"] in existing:
                    continue
                db.add(FoodItem(
                    name=entry["name"],
                    description=entry["description"],
                    price=Decimal(entry["price"]),
                    stock_quantity=entry["stock"],
                    availability=True,
                ))
                added += 1

    print(f"✅ Menu ready: {added} item(s) added, {len(existing)} already present")
    await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Load the demo menu")
    parser.add_argument("--reset", action="store_true", help="Delete all orders, carts and food items first")
    args = parser.parse_args()
    asyncio.run(seed(args.reset))


if __name__ == "__main__":
    main()
