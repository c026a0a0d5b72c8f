"""
Contention Simulation Script

Fires many concurrent customers at a food item with little stock and
checks that exactly as many orders succeed as there were units.
Run from project root (with the API up): python scripts/simulate.py

Run scripts/seed.py first so the menu exists.
"""

import asyncio
import sys
import random
import time
import argparse
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_CUSTOMERS = 50


async def pick_contended_item(client: httpx.AsyncClient, name: str | None) -> dict[str, Any]:
    """Menu item with the least stock (or the one named)."""
    response = await client.get(f"{API_BASE_URL}/api/menu")
    response.raise_for_status()
    items = response.json()["items"]
    if not items:
        raise SystemExit("❌ Menu is empty; run scripts/seed.py first")
    if name:
        for item in items:
            if item["name"].lower() == name.lower():
                return item
        raise SystemExit(f"❌ No menu item named {name!r}")
    return min(items, key=lambda item: item["stock_quantity"])


async def customer(
    client: httpx.AsyncClient,
    customer_num: int,
    food_item_id: int,
) -> dict[str, Any]:
    """Add one unit to a fresh cart, then race to place the order."""
    user_id = f"sim-{customer_num}-{random.randint(1000, 9999)}"
    start_time = time.time()

    response = await client.post(
        f"{API_BASE_URL}/api/cart",
        json={"user_id": user_id, "food_item_id": food_item_id, "quantity": 1},
        timeout=30.0,
    )
    if response.status_code != 200:
        return {
            "customer": customer_num,
            "stage": "cart",
            "success": False,
            "status": response.status_code,
            "error": response.json().get("error"),
            "time": round(time.time() - start_time, 3),
        }

    response = await client.post(
        f"{API_BASE_URL}/api/orders",
        json={"user_id": user_id},
        timeout=30.0,
    )
    body = response.json()
    return {
        "customer": customer_num,
        "stage": "order",
        "success": response.status_code == 200,
        "status": response.status_code,
        "order_id": body.get("order", {}).get("id") if response.status_code == 200 else None,
        "error": body.get("error"),
        "time": round(time.time() - start_time, 3),
    }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_customers: int = TOTAL_CUSTOMERS, item_name: str | None = None) -> bool:
    async with httpx.AsyncClient() as client:
        item = await pick_contended_item(client, item_name)
        stock_before = item["stock_quantity"]

        print("=" * 70)
        print("🔥 CONTENTION SIMULATION")
        print("=" * 70)
        print(f"📋 Customers: {num_customers}")
        print(f"🍽️  Item: {item['name']} (#{item['id']}), stock {stock_before}")
        print(f"🎯 Target: {API_BASE_URL}")
        print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
        print("=" * 70)

        start_time = time.time()
        tasks = [customer(client, i + 1, item["id"]) for i in range(num_customers)]
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

        response = await client.get(f"{API_BASE_URL}/api/food-items/{item['id']}")
        stock_after = response.json()["stock_quantity"]

    placed = [r for r in results if r["success"]]
    short = [r for r in results if r.get("error") == "insufficient_stock"]
    other = [r for r in results if not r["success"] and r.get("error") != "insufficient_stock"]

    print(f"\n✅ Orders placed: {len(placed)}")
    print(f"📦 Turned away (insufficient stock): {len(short)}")
    print(f"❌ Other failures: {len(other)}")
    print(f"⏱️  Total Time: {total_time}s")
    print(f"📉 Stock: {stock_before} -> {stock_after}")

    for failure in other[:5]:
        print(f"   Customer #{failure['customer']} [{failure['stage']}]: {failure['status']} {failure['error']}")

    expected = min(stock_before, num_customers)
    ok = stock_after >= 0 and len(placed) == stock_before - stock_after and len(placed) <= expected

    print("\n" + "=" * 70)
    print("✅ Stock accounting is consistent" if ok else "❌ Stock accounting is INCONSISTENT")
    print("   Next: python scripts/verify.py")
    print("=" * 70)
    return ok


def main():
    parser = argparse.ArgumentParser(description="Concurrent order placement against scarce stock")
    parser.add_argument("--customers", type=int, default=TOTAL_CUSTOMERS, help="Concurrent customers")
    parser.add_argument("--item", default=None, help="Menu item name (default: lowest stock)")
    args = parser.parse_args()

    ok = asyncio.run(run_simulation(args.customers, args.item))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
