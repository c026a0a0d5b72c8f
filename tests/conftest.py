"""
Shared fixtures: a throwaway SQLite store per test, seed helpers and
an HTTP client wired to the FastAPI app.
"""

import os

# Must be set before canteen.database builds its module-level engine
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENV_MODE", "development")

from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from canteen.database import get_db, init_db, make_engine, make_session_maker
from canteen.models import CartItem, FoodItem, Order


@pytest.fixture
async def engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'canteen.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
def seed(session_maker):
    """Insert food items; returns them in the order given."""
    async def _seed(*items: dict) -> list[FoodItem]:
        rows = [
            FoodItem(
                name=item["name"],
                price=Decimal(str(item.get("price", "10.00"))),
                stock_quantity=item.get("stock", 10),
                availability=item.get("availability", True),
            )
            for item in items
        ]
        async with session_maker() as db:
            async with db.begin():
                db.add_all(rows)
        return rows

    return _seed


@pytest.fixture
def stock_of(session_maker):
    async def _stock_of(food_item_id: int) -> int:
        async with session_maker() as db:
            result = await db.execute(
                select(FoodItem.stock_quantity).where(FoodItem.id == food_item_id)
            )
            return result.scalar_one()

    return _stock_of


@pytest.fixture
def cart_rows(session_maker):
    async def _cart_rows(user_id: str) -> dict[int, int]:
        async with session_maker() as db:
            result = await db.execute(
                select(CartItem.food_item_id, CartItem.quantity).where(CartItem.user_id == user_id)
            )
            return {row.food_item_id: row.quantity for row in result}

    return _cart_rows


@pytest.fixture
def order_count(session_maker):
    async def _order_count() -> int:
        async with session_maker() as db:
            result = await db.execute(select(Order.id))
            return len(result.all())

    return _order_count


@pytest.fixture
async def client(session_maker):
    from canteen.main import app

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
