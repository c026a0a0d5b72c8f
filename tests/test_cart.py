from decimal import Decimal

import pytest
from sqlalchemy import update

from canteen.core.exceptions import Conflict, InsufficientStock, NotFound
from canteen.models import FoodItem
from canteen.services.cart import CartService


@pytest.fixture
def cart():
    return CartService()


async def test_add_creates_then_increments(session_maker, seed, cart, cart_rows):
    (dosa,) = await seed({"name": "Dosa", "price": "50.00", "stock": 5})

    async with session_maker() as db:
        first = await cart.add_item(db, "u1", dosa.id, 2)
    async with session_maker() as db:
        second = await cart.add_item(db, "u1", dosa.id, 1)

    assert first.cart_item_id == second.cart_item_id
    assert second.quantity == 3
    assert await cart_rows("u1") == {dosa.id: 3}


async def test_add_unknown_item(session_maker, cart):
    async with session_maker() as db:
        with pytest.raises(NotFound):
            await cart.add_item(db, "u1", 999, 1)


async def test_add_beyond_stock_is_rejected_without_touching_stock(
    session_maker, seed, cart, stock_of, cart_rows
):
    (idli,) = await seed({"name": "Idli", "stock": 3})

    async with session_maker() as db:
        with pytest.raises(InsufficientStock) as exc_info:
            await cart.add_item(db, "u1", idli.id, 4)

    assert exc_info.value.food_item_ids == [idli.id]
    assert "Available: 3" in exc_info.value.detail
    assert await stock_of(idli.id) == 3
    assert await cart_rows("u1") == {}


async def test_add_counts_what_is_already_in_the_cart(session_maker, seed, cart, cart_rows):
    (vada,) = await seed({"name": "Vada", "stock": 3})

    async with session_maker() as db:
        await cart.add_item(db, "u1", vada.id, 2)
    async with session_maker() as db:
        with pytest.raises(InsufficientStock, match="Only 1 more available"):
            await cart.add_item(db, "u1", vada.id, 2)

    assert await cart_rows("u1") == {vada.id: 2}


async def test_add_does_not_reserve(session_maker, seed, cart, stock_of):
    (tea,) = await seed({"name": "Tea", "stock": 1})

    async with session_maker() as db:
        await cart.add_item(db, "u1", tea.id, 1)
    async with session_maker() as db:
        await cart.add_item(db, "u2", tea.id, 1)

    assert await stock_of(tea.id) == 1


async def test_unavailable_item_cannot_be_added(session_maker, seed, cart):
    (soup,) = await seed({"name": "Soup", "stock": 10, "availability": False})

    async with session_maker() as db:
        with pytest.raises(InsufficientStock):
            await cart.add_item(db, "u1", soup.id, 1)


async def test_set_quantity_replaces_without_stock_check(session_maker, seed, cart, cart_rows):
    (rice,) = await seed({"name": "Rice", "stock": 2})

    async with session_maker() as db:
        line = await cart.add_item(db, "u1", rice.id, 1)
    async with session_maker() as db:
        updated = await cart.set_quantity(db, line.cart_item_id, 7)

    assert updated.quantity == 7
    assert not updated.is_orderable
    assert await cart_rows("u1") == {rice.id: 7}


async def test_set_quantity_below_one_removes(session_maker, seed, cart, cart_rows):
    (rice,) = await seed({"name": "Rice", "stock": 2})

    async with session_maker() as db:
        line = await cart.add_item(db, "u1", rice.id, 1)
    async with session_maker() as db:
        assert await cart.set_quantity(db, line.cart_item_id, 0) is None

    assert await cart_rows("u1") == {}


async def test_set_quantity_unknown_row(session_maker, cart):
    async with session_maker() as db:
        with pytest.raises(NotFound):
            await cart.set_quantity(db, 12345, 2)


async def test_remove_is_idempotent(session_maker, seed, cart):
    (rice,) = await seed({"name": "Rice", "stock": 2})

    async with session_maker() as db:
        line = await cart.add_item(db, "u1", rice.id, 1)
    async with session_maker() as db:
        assert await cart.remove_item(db, line.cart_item_id) is True
    async with session_maker() as db:
        assert await cart.remove_item(db, line.cart_item_id) is False


async def test_list_cart_shows_live_price(session_maker, seed, cart):
    (dosa,) = await seed({"name": "Dosa", "price": "50.00", "stock": 5})

    async with session_maker() as db:
        await cart.add_item(db, "u1", dosa.id, 2)
    async with session_maker() as db:
        async with db.begin():
            await db.execute(update(FoodItem).where(FoodItem.id == dosa.id).values(price=Decimal("60.00")))

    async with session_maker() as db:
        lines = await cart.list_cart(db, "u1")
        count = await cart.count(db, "u1")

    assert count == 1
    assert lines[0].price == Decimal("60.00")
    assert lines[0].line_total == Decimal("120.00")
    assert lines[0].stock_quantity == 5


async def test_concurrent_increments_race_for_the_last_unit(
    session_maker, seed, cart, cart_rows, monkeypatch
):
    (tea,) = await seed({"name": "Tea", "stock": 2})
    async with session_maker() as db:
        await cart.add_item(db, "u1", tea.id, 1)

    real_find_row = CartService._find_row
    other_tab = {}

    async def interleaved_find_row(self, db, user_id, food_item_id):
        row = await real_find_row(self, db, user_id, food_item_id)
        # Another tab bumps the same row after this request read it
        if not other_tab:
            other_tab["line"] = None
            async with session_maker() as second:
                other_tab["line"] = await cart.add_item(second, user_id, food_item_id, 1)
        return row

    monkeypatch.setattr(CartService, "_find_row", interleaved_find_row)

    async with session_maker() as db:
        with pytest.raises(InsufficientStock):
            await cart.add_item(db, "u1", tea.id, 1)

    assert other_tab["line"].quantity == 2
    assert await cart_rows("u1") == {tea.id: 2}


async def test_concurrent_first_adds_race_for_the_last_unit(
    session_maker, seed, cart, cart_rows, monkeypatch
):
    (tea,) = await seed({"name": "Tea", "stock": 1})

    real_find_row = CartService._find_row
    other_tab = {}

    async def interleaved_find_row(self, db, user_id, food_item_id):
        row = await real_find_row(self, db, user_id, food_item_id)
        # Both requests see no row yet; the other one inserts first
        if not other_tab:
            other_tab["line"] = None
            async with session_maker() as second:
                other_tab["line"] = await cart.add_item(second, user_id, food_item_id, 1)
        return row

    monkeypatch.setattr(CartService, "_find_row", interleaved_find_row)

    async with session_maker() as db:
        with pytest.raises(InsufficientStock):
            await cart.add_item(db, "u1", tea.id, 1)

    assert other_tab["line"].quantity == 1
    assert await cart_rows("u1") == {tea.id: 1}


async def test_cart_row_that_keeps_changing_gives_up_with_conflict(
    session_maker, seed, cart_rows, monkeypatch
):
    (tea,) = await seed({"name": "Tea", "stock": 50})
    cart = CartService(max_retries=2)
    async with session_maker() as db:
        await cart.add_item(db, "u1", tea.id, 1)

    real_find_row = CartService._find_row
    bumps = []

    async def interleaved_find_row(self, db, user_id, food_item_id):
        row = await real_find_row(self, db, user_id, food_item_id)
        if self is cart:
            async with session_maker() as second:
                bumps.append(await CartService().add_item(second, user_id, food_item_id, 1))
        return row

    monkeypatch.setattr(CartService, "_find_row", interleaved_find_row)

    async with session_maker() as db:
        with pytest.raises(Conflict):
            await cart.add_item(db, "u1", tea.id, 5)

    assert len(bumps) == 3
    assert await cart_rows("u1") == {tea.id: 4}
