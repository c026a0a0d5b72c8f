"""Retry loop and store-abort classification."""

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from canteen.core.exceptions import Conflict, InsufficientStock, NotFound, StockShortage, is_transient_error
from canteen.services.catalog import SqlCatalog
from canteen.services.cart import CartService
from canteen.services.placement import OrderPlacementService
from canteen.services.transactions import RetryableRace, run_in_transaction


class DriverError(Exception):
    """Stands in for a driver exception carrying a SQLSTATE."""

    def __init__(self, message: str, sqlstate: str = None, pgcode: str = None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.pgcode = pgcode


def store_error(message="boom", sqlstate=None, pgcode=None, cls=DBAPIError, invalidated=False):
    return cls(
        "UPDATE food_items SET stock_quantity = stock_quantity - 1",
        {},
        DriverError(message, sqlstate=sqlstate, pgcode=pgcode),
        connection_invalidated=invalidated,
    )


# =============================================================================
# is_transient_error
# =============================================================================

@pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
def test_postgres_serialization_failure_and_deadlock_are_transient(sqlstate):
    assert is_transient_error(store_error("could not serialize access", sqlstate=sqlstate))


def test_pgcode_is_read_when_sqlstate_is_missing():
    assert is_transient_error(store_error("deadlock detected", pgcode="40P01"))


def test_sqlite_lock_timeout_is_transient():
    assert is_transient_error(store_error("database is locked", cls=OperationalError))


def test_constraint_violation_is_not_transient():
    assert not is_transient_error(store_error("duplicate key", sqlstate="23505", cls=IntegrityError))


def test_lost_connection_is_not_transient():
    assert not is_transient_error(store_error("database is locked", sqlstate="40001", invalidated=True))


def test_non_store_errors_are_not_transient():
    assert not is_transient_error(ValueError("database is locked"))


# =============================================================================
# run_in_transaction
# =============================================================================

async def test_transient_abort_is_retried(session_maker):
    calls = []

    async def work():
        calls.append(1)
        if len(calls) == 1:
            raise store_error("could not serialize access", sqlstate="40001")
        return "committed"

    async with session_maker() as db:
        result = await run_in_transaction(db, work, attempts=3, operation="Test write")

    assert result == "committed"
    assert len(calls) == 2


async def test_transient_abort_on_every_attempt_gives_conflict(session_maker):
    calls = []

    async def work():
        calls.append(1)
        raise store_error("could not serialize access", sqlstate="40001")

    async with session_maker() as db:
        with pytest.raises(Conflict, match="Test write"):
            await run_in_transaction(db, work, attempts=3, operation="Test write")

    assert len(calls) == 3


async def test_other_store_errors_propagate_at_once(session_maker):
    calls = []

    async def work():
        calls.append(1)
        raise store_error("syntax error", sqlstate="42601")

    async with session_maker() as db:
        with pytest.raises(DBAPIError):
            await run_in_transaction(db, work, attempts=3, operation="Test write")

    assert len(calls) == 1


async def test_domain_errors_are_not_retried(session_maker):
    calls = []

    async def work():
        calls.append(1)
        raise NotFound("Order #1 not found")

    async with session_maker() as db:
        with pytest.raises(NotFound):
            await run_in_transaction(db, work, attempts=3, operation="Test write")

    assert len(calls) == 1


async def test_lost_races_surface_conflict_by_default(session_maker):
    async def work():
        raise RetryableRace("row changed")

    async with session_maker() as db:
        with pytest.raises(Conflict):
            await run_in_transaction(db, work, attempts=2, operation="Test write")


async def test_lost_races_surface_their_own_error(session_maker):
    shortage = InsufficientStock([StockShortage(1, "Tea", 1, 0)])

    async def work():
        raise RetryableRace("stock taken", on_exhausted=shortage)

    async with session_maker() as db:
        with pytest.raises(InsufficientStock) as exc_info:
            await run_in_transaction(db, work, attempts=2, operation="Test write")

    assert exc_info.value is shortage


async def test_placement_aborted_by_the_store_gives_conflict(
    session_maker, seed, stock_of, order_count, cart_rows
):
    (item,) = await seed({"name": "Tea", "stock": 5})
    async with session_maker() as db:
        await CartService().add_item(db, "u1", item.id, 2)

    class SerializationFailingCatalog(SqlCatalog):
        calls = 0

        async def try_debit(self, db, food_item_id, quantity):
            SerializationFailingCatalog.calls += 1
            raise store_error("could not serialize access", sqlstate="40001")

    placement = OrderPlacementService(catalog=SerializationFailingCatalog(), max_retries=1)

    async with session_maker() as db:
        with pytest.raises(Conflict):
            await placement.place_order(db, "u1")

    assert SerializationFailingCatalog.calls == 2
    assert await order_count() == 0
    assert await stock_of(item.id) == 5
    assert await cart_rows("u1") == {item.id: 2}
