"""Pure status-machine rules: no database involved."""

from dataclasses import dataclass

import pytest

from canteen.core.exceptions import InvalidTransition
from canteen.models import OrderStatus
from canteen.services.status import check_transition, stock_deltas

P, PR, R, C, X = (
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
)


@dataclass
class Line:
    food_item_id: int
    quantity: int


ITEMS = [Line(1, 2), Line(2, 1)]


def test_cancelling_restocks_every_line():
    assert stock_deltas(P, X, ITEMS) == {1: 2, 2: 1}
    assert stock_deltas(R, X, ITEMS) == {1: 2, 2: 1}


def test_reopening_takes_stock_again():
    assert stock_deltas(X, PR, ITEMS) == {1: -2, 2: -1}


@pytest.mark.parametrize("old,new", [(P, PR), (PR, R), (R, C), (P, C), (X, X), (P, P)])
def test_other_moves_leave_stock_alone(old, new):
    assert stock_deltas(old, new, ITEMS) == {}


def test_deltas_aggregate_per_food_item():
    items = [Line(5, 1), Line(5, 3), Line(6, 2)]
    assert stock_deltas(P, X, items) == {5: 4, 6: 2}


def test_round_trip_nets_to_zero():
    out = stock_deltas(P, X, ITEMS)
    back = stock_deltas(X, PR, ITEMS)
    assert {k: out[k] + back[k] for k in out} == {1: 0, 2: 0}


@pytest.mark.parametrize("old,new", [
    (P, PR), (PR, R), (R, C), (P, R), (P, C),
    (P, X), (PR, X), (R, X),
    (X, P), (X, PR), (X, R),
    (P, P), (C, C),
])
def test_allowed_transitions(old, new):
    check_transition(old, new)


@pytest.mark.parametrize("old,new", [
    (C, X), (C, P), (C, R),
    (X, C),
    (R, P), (PR, P), (R, PR),
])
def test_refused_transitions(old, new):
    with pytest.raises(InvalidTransition):
        check_transition(old, new)


@pytest.mark.parametrize("raw", ["Cancelled", "CANCELLED", " cancelled ", OrderStatus.CANCELLED])
def test_status_parse_ignores_case(raw):
    assert OrderStatus.parse(raw) is OrderStatus.CANCELLED


def test_status_parse_rejects_unknown():
    with pytest.raises(ValueError, match="Options"):
        OrderStatus.parse("shipped")
