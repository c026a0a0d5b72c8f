"""
Domain Exceptions

Raised by the service layer when an ordering rule blocks a request.
The API layer registers exception handlers that translate them into
``ErrorResponse`` bodies, so routes never build error payloads by hand.

Taxonomy:
    - NotFound: unknown food item, order or cart row (404)
    - InsufficientStock: stock ceiling blocks admission/placement/transition (409)
    - EmptyCart: placement attempted with an empty cart (400)
    - InvalidStatus: unrecognised status value (400)
    - InvalidTransition: recognised status that cannot be reached (400)
    - Conflict: a compare-and-write kept losing races until retries ran out (409)
"""

from dataclasses import dataclass, asdict
from typing import Optional

from sqlalchemy.exc import DBAPIError


@dataclass(frozen=True)
class StockShortage:
    """One food item that could not cover the requested quantity."""
    food_item_id: int
    name: Optional[str]
    requested: int
    available: int

    def to_dict(self) -> dict:
        return asdict(self)


class CanteenError(Exception):
    """Base class for all ordering domain errors."""

    status_code: int = 400
    error: str = "canteen_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"success": False, "error": self.error, "detail": self.detail}


class NotFound(CanteenError):
    status_code = 404
    error = "not_found"


class InsufficientStock(CanteenError):
    """
    Stock cannot cover the request.

    Carries every offending item so callers can show which lines of
    the cart need to change.
    """

    status_code = 409
    error = "insufficient_stock"

    def __init__(self, shortages: list[StockShortage], detail: Optional[str] = None):
        self.shortages = list(shortages)
        if detail is None:
            names = ", ".join(
                f"{s.name or f'item #{s.food_item_id}'} (requested {s.requested}, available {s.available})"
                for s in self.shortages
            )
            detail = f"Not enough stock for {names}"
        super().__init__(detail)

    @property
    def food_item_ids(self) -> list[int]:
        return [s.food_item_id for s in self.shortages]

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["items"] = [s.to_dict() for s in self.shortages]
        return body


class EmptyCart(CanteenError):
    error = "empty_cart"


class InvalidStatus(CanteenError):
    error = "invalid_status"


class InvalidTransition(InvalidStatus):
    error = "invalid_transition"


class Conflict(CanteenError):
    status_code = 409
    error = "conflict"


# Postgres SQLSTATEs for serialization failure and deadlock
TRANSIENT_SQLSTATES = {"40001", "40P01"}


def is_transient_error(exc: BaseException) -> bool:
    """
    Tell whether a store error is a transaction abort worth retrying.

    Covers Postgres serialization failures/deadlocks and SQLite's
    "database is locked". Connection loss and everything else is left
    to propagate as an infrastructure error.
    """
    if not isinstance(exc, DBAPIError) or exc.connection_invalidated:
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True

    return "database is locked" in str(orig).lower()
