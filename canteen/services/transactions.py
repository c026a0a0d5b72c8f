"""
Transaction Helpers

Runs a unit of work inside a database transaction and retries it a
bounded number of times when it loses a race.

Two things count as a lost race:
    - the work raises ``RetryableRace`` (a compare-and-write matched no rows)
    - the store aborts the transaction with a transient error
      (serialization failure, deadlock, SQLite lock timeout)

Domain errors (NotFound, InsufficientStock, ...) are not retried: they
propagate after the transaction has been rolled back.
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import CanteenError, Conflict, is_transient_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableRace(Exception):
    """
    Raised inside a unit of work when a conditional write lost a race.

    Args:
        reason: What was lost, for logs
        on_exhausted: Error to surface if no attempts remain
            (defaults to Conflict)
    """

    def __init__(self, reason: str, on_exhausted: Optional[CanteenError] = None):
        super().__init__(reason)
        self.reason = reason
        self.on_exhausted = on_exhausted


async def run_in_transaction(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    operation: str,
) -> T:
    """
    Execute ``work`` in a fresh transaction, retrying lost races.

    Each attempt opens its own transaction with ``db.begin()``; leaving
    the block normally commits, any exception rolls everything back.

    Args:
        db: Session with no transaction in progress
        work: Coroutine function performing reads and writes on ``db``
        attempts: Maximum number of attempts (>= 1)
        operation: Human-readable name used in logs and errors

    Returns:
        Whatever ``work`` returned on the committed attempt

    Raises:
        CanteenError: Domain error raised by ``work``, or the exhaustion
            error once every attempt lost its race
    """
    last_race: Optional[RetryableRace] = None

    for attempt in range(1, attempts + 1):
        try:
            async with db.begin():
                return await work()
        except RetryableRace as race:
            last_race = race
            logger.warning(
                f"{operation}: attempt {attempt}/{attempts} lost a race ({race.reason})"
            )
        except DBAPIError as exc:
            if not is_transient_error(exc):
                raise
            last_race = None
            logger.warning(
                f"{operation}: attempt {attempt}/{attempts} aborted by the store ({exc.orig})"
            )

    if last_race is not None and last_race.on_exhausted is not None:
        raise last_race.on_exhausted

    raise Conflict(f"{operation} kept conflicting with concurrent requests; try again")
