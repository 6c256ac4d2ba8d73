"""Bounded retry of transactions that lose a serialization race."""

from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from libs.common.errors import Conflict
from libs.common.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, unique_violation
_RETRYABLE_SQLSTATES = {"40001", "40P01", "23505"}


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate in _RETRYABLE_SQLSTATES
    # SQLite reports writer contention as a locked database
    return "database is locked" in str(orig or exc)


async def run_with_serialization_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    label: str,
) -> T:
    """Run ``operation`` and retry it after a rollback when it loses a race.

    Any other error rolls back and propagates unchanged.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except DBAPIError as exc:
            await db.rollback()
            if not is_serialization_failure(exc):
                raise
            if attempt >= attempts:
                logger.warning("%s: serialization failure, giving up after %d attempts", label, attempt)
                raise Conflict(
                    "The request conflicted with concurrent updates; please retry",
                    code="serialization_failure",
                ) from exc
            logger.info("%s: serialization failure on attempt %d, retrying", label, attempt)
            attempt += 1
        except Exception:
            await db.rollback()
            raise
