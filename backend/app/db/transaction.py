"""
Atomic unit-of-work runner.

Executes a coroutine inside one database transaction and re-runs the whole
unit when it loses a race against a concurrent writer.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from backend.app.core.config import settings
from backend.app.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_RETRYABLE_MESSAGES = ("database is locked", "database table is locked", "could not serialize")


def is_transient_conflict(exc: BaseException) -> bool:
    """True for optimistic-lock failures and lock/serialization errors."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        text = str(orig).lower()
        return any(marker in text for marker in _RETRYABLE_MESSAGES)
    return False


async def run_atomic(
    session_factory: async_sessionmaker,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    max_attempts: int = None,
    base_delay: float = None,
    label: str = "unit",
) -> T:
    """
    Run ``work(session)`` in a fresh session and transaction.

    Every attempt opens a new session so reads are re-done from the current
    committed state. Domain exceptions raised by ``work`` roll the unit back
    and propagate unchanged; transient conflicts are retried with jittered
    exponential backoff until ``max_attempts`` is exhausted, then surface as
    ConcurrencyConflictError.
    """
    attempts = max_attempts or settings.settlement_max_retries
    delay = settings.settlement_retry_base_delay if base_delay is None else base_delay

    for attempt in range(1, attempts + 1):
        try:
            async with session_factory() as session:
                async with session.begin():
                    result = await work(session)
                return result
        except (StaleDataError, DBAPIError) as exc:
            if not is_transient_conflict(exc):
                raise
            logger.warning(
                "Atomic unit conflict, retrying",
                extra={"unit": label, "attempt": attempt, "error": type(exc).__name__},
            )
            if attempt == attempts:
                break
            await asyncio.sleep(delay * (2 ** (attempt - 1)) * (1 + random.random()))

    logger.error("Atomic unit gave up after conflicts", extra={"unit": label, "attempts": attempts})
    raise ConcurrencyConflictError(attempts=attempts)
