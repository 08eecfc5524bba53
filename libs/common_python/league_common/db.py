"""Shared database helpers.

Writes that can race with each other (two admins submitting games at the same
time, a config edit while the recalculation job runs) fail with one of a small
set of errors: a stale optimistic version, a unique constraint hit by a
concurrent insert, or a deadlock/serialization failure reported by Postgres.

This module classifies those errors and retries the failing unit of work with
exponential backoff and jitter. Any other error propagates immediately.
"""

from functools import wraps
from typing import Callable, TypeVar
import logging
import random
import time

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes: unique_violation, serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"23505", "40001", "40P01"}

_RETRYABLE_MESSAGES = (
    "deadlock",
    "could not serialize access",
    "concurrent update",
    "database is locked",
)


class OptimisticLockError(Exception):
    """A row changed between read and write (version mismatch)."""

    def __init__(self, message: str = "Record was modified by another transaction", *, expected=None, found=None):
        super().__init__(message)
        self.expected = expected
        self.found = found


def _sqlstate(error: DBAPIError) -> str | None:
    orig = getattr(error, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_concurrency_error(error: BaseException) -> bool:
    """Return True if `error` is worth retrying as a concurrency conflict."""
    if isinstance(error, (OptimisticLockError, StaleDataError)):
        return True
    if isinstance(error, DBAPIError):
        if _sqlstate(error) in _RETRYABLE_SQLSTATES:
            return True
        if isinstance(error, IntegrityError) and "unique" in str(error.orig).lower():
            return True
        message = str(error.orig).lower()
        return any(m in message for m in _RETRYABLE_MESSAGES)
    return False


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    retries: int = 3,
    base_delay: float = 0.1,
    on_retry: Callable[[BaseException], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run `operation`, retrying concurrency failures with backoff.

    The delay before attempt n+1 is `base_delay * 2**(n-1)` plus up to 50ms
    of random jitter.

    Args:
        operation: Zero-argument callable performing one complete unit of work.
        retries: Total number of attempts.
        base_delay: Delay in seconds before the second attempt.
        on_retry: Optional hook called with the error before sleeping (typically
            `session.rollback`-style cleanup).
        sleep: Injected for tests.

    Returns:
        Whatever `operation` returns.

    Raises:
        The last error once attempts are exhausted, or any non-concurrency
        error immediately.
    """
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as exc:
            if not is_concurrency_error(exc) or attempt >= retries:
                if attempt > 1 and is_concurrency_error(exc):
                    logger.error("concurrency conflict persisted after %d attempts", attempt)
                raise
            delay = base_delay * (2 ** (attempt - 1)) + random.random() * 0.05
            logger.warning(
                "concurrency conflict on attempt %d/%d, retrying in %.3fs: %s",
                attempt, retries, delay, exc,
            )
            if on_retry is not None:
                on_retry(exc)
            sleep(delay)
            attempt += 1


def with_conflict_retry(retries: int = 3, base_delay: float = 0.1):
    """Decorator form of `retry_on_conflict`."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            return retry_on_conflict(lambda: func(*args, **kwargs), retries=retries, base_delay=base_delay)

        return wrapper

    return decorator
