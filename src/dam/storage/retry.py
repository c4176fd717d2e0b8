"""Retry utilities for storage operations.

SQLite reports lock contention as ``OperationalError("database is locked")``
when another connection holds the write lock longer than the busy timeout.
Those errors are transient and worth retrying with exponential backoff;
every other OperationalError is a real failure and is raised at once.
"""

from __future__ import annotations

import logging

import aiosqlite
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

_TRANSIENT_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def is_transient_sqlite_error(exc: BaseException) -> bool:
    """Check whether an exception is a lock/busy error worth retrying."""
    if not isinstance(exc, aiosqlite.OperationalError):
        return False
    message = str(exc).lower()
    return any(fragment in message for fragment in _TRANSIENT_MESSAGES)


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context."""
    logger.warning(
        "Retrying SQLite operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


sqlite_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception(is_transient_sqlite_error),
    before_sleep=_log_retry,
    reraise=True,
)
