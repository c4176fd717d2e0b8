"""Exponential backoff for failed webhook deliveries.

Convention: the exponent is the attempt count *before* the failed attempt
is recorded. With the defaults (1000 ms base, 3 attempts):

    attempt 1 fails -> retry after 1s
    attempt 2 fails -> retry after 2s
    attempt 3 fails -> no retry, event is failed

The delay for a given count can still be computed past the ceiling
(``delay_for(2)`` is 4s); it is just never used to schedule anything.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from dam.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """Decides whether and when a failed delivery is attempted again.

    Attributes:
        max_attempts: Total attempts before an event is failed permanently.
        base_delay_ms: Delay before the first retry.
        jitter: Proportional random extra delay (0.0 = deterministic).
    """

    max_attempts: int = 3
    base_delay_ms: int = 1000
    jitter: float = 0.0
    _random: Callable[[], float] = field(default=random.random, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 1:
            raise ValueError("base_delay_ms must be at least 1")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0.0 and 1.0")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.webhook_retry_attempts,
            base_delay_ms=settings.webhook_retry_delay_ms,
            jitter=settings.webhook_retry_jitter,
        )

    def delay_for(self, attempts_before: int) -> timedelta:
        """Backoff delay after a failure that happened with ``attempts_before`` prior attempts."""
        if attempts_before < 0:
            raise ValueError("attempts_before must not be negative")
        delay_ms = self.base_delay_ms * (2**attempts_before)
        if self.jitter:
            delay_ms += delay_ms * self.jitter * self._random()
        return timedelta(milliseconds=delay_ms)

    def next_retry_at(self, attempts_before: int, now: datetime) -> datetime | None:
        """When to retry after a failure, or None once the ceiling is reached.

        Args:
            attempts_before: Attempts recorded before the one that just failed.
            now: Time of the failure.
        """
        if attempts_before + 1 >= self.max_attempts:
            return None
        return now + self.delay_for(attempts_before)


__all__ = ["RetryPolicy"]
