"""Webhook store contract.

The store is the single source of truth for event delivery state. The
dispatcher holds no state between cycles beyond what is written here, so a
restarted process simply picks up whatever is still pending.

State transitions are conditional: ``record_success`` and
``record_failure`` only apply while the event is still pending (and, when
``expected_attempts`` is given, still carries that attempt count). A lost
race returns False instead of double-counting an attempt or reviving a
terminal event.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic_core import PydanticSerializationError, to_json

from dam.clock import Clock, utc_now
from dam.exceptions import ValidationError
from dam.models import (
    RECENT_WINDOW,
    TERMINAL_STATUSES,
    DeliveryFailure,
    DeliveryResponse,
    DeliveryStatus,
    EventType,
    WebhookEvent,
    WebhookStats,
    WebhookSubscription,
)

DEFAULT_DUE_LIMIT = 10
DEFAULT_PAGE_SIZE = 20


class WebhookStore(ABC):
    """Base class for event and subscription persistence.

    Provides:
    - Clock injection and the async context manager lifecycle
    - Argument validation shared by all backends
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or utc_now

    def now(self) -> datetime:
        """Current time according to the injected clock."""
        return self._clock()

    async def initialize(self) -> None:
        """Prepare the backend (open connections, create tables)."""

    async def close(self) -> None:
        """Release backend resources."""

    async def __aenter__(self) -> WebhookStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Events

    @abstractmethod
    async def create_pending(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        destination_url: str,
        user_id: str | None = None,
    ) -> WebhookEvent:
        """Insert a new event: pending, zero attempts, due immediately.

        Raises:
            ValidationError: If the payload cannot be encoded as JSON.
        """

    @abstractmethod
    async def get_event(self, event_id: str) -> WebhookEvent | None:
        """Get an event by ID."""

    @abstractmethod
    async def find_due(self, limit: int = DEFAULT_DUE_LIMIT) -> list[WebhookEvent]:
        """Get pending events whose next_retry_at is unset or not in the future.

        Args:
            limit: Maximum events returned, bounding the work of one cycle.
        """

    @abstractmethod
    async def record_success(
        self,
        event_id: str,
        response: DeliveryResponse,
        expected_attempts: int | None = None,
    ) -> bool:
        """Mark a pending event delivered and count the attempt.

        Returns:
            True if the transition was applied, False if the event is gone,
            no longer pending, or its attempt count changed.
        """

    @abstractmethod
    async def record_failure(
        self,
        event_id: str,
        error: DeliveryFailure,
        next_retry_at: datetime | None,
        expected_attempts: int | None = None,
    ) -> bool:
        """Count a failed attempt on a pending event.

        Args:
            event_id: Event that was attempted.
            error: Diagnostics of the failed attempt.
            next_retry_at: When to try again; None marks the event failed.
            expected_attempts: Attempt count the caller observed.

        Returns:
            True if the transition was applied.
        """

    @abstractmethod
    async def purge_older_than(
        self,
        cutoff: datetime,
        statuses: Iterable[DeliveryStatus] = TERMINAL_STATUSES,
    ) -> int:
        """Delete terminal events created before ``cutoff``.

        Returns:
            Number of events deleted.
        """

    @abstractmethod
    async def list_events(
        self,
        user_id: str | None = None,
        status: DeliveryStatus | None = None,
        event_type: EventType | None = None,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[WebhookEvent], int]:
        """List events newest first.

        Returns:
            The requested page and the total number of matching events.
        """

    @abstractmethod
    async def stats(
        self,
        since: datetime | None = None,
        user_id: str | None = None,
    ) -> WebhookStats:
        """Count events overall, since ``since`` and per status."""

    # Subscriptions

    @abstractmethod
    async def store_subscription(self, subscription: WebhookSubscription) -> str:
        """Insert or replace a subscription. Returns its ID."""

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        """Get a subscription by ID."""

    @abstractmethod
    async def list_subscriptions(
        self,
        user_id: str | None = None,
        url: str | None = None,
        active_only: bool = False,
    ) -> list[WebhookSubscription]:
        """List subscriptions newest first, optionally filtered."""

    @abstractmethod
    async def delete_subscription(self, subscription_id: str) -> bool:
        """Delete a subscription. Returns False if it did not exist."""

    # Shared helpers

    @staticmethod
    def _encode_payload(payload: dict[str, Any]) -> bytes:
        """JSON-encode a payload, rejecting values that have no JSON form."""
        try:
            return to_json(payload)
        except PydanticSerializationError as e:
            raise ValidationError("payload", f"must be JSON-serializable: {e}") from e

    def _recent_cutoff(self, since: datetime | None) -> datetime:
        return since if since is not None else self.now() - RECENT_WINDOW

    @staticmethod
    def _purge_statuses(statuses: Iterable[DeliveryStatus]) -> list[DeliveryStatus]:
        resolved = [DeliveryStatus(s) for s in statuses]
        if not resolved:
            raise ValidationError("statuses", "at least one status is required")
        for status in resolved:
            if not status.is_terminal:
                raise ValidationError("statuses", f"cannot purge non-terminal status {status.value}")
        return resolved

    @staticmethod
    def _check_limit(limit: int, offset: int = 0) -> None:
        if limit < 1:
            raise ValidationError("limit", "must be at least 1")
        if offset < 0:
            raise ValidationError("offset", "must not be negative")


__all__ = ["DEFAULT_DUE_LIMIT", "DEFAULT_PAGE_SIZE", "WebhookStore"]
