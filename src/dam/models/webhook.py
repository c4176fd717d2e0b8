"""Webhook models: outbound events, subscriptions and delivery diagnostics.

An event is created once by a producer (asset or user CRUD code) and from
then on only the dispatcher changes it: status, attempt count, timestamps
and the diagnostics of the most recent attempt.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from .base import generate_id


class EventType(str, Enum):
    """Business occurrences that are published to webhook endpoints."""

    ASSET_UPLOADED = "asset.uploaded"
    ASSET_DELETED = "asset.deleted"
    ASSET_SHARED = "asset.shared"
    ASSET_UPDATED = "asset.updated"
    USER_CREATED = "user.created"
    USER_DELETED = "user.deleted"
    TEST = "test"


# "test" events are only ever sent on demand, never subscribed to
SUBSCRIBABLE_EVENT_TYPES: list[EventType] = [
    EventType.ASSET_UPLOADED,
    EventType.ASSET_DELETED,
    EventType.ASSET_SHARED,
    EventType.ASSET_UPDATED,
    EventType.USER_CREATED,
    EventType.USER_DELETED,
]


class DeliveryStatus(str, Enum):
    """Delivery state of an event. DELIVERED and FAILED are terminal."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not DeliveryStatus.PENDING


TERMINAL_STATUSES: tuple[DeliveryStatus, ...] = (
    DeliveryStatus.DELIVERED,
    DeliveryStatus.FAILED,
)


class DeliveryResponse(BaseModel):
    """What the destination answered on a successful attempt.

    Attributes:
        status_code: HTTP status code (2xx).
        body: Response body, truncated.
        headers: Response headers.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int
    body: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


class DeliveryFailure(BaseModel):
    """Why the most recent attempt failed.

    Attributes:
        message: Human-readable error message.
        code: Classification (HTTP_ERROR, TIMEOUT, CONNECTION_ERROR,
            REQUEST_ERROR, UNKNOWN_ERROR).
        status_code: HTTP status when the destination answered with non-2xx.
    """

    model_config = ConfigDict(extra="forbid")

    message: str
    code: str = "UNKNOWN_ERROR"
    status_code: int | None = None


class WebhookEvent(BaseModel):
    """A single outbound notification and its delivery state.

    Attributes:
        id: Unique identifier for this event.
        event_type: What happened.
        payload: Producer-defined document, opaque to the delivery core.
        destination_url: Endpoint the payload is POSTed to.
        user_id: User the event belongs to (optional).
        status: pending, delivered or failed.
        attempts: Delivery attempts made so far.
        next_retry_at: Earliest time of the next attempt (None = now).
        last_attempt_at: When the most recent attempt finished.
        delivered_at: When the event was delivered.
        last_response: Response of the successful attempt.
        last_error: Failure of the most recent unsuccessful attempt.
        created_at: When the event was created.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("evt"))
    event_type: EventType = Field(description="Event type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Event document")
    destination_url: str = Field(min_length=1, description="Delivery endpoint")
    user_id: str | None = Field(default=None, description="Owning user (optional)")
    status: DeliveryStatus = Field(default=DeliveryStatus.PENDING)
    attempts: int = Field(default=0, ge=0)
    next_retry_at: datetime | None = None
    last_attempt_at: datetime | None = None
    delivered_at: datetime | None = None
    last_response: DeliveryResponse | None = None
    last_error: DeliveryFailure | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_due(self, now: datetime) -> bool:
        """Check whether the event may be attempted at ``now``."""
        if self.status is not DeliveryStatus.PENDING:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now


class WebhookSubscription(BaseModel):
    """A user's registration of a destination URL for a set of event types.

    Attributes:
        id: Unique identifier for this subscription.
        user_id: User who owns the subscription.
        url: http(s) endpoint that receives events.
        events: Subscribed event types.
        secret: Signing secret override; the service default is used if None.
        active: Whether deliveries should be produced for this subscription.
        created_at: When the subscription was registered.
        updated_at: When the subscription was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    user_id: str = Field(min_length=1)
    url: HttpUrl
    events: list[EventType] = Field(min_length=1)
    secret: str | None = None
    active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def subscribes_to(self, event_type: EventType) -> bool:
        """Check if this subscription wants events of the given type."""
        return self.active and event_type in self.events


class WebhookStats(BaseModel):
    """Aggregate event counts for operational visibility.

    Attributes:
        total_events: All stored events.
        recent_events: Events created in the trailing window.
        status_breakdown: Event count per status.
    """

    total_events: int = 0
    recent_events: int = 0
    status_breakdown: dict[str, int] = Field(default_factory=dict)


RECENT_WINDOW = timedelta(hours=24)


__all__ = [
    "RECENT_WINDOW",
    "SUBSCRIBABLE_EVENT_TYPES",
    "TERMINAL_STATUSES",
    "DeliveryFailure",
    "DeliveryResponse",
    "DeliveryStatus",
    "EventType",
    "WebhookEvent",
    "WebhookStats",
    "WebhookSubscription",
]
