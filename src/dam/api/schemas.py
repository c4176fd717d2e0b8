"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dam.models import (
    DeliveryFailure,
    DeliveryResponse,
    DeliveryStatus,
    EventType,
    WebhookEvent,
    WebhookStats,
    WebhookSubscription,
)


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: str
    version: str
    storage_connected: bool
    dispatcher_running: bool = False


class SubscribeRequest(BaseModel):
    """Request body for registering a webhook destination.

    URL and event types are validated by the registry so that invalid
    input is reported with the same error shape as other validation errors.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1, description="Subscribing user")
    webhook_url: str = Field(min_length=1, description="http(s) endpoint")
    events: list[str] = Field(description="Event types to subscribe to")
    secret_key: str | None = Field(default=None, description="Signing secret override")


class UpdateSubscriptionRequest(BaseModel):
    """Request body for updating a subscription. Omitted fields are unchanged."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    webhook_url: str | None = None
    events: list[str] | None = None
    is_active: bool | None = None
    secret_key: str | None = None


class SubscriptionResponse(BaseModel):
    """A subscription as returned by the API. The secret itself is never echoed."""

    id: str
    user_id: str
    webhook_url: str
    events: list[EventType]
    is_active: bool
    has_secret: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> SubscriptionResponse:
        return cls(
            id=subscription.id,
            user_id=subscription.user_id,
            webhook_url=str(subscription.url),
            events=subscription.events,
            is_active=subscription.active,
            has_secret=subscription.secret is not None,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class SubscriptionListResponse(BaseModel):
    """All subscriptions of a user."""

    subscriptions: list[SubscriptionResponse]


class DeleteResponse(BaseModel):
    """Acknowledgement of a deletion."""

    deleted: bool
    id: str


class EventResponse(BaseModel):
    """A webhook event and its delivery state."""

    id: str
    event_type: EventType
    payload: dict[str, Any]
    destination_url: str
    status: DeliveryStatus
    attempts: int
    next_retry_at: datetime | None
    last_attempt_at: datetime | None
    delivered_at: datetime | None
    last_response: DeliveryResponse | None
    last_error: DeliveryFailure | None
    created_at: datetime

    @classmethod
    def from_event(cls, event: WebhookEvent) -> EventResponse:
        return cls.model_validate(event.model_dump(exclude={"user_id"}))


class Pagination(BaseModel):
    """Page metadata for list responses."""

    page: int
    limit: int
    total: int
    pages: int


class EventListResponse(BaseModel):
    """One page of a user's events."""

    events: list[EventResponse]
    pagination: Pagination


class UserStats(BaseModel):
    """Per-user event counts."""

    total_events: int
    recent_events: int


class StatsResponse(BaseModel):
    """Global statistics and, when a user is given, that user's counts."""

    overall: WebhookStats
    user: UserStats | None = None


class TestWebhookRequest(BaseModel):
    """Request body for sending a test event."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    webhook_url: str = Field(min_length=1)


class TestWebhookResponse(BaseModel):
    """The test event that was queued for delivery."""

    event_id: str
    webhook_url: str
    payload: dict[str, Any]


class ReceivedEvent(BaseModel):
    """Metadata of an inbound webhook, echoed back to the sender."""

    event_type: str | None
    event_id: str | None
    timestamp: str | None
    payload: Any


class ReceiveResponse(BaseModel):
    """Response of the inbound receive endpoint."""

    success: bool
    message: str
    data: ReceivedEvent
