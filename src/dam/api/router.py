"""FastAPI router for the webhook API endpoints."""

from __future__ import annotations

import json
from math import ceil
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from dam import __version__
from dam.exceptions import SignatureError, ValidationError
from dam.logging import get_logger
from dam.models import DeliveryStatus, EventType
from dam.service import WebhookService
from dam.webhooks import EVENT_HEADER, EVENT_ID_HEADER, SIGNATURE_HEADER, TIMESTAMP_HEADER

from .schemas import (
    DeleteResponse,
    EventListResponse,
    EventResponse,
    HealthResponse,
    Pagination,
    ReceivedEvent,
    ReceiveResponse,
    StatsResponse,
    SubscribeRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    TestWebhookRequest,
    TestWebhookResponse,
    UpdateSubscriptionRequest,
    UserStats,
)

logger = get_logger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health.

    Reports whether the service is initialized and the dispatcher loops
    are running.
    """
    if _service is None:
        return HealthResponse(status="unhealthy", version=__version__, storage_connected=False)
    return HealthResponse(
        status="healthy",
        version=__version__,
        storage_connected=True,
        dispatcher_running=_service.dispatcher.running,
    )


@router.post("/webhooks/receive", response_model=ReceiveResponse, tags=["webhooks"])
async def receive_webhook(
    request: Request,
    service: ServiceDep,
    signature: Annotated[str | None, Header(alias=SIGNATURE_HEADER)] = None,
    event_type: Annotated[str | None, Header(alias=EVENT_HEADER)] = None,
    event_id: Annotated[str | None, Header(alias=EVENT_ID_HEADER)] = None,
    timestamp: Annotated[str | None, Header(alias=TIMESTAMP_HEADER)] = None,
) -> ReceiveResponse:
    """Accept an inbound webhook signed with the shared secret.

    The signature is checked against the raw request bytes, before any
    parsing.
    """
    body = await request.body()
    if not service.verify_inbound(body, signature):
        raise SignatureError("Invalid webhook signature")

    try:
        payload: Any = json.loads(body)
    except ValueError as e:
        raise ValidationError("body", "must be valid JSON") from e

    logger.info("Webhook received", event_type=event_type, event_id=event_id)
    return ReceiveResponse(
        success=True,
        message="Webhook received successfully",
        data=ReceivedEvent(
            event_type=event_type,
            event_id=event_id,
            timestamp=timestamp,
            payload=payload,
        ),
    )


@router.post("/webhooks/test", response_model=TestWebhookResponse, tags=["webhooks"])
async def send_test_webhook(request: TestWebhookRequest, service: ServiceDep) -> TestWebhookResponse:
    """Queue a ``test`` event for a destination URL."""
    event = await service.send_test_event(request.user_id, request.webhook_url)
    return TestWebhookResponse(
        event_id=event.id,
        webhook_url=event.destination_url,
        payload=event.payload,
    )


@router.get("/webhooks/stats", response_model=StatsResponse, tags=["webhooks"])
async def get_stats(
    service: ServiceDep,
    user_id: Annotated[str | None, Query(description="Include this user's counts")] = None,
) -> StatsResponse:
    """Event counts overall and, optionally, for one user."""
    overall = await service.stats()
    user: UserStats | None = None
    if user_id is not None:
        user_stats = await service.stats(user_id=user_id)
        user = UserStats(
            total_events=user_stats.total_events,
            recent_events=user_stats.recent_events,
        )
    return StatsResponse(overall=overall, user=user)


@router.get("/webhooks/events", response_model=EventListResponse, tags=["webhooks"])
async def list_events(
    service: ServiceDep,
    user_id: Annotated[str, Query(min_length=1)],
    event_status: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    event_type: Annotated[EventType | None, Query()] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> EventListResponse:
    """Page through a user's events, newest first."""
    events, total = await service.list_events(
        user_id,
        status=event_status,
        event_type=event_type,
        page=page,
        limit=limit,
    )
    return EventListResponse(
        events=[EventResponse.from_event(e) for e in events],
        pagination=Pagination(page=page, limit=limit, total=total, pages=ceil(total / limit)),
    )


@router.post(
    "/webhooks/subscribe",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["subscriptions"],
)
async def subscribe(request: SubscribeRequest, service: ServiceDep) -> SubscriptionResponse:
    """Register a webhook destination for a user."""
    subscription = await service.registry.subscribe(
        request.user_id,
        request.webhook_url,
        request.events,
        secret=request.secret_key,
    )
    return SubscriptionResponse.from_subscription(subscription)


@router.get(
    "/webhooks/subscriptions",
    response_model=SubscriptionListResponse,
    tags=["subscriptions"],
)
async def list_subscriptions(
    service: ServiceDep,
    user_id: Annotated[str, Query(min_length=1)],
) -> SubscriptionListResponse:
    """List a user's subscriptions."""
    subscriptions = await service.registry.list_for_user(user_id)
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_subscription(s) for s in subscriptions]
    )


@router.put(
    "/webhooks/subscriptions/{subscription_id}",
    response_model=SubscriptionResponse,
    tags=["subscriptions"],
)
async def update_subscription(
    subscription_id: str,
    request: UpdateSubscriptionRequest,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Update a subscription. Fields left out of the body are unchanged."""
    changes: dict[str, Any] = {
        "url": request.webhook_url,
        "events": request.events,
        "active": request.is_active,
    }
    if "secret_key" in request.model_fields_set:
        changes["secret"] = request.secret_key

    subscription = await service.registry.update(subscription_id, request.user_id, **changes)
    return SubscriptionResponse.from_subscription(subscription)


@router.delete(
    "/webhooks/subscriptions/{subscription_id}",
    response_model=DeleteResponse,
    tags=["subscriptions"],
)
async def delete_subscription(
    subscription_id: str,
    service: ServiceDep,
    user_id: Annotated[str, Query(min_length=1)],
) -> DeleteResponse:
    """Delete a subscription."""
    await service.registry.unsubscribe(subscription_id, user_id)
    return DeleteResponse(deleted=True, id=subscription_id)
