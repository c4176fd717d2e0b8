"""Webhook service layer.

Wires the store, subscription registry and dispatcher together and is
what producers (asset and user CRUD code) and the HTTP API talk to.

Example:
    ```python
    from dam.service import WebhookService

    async with WebhookService.create() as webhooks:
        webhooks.start_dispatcher()
        await webhooks.publish(
            EventType.ASSET_UPLOADED,
            {"assetId": "a_1", "fileName": "logo.png"},
            user_id="user_1",
        )
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from dam.clock import Clock, utc_now
from dam.config import Settings
from dam.logging import get_logger
from dam.models import (
    RECENT_WINDOW,
    DeliveryStatus,
    EventType,
    WebhookEvent,
    WebhookStats,
)
from dam.storage import DEFAULT_PAGE_SIZE, WebhookStore, create_store
from dam.webhooks import (
    SubscriptionRegistry,
    WebhookDispatcher,
    normalize_url,
    verify_signature,
)

logger = get_logger(__name__)

TEST_EVENT_MESSAGE = "This is a test webhook event"


@dataclass
class WebhookService:
    """High-level entry point for producing and inspecting webhook events.

    Attributes:
        settings: Configuration settings.
        store: Event and subscription store.
        registry: Subscription registry (secret resolution, fan-out).
        dispatcher: Delivery loops and the producer fast path.
        clock: Time source shared by all components.
    """

    settings: Settings
    store: WebhookStore
    registry: SubscriptionRegistry
    dispatcher: WebhookDispatcher
    clock: Clock = field(default=utc_now)
    _http_client: httpx.AsyncClient | None = field(default=None, repr=False)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        store: WebhookStore | None = None,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> WebhookService:
        """Create a service with default dependencies.

        Args:
            settings: Optional settings. Uses environment if None.
            store: Store to use instead of the configured backend.
            clock: Time source shared by store, worker and dispatcher.
            transport: httpx transport for outbound deliveries (tests).
        """
        if settings is None:
            settings = Settings()
        clock = clock or utc_now
        if store is None:
            store = create_store(settings, clock=clock)

        registry = SubscriptionRegistry(store, settings.effective_webhook_secret)
        http_client = httpx.AsyncClient(
            timeout=settings.webhook_timeout_seconds,
            transport=transport,
        )
        dispatcher = WebhookDispatcher.from_settings(
            settings,
            store,
            registry.resolve_secret,
            client=http_client,
            clock=clock,
        )
        return cls(
            settings=settings,
            store=store,
            registry=registry,
            dispatcher=dispatcher,
            clock=clock,
            _http_client=http_client,
        )

    async def initialize(self) -> None:
        """Initialize the store (tables, connections)."""
        await self.store.initialize()

    def start_dispatcher(self) -> None:
        """Start the polling and cleanup loops."""
        self.dispatcher.start()

    async def close(self) -> None:
        """Stop the dispatcher and release resources."""
        await self.dispatcher.stop()
        if self._http_client is not None:
            await self._http_client.aclose()
        await self.store.close()

    async def __aenter__(self) -> WebhookService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Producers

    async def create_webhook_event(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        destination_url: str,
        user_id: str | None = None,
    ) -> WebhookEvent:
        """Persist an event and start delivering it in the background."""
        return await self.dispatcher.create_webhook_event(
            event_type, payload, destination_url, user_id
        )

    async def publish(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        user_id: str,
    ) -> list[WebhookEvent]:
        """Create one event per interested destination of ``user_id``.

        Destinations are the user's active subscriptions for the event type,
        plus the configured default destination if there is one. Delivery
        problems never surface here.

        Returns:
            The created events.
        """
        destinations = [str(s.url) for s in await self.registry.matching(user_id, event_type)]
        if self.settings.webhook_default_url:
            default_url = normalize_url(self.settings.webhook_default_url)
            if default_url not in destinations:
                destinations.append(default_url)

        if not destinations:
            logger.debug("No webhook destinations", event_type=event_type.value, user_id=user_id)
            return []

        return [
            await self.create_webhook_event(event_type, payload, url, user_id)
            for url in destinations
        ]

    async def send_test_event(self, user_id: str, destination_url: str) -> WebhookEvent:
        """Send a ``test`` event to ``destination_url`` on behalf of ``user_id``.

        Raises:
            ValidationError: If the URL is not a valid http(s) URL.
        """
        destination_url = normalize_url(destination_url)
        payload = {
            "eventType": EventType.TEST.value,
            "userId": user_id,
            "timestamp": self.clock().isoformat(),
            "message": TEST_EVENT_MESSAGE,
        }
        return await self.create_webhook_event(EventType.TEST, payload, destination_url, user_id)

    # Consumers

    def verify_inbound(self, body: bytes, signature: str | None) -> bool:
        """Check an inbound webhook body against the default secret."""
        return verify_signature(body, self.registry.default_secret, signature)

    # Inspection

    async def stats(self, user_id: str | None = None) -> WebhookStats:
        """Event counts overall (or for one user) and for the last 24 hours."""
        since: datetime = self.clock() - RECENT_WINDOW
        return await self.store.stats(since=since, user_id=user_id)

    async def list_events(
        self,
        user_id: str,
        status: DeliveryStatus | None = None,
        event_type: EventType | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[WebhookEvent], int]:
        """Page through a user's events, newest first."""
        offset = (max(page, 1) - 1) * limit
        return await self.store.list_events(
            user_id=user_id,
            status=status,
            event_type=event_type,
            offset=offset,
            limit=limit,
        )


__all__ = ["TEST_EVENT_MESSAGE", "WebhookService"]
