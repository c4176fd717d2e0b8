"""Subscription registry: who wants which events, and with which secret.

Validation happens here, at subscribe time. A bad URL or an unknown event
type is rejected before anything reaches the event store.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from dam.exceptions import NotFoundError, ValidationError
from dam.logging import get_logger
from dam.models import (
    SUBSCRIBABLE_EVENT_TYPES,
    EventType,
    WebhookEvent,
    WebhookSubscription,
)
from dam.storage import WebhookStore

logger = get_logger(__name__)

_url_adapter: TypeAdapter[HttpUrl] = TypeAdapter(HttpUrl)

_UNSET = object()


def normalize_url(url: str) -> str:
    """Validate an http(s) URL and return its canonical string form.

    Raises:
        ValidationError: If the URL is not a valid http or https URL.
    """
    try:
        return str(_url_adapter.validate_python(url))
    except PydanticValidationError as e:
        raise ValidationError("url", f"valid webhook URL is required ({url!r})") from e


def parse_event_types(events: Iterable[str | EventType]) -> list[EventType]:
    """Validate subscribed event types, preserving order and dropping duplicates.

    Raises:
        ValidationError: If the list is empty or contains an unsupported type.
    """
    parsed: list[EventType] = []
    for raw in events:
        try:
            event_type = EventType(raw)
        except ValueError as e:
            raise ValidationError("events", f"invalid event type {raw!r}") from e
        if event_type not in SUBSCRIBABLE_EVENT_TYPES:
            raise ValidationError("events", f"event type {event_type.value!r} cannot be subscribed to")
        if event_type not in parsed:
            parsed.append(event_type)
    if not parsed:
        raise ValidationError("events", "at least one event type is required")
    return parsed


class SubscriptionRegistry:
    """Manages webhook subscriptions and resolves signing secrets.

    Example:
        ```python
        registry = SubscriptionRegistry(store, default_secret="s3cret")
        sub = await registry.subscribe("user_1", "https://example.com/hook", ["asset.uploaded"])
        secret = await registry.resolve_secret(event)
        ```
    """

    def __init__(self, store: WebhookStore, default_secret: str) -> None:
        self._store = store
        self._default_secret = default_secret

    @property
    def default_secret(self) -> str:
        return self._default_secret

    async def subscribe(
        self,
        user_id: str,
        url: str,
        events: Iterable[str | EventType],
        secret: str | None = None,
    ) -> WebhookSubscription:
        """Register a destination for a user.

        Raises:
            ValidationError: On an invalid URL, invalid event types, or if the
                user already has a subscription for this URL.
        """
        normalized = normalize_url(url)
        event_types = parse_event_types(events)

        existing = await self._store.list_subscriptions(user_id=user_id, url=normalized)
        if existing:
            raise ValidationError("url", "webhook subscription already exists for this URL")

        subscription = WebhookSubscription(
            user_id=user_id,
            url=normalized,
            events=event_types,
            secret=secret or None,
        )
        await self._store.store_subscription(subscription)
        logger.info(
            "Webhook subscription created",
            subscription_id=subscription.id,
            user_id=user_id,
            events=[e.value for e in event_types],
        )
        return subscription

    async def get(self, subscription_id: str, user_id: str) -> WebhookSubscription:
        """Get a subscription owned by ``user_id``.

        Raises:
            NotFoundError: If it does not exist or belongs to another user.
        """
        subscription = await self._store.get_subscription(subscription_id)
        if subscription is None or subscription.user_id != user_id:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def list_for_user(self, user_id: str) -> list[WebhookSubscription]:
        return await self._store.list_subscriptions(user_id=user_id)

    async def update(
        self,
        subscription_id: str,
        user_id: str,
        *,
        url: str | None = None,
        events: Iterable[str | EventType] | None = None,
        active: bool | None = None,
        secret: str | None | object = _UNSET,
    ) -> WebhookSubscription:
        """Update fields of a subscription owned by ``user_id``.

        Pass ``secret=None`` to fall back to the default secret.

        Raises:
            NotFoundError: If the subscription is not found for this user.
            ValidationError: On invalid new values.
        """
        subscription = await self.get(subscription_id, user_id)
        updates: dict[str, object] = {}

        if url is not None:
            normalized = normalize_url(url)
            if normalized != str(subscription.url):
                clashes = await self._store.list_subscriptions(user_id=user_id, url=normalized)
                if clashes:
                    raise ValidationError("url", "webhook subscription already exists for this URL")
            updates["url"] = normalized
        if events is not None:
            updates["events"] = parse_event_types(events)
        if active is not None:
            updates["active"] = active
        if secret is not _UNSET:
            updates["secret"] = secret or None
        updates["updated_at"] = datetime.now(UTC)

        data = subscription.model_dump(mode="json")
        data.update(updates)
        updated = WebhookSubscription.model_validate(data)
        await self._store.store_subscription(updated)
        logger.info("Webhook subscription updated", subscription_id=subscription_id)
        return updated

    async def unsubscribe(self, subscription_id: str, user_id: str) -> None:
        """Delete a subscription owned by ``user_id``.

        Raises:
            NotFoundError: If the subscription is not found for this user.
        """
        await self.get(subscription_id, user_id)
        await self._store.delete_subscription(subscription_id)
        logger.info("Webhook subscription deleted", subscription_id=subscription_id)

    async def matching(self, user_id: str, event_type: EventType) -> list[WebhookSubscription]:
        """Active subscriptions of ``user_id`` that want ``event_type``."""
        subscriptions = await self._store.list_subscriptions(user_id=user_id, active_only=True)
        return [s for s in subscriptions if s.subscribes_to(event_type)]

    async def resolve_secret(self, event: WebhookEvent) -> str:
        """Secret used to sign ``event``.

        The secret of the event owner's active subscription for the
        destination wins; without an owner, any active subscription for the
        destination is used. Otherwise the default secret applies.
        """
        try:
            url = normalize_url(event.destination_url)
        except ValidationError:
            return self._default_secret

        candidates = await self._store.list_subscriptions(
            user_id=event.user_id,
            url=url,
            active_only=True,
        )
        for subscription in candidates:
            if subscription.secret:
                return subscription.secret
        return self._default_secret


__all__ = ["SubscriptionRegistry", "normalize_url", "parse_event_types"]
