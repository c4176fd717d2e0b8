"""Tests for webhook models."""

from datetime import timedelta

import pytest
from helpers import START
from pydantic import ValidationError

from dam.models import (
    SUBSCRIBABLE_EVENT_TYPES,
    DeliveryStatus,
    EventType,
    WebhookEvent,
    WebhookSubscription,
    generate_id,
)


class TestGenerateId:
    """Tests for ID generation."""

    def test_prefix_and_uniqueness(self):
        ids = {generate_id("evt") for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("evt_") and len(i) == 16 for i in ids)


class TestEnums:
    """Tests for event types and statuses."""

    def test_event_type_values(self):
        assert EventType("asset.uploaded") is EventType.ASSET_UPLOADED
        assert EventType.USER_DELETED.value == "user.deleted"

    def test_test_event_not_subscribable(self):
        assert EventType.TEST not in SUBSCRIBABLE_EVENT_TYPES
        assert len(SUBSCRIBABLE_EVENT_TYPES) == 6

    def test_terminal_statuses(self):
        assert not DeliveryStatus.PENDING.is_terminal
        assert DeliveryStatus.DELIVERED.is_terminal
        assert DeliveryStatus.FAILED.is_terminal


class TestWebhookEvent:
    """Tests for WebhookEvent."""

    def test_defaults(self):
        event = WebhookEvent(event_type=EventType.ASSET_UPLOADED, destination_url="https://x.io/h")
        assert event.id.startswith("evt_")
        assert event.status == DeliveryStatus.PENDING
        assert event.attempts == 0
        assert event.payload == {}
        assert not event.is_terminal

    def test_is_due(self):
        event = WebhookEvent(
            event_type=EventType.ASSET_UPLOADED,
            destination_url="https://x.io/h",
            next_retry_at=START + timedelta(seconds=5),
        )
        assert not event.is_due(START)
        assert event.is_due(START + timedelta(seconds=5))

    def test_terminal_event_never_due(self):
        event = WebhookEvent(
            event_type=EventType.ASSET_UPLOADED,
            destination_url="https://x.io/h",
            status=DeliveryStatus.FAILED,
        )
        assert not event.is_due(START)

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            WebhookEvent(
                event_type=EventType.ASSET_UPLOADED,
                destination_url="https://x.io/h",
                retries=2,
            )

    def test_rejects_negative_attempts(self):
        with pytest.raises(ValidationError):
            WebhookEvent(
                event_type=EventType.ASSET_UPLOADED,
                destination_url="https://x.io/h",
                attempts=-1,
            )


class TestWebhookSubscription:
    """Tests for WebhookSubscription."""

    def test_subscribes_to(self):
        subscription = WebhookSubscription(
            user_id="user_1",
            url="https://example.com/hook",
            events=[EventType.ASSET_UPLOADED],
        )
        assert subscription.subscribes_to(EventType.ASSET_UPLOADED)
        assert not subscription.subscribes_to(EventType.ASSET_DELETED)

    def test_inactive_subscribes_to_nothing(self):
        subscription = WebhookSubscription(
            user_id="user_1",
            url="https://example.com/hook",
            events=[EventType.ASSET_UPLOADED],
            active=False,
        )
        assert not subscription.subscribes_to(EventType.ASSET_UPLOADED)

    def test_requires_events(self):
        with pytest.raises(ValidationError):
            WebhookSubscription(user_id="user_1", url="https://example.com/hook", events=[])
