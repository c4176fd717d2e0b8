"""Tests for the subscription registry."""

from __future__ import annotations

import pytest

from dam.exceptions import NotFoundError, ValidationError
from dam.models import EventType, WebhookEvent
from dam.storage import InMemoryWebhookStore
from dam.webhooks import SubscriptionRegistry, normalize_url, parse_event_types

URL = "https://example.com/hook"
DEFAULT_SECRET = "default-secret"


@pytest.fixture
def registry(memory_store: InMemoryWebhookStore) -> SubscriptionRegistry:
    return SubscriptionRegistry(memory_store, DEFAULT_SECRET)


class TestValidationHelpers:
    """Tests for URL and event type validation."""

    @pytest.mark.parametrize("url", ["https://example.com/hook", "http://localhost:8080/webhooks"])
    def test_valid_urls(self, url: str) -> None:
        assert normalize_url(url) == url

    @pytest.mark.parametrize("url", ["not a url", "ftp://example.com/hook", "", "example.com/hook"])
    def test_invalid_urls(self, url: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize_url(url)
        assert exc_info.value.field == "url"

    def test_parse_event_types(self) -> None:
        parsed = parse_event_types(["asset.uploaded", EventType.USER_DELETED, "asset.uploaded"])
        assert parsed == [EventType.ASSET_UPLOADED, EventType.USER_DELETED]

    @pytest.mark.parametrize("events", [[], ["asset.exploded"], ["test"]])
    def test_invalid_event_types(self, events: list[str]) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_event_types(events)
        assert exc_info.value.field == "events"


class TestSubscribe:
    """Tests for subscribe."""

    @pytest.mark.asyncio
    async def test_subscribe(self, registry: SubscriptionRegistry) -> None:
        subscription = await registry.subscribe("user_1", URL, ["asset.uploaded"], secret="mine")

        assert subscription.id.startswith("whk_")
        assert subscription.user_id == "user_1"
        assert str(subscription.url) == URL
        assert subscription.events == [EventType.ASSET_UPLOADED]
        assert subscription.secret == "mine"
        assert subscription.active is True
        assert await registry.list_for_user("user_1") == [subscription]

    @pytest.mark.asyncio
    async def test_duplicate_url_rejected(self, registry: SubscriptionRegistry) -> None:
        await registry.subscribe("user_1", URL, ["asset.uploaded"])

        with pytest.raises(ValidationError, match="already exists"):
            await registry.subscribe("user_1", URL, ["asset.deleted"])

    @pytest.mark.asyncio
    async def test_same_url_other_user_allowed(self, registry: SubscriptionRegistry) -> None:
        await registry.subscribe("user_1", URL, ["asset.uploaded"])
        other = await registry.subscribe("user_2", URL, ["asset.uploaded"])
        assert other.user_id == "user_2"

    @pytest.mark.asyncio
    async def test_invalid_input_stores_nothing(
        self, registry: SubscriptionRegistry, memory_store: InMemoryWebhookStore
    ) -> None:
        with pytest.raises(ValidationError):
            await registry.subscribe("user_1", "nope", ["asset.uploaded"])
        with pytest.raises(ValidationError):
            await registry.subscribe("user_1", URL, ["bogus"])

        assert await memory_store.list_subscriptions() == []


class TestManage:
    """Tests for get, update and unsubscribe."""

    @pytest.mark.asyncio
    async def test_get_enforces_ownership(self, registry: SubscriptionRegistry) -> None:
        subscription = await registry.subscribe("user_1", URL, ["asset.uploaded"])

        assert (await registry.get(subscription.id, "user_1")).id == subscription.id
        with pytest.raises(NotFoundError):
            await registry.get(subscription.id, "user_2")
        with pytest.raises(NotFoundError):
            await registry.get("whk_missing", "user_1")

    @pytest.mark.asyncio
    async def test_update_fields(self, registry: SubscriptionRegistry) -> None:
        subscription = await registry.subscribe("user_1", URL, ["asset.uploaded"], secret="old")

        updated = await registry.update(
            subscription.id,
            "user_1",
            url="https://example.com/new",
            events=["asset.deleted", "asset.shared"],
            active=False,
        )

        assert str(updated.url) == "https://example.com/new"
        assert updated.events == [EventType.ASSET_DELETED, EventType.ASSET_SHARED]
        assert updated.active is False
        assert updated.secret == "old"
        assert updated.created_at == subscription.created_at
        assert (await registry.get(subscription.id, "user_1")).active is False

    @pytest.mark.asyncio
    async def test_update_clears_secret(self, registry: SubscriptionRegistry) -> None:
        subscription = await registry.subscribe("user_1", URL, ["asset.uploaded"], secret="old")
        updated = await registry.update(subscription.id, "user_1", secret=None)
        assert updated.secret is None

    @pytest.mark.asyncio
    async def test_update_to_existing_url_rejected(self, registry: SubscriptionRegistry) -> None:
        await registry.subscribe("user_1", "https://example.com/a", ["asset.uploaded"])
        second = await registry.subscribe("user_1", "https://example.com/b", ["asset.uploaded"])

        with pytest.raises(ValidationError):
            await registry.update(second.id, "user_1", url="https://example.com/a")

    @pytest.mark.asyncio
    async def test_unsubscribe(self, registry: SubscriptionRegistry) -> None:
        subscription = await registry.subscribe("user_1", URL, ["asset.uploaded"])

        with pytest.raises(NotFoundError):
            await registry.unsubscribe(subscription.id, "user_2")
        await registry.unsubscribe(subscription.id, "user_1")

        assert await registry.list_for_user("user_1") == []


class TestMatchingAndSecrets:
    """Tests for fan-out and signing secret resolution."""

    @pytest.mark.asyncio
    async def test_matching_only_active_interested(self, registry: SubscriptionRegistry) -> None:
        wanted = await registry.subscribe("user_1", "https://a.example.com/", ["asset.uploaded"])
        await registry.subscribe("user_1", "https://b.example.com/", ["asset.deleted"])
        paused = await registry.subscribe("user_1", "https://c.example.com/", ["asset.uploaded"])
        await registry.update(paused.id, "user_1", active=False)

        matches = await registry.matching("user_1", EventType.ASSET_UPLOADED)

        assert [s.id for s in matches] == [wanted.id]

    @pytest.mark.asyncio
    async def test_subscription_secret_wins(self, registry: SubscriptionRegistry) -> None:
        await registry.subscribe("user_1", URL, ["asset.uploaded"], secret="per-sub")
        event = WebhookEvent(event_type=EventType.ASSET_UPLOADED, destination_url=URL, user_id="user_1")

        assert await registry.resolve_secret(event) == "per-sub"

    @pytest.mark.asyncio
    async def test_falls_back_to_default_secret(self, registry: SubscriptionRegistry) -> None:
        await registry.subscribe("user_1", URL, ["asset.uploaded"])
        no_secret = WebhookEvent(
            event_type=EventType.ASSET_UPLOADED, destination_url=URL, user_id="user_1"
        )
        unknown = WebhookEvent(
            event_type=EventType.TEST, destination_url="https://nowhere.example.com/x"
        )
        invalid = WebhookEvent(event_type=EventType.TEST, destination_url="not a url")

        assert await registry.resolve_secret(no_secret) == DEFAULT_SECRET
        assert await registry.resolve_secret(unknown) == DEFAULT_SECRET
        assert await registry.resolve_secret(invalid) == DEFAULT_SECRET
