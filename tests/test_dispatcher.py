"""Tests for the webhook dispatcher (fast path, poll cycles, housekeeping)."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from helpers import FakeClock, RecordingHandler

from dam.config import Settings
from dam.exceptions import StorageError
from dam.models import DeliveryResponse, DeliveryStatus, EventType, WebhookEvent
from dam.storage import InMemoryWebhookStore
from dam.webhooks import DeliveryWorker, RetryPolicy, WebhookDispatcher

URL = "https://example.com/webhook"

POLL_INTERVAL = 30.0
CLEANUP_INTERVAL = 86400.0


async def _secret(event: WebhookEvent) -> str:
    return "test_secret"


def _dispatcher(
    store: InMemoryWebhookStore,
    handler: RecordingHandler,
    clock: FakeClock,
    **kwargs: object,
) -> WebhookDispatcher:
    worker = DeliveryWorker(store, RetryPolicy(), client=handler.client(), clock=clock)
    kwargs.setdefault("resolve_secret", _secret)
    return WebhookDispatcher(store, worker, clock=clock, **kwargs)  # type: ignore[arg-type]


class BlockingSleep:
    """Sleep replacement that records delays and blocks until cancelled.

    ``polled`` is set once the poll loop has slept ``polls`` times.
    """

    def __init__(self, polls: int = 1) -> None:
        self.delays: list[float] = []
        self.polled = asyncio.Event()
        self._polls = polls

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.delays.count(POLL_INTERVAL) < self._polls and seconds == POLL_INTERVAL:
            await asyncio.sleep(0)
            return
        if seconds == POLL_INTERVAL:
            self.polled.set()
        await asyncio.Event().wait()


class TestFastPath:
    """Tests for create_webhook_event."""

    @pytest.mark.asyncio
    async def test_returns_pending_event_then_delivers(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(200)
        dispatcher = _dispatcher(memory_store, handler, clock)

        event = await dispatcher.create_webhook_event(
            EventType.ASSET_UPLOADED, {"assetId": "a_1"}, URL, "user_1"
        )

        assert event.status == DeliveryStatus.PENDING
        assert event.attempts == 0
        assert event.id in dispatcher.in_flight

        await dispatcher.drain()

        stored = await memory_store.get_event(event.id)
        assert stored is not None
        assert stored.status == DeliveryStatus.DELIVERED
        assert handler.calls == 1
        assert dispatcher.in_flight == frozenset()

    @pytest.mark.asyncio
    async def test_delivery_failure_never_reaches_producer(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(httpx.ConnectError("connection refused"))
        dispatcher = _dispatcher(memory_store, handler, clock)

        event = await dispatcher.create_webhook_event(EventType.USER_CREATED, {"userId": "u"}, URL)
        await dispatcher.drain()

        stored = await memory_store.get_event(event.id)
        assert stored is not None
        assert stored.status == DeliveryStatus.PENDING
        assert stored.attempts == 1
        assert stored.last_error is not None
        assert stored.last_error.code == "CONNECTION_ERROR"

    @pytest.mark.asyncio
    async def test_secret_resolution_error_contained(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        """A failing secret lookup is logged and the event stays pending for the poller."""
        handler = RecordingHandler(200)
        resolve = AsyncMock(side_effect=StorageError("subscriptions unavailable"))
        dispatcher = _dispatcher(memory_store, handler, clock, resolve_secret=resolve)

        event = await dispatcher.create_webhook_event(EventType.ASSET_UPLOADED, {}, URL)
        await dispatcher.drain()

        stored = await memory_store.get_event(event.id)
        assert stored is not None
        assert stored.status == DeliveryStatus.PENDING
        assert stored.attempts == 0
        assert handler.calls == 0
        assert dispatcher.in_flight == frozenset()


class TestRunOnce:
    """Tests for poll cycles."""

    @pytest.mark.asyncio
    async def test_skips_events_in_flight(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        """The poll cycle must not send an event the fast path is still sending."""
        handler = RecordingHandler(200)
        dispatcher = _dispatcher(memory_store, handler, clock)

        await dispatcher.create_webhook_event(EventType.ASSET_UPLOADED, {}, URL)
        results = await dispatcher.run_once()
        await dispatcher.drain()

        assert results == []
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_delivers_due_events(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(200)
        dispatcher = _dispatcher(memory_store, handler, clock)
        events = [
            await memory_store.create_pending(EventType.ASSET_UPLOADED, {"n": n}, URL)
            for n in range(3)
        ]

        results = await dispatcher.run_once()

        assert sorted(r.event_id for r in results) == sorted(e.id for e in events)
        assert all(r.delivered for r in results)
        assert await memory_store.find_due() == []

    @pytest.mark.asyncio
    async def test_batch_size_bounds_cycle(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(200)
        dispatcher = _dispatcher(memory_store, handler, clock, batch_size=2)
        for n in range(5):
            await memory_store.create_pending(EventType.ASSET_UPLOADED, {"n": n}, URL)

        assert len(await dispatcher.run_once()) == 2
        assert len(await memory_store.find_due()) == 3

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_cycle(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(200)
        bad = await memory_store.create_pending(
            EventType.ASSET_UPLOADED, {}, "https://broken.example.com/hook"
        )
        good = await memory_store.create_pending(EventType.ASSET_UPLOADED, {}, URL)

        async def resolve(event: WebhookEvent) -> str:
            if event.id == bad.id:
                raise RuntimeError("secret store exploded")
            return "test_secret"

        dispatcher = _dispatcher(memory_store, handler, clock, resolve_secret=resolve)
        results = await dispatcher.run_once()

        assert [r.event_id for r in results] == [good.id]
        stored_good = await memory_store.get_event(good.id)
        assert stored_good is not None
        assert stored_good.status == DeliveryStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_retry_waits_for_backoff(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(503, 200)
        dispatcher = _dispatcher(memory_store, handler, clock)
        event = await memory_store.create_pending(EventType.ASSET_UPLOADED, {}, URL)

        await dispatcher.run_once()
        assert await dispatcher.run_once() == []

        clock.advance(seconds=1)
        (result,) = await dispatcher.run_once()

        assert result.event_id == event.id
        assert result.delivered is True
        assert result.attempts == 2


class TestCleanup:
    """Tests for cleanup_once."""

    @pytest.mark.asyncio
    async def test_purges_terminal_events_past_retention(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(200)
        dispatcher = _dispatcher(memory_store, handler, clock, retention=timedelta(days=30))
        old = await memory_store.create_pending(EventType.ASSET_UPLOADED, {}, URL)
        await memory_store.record_success(old.id, DeliveryResponse(status_code=200))
        stuck = await memory_store.create_pending(EventType.ASSET_UPLOADED, {}, URL)
        clock.advance(days=31)

        deleted = await dispatcher.cleanup_once()

        assert deleted == 1
        assert await memory_store.get_event(old.id) is None
        assert await memory_store.get_event(stuck.id) is not None


class TestLifecycle:
    """Tests for start/stop and the background loops."""

    @pytest.mark.asyncio
    async def test_poll_loop_delivers_and_stops(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(200)
        sleep = BlockingSleep()
        dispatcher = _dispatcher(
            memory_store,
            handler,
            clock,
            poll_interval=POLL_INTERVAL,
            cleanup_interval=CLEANUP_INTERVAL,
            sleep=sleep,
        )
        event = await memory_store.create_pending(EventType.ASSET_UPLOADED, {}, URL)

        dispatcher.start()
        assert dispatcher.running is True
        await asyncio.wait_for(sleep.polled.wait(), timeout=5)

        stored = await memory_store.get_event(event.id)
        assert stored is not None
        assert stored.status == DeliveryStatus.DELIVERED

        await dispatcher.stop()
        assert dispatcher.running is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        sleep = BlockingSleep()
        dispatcher = _dispatcher(memory_store, RecordingHandler(200), clock, sleep=sleep)

        dispatcher.start()
        loops = list(dispatcher._loops)
        dispatcher.start()

        assert dispatcher._loops == loops
        await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_poll_loop_survives_store_errors(self, clock: FakeClock) -> None:
        """A failing cycle is logged and the next cycle still runs."""
        store = MagicMock()
        store.find_due = AsyncMock(side_effect=[StorageError("database is locked"), []])
        worker = DeliveryWorker(store, RetryPolicy(), clock=clock)
        sleep = BlockingSleep(polls=2)
        dispatcher = WebhookDispatcher(
            store,
            worker,
            _secret,
            poll_interval=POLL_INTERVAL,
            cleanup_interval=CLEANUP_INTERVAL,
            clock=clock,
            sleep=sleep,
        )

        dispatcher.start()
        await asyncio.wait_for(sleep.polled.wait(), timeout=5)
        await dispatcher.stop()

        assert store.find_due.await_count == 2

    @pytest.mark.asyncio
    async def test_stop_drains_fast_path(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(200)
        dispatcher = _dispatcher(memory_store, handler, clock)

        event = await dispatcher.create_webhook_event(EventType.ASSET_DELETED, {}, URL)
        await dispatcher.stop()

        stored = await memory_store.get_event(event.id)
        assert stored is not None
        assert stored.status == DeliveryStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_stop_without_drain_leaves_event_pending(
        self, memory_store: InMemoryWebhookStore, clock: FakeClock
    ) -> None:
        handler = RecordingHandler(200)
        dispatcher = _dispatcher(memory_store, handler, clock)

        event = await dispatcher.create_webhook_event(EventType.ASSET_DELETED, {}, URL)
        await dispatcher.stop(drain=False)

        stored = await memory_store.get_event(event.id)
        assert stored is not None
        assert stored.status == DeliveryStatus.PENDING
        assert stored.attempts == 0


class TestFromSettings:
    """Tests for building a dispatcher from configuration."""

    def test_maps_settings(self, memory_store: InMemoryWebhookStore) -> None:
        settings = Settings(
            env="test",
            webhook_batch_size=25,
            webhook_max_concurrent=4,
            webhook_poll_interval_seconds=5.0,
            webhook_cleanup_interval_hours=1.0,
            webhook_retention_days=7,
            webhook_retry_attempts=5,
        )

        dispatcher = WebhookDispatcher.from_settings(settings, memory_store, _secret)

        assert dispatcher._batch_size == 25
        assert dispatcher._max_concurrent == 4
        assert dispatcher._poll_interval == 5.0
        assert dispatcher._cleanup_interval == 3600.0
        assert dispatcher._retention == timedelta(days=7)
        assert dispatcher._worker.retry_policy.max_attempts == 5
