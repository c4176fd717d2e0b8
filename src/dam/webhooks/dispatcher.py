"""Webhook dispatcher: drives events from pending to delivered or failed.

Two things trigger delivery attempts:

- ``create_webhook_event`` persists the event and immediately schedules a
  background attempt, returning before that attempt finishes.
- ``start()`` runs a polling loop that calls ``run_once`` every
  ``poll_interval`` seconds, plus a housekeeping loop that purges old
  terminal events.

All delivery state lives in the store. The only in-process state is the
set of event IDs with an attempt in flight, which stops the polling loop
from picking up an event the fast path is still sending.

Known limitation: several dispatchers sharing one store may send the same
event twice. The store's conditional updates keep the attempt count
correct, but nothing leases events across processes.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

import httpx

from dam.clock import Clock, utc_now
from dam.config import Settings
from dam.logging import get_logger
from dam.models import TERMINAL_STATUSES, EventType, WebhookEvent
from dam.storage import WebhookStore

from .delivery import DeliveryResult, DeliveryWorker
from .retry import RetryPolicy

logger = get_logger(__name__)

SecretResolver = Callable[[WebhookEvent], Awaitable[str]]
Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_CLEANUP_INTERVAL = 24 * 60 * 60.0
DEFAULT_RETENTION = timedelta(days=30)


class WebhookDispatcher:
    """Owns the delivery loops for one process.

    Example:
        ```python
        dispatcher = WebhookDispatcher(store, worker, resolve_secret)
        dispatcher.start()

        # Producer side: returns as soon as the event is stored
        await dispatcher.create_webhook_event(
            EventType.ASSET_UPLOADED,
            {"assetId": "a_1", "userId": "u_1"},
            "https://example.com/hooks",
        )

        await dispatcher.stop()
        ```
    """

    def __init__(
        self,
        store: WebhookStore,
        worker: DeliveryWorker,
        resolve_secret: SecretResolver,
        *,
        batch_size: int = 10,
        max_concurrent: int = 10,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Event store (source of truth).
            worker: Performs individual attempts.
            resolve_secret: Returns the signing secret for an event.
            batch_size: Maximum events taken per poll cycle.
            max_concurrent: Maximum concurrent deliveries.
            poll_interval: Seconds between poll cycles.
            cleanup_interval: Seconds between purges.
            retention: Age after which terminal events are purged.
            clock: Time source for retention cutoffs.
            sleep: Awaitable used between loop iterations.
        """
        self._store = store
        self._worker = worker
        self._resolve_secret = resolve_secret
        self._batch_size = batch_size
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._poll_interval = poll_interval
        self._cleanup_interval = cleanup_interval
        self._retention = retention
        self._clock = clock or utc_now
        self._sleep = sleep

        self._in_flight: set[str] = set()
        self._background: set[asyncio.Task[Any]] = set()
        self._loops: list[asyncio.Task[None]] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: WebhookStore,
        resolve_secret: SecretResolver,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> WebhookDispatcher:
        """Build a dispatcher and its worker from configuration."""
        worker = DeliveryWorker(
            store,
            RetryPolicy.from_settings(settings),
            timeout_seconds=settings.webhook_timeout_seconds,
            user_agent=settings.webhook_user_agent,
            response_body_limit=settings.webhook_response_body_limit,
            client=client,
            clock=clock,
        )
        return cls(
            store,
            worker,
            resolve_secret,
            batch_size=settings.webhook_batch_size,
            max_concurrent=settings.webhook_max_concurrent,
            poll_interval=settings.webhook_poll_interval_seconds,
            cleanup_interval=settings.webhook_cleanup_interval_hours * 3600,
            retention=timedelta(days=settings.webhook_retention_days),
            clock=clock,
        )

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._loops)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    # Producer entry point

    async def create_webhook_event(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        destination_url: str,
        user_id: str | None = None,
    ) -> WebhookEvent:
        """Persist a new event and schedule an immediate delivery attempt.

        Returns once the event is stored; the attempt runs in the
        background and its outcome never reaches the caller.

        Returns:
            The stored event (status pending, zero attempts).
        """
        event = await self._store.create_pending(event_type, payload, destination_url, user_id)
        logger.info(
            "Webhook event created",
            event_id=event.id,
            event_type=event.event_type.value,
            destination=destination_url,
        )
        self._in_flight.add(event.id)
        task = asyncio.create_task(self._deliver_guarded(event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return event

    # Cycles

    async def run_once(self) -> list[DeliveryResult]:
        """Run one poll cycle over due events.

        Events already in flight in this process are skipped. A failure on
        one event never stops the others.

        Returns:
            Results of the attempts that completed.
        """
        due = await self._store.find_due(self._batch_size)
        batch = [event for event in due if event.id not in self._in_flight]
        if not batch:
            return []

        self._in_flight.update(event.id for event in batch)
        logger.debug("Dispatching due webhook events", count=len(batch))
        results = await asyncio.gather(
            *(self._deliver_guarded(event) for event in batch)
        )
        return [result for result in results if result is not None]

    async def cleanup_once(self) -> int:
        """Purge terminal events older than the retention window.

        Returns:
            Number of events deleted.
        """
        cutoff = self._clock() - self._retention
        deleted = await self._store.purge_older_than(cutoff, TERMINAL_STATUSES)
        logger.info("Cleaned up old webhook events", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted

    async def _deliver_guarded(self, event: WebhookEvent) -> DeliveryResult | None:
        """Deliver one claimed event, containing every error. Releases the claim."""
        try:
            async with self._semaphore:
                secret = await self._resolve_secret(event)
                return await self._worker.deliver(event, secret)
        except Exception:
            logger.exception("Webhook dispatch failed", event_id=event.id)
            return None
        finally:
            self._in_flight.discard(event.id)

    # Lifecycle

    def start(self) -> None:
        """Start the polling and housekeeping loops on the running event loop."""
        if self.running:
            return
        self._loops = [
            asyncio.create_task(self._poll_loop(), name="webhook-poll"),
            asyncio.create_task(self._cleanup_loop(), name="webhook-cleanup"),
        ]
        logger.info(
            "Webhook dispatcher started",
            poll_interval=self._poll_interval,
            cleanup_interval=self._cleanup_interval,
        )

    async def stop(self, drain: bool = True) -> None:
        """Stop the loops and optionally wait for background deliveries.

        Cancelled in-flight attempts leave their events pending; the next
        poll (in this or another process) picks them up again.
        """
        loops, self._loops = self._loops, []
        for task in loops:
            task.cancel()
        for task in loops:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if drain:
            await self.drain()
        else:
            for task in list(self._background):
                task.cancel()
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Webhook dispatcher stopped")

    async def drain(self) -> None:
        """Wait until all background fast-path deliveries have finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error processing pending webhooks")
            await self._sleep(self._poll_interval)

    async def _cleanup_loop(self) -> None:
        while True:
            await self._sleep(self._cleanup_interval)
            try:
                await self.cleanup_once()
            except Exception:
                logger.exception("Error cleaning up old webhook events")


__all__ = ["SecretResolver", "WebhookDispatcher"]
