"""In-process webhook store.

Keeps events and subscriptions in dictionaries guarded by an asyncio lock.
Nothing survives a restart, so this backend is meant for tests and local
development.
"""

from __future__ import annotations

import asyncio
import copy
from collections import Counter
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from dam.clock import Clock
from dam.models import (
    TERMINAL_STATUSES,
    DeliveryFailure,
    DeliveryResponse,
    DeliveryStatus,
    EventType,
    WebhookEvent,
    WebhookStats,
    WebhookSubscription,
)

from .base import DEFAULT_DUE_LIMIT, DEFAULT_PAGE_SIZE, WebhookStore


class InMemoryWebhookStore(WebhookStore):
    """Dictionary-backed WebhookStore.

    Every returned model is a copy; mutating it does not change the store.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__(clock)
        self._events: dict[str, WebhookEvent] = {}
        self._subscriptions: dict[str, WebhookSubscription] = {}
        self._lock = asyncio.Lock()

    async def create_pending(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        destination_url: str,
        user_id: str | None = None,
    ) -> WebhookEvent:
        self._encode_payload(payload)
        now = self.now()
        event = WebhookEvent(
            event_type=event_type,
            payload=copy.deepcopy(payload),
            destination_url=destination_url,
            user_id=user_id,
            next_retry_at=now,
            created_at=now,
        )
        async with self._lock:
            self._events[event.id] = event
        return event.model_copy(deep=True)

    async def get_event(self, event_id: str) -> WebhookEvent | None:
        event = self._events.get(event_id)
        return event.model_copy(deep=True) if event else None

    async def find_due(self, limit: int = DEFAULT_DUE_LIMIT) -> list[WebhookEvent]:
        self._check_limit(limit)
        now = self.now()
        async with self._lock:
            due = [e for e in self._events.values() if e.is_due(now)]
        due.sort(key=lambda e: e.next_retry_at or e.created_at)
        return [e.model_copy(deep=True) for e in due[:limit]]

    async def record_success(
        self,
        event_id: str,
        response: DeliveryResponse,
        expected_attempts: int | None = None,
    ) -> bool:
        async with self._lock:
            event = self._claimable(event_id, expected_attempts)
            if event is None:
                return False
            now = self.now()
            event.status = DeliveryStatus.DELIVERED
            event.attempts += 1
            event.last_attempt_at = now
            event.delivered_at = now
            event.next_retry_at = None
            event.last_response = response.model_copy(deep=True)
            return True

    async def record_failure(
        self,
        event_id: str,
        error: DeliveryFailure,
        next_retry_at: datetime | None,
        expected_attempts: int | None = None,
    ) -> bool:
        async with self._lock:
            event = self._claimable(event_id, expected_attempts)
            if event is None:
                return False
            event.attempts += 1
            event.last_attempt_at = self.now()
            event.last_error = error.model_copy(deep=True)
            event.next_retry_at = next_retry_at
            if next_retry_at is None:
                event.status = DeliveryStatus.FAILED
            return True

    async def purge_older_than(
        self,
        cutoff: datetime,
        statuses: Iterable[DeliveryStatus] = TERMINAL_STATUSES,
    ) -> int:
        purgeable = set(self._purge_statuses(statuses))
        async with self._lock:
            doomed = [
                e.id
                for e in self._events.values()
                if e.status in purgeable and e.created_at < cutoff
            ]
            for event_id in doomed:
                del self._events[event_id]
        return len(doomed)

    async def list_events(
        self,
        user_id: str | None = None,
        status: DeliveryStatus | None = None,
        event_type: EventType | None = None,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[WebhookEvent], int]:
        self._check_limit(limit, offset)
        matches = [
            e
            for e in self._events.values()
            if (user_id is None or e.user_id == user_id)
            and (status is None or e.status == status)
            and (event_type is None or e.event_type == event_type)
        ]
        matches.sort(key=lambda e: e.created_at, reverse=True)
        page = matches[offset : offset + limit]
        return [e.model_copy(deep=True) for e in page], len(matches)

    async def stats(
        self,
        since: datetime | None = None,
        user_id: str | None = None,
    ) -> WebhookStats:
        cutoff = self._recent_cutoff(since)
        events = [e for e in self._events.values() if user_id is None or e.user_id == user_id]
        breakdown = Counter(e.status.value for e in events)
        return WebhookStats(
            total_events=len(events),
            recent_events=sum(1 for e in events if e.created_at >= cutoff),
            status_breakdown=dict(breakdown),
        )

    async def store_subscription(self, subscription: WebhookSubscription) -> str:
        async with self._lock:
            self._subscriptions[subscription.id] = subscription.model_copy(deep=True)
        return subscription.id

    async def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        subscription = self._subscriptions.get(subscription_id)
        return subscription.model_copy(deep=True) if subscription else None

    async def list_subscriptions(
        self,
        user_id: str | None = None,
        url: str | None = None,
        active_only: bool = False,
    ) -> list[WebhookSubscription]:
        matches = [
            s
            for s in self._subscriptions.values()
            if (user_id is None or s.user_id == user_id)
            and (url is None or str(s.url) == url)
            and (not active_only or s.active)
        ]
        matches.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in matches]

    async def delete_subscription(self, subscription_id: str) -> bool:
        async with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def _claimable(self, event_id: str, expected_attempts: int | None) -> WebhookEvent | None:
        """Return the live event if a transition may be applied to it. Caller holds the lock."""
        event = self._events.get(event_id)
        if event is None or event.status is not DeliveryStatus.PENDING:
            return None
        if expected_attempts is not None and event.attempts != expected_attempts:
            return None
        return event
