#!/usr/bin/env python3
"""Quickstart demo - publish, sign, retry and deliver.

Demonstrates:
- subscribe(): Register a destination with its own signing secret
- publish(): Persist events and deliver them in the background
- Retries: A receiver that fails once, then accepts the redelivery
- verify_signature(): What a receiver does with the X-Webhook-* headers

The receiver is an in-process httpx.MockTransport, so nothing listens on
the network and no database file is written.
"""

import asyncio

import httpx

from dam.config import Settings
from dam.models import EventType
from dam.service import WebhookService
from dam.webhooks import SIGNATURE_HEADER, verify_signature

SUBSCRIPTION_SECRET = "quickstart-secret"


class FlakyReceiver:
    """Rejects the first request with a 503, then verifies and accepts."""

    def __init__(self) -> None:
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        event = request.headers["X-Webhook-Event"]
        valid = verify_signature(request.content, SUBSCRIPTION_SECRET, request.headers[SIGNATURE_HEADER])
        print(f"  receiver: request #{self.requests} event={event} signature_valid={valid}")
        if self.requests == 1:
            return httpx.Response(503, text="warming up")
        return httpx.Response(200 if valid else 401, text="ok")


async def main() -> None:
    print("=" * 70)
    print("DAM Webhooks Quickstart Demo")
    print("=" * 70)

    settings = Settings(
        env="development",
        storage_backend="memory",
        webhook_retry_delay_ms=200,
        webhook_poll_interval_seconds=0.1,
        log_level="WARNING",
        log_format="text",
    )
    receiver = FlakyReceiver()

    async with WebhookService.create(settings, transport=httpx.MockTransport(receiver)) as webhooks:
        webhooks.start_dispatcher()

        subscription = await webhooks.registry.subscribe(
            "user_123",
            "https://hooks.example.com/dam",
            ["asset.uploaded"],
            secret=SUBSCRIPTION_SECRET,
        )
        print(f"\nSubscribed {subscription.url} ({subscription.id})")

        print("\nPublishing asset.uploaded ...")
        (event,) = await webhooks.publish(
            EventType.ASSET_UPLOADED,
            {"assetId": "asset_1", "fileName": "logo.png", "size": 20480},
            user_id="user_123",
        )

        for _ in range(50):
            stored = await webhooks.store.get_event(event.id)
            if stored is not None and stored.is_terminal:
                break
            await asyncio.sleep(0.1)

        stored = await webhooks.store.get_event(event.id)
        assert stored is not None
        print(f"\nEvent {stored.id}: status={stored.status.value} attempts={stored.attempts}")
        if stored.last_error:
            print(f"  last error: {stored.last_error.code} {stored.last_error.message}")

        stats = await webhooks.stats()
        print(f"\nStats: total={stats.total_events} breakdown={stats.status_breakdown}")


if __name__ == "__main__":
    asyncio.run(main())
