"""Webhook delivery for the DAM backend.

HMAC-signed delivery with exponential backoff, driven by a polling
dispatcher over a persistent event store.

Example:
    ```python
    from dam.webhooks import RetryPolicy, WebhookDispatcher, DeliveryWorker

    worker = DeliveryWorker(store, RetryPolicy(max_attempts=3, base_delay_ms=1000))
    dispatcher = WebhookDispatcher(store, worker, registry.resolve_secret)
    dispatcher.start()

    await dispatcher.create_webhook_event(
        EventType.ASSET_UPLOADED,
        {"assetId": "a_1", "userId": "u_1"},
        "https://example.com/hooks",
    )
    ```
"""

from .delivery import DeliveryResult, DeliveryWorker, format_timestamp, serialize_payload
from .dispatcher import SecretResolver, WebhookDispatcher
from .retry import RetryPolicy
from .signing import (
    EVENT_HEADER,
    EVENT_ID_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
    verify_signature,
)
from .subscriptions import SubscriptionRegistry, normalize_url, parse_event_types

__all__ = [
    "EVENT_HEADER",
    "EVENT_ID_HEADER",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "DeliveryResult",
    "DeliveryWorker",
    "RetryPolicy",
    "SecretResolver",
    "SubscriptionRegistry",
    "WebhookDispatcher",
    "compute_signature",
    "format_timestamp",
    "normalize_url",
    "parse_event_types",
    "serialize_payload",
    "verify_signature",
]
