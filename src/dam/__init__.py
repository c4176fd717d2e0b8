"""DAM Webhooks: signed event delivery for the digital asset management backend.

Asset and user lifecycle events are persisted before any network I/O,
signed with HMAC-SHA256 and POSTed to subscriber URLs, with exponential
backoff retries driven by a polling dispatcher.

Quick Start:
    from dam import EventType, WebhookService

    async with WebhookService.create() as webhooks:
        webhooks.start_dispatcher()

        await webhooks.registry.subscribe(
            "user_123",
            "https://example.com/hooks",
            ["asset.uploaded", "asset.deleted"],
        )
        await webhooks.publish(
            EventType.ASSET_UPLOADED,
            {"assetId": "a_1", "fileName": "logo.png"},
            user_id="user_123",
        )

Event lifecycle:
    - pending: stored, waiting for its next attempt
    - delivered: a 2xx response was received (terminal)
    - failed: the retry ceiling was reached (terminal)
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    DamError,
    DeliveryError,
    NotFoundError,
    SignatureError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    delivery_context,
    get_logger,
)

# Models
from .models import (
    DeliveryStatus,
    EventType,
    WebhookEvent,
    WebhookStats,
    WebhookSubscription,
)

# Service
from .service import WebhookService

# Storage
from .storage import InMemoryWebhookStore, SQLiteWebhookStore, WebhookStore

# Delivery
from .webhooks import (
    DeliveryWorker,
    RetryPolicy,
    SubscriptionRegistry,
    WebhookDispatcher,
    compute_signature,
    verify_signature,
)

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "AuthenticationError",
    "ConfigurationError",
    "DamError",
    "DeliveryError",
    "NotFoundError",
    "SignatureError",
    "StorageError",
    "ValidationError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "delivery_context",
    "get_logger",
    # Models
    "DeliveryStatus",
    "EventType",
    "WebhookEvent",
    "WebhookStats",
    "WebhookSubscription",
    # Service
    "WebhookService",
    # Storage
    "InMemoryWebhookStore",
    "SQLiteWebhookStore",
    "WebhookStore",
    # Delivery
    "DeliveryWorker",
    "RetryPolicy",
    "SubscriptionRegistry",
    "WebhookDispatcher",
    "compute_signature",
    "verify_signature",
]
