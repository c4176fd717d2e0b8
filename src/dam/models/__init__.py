"""Webhook data models.

Event Types:
    - WebhookEvent: One outbound notification and its delivery state
    - WebhookSubscription: A user's registered destination

Supporting Types:
    - EventType, DeliveryStatus: Closed enumerations
    - DeliveryResponse, DeliveryFailure: Diagnostics of the last attempt
    - WebhookStats: Aggregate counts
"""

from .base import generate_id
from .webhook import (
    RECENT_WINDOW,
    SUBSCRIBABLE_EVENT_TYPES,
    TERMINAL_STATUSES,
    DeliveryFailure,
    DeliveryResponse,
    DeliveryStatus,
    EventType,
    WebhookEvent,
    WebhookStats,
    WebhookSubscription,
)

__all__ = [
    "RECENT_WINDOW",
    "SUBSCRIBABLE_EVENT_TYPES",
    "TERMINAL_STATUSES",
    "DeliveryFailure",
    "DeliveryResponse",
    "DeliveryStatus",
    "EventType",
    "WebhookEvent",
    "WebhookStats",
    "WebhookSubscription",
    "generate_id",
]
