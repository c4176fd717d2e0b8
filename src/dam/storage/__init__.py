"""Webhook event and subscription storage.

Backends:
    - SQLiteWebhookStore: durable, aiosqlite-based (default)
    - InMemoryWebhookStore: process-local, for tests and development
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import DEFAULT_DUE_LIMIT, DEFAULT_PAGE_SIZE, WebhookStore
from .memory import InMemoryWebhookStore
from .sqlite import SQLiteWebhookStore

if TYPE_CHECKING:
    from dam.clock import Clock
    from dam.config import Settings


def create_store(settings: Settings, clock: Clock | None = None) -> WebhookStore:
    """Build the store selected by ``settings.storage_backend``."""
    if settings.storage_backend == "memory":
        return InMemoryWebhookStore(clock=clock)
    return SQLiteWebhookStore(
        settings.database_path,
        clock=clock,
        busy_timeout=settings.storage_busy_timeout_ms,
    )


__all__ = [
    "DEFAULT_DUE_LIMIT",
    "DEFAULT_PAGE_SIZE",
    "InMemoryWebhookStore",
    "SQLiteWebhookStore",
    "WebhookStore",
    "create_store",
]
