"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import FakeClock  # noqa: E402

from dam.config import Settings  # noqa: E402
from dam.storage import InMemoryWebhookStore, SQLiteWebhookStore, WebhookStore  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    """A fake clock starting at a fixed moment."""
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an in-memory service with a known secret and no dispatcher loops."""
    return Settings(
        env="test",
        storage_backend="memory",
        webhook_secret="test-secret",
        dispatcher_enabled=False,
        log_format="text",
    )


@pytest_asyncio.fixture
async def memory_store(clock: FakeClock) -> AsyncIterator[InMemoryWebhookStore]:
    """An in-memory store on the fake clock."""
    async with InMemoryWebhookStore(clock=clock) as store:
        yield store


@pytest_asyncio.fixture
async def sqlite_store(clock: FakeClock, tmp_path: Path) -> AsyncIterator[SQLiteWebhookStore]:
    """A SQLite store in a temporary directory on the fake clock."""
    async with SQLiteWebhookStore(tmp_path / "webhooks.db", clock=clock) as store:
        yield store


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(
    request: pytest.FixtureRequest, clock: FakeClock, tmp_path: Path
) -> AsyncIterator[WebhookStore]:
    """Every store backend, so behaviour is checked once per backend."""
    backend: WebhookStore
    if request.param == "memory":
        backend = InMemoryWebhookStore(clock=clock)
    else:
        backend = SQLiteWebhookStore(tmp_path / "webhooks.db", clock=clock)
    async with backend:
        yield backend
