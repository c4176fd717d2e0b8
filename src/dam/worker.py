"""Standalone dispatcher process.

Runs the polling and cleanup loops without the HTTP API, for deployments
that keep delivery out of the web process (set ``DAM_DISPATCHER_ENABLED=false``
on the API in that case, so only one dispatcher polls the store).

Usage:
    python -m dam
"""

from __future__ import annotations

import asyncio
import signal

from dam.config import Settings
from dam.logging import configure_logging, get_logger
from dam.service import WebhookService

logger = get_logger(__name__)


async def run(
    settings: Settings | None = None,
    stop: asyncio.Event | None = None,
    service: WebhookService | None = None,
) -> None:
    """Run the dispatcher until ``stop`` is set or SIGINT/SIGTERM arrives.

    Args:
        settings: Settings to build the service from. Uses environment if None.
        stop: Event that ends the run when set.
        service: Prebuilt service to run instead of one created from settings.
    """
    if settings is None:
        settings = Settings()
    stop = stop or asyncio.Event()
    webhooks = service or WebhookService.create(settings)

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread
            continue
        installed.append(sig)

    try:
        async with webhooks:
            webhooks.start_dispatcher()
            logger.info("Webhook worker running", storage=settings.storage_backend)
            await stop.wait()
            logger.info("Webhook worker shutting down")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main() -> None:
    """Entry point for the ``dam-webhooks-worker`` script."""
    settings = Settings()
    configure_logging(level=settings.log_level, format=settings.log_format)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
