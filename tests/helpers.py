"""Test doubles shared across test modules."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import httpx

START = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock.

    Passed wherever a ``Clock`` is accepted so tests can step over retry
    delays and retention windows without sleeping.
    """

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        """Move time forward by ``timedelta(**kwargs)``."""
        self.now += timedelta(**kwargs)
        return self.now


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replays responses.

    Each entry of ``responses`` is a status code, an ``httpx.Response`` or an
    exception to raise. The last entry repeats once the list is exhausted.
    """

    def __init__(self, *responses: int | httpx.Response | Exception) -> None:
        self.responses = list(responses) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responses)) - 1
        outcome = self.responses[index]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, httpx.Response):
            return outcome
        return httpx.Response(outcome, text="ok" if outcome < 300 else "error")

    @property
    def calls(self) -> int:
        return len(self.requests)

    def client(self) -> httpx.AsyncClient:
        """An AsyncClient whose requests are answered by this handler."""
        return httpx.AsyncClient(transport=httpx.MockTransport(self))
