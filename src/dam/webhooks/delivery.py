"""Single delivery attempts.

``DeliveryWorker.deliver`` performs exactly one signed HTTP POST for an
event and writes the outcome to the store:

- 2xx: the event is delivered (terminal).
- anything else (non-2xx, timeout, DNS or connection failure): the attempt
  is counted and the retry policy decides between another attempt later
  and permanent failure. Error kinds are classified for diagnostics only;
  they all retry the same way.

Transport errors never leave this module. Store errors do, so the caller
decides how to contain them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from pydantic_core import to_json

from dam.clock import Clock, utc_now
from dam.config import DEFAULT_USER_AGENT
from dam.exceptions import DeliveryError
from dam.logging import delivery_context, get_logger
from dam.models import DeliveryFailure, DeliveryResponse, DeliveryStatus, WebhookEvent
from dam.storage import WebhookStore

from .retry import RetryPolicy
from .signing import (
    EVENT_HEADER,
    EVENT_ID_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
)

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_BODY_LIMIT = 1000


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Serialize a payload to the compact JSON bytes that are signed and sent."""
    return to_json(payload)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt.

    Attributes:
        event_id: Event that was attempted.
        delivered: Whether the destination accepted the event.
        status: Event status after the attempt was recorded.
        attempts: Attempt count after the attempt was recorded.
        status_code: HTTP status code, if a response was received.
        error: Failure diagnostics, if the attempt failed.
        next_retry_at: Scheduled retry time, if any.
        recorded: False if the store refused the transition because the
            event was changed concurrently.
    """

    event_id: str
    delivered: bool
    status: DeliveryStatus
    attempts: int
    status_code: int | None = None
    error: DeliveryFailure | None = None
    next_retry_at: datetime | None = None
    recorded: bool = True


class DeliveryWorker:
    """Signs, sends and records a single delivery attempt.

    Example:
        ```python
        worker = DeliveryWorker(store, RetryPolicy(max_attempts=3))
        result = await worker.deliver(event, secret="shared-secret")
        if not result.delivered:
            print(result.error.code, result.next_retry_at)
        ```
    """

    def __init__(
        self,
        store: WebhookStore,
        retry_policy: RetryPolicy | None = None,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        response_body_limit: int = DEFAULT_BODY_LIMIT,
        client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            store: Store the outcome is written to.
            retry_policy: Backoff policy; defaults to 3 attempts, 1s base.
            timeout_seconds: Timeout of the whole HTTP exchange.
            user_agent: User-Agent header value.
            response_body_limit: Characters of response body kept.
            client: Shared HTTP client. A short-lived client is opened per
                attempt when omitted.
            clock: Time source for headers and retry scheduling.
        """
        self._store = store
        self._policy = retry_policy or RetryPolicy()
        self._timeout = timeout_seconds
        self._user_agent = user_agent
        self._body_limit = response_body_limit
        self._client = client
        self._clock = clock or utc_now

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    def build_headers(self, event: WebhookEvent, body: bytes, secret: str) -> dict[str, str]:
        """Headers for a delivery of ``body``, including its signature."""
        return {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: compute_signature(body, secret),
            EVENT_HEADER: event.event_type.value,
            EVENT_ID_HEADER: event.id,
            TIMESTAMP_HEADER: format_timestamp(self._clock()),
            "User-Agent": self._user_agent,
        }

    async def deliver(self, event: WebhookEvent, secret: str) -> DeliveryResult:
        """Attempt delivery of ``event`` once and record the outcome.

        Args:
            event: Pending event as read from the store. Its ``attempts``
                value guards the conditional update.
            secret: Secret used to sign the payload.

        Returns:
            DeliveryResult describing what happened.
        """
        with delivery_context(event.id, event.destination_url, event.attempts + 1):
            try:
                body = serialize_payload(event.payload)
                headers = self.build_headers(event, body, secret)
                response = await self._post(event.destination_url, body, headers)
                self._raise_for_status(response)
            except DeliveryError as e:
                return await self._record_failure(
                    event,
                    DeliveryFailure(message=e.message, code=e.error_code, status_code=e.status_code),
                )
            except httpx.TimeoutException as e:
                return await self._record_failure(
                    event,
                    DeliveryFailure(message=f"Request timeout: {e}", code="TIMEOUT"),
                )
            except httpx.ConnectError as e:
                return await self._record_failure(
                    event,
                    DeliveryFailure(message=str(e) or "Connection failed", code="CONNECTION_ERROR"),
                )
            except httpx.RequestError as e:
                return await self._record_failure(
                    event,
                    DeliveryFailure(message=str(e) or type(e).__name__, code="REQUEST_ERROR"),
                )
            except httpx.InvalidURL as e:
                return await self._record_failure(
                    event,
                    DeliveryFailure(message=str(e), code="INVALID_URL"),
                )
            except Exception as e:
                logger.exception("Unexpected webhook delivery error")
                return await self._record_failure(
                    event,
                    DeliveryFailure(message=f"Unexpected error: {e}", code="UNKNOWN_ERROR"),
                )

            return await self._record_success(event, response)

    async def _post(self, url: str, body: bytes, headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, content=body, headers=headers, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, content=body, headers=headers)

    def _raise_for_status(self, response: httpx.Response) -> None:
        if 200 <= response.status_code < 300:
            return
        raise DeliveryError(
            f"HTTP {response.status_code}: {response.text[:200]}",
            error_code="HTTP_ERROR",
            status_code=response.status_code,
        )

    async def _record_success(self, event: WebhookEvent, response: httpx.Response) -> DeliveryResult:
        summary = DeliveryResponse(
            status_code=response.status_code,
            body=response.text[: self._body_limit] if response.text else None,
            headers=dict(response.headers),
        )
        recorded = await self._store.record_success(
            event.id, summary, expected_attempts=event.attempts
        )
        if recorded:
            logger.info("Webhook delivered", status_code=response.status_code)
        else:
            logger.warning("Webhook delivered but event changed concurrently; outcome dropped")
        return DeliveryResult(
            event_id=event.id,
            delivered=True,
            status=DeliveryStatus.DELIVERED,
            attempts=event.attempts + 1,
            status_code=response.status_code,
            recorded=recorded,
        )

    async def _record_failure(self, event: WebhookEvent, failure: DeliveryFailure) -> DeliveryResult:
        next_retry_at = self._policy.next_retry_at(event.attempts, self._clock())
        recorded = await self._store.record_failure(
            event.id, failure, next_retry_at, expected_attempts=event.attempts
        )
        status = DeliveryStatus.PENDING if next_retry_at is not None else DeliveryStatus.FAILED

        if not recorded:
            logger.warning("Webhook attempt failed but event changed concurrently", error=failure.message)
        elif next_retry_at is None:
            logger.warning(
                "Webhook max retries exceeded",
                error=failure.message,
                error_code=failure.code,
                attempts=event.attempts + 1,
            )
        else:
            logger.info(
                "Webhook scheduled for retry",
                error=failure.message,
                error_code=failure.code,
                next_retry_at=next_retry_at.isoformat(),
            )

        return DeliveryResult(
            event_id=event.id,
            delivered=False,
            status=status,
            attempts=event.attempts + 1,
            status_code=failure.status_code,
            error=failure,
            next_retry_at=next_retry_at,
            recorded=recorded,
        )


__all__ = [
    "DEFAULT_BODY_LIMIT",
    "DEFAULT_TIMEOUT_SECONDS",
    "DeliveryResult",
    "DeliveryWorker",
    "format_timestamp",
    "serialize_payload",
]
