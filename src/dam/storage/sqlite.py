"""SQLite webhook store (durable).

One aiosqlite connection per store instance. Timestamps are stored as
integer microseconds since the Unix epoch so comparisons in SQL are exact.
Delivery outcomes are written with a single ``UPDATE ... WHERE status =
'pending'`` statement, which makes each transition atomic per event.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite

from dam.clock import Clock
from dam.exceptions import StorageError
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
from .retry import sqlite_retry

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MICROSECOND = timedelta(microseconds=1)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS webhook_events (
    id               TEXT    PRIMARY KEY,
    event_type       TEXT    NOT NULL,
    payload          TEXT    NOT NULL,
    destination_url  TEXT    NOT NULL,
    user_id          TEXT,
    status           TEXT    NOT NULL DEFAULT 'pending',
    attempts         INTEGER NOT NULL DEFAULT 0,
    next_retry_at    INTEGER,
    last_attempt_at  INTEGER,
    delivered_at     INTEGER,
    last_response    TEXT,
    last_error       TEXT,
    created_at       INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_we_status_next ON webhook_events(status, next_retry_at);
CREATE INDEX IF NOT EXISTS idx_we_created ON webhook_events(created_at);
CREATE INDEX IF NOT EXISTS idx_we_user_created ON webhook_events(user_id, created_at);

CREATE TABLE IF NOT EXISTS webhook_subscriptions (
    id          TEXT    PRIMARY KEY,
    user_id     TEXT    NOT NULL,
    url         TEXT    NOT NULL,
    events      TEXT    NOT NULL,
    secret      TEXT,
    active      INTEGER NOT NULL DEFAULT 1,
    created_at  INTEGER NOT NULL,
    updated_at  INTEGER NOT NULL,
    UNIQUE (user_id, url)
);

CREATE INDEX IF NOT EXISTS idx_ws_url ON webhook_subscriptions(url);
"""

_EVENT_COLUMNS = (
    "id, event_type, payload, destination_url, user_id, status, attempts, "
    "next_retry_at, last_attempt_at, delivered_at, last_response, last_error, created_at"
)


def _to_micros(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // _MICROSECOND


def _from_micros(value: int | None) -> datetime | None:
    if value is None:
        return None
    return _EPOCH + timedelta(microseconds=value)


def _row_to_event(row: aiosqlite.Row) -> WebhookEvent:
    return WebhookEvent(
        id=row["id"],
        event_type=EventType(row["event_type"]),
        payload=json.loads(row["payload"]),
        destination_url=row["destination_url"],
        user_id=row["user_id"],
        status=DeliveryStatus(row["status"]),
        attempts=row["attempts"],
        next_retry_at=_from_micros(row["next_retry_at"]),
        last_attempt_at=_from_micros(row["last_attempt_at"]),
        delivered_at=_from_micros(row["delivered_at"]),
        last_response=(
            DeliveryResponse.model_validate_json(row["last_response"])
            if row["last_response"]
            else None
        ),
        last_error=(
            DeliveryFailure.model_validate_json(row["last_error"]) if row["last_error"] else None
        ),
        created_at=_from_micros(row["created_at"]),
    )


def _row_to_subscription(row: aiosqlite.Row) -> WebhookSubscription:
    return WebhookSubscription(
        id=row["id"],
        user_id=row["user_id"],
        url=row["url"],
        events=[EventType(e) for e in json.loads(row["events"])],
        secret=row["secret"],
        active=bool(row["active"]),
        created_at=_from_micros(row["created_at"]),
        updated_at=_from_micros(row["updated_at"]),
    )


class SQLiteWebhookStore(WebhookStore):
    """aiosqlite-backed WebhookStore."""

    def __init__(
        self,
        db_path: str | Path,
        clock: Clock | None = None,
        busy_timeout: int = 5000,
    ) -> None:
        super().__init__(clock)
        self._db_path = str(db_path)
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        await self._ensure_conn()

    async def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            try:
                conn = await aiosqlite.connect(self._db_path)
            except aiosqlite.Error as e:
                raise StorageError(f"Cannot open webhook database {self._db_path}: {e}") from e
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute(f"PRAGMA busy_timeout={self._busy_timeout}")
            await conn.executescript(_SCHEMA)
            await conn.commit()
            self._conn = conn
            logger.debug("webhook schema ensured at %s", self._db_path)
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    # Events

    @sqlite_retry
    async def create_pending(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        destination_url: str,
        user_id: str | None = None,
    ) -> WebhookEvent:
        encoded = self._encode_payload(payload)
        conn = await self._ensure_conn()
        now = self.now()
        event = WebhookEvent(
            event_type=event_type,
            payload=payload,
            destination_url=destination_url,
            user_id=user_id,
            next_retry_at=now,
            created_at=now,
        )
        await conn.execute(
            f"INSERT INTO webhook_events ({_EVENT_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, 0, ?, NULL, NULL, NULL, NULL, ?)",
            (
                event.id,
                event.event_type.value,
                encoded.decode("utf-8"),
                event.destination_url,
                event.user_id,
                event.status.value,
                _to_micros(event.next_retry_at),
                _to_micros(event.created_at),
            ),
        )
        await conn.commit()
        return event

    async def get_event(self, event_id: str) -> WebhookEvent | None:
        conn = await self._ensure_conn()
        cursor = await conn.execute(
            f"SELECT {_EVENT_COLUMNS} FROM webhook_events WHERE id = ?",
            (event_id,),
        )
        row = await cursor.fetchone()
        return _row_to_event(row) if row else None

    async def find_due(self, limit: int = DEFAULT_DUE_LIMIT) -> list[WebhookEvent]:
        self._check_limit(limit)
        conn = await self._ensure_conn()
        cursor = await conn.execute(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM webhook_events
            WHERE status = 'pending'
              AND (next_retry_at IS NULL OR next_retry_at <= ?)
            ORDER BY COALESCE(next_retry_at, created_at)
            LIMIT ?
            """,
            (_to_micros(self.now()), limit),
        )
        rows = await cursor.fetchall()
        return [_row_to_event(row) for row in rows]

    @sqlite_retry
    async def record_success(
        self,
        event_id: str,
        response: DeliveryResponse,
        expected_attempts: int | None = None,
    ) -> bool:
        now = _to_micros(self.now())
        return await self._conditional_update(
            """
            UPDATE webhook_events
            SET status = 'delivered', attempts = attempts + 1,
                last_attempt_at = ?, delivered_at = ?, next_retry_at = NULL,
                last_response = ?
            """,
            [now, now, response.model_dump_json()],
            event_id,
            expected_attempts,
        )

    @sqlite_retry
    async def record_failure(
        self,
        event_id: str,
        error: DeliveryFailure,
        next_retry_at: datetime | None,
        expected_attempts: int | None = None,
    ) -> bool:
        status = DeliveryStatus.PENDING if next_retry_at is not None else DeliveryStatus.FAILED
        return await self._conditional_update(
            """
            UPDATE webhook_events
            SET status = ?, attempts = attempts + 1,
                last_attempt_at = ?, next_retry_at = ?, last_error = ?
            """,
            [
                status.value,
                _to_micros(self.now()),
                _to_micros(next_retry_at),
                error.model_dump_json(),
            ],
            event_id,
            expected_attempts,
        )

    async def _conditional_update(
        self,
        statement: str,
        params: list[Any],
        event_id: str,
        expected_attempts: int | None,
    ) -> bool:
        conn = await self._ensure_conn()
        statement += " WHERE id = ? AND status = 'pending'"
        params.append(event_id)
        if expected_attempts is not None:
            statement += " AND attempts = ?"
            params.append(expected_attempts)
        cursor = await conn.execute(statement, params)
        await conn.commit()
        return cursor.rowcount == 1

    @sqlite_retry
    async def purge_older_than(
        self,
        cutoff: datetime,
        statuses: Iterable[DeliveryStatus] = TERMINAL_STATUSES,
    ) -> int:
        purgeable = self._purge_statuses(statuses)
        conn = await self._ensure_conn()
        placeholders = ",".join("?" * len(purgeable))
        cursor = await conn.execute(
            f"DELETE FROM webhook_events WHERE created_at < ? AND status IN ({placeholders})",
            [_to_micros(cutoff), *(s.value for s in purgeable)],
        )
        await conn.commit()
        return cursor.rowcount

    async def list_events(
        self,
        user_id: str | None = None,
        status: DeliveryStatus | None = None,
        event_type: EventType | None = None,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[WebhookEvent], int]:
        self._check_limit(limit, offset)
        conn = await self._ensure_conn()
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(DeliveryStatus(status).value)
        if event_type is not None:
            clauses.append("event_type = ?")
            params.append(EventType(event_type).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        cursor = await conn.execute(f"SELECT COUNT(*) FROM webhook_events {where}", params)
        (total,) = await cursor.fetchone()  # type: ignore[misc]

        cursor = await conn.execute(
            f"SELECT {_EVENT_COLUMNS} FROM webhook_events {where} "
            "ORDER BY created_at DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        rows = await cursor.fetchall()
        return [_row_to_event(row) for row in rows], total

    async def stats(
        self,
        since: datetime | None = None,
        user_id: str | None = None,
    ) -> WebhookStats:
        conn = await self._ensure_conn()
        cutoff = _to_micros(self._recent_cutoff(since))
        user_clause = "WHERE user_id = ?" if user_id is not None else ""
        user_params: list[Any] = [user_id] if user_id is not None else []

        cursor = await conn.execute(
            f"SELECT status, COUNT(*) AS n FROM webhook_events {user_clause} GROUP BY status",
            user_params,
        )
        breakdown = {row["status"]: row["n"] for row in await cursor.fetchall()}

        recent_where = f"{user_clause} AND created_at >= ?" if user_clause else "WHERE created_at >= ?"
        cursor = await conn.execute(
            f"SELECT COUNT(*) FROM webhook_events {recent_where}",
            [*user_params, cutoff],
        )
        (recent,) = await cursor.fetchone()  # type: ignore[misc]

        return WebhookStats(
            total_events=sum(breakdown.values()),
            recent_events=recent,
            status_breakdown=breakdown,
        )

    # Subscriptions

    @sqlite_retry
    async def store_subscription(self, subscription: WebhookSubscription) -> str:
        conn = await self._ensure_conn()
        await conn.execute(
            """
            INSERT OR REPLACE INTO webhook_subscriptions
                (id, user_id, url, events, secret, active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                subscription.id,
                subscription.user_id,
                str(subscription.url),
                json.dumps([e.value for e in subscription.events]),
                subscription.secret,
                int(subscription.active),
                _to_micros(subscription.created_at),
                _to_micros(subscription.updated_at),
            ),
        )
        await conn.commit()
        return subscription.id

    async def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        conn = await self._ensure_conn()
        cursor = await conn.execute(
            "SELECT * FROM webhook_subscriptions WHERE id = ?",
            (subscription_id,),
        )
        row = await cursor.fetchone()
        return _row_to_subscription(row) if row else None

    async def list_subscriptions(
        self,
        user_id: str | None = None,
        url: str | None = None,
        active_only: bool = False,
    ) -> list[WebhookSubscription]:
        conn = await self._ensure_conn()
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if url is not None:
            clauses.append("url = ?")
            params.append(url)
        if active_only:
            clauses.append("active = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = await conn.execute(
            f"SELECT * FROM webhook_subscriptions {where} ORDER BY created_at DESC",
            params,
        )
        return [_row_to_subscription(row) for row in await cursor.fetchall()]

    @sqlite_retry
    async def delete_subscription(self, subscription_id: str) -> bool:
        conn = await self._ensure_conn()
        cursor = await conn.execute(
            "DELETE FROM webhook_subscriptions WHERE id = ?",
            (subscription_id,),
        )
        await conn.commit()
        return cursor.rowcount > 0
