"""Append-only store for received gateway callbacks."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from billing.db import Database, from_iso, to_iso

from .models import MAX_RETRIES, WebhookEvent, WebhookEventStatus

_COLUMNS = (
    "id, event_type, raw_payload, signature, transaction_id, status, retry_count, "
    "error_message, processed_at, last_retry_at, created_at"
)


class WebhookEventRepository:
    """SQLite-backed webhook event store. Rows are never deleted."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS webhook_events (
                    id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    raw_payload TEXT NOT NULL,
                    signature TEXT,
                    transaction_id TEXT,
                    status TEXT NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    processed_at TEXT,
                    last_retry_at TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_webhook_events_status ON webhook_events (status, retry_count)"
            )

    def create(
        self,
        *,
        raw_payload: str,
        signature: Optional[str],
        event_type: str,
        transaction_id: Optional[str],
        created_at: datetime,
    ) -> WebhookEvent:
        event_id = uuid4().hex
        with self._db.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO webhook_events ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, 0, NULL, NULL, NULL, ?)
                """,
                (
                    event_id,
                    event_type,
                    raw_payload,
                    signature,
                    transaction_id,
                    WebhookEventStatus.PENDING.value,
                    to_iso(created_at),
                ),
            )
        return WebhookEvent(
            id=event_id,
            event_type=event_type,
            raw_payload=raw_payload,
            signature=signature,
            transaction_id=transaction_id,
            status=WebhookEventStatus.PENDING,
            created_at=created_at,
        )

    def get(self, event_id: str) -> Optional[WebhookEvent]:
        row = self._db.query_one(f"SELECT {_COLUMNS} FROM webhook_events WHERE id = ?", (event_id,))
        if row is None:
            return None
        return _row_to_event(row)

    def mark_processed(self, event_id: str, *, now: datetime) -> WebhookEvent:
        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE webhook_events
                SET status = ?, error_message = NULL, processed_at = ?
                WHERE id = ?
                """,
                (WebhookEventStatus.PROCESSED.value, to_iso(now), event_id),
            )
        return self._require(event_id)

    def mark_failed(self, event_id: str, error_message: str, *, now: datetime) -> WebhookEvent:
        """Record a failed attempt; this is the only place ``retry_count`` grows."""

        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE webhook_events
                SET status = ?, error_message = ?, processed_at = ?, retry_count = retry_count + 1
                WHERE id = ?
                """,
                (WebhookEventStatus.FAILED.value, error_message, to_iso(now), event_id),
            )
        return self._require(event_id)

    def claim_for_retry(self, event_id: str, *, now: datetime) -> bool:
        """Move a retryable FAILED event back to PENDING; False if someone else did."""

        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE webhook_events
                SET status = ?, last_retry_at = ?
                WHERE id = ? AND status = ? AND retry_count < ?
                """,
                (
                    WebhookEventStatus.PENDING.value,
                    to_iso(now),
                    event_id,
                    WebhookEventStatus.FAILED.value,
                    MAX_RETRIES,
                ),
            )
            return cursor.rowcount > 0

    def list_retryable(self, limit: int = 50) -> List[WebhookEvent]:
        rows = self._db.query_all(
            f"""
            SELECT {_COLUMNS} FROM webhook_events
            WHERE status = ? AND retry_count < ?
            ORDER BY created_at
            LIMIT ?
            """,
            (WebhookEventStatus.FAILED.value, MAX_RETRIES, limit),
        )
        return [_row_to_event(row) for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        rows = self._db.query_all("SELECT status, COUNT(*) AS total FROM webhook_events GROUP BY status")
        counts = {status.value: 0 for status in WebhookEventStatus}
        counts.update({row["status"]: int(row["total"]) for row in rows})
        return counts

    def count_exhausted(self) -> int:
        row = self._db.query_one(
            "SELECT COUNT(*) FROM webhook_events WHERE status = ? AND retry_count >= ?",
            (WebhookEventStatus.FAILED.value, MAX_RETRIES),
        )
        return int(row[0]) if row else 0

    def count_pending_before(self, cutoff: datetime) -> int:
        row = self._db.query_one(
            "SELECT COUNT(*) FROM webhook_events WHERE status = ? AND created_at < ?",
            (WebhookEventStatus.PENDING.value, to_iso(cutoff)),
        )
        return int(row[0]) if row else 0

    def last_processed_at(self) -> Optional[datetime]:
        row = self._db.query_one(
            "SELECT MAX(processed_at) FROM webhook_events WHERE status = ?",
            (WebhookEventStatus.PROCESSED.value,),
        )
        return from_iso(row[0]) if row else None

    def _require(self, event_id: str) -> WebhookEvent:
        event = self.get(event_id)
        if event is None:
            raise KeyError(event_id)
        return event


def _row_to_event(row: sqlite3.Row) -> WebhookEvent:
    return WebhookEvent(
        id=row["id"],
        event_type=row["event_type"],
        raw_payload=row["raw_payload"],
        signature=row["signature"],
        transaction_id=row["transaction_id"],
        status=WebhookEventStatus(row["status"]),
        retry_count=int(row["retry_count"]),
        error_message=row["error_message"],
        processed_at=from_iso(row["processed_at"]),
        last_retry_at=from_iso(row["last_retry_at"]),
        created_at=from_iso(row["created_at"]),
    )
