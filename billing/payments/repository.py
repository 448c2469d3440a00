"""Persistence layer for payment records."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from billing.db import Database, dump_json, from_iso, load_json, to_iso
from billing.errors import ConcurrencyConflict

from .models import PaymentRecord, PaymentStatus

_COLUMNS = (
    "id, order_id, gateway_transaction_id, gateway_confirmation_id, user_id, plan_id, amount, currency, "
    "status, payment_url, gateway_signature, subscription_id, metadata, created_at, updated_at"
)


class PaymentRepository:
    """SQLite-backed repository for payments.

    Status only moves out of PENDING, and only through :meth:`transition`.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payments (
                    id TEXT PRIMARY KEY,
                    order_id TEXT NOT NULL UNIQUE,
                    gateway_transaction_id TEXT NOT NULL UNIQUE,
                    gateway_confirmation_id TEXT,
                    user_id TEXT NOT NULL,
                    plan_id TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payment_url TEXT,
                    gateway_signature TEXT,
                    subscription_id TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_payments_pending_user_plan
                ON payments (user_id, plan_id) WHERE status = 'PENDING'
                """
            )

    def create(
        self,
        *,
        payment_id: str,
        order_id: str,
        transaction_id: str,
        user_id: str,
        plan_id: str,
        amount: int,
        currency: str,
        created_at: datetime,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> PaymentRecord:
        """Insert a PENDING record.

        Raises :class:`sqlite3.IntegrityError` when the user already has a
        pending payment for the plan.
        """

        with self._db.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO payments ({_COLUMNS})
                VALUES (?, ?, ?, NULL, ?, ?, ?, ?, ?, NULL, NULL, NULL, ?, ?, ?)
                """,
                (
                    payment_id,
                    order_id,
                    transaction_id,
                    user_id,
                    plan_id,
                    int(amount),
                    currency,
                    PaymentStatus.PENDING.value,
                    dump_json(metadata),
                    to_iso(created_at),
                    to_iso(created_at),
                ),
            )
        return PaymentRecord(
            id=payment_id,
            order_id=order_id,
            gateway_transaction_id=transaction_id,
            user_id=user_id,
            plan_id=plan_id,
            amount=int(amount),
            currency=currency,
            status=PaymentStatus.PENDING,
            created_at=created_at,
            updated_at=created_at,
            metadata=dict(metadata or {}),
        )

    def get(self, payment_id: str) -> Optional[PaymentRecord]:
        return self._fetch_one("id", payment_id)

    def get_by_order_id(self, order_id: str) -> Optional[PaymentRecord]:
        return self._fetch_one("order_id", order_id)

    def get_by_transaction_id(self, transaction_id: str) -> Optional[PaymentRecord]:
        return self._fetch_one("gateway_transaction_id", transaction_id)

    def has_pending(self, user_id: str, plan_id: str) -> bool:
        row = self._db.query_one(
            "SELECT 1 FROM payments WHERE user_id = ? AND plan_id = ? AND status = ?",
            (user_id, plan_id, PaymentStatus.PENDING.value),
        )
        return row is not None

    def transition(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        *,
        now: datetime,
        confirmation_id: Optional[str] = None,
        metadata_updates: Optional[Mapping[str, Any]] = None,
    ) -> PaymentRecord:
        """Move a PENDING payment to ``new_status``.

        Raises :class:`ConcurrencyConflict` when the row is no longer PENDING.
        """

        if new_status is PaymentStatus.PENDING:
            raise ValueError("cannot transition a payment back to PENDING")

        with self._db.transaction() as conn:
            row = conn.execute("SELECT metadata FROM payments WHERE id = ?", (payment_id,)).fetchone()
            if row is None:
                raise ConcurrencyConflict(f"payment {payment_id} does not exist")
            metadata = load_json(row["metadata"])
            metadata.update(metadata_updates or {})
            cursor = conn.execute(
                """
                UPDATE payments
                SET status = ?,
                    gateway_confirmation_id = COALESCE(?, gateway_confirmation_id),
                    metadata = ?,
                    updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    new_status.value,
                    confirmation_id,
                    dump_json(metadata),
                    to_iso(now),
                    payment_id,
                    PaymentStatus.PENDING.value,
                ),
            )
            if cursor.rowcount == 0:
                raise ConcurrencyConflict(f"payment {payment_id} is no longer pending")

        record = self.get(payment_id)
        if record is None:
            raise KeyError(payment_id)
        return record

    def update_gateway_details(
        self,
        payment_id: str,
        *,
        payment_url: str,
        signature: str,
        now: datetime,
        metadata_updates: Optional[Mapping[str, Any]] = None,
    ) -> Optional[PaymentRecord]:
        with self._db.transaction() as conn:
            row = conn.execute("SELECT metadata FROM payments WHERE id = ?", (payment_id,)).fetchone()
            if row is None:
                return None
            metadata = load_json(row["metadata"])
            metadata.update(metadata_updates or {})
            conn.execute(
                """
                UPDATE payments
                SET payment_url = ?, gateway_signature = ?, metadata = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (payment_url, signature, dump_json(metadata), to_iso(now), payment_id, PaymentStatus.PENDING.value),
            )
        return self.get(payment_id)

    def link_subscription(self, payment_id: str, subscription_id: str, *, now: datetime) -> bool:
        """Record which subscription a successful payment was applied to (once)."""

        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE payments SET subscription_id = ?, updated_at = ?
                WHERE id = ? AND status = ? AND subscription_id IS NULL
                """,
                (subscription_id, to_iso(now), payment_id, PaymentStatus.SUCCEEDED.value),
            )
            return cursor.rowcount > 0

    def list_by_user(
        self,
        user_id: str,
        *,
        status: Optional[PaymentStatus] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[PaymentRecord]:
        """Newest first."""

        where, params = _user_filter(user_id, status)
        rows = self._db.query_all(
            f"SELECT {_COLUMNS} FROM payments WHERE {where} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
            (*params, int(limit), int(offset)),
        )
        return [_row_to_record(row) for row in rows]

    def count_by_user(self, user_id: str, *, status: Optional[PaymentStatus] = None) -> int:
        where, params = _user_filter(user_id, status)
        row = self._db.query_one(f"SELECT COUNT(*) FROM payments WHERE {where}", params)
        return int(row[0]) if row else 0

    def list_pending_before(
        self,
        cutoff: datetime,
        *,
        user_id: Optional[str] = None,
        plan_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[PaymentRecord]:
        sql = f"SELECT {_COLUMNS} FROM payments WHERE status = ? AND created_at < ?"
        params: list[Any] = [PaymentStatus.PENDING.value, to_iso(cutoff)]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if plan_id is not None:
            sql += " AND plan_id = ?"
            params.append(plan_id)
        sql += " ORDER BY created_at LIMIT ?"
        params.append(int(limit))
        return [_row_to_record(row) for row in self._db.query_all(sql, tuple(params))]

    def count_by_status(self, user_id: Optional[str] = None) -> Dict[str, int]:
        if user_id is None:
            rows = self._db.query_all("SELECT status, COUNT(*) AS total FROM payments GROUP BY status")
        else:
            rows = self._db.query_all(
                "SELECT status, COUNT(*) AS total FROM payments WHERE user_id = ? GROUP BY status", (user_id,)
            )
        counts = {status.value: 0 for status in PaymentStatus}
        counts.update({row["status"]: int(row["total"]) for row in rows})
        return counts

    def succeeded_amount(self, user_id: Optional[str] = None) -> int:
        sql = "SELECT COALESCE(SUM(amount), 0) FROM payments WHERE status = ?"
        params: tuple = (PaymentStatus.SUCCEEDED.value,)
        if user_id is not None:
            sql += " AND user_id = ?"
            params += (user_id,)
        row = self._db.query_one(sql, params)
        return int(row[0]) if row else 0

    def _fetch_one(self, column: str, value: str) -> Optional[PaymentRecord]:
        row = self._db.query_one(f"SELECT {_COLUMNS} FROM payments WHERE {column} = ?", (value,))
        if row is None:
            return None
        return _row_to_record(row)


def _user_filter(user_id: str, status: Optional[PaymentStatus]) -> Tuple[str, tuple]:
    if status is None:
        return "user_id = ?", (user_id,)
    return "user_id = ? AND status = ?", (user_id, status.value)


def _row_to_record(row: sqlite3.Row) -> PaymentRecord:
    return PaymentRecord(
        id=row["id"],
        order_id=row["order_id"],
        gateway_transaction_id=row["gateway_transaction_id"],
        gateway_confirmation_id=row["gateway_confirmation_id"],
        user_id=row["user_id"],
        plan_id=row["plan_id"],
        amount=int(row["amount"]),
        currency=row["currency"],
        status=PaymentStatus(row["status"]),
        payment_url=row["payment_url"],
        gateway_signature=row["gateway_signature"],
        subscription_id=row["subscription_id"],
        metadata=load_json(row["metadata"]),
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )
