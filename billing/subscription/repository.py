"""Persistence layer for plans and subscriptions."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Dict, Optional, Tuple
from uuid import uuid4

from billing.db import Database, from_iso, to_iso

from .models import BillingCycle, Plan, SubscriptionRecord, SubscriptionStatus


class PlanRepository:
    """Read access to the plan catalogue.

    The billing core never edits plans; :meth:`upsert` exists for seeding.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS plans (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    price INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    billing_cycle TEXT NOT NULL,
                    features TEXT NOT NULL DEFAULT '[]',
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """
            )

    def upsert(self, plan: Plan) -> Plan:
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO plans (id, name, price, currency, billing_cycle, features, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    price = excluded.price,
                    currency = excluded.currency,
                    billing_cycle = excluded.billing_cycle,
                    features = excluded.features,
                    is_active = excluded.is_active
                """,
                (
                    plan.id,
                    plan.name,
                    int(plan.price),
                    plan.currency,
                    plan.billing_cycle.value,
                    json.dumps(list(plan.features)),
                    1 if plan.is_active else 0,
                ),
            )
        return plan

    def get(self, plan_id: str) -> Optional[Plan]:
        row = self._db.query_one(
            "SELECT id, name, price, currency, billing_cycle, features, is_active FROM plans WHERE id = ?",
            (plan_id,),
        )
        if row is None:
            return None
        return _row_to_plan(row)

    def list_all(self) -> list[Plan]:
        rows = self._db.query_all(
            "SELECT id, name, price, currency, billing_cycle, features, is_active FROM plans ORDER BY price"
        )
        return [_row_to_plan(row) for row in rows]


class SubscriptionRepository:
    """SQLite-backed repository for per-user subscriptions."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    plan_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    current_period_end TEXT,
                    last_payment_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def get_by_user(self, user_id: str) -> Optional[SubscriptionRecord]:
        row = self._db.query_one(
            """
            SELECT id, user_id, plan_id, status, current_period_end, last_payment_id, created_at, updated_at
            FROM subscriptions WHERE user_id = ?
            """,
            (user_id,),
        )
        if row is None:
            return None
        return _row_to_subscription(row)

    def upsert_for_payment(
        self,
        *,
        user_id: str,
        plan_id: str,
        period_end: datetime,
        payment_id: str,
        now: datetime,
    ) -> Tuple[SubscriptionRecord, bool]:
        """Activate or renew the user's row for ``payment_id``.

        Returns the stored row and whether this call changed it. A payment that
        already activated the row leaves it untouched.
        """

        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO subscriptions (
                    id, user_id, plan_id, status, current_period_end, last_payment_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    plan_id = excluded.plan_id,
                    status = excluded.status,
                    current_period_end = excluded.current_period_end,
                    last_payment_id = excluded.last_payment_id,
                    updated_at = excluded.updated_at
                WHERE subscriptions.last_payment_id IS NOT excluded.last_payment_id
                """,
                (
                    uuid4().hex,
                    user_id,
                    plan_id,
                    SubscriptionStatus.ACTIVE.value,
                    to_iso(period_end),
                    payment_id,
                    to_iso(now),
                    to_iso(now),
                ),
            )
            applied = cursor.rowcount > 0
        record = self.get_by_user(user_id)
        if record is None:
            raise KeyError(user_id)
        return record, applied

    def update(
        self,
        user_id: str,
        *,
        now: datetime,
        status: Optional[SubscriptionStatus] = None,
        plan_id: Optional[str] = None,
        period_end: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        assignments = ["updated_at = ?"]
        params: list = [to_iso(now)]
        if status is not None:
            assignments.append("status = ?")
            params.append(status.value)
        if plan_id is not None:
            assignments.append("plan_id = ?")
            params.append(plan_id)
        if period_end is not None:
            assignments.append("current_period_end = ?")
            params.append(to_iso(period_end))
        params.append(user_id)

        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE subscriptions SET {', '.join(assignments)} WHERE user_id = ?",
                tuple(params),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_by_user(user_id)

    def count(self) -> int:
        row = self._db.query_one("SELECT COUNT(*) FROM subscriptions")
        return int(row[0]) if row else 0

    def count_by_status(self) -> Dict[str, int]:
        rows = self._db.query_all("SELECT status, COUNT(*) AS total FROM subscriptions GROUP BY status")
        counts = {status.value: 0 for status in SubscriptionStatus}
        counts.update({row["status"]: int(row["total"]) for row in rows})
        return counts


def _row_to_plan(row: sqlite3.Row) -> Plan:
    return Plan(
        id=row["id"],
        name=row["name"],
        price=int(row["price"]),
        currency=row["currency"],
        billing_cycle=BillingCycle(row["billing_cycle"]),
        features=tuple(json.loads(row["features"] or "[]")),
        is_active=bool(row["is_active"]),
    )


def _row_to_subscription(row: sqlite3.Row) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row["id"],
        user_id=row["user_id"],
        plan_id=row["plan_id"],
        status=SubscriptionStatus(row["status"]),
        current_period_end=from_iso(row["current_period_end"]),
        last_payment_id=row["last_payment_id"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )
