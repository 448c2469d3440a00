"""Persistence for the users the billing core needs to recognise."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from billing.db import Database, from_iso, to_iso

from .models import User


def _normalise_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower()


class UserRepository:
    """SQLite-backed user lookups."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )

    def upsert(self, user_id: str, email: Optional[str] = None) -> User:
        """Insert the user if unknown, refreshing the email otherwise."""

        created_at = datetime.now(tz=timezone.utc)
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, email, created_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET email = COALESCE(excluded.email, users.email)
                """,
                (user_id, _normalise_email(email), to_iso(created_at)),
            )
        user = self.get(user_id)
        if user is None:
            raise KeyError(user_id)
        return user

    def get(self, user_id: str) -> Optional[User]:
        row = self._db.query_one("SELECT id, email, created_at FROM users WHERE id = ?", (user_id,))
        if row is None:
            return None
        return User(id=row["id"], email=row["email"], created_at=from_iso(row["created_at"]))

    def exists(self, user_id: str) -> bool:
        return self._db.query_one("SELECT 1 FROM users WHERE id = ?", (user_id,)) is not None
