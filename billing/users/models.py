"""User records referenced by payments and subscriptions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class User:
    """Minimal user projection; provisioning lives outside the billing core."""

    id: str
    email: Optional[str]
    created_at: datetime
