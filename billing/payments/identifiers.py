"""Customer-facing order ids and gateway merchant transaction ids."""

from __future__ import annotations

import secrets
import time


def _generate(prefix: str) -> str:
    millis = int(time.time() * 1000)
    return f"{prefix}_{millis}_{secrets.token_hex(6).upper()}"


def generate_order_id() -> str:
    return _generate("ORDER")


def generate_transaction_id() -> str:
    return _generate("TXN")
