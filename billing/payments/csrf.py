"""Signed, short-lived redirect URLs handed to the browser."""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

MAX_AGE = timedelta(minutes=30)
CLOCK_SKEW = timedelta(seconds=60)


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class PaymentUrlGuard:
    """Issue and check CSRF tokens bound to an order id.

    Tokens look like ``<epoch-ms>.<hmac-sha256 hex of "orderId:epoch-ms">``.
    """

    def __init__(
        self,
        secret: str,
        gateway_domain: str,
        *,
        max_age: timedelta = MAX_AGE,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._secret = secret.encode("utf-8")
        self._gateway_domain = gateway_domain.lower().strip(".")
        self._max_age_ms = int(max_age.total_seconds() * 1000)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    @property
    def max_age(self) -> timedelta:
        return timedelta(milliseconds=self._max_age_ms)

    def issue(self, order_id: str, now: Optional[datetime] = None) -> str:
        timestamp = _epoch_ms(now or self._clock())
        return f"{timestamp}.{self._mac(order_id, timestamp)}"

    def validate(self, token: Optional[str], order_id: str, now: Optional[datetime] = None) -> bool:
        if not token or not order_id:
            return False
        raw_timestamp, sep, mac = token.partition(".")
        if not sep or not mac:
            return False
        try:
            timestamp = int(raw_timestamp)
        except ValueError:
            return False
        if not self._fresh(timestamp, now):
            return False
        return hmac.compare_digest(self._mac(order_id, timestamp), mac)

    def secure_url(self, payment_url: str, order_id: str, now: Optional[datetime] = None) -> str:
        token = self.issue(order_id, now)
        timestamp = token.split(".", 1)[0]
        parts = urlsplit(payment_url)
        query = parse_qs(parts.query, keep_blank_values=True)
        query.update({"csrf": [token], "orderId": [order_id], "timestamp": [timestamp]})
        return urlunsplit(parts._replace(query=urlencode(query, doseq=True)))

    def validate_url(self, url: str, order_id: str, now: Optional[datetime] = None) -> bool:
        """Check the host, the bound order id and the embedded token."""

        try:
            parts = urlsplit(url)
        except ValueError:
            return False
        host = (parts.hostname or "").lower()
        if not host or not (host == self._gateway_domain or host.endswith(f".{self._gateway_domain}")):
            return False

        query = parse_qs(parts.query)
        token = query.get("csrf", [None])[0]
        bound_order = query.get("orderId", [None])[0]
        raw_timestamp = query.get("timestamp", [None])[0]
        if not token or not bound_order or not raw_timestamp:
            return False
        if bound_order != order_id:
            return False
        try:
            timestamp = int(raw_timestamp)
        except ValueError:
            return False
        if token.split(".", 1)[0] != raw_timestamp or not self._fresh(timestamp, now):
            return False
        return self.validate(token, order_id, now)

    def _fresh(self, timestamp: int, now: Optional[datetime]) -> bool:
        age = _epoch_ms(now or self._clock()) - timestamp
        skew_ms = int(CLOCK_SKEW.total_seconds() * 1000)
        return -skew_ms <= age < self._max_age_ms

    def _mac(self, order_id: str, timestamp: int) -> str:
        message = f"{order_id}:{timestamp}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()
