"""Exception taxonomy shared by the payment and subscription services."""

from __future__ import annotations

from typing import Iterable, List


class BillingError(Exception):
    """Base class for every error raised by the billing core."""


class ValidationError(BillingError):
    """Raised when input or preconditions are violated.

    Carries the full list of violated rules so callers can surface all of them
    at once instead of only the first one.
    """

    def __init__(self, errors: Iterable[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__(", ".join(self.errors))


class AmountMismatchError(ValidationError):
    """Raised when a callback reports an amount different from the stored one."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"amount mismatch: expected {expected}, got {received}")


class SignatureError(BillingError):
    """Raised when a gateway signature does not verify."""


class NotFoundError(BillingError):
    """Raised when a referenced plan, user, payment or subscription is missing."""


class GatewayError(BillingError):
    """Raised when the outbound gateway call fails or reports a business failure."""


class ConcurrencyConflict(BillingError):
    """Raised when a conditional status update affected no rows."""
