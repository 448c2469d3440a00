"""Calendar-aware billing period arithmetic."""

from __future__ import annotations

import calendar
from datetime import datetime

from billing.errors import ValidationError

from .models import BillingCycle

_MONTHS_PER_CYCLE = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}


def add_months(start: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month is Feb 28 (Feb 29 in leap years), never Mar 2/3.
    """

    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def add_billing_cycle(start: datetime, cycle: BillingCycle | str) -> datetime:
    """Return the end of a billing period that begins at ``start``."""

    try:
        resolved = BillingCycle(str(cycle.value if isinstance(cycle, BillingCycle) else cycle).lower())
    except ValueError as exc:
        raise ValidationError(f"Unsupported billing cycle: {cycle}") from exc
    return add_months(start, _MONTHS_PER_CYCLE[resolved])
