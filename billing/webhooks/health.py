"""Webhook pipeline health summary."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from billing.metrics import set_exhausted_webhooks

from .models import WebhookEventStatus
from .repository import WebhookEventRepository

MIN_SUCCESS_RATE = 0.95
STALE_PENDING_AFTER = timedelta(minutes=5)


def webhook_health(
    events: WebhookEventRepository,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> Dict[str, Any]:
    """Summarise stored events.

    ``healthy`` with no issues, ``degraded`` with up to two, ``unhealthy``
    beyond that.
    """

    now = (clock or (lambda: datetime.now(tz=timezone.utc)))()
    counts = events.count_by_status()
    processed = counts[WebhookEventStatus.PROCESSED.value]
    failed = counts[WebhookEventStatus.FAILED.value]
    pending = counts[WebhookEventStatus.PENDING.value]
    total = processed + failed + pending
    finished = processed + failed
    success_rate = processed / finished if finished else 1.0
    exhausted = events.count_exhausted()
    stale = events.count_pending_before(now - STALE_PENDING_AFTER)
    set_exhausted_webhooks(exhausted)

    issues: List[str] = []
    if success_rate < MIN_SUCCESS_RATE:
        issues.append(f"success rate {success_rate:.2%} below {MIN_SUCCESS_RATE:.0%}")
    if exhausted:
        issues.append(f"{exhausted} events exhausted their retries")
    if stale:
        issues.append(f"{stale} events pending for more than {int(STALE_PENDING_AFTER.total_seconds() // 60)} minutes")

    if not issues:
        status = "healthy"
    elif len(issues) <= 2:
        status = "degraded"
    else:
        status = "unhealthy"

    last_processed = events.last_processed_at()
    return {
        "status": status,
        "issues": issues,
        "totalWebhooks": total,
        "successfulWebhooks": processed,
        "failedWebhooks": failed,
        "pendingWebhooks": pending,
        "exhaustedWebhooks": exhausted,
        "successRate": round(success_rate, 4),
        "lastProcessedAt": last_processed.isoformat() if last_processed else None,
    }
