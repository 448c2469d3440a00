"""Operational alert delivery for billing integrity problems."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Dict, Iterable, Tuple

logger = logging.getLogger(__name__)

_WEBHOOK_ENV_NAMES = ("ALERT_WEBHOOK", "SLACK_WEBHOOK", "TELEGRAM_WEBHOOK")


def _iter_configured_webhooks() -> Iterable[Tuple[str, str]]:
    """Yield configured webhook destinations as (name, url) tuples."""

    for env_name in _WEBHOOK_ENV_NAMES:
        url = os.getenv(env_name, "").strip()
        if url:
            yield env_name, url


def send_alert(event: str, payload: Dict[str, object]) -> bool:
    """Post an alert to every configured webhook destination.

    Delivery is best effort. Returns ``True`` if at least one destination
    accepted the request.
    """

    webhooks = list(_iter_configured_webhooks())
    if not webhooks:
        logger.info({"event": "alert_skipped", "trigger": event, "reason": "no_webhook"})
        return False

    body = json.dumps({"event": event, "payload": payload}, default=str).encode("utf-8")
    headers = {"Content-Type": "application/json"}

    delivered = False
    for name, url in webhooks:
        request = urllib.request.Request(url, data=body, headers=headers, method="POST")
        try:
            with urllib.request.urlopen(request, timeout=5):  # nosec: B310 - operator configured url
                delivered = True
        except (urllib.error.URLError, TimeoutError):
            logger.exception("Failed to send alert", extra={"trigger": event, "webhook": name})

    log_event = {"event": "alert_sent" if delivered else "alert_skipped", "trigger": event}
    if not delivered:
        log_event["reason"] = "delivery_failed"
    logger.info(log_event)
    return delivered
