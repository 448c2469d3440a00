"""Background re-drive of FAILED webhook events."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from billing.audit.event_bus import AuditEvent
from billing.audit.service import AuditTrail
from billing.metrics import record_webhook_retry, set_exhausted_webhooks
from billing.payments.service import OrderService

from .models import MAX_RETRIES, SweepReport, WebhookEventStatus
from .processor import WebhookProcessor
from .repository import WebhookEventRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class RetrySweeper:
    """Periodically retries FAILED events that still have retry budget.

    When given an :class:`OrderService`, each pass also expires abandoned
    PENDING orders.
    """

    def __init__(
        self,
        *,
        processor: WebhookProcessor,
        events: WebhookEventRepository,
        interval_seconds: float = 60.0,
        batch_size: int = 50,
        orders: Optional[OrderService] = None,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._processor = processor
        self._orders = orders
        self._events = events
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._audit_trail = audit_trail
        self._clock = clock or _utcnow
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> SweepReport:
        async with self._lock:
            report = SweepReport()
            for candidate in self._events.list_retryable(self._batch_size):
                if not self._events.claim_for_retry(candidate.id, now=self._clock()):
                    continue
                claimed = self._events.get(candidate.id)
                if claimed is None:
                    continue

                report.attempted += 1
                report.event_ids.append(claimed.id)
                result = await self._processor.process(claimed)
                if result.status is WebhookEventStatus.PROCESSED:
                    report.recovered += 1
                    record_webhook_retry("recovered")
                    continue

                report.failed += 1
                record_webhook_retry("failed")
                if result.retry_count >= MAX_RETRIES:
                    report.exhausted += 1
                    record_webhook_retry("exhausted")
                    await self._emit_exhausted(result.id, result.error_message, result.transaction_id)

            set_exhausted_webhooks(self._events.count_exhausted())
            if report.attempted:
                logger.info({"event": "webhook_sweep", **report.as_dict()})
            return report

    async def run_once(self) -> SweepReport:
        report = await self.sweep_once()
        if self._orders is not None:
            await self._orders.expire_stale()
        return report

    def start(self) -> None:
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info({"event": "webhook_sweeper_started", "interval_seconds": self._interval})

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info({"event": "webhook_sweeper_stopped"})

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception({"event": "webhook_sweep_error"})
            await asyncio.sleep(self._interval)

    async def _emit_exhausted(self, event_id: str, error: Optional[str], transaction_id: Optional[str]) -> None:
        logger.error(
            {"event": "webhook_retries_exhausted", "event_id": event_id, "error": error, "transaction_id": transaction_id}
        )
        if self._audit_trail is None:
            return
        await self._audit_trail.emit(
            AuditEvent(
                name="webhook.retries_exhausted",
                c_unit="core.webhooks",
                actor="webhooks.sweeper",
                subject=event_id,
                severity="error",
                payload={"error": error, "transaction_id": transaction_id, "max_retries": MAX_RETRIES},
            )
        )
