"""Audit trail used to broadcast payment and subscription outcomes."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List

from billing.metrics import record_audit_event, record_guardrail_violation

from .event_bus import AuditEvent, AuditEventHandler, EventBus
from .guardrails import Guardrail, GuardrailEngine, GuardrailViolation, default_guardrails

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CUnit:
    """A component that is allowed to emit audit events."""

    id: str
    name: str
    description: str
    owners: tuple[str, ...] = ()


class AuditTrail:
    """Facade around the event bus, guardrails, and sinks."""

    def __init__(
        self,
        *,
        c_units: Iterable[CUnit],
        guardrails: Iterable[Guardrail] | None = None,
        history_limit: int = 200,
    ) -> None:
        self._bus = EventBus()
        self._c_units: Dict[str, CUnit] = {unit.id: unit for unit in c_units}
        self._history: Deque[AuditEvent] = deque(maxlen=history_limit)
        self._guardrail_engine = GuardrailEngine(list(guardrails or ()), self._bus)
        self._bus.subscribe(self._guardrail_engine.handle_event)
        self._bus.subscribe(self._log_sink)
        self._bus.subscribe(self._metrics_sink)
        self._bus.subscribe(self._history_sink)

    @property
    def c_units(self) -> Dict[str, CUnit]:
        return dict(self._c_units)

    @property
    def history(self) -> List[AuditEvent]:
        return list(self._history)

    def register_guardrail(self, guardrail: Guardrail) -> None:
        self._guardrail_engine.register(guardrail)

    async def emit(self, event: AuditEvent) -> None:
        if event.c_unit not in self._c_units:
            raise ValueError(f"Unknown C-Unit: {event.c_unit}")
        await self._bus.publish(event)

    def subscribe(self, handler: AuditEventHandler) -> None:
        self._bus.subscribe(handler)

    def _history_sink(self, event: AuditEvent) -> None:
        self._history.append(event)

    @staticmethod
    def _log_sink(event: AuditEvent) -> None:
        if isinstance(event, GuardrailViolation):
            logger.warning(
                "Guardrail violation",
                extra={"guardrail": event.guardrail_id, "subject": event.subject, "reason": event.reason},
            )
        else:
            logger.info(
                "Audit event",
                extra={"audit_event": event.name, "c_unit": event.c_unit, "subject": event.subject},
            )

    @staticmethod
    def _metrics_sink(event: AuditEvent) -> None:
        if isinstance(event, GuardrailViolation):
            record_guardrail_violation(event.guardrail_id, event.severity)
        record_audit_event(event.c_unit, event.severity)


def bootstrap_default_audit_trail() -> AuditTrail:
    """Create the audit trail wired into the FastAPI app."""

    c_units = [
        CUnit(
            id="core.payments",
            name="Payments",
            description="Outbound payment orders and their terminal outcomes",
            owners=("billing",),
        ),
        CUnit(
            id="core.webhooks",
            name="Gateway callbacks",
            description="Inbound gateway callbacks and their retries",
            owners=("billing", "ops"),
        ),
        CUnit(
            id="core.subscription",
            name="Subscriptions",
            description="Subscription lifecycle transitions",
            owners=("billing",),
        ),
    ]

    trail = AuditTrail(c_units=c_units, guardrails=default_guardrails())
    trail.subscribe(_alert_sink)
    return trail


async def _alert_sink(event: AuditEvent) -> None:
    if not isinstance(event, GuardrailViolation):
        return

    if event.severity not in {"high", "critical"}:
        return

    from billing.ops import alerts

    payload = {
        "guardrail_id": event.guardrail_id,
        "reason": event.reason,
        "event": event.payload.get("event"),
        "subject": event.subject,
    }
    await asyncio.to_thread(alerts.send_alert, "guardrail_violation", payload)
