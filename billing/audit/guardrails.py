"""Guardrail definitions evaluated against published audit events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from .event_bus import AuditEvent, EventBus


@dataclass(frozen=True)
class GuardrailViolation(AuditEvent):
    """Audit event emitted when a guardrail is breached."""

    guardrail_id: str = ""
    reason: str = ""


@dataclass
class Guardrail:
    """Declarative guardrail definition."""

    id: str
    description: str
    severity: str
    predicate: Callable[[AuditEvent], bool]
    reason: Callable[[AuditEvent], str] = field(default=lambda event: "")

    def evaluate(self, event: AuditEvent) -> Optional[GuardrailViolation]:
        if not self.predicate(event):
            return None
        return GuardrailViolation(
            name="guardrail.violation",
            c_unit=event.c_unit,
            actor=event.actor,
            subject=event.subject,
            severity=self.severity,
            payload={"event": event.name, **event.payload},
            guardrail_id=self.id,
            reason=self.reason(event),
        )


class GuardrailEngine:
    """Evaluates guardrails and republishes violations on the bus."""

    def __init__(self, guardrails: Iterable[Guardrail], bus: EventBus) -> None:
        self._guardrails: List[Guardrail] = list(guardrails)
        self._bus = bus

    async def handle_event(self, event: AuditEvent) -> None:
        if isinstance(event, GuardrailViolation):
            return

        for guardrail in self._guardrails:
            violation = guardrail.evaluate(event)
            if violation is not None:
                await self._bus.publish(violation)

    def register(self, guardrail: Guardrail) -> None:
        self._guardrails.append(guardrail)


def default_guardrails() -> List[Guardrail]:
    """Guardrails that page operators about billing integrity problems."""

    return [
        Guardrail(
            id="webhook-retries-exhausted",
            description="Webhook events that exhaust their retries need manual reconciliation",
            severity="high",
            predicate=lambda event: event.name == "webhook.retries_exhausted",
            reason=lambda event: str(event.payload.get("error") or "retry budget exhausted"),
        ),
        Guardrail(
            id="webhook-amount-mismatch",
            description="Callbacks reporting a different amount than the stored order",
            severity="critical",
            predicate=lambda event: event.name == "webhook.failed"
            and event.payload.get("reason") == "amount_mismatch",
            reason=lambda event: str(event.payload.get("error", "")),
        ),
        Guardrail(
            id="webhook-invalid-signature",
            description="Callbacks whose signature does not verify",
            severity="medium",
            predicate=lambda event: event.name == "webhook.rejected",
            reason=lambda event: "invalid signature",
        ),
    ]
