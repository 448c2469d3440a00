"""Audit trail, guardrails, and event bus for billing outcomes."""

from .event_bus import AuditEvent, EventBus
from .guardrails import Guardrail, GuardrailEngine, GuardrailViolation
from .service import AuditTrail, CUnit, bootstrap_default_audit_trail

__all__ = [
    "AuditEvent",
    "EventBus",
    "Guardrail",
    "GuardrailViolation",
    "GuardrailEngine",
    "AuditTrail",
    "CUnit",
    "bootstrap_default_audit_trail",
]
