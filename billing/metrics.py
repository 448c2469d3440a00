"""Prometheus metric definitions and helpers for the billing service."""

from __future__ import annotations

from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, Info


PAYMENT_ORDERS_TOTAL = Counter(
    "payment_orders_total",
    "Total number of payment order attempts partitioned by outcome.",
    ["outcome"],
)

PAYMENT_TRANSITIONS_TOTAL = Counter(
    "payment_transitions_total",
    "Total number of payment status transitions partitioned by target status.",
    ["status"],
)

WEBHOOK_EVENTS_TOTAL = Counter(
    "webhook_events_total",
    "Total number of gateway callbacks processed partitioned by outcome.",
    ["outcome"],
)

WEBHOOK_FAILURES_TOTAL = Counter(
    "webhook_failures_total",
    "Total number of failed gateway callbacks partitioned by reason.",
    ["reason"],
)

WEBHOOK_PROCESSING_SECONDS = Histogram(
    "webhook_processing_seconds",
    "Histogram of gateway callback processing time in seconds.",
)

WEBHOOK_RETRIES_TOTAL = Counter(
    "webhook_retries_total",
    "Total number of webhook retry attempts partitioned by result.",
    ["result"],
)

WEBHOOK_EVENTS_EXHAUSTED = Gauge(
    "webhook_events_exhausted",
    "Number of webhook events that exhausted their retry budget.",
)

SUBSCRIPTION_ACTIONS_TOTAL = Counter(
    "subscription_actions_total",
    "Total number of subscription lifecycle actions partitioned by action.",
    ["action"],
)

AUDIT_EVENTS_TOTAL = Counter(
    "audit_events_total",
    "Total number of audit events partitioned by c_unit and severity.",
    ["c_unit", "severity"],
)

GUARDRAIL_VIOLATIONS_TOTAL = Counter(
    "guardrail_violations_total",
    "Total guardrail violations partitioned by guardrail id and severity.",
    ["guardrail_id", "severity"],
)

APP_INFO = Info("billing_app", "Application build and runtime information.")


def record_order(outcome: str) -> None:
    PAYMENT_ORDERS_TOTAL.labels(outcome=outcome).inc()


def record_payment_transition(status: str) -> None:
    PAYMENT_TRANSITIONS_TOTAL.labels(status=status).inc()


def record_webhook_outcome(outcome: str, duration_seconds: Optional[float] = None) -> None:
    """Increment webhook outcome counters and optionally record duration."""

    WEBHOOK_EVENTS_TOTAL.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        WEBHOOK_PROCESSING_SECONDS.observe(duration_seconds)


def record_webhook_failure(reason: str) -> None:
    WEBHOOK_FAILURES_TOTAL.labels(reason=reason).inc()


def record_webhook_retry(result: str) -> None:
    WEBHOOK_RETRIES_TOTAL.labels(result=result).inc()


def set_exhausted_webhooks(count: int) -> None:
    WEBHOOK_EVENTS_EXHAUSTED.set(count)


def record_subscription_action(action: str) -> None:
    SUBSCRIPTION_ACTIONS_TOTAL.labels(action=action).inc()


def record_audit_event(c_unit: str, severity: str) -> None:
    """Increment counters for emitted audit events."""

    AUDIT_EVENTS_TOTAL.labels(c_unit=c_unit, severity=severity).inc()


def record_guardrail_violation(guardrail_id: str, severity: str) -> None:
    """Increment counters for guardrail violation events."""

    GUARDRAIL_VIOLATIONS_TOTAL.labels(guardrail_id=guardrail_id, severity=severity).inc()
