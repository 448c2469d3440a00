import threading

import pytest

from billing.audit import AuditTrail, CUnit
from billing.audit.event_bus import AuditEvent
from billing.audit.guardrails import Guardrail


@pytest.mark.asyncio
async def test_default_audit_trail_registered(client):
    audit_trail = client.app.state.audit_trail

    assert {"core.payments", "core.webhooks", "core.subscription"} <= set(audit_trail.c_units)

    await audit_trail.emit(
        AuditEvent(
            name="payment.order_created",
            c_unit="core.payments",
            actor="test",
            subject="ORDER_1",
        )
    )

    assert any(event.subject == "ORDER_1" for event in audit_trail.history)


@pytest.mark.asyncio
async def test_unknown_c_unit_rejected(client):
    with pytest.raises(ValueError):
        await client.app.state.audit_trail.emit(
            AuditEvent(name="x", c_unit="core.unknown", actor="test", subject="s")
        )


@pytest.mark.asyncio
async def test_exhausted_retries_trigger_alert(monkeypatch, client):
    audit_trail = client.app.state.audit_trail
    captured = {}

    def fake_send_alert(event: str, payload: dict[str, object]) -> bool:
        captured["event"] = event
        captured["payload"] = payload
        return True

    monkeypatch.setattr("billing.ops.alerts.send_alert", fake_send_alert)

    await audit_trail.emit(
        AuditEvent(
            name="webhook.retries_exhausted",
            c_unit="core.webhooks",
            actor="test",
            subject="evt-2",
            severity="error",
            payload={"error": "payment not found"},
        )
    )

    violation = next(
        (event for event in audit_trail.history if event.subject == "evt-2" and event.name == "guardrail.violation"),
        None,
    )
    assert violation is not None
    assert captured["event"] == "guardrail_violation"
    assert captured["payload"]["guardrail_id"] == "webhook-retries-exhausted"
    assert captured["payload"]["reason"] == "payment not found"
    assert captured["payload"]["subject"] == "evt-2"


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_publication():
    trail = AuditTrail(c_units=[CUnit(id="core.payments", name="Payments", description="")])
    seen = []

    def broken(event):
        raise RuntimeError("sink down")

    trail.subscribe(broken)
    trail.subscribe(seen.append)
    trail.register_guardrail(
        Guardrail(id="always", description="", severity="low", predicate=lambda event: event.name == "ping")
    )

    await trail.emit(AuditEvent(name="ping", c_unit="core.payments", actor="test", subject="s"))

    assert [event.name for event in seen] == ["guardrail.violation", "ping"]
    assert len(trail.history) == 2


@pytest.mark.asyncio
async def test_alert_delivery_runs_off_the_event_loop_thread(monkeypatch, client):
    loop_thread = threading.get_ident()
    delivery_threads = []

    def fake_send_alert(event: str, payload: dict[str, object]) -> bool:
        delivery_threads.append(threading.get_ident())
        return True

    monkeypatch.setattr("billing.ops.alerts.send_alert", fake_send_alert)

    await client.app.state.audit_trail.emit(
        AuditEvent(
            name="webhook.failed",
            c_unit="core.webhooks",
            actor="test",
            subject="evt-3",
            severity="warning",
            payload={"reason": "amount_mismatch"},
        )
    )

    assert len(delivery_threads) == 1
    assert delivery_threads[0] != loop_thread
