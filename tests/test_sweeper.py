import asyncio

import pytest

from billing.config import Settings
from billing.webhooks.models import MAX_RETRIES, WebhookEventStatus
from helpers import callback_payload, signed_callback


async def _deliver_unknown(app):
    body, headers = signed_callback(callback_payload("TXN_NOT_YET_KNOWN"))
    return await app.state.webhook_processor.receive(body, headers["X-VERIFY"])


@pytest.mark.asyncio
async def test_sweeper_stops_after_three_attempts(app, monkeypatch):
    alerts = []
    monkeypatch.setattr("billing.ops.alerts.send_alert", lambda event, payload: alerts.append(event) or True)
    sweeper = app.state.retry_sweeper
    event = await _deliver_unknown(app)
    assert event.retry_count == 1

    first = await sweeper.sweep_once()
    second = await sweeper.sweep_once()
    third = await sweeper.sweep_once()

    assert (first.attempted, first.failed, first.exhausted) == (1, 1, 0)
    assert (second.attempted, second.failed, second.exhausted) == (1, 1, 1)
    assert third.attempted == 0

    stored = app.state.webhook_events.get(event.id)
    assert stored.status is WebhookEventStatus.FAILED
    assert stored.retry_count == MAX_RETRIES
    assert stored.last_retry_at is not None
    assert any(audit.name == "webhook.retries_exhausted" for audit in app.state.audit_trail.history)
    assert alerts == ["guardrail_violation"]


@pytest.mark.asyncio
async def test_retrying_badly_signed_event_keeps_failing(app):
    sweeper = app.state.retry_sweeper
    result = await app.state.order_service.create_order("u1", "pro")
    payment = app.state.payment_repo.get_by_order_id(result.order_id)
    body, headers = signed_callback(callback_payload(payment.gateway_transaction_id))

    bad_body, bad_headers = signed_callback(callback_payload(payment.gateway_transaction_id), key="other")
    event = await app.state.webhook_processor.receive(bad_body, bad_headers["X-VERIFY"])
    assert event.status is WebhookEventStatus.FAILED

    good = await app.state.webhook_processor.receive(body, headers["X-VERIFY"])
    assert good.status is WebhookEventStatus.PROCESSED

    report = await sweeper.sweep_once()
    assert report.attempted == 1
    assert report.failed == 1


@pytest.mark.asyncio
async def test_sweep_skips_processed_and_pending(app):
    report = await app.state.retry_sweeper.sweep_once()
    assert report.as_dict() == {"attempted": 0, "recovered": 0, "failed": 0, "exhausted": 0}


@pytest.mark.asyncio
async def test_background_loop_survives_errors(tmp_path, gateway):
    from billing.main import create_app

    settings = Settings(
        db_path=str(tmp_path / "loop.db"),
        salt_key="k",
        sweep_interval_sec=0.01,
        sweeper_enabled=True,
    )
    application = create_app(settings, http_client_factory=gateway.factory)
    sweeper = application.state.retry_sweeper
    calls = []

    async def flaky_sweep():
        calls.append(1)
        raise RuntimeError("database is locked")

    sweeper.sweep_once = flaky_sweep
    sweeper.start()
    try:
        await asyncio.sleep(0.05)
        assert sweeper.running is True
    finally:
        await sweeper.stop()

    assert len(calls) >= 2
    assert sweeper.running is False


@pytest.mark.asyncio
async def test_maintenance_pass_expires_abandoned_orders(app, clock):
    result = await app.state.order_service.create_order("u1", "pro")
    clock.advance(hours=2)

    report = await app.state.retry_sweeper.run_once()

    assert report.attempted == 0
    record = app.state.payment_repo.get_by_order_id(result.order_id)
    assert record.status.value == "CANCELED"
    assert record.metadata["cancelReason"] == "expired"
