import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from billing.db import Database
from billing.errors import ConcurrencyConflict
from billing.payments.models import PaymentStatus
from billing.payments.repository import PaymentRepository
from billing.subscription.models import SubscriptionStatus
from billing.subscription.repository import SubscriptionRepository
from billing.users import UserRepository
from billing.webhooks.models import WebhookEventStatus
from billing.webhooks.repository import WebhookEventRepository

NOW = datetime(2024, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db(tmp_path):
    database = Database(tmp_path / "nested" / "repo.db")
    yield database
    database.close()


def _create_payment(repo: PaymentRepository, suffix: str = "1", plan_id: str = "pro"):
    return repo.create(
        payment_id=f"pay-{suffix}",
        order_id=f"ORDER_{suffix}",
        transaction_id=f"TXN_{suffix}",
        user_id="u1",
        plan_id=plan_id,
        amount=2900,
        currency="INR",
        created_at=NOW,
    )


def test_pending_payment_unique_per_user_and_plan(db):
    repo = PaymentRepository(db)
    _create_payment(repo, "1")

    with pytest.raises(sqlite3.IntegrityError):
        _create_payment(repo, "2")

    # another plan is fine
    _create_payment(repo, "3", plan_id="enterprise")
    assert repo.has_pending("u1", "pro") is True


def test_terminal_payment_frees_pending_slot(db):
    repo = PaymentRepository(db)
    first = _create_payment(repo, "1")
    repo.transition(first.id, PaymentStatus.FAILED, now=NOW, metadata_updates={"failureReason": "declined"})

    second = _create_payment(repo, "2")

    assert second.status is PaymentStatus.PENDING
    assert repo.get(first.id).metadata["failureReason"] == "declined"


def test_transition_is_compare_and_swap(db):
    repo = PaymentRepository(db)
    payment = _create_payment(repo)

    updated = repo.transition(
        payment.id,
        PaymentStatus.SUCCEEDED,
        now=NOW + timedelta(minutes=1),
        confirmation_id="T123",
        metadata_updates={"callback": {"status": "PAYMENT_SUCCESS"}},
    )
    assert updated.status is PaymentStatus.SUCCEEDED
    assert updated.gateway_confirmation_id == "T123"

    with pytest.raises(ConcurrencyConflict):
        repo.transition(payment.id, PaymentStatus.FAILED, now=NOW)
    assert repo.get(payment.id).status is PaymentStatus.SUCCEEDED

    with pytest.raises(ValueError):
        repo.transition(payment.id, PaymentStatus.PENDING, now=NOW)


def test_link_subscription_only_once_and_only_when_succeeded(db):
    repo = PaymentRepository(db)
    payment = _create_payment(repo)

    assert repo.link_subscription(payment.id, "sub-1", now=NOW) is False

    repo.transition(payment.id, PaymentStatus.SUCCEEDED, now=NOW)
    assert repo.link_subscription(payment.id, "sub-1", now=NOW) is True
    assert repo.link_subscription(payment.id, "sub-2", now=NOW) is False
    assert repo.get_by_transaction_id("TXN_1").subscription_id == "sub-1"


def test_payment_statistics(db):
    repo = PaymentRepository(db)
    first = _create_payment(repo, "1")
    _create_payment(repo, "2", plan_id="enterprise")
    repo.transition(first.id, PaymentStatus.SUCCEEDED, now=NOW)

    counts = repo.count_by_status()
    assert counts == {"PENDING": 1, "SUCCEEDED": 1, "FAILED": 0, "CANCELED": 0}
    assert repo.succeeded_amount() == 2900


def test_subscription_upsert_is_idempotent_per_payment(db):
    repo = SubscriptionRepository(db)
    period_end = NOW + timedelta(days=30)

    record, applied = repo.upsert_for_payment(
        user_id="u1", plan_id="pro", period_end=period_end, payment_id="pay-1", now=NOW
    )
    assert applied is True
    assert record.status is SubscriptionStatus.ACTIVE
    assert record.current_period_end == period_end

    again, applied_again = repo.upsert_for_payment(
        user_id="u1", plan_id="pro", period_end=period_end + timedelta(days=30), payment_id="pay-1", now=NOW
    )
    assert applied_again is False
    assert again.current_period_end == period_end
    assert again.id == record.id

    renewed, renewed_applied = repo.upsert_for_payment(
        user_id="u1", plan_id="enterprise", period_end=period_end + timedelta(days=30), payment_id="pay-2", now=NOW
    )
    assert renewed_applied is True
    assert renewed.plan_id == "enterprise"
    assert renewed.last_payment_id == "pay-2"
    assert repo.count() == 1


def test_subscription_update_unknown_user(db):
    repo = SubscriptionRepository(db)
    assert repo.update("ghost", now=NOW, status=SubscriptionStatus.CANCELED) is None


def test_webhook_claim_respects_retry_bound(db):
    repo = WebhookEventRepository(db)
    event = repo.create(
        raw_payload="{}", signature=None, event_type="payment.unknown", transaction_id=None, created_at=NOW
    )

    assert repo.claim_for_retry(event.id, now=NOW) is False  # still pending

    for attempt in range(1, 4):
        failed = repo.mark_failed(event.id, "boom", now=NOW)
        assert failed.retry_count == attempt
        if attempt < 3:
            assert repo.list_retryable() and repo.claim_for_retry(event.id, now=NOW) is True
            assert repo.claim_for_retry(event.id, now=NOW) is False

    assert repo.list_retryable() == []
    assert repo.claim_for_retry(event.id, now=NOW) is False
    assert repo.count_exhausted() == 1
    stored = repo.get(event.id)
    assert stored.status is WebhookEventStatus.FAILED
    assert stored.retries_exhausted is True
    assert stored.last_retry_at == NOW


def test_webhook_processed_clears_error(db):
    repo = WebhookEventRepository(db)
    event = repo.create(
        raw_payload="{}", signature="sig", event_type="payment.payment_success", transaction_id="TXN_1", created_at=NOW
    )
    repo.mark_failed(event.id, "payment not found", now=NOW)
    repo.claim_for_retry(event.id, now=NOW)

    processed = repo.mark_processed(event.id, now=NOW + timedelta(minutes=1))

    assert processed.status is WebhookEventStatus.PROCESSED
    assert processed.error_message is None
    assert processed.retry_count == 1
    assert repo.last_processed_at() == NOW + timedelta(minutes=1)
    assert repo.count_by_status() == {"PENDING": 0, "PROCESSED": 1, "FAILED": 0}


def test_user_upsert_keeps_email(db):
    users = UserRepository(db)
    users.upsert("u1", " U1@Example.com ")
    users.upsert("u1")

    assert users.get("u1").email == "u1@example.com"
    assert users.exists("u1") is True
    assert users.exists("u2") is False


def test_payment_listing_by_user_and_age(db):
    repo = PaymentRepository(db)
    first = _create_payment(repo, "1")
    repo.create(
        payment_id="pay-2",
        order_id="ORDER_2",
        transaction_id="TXN_2",
        user_id="u1",
        plan_id="enterprise",
        amount=9900,
        currency="INR",
        created_at=NOW + timedelta(hours=1),
    )

    assert [record.id for record in repo.list_by_user("u1")] == ["pay-2", "pay-1"]
    assert [record.id for record in repo.list_by_user("u1", limit=1, offset=1)] == ["pay-1"]
    assert repo.list_by_user("u2") == []
    assert repo.count_by_user("u1") == 2
    assert repo.count_by_user("u1", status=PaymentStatus.SUCCEEDED) == 0

    stale = repo.list_pending_before(NOW + timedelta(minutes=30))
    assert [record.id for record in stale] == [first.id]
    assert repo.list_pending_before(NOW + timedelta(minutes=30), plan_id="enterprise") == []

    repo.transition(first.id, PaymentStatus.SUCCEEDED, now=NOW)
    assert repo.succeeded_amount("u1") == 2900
    assert repo.succeeded_amount("u2") == 0
    assert repo.count_by_status("u1")["SUCCEEDED"] == 1
