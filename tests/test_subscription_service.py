from datetime import timedelta

import pytest

from billing.errors import NotFoundError, ValidationError
from billing.subscription.models import BillingCycle, Plan, SubscriptionStatus


@pytest.fixture()
def service(app):
    plans = app.state.plan_repo
    plans.upsert(Plan(id="a", name="A", price=29, billing_cycle=BillingCycle.MONTHLY, features=("x", "y")))
    plans.upsert(Plan(id="b", name="B", price=9, billing_cycle=BillingCycle.MONTHLY, features=("x",)))
    plans.upsert(Plan(id="c", name="C", price=29, billing_cycle=BillingCycle.QUARTERLY))
    return app.state.subscription_service


@pytest.mark.asyncio
async def test_activation_sets_period_from_plan_cycle(service, clock):
    record = await service.activate_or_renew("u1", "c", "pay-1")

    assert record.status is SubscriptionStatus.ACTIVE
    assert 89 <= (record.current_period_end - clock()).days <= 92
    assert service.has_access("u1") is True


@pytest.mark.asyncio
async def test_activation_is_idempotent_per_payment(service, clock):
    first = await service.activate_or_renew("u1", "a", "pay-1")
    clock.advance(days=3)
    again = await service.activate_or_renew("u1", "a", "pay-1")
    renewed = await service.activate_or_renew("u1", "a", "pay-2")

    assert again.current_period_end == first.current_period_end
    assert renewed.current_period_end > first.current_period_end
    assert renewed.last_payment_id == "pay-2"


@pytest.mark.asyncio
async def test_upgrade_and_downgrade_price_rules(service):
    await service.activate_or_renew("u1", "a", "pay-1")

    with pytest.raises(ValidationError, match="New plan must be more expensive than current plan"):
        await service.upgrade("u1", "b")
    with pytest.raises(ValidationError, match="more expensive"):
        await service.upgrade("u1", "c")
    with pytest.raises(ValidationError, match="New plan must be less expensive than current plan"):
        await service.downgrade("u1", "c")

    before = service.get("u1").current_period_end
    downgraded = await service.downgrade("u1", "b")
    assert downgraded.plan_id == "b"
    assert downgraded.current_period_end == before

    upgraded = await service.upgrade("u1", "a")
    assert upgraded.plan_id == "a"
    assert upgraded.status is SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_operations_require_existing_rows(service):
    with pytest.raises(NotFoundError):
        await service.renew("u1")
    with pytest.raises(NotFoundError):
        await service.cancel("u1")
    with pytest.raises(NotFoundError):
        await service.upgrade("u1", "a")

    await service.activate_or_renew("u1", "b", "pay-1")
    with pytest.raises(NotFoundError):
        await service.upgrade("u1", "missing")
    with pytest.raises(NotFoundError):
        await service.activate_or_renew("u2", "missing", "pay-2")


@pytest.mark.asyncio
async def test_cancel_revokes_access_and_keeps_period(service, clock):
    record = await service.activate_or_renew("u1", "a", "pay-1")

    canceled = await service.cancel("u1")

    assert canceled.status is SubscriptionStatus.CANCELED
    assert canceled.current_period_end == record.current_period_end
    assert service.has_access("u1") is False
    assert service.get_features("u1") == []

    renewed = await service.renew("u1")
    assert renewed.status is SubscriptionStatus.ACTIVE
    assert service.has_access("u1") is True


@pytest.mark.asyncio
async def test_access_boundary_is_exclusive(service, clock):
    record = await service.activate_or_renew("u1", "a", "pay-1")
    end = record.current_period_end

    assert service.has_access("u1", now=end - timedelta(microseconds=1)) is True
    assert service.has_access("u1", now=end) is False
    assert service.get_features("u1", now=end + timedelta(days=1)) == []
    assert service.get_features("u1") == ["x", "y"]
    # status stays ACTIVE; only the derived entitlement lapses
    assert service.get("u1").status is SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_renew_starts_new_period_from_now(service, clock):
    await service.activate_or_renew("u1", "b", "pay-1")
    clock.advance(days=45)

    renewed = await service.renew("u1")

    assert renewed.current_period_end > clock()
    assert service.has_access("u1") is True


@pytest.mark.asyncio
async def test_statistics_counts_by_status(service):
    await service.activate_or_renew("u1", "a", "pay-1")
    await service.activate_or_renew("u2", "b", "pay-2")
    await service.cancel("u2")

    stats = service.statistics()

    assert stats["ACTIVE"] == 1
    assert stats["CANCELED"] == 1
    assert stats["total"] == 2


def test_unknown_user_has_no_access(service):
    assert service.has_access("nobody") is False
    assert service.get_features("nobody") == []
    assert service.get("nobody") is None
