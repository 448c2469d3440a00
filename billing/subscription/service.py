"""Subscription lifecycle: activation, renewal, plan changes and access checks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from billing.audit.event_bus import AuditEvent
from billing.audit.service import AuditTrail
from billing.errors import NotFoundError, ValidationError
from billing.metrics import record_subscription_action

from .billing_cycle import add_billing_cycle
from .models import Plan, SubscriptionRecord, SubscriptionStatus
from .repository import PlanRepository, SubscriptionRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SubscriptionService:
    """Owns every write to the subscriptions table."""

    def __init__(
        self,
        plans: PlanRepository,
        subscriptions: SubscriptionRepository,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._plans = plans
        self._subscriptions = subscriptions
        self._audit_trail = audit_trail
        self._clock = clock or _utcnow

    async def activate_or_renew(self, user_id: str, plan_id: str, payment_id: str) -> SubscriptionRecord:
        """Apply a successful payment to the user's subscription.

        Creates the row when missing, otherwise switches it to ``plan_id`` and
        starts a fresh period. Calling again with the same ``payment_id``
        returns the stored row without extending the period twice.
        """

        existing = self._subscriptions.get_by_user(user_id)
        if existing is not None and existing.last_payment_id == payment_id:
            return existing

        plan = self._require_plan(plan_id)
        now = self._clock()
        record, applied = self._subscriptions.upsert_for_payment(
            user_id=user_id,
            plan_id=plan.id,
            period_end=add_billing_cycle(now, plan.billing_cycle),
            payment_id=payment_id,
            now=now,
        )
        if not applied:
            return record

        action = "activate" if existing is None else "renew_payment"
        record_subscription_action(action)
        logger.info(
            {
                "event": "subscription_activated",
                "user_id": user_id,
                "plan_id": plan.id,
                "payment_id": payment_id,
                "period_end": record.current_period_end.isoformat() if record.current_period_end else None,
            }
        )
        await self._emit("subscription.activated", record, payment_id=payment_id, action=action)
        return record

    async def renew(self, user_id: str) -> SubscriptionRecord:
        current = self._require_subscription(user_id)
        plan = self._require_plan(current.plan_id)
        now = self._clock()
        record = self._subscriptions.update(
            user_id,
            now=now,
            status=SubscriptionStatus.ACTIVE,
            period_end=add_billing_cycle(now, plan.billing_cycle),
        )
        return await self._finish("renew", record or current)

    async def upgrade(self, user_id: str, new_plan_id: str) -> SubscriptionRecord:
        current, current_plan, new_plan = self._plan_change(user_id, new_plan_id)
        if new_plan.price <= current_plan.price:
            raise ValidationError("New plan must be more expensive than current plan")
        record = self._subscriptions.update(
            user_id,
            now=self._clock(),
            status=SubscriptionStatus.ACTIVE,
            plan_id=new_plan.id,
        )
        return await self._finish("upgrade", record or current, from_plan=current_plan.id)

    async def downgrade(self, user_id: str, new_plan_id: str) -> SubscriptionRecord:
        current, current_plan, new_plan = self._plan_change(user_id, new_plan_id)
        if new_plan.price >= current_plan.price:
            raise ValidationError("New plan must be less expensive than current plan")
        record = self._subscriptions.update(
            user_id,
            now=self._clock(),
            status=SubscriptionStatus.ACTIVE,
            plan_id=new_plan.id,
        )
        return await self._finish("downgrade", record or current, from_plan=current_plan.id)

    async def cancel(self, user_id: str) -> SubscriptionRecord:
        """Cancel immediately; the period end is kept for reporting only."""

        current = self._require_subscription(user_id)
        record = self._subscriptions.update(user_id, now=self._clock(), status=SubscriptionStatus.CANCELED)
        return await self._finish("cancel", record or current)

    def get(self, user_id: str) -> Optional[SubscriptionRecord]:
        return self._subscriptions.get_by_user(user_id)

    def has_access(self, user_id: str, now: Optional[datetime] = None) -> bool:
        record = self._subscriptions.get_by_user(user_id)
        if record is None or record.status is not SubscriptionStatus.ACTIVE:
            return False
        if record.current_period_end is None:
            return False
        return record.current_period_end > (now or self._clock())

    def get_features(self, user_id: str, now: Optional[datetime] = None) -> List[str]:
        if not self.has_access(user_id, now):
            return []
        record = self._subscriptions.get_by_user(user_id)
        plan = self._plans.get(record.plan_id) if record else None
        return list(plan.features) if plan else []

    def statistics(self) -> Dict[str, int]:
        counts = self._subscriptions.count_by_status()
        counts["total"] = sum(counts.values())
        return counts

    def _require_subscription(self, user_id: str) -> SubscriptionRecord:
        record = self._subscriptions.get_by_user(user_id)
        if record is None:
            raise NotFoundError("Subscription not found")
        return record

    def _require_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise NotFoundError("Plan not found")
        return plan

    def _plan_change(self, user_id: str, new_plan_id: str) -> tuple[SubscriptionRecord, Plan, Plan]:
        current = self._require_subscription(user_id)
        current_plan = self._require_plan(current.plan_id)
        new_plan = self._require_plan(new_plan_id)
        return current, current_plan, new_plan

    async def _finish(self, action: str, record: SubscriptionRecord, **payload: object) -> SubscriptionRecord:
        record_subscription_action(action)
        logger.info({"event": "subscription_changed", "action": action, "user_id": record.user_id, **payload})
        await self._emit(f"subscription.{action}", record, **payload)
        return record

    async def _emit(self, name: str, record: SubscriptionRecord, **payload: object) -> None:
        if self._audit_trail is None:
            return
        event = AuditEvent(
            name=name,
            c_unit="core.subscription",
            actor="subscription.service",
            subject=record.user_id,
            payload={
                "plan_id": record.plan_id,
                "status": record.status.value,
                "current_period_end": record.current_period_end.isoformat() if record.current_period_end else None,
                **payload,
            },
        )
        await self._audit_trail.emit(event)
