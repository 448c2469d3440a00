"""Subscription lifecycle package."""

from .billing_cycle import add_billing_cycle, add_months
from .models import BillingCycle, Plan, SubscriptionRecord, SubscriptionStatus
from .repository import PlanRepository, SubscriptionRepository
from .service import SubscriptionService

__all__ = [
    "BillingCycle",
    "Plan",
    "PlanRepository",
    "SubscriptionRecord",
    "SubscriptionRepository",
    "SubscriptionService",
    "SubscriptionStatus",
    "add_billing_cycle",
    "add_months",
]
