"""Plans seeded into an empty catalogue."""

from __future__ import annotations

from typing import Tuple

from .models import BillingCycle, Plan
from .repository import PlanRepository

_PRO_FEATURES = (
    "basic_analytics",
    "advanced_analytics",
    "unlimited_upload",
    "pattern_analysis",
    "behavioral_analysis",
    "risk_coaching",
    "live_monitoring",
    "performance_goals",
    "market_context",
    "ai_chat",
    "trade_validator",
    "priority_support",
)

DEFAULT_PLANS: Tuple[Plan, ...] = (
    Plan(
        id="pro",
        name="Pro",
        price=2900,
        billing_cycle=BillingCycle.MONTHLY,
        features=_PRO_FEATURES,
    ),
    Plan(
        id="pro_yearly",
        name="Pro (yearly)",
        price=29000,
        billing_cycle=BillingCycle.YEARLY,
        features=_PRO_FEATURES,
    ),
    Plan(
        id="enterprise",
        name="Enterprise",
        price=9900,
        billing_cycle=BillingCycle.MONTHLY,
        features=_PRO_FEATURES
        + (
            "team_management",
            "advanced_reporting",
            "api_access",
            "custom_integrations",
            "dedicated_support",
            "white_label",
            "advanced_security",
        ),
    ),
)


def seed_default_plans(plans: PlanRepository) -> int:
    """Insert the default catalogue when no plans exist; returns plans added."""

    if plans.list_all():
        return 0
    for plan in DEFAULT_PLANS:
        plans.upsert(plan)
    return len(DEFAULT_PLANS)
