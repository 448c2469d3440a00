"""Data models for plans and subscriptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a user's subscription row."""

    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    TRIAL = "TRIAL"
    EXPIRED = "EXPIRED"


class SubscriptionAction(str, Enum):
    CANCEL = "cancel"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    RENEW = "renew"


@dataclass(frozen=True, slots=True)
class Plan:
    """Catalogue entry; prices are integer minor currency units."""

    id: str
    name: str
    price: int
    billing_cycle: BillingCycle
    currency: str = "INR"
    features: Tuple[str, ...] = field(default_factory=tuple)
    is_active: bool = True


@dataclass(slots=True)
class SubscriptionRecord:
    """Database representation of a user's subscription."""

    id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    current_period_end: Optional[datetime]
    last_payment_id: Optional[str]
    created_at: datetime
    updated_at: datetime


class ManageSubscriptionRequest(BaseModel):
    """Request payload for ``POST /subscriptions/manage``."""

    model_config = ConfigDict(populate_by_name=True)

    action: SubscriptionAction
    plan_id: Optional[str] = Field(None, alias="planId")

    @field_validator("plan_id")
    @classmethod
    def strip_plan_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    plan_id: str = Field(..., alias="planId")
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = Field(None, alias="currentPeriodEnd")

    @classmethod
    def from_record(cls, record: SubscriptionRecord) -> "SubscriptionResponse":
        return cls(
            user_id=record.user_id,
            plan_id=record.plan_id,
            status=record.status,
            current_period_end=record.current_period_end,
        )


class ManageSubscriptionResponse(BaseModel):
    subscription: SubscriptionResponse
    message: str


class SubscriptionStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription: Optional[SubscriptionResponse] = None
    has_access: bool = Field(..., alias="hasAccess")
    features: List[str] = Field(default_factory=list)
