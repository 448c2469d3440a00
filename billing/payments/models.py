"""Payment records and the API models for outbound orders."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


@dataclass(slots=True)
class PaymentRecord:
    """Database representation of one payment attempt.

    ``amount`` is in minor currency units and always equals the plan price at
    creation time.
    """

    id: str
    order_id: str
    gateway_transaction_id: str
    user_id: str
    plan_id: str
    amount: int
    currency: str
    status: PaymentStatus
    created_at: datetime
    updated_at: datetime
    gateway_confirmation_id: Optional[str] = None
    payment_url: Optional[str] = None
    gateway_signature: Optional[str] = None
    subscription_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    redirect_url: str
    amount: int
    currency: str
    plan_id: str


class CreateOrderRequest(BaseModel):
    """Request payload for ``POST /payments/order``."""

    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field("", alias="planId")
    amount: Optional[int] = None

    @field_validator("plan_id")
    @classmethod
    def strip_plan_id(cls, value: str) -> str:
        return (value or "").strip()


class CreateOrderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    redirect_url: str = Field(..., alias="redirectUrl")
    amount: int
    currency: str
    plan_id: str = Field(..., alias="planId")

    @classmethod
    def from_result(cls, result: OrderResult) -> "CreateOrderResponse":
        return cls(
            order_id=result.order_id,
            redirect_url=result.redirect_url,
            amount=result.amount,
            currency=result.currency,
            plan_id=result.plan_id,
        )


class PaymentStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    status: PaymentStatus
    amount: int
    currency: str
    plan_id: str = Field(..., alias="planId")
    created_at: datetime = Field(..., alias="createdAt")
    redirect_url: Optional[str] = Field(None, alias="redirectUrl")


class BillingHistoryItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    status: PaymentStatus
    amount: int
    currency: str
    plan_id: str = Field(..., alias="planId")
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "BillingHistoryItem":
        return cls(
            order_id=record.order_id,
            status=record.status,
            amount=record.amount,
            currency=record.currency,
            plan_id=record.plan_id,
            subscription_id=record.subscription_id,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total_records: int = Field(..., alias="totalRecords")
    total_pages: int = Field(..., alias="totalPages")
    has_next: bool = Field(..., alias="hasNext")
    has_prev: bool = Field(..., alias="hasPrev")


class BillingHistoryResponse(BaseModel):
    records: List[BillingHistoryItem]
    pagination: Pagination


class BillingSummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_payments: int = Field(..., alias="totalPayments")
    successful_payments: int = Field(..., alias="successfulPayments")
    failed_payments: int = Field(..., alias="failedPayments")
    canceled_payments: int = Field(..., alias="canceledPayments")
    pending_payments: int = Field(..., alias="pendingPayments")
    total_paid: int = Field(..., alias="totalPaid")
