"""Stored gateway callbacks and the typed callback projection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from billing.payments.models import PaymentStatus

MAX_RETRIES = 3

GATEWAY_STATUS_MAP = {
    "PAYMENT_SUCCESS": PaymentStatus.SUCCEEDED,
    "PAYMENT_ERROR": PaymentStatus.FAILED,
    "PAYMENT_DECLINED": PaymentStatus.FAILED,
    "TIMED_OUT": PaymentStatus.FAILED,
    "PAYMENT_CANCELLED": PaymentStatus.FAILED,
}


def map_gateway_status(gateway_status: Optional[str]) -> PaymentStatus:
    """Translate a gateway status; anything unrecognised counts as FAILED."""

    return GATEWAY_STATUS_MAP.get((gateway_status or "").strip().upper(), PaymentStatus.FAILED)


class WebhookEventStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


@dataclass(slots=True)
class WebhookEvent:
    """One received callback, stored byte-exact before it is acted on."""

    id: str
    event_type: str
    raw_payload: str
    signature: Optional[str]
    status: WebhookEventStatus
    created_at: datetime
    transaction_id: Optional[str] = None
    retry_count: int = 0
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    last_retry_at: Optional[datetime] = None

    @property
    def retries_exhausted(self) -> bool:
        return self.status is WebhookEventStatus.FAILED and self.retry_count >= MAX_RETRIES


class PaymentInstrument(BaseModel):
    type: Optional[str] = None
    utr: Optional[str] = None


class WebhookPayload(BaseModel):
    """Fields of the gateway callback the processor relies on."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    merchant_id: Optional[str] = Field(None, alias="merchantId")
    merchant_transaction_id: str = Field(..., alias="merchantTransactionId", min_length=1)
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    amount: int
    status: str
    response_code: Optional[str] = Field(None, alias="responseCode")
    response_message: Optional[str] = Field(None, alias="responseMessage")
    payment_instrument: Optional[PaymentInstrument] = Field(None, alias="paymentInstrument")

    def echo(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class SweepReport:
    attempted: int = 0
    recovered: int = 0
    failed: int = 0
    exhausted: int = 0
    event_ids: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "recovered": self.recovered,
            "failed": self.failed,
            "exhausted": self.exhausted,
        }


class WebhookAck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "received"
    event_id: str = Field(..., alias="eventId")
    outcome: WebhookEventStatus
