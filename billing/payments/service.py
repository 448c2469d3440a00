"""Outbound order creation, status lookups and cancellation."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from billing.audit.event_bus import AuditEvent
from billing.audit.service import AuditTrail
from billing.config import Settings
from billing.errors import ConcurrencyConflict, GatewayError, NotFoundError, ValidationError
from billing.metrics import record_order, record_payment_transition
from billing.subscription.repository import PlanRepository
from billing.users import UserRepository

from .csrf import PaymentUrlGuard
from .gateway import GatewayClient
from .identifiers import generate_order_id, generate_transaction_id
from .models import OrderResult, PaymentRecord, PaymentStatus
from .repository import PaymentRepository

logger = logging.getLogger(__name__)

PENDING_EXISTS = "Pending payment already exists for this plan"
MAX_HISTORY_PAGE = 100


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class OrderService:
    """Create gateway orders for plan purchases."""

    def __init__(
        self,
        *,
        payments: PaymentRepository,
        plans: PlanRepository,
        users: UserRepository,
        gateway: GatewayClient,
        url_guard: PaymentUrlGuard,
        settings: Settings,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._payments = payments
        self._plans = plans
        self._users = users
        self._gateway = gateway
        self._url_guard = url_guard
        self._settings = settings
        self._audit_trail = audit_trail
        self._clock = clock or _utcnow
        self._pending_ttl = timedelta(minutes=settings.pending_order_ttl_min)

    async def create_order(self, user_id: str, plan_id: str, amount: Optional[int] = None) -> OrderResult:
        """Validate the purchase, persist a PENDING payment and open a gateway order.

        Every violated precondition is reported in a single
        :class:`ValidationError`. An expired PENDING order for the same plan is
        cancelled first. Any failure while opening the gateway order marks the
        payment FAILED and propagates as :class:`GatewayError`.
        """

        if user_id and plan_id:
            await self.expire_stale(user_id=user_id, plan_id=plan_id)
        plan = self._validate(user_id, plan_id, amount)
        now = self._clock()
        try:
            record = self._payments.create(
                payment_id=uuid4().hex,
                order_id=generate_order_id(),
                transaction_id=generate_transaction_id(),
                user_id=user_id,
                plan_id=plan.id,
                amount=plan.price,
                currency=plan.currency,
                created_at=now,
                metadata={"createdAt": now.isoformat()},
            )
        except sqlite3.IntegrityError as exc:
            record_order("rejected")
            raise ValidationError([PENDING_EXISTS]) from exc

        try:
            result = await self._gateway.create_order(
                transaction_id=record.gateway_transaction_id,
                user_id=user_id,
                amount=record.amount,
                callback_url=self._settings.callback_url,
                redirect_url=self._settings.redirect_url,
            )
        except GatewayError as exc:
            await self._fail_order(record, str(exc))
            raise
        except asyncio.CancelledError:
            self._mark_failed(record, "order creation cancelled")
            raise
        except Exception as exc:
            logger.exception({"event": "payment_order_error", "order_id": record.order_id})
            await self._fail_order(record, f"{exc.__class__.__name__}: {exc}")
            raise GatewayError(f"order could not be opened: {exc.__class__.__name__}") from exc

        self._payments.update_gateway_details(
            record.id,
            payment_url=result.redirect_url,
            signature=result.signature,
            now=self._clock(),
            metadata_updates={"gatewayResponse": dict(result.raw)},
        )
        record_order("created")
        logger.info(
            {
                "event": "payment_order_created",
                "order_id": record.order_id,
                "transaction_id": record.gateway_transaction_id,
                "user_id": user_id,
                "plan_id": plan.id,
                "amount": record.amount,
            }
        )
        await self._emit("payment.order_created", record, amount=record.amount, plan_id=plan.id)

        return OrderResult(
            order_id=record.order_id,
            redirect_url=self._url_guard.secure_url(result.redirect_url, record.order_id, now=self._clock()),
            amount=record.amount,
            currency=record.currency,
            plan_id=plan.id,
        )

    def get_status(self, order_id: str) -> PaymentRecord:
        record = self._payments.get_by_order_id(order_id)
        if record is None:
            raise NotFoundError("Payment not found")
        return record

    async def cancel_order(self, order_id: str, user_id: str) -> PaymentRecord:
        record = self._payments.get_by_order_id(order_id)
        if record is None or record.user_id != user_id:
            raise NotFoundError("Payment not found")
        if record.status is not PaymentStatus.PENDING:
            raise ValidationError(["Payment cannot be cancelled"])

        now = self._clock()
        try:
            updated = self._payments.transition(
                record.id,
                PaymentStatus.CANCELED,
                now=now,
                metadata_updates={"canceledAt": now.isoformat()},
            )
        except ConcurrencyConflict as exc:
            raise ValidationError(["Payment cannot be cancelled"]) from exc

        record_payment_transition(PaymentStatus.CANCELED.value)
        logger.info({"event": "payment_canceled", "order_id": order_id, "user_id": user_id})
        await self._emit("payment.canceled", updated)
        return updated

    def live_redirect_url(self, record: PaymentRecord, now: Optional[datetime] = None) -> Optional[str]:
        """Freshly signed redirect URL while the order can still be paid."""

        if record.status is not PaymentStatus.PENDING or not record.payment_url:
            return None
        moment = now or self._clock()
        if moment - record.created_at >= self._url_guard.max_age:
            return None
        return self._url_guard.secure_url(record.payment_url, record.order_id, now=moment)

    def statistics(self) -> Dict[str, Any]:
        counts = self._payments.count_by_status()
        return {
            "total": sum(counts.values()),
            "byStatus": counts,
            "succeededAmount": self._payments.succeeded_amount(),
        }

    async def expire_stale(
        self,
        now: Optional[datetime] = None,
        *,
        user_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> int:
        """Cancel PENDING orders older than the pending TTL and free their slot."""

        moment = now or self._clock()
        expired = 0
        for record in self._payments.list_pending_before(moment - self._pending_ttl, user_id=user_id, plan_id=plan_id):
            try:
                updated = self._payments.transition(
                    record.id,
                    PaymentStatus.CANCELED,
                    now=moment,
                    metadata_updates={"expiredAt": moment.isoformat(), "cancelReason": "expired"},
                )
            except ConcurrencyConflict:
                continue
            expired += 1
            record_payment_transition(PaymentStatus.CANCELED.value)
            await self._emit("payment.expired", updated)
        if expired:
            logger.info({"event": "payment_orders_expired", "count": expired, "user_id": user_id, "plan_id": plan_id})
        return expired

    def billing_history(
        self,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 10,
        status: Optional[PaymentStatus] = None,
    ) -> Dict[str, Any]:
        errors: List[str] = []
        if page < 1:
            errors.append("Page must be at least 1")
        if limit < 1 or limit > MAX_HISTORY_PAGE:
            errors.append(f"Limit must be between 1 and {MAX_HISTORY_PAGE}")
        if errors:
            raise ValidationError(errors)

        total = self._payments.count_by_user(user_id, status=status)
        total_pages = (total + limit - 1) // limit
        records = self._payments.list_by_user(user_id, status=status, limit=limit, offset=(page - 1) * limit)
        return {
            "records": records,
            "page": page,
            "limit": limit,
            "total_records": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }

    def billing_summary(self, user_id: str) -> Dict[str, Any]:
        counts = self._payments.count_by_status(user_id)
        return {
            "total_payments": sum(counts.values()),
            "successful_payments": counts[PaymentStatus.SUCCEEDED.value],
            "failed_payments": counts[PaymentStatus.FAILED.value],
            "canceled_payments": counts[PaymentStatus.CANCELED.value],
            "pending_payments": counts[PaymentStatus.PENDING.value],
            "total_paid": self._payments.succeeded_amount(user_id),
        }

    def _validate(self, user_id: str, plan_id: str, amount: Optional[int]):
        errors: List[str] = []
        if not plan_id:
            errors.append("Plan ID is required")
        if not user_id:
            errors.append("User ID is required")
        if amount is not None and amount <= 0:
            errors.append("Valid amount is required")

        plan = self._plans.get(plan_id) if plan_id else None
        if plan_id and plan is None:
            errors.append("Plan not found")
        elif plan is not None:
            if not plan.is_active:
                errors.append("Plan is not active")
            if amount is not None and amount > 0 and amount != plan.price:
                errors.append("Payment amount does not match plan price")

        if user_id and not self._users.exists(user_id):
            errors.append("User not found")
        if plan_id and user_id and self._payments.has_pending(user_id, plan_id):
            errors.append(PENDING_EXISTS)

        if errors:
            record_order("rejected")
            logger.info({"event": "payment_order_rejected", "user_id": user_id, "plan_id": plan_id, "errors": errors})
            raise ValidationError(errors)
        return plan

    def _mark_failed(self, record: PaymentRecord, reason: str) -> Optional[PaymentRecord]:
        now = self._clock()
        try:
            failed = self._payments.transition(
                record.id,
                PaymentStatus.FAILED,
                now=now,
                metadata_updates={"failureReason": reason, "failedAt": now.isoformat()},
            )
        except ConcurrencyConflict:
            logger.warning({"event": "payment_order_fail_conflict", "order_id": record.order_id})
            return None
        record_order("gateway_error")
        record_payment_transition(PaymentStatus.FAILED.value)
        logger.warning({"event": "payment_order_failed", "order_id": record.order_id, "reason": reason})
        return failed

    async def _fail_order(self, record: PaymentRecord, reason: str) -> None:
        failed = self._mark_failed(record, reason)
        if failed is not None:
            await self._emit("payment.failed", failed, reason=reason, stage="create_order")

    async def _emit(self, name: str, record: PaymentRecord, **payload: Any) -> None:
        if self._audit_trail is None:
            return
        event = AuditEvent(
            name=name,
            c_unit="core.payments",
            actor="payments.service",
            subject=record.order_id,
            severity="warning" if name == "payment.failed" else "info",
            payload={"user_id": record.user_id, "status": record.status.value, **payload},
        )
        await self._audit_trail.emit(event)
