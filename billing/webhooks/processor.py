"""Apply stored gateway callbacks to payments and subscriptions."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from billing.audit.event_bus import AuditEvent
from billing.audit.service import AuditTrail
from billing.errors import AmountMismatchError, ConcurrencyConflict
from billing.metrics import record_payment_transition, record_webhook_failure, record_webhook_outcome
from billing.payments.models import PaymentRecord, PaymentStatus
from billing.payments.repository import PaymentRepository
from billing.payments.signature import SignatureCodec, SigningContext
from billing.subscription.service import SubscriptionService

from .models import WebhookEvent, WebhookPayload, map_gateway_status
from .repository import WebhookEventRepository

logger = logging.getLogger(__name__)


class _CallbackRejected(Exception):
    """A callback that cannot be applied; ends the attempt as FAILED."""

    def __init__(self, message: str, reason: str, audit_name: str = "webhook.failed") -> None:
        super().__init__(message)
        self.reason = reason
        self.audit_name = audit_name


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _peek(raw: str) -> Tuple[str, Optional[str]]:
    """Best-effort event type and transaction id, used only for indexing."""

    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        return "payment.unknown", None
    if not isinstance(data, dict):
        return "payment.unknown", None
    status = str(data.get("status") or "unknown").strip().lower() or "unknown"
    transaction_id = data.get("merchantTransactionId")
    return f"payment.{status}", str(transaction_id) if transaction_id else None


class WebhookProcessor:
    """Store-then-process handler for gateway callbacks.

    Every callback is persisted before anything else happens, so a crash or a
    bug never loses it; :class:`~billing.webhooks.sweeper.RetrySweeper`
    re-drives FAILED events through :meth:`process`.
    """

    def __init__(
        self,
        *,
        events: WebhookEventRepository,
        payments: PaymentRepository,
        subscriptions: SubscriptionService,
        codec: SignatureCodec,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._events = events
        self._payments = payments
        self._subscriptions = subscriptions
        self._codec = codec
        self._audit_trail = audit_trail
        self._clock = clock or _utcnow

    async def receive(self, raw_body: bytes | str, signature: Optional[str]) -> WebhookEvent:
        raw = raw_body.decode("utf-8", errors="replace") if isinstance(raw_body, bytes) else raw_body
        event_type, transaction_id = _peek(raw)
        event = self._events.create(
            raw_payload=raw,
            signature=signature,
            event_type=event_type,
            transaction_id=transaction_id,
            created_at=self._clock(),
        )
        logger.info({"event": "webhook_received", "event_id": event.id, "event_type": event_type})
        return await self.process(event)

    async def process(self, event: WebhookEvent) -> WebhookEvent:
        """Run one attempt for ``event`` and persist its outcome. Never raises."""

        started = time.perf_counter()
        try:
            outcome = await self._apply(event)
        except _CallbackRejected as exc:
            return await self._fail(event, str(exc), exc.reason, exc.audit_name, started)
        except AmountMismatchError as exc:
            return await self._fail(event, str(exc), "amount_mismatch", "webhook.failed", started)
        except Exception as exc:
            logger.exception({"event": "webhook_processing_error", "event_id": event.id})
            return await self._fail(event, str(exc) or exc.__class__.__name__, "error", "webhook.failed", started)

        processed = self._events.mark_processed(event.id, now=self._clock())
        record_webhook_outcome(outcome, time.perf_counter() - started)
        logger.info({"event": "webhook_processed", "event_id": event.id, "outcome": outcome})
        return processed

    async def _apply(self, event: WebhookEvent) -> str:
        if not self._codec.verify(event.raw_payload, event.signature, SigningContext.WEBHOOK):
            raise _CallbackRejected("invalid signature", "invalid_signature", audit_name="webhook.rejected")

        payload = self._parse(event.raw_payload)

        payment = self._payments.get_by_transaction_id(payload.merchant_transaction_id)
        if payment is None:
            raise _CallbackRejected("payment not found", "payment_not_found")

        if payment.status.is_terminal:
            if payment.status is PaymentStatus.SUCCEEDED and payment.subscription_id is None:
                await self._activate(payment)
                return "resumed"
            if payment.metadata.get("cancelReason") == "expired":
                logger.warning(
                    {
                        "event": "webhook_for_expired_order",
                        "event_id": event.id,
                        "order_id": payment.order_id,
                        "gateway_status": payload.status,
                    }
                )
            return "duplicate"

        if payload.amount != payment.amount:
            raise AmountMismatchError(payment.amount, payload.amount)

        target = map_gateway_status(payload.status)
        now = self._clock()
        metadata: dict[str, Any] = {
            "callback": payload.echo(),
            "callbackEventId": event.id,
            "completedAt": now.isoformat(),
        }
        if target is PaymentStatus.FAILED:
            metadata["failureReason"] = payload.response_message or payload.response_code or payload.status

        try:
            payment = self._payments.transition(
                payment.id,
                target,
                now=now,
                confirmation_id=payload.transaction_id,
                metadata_updates=metadata,
            )
        except ConcurrencyConflict:
            logger.info({"event": "webhook_transition_conflict", "event_id": event.id, "payment_id": payment.id})
            return "duplicate"

        record_payment_transition(target.value)
        if target is PaymentStatus.SUCCEEDED:
            await self._activate(payment)
            await self._emit_payment("payment.succeeded", payment)
            return "succeeded"

        await self._emit_payment("payment.failed", payment, gateway_status=payload.status)
        return "failed"

    @staticmethod
    def _parse(raw: str) -> WebhookPayload:
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise _CallbackRejected(f"malformed payload: {exc}", "malformed") from exc
        except RecursionError as exc:
            raise _CallbackRejected("malformed payload: nesting too deep", "malformed") from exc
        if not isinstance(data, dict):
            raise _CallbackRejected("malformed payload: expected a JSON object", "malformed")
        try:
            return WebhookPayload.model_validate(data)
        except PydanticValidationError as exc:
            fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
            raise _CallbackRejected(f"malformed payload: invalid {fields}", "malformed") from exc

    async def _activate(self, payment: PaymentRecord) -> None:
        record = await self._subscriptions.activate_or_renew(payment.user_id, payment.plan_id, payment.id)
        self._payments.link_subscription(payment.id, record.id, now=self._clock())

    async def _fail(
        self,
        event: WebhookEvent,
        message: str,
        reason: str,
        audit_name: str,
        started: float,
    ) -> WebhookEvent:
        failed = self._events.mark_failed(event.id, message, now=self._clock())
        record_webhook_failure(reason)
        record_webhook_outcome("failed", time.perf_counter() - started)
        logger.warning(
            {
                "event": "webhook_failed",
                "event_id": event.id,
                "reason": reason,
                "error": message,
                "retry_count": failed.retry_count,
            }
        )
        if self._audit_trail is not None:
            await self._audit_trail.emit(
                AuditEvent(
                    name=audit_name,
                    c_unit="core.webhooks",
                    actor="webhooks.processor",
                    subject=event.id,
                    severity="warning",
                    payload={
                        "reason": reason,
                        "error": message,
                        "transaction_id": event.transaction_id,
                        "retry_count": failed.retry_count,
                    },
                )
            )
        return failed

    async def _emit_payment(self, name: str, payment: PaymentRecord, **payload: Any) -> None:
        if self._audit_trail is None:
            return
        await self._audit_trail.emit(
            AuditEvent(
                name=name,
                c_unit="core.payments",
                actor="webhooks.processor",
                subject=payment.order_id,
                severity="info" if payment.status is PaymentStatus.SUCCEEDED else "warning",
                payload={
                    "user_id": payment.user_id,
                    "plan_id": payment.plan_id,
                    "amount": payment.amount,
                    "status": payment.status.value,
                    **payload,
                },
            )
        )
