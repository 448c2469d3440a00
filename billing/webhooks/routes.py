"""FastAPI routes for gateway callbacks."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from billing.security.rate_limit import RateLimitExceeded

from .health import webhook_health
from .models import WebhookAck
from .processor import WebhookProcessor
from .repository import WebhookEventRepository
from .sweeper import RetrySweeper

router = APIRouter(prefix="/payments/webhook", tags=["webhooks"])

_SIGNATURE_HEADER = "X-VERIFY"


def _get_processor(request: Request) -> WebhookProcessor:
    processor = getattr(request.app.state, "webhook_processor", None)
    if processor is None:
        raise RuntimeError("Webhook processor is not configured")
    return processor


def _get_events(request: Request) -> WebhookEventRepository:
    events = getattr(request.app.state, "webhook_events", None)
    if events is None:
        raise RuntimeError("Webhook event store is not configured")
    return events


def _get_sweeper(request: Request) -> RetrySweeper:
    sweeper = getattr(request.app.state, "retry_sweeper", None)
    if sweeper is None:
        raise RuntimeError("Retry sweeper is not configured")
    return sweeper


def _enforce_rate_limit(request: Request) -> None:
    limiter = getattr(request.app.state, "webhook_rate_limiter", None)
    if limiter is None:
        return
    client = request.client.host if request.client else "anonymous"
    try:
        limiter.assert_allow(client)
    except RateLimitExceeded as exc:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate_limit_exceeded") from exc


@router.post("", response_model=WebhookAck, response_model_by_alias=True)
async def receive_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(_get_processor),
) -> WebhookAck:
    _enforce_rate_limit(request)
    body = await request.body()
    event = await processor.receive(body, request.headers.get(_SIGNATURE_HEADER))
    return WebhookAck(event_id=event.id, outcome=event.status)


@router.get("/health")
async def health(
    request: Request,
    events: WebhookEventRepository = Depends(_get_events),
) -> Dict[str, Any]:
    clock = getattr(request.app.state, "clock", None)
    return webhook_health(events, clock=clock)


@router.post("/retry")
async def retry_failed(sweeper: RetrySweeper = Depends(_get_sweeper)) -> Dict[str, Any]:
    report = await sweeper.sweep_once()
    return {"status": "completed", **report.as_dict()}
