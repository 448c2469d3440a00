"""Application factory for the billing service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

import httpx
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from billing import __version__
from billing.api import health
from billing.audit import bootstrap_default_audit_trail
from billing.config import Settings, load_settings
from billing.db import Database
from billing.metrics import APP_INFO
from billing.payments import routes as payment_routes
from billing.payments.csrf import PaymentUrlGuard
from billing.payments.gateway import GatewayClient
from billing.payments.repository import PaymentRepository
from billing.payments.service import OrderService
from billing.payments.signature import SignatureCodec
from billing.security.rate_limit import RateLimiter
from billing.subscription import routes as subscription_routes
from billing.subscription.catalog import seed_default_plans
from billing.subscription.repository import PlanRepository, SubscriptionRepository
from billing.subscription.service import SubscriptionService
from billing.users import UserRepository
from billing.webhooks import routes as webhook_routes
from billing.webhooks.processor import WebhookProcessor
from billing.webhooks.repository import WebhookEventRepository
from billing.webhooks.sweeper import RetrySweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    sweeper: RetrySweeper = app.state.retry_sweeper
    if settings.sweeper_enabled:
        sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


def create_app(
    settings: Optional[Settings] = None,
    *,
    http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """Build the FastAPI app with one instance of every component on ``app.state``."""

    settings = settings or load_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    if not settings.salt_key:
        logger.warning({"event": "gateway_not_configured", "reason": "PHONEPE_SALT_KEY is empty"})

    db = Database(settings.db_path)
    users = UserRepository(db)
    plans = PlanRepository(db)
    subscriptions = SubscriptionRepository(db)
    payments = PaymentRepository(db)
    events = WebhookEventRepository(db)
    seeded = seed_default_plans(plans)
    if seeded:
        logger.info({"event": "plans_seeded", "count": seeded})

    audit_trail = bootstrap_default_audit_trail()
    codec = SignatureCodec(settings.signing_keys, settings.salt_index)
    url_guard = PaymentUrlGuard(settings.salt_key, settings.gateway_domain, clock=clock)
    gateway = GatewayClient(
        codec=codec,
        merchant_id=settings.merchant_id,
        base_url=settings.gateway_base_url,
        timeout=settings.gateway_timeout_sec,
        http_client_factory=http_client_factory,
    )
    subscription_service = SubscriptionService(plans, subscriptions, audit_trail=audit_trail, clock=clock)
    order_service = OrderService(
        payments=payments,
        plans=plans,
        users=users,
        gateway=gateway,
        url_guard=url_guard,
        settings=settings,
        audit_trail=audit_trail,
        clock=clock,
    )
    processor = WebhookProcessor(
        events=events,
        payments=payments,
        subscriptions=subscription_service,
        codec=codec,
        audit_trail=audit_trail,
        clock=clock,
    )
    sweeper = RetrySweeper(
        processor=processor,
        events=events,
        interval_seconds=settings.sweep_interval_sec,
        orders=order_service,
        audit_trail=audit_trail,
        clock=clock,
    )

    app = FastAPI(title="Billing Engine", version=__version__, lifespan=_lifespan)
    app.state.settings = settings
    app.state.clock = clock
    app.state.db = db
    app.state.user_repo = users
    app.state.plan_repo = plans
    app.state.subscription_repo = subscriptions
    app.state.payment_repo = payments
    app.state.webhook_events = events
    app.state.audit_trail = audit_trail
    app.state.signature_codec = codec
    app.state.url_guard = url_guard
    app.state.gateway = gateway
    app.state.subscription_service = subscription_service
    app.state.order_service = order_service
    app.state.webhook_processor = processor
    app.state.retry_sweeper = sweeper
    app.state.webhook_rate_limiter = RateLimiter(
        limit=settings.webhook_rate_limit,
        window_seconds=settings.webhook_rate_window_sec,
    )

    APP_INFO.info({"version": __version__, "gateway_domain": settings.gateway_domain})

    app.include_router(health.router)
    app.include_router(webhook_routes.router)
    app.include_router(payment_routes.router)
    app.include_router(subscription_routes.router)

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
