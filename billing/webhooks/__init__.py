"""Gateway callback intake, processing and retries."""

from .health import webhook_health
from .models import (
    MAX_RETRIES,
    SweepReport,
    WebhookEvent,
    WebhookEventStatus,
    WebhookPayload,
    map_gateway_status,
)
from .processor import WebhookProcessor
from .repository import WebhookEventRepository
from .sweeper import RetrySweeper

__all__ = [
    "MAX_RETRIES",
    "RetrySweeper",
    "SweepReport",
    "WebhookEvent",
    "WebhookEventRepository",
    "WebhookEventStatus",
    "WebhookPayload",
    "WebhookProcessor",
    "map_gateway_status",
    "webhook_health",
]
