"""Publish/subscribe bus for billing audit events."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)

AuditEventHandler = Callable[["AuditEvent"], Optional[Awaitable[None]] | None]


@dataclass(frozen=True)
class AuditEvent:
    """Envelope describing a payment or subscription lifecycle event."""

    name: str
    c_unit: str
    actor: str
    subject: str
    severity: str = "info"
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


class EventBus:
    """Event bus that awaits async handlers and isolates handler failures."""

    def __init__(self) -> None:
        self._subscribers: List[AuditEventHandler] = []

    def subscribe(self, handler: AuditEventHandler) -> None:
        self._subscribers.append(handler)

    async def publish(self, event: AuditEvent) -> None:
        """Publish the event to all registered subscribers."""

        handlers: Iterable[AuditEventHandler] = list(self._subscribers)
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Audit event handler failed", extra={"audit_event": event.name})

