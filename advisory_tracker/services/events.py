"""
Domain events.

Core services never hold subscriber lists. Each mutation hands a
``DomainEvent`` to an injected ``EventPublisher``; where it goes from there
(log line, webhook, SSE fan-out) is the publisher's business.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import httpx

from ..core.config import get_settings
from ..models import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()


# Event names
ENTRY_LOCKED = "entry_locked"
ENTRY_UNLOCKED = "entry_unlocked"
ENTRY_COMPLETED = "entry_completed"
RESPONSE_SAVED = "response_saved"
STATUS_UPDATED = "status_updated"
ASSIGNMENT_STARTED = "assignment_started"
ASSIGNMENT_COMPLETED = "assignment_completed"
ASSIGNMENT_REOPENED = "assignment_reopened"
LOCKS_RELEASED = "locks_released"
SHEET_DISTRIBUTED = "sheet_distributed"


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class DomainEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.name,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": _jsonable(self.payload),
        }


class EventPublisher(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...


class LoggingEventPublisher:
    """Default publisher: writes each event to the application log."""

    async def publish(self, event: DomainEvent) -> None:
        logger.info(f"Domain event {event.name}: {_jsonable(event.payload)}")


class WebhookEventPublisher:
    """POST each event as JSON to a configured URL.

    Delivery problems are logged and dropped; they never fail the request
    that produced the event.
    """

    def __init__(self, url: str, timeout: float | None = None):
        self.url = url
        self.http_client = httpx.AsyncClient(
            timeout=timeout or settings.event_webhook_timeout_seconds
        )

    async def close(self):
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def publish(self, event: DomainEvent) -> None:
        try:
            response = await self.http_client.post(self.url, json=event.to_dict())
            if response.status_code >= 400:
                logger.warning(
                    f"Event webhook returned {response.status_code} for {event.name}"
                )
        except httpx.HTTPError as e:
            logger.warning(f"Failed to deliver event {event.name}: {e}")


class BufferedEventPublisher:
    """Collect events during a request; ``flush`` hands them on afterwards.

    Used so subscribers only hear about changes once the transaction that
    made them has committed.
    """

    def __init__(self):
        self.events: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    async def flush(self, target: EventPublisher) -> int:
        pending, self.events = self.events, []
        for event in pending:
            await target.publish(event)
        return len(pending)


_default_publisher: EventPublisher | None = None


def get_event_publisher() -> EventPublisher:
    """Process-wide publisher chosen from settings."""
    global _default_publisher
    if _default_publisher is None:
        if settings.event_webhook_enabled:
            _default_publisher = WebhookEventPublisher(settings.event_webhook_url)
        else:
            _default_publisher = LoggingEventPublisher()
    return _default_publisher


async def close_event_publisher() -> None:
    global _default_publisher
    if isinstance(_default_publisher, WebhookEventPublisher):
        await _default_publisher.close()
    _default_publisher = None
