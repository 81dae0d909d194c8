"""Audit log schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import field_validator

from ..models import AuditAction, as_utc
from .base import PaginatedResponse, TrackerBaseModel


class AuditLogEntry(TrackerBaseModel):
    """A single audit log entry."""

    id: UUID
    user_id: UUID | None = None
    team_id: UUID | None = None
    action: AuditAction
    resource_type: str
    resource_id: UUID | None = None
    details: dict[str, Any] = {}
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class AuditLogResponse(PaginatedResponse):
    """Paginated audit log response."""

    items: list[AuditLogEntry]
