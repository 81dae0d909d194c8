"""Schemas for team responses (the per-team working copy of an entry)."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import ConfigDict, Field, field_validator

from ..models import as_utc
from .base import TrackerBaseModel


class ResponseFieldsPayload(TrackerBaseModel):
    """Field values sent by the client.

    Values are passed through loosely typed; normalization (Y/N/N/A, ISO
    dates, unknown names) happens in the service so every entry point shares
    one set of rules. Only the fields the client actually sent are applied.
    """

    model_config = ConfigDict(extra="allow")

    current_status: str | None = None
    comments: str | None = None
    deployed_in_ke: bool | str | None = None
    vendor_contacted: bool | str | None = None
    vendor_contact_date: date | str | None = None
    compensatory_controls_provided: bool | str | None = None
    compensatory_controls_details: str | None = None
    estimated_time: str | None = None
    site: str | None = None
    patching: bool | str | None = None
    patching_est_release_date: date | str | None = None
    implementation_date: date | str | None = None

    def to_changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ResponseFieldsOut(TrackerBaseModel):
    current_status: str | None = None
    comments: str | None = None
    deployed_in_ke: str | None = None
    vendor_contacted: str | None = None
    vendor_contact_date: date | None = None
    compensatory_controls_provided: str | None = None
    compensatory_controls_details: str | None = None
    estimated_time: str | None = None
    site: str | None = None
    patching: str | None = None
    patching_est_release_date: date | None = None
    implementation_date: date | None = None


class TeamResponseOut(ResponseFieldsOut):
    """A stored response, after cascade rules have been applied."""

    id: UUID
    team_sheet_id: UUID
    original_entry_id: UUID
    is_completed: bool
    submitted_at: datetime | None = None
    submitted_by: UUID | None = None
    updated_at: datetime | None = None
    updated_by: UUID | None = None

    @field_validator("submitted_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class StatusCommentsRequest(TrackerBaseModel):
    """Post-completion update. Omitted fields are left alone; "" clears."""

    current_status: str | None = Field(default=None, max_length=255)
    comments: str | None = None
    team_id: UUID | None = Field(default=None, alias="teamId")


class DraftRequest(ResponseFieldsPayload):
    """Draft save body: response fields plus an optional team selector."""

    team_id: UUID | None = Field(default=None, alias="teamId")

    def to_changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"team_id"})
