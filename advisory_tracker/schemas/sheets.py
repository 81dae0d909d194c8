"""Schemas for sheets, entries, assignments, locks and the admin views."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field, field_validator

from ..models import AssignmentStatus, RiskLevel, as_utc
from ..services.admin_view import SheetOverview
from ..services.entry_locking import EntrySnapshot
from .base import TrackerBaseModel, UserRef
from .responses import ResponseFieldsPayload, TeamResponseOut


class _UTCModel(TrackerBaseModel):
    """Attach UTC to naive datetimes read back from SQLite."""

    @field_validator("*", mode="after")
    @classmethod
    def _utc(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return as_utc(value)
        return value


# =============================================================================
# SHEETS & ENTRIES
# =============================================================================


class EntryIn(TrackerBaseModel):
    vendor_name: str | None = Field(default=None, max_length=255)
    product_name: str | None = Field(default=None, max_length=255)
    cve: str | None = Field(default=None, max_length=100)
    risk_level: str | None = None
    source_url: str | None = None


class CreateSheetRequest(TrackerBaseModel):
    """Sheet upload as JSON rows."""

    title: str = Field(..., min_length=1, max_length=255)
    month: int | None = Field(default=None, ge=1, le=12)
    year: int | None = Field(default=None, ge=2000, le=2100)
    entries: list[EntryIn] = Field(default_factory=list)


class SourceEntryOut(_UTCModel):
    id: UUID
    sheet_id: UUID
    position: int
    vendor_name: str | None = None
    product_name: str | None = None
    cve: str | None = None
    risk_level: RiskLevel | None = None
    source_url: str | None = None
    created_at: datetime


class SheetOut(_UTCModel):
    id: UUID
    title: str
    month: int | None = None
    year: int | None = None
    uploaded_by: UUID | None = None
    created_at: datetime


class SheetWithEntriesOut(SheetOut):
    entries: list[SourceEntryOut] = []


# =============================================================================
# ASSIGNMENTS
# =============================================================================


class DistributeRequest(TrackerBaseModel):
    team_ids: list[UUID] = Field(..., min_length=1)


class AssignmentOut(_UTCModel):
    id: UUID
    sheet_id: UUID
    team_id: UUID
    status: AssignmentStatus
    assigned_at: datetime
    assigned_by: UUID | None = None
    started_at: datetime | None = None
    started_by: UUID | None = None
    completed_at: datetime | None = None
    completed_by: UUID | None = None
    reopened_at: datetime | None = None
    reopened_by: UUID | None = None
    reopen_reason: str | None = None


class AssignedSheetOut(AssignmentOut):
    sheet_title: str
    month: int | None = None
    year: int | None = None


class StartSheetRequest(TrackerBaseModel):
    team_id: UUID | None = Field(default=None, alias="teamId")


class SubmitSheetRequest(TrackerBaseModel):
    """Entry id -> field values for every entry the client holds."""

    responses: dict[UUID, ResponseFieldsPayload] = Field(default_factory=dict)
    team_id: UUID | None = Field(default=None, alias="teamId")


class SubmissionOut(TrackerBaseModel):
    assignment: AssignmentOut
    total_entries: int
    newly_completed: list[UUID]
    released_locks: int


class ReopenRequest(TrackerBaseModel):
    reason: str = Field(..., max_length=2000)


# =============================================================================
# LOCKS
# =============================================================================


class LockRequest(TrackerBaseModel):
    team_id: UUID | None = Field(default=None, alias="teamId")


class UnlockRequest(TrackerBaseModel):
    team_id: UUID | None = Field(default=None, alias="teamId")
    force: bool = False


class LockOut(_UTCModel):
    entry_id: UUID
    team_id: UUID
    locked_by_user_id: UUID
    locked_at: datetime
    expires_at: datetime


class UnlockOut(TrackerBaseModel):
    entry_id: UUID
    released: bool


class ReleaseExpiredOut(TrackerBaseModel):
    released: int


class LockedEntryOut(_UTCModel):
    entry: SourceEntryOut
    sheet_id: UUID
    sheet_title: str
    team_id: UUID
    locked_at: datetime
    expires_at: datetime


class EntrySnapshotOut(_UTCModel):
    entry: SourceEntryOut
    is_locked: bool
    is_locked_by_me: bool
    is_completed: bool
    locked_by: UserRef | None = None
    lock_expires_at: datetime | None = None
    response: TeamResponseOut | None = None

    @classmethod
    def build(cls, snapshot: EntrySnapshot) -> "EntrySnapshotOut":
        return cls(
            entry=SourceEntryOut.model_validate(snapshot.entry),
            is_locked=snapshot.is_locked,
            is_locked_by_me=snapshot.is_locked_by_me,
            is_completed=snapshot.is_completed,
            locked_by=(
                UserRef(id=snapshot.lock.locked_by_user_id, name=snapshot.locked_by_name)
                if snapshot.lock
                else None
            ),
            lock_expires_at=snapshot.lock_expires_at,
            response=(
                TeamResponseOut.model_validate(snapshot.response) if snapshot.response else None
            ),
        )


class AvailableEntriesOut(TrackerBaseModel):
    sheet_id: UUID
    team_id: UUID
    assignment_status: AssignmentStatus
    entries: list[EntrySnapshotOut]


# =============================================================================
# ADMIN VIEWS
# =============================================================================


class TeamProgressOut(_UTCModel):
    team_id: UUID
    team_name: str
    status: AssignmentStatus
    total_entries: int
    completed_entries: int
    draft_entries: int
    active_locks: int
    percent_complete: float
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    reopened_at: datetime | None = None
    reopen_reason: str | None = None


class SheetOverviewOut(TrackerBaseModel):
    sheet: SheetOut
    total_entries: int
    teams: list[TeamProgressOut]

    @classmethod
    def build(cls, overview: SheetOverview) -> "SheetOverviewOut":
        return cls(
            sheet=SheetOut.model_validate(overview.sheet),
            total_entries=overview.total_entries,
            teams=[TeamProgressOut.model_validate(t) for t in overview.teams],
        )


class TeamSnapshotOut(TrackerBaseModel):
    assignment: AssignmentOut
    entries: list[EntrySnapshotOut]
