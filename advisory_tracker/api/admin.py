"""Admin routes: sheet upload, distribution, progress views, reopen, audit."""

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from ..core import AdminDep
from ..models import AuditAction
from ..schemas import (
    AssignmentOut,
    AuditLogEntry,
    AuditLogResponse,
    CreateSheetRequest,
    DistributeRequest,
    EntrySnapshotOut,
    ReopenRequest,
    SheetOverviewOut,
    SheetWithEntriesOut,
    SourceEntryOut,
    TeamSnapshotOut,
)
from ..services import EntryInput, TrackerError
from .deps import (
    AdminViewDep,
    AuditServiceDep,
    CatalogDep,
    CoordinatorDep,
    RegistryDep,
)
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# SHEETS
# =============================================================================


@router.post(
    "/sheets",
    response_model=SheetWithEntriesOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_sheet(
    request: CreateSheetRequest,
    current_user: AdminDep,
    catalog: CatalogDep,
):
    """Create a sheet from already-parsed advisory rows."""
    try:
        sheet = await catalog.create_sheet(
            title=request.title,
            month=request.month,
            year=request.year,
            entries=[EntryInput(**row.model_dump()) for row in request.entries],
            uploaded_by=current_user.id,
        )
        entries = await catalog.list_entries(sheet.id)
    except TrackerError as e:
        raise to_http_exception(e)

    return _sheet_with_entries(sheet, entries)


@router.get("/sheets/{sheet_id}", response_model=SheetWithEntriesOut)
async def get_sheet(
    sheet_id: UUID,
    current_user: AdminDep,
    catalog: CatalogDep,
):
    """A sheet and its entries in upload order."""
    try:
        sheet = await catalog.get_sheet(sheet_id)
    except TrackerError as e:
        raise to_http_exception(e)
    return _sheet_with_entries(sheet, await catalog.list_entries(sheet_id))


def _sheet_with_entries(sheet, entries) -> SheetWithEntriesOut:
    return SheetWithEntriesOut(
        id=sheet.id,
        title=sheet.title,
        month=sheet.month,
        year=sheet.year,
        uploaded_by=sheet.uploaded_by,
        created_at=sheet.created_at,
        entries=[SourceEntryOut.model_validate(e) for e in entries],
    )


@router.post("/sheets/{sheet_id}/distribute", response_model=list[AssignmentOut])
async def distribute_sheet(
    sheet_id: UUID,
    request: DistributeRequest,
    current_user: AdminDep,
    registry: RegistryDep,
):
    """Assign the sheet to teams. Repeating for an assigned team is harmless."""
    try:
        assignments = await registry.distribute_sheet(
            sheet_id, request.team_ids, assigned_by=current_user.id
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return [AssignmentOut.model_validate(a) for a in assignments]


@router.get("/sheets/{sheet_id}/assignments", response_model=list[AssignmentOut])
async def list_sheet_assignments(
    sheet_id: UUID,
    current_user: AdminDep,
    catalog: CatalogDep,
    registry: RegistryDep,
):
    """Every team the sheet went to, by team name."""
    try:
        await catalog.get_sheet(sheet_id)
    except TrackerError as e:
        raise to_http_exception(e)
    rows = await registry.list_sheet_assignments(sheet_id)
    return [AssignmentOut.model_validate(assignment) for assignment, _ in rows]


# =============================================================================
# PROGRESS VIEWS
# =============================================================================


@router.get("/sheets/{sheet_id}/responses", response_model=SheetOverviewOut)
async def get_sheet_overview(
    sheet_id: UUID,
    current_user: AdminDep,
    view: AdminViewDep,
):
    """Per-team progress for one sheet."""
    try:
        overview = await view.sheet_overview(sheet_id)
    except TrackerError as e:
        raise to_http_exception(e)
    return SheetOverviewOut.build(overview)


@router.get(
    "/sheets/{sheet_id}/teams/{team_id}/responses",
    response_model=TeamSnapshotOut,
)
async def get_team_snapshot(
    sheet_id: UUID,
    team_id: UUID,
    current_user: AdminDep,
    view: AdminViewDep,
):
    """Read-only merged view of one team's answers."""
    try:
        assignment, snapshots = await view.team_snapshot(sheet_id, team_id)
    except TrackerError as e:
        raise to_http_exception(e)
    return TeamSnapshotOut(
        assignment=AssignmentOut.model_validate(assignment),
        entries=[EntrySnapshotOut.build(s) for s in snapshots],
    )


@router.put(
    "/sheets/{sheet_id}/teams/{team_id}/unlock",
    response_model=AssignmentOut,
)
async def reopen_assignment(
    sheet_id: UUID,
    team_id: UUID,
    request: ReopenRequest,
    current_user: AdminDep,
    coordinator: CoordinatorDep,
):
    """Reopen a submitted sheet for a team. A reason is required."""
    try:
        assignment = await coordinator.reopen_assignment(
            sheet_id, team_id, current_user.id, request.reason
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return AssignmentOut.model_validate(assignment)


# =============================================================================
# AUDIT
# =============================================================================


@router.get("/audit", response_model=AuditLogResponse)
async def get_audit_log(
    current_user: AdminDep,
    service: AuditServiceDep,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    user_id: UUID | None = None,
    team_id: UUID | None = None,
    action: AuditAction | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    """Query the audit log with filters."""
    offset = (page - 1) * page_size

    entries, total = await service.get_audit_log(
        user_id=user_id,
        team_id=team_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        limit=page_size,
        offset=offset,
    )

    return AuditLogResponse.create(
        items=[AuditLogEntry.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
    )
