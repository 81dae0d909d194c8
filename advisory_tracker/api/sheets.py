"""Team-facing sheet routes: list assignments, start and submit a sheet."""

from uuid import UUID

from fastapi import APIRouter, Query

from ..core import CurrentUserDep
from ..schemas import (
    AssignedSheetOut,
    AssignmentOut,
    StartSheetRequest,
    SubmissionOut,
    SubmitSheetRequest,
)
from ..services import PartialSubmissionFailure, TrackerError
from ..services.events import get_event_publisher
from .deps import CoordinatorDep, EventsDep, RegistryDep, resolve_team
from .errors import to_http_exception

router = APIRouter(prefix="/sheets", tags=["sheets"])


@router.get("/assigned", response_model=list[AssignedSheetOut])
async def list_assigned_sheets(
    current_user: CurrentUserDep,
    registry: RegistryDep,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Sheets assigned to the caller's teams (or one of them)."""
    team_ids = [resolve_team(current_user, team_id)] if team_id else current_user.team_ids
    rows = await registry.list_team_assignments(team_ids)
    return [
        AssignedSheetOut(
            **AssignmentOut.model_validate(assignment).model_dump(),
            sheet_title=sheet.title,
            month=sheet.month,
            year=sheet.year,
        )
        for assignment, sheet in rows
    ]


@router.post("/{sheet_id}/start", response_model=AssignmentOut)
async def start_team_sheet(
    sheet_id: UUID,
    current_user: CurrentUserDep,
    coordinator: CoordinatorDep,
    body: StartSheetRequest | None = None,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Move the team's assignment from assigned to in_progress."""
    team = resolve_team(current_user, (body.team_id if body else None) or team_id)
    try:
        assignment = await coordinator.start_team_sheet(sheet_id, team, current_user.id)
    except TrackerError as e:
        raise to_http_exception(e)
    return AssignmentOut.model_validate(assignment)


@router.post("/{sheet_id}/submit", response_model=SubmissionOut)
async def submit_team_sheet(
    sheet_id: UUID,
    request: SubmitSheetRequest,
    current_user: CurrentUserDep,
    coordinator: CoordinatorDep,
    events: EventsDep,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Complete every entry and close the sheet for the team.

    If any entry fails, the valid ones are kept as drafts, the sheet stays
    open and the response lists the entries that need attention.
    """
    team = resolve_team(current_user, request.team_id or team_id)
    responses = {
        entry_id: payload.to_changes() for entry_id, payload in request.responses.items()
    }
    try:
        result = await coordinator.submit_team_sheet(sheet_id, team, responses, current_user.id)
    except PartialSubmissionFailure as e:
        # The kept drafts are already committed
        await events.flush(get_event_publisher())
        raise to_http_exception(e)
    except TrackerError as e:
        raise to_http_exception(e)
    return SubmissionOut(
        assignment=AssignmentOut.model_validate(result.assignment),
        total_entries=result.total_entries,
        newly_completed=result.newly_completed,
        released_locks=result.released_locks,
    )
