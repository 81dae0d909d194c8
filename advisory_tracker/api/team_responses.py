"""Team response routes: draft saves and post-completion status updates."""

from uuid import UUID

from fastapi import APIRouter, Query

from ..core import CurrentUserDep
from ..schemas import DraftRequest, StatusCommentsRequest, TeamResponseOut
from ..services import TrackerError
from .deps import MaterializerDep, resolve_team
from .errors import to_http_exception

router = APIRouter(prefix="/team-responses", tags=["team-responses"])


@router.put("/{response_id}/draft", response_model=TeamResponseOut)
async def save_draft(
    response_id: UUID,
    request: DraftRequest,
    current_user: CurrentUserDep,
    materializer: MaterializerDep,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Save draft fields. The stored record comes back after cascade rules."""
    team = resolve_team(current_user, request.team_id or team_id)
    try:
        response = await materializer.save_draft(
            response_id, request.to_changes(), current_user.id, team
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return TeamResponseOut.model_validate(response)


@router.put("/{response_id}/status-comments", response_model=TeamResponseOut)
async def update_status_and_comments(
    response_id: UUID,
    request: StatusCommentsRequest,
    current_user: CurrentUserDep,
    materializer: MaterializerDep,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Change current status and comments, even after the sheet was submitted."""
    team = resolve_team(current_user, request.team_id or team_id)
    try:
        response = await materializer.update_status_and_comments(
            response_id,
            team,
            current_user.id,
            current_status=request.current_status,
            comments=request.comments,
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return TeamResponseOut.model_validate(response)
