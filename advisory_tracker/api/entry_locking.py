"""
Entry locking routes: claim, release and complete individual sheet entries.

Lock conflicts come back as 409 with the holder in ``detail.context``.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from ..core import AdminDep, CurrentUserDep
from ..schemas import (
    AvailableEntriesOut,
    DraftRequest,
    EntrySnapshotOut,
    LockedEntryOut,
    LockOut,
    LockRequest,
    ReleaseExpiredOut,
    SourceEntryOut,
    TeamResponseOut,
    UnlockOut,
    UnlockRequest,
)
from ..services import TrackerError
from .deps import LockManagerDep, MaterializerDep, RegistryDep, resolve_team
from .errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entry-locking", tags=["entry-locking"])


@router.post("/{entry_id}/lock", response_model=LockOut)
async def lock_entry(
    entry_id: UUID,
    current_user: CurrentUserDep,
    locks: LockManagerDep,
    body: LockRequest | None = None,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Acquire (or refresh) the caller's lock on an entry."""
    team = resolve_team(current_user, (body.team_id if body else None) or team_id)
    try:
        lock = await locks.lock_entry(entry_id, current_user.id, team)
    except TrackerError as e:
        raise to_http_exception(e)
    return LockOut.model_validate(lock)


@router.post("/{entry_id}/unlock", response_model=UnlockOut)
async def unlock_entry(
    entry_id: UUID,
    current_user: CurrentUserDep,
    locks: LockManagerDep,
    body: UnlockRequest | None = None,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Release a lock. Admins may pass ``force`` to release someone else's."""
    force = bool(body and body.force)
    if force and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required to force an unlock",
        )
    team = resolve_team(
        current_user, (body.team_id if body else None) or team_id, allow_admin=force
    )
    try:
        released = await locks.unlock_entry(entry_id, current_user.id, team, force=force)
    except TrackerError as e:
        raise to_http_exception(e)
    return UnlockOut(entry_id=entry_id, released=released)


@router.put("/{entry_id}/complete", response_model=TeamResponseOut)
async def complete_entry(
    entry_id: UUID,
    request: DraftRequest,
    current_user: CurrentUserDep,
    materializer: MaterializerDep,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Save final field values, mark the entry completed and release the lock."""
    team = resolve_team(current_user, request.team_id or team_id)
    try:
        response = await materializer.complete_entry(
            entry_id, team, request.to_changes(), current_user.id
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return TeamResponseOut.model_validate(response)


@router.put("/{entry_id}/draft", response_model=TeamResponseOut)
async def save_entry_draft(
    entry_id: UUID,
    request: DraftRequest,
    current_user: CurrentUserDep,
    materializer: MaterializerDep,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Save a draft by entry id, creating the team's response row if needed."""
    team = resolve_team(current_user, request.team_id or team_id)
    try:
        response = await materializer.save_entry_draft(
            entry_id, team, request.to_changes(), current_user.id
        )
    except TrackerError as e:
        raise to_http_exception(e)
    return TeamResponseOut.model_validate(response)


@router.get("/sheet/{sheet_id}/available", response_model=AvailableEntriesOut)
async def get_available_entries(
    sheet_id: UUID,
    current_user: CurrentUserDep,
    locks: LockManagerDep,
    registry: RegistryDep,
    team_id: UUID | None = Query(default=None, alias="teamId"),
):
    """Every entry of the sheet with lock and response state for the team."""
    team = resolve_team(current_user, team_id, allow_admin=True)
    try:
        assignment = await registry.get_assignment(sheet_id, team)
        snapshots = await locks.get_available_entries(sheet_id, team, current_user.id)
    except TrackerError as e:
        raise to_http_exception(e)
    return AvailableEntriesOut(
        sheet_id=sheet_id,
        team_id=team,
        assignment_status=assignment.status,
        entries=[EntrySnapshotOut.build(s) for s in snapshots],
    )


@router.get("/my-locked", response_model=list[LockedEntryOut])
async def get_my_locked_entries(
    current_user: CurrentUserDep,
    locks: LockManagerDep,
):
    """The caller's active locks across all sheets."""
    infos = await locks.get_user_locked_entries(current_user.id)
    return [
        LockedEntryOut(
            entry=SourceEntryOut.model_validate(info.entry),
            sheet_id=info.sheet_id,
            sheet_title=info.sheet_title,
            team_id=info.lock.team_id,
            locked_at=info.lock.locked_at,
            expires_at=info.lock.expires_at,
        )
        for info in infos
    ]


@router.post("/release-expired", response_model=ReleaseExpiredOut)
async def release_expired_locks(
    current_user: AdminDep,
    locks: LockManagerDep,
):
    """Admin sweep of expired lock rows."""
    released = await locks.release_expired_locks(actor_id=current_user.id)
    return ReleaseExpiredOut(released=released)
