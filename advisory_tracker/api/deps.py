"""Dependencies shared by the tracker routers."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status

from ..core import CurrentUser, SessionDep
from ..services import (
    AdminAggregationView,
    AssignmentRegistry,
    AuditService,
    BufferedEventPublisher,
    EntryLockManager,
    SheetCatalog,
    SubmissionCoordinator,
    TeamResponseMaterializer,
)
from ..services.events import get_event_publisher


async def get_event_buffer(session: SessionDep) -> AsyncGenerator[BufferedEventPublisher, None]:
    """Collect the request's domain events; publish them only after commit."""
    buffer = BufferedEventPublisher()
    yield buffer
    await session.commit()
    await buffer.flush(get_event_publisher())


EventsDep = Annotated[BufferedEventPublisher, Depends(get_event_buffer)]


def get_lock_manager(session: SessionDep, events: EventsDep) -> EntryLockManager:
    return EntryLockManager(session, events)


LockManagerDep = Annotated[EntryLockManager, Depends(get_lock_manager)]


def get_materializer(
    session: SessionDep, events: EventsDep, locks: LockManagerDep
) -> TeamResponseMaterializer:
    return TeamResponseMaterializer(session, events, locks=locks)


MaterializerDep = Annotated[TeamResponseMaterializer, Depends(get_materializer)]


def get_coordinator(
    session: SessionDep, events: EventsDep, locks: LockManagerDep
) -> SubmissionCoordinator:
    return SubmissionCoordinator(session, events, locks=locks)


CoordinatorDep = Annotated[SubmissionCoordinator, Depends(get_coordinator)]


def get_registry(session: SessionDep, events: EventsDep) -> AssignmentRegistry:
    return AssignmentRegistry(session, events)


RegistryDep = Annotated[AssignmentRegistry, Depends(get_registry)]


def get_catalog(session: SessionDep) -> SheetCatalog:
    return SheetCatalog(session)


CatalogDep = Annotated[SheetCatalog, Depends(get_catalog)]


def get_admin_view(session: SessionDep) -> AdminAggregationView:
    return AdminAggregationView(session)


AdminViewDep = Annotated[AdminAggregationView, Depends(get_admin_view)]


def get_audit_service(session: SessionDep) -> AuditService:
    return AuditService(session)


AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]


def resolve_team(
    current_user: CurrentUser,
    team_id: UUID | None,
    allow_admin: bool = False,
) -> UUID:
    """Pick the team a request acts for.

    An explicit team must be one of the caller's (admins pass when
    ``allow_admin``). Without one, a caller in exactly one team acts for it.
    """
    if team_id is None:
        if len(current_user.team_ids) == 1:
            return current_user.team_ids[0]
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="teamId is required for users who are not in exactly one team",
        )

    if current_user.is_member_of(team_id) or (allow_admin and current_user.is_admin):
        return team_id

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not a member of this team",
    )
