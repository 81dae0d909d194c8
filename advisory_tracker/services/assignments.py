"""Team assignment registry: which sheet is assigned to which team."""

import logging
from datetime import datetime
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import insert_if_absent
from ..models import (
    AssignmentStatus,
    AuditAction,
    Sheet,
    SourceEntry,
    Team,
    TeamAssignment,
    TeamResponse,
    utcnow,
)
from .audit import AuditService
from .errors import AssignmentNotFoundError, NotFoundError, SheetNotFoundError
from .events import SHEET_DISTRIBUTED, DomainEvent, EventPublisher, LoggingEventPublisher

logger = logging.getLogger(__name__)


class AssignmentRegistry:
    """Distribute sheets to teams and look assignments up."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher | None = None,
    ):
        self._session = session
        self._publisher = publisher or LoggingEventPublisher()
        self._audit = AuditService(session)

    async def distribute_sheet(
        self,
        sheet_id: UUID,
        team_ids: Sequence[UUID],
        assigned_by: UUID | None,
    ) -> list[TeamAssignment]:
        """Assign a sheet to teams and pre-create one empty response per entry.

        Safe to repeat: existing (sheet, team) pairs and responses are kept.
        """
        sheet = await self._session.get(Sheet, sheet_id)
        if sheet is None:
            raise SheetNotFoundError(f"Sheet {sheet_id} not found")

        team_ids = list(dict.fromkeys(team_ids))
        result = await self._session.execute(
            select(Team.id).where(Team.id.in_(team_ids), Team.deleted_at.is_(None))
        )
        found = set(result.scalars().all())
        missing = [str(t) for t in team_ids if t not in found]
        if missing:
            raise NotFoundError(f"Teams not found: {', '.join(missing)}")

        now = utcnow()
        created = 0
        for team_id in team_ids:
            created += await insert_if_absent(
                self._session,
                TeamAssignment.__table__,
                {
                    "id": uuid4(),
                    "sheet_id": sheet_id,
                    "team_id": team_id,
                    "status": AssignmentStatus.ASSIGNED,
                    "assigned_at": now,
                    "assigned_by": assigned_by,
                },
                ["sheet_id", "team_id"],
            )

        assignments = await self._assignments_for(sheet_id, team_ids)

        entry_ids = (
            await self._session.execute(
                select(SourceEntry.id).where(SourceEntry.sheet_id == sheet_id)
            )
        ).scalars().all()
        if entry_ids:
            for assignment in assignments:
                await insert_if_absent(
                    self._session,
                    TeamResponse.__table__,
                    [
                        {
                            "id": uuid4(),
                            "team_sheet_id": assignment.id,
                            "original_entry_id": entry_id,
                            "is_completed": False,
                            "created_at": now,
                        }
                        for entry_id in entry_ids
                    ],
                    ["team_sheet_id", "original_entry_id"],
                )

        self._audit.log_event(
            action=AuditAction.DISTRIBUTE,
            resource_type="sheet",
            resource_id=sheet_id,
            user_id=assigned_by,
            details={"team_ids": [str(t) for t in team_ids], "created": created},
        )
        await self._publisher.publish(
            DomainEvent(
                SHEET_DISTRIBUTED,
                {"sheet_id": sheet_id, "team_ids": team_ids, "assigned_by": assigned_by},
            )
        )
        logger.info(f"Distributed sheet {sheet_id} to {len(team_ids)} teams ({created} new)")
        return assignments

    async def _assignments_for(
        self, sheet_id: UUID, team_ids: Sequence[UUID]
    ) -> list[TeamAssignment]:
        result = await self._session.execute(
            select(TeamAssignment)
            .where(TeamAssignment.sheet_id == sheet_id, TeamAssignment.team_id.in_(team_ids))
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_assignment(self, sheet_id: UUID, team_id: UUID) -> TeamAssignment:
        result = await self._session.execute(
            select(TeamAssignment)
            .where(TeamAssignment.sheet_id == sheet_id, TeamAssignment.team_id == team_id)
            .execution_options(populate_existing=True)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise AssignmentNotFoundError(
                f"Sheet {sheet_id} is not assigned to team {team_id}"
            )
        return assignment

    async def list_sheet_assignments(self, sheet_id: UUID) -> list[tuple[TeamAssignment, Team]]:
        result = await self._session.execute(
            select(TeamAssignment, Team)
            .join(Team, Team.id == TeamAssignment.team_id)
            .where(TeamAssignment.sheet_id == sheet_id)
            .order_by(Team.name)
        )
        return [(a, t) for a, t in result.all()]

    async def list_team_assignments(
        self, team_ids: Sequence[UUID]
    ) -> list[tuple[TeamAssignment, Sheet]]:
        """Assignments for the given teams, newest first."""
        if not team_ids:
            return []
        result = await self._session.execute(
            select(TeamAssignment, Sheet)
            .join(Sheet, Sheet.id == TeamAssignment.sheet_id)
            .where(TeamAssignment.team_id.in_(team_ids))
            .order_by(TeamAssignment.assigned_at.desc())
        )
        return [(a, s) for a, s in result.all()]

    @staticmethod
    def mark_started(assignment: TeamAssignment, user_id: UUID, now: datetime) -> bool:
        """Move an ``assigned`` assignment to ``in_progress``. True if it moved."""
        if assignment.status != AssignmentStatus.ASSIGNED:
            return False
        assignment.status = AssignmentStatus.IN_PROGRESS
        assignment.started_at = now
        assignment.started_by = user_id
        return True
