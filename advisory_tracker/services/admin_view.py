"""Admin Aggregation View: read-only progress projections over all teams."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    AssignmentStatus,
    EntryLock,
    Sheet,
    SourceEntry,
    Team,
    TeamAssignment,
    TeamResponse,
    utcnow,
)
from .entry_locking import Clock, EntrySnapshot, build_entry_snapshots
from .errors import AssignmentNotFoundError
from .sheets import SheetCatalog


@dataclass
class TeamProgress:
    team_id: UUID
    team_name: str
    status: AssignmentStatus
    total_entries: int
    completed_entries: int
    draft_entries: int
    active_locks: int
    assigned_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    reopened_at: datetime | None
    reopen_reason: str | None

    @property
    def percent_complete(self) -> float:
        if not self.total_entries:
            return 0.0
        return round(100.0 * self.completed_entries / self.total_entries, 1)


@dataclass
class SheetOverview:
    sheet: Sheet
    total_entries: int
    teams: list[TeamProgress]


class AdminAggregationView:
    """Joins entries, responses and locks per team. Never writes."""

    def __init__(self, session: AsyncSession, clock: Clock | None = None):
        self._session = session
        self._clock = clock or utcnow
        self._catalog = SheetCatalog(session)

    async def sheet_overview(self, sheet_id: UUID) -> SheetOverview:
        sheet = await self._catalog.get_sheet(sheet_id)
        total = await self._catalog.count_entries(sheet_id)

        # Completed / draft counts per assignment
        counts_query = (
            select(
                TeamResponse.team_sheet_id,
                func.sum(case((TeamResponse.is_completed.is_(True), 1), else_=0)),
                func.sum(
                    case(
                        (
                            (TeamResponse.is_completed.is_(False))
                            & (TeamResponse.updated_at.is_not(None)),
                            1,
                        ),
                        else_=0,
                    )
                ),
            )
            .join(TeamAssignment, TeamAssignment.id == TeamResponse.team_sheet_id)
            .where(TeamAssignment.sheet_id == sheet_id)
            .group_by(TeamResponse.team_sheet_id)
        )
        counts = {
            row[0]: (int(row[1] or 0), int(row[2] or 0))
            for row in (await self._session.execute(counts_query)).all()
        }

        locks_query = (
            select(EntryLock.team_id, func.count())
            .join(SourceEntry, SourceEntry.id == EntryLock.entry_id)
            .where(SourceEntry.sheet_id == sheet_id, EntryLock.expires_at > self._clock())
            .group_by(EntryLock.team_id)
        )
        lock_counts = {
            row[0]: int(row[1]) for row in (await self._session.execute(locks_query)).all()
        }

        rows = (
            await self._session.execute(
                select(TeamAssignment, Team)
                .join(Team, Team.id == TeamAssignment.team_id)
                .where(TeamAssignment.sheet_id == sheet_id)
                .order_by(Team.name)
                .execution_options(populate_existing=True)
            )
        ).all()

        teams = []
        for assignment, team in rows:
            completed, drafts = counts.get(assignment.id, (0, 0))
            teams.append(
                TeamProgress(
                    team_id=team.id,
                    team_name=team.name,
                    status=assignment.status,
                    total_entries=total,
                    completed_entries=completed,
                    draft_entries=drafts,
                    active_locks=lock_counts.get(team.id, 0),
                    assigned_at=assignment.assigned_at,
                    started_at=assignment.started_at,
                    completed_at=assignment.completed_at,
                    reopened_at=assignment.reopened_at,
                    reopen_reason=assignment.reopen_reason,
                )
            )

        return SheetOverview(sheet=sheet, total_entries=total, teams=teams)

    async def team_snapshot(
        self, sheet_id: UUID, team_id: UUID
    ) -> tuple[TeamAssignment, list[EntrySnapshot]]:
        """The merged entry view one team sees, with no viewer of its own."""
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
        snapshots = await build_entry_snapshots(self._session, assignment, None, self._clock())
        return assignment, snapshots
