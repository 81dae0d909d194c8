"""
Submission Coordinator: sheet-level state transitions for a team.

State machine per assignment: assigned -> in_progress -> completed, with an
admin-only reopen from completed back to in_progress.

Submission runs in two phases. Phase one checks every entry and writes the
valid ones as drafts. If anything failed, those drafts are committed and
``PartialSubmissionFailure`` is raised with the assignment untouched. Phase
two only runs when every entry passed: responses are marked completed, the
team's locks on the sheet are dropped and the assignment is closed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    AssignmentStatus,
    AuditAction,
    SourceEntry,
    TeamAssignment,
    TeamResponse,
)
from .assignments import AssignmentRegistry
from .audit import AuditService
from .cascade import ResponseFields, prepare, validate_for_completion
from .entry_locking import Clock, EntryLockManager
from .errors import InvalidStateError, PartialSubmissionFailure, ValidationError
from .events import (
    ASSIGNMENT_COMPLETED,
    ASSIGNMENT_REOPENED,
    ASSIGNMENT_STARTED,
    DomainEvent,
    EventPublisher,
    LoggingEventPublisher,
)
from .team_responses import TeamResponseMaterializer

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    assignment: TeamAssignment
    total_entries: int
    newly_completed: list[UUID] = field(default_factory=list)
    released_locks: int = 0


def _describe(error: ValidationError) -> str:
    if error.field_errors:
        return "; ".join(f"{name}: {problem}" for name, problem in sorted(error.field_errors.items()))
    return error.message


class SubmissionCoordinator:
    """Start, submit and reopen a team's sheet."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        locks: EntryLockManager | None = None,
    ):
        self._session = session
        self._publisher = publisher or LoggingEventPublisher()
        self._locks = locks or EntryLockManager(session, self._publisher, clock)
        self._clock = clock or self._locks.now
        self._registry = AssignmentRegistry(session, self._publisher)
        self._responses = TeamResponseMaterializer(
            session, self._publisher, self._clock, self._locks
        )
        self._audit = AuditService(session)

    # =========================================================================
    # START
    # =========================================================================

    async def start_team_sheet(self, sheet_id: UUID, team_id: UUID, user_id: UUID) -> TeamAssignment:
        """assigned -> in_progress. Starting an in-progress sheet is a no-op."""
        assignment = await self._registry.get_assignment(sheet_id, team_id)
        if assignment.status == AssignmentStatus.COMPLETED:
            raise InvalidStateError("Sheet has already been submitted")

        await self._start(assignment, user_id)
        return assignment

    async def _start(self, assignment: TeamAssignment, user_id: UUID, **details) -> None:
        if not AssignmentRegistry.mark_started(assignment, user_id, self._clock()):
            return
        self._audit.log_event(
            action=AuditAction.START,
            resource_type="team_sheet",
            resource_id=assignment.id,
            user_id=user_id,
            team_id=assignment.team_id,
            details=details,
        )
        await self._session.flush()
        await self._publisher.publish(
            DomainEvent(
                ASSIGNMENT_STARTED,
                {
                    "sheet_id": assignment.sheet_id,
                    "team_id": assignment.team_id,
                    "user_id": user_id,
                },
            )
        )
        logger.info(f"Team {assignment.team_id} started sheet {assignment.sheet_id}")

    # =========================================================================
    # SUBMIT
    # =========================================================================

    async def submit_team_sheet(
        self,
        sheet_id: UUID,
        team_id: UUID,
        responses: Mapping[UUID, Mapping[str, Any]],
        user_id: UUID,
    ) -> SubmissionResult:
        """Complete every entry of the sheet and close the assignment.

        ``responses`` maps entry id to the field values the client holds.
        Entries already completed may be left out.
        """
        assignment = await self._registry.get_assignment(sheet_id, team_id)
        if assignment.status == AssignmentStatus.COMPLETED:
            raise InvalidStateError("Sheet has already been submitted")

        entries = (
            await self._session.execute(
                select(SourceEntry)
                .where(SourceEntry.sheet_id == sheet_id)
                .order_by(SourceEntry.position, SourceEntry.created_at)
            )
        ).scalars().all()
        entry_ids = [e.id for e in entries]

        stored = {
            r.original_entry_id: r
            for r in (
                await self._session.execute(
                    select(TeamResponse)
                    .where(TeamResponse.team_sheet_id == assignment.id)
                    .execution_options(populate_existing=True)
                )
            ).scalars().all()
        }
        blocked = await self._locks.active_locks_by_others(entry_ids, team_id, user_id)

        failures: dict[UUID, str] = {}
        ready: dict[UUID, ResponseFields] = {}

        known = set(entry_ids)
        for entry_id in responses:
            if entry_id not in known:
                failures[entry_id] = "entry does not belong to this sheet"

        # Phase 1: check every entry
        for entry_id in entry_ids:
            existing = stored.get(entry_id)
            current = ResponseFields.from_record(existing) if existing else ResponseFields()
            changes = responses.get(entry_id)

            if changes is None:
                if existing is None or not existing.is_completed:
                    failures[entry_id] = "missing response"
                    continue
                try:
                    validate_for_completion(current)
                except ValidationError as e:
                    failures[entry_id] = _describe(e)
                continue

            if entry_id in blocked:
                _, name = blocked[entry_id]
                failures[entry_id] = f"locked by {name or 'another user'}"
                continue

            try:
                fields = prepare(current, changes)
                validate_for_completion(fields)
            except ValidationError as e:
                failures[entry_id] = _describe(e)
                continue
            ready[entry_id] = fields

        now = self._clock()
        for entry_id, fields in ready.items():
            response = stored.get(entry_id)
            if response is None:
                response = await self._responses.ensure_response(assignment, entry_id)
                stored[entry_id] = response
            fields.write_to(response)
            response.updated_at = now
            response.updated_by = user_id

        if failures:
            if ready:
                # Saved drafts count as work on the sheet
                await self._start(assignment, user_id, implicit=True)
            await self._session.flush()
            await self._session.commit()
            logger.warning(
                f"Submission of sheet {sheet_id} by team {team_id} failed for "
                f"{len(failures)} of {len(entry_ids)} entries"
            )
            raise PartialSubmissionFailure(failures)

        # Phase 2: close everything
        newly_completed = []
        for entry_id in entry_ids:
            response = stored[entry_id]
            if not response.is_completed:
                response.is_completed = True
                response.submitted_at = now
                response.submitted_by = user_id
                newly_completed.append(entry_id)

        released = await self._locks.release_team_locks(entry_ids, team_id)

        AssignmentRegistry.mark_started(assignment, user_id, now)
        assignment.status = AssignmentStatus.COMPLETED
        assignment.completed_at = now
        assignment.completed_by = user_id

        self._audit.log_event(
            action=AuditAction.SUBMIT,
            resource_type="team_sheet",
            resource_id=assignment.id,
            user_id=user_id,
            team_id=team_id,
            details={"entries": len(entry_ids), "newly_completed": len(newly_completed)},
        )
        await self._session.flush()

        await self._publisher.publish(
            DomainEvent(
                ASSIGNMENT_COMPLETED,
                {
                    "sheet_id": sheet_id,
                    "team_id": team_id,
                    "user_id": user_id,
                    "completed_at": now,
                },
            )
        )
        logger.info(f"Team {team_id} submitted sheet {sheet_id} ({len(entry_ids)} entries)")

        return SubmissionResult(
            assignment=assignment,
            total_entries=len(entry_ids),
            newly_completed=newly_completed,
            released_locks=released,
        )

    # =========================================================================
    # REOPEN (admin)
    # =========================================================================

    async def reopen_assignment(
        self,
        sheet_id: UUID,
        team_id: UUID,
        admin_id: UUID,
        reason: str,
    ) -> TeamAssignment:
        """completed -> in_progress so the team can correct its answers."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to reopen a sheet", {"reason": "required"})

        assignment = await self._registry.get_assignment(sheet_id, team_id)
        if assignment.status != AssignmentStatus.COMPLETED:
            raise InvalidStateError("Only submitted sheets can be reopened")

        now = self._clock()
        previous_completed_at = assignment.completed_at
        assignment.status = AssignmentStatus.IN_PROGRESS
        assignment.completed_at = None
        assignment.completed_by = None
        assignment.reopened_at = now
        assignment.reopened_by = admin_id
        assignment.reopen_reason = reason

        self._audit.log_event(
            action=AuditAction.REOPEN,
            resource_type="team_sheet",
            resource_id=assignment.id,
            user_id=admin_id,
            team_id=team_id,
            details={
                "reason": reason,
                "previous_completed_at": (
                    previous_completed_at.isoformat() if previous_completed_at else None
                ),
            },
        )
        await self._session.flush()

        await self._publisher.publish(
            DomainEvent(
                ASSIGNMENT_REOPENED,
                {"sheet_id": sheet_id, "team_id": team_id, "admin_id": admin_id, "reason": reason},
            )
        )
        logger.info(f"Admin {admin_id} reopened sheet {sheet_id} for team {team_id}: {reason}")
        return assignment
