"""
Team Response Materializer: per-team working copies of sheet entries.

Every write goes through the same pipeline: normalize the incoming field
values, merge them onto the stored record, run the cascade, persist. Rows are
created on first use when distribution did not pre-create them.
"""

import logging
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import insert_if_absent
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
from .errors import (
    AssignmentClosedError,
    AssignmentNotFoundError,
    EntryNotFoundError,
    ValidationError,
)
from .events import (
    ASSIGNMENT_STARTED,
    ENTRY_COMPLETED,
    RESPONSE_SAVED,
    STATUS_UPDATED,
    DomainEvent,
    EventPublisher,
    LoggingEventPublisher,
)

logger = logging.getLogger(__name__)


class TeamResponseMaterializer:
    """Draft saves, entry completion and the post-completion status path."""

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
        self._audit = AuditService(session)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _get_response(
        self, response_id: UUID, team_id: UUID
    ) -> tuple[TeamResponse, TeamAssignment]:
        result = await self._session.execute(
            select(TeamResponse, TeamAssignment)
            .join(TeamAssignment, TeamAssignment.id == TeamResponse.team_sheet_id)
            .where(TeamResponse.id == response_id)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        # Another team's response is reported exactly like a missing one
        if row is None or row[1].team_id != team_id:
            raise EntryNotFoundError(f"Response {response_id} not found")
        return row[0], row[1]

    async def _get_entry_assignment(
        self, entry_id: UUID, team_id: UUID
    ) -> tuple[SourceEntry, TeamAssignment]:
        entry = await self._session.get(SourceEntry, entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry {entry_id} not found")
        result = await self._session.execute(
            select(TeamAssignment)
            .where(TeamAssignment.sheet_id == entry.sheet_id, TeamAssignment.team_id == team_id)
            .execution_options(populate_existing=True)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise AssignmentNotFoundError(
                f"Sheet {entry.sheet_id} is not assigned to team {team_id}"
            )
        return entry, assignment

    async def ensure_response(self, assignment: TeamAssignment, entry_id: UUID) -> TeamResponse:
        """Fetch the team's response for an entry, creating an empty one if needed."""
        await insert_if_absent(
            self._session,
            TeamResponse.__table__,
            {
                "id": uuid4(),
                "team_sheet_id": assignment.id,
                "original_entry_id": entry_id,
                "is_completed": False,
                "created_at": self._clock(),
            },
            ["team_sheet_id", "original_entry_id"],
        )
        result = await self._session.execute(
            select(TeamResponse)
            .where(
                TeamResponse.team_sheet_id == assignment.id,
                TeamResponse.original_entry_id == entry_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _ensure_open(assignment: TeamAssignment) -> None:
        if assignment.status == AssignmentStatus.COMPLETED:
            raise AssignmentClosedError(
                "Sheet has been submitted; only status and comments can be changed"
            )

    async def _mark_started(self, assignment: TeamAssignment, user_id: UUID) -> None:
        if AssignmentRegistry.mark_started(assignment, user_id, self._clock()):
            self._audit.log_event(
                action=AuditAction.START,
                resource_type="team_sheet",
                resource_id=assignment.id,
                user_id=user_id,
                team_id=assignment.team_id,
                details={"implicit": True},
            )
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

    # =========================================================================
    # DRAFTS
    # =========================================================================

    async def save_draft(
        self,
        response_id: UUID,
        changes: Mapping[str, Any],
        user_id: UUID,
        team_id: UUID,
    ) -> TeamResponse:
        """Save field values on an existing response. Caller must hold the lock."""
        response, assignment = await self._get_response(response_id, team_id)
        self._ensure_open(assignment)
        await self._locks.require_lock_holder(response.original_entry_id, team_id, user_id)
        return await self._write_draft(response, assignment, changes, user_id)

    async def save_entry_draft(
        self,
        entry_id: UUID,
        team_id: UUID,
        changes: Mapping[str, Any],
        user_id: UUID,
    ) -> TeamResponse:
        """Like ``save_draft`` but addressed by entry; creates the row if missing."""
        _, assignment = await self._get_entry_assignment(entry_id, team_id)
        self._ensure_open(assignment)
        await self._locks.require_lock_holder(entry_id, team_id, user_id)
        response = await self.ensure_response(assignment, entry_id)
        return await self._write_draft(response, assignment, changes, user_id)

    async def _write_draft(
        self,
        response: TeamResponse,
        assignment: TeamAssignment,
        changes: Mapping[str, Any],
        user_id: UUID,
    ) -> TeamResponse:
        fields = prepare(ResponseFields.from_record(response), changes)
        fields.write_to(response)
        response.updated_at = self._clock()
        response.updated_by = user_id

        await self._mark_started(assignment, user_id)
        self._audit.log_event(
            action=AuditAction.SAVE_DRAFT,
            resource_type="sheet_response",
            resource_id=response.id,
            user_id=user_id,
            team_id=assignment.team_id,
            details={"fields": sorted(changes)},
        )
        await self._session.flush()

        await self._publisher.publish(
            DomainEvent(
                RESPONSE_SAVED,
                {
                    "response_id": response.id,
                    "entry_id": response.original_entry_id,
                    "sheet_id": assignment.sheet_id,
                    "team_id": assignment.team_id,
                    "user_id": user_id,
                },
            )
        )
        return response

    # =========================================================================
    # COMPLETION
    # =========================================================================

    async def complete_entry(
        self,
        entry_id: UUID,
        team_id: UUID,
        changes: Mapping[str, Any],
        user_id: UUID,
    ) -> TeamResponse:
        """Validate, mark the response completed and release the caller's lock."""
        _, assignment = await self._get_entry_assignment(entry_id, team_id)
        self._ensure_open(assignment)
        await self._locks.require_lock_holder(entry_id, team_id, user_id)
        response = await self.ensure_response(assignment, entry_id)

        fields = prepare(ResponseFields.from_record(response), changes)
        validate_for_completion(fields)

        now = self._clock()
        fields.write_to(response)
        response.is_completed = True
        response.submitted_at = now
        response.submitted_by = user_id
        response.updated_at = now
        response.updated_by = user_id

        await self._mark_started(assignment, user_id)
        await self._locks.release_team_locks([entry_id], team_id)
        self._audit.log_event(
            action=AuditAction.COMPLETE_ENTRY,
            resource_type="sheet_response",
            resource_id=response.id,
            user_id=user_id,
            team_id=team_id,
            details={"entry_id": str(entry_id), "fields": fields.to_json()},
        )
        await self._session.flush()

        await self._publisher.publish(
            DomainEvent(
                ENTRY_COMPLETED,
                {
                    "response_id": response.id,
                    "entry_id": entry_id,
                    "sheet_id": assignment.sheet_id,
                    "team_id": team_id,
                    "user_id": user_id,
                },
            )
        )
        logger.info(f"User {user_id} completed entry {entry_id} for team {team_id}")
        return response

    # =========================================================================
    # POST-COMPLETION UPDATES
    # =========================================================================

    async def update_status_and_comments(
        self,
        response_id: UUID,
        team_id: UUID,
        user_id: UUID,
        current_status: str | None = None,
        comments: str | None = None,
    ) -> TeamResponse:
        """Change only ``current_status`` and ``comments``, in any assignment state.

        ``None`` leaves a field alone; an empty string clears it. A completed
        response must still pass the completion check afterwards. No lock is
        needed, but an active lock held by someone else blocks the update.
        """
        changes: dict[str, Any] = {}
        if current_status is not None:
            changes["current_status"] = current_status
        if comments is not None:
            changes["comments"] = comments
        if not changes:
            raise ValidationError(
                "Nothing to update",
                {"current_status": "provide current_status or comments"},
            )

        response, assignment = await self._get_response(response_id, team_id)
        await self._locks.ensure_not_locked_by_other(
            response.original_entry_id, team_id, user_id
        )

        fields = prepare(ResponseFields.from_record(response), changes)
        if response.is_completed:
            validate_for_completion(fields)
        fields.write_to(response)
        response.updated_at = self._clock()
        response.updated_by = user_id

        self._audit.log_event(
            action=AuditAction.UPDATE_STATUS,
            resource_type="sheet_response",
            resource_id=response.id,
            user_id=user_id,
            team_id=team_id,
            details={"fields": sorted(changes), "assignment_status": assignment.status.value},
        )
        await self._session.flush()

        await self._publisher.publish(
            DomainEvent(
                STATUS_UPDATED,
                {
                    "response_id": response.id,
                    "entry_id": response.original_entry_id,
                    "sheet_id": assignment.sheet_id,
                    "team_id": team_id,
                    "user_id": user_id,
                },
            )
        )
        return response
