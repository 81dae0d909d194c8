"""
Entry Lock Manager: exclusive, time-bounded editing claims on sheet entries.

A lock is scoped to one (entry, team) pair, so teams never block each other.
The ``entry_locks`` table is the only source of truth:

- acquisition is a conditional UPDATE (row expired, or already ours) followed
  by INSERT ... ON CONFLICT DO NOTHING on the unique (entry_id, team_id) key,
  so of two racing callers exactly one wins;
- expiry is lazy: every read compares ``expires_at`` with the injected clock
  and treats expired rows as absent. The sweep in ``release_expired_locks``
  only tidies the table.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.database import insert_if_absent
from ..models import (
    AssignmentStatus,
    AuditAction,
    EntryLock,
    Sheet,
    SourceEntry,
    TeamAssignment,
    TeamResponse,
    User,
    as_utc,
    utcnow,
)
from .audit import AuditService
from .errors import (
    AssignmentClosedError,
    AssignmentNotFoundError,
    EntryLockedError,
    EntryNotFoundError,
    InvalidStateError,
    NotLockHolderError,
)
from .events import (
    ENTRY_LOCKED,
    ENTRY_UNLOCKED,
    LOCKS_RELEASED,
    DomainEvent,
    EventPublisher,
    LoggingEventPublisher,
)

logger = logging.getLogger(__name__)
settings = get_settings()

# Attempts before giving up when the competing row keeps vanishing
MAX_ACQUIRE_ATTEMPTS = 3

Clock = Callable[[], datetime]


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class EntrySnapshot:
    """One entry of a sheet as seen by a team (and optionally a viewer)."""
    entry: SourceEntry
    response: TeamResponse | None
    lock: EntryLock | None
    locked_by_name: str | None
    is_locked: bool
    is_locked_by_me: bool

    @property
    def is_completed(self) -> bool:
        return bool(self.response and self.response.is_completed)

    @property
    def lock_expires_at(self) -> datetime | None:
        return as_utc(self.lock.expires_at) if self.lock else None


@dataclass
class LockedEntryInfo:
    """An active lock held by a user, with enough context to display it."""
    lock: EntryLock
    entry: SourceEntry
    sheet_id: UUID
    sheet_title: str


async def build_entry_snapshots(
    session: AsyncSession,
    assignment: TeamAssignment,
    viewer_id: UUID | None,
    now: datetime,
) -> list[EntrySnapshot]:
    """Join entries, the team's responses and active locks. Read-only."""
    entries = (
        await session.execute(
            select(SourceEntry)
            .where(SourceEntry.sheet_id == assignment.sheet_id)
            .order_by(SourceEntry.position, SourceEntry.created_at)
        )
    ).scalars().all()
    if not entries:
        return []
    entry_ids = [e.id for e in entries]

    responses = {
        r.original_entry_id: r
        for r in (
            await session.execute(
                select(TeamResponse)
                .where(TeamResponse.team_sheet_id == assignment.id)
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
    }

    lock_rows = (
        await session.execute(
            select(EntryLock, User.name)
            .join(User, User.id == EntryLock.locked_by_user_id)
            .where(
                EntryLock.team_id == assignment.team_id,
                EntryLock.entry_id.in_(entry_ids),
                EntryLock.expires_at > now,
            )
            .execution_options(populate_existing=True)
        )
    ).all()
    locks = {lock.entry_id: (lock, name) for lock, name in lock_rows}

    snapshots = []
    for entry in entries:
        lock, name = locks.get(entry.id, (None, None))
        mine = lock is not None and viewer_id is not None and lock.locked_by_user_id == viewer_id
        snapshots.append(
            EntrySnapshot(
                entry=entry,
                response=responses.get(entry.id),
                lock=lock,
                locked_by_name=name,
                is_locked=lock is not None and not mine,
                is_locked_by_me=mine,
            )
        )
    return snapshots


class EntryLockManager:
    """Grants, refreshes and releases entry locks for one team at a time."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        ttl: timedelta | None = None,
    ):
        self._session = session
        self._publisher = publisher or LoggingEventPublisher()
        self._clock = clock or utcnow
        self._ttl = ttl or timedelta(minutes=settings.entry_lock_ttl_minutes)
        self._audit = AuditService(session)

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _get_entry(self, entry_id: UUID) -> SourceEntry:
        entry = await self._session.get(SourceEntry, entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry {entry_id} not found")
        return entry

    async def _get_assignment(self, sheet_id: UUID, team_id: UUID) -> TeamAssignment:
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

    async def _load_lock(self, entry_id: UUID, team_id: UUID) -> EntryLock | None:
        """The raw lock row, expired or not."""
        result = await self._session.execute(
            select(EntryLock)
            .where(EntryLock.entry_id == entry_id, EntryLock.team_id == team_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _user_name(self, user_id: UUID) -> str | None:
        result = await self._session.execute(select(User.name).where(User.id == user_id))
        return result.scalar_one_or_none()

    def _is_active(self, lock: EntryLock, now: datetime) -> bool:
        return as_utc(lock.expires_at) > now

    async def get_active_lock(self, entry_id: UUID, team_id: UUID) -> EntryLock | None:
        """The lock on an entry for a team, or None if absent or expired."""
        lock = await self._load_lock(entry_id, team_id)
        if lock is None or not self._is_active(lock, self.now()):
            return None
        return lock

    async def _locked_error(self, entry_id: UUID, lock: EntryLock) -> EntryLockedError:
        name = await self._user_name(lock.locked_by_user_id)
        return EntryLockedError(
            entry_id=entry_id,
            locked_by_user_id=lock.locked_by_user_id,
            locked_by_name=name,
            expires_at=as_utc(lock.expires_at),
        )

    # =========================================================================
    # LOCK / UNLOCK
    # =========================================================================

    async def lock_entry(self, entry_id: UUID, user_id: UUID, team_id: UUID) -> EntryLock:
        """Claim an entry for ``user_id`` within ``team_id``.

        Re-locking your own entry refreshes the expiry. An expired lock of any
        user is taken over. An active lock of another user raises
        ``EntryLockedError``.
        """
        entry = await self._get_entry(entry_id)
        assignment = await self._get_assignment(entry.sheet_id, team_id)
        if assignment.status == AssignmentStatus.COMPLETED:
            raise AssignmentClosedError("Sheet has already been submitted for this team")

        for _ in range(MAX_ACQUIRE_ATTEMPTS):
            now = self.now()
            expires_at = now + self._ttl

            # Take over an expired row, or refresh our own
            result = await self._session.execute(
                update(EntryLock)
                .where(
                    EntryLock.entry_id == entry_id,
                    EntryLock.team_id == team_id,
                    or_(EntryLock.expires_at <= now, EntryLock.locked_by_user_id == user_id),
                )
                .values(locked_by_user_id=user_id, locked_at=now, expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            acquired = result.rowcount == 1

            if not acquired:
                acquired = bool(
                    await insert_if_absent(
                        self._session,
                        EntryLock.__table__,
                        {
                            "id": uuid4(),
                            "entry_id": entry_id,
                            "team_id": team_id,
                            "locked_by_user_id": user_id,
                            "locked_at": now,
                            "expires_at": expires_at,
                        },
                        ["entry_id", "team_id"],
                    )
                )

            if acquired:
                lock = await self._load_lock(entry_id, team_id)
                self._audit.log_event(
                    action=AuditAction.LOCK,
                    resource_type="entry",
                    resource_id=entry_id,
                    user_id=user_id,
                    team_id=team_id,
                    details={"expires_at": expires_at.isoformat()},
                )
                await self._session.flush()
                await self._publisher.publish(
                    DomainEvent(
                        ENTRY_LOCKED,
                        {
                            "entry_id": entry_id,
                            "sheet_id": entry.sheet_id,
                            "team_id": team_id,
                            "user_id": user_id,
                            "expires_at": expires_at,
                        },
                    )
                )
                logger.debug(f"User {user_id} locked entry {entry_id} for team {team_id}")
                return lock

            holder = await self._load_lock(entry_id, team_id)
            if holder is None or not self._is_active(holder, now):
                # Released or expired between our statements; try again
                continue
            if holder.locked_by_user_id == user_id:
                continue

            error = await self._locked_error(entry_id, holder)
            logger.info(
                f"Lock conflict on entry {entry_id} team {team_id}: "
                f"user {user_id} blocked by {holder.locked_by_user_id}"
            )
            raise error

        raise InvalidStateError(f"Could not acquire lock on entry {entry_id}, please retry")

    async def unlock_entry(
        self,
        entry_id: UUID,
        user_id: UUID,
        team_id: UUID,
        force: bool = False,
    ) -> bool:
        """Release a lock. Returns True if an active lock was released.

        Only the holder may unlock unless ``force`` is set (admin override).
        A lock that is gone or expired counts as absent for every caller; an
        expired row is cleaned up on the way.
        """
        await self._get_entry(entry_id)
        lock = await self._load_lock(entry_id, team_id)
        if lock is None:
            return False

        holder_id = lock.locked_by_user_id
        delete_stmt = delete(EntryLock).where(
            EntryLock.id == lock.id,
            EntryLock.locked_by_user_id == holder_id,
        )
        now = self.now()
        if not self._is_active(lock, now):
            await self._session.execute(delete_stmt.where(EntryLock.expires_at <= now))
            return False

        if holder_id != user_id and not force:
            raise NotLockHolderError("You do not hold the lock on this entry")

        await self._session.execute(delete_stmt)

        forced = force and holder_id != user_id
        self._audit.log_event(
            action=AuditAction.FORCE_UNLOCK if forced else AuditAction.UNLOCK,
            resource_type="entry",
            resource_id=entry_id,
            user_id=user_id,
            team_id=team_id,
            details={"holder_id": str(holder_id)} if forced else {},
        )
        await self._session.flush()
        await self._publisher.publish(
            DomainEvent(
                ENTRY_UNLOCKED,
                {"entry_id": entry_id, "team_id": team_id, "user_id": user_id, "forced": forced},
            )
        )
        if forced:
            logger.info(f"User {user_id} force-unlocked entry {entry_id} held by {holder_id}")
        return True

    async def require_lock_holder(self, entry_id: UUID, team_id: UUID, user_id: UUID) -> EntryLock:
        """Return the caller's active lock or raise ``NotLockHolderError``."""
        lock = await self.get_active_lock(entry_id, team_id)
        if lock is None:
            raise NotLockHolderError("Lock the entry before editing it")
        if lock.locked_by_user_id != user_id:
            name = await self._user_name(lock.locked_by_user_id)
            raise NotLockHolderError(
                f"Entry is locked by {name or lock.locked_by_user_id}",
                details={"locked_by": {"id": str(lock.locked_by_user_id), "name": name}},
            )
        return lock

    async def ensure_not_locked_by_other(
        self, entry_id: UUID, team_id: UUID, user_id: UUID
    ) -> None:
        """Raise ``EntryLockedError`` if someone else holds an active lock."""
        lock = await self.get_active_lock(entry_id, team_id)
        if lock is not None and lock.locked_by_user_id != user_id:
            raise await self._locked_error(entry_id, lock)

    async def active_locks_by_others(
        self, entry_ids: Sequence[UUID], team_id: UUID, user_id: UUID
    ) -> dict[UUID, tuple[EntryLock, str | None]]:
        """Active locks on ``entry_ids`` held by anyone but ``user_id``."""
        if not entry_ids:
            return {}
        rows = (
            await self._session.execute(
                select(EntryLock, User.name)
                .join(User, User.id == EntryLock.locked_by_user_id)
                .where(
                    EntryLock.team_id == team_id,
                    EntryLock.entry_id.in_(entry_ids),
                    EntryLock.locked_by_user_id != user_id,
                    EntryLock.expires_at > self.now(),
                )
                .execution_options(populate_existing=True)
            )
        ).all()
        return {lock.entry_id: (lock, name) for lock, name in rows}

    # =========================================================================
    # VIEWS
    # =========================================================================

    async def get_available_entries(
        self, sheet_id: UUID, team_id: UUID, user_id: UUID
    ) -> list[EntrySnapshot]:
        """Every entry of the sheet with the team's lock and response state."""
        assignment = await self._get_assignment(sheet_id, team_id)
        return await build_entry_snapshots(self._session, assignment, user_id, self.now())

    async def get_user_locked_entries(self, user_id: UUID) -> list[LockedEntryInfo]:
        result = await self._session.execute(
            select(EntryLock, SourceEntry, Sheet)
            .join(SourceEntry, SourceEntry.id == EntryLock.entry_id)
            .join(Sheet, Sheet.id == SourceEntry.sheet_id)
            .where(
                EntryLock.locked_by_user_id == user_id,
                EntryLock.expires_at > self.now(),
            )
            .order_by(EntryLock.locked_at.desc())
            .execution_options(populate_existing=True)
        )
        return [
            LockedEntryInfo(lock=lock, entry=entry, sheet_id=sheet.id, sheet_title=sheet.title)
            for lock, entry, sheet in result.all()
        ]

    # =========================================================================
    # RELEASE
    # =========================================================================

    async def release_team_locks(self, entry_ids: Sequence[UUID], team_id: UUID) -> int:
        """Drop every lock the team holds on ``entry_ids``."""
        if not entry_ids:
            return 0
        result = await self._session.execute(
            delete(EntryLock)
            .where(EntryLock.team_id == team_id, EntryLock.entry_id.in_(entry_ids))
            .execution_options(synchronize_session=False)
        )
        return max(result.rowcount or 0, 0)

    async def release_expired_locks(self, actor_id: UUID | None = None) -> int:
        """Delete every expired lock row. Returns how many were removed."""
        now = self.now()
        result = await self._session.execute(
            delete(EntryLock)
            .where(EntryLock.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        released = max(result.rowcount or 0, 0)

        if released:
            self._audit.log_event(
                action=AuditAction.RELEASE_EXPIRED,
                resource_type="entry_lock",
                resource_id=None,
                user_id=actor_id,
                details={"released": released},
            )
            await self._session.flush()
            await self._publisher.publish(
                DomainEvent(LOCKS_RELEASED, {"count": released, "actor_id": actor_id})
            )
            logger.info(f"Released {released} expired entry locks")
        return released
