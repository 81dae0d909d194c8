"""
Tests for the Entry Lock Manager.

Critical invariants:
1. At most one lock row exists per (entry, team)
2. An active lock of another user always blocks acquisition
3. Expired locks behave exactly like absent ones
4. Teams never block each other
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from advisory_tracker.core.database import insert_if_absent
from advisory_tracker.models import (
    AssignmentStatus,
    AuditAction,
    AuditLog,
    EntryLock,
    Team,
    TeamAssignment,
    as_utc,
)
from advisory_tracker.services import (
    AssignmentClosedError,
    AssignmentNotFoundError,
    BufferedEventPublisher,
    EntryLockedError,
    EntryLockManager,
    EntryNotFoundError,
    NotLockHolderError,
)


async def count_locks(session: AsyncSession, entry_id, team_id) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(EntryLock)
        .where(EntryLock.entry_id == entry_id, EntryLock.team_id == team_id)
    )
    return result.scalar_one()


# =============================================================================
# ACQUISITION
# =============================================================================


class TestLockEntry:
    """Tests for lock acquisition and refresh."""

    async def test_lock_free_entry(self, session, locks, events, clock, world):
        entry_id = world.entry_ids[0]

        lock = await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        assert lock.locked_by_user_id == world.alice.id
        assert as_utc(lock.expires_at) == clock() + timedelta(minutes=30)
        assert events.names() == ["entry_locked"]

        audit = (
            await session.execute(select(AuditLog).where(AuditLog.action == AuditAction.LOCK))
        ).scalars().all()
        assert len(audit) == 1
        assert audit[0].resource_id == entry_id

    async def test_second_user_is_blocked(self, session, locks, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        with pytest.raises(EntryLockedError) as exc_info:
            await locks.lock_entry(entry_id, world.bob.id, world.generation.id)

        error = exc_info.value
        assert error.locked_by_user_id == world.alice.id
        assert error.locked_by_name == "Alice"
        assert error.details["locked_by"]["name"] == "Alice"
        assert error.expires_at is not None
        assert await count_locks(session, entry_id, world.generation.id) == 1

    async def test_relock_refreshes_expiry(self, session, locks, clock, world):
        entry_id = world.entry_ids[0]
        first = await locks.lock_entry(entry_id, world.alice.id, world.generation.id)
        first_expiry = as_utc(first.expires_at)

        clock.advance(minutes=10)
        second = await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        assert as_utc(second.expires_at) == first_expiry + timedelta(minutes=10)
        assert await count_locks(session, entry_id, world.generation.id) == 1

    async def test_expired_lock_can_be_taken_over(self, session, locks, clock, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        clock.advance(minutes=31)
        lock = await locks.lock_entry(entry_id, world.bob.id, world.generation.id)

        assert lock.locked_by_user_id == world.bob.id
        assert await count_locks(session, entry_id, world.generation.id) == 1

        # Alice's claim is gone for good
        with pytest.raises(EntryLockedError):
            await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

    async def test_lock_is_still_held_just_before_expiry(self, locks, clock, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        clock.advance(minutes=29, seconds=59)
        with pytest.raises(EntryLockedError):
            await locks.lock_entry(entry_id, world.bob.id, world.generation.id)

    async def test_teams_lock_independently(self, session, locks, world):
        entry_id = world.entry_ids[0]

        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)
        other = await locks.lock_entry(entry_id, world.carol.id, world.distribution.id)

        assert other.team_id == world.distribution.id
        assert await count_locks(session, entry_id, world.generation.id) == 1
        assert await count_locks(session, entry_id, world.distribution.id) == 1

    async def test_custom_ttl(self, session, events, clock, world):
        manager = EntryLockManager(session, events, clock, ttl=timedelta(minutes=5))
        lock = await manager.lock_entry(world.entry_ids[0], world.alice.id, world.generation.id)
        assert as_utc(lock.expires_at) == clock() + timedelta(minutes=5)

    async def test_unknown_entry(self, locks, world):
        with pytest.raises(EntryNotFoundError):
            await locks.lock_entry(uuid4(), world.alice.id, world.generation.id)

    async def test_unassigned_team(self, session, locks, world):
        team = Team(slug="transmission", name="Transmission")
        session.add(team)
        await session.flush()

        with pytest.raises(AssignmentNotFoundError):
            await locks.lock_entry(world.entry_ids[0], world.alice.id, team.id)

    async def test_completed_assignment_cannot_be_locked(self, session, locks, world):
        assignment = (
            await session.execute(
                select(TeamAssignment).where(TeamAssignment.team_id == world.generation.id)
            )
        ).scalar_one()
        assignment.status = AssignmentStatus.COMPLETED
        await session.flush()

        with pytest.raises(AssignmentClosedError):
            await locks.lock_entry(world.entry_ids[0], world.alice.id, world.generation.id)


class TestLockUniqueness:
    """The unique (entry_id, team_id) key is what makes acquisition atomic."""

    async def test_conditional_insert_loses_quietly(self, session, locks, clock, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        inserted = await insert_if_absent(
            session,
            EntryLock.__table__,
            {
                "id": uuid4(),
                "entry_id": entry_id,
                "team_id": world.generation.id,
                "locked_by_user_id": world.bob.id,
                "locked_at": clock(),
                "expires_at": clock() + timedelta(minutes=30),
            },
            ["entry_id", "team_id"],
        )

        assert inserted == 0
        holder = await locks.get_active_lock(entry_id, world.generation.id)
        assert holder.locked_by_user_id == world.alice.id

    async def test_plain_duplicate_insert_is_rejected(self, session, locks, clock, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)
        await session.commit()

        session.add(
            EntryLock(
                entry_id=entry_id,
                team_id=world.generation.id,
                locked_by_user_id=world.bob.id,
                locked_at=clock(),
                expires_at=clock() + timedelta(minutes=30),
            )
        )
        with pytest.raises(IntegrityError):
            await session.flush()
        await session.rollback()


class TestConcurrentAcquisition:
    """Two users racing for one entry over separate connections."""

    async def test_exactly_one_racer_wins(self, file_engine, file_world):
        world = file_world
        entry_id = world.entry_ids[0]

        async def attempt(user) -> str:
            async with AsyncSession(file_engine, expire_on_commit=False) as session:
                manager = EntryLockManager(session, BufferedEventPublisher())
                try:
                    await manager.lock_entry(entry_id, user.id, world.generation.id)
                except EntryLockedError:
                    await session.rollback()
                    return "blocked"
                await session.commit()
                return "won"

        outcomes = await asyncio.gather(attempt(world.alice), attempt(world.bob))

        assert sorted(outcomes) == ["blocked", "won"]
        async with AsyncSession(file_engine) as session:
            assert await count_locks(session, entry_id, world.generation.id) == 1
            holder = await EntryLockManager(session).get_active_lock(
                entry_id, world.generation.id
            )
        winner = world.alice if outcomes[0] == "won" else world.bob
        assert holder.locked_by_user_id == winner.id


# =============================================================================
# RELEASE
# =============================================================================


class TestUnlockEntry:
    """Tests for releasing locks."""

    async def test_holder_unlocks(self, locks, events, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        released = await locks.unlock_entry(entry_id, world.alice.id, world.generation.id)

        assert released is True
        assert await locks.get_active_lock(entry_id, world.generation.id) is None
        assert events.names()[-1] == "entry_unlocked"

    async def test_other_user_cannot_unlock(self, locks, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        with pytest.raises(NotLockHolderError):
            await locks.unlock_entry(entry_id, world.bob.id, world.generation.id)

        holder = await locks.get_active_lock(entry_id, world.generation.id)
        assert holder.locked_by_user_id == world.alice.id

    async def test_force_unlock(self, session, locks, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)

        released = await locks.unlock_entry(
            entry_id, world.admin.id, world.generation.id, force=True
        )

        assert released is True
        assert await count_locks(session, entry_id, world.generation.id) == 0
        audit = (
            await session.execute(
                select(AuditLog).where(AuditLog.action == AuditAction.FORCE_UNLOCK)
            )
        ).scalar_one()
        assert audit.details["holder_id"] == str(world.alice.id)

    async def test_unlocking_free_entry_is_noop(self, locks, world):
        released = await locks.unlock_entry(world.entry_ids[0], world.alice.id, world.generation.id)
        assert released is False

    async def test_unlocking_own_expired_lock(self, session, locks, clock, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)
        clock.advance(hours=1)

        released = await locks.unlock_entry(entry_id, world.alice.id, world.generation.id)

        assert released is False
        assert await count_locks(session, entry_id, world.generation.id) == 0

    async def test_expired_lock_of_another_user_counts_as_absent(
        self, session, locks, events, clock, world
    ):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)
        clock.advance(minutes=31)
        assert await locks.get_active_lock(entry_id, world.generation.id) is None

        released = await locks.unlock_entry(entry_id, world.bob.id, world.generation.id)

        assert released is False
        assert await count_locks(session, entry_id, world.generation.id) == 0
        assert events.names() == ["entry_locked"]

    async def test_unlock_does_not_touch_other_team(self, locks, world):
        entry_id = world.entry_ids[0]
        await locks.lock_entry(entry_id, world.alice.id, world.generation.id)
        await locks.lock_entry(entry_id, world.carol.id, world.distribution.id)

        await locks.unlock_entry(entry_id, world.alice.id, world.generation.id)

        assert await locks.get_active_lock(entry_id, world.distribution.id) is not None


class TestReleaseExpiredLocks:
    async def test_only_expired_rows_are_removed(self, session, locks, events, clock, world):
        first, second, third = world.entry_ids
        await locks.lock_entry(first, world.alice.id, world.generation.id)
        await locks.lock_entry(second, world.bob.id, world.generation.id)

        clock.advance(minutes=45)
        await locks.lock_entry(third, world.carol.id, world.distribution.id)

        released = await locks.release_expired_locks(actor_id=world.admin.id)

        assert released == 2
        remaining = (await session.execute(select(EntryLock))).scalars().all()
        assert [lock.entry_id for lock in remaining] == [third]
        assert "locks_released" in events.names()

    async def test_nothing_to_release(self, locks, events, world):
        await locks.lock_entry(world.entry_ids[0], world.alice.id, world.generation.id)

        assert await locks.release_expired_locks() == 0
        assert "locks_released" not in events.names()


# =============================================================================
# VIEWS
# =============================================================================


class TestAvailableEntries:
    async def test_lock_state_is_relative_to_viewer(self, locks, world):
        first, second, _ = world.entry_ids
        await locks.lock_entry(first, world.alice.id, world.generation.id)
        await locks.lock_entry(second, world.bob.id, world.generation.id)

        snapshots = await locks.get_available_entries(
            world.sheet_id, world.generation.id, world.alice.id
        )

        assert [s.entry.id for s in snapshots] == world.entry_ids
        mine, theirs, free = snapshots
        assert mine.is_locked_by_me and not mine.is_locked
        assert theirs.is_locked and not theirs.is_locked_by_me
        assert theirs.locked_by_name == "Bob"
        assert theirs.lock_expires_at is not None
        assert not free.is_locked and not free.is_locked_by_me
        assert all(s.response is not None for s in snapshots)
        assert not any(s.is_completed for s in snapshots)

    async def test_expired_locks_are_hidden(self, locks, clock, world):
        await locks.lock_entry(world.entry_ids[0], world.bob.id, world.generation.id)
        clock.advance(minutes=31)

        snapshots = await locks.get_available_entries(
            world.sheet_id, world.generation.id, world.alice.id
        )

        assert not snapshots[0].is_locked
        assert snapshots[0].lock is None

    async def test_user_locked_entries(self, locks, clock, world):
        first, second, _ = world.entry_ids
        await locks.lock_entry(first, world.alice.id, world.generation.id)
        clock.advance(minutes=1)
        await locks.lock_entry(second, world.alice.id, world.generation.id)
        await locks.lock_entry(first, world.carol.id, world.distribution.id)

        held = await locks.get_user_locked_entries(world.alice.id)

        assert [info.entry.id for info in held] == [second, first]
        assert held[0].sheet_title == "October advisories"
        assert held[0].sheet_id == world.sheet_id
