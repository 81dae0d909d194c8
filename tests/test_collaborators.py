"""
Tests for the supporting services: sheet catalog, assignment registry,
admin aggregation view, audit trail and event publishers.
"""

import json
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import func, select

from advisory_tracker.models import (
    AssignmentStatus,
    AuditAction,
    RiskLevel,
    TeamAssignment,
    TeamResponse,
)
from advisory_tracker.services import (
    AdminAggregationView,
    AssignmentNotFoundError,
    AssignmentRegistry,
    AuditService,
    BufferedEventPublisher,
    DomainEvent,
    EntryInput,
    NotFoundError,
    SheetCatalog,
    SheetNotFoundError,
    ValidationError,
    WebhookEventPublisher,
)


# =============================================================================
# SHEETS & ASSIGNMENTS
# =============================================================================


class TestSheetCatalog:
    async def test_entries_keep_upload_order(self, session, world):
        entries = await SheetCatalog(session).list_entries(world.sheet_id)

        assert [e.position for e in entries] == [0, 1, 2]
        assert [e.vendor_name for e in entries] == ["Siemens", "ABB", "Schneider"]
        assert entries[1].risk_level == RiskLevel.CRITICAL
        assert await SheetCatalog(session).count_entries(world.sheet_id) == 3

    async def test_blank_title_rejected(self, session):
        with pytest.raises(ValidationError):
            await SheetCatalog(session).create_sheet("  ", 1, 2026, [], uploaded_by=None)

    async def test_unknown_risk_level_rejected(self, session):
        with pytest.raises(ValidationError) as exc_info:
            await SheetCatalog(session).create_sheet(
                "Bad", 1, 2026, [EntryInput(risk_level="Severe")], uploaded_by=None
            )
        assert "entries[0].risk_level" in exc_info.value.field_errors

    async def test_missing_sheet(self, session):
        with pytest.raises(SheetNotFoundError):
            await SheetCatalog(session).get_sheet(uuid4())


class TestAssignmentRegistry:
    async def test_distribution_pre_creates_responses(self, session, world):
        count = (
            await session.execute(select(func.count()).select_from(TeamResponse))
        ).scalar_one()
        # 3 entries x 2 teams
        assert count == 6

    async def test_redistribution_is_harmless(self, session, world):
        registry = AssignmentRegistry(session)
        assignments = await registry.distribute_sheet(
            world.sheet_id, [world.generation.id], assigned_by=world.admin.id
        )

        assert len(assignments) == 1
        total = (
            await session.execute(select(func.count()).select_from(TeamAssignment))
        ).scalar_one()
        responses = (
            await session.execute(select(func.count()).select_from(TeamResponse))
        ).scalar_one()
        assert total == 2
        assert responses == 6

    async def test_unknown_team(self, session, world):
        with pytest.raises(NotFoundError):
            await AssignmentRegistry(session).distribute_sheet(
                world.sheet_id, [uuid4()], assigned_by=world.admin.id
            )

    async def test_unknown_sheet(self, session, world):
        with pytest.raises(SheetNotFoundError):
            await AssignmentRegistry(session).distribute_sheet(
                uuid4(), [world.generation.id], assigned_by=world.admin.id
            )

    async def test_missing_assignment(self, session, world):
        with pytest.raises(AssignmentNotFoundError):
            await AssignmentRegistry(session).get_assignment(uuid4(), world.generation.id)

    async def test_sheet_assignments_listed_by_team_name(self, session, world):
        rows = await AssignmentRegistry(session).list_sheet_assignments(world.sheet_id)
        assert [team.name for _, team in rows] == ["Distribution", "Generation"]
        assert all(a.status == AssignmentStatus.ASSIGNED for a, _ in rows)


# =============================================================================
# ADMIN VIEW
# =============================================================================


class TestAdminAggregationView:
    async def test_overview_counts(self, session, locks, materializer, clock, world):
        first, second, _ = world.entry_ids
        await locks.lock_entry(first, world.alice.id, world.generation.id)
        await materializer.complete_entry(
            first, world.generation.id, {"deployed_in_ke": "N"}, world.alice.id
        )
        await locks.lock_entry(second, world.bob.id, world.generation.id)
        await materializer.save_entry_draft(
            second, world.generation.id, {"comments": "halfway"}, world.bob.id
        )

        overview = await AdminAggregationView(session, clock).sheet_overview(world.sheet_id)

        assert overview.total_entries == 3
        teams = {t.team_name: t for t in overview.teams}
        generation = teams["Generation"]
        assert generation.status == AssignmentStatus.IN_PROGRESS
        assert generation.completed_entries == 1
        assert generation.draft_entries == 1
        assert generation.active_locks == 1
        assert generation.percent_complete == 33.3

        distribution = teams["Distribution"]
        assert distribution.completed_entries == 0
        assert distribution.active_locks == 0
        assert distribution.percent_complete == 0.0

    async def test_expired_locks_are_not_counted(self, session, locks, clock, world):
        await locks.lock_entry(world.entry_ids[0], world.alice.id, world.generation.id)
        clock.advance(hours=1)

        overview = await AdminAggregationView(session, clock).sheet_overview(world.sheet_id)

        assert all(t.active_locks == 0 for t in overview.teams)

    async def test_team_snapshot_has_no_viewer(self, session, locks, clock, world):
        await locks.lock_entry(world.entry_ids[0], world.alice.id, world.generation.id)

        assignment, snapshots = await AdminAggregationView(session, clock).team_snapshot(
            world.sheet_id, world.generation.id
        )

        assert assignment.team_id == world.generation.id
        assert snapshots[0].is_locked is True
        assert snapshots[0].is_locked_by_me is False
        assert snapshots[0].locked_by_name == "Alice"

    async def test_unknown_sheet(self, session):
        with pytest.raises(SheetNotFoundError):
            await AdminAggregationView(session).sheet_overview(uuid4())


# =============================================================================
# AUDIT & EVENTS
# =============================================================================


class TestAuditService:
    async def test_filters_and_pagination(self, session, locks, world):
        for entry_id in world.entry_ids:
            await locks.lock_entry(entry_id, world.alice.id, world.generation.id)
        await locks.lock_entry(world.entry_ids[0], world.carol.id, world.distribution.id)

        service = AuditService(session)
        items, total = await service.get_audit_log(action=AuditAction.LOCK, team_id=world.generation.id, limit=2)

        assert total == 3
        assert len(items) == 2
        assert all(i.user_id == world.alice.id for i in items)

        distribute, total = await service.get_audit_log(action=AuditAction.DISTRIBUTE)
        assert total == 1
        assert distribute[0].resource_id == world.sheet_id


class TestBufferedEventPublisher:
    async def test_flush_forwards_in_order(self):
        buffer = BufferedEventPublisher()
        target = BufferedEventPublisher()
        await buffer.publish(DomainEvent("entry_locked", {"entry_id": uuid4()}))
        await buffer.publish(DomainEvent("entry_unlocked", {}))

        assert await buffer.flush(target) == 2
        assert target.names() == ["entry_locked", "entry_unlocked"]
        assert buffer.names() == []

    def test_event_serializes_ids_and_times(self):
        entry_id = uuid4()
        payload = DomainEvent("entry_locked", {"entry_id": entry_id, "ids": [entry_id]}).to_dict()

        assert payload["event"] == "entry_locked"
        assert payload["payload"] == {"entry_id": str(entry_id), "ids": [str(entry_id)]}
        assert isinstance(payload["occurred_at"], str)


class TestWebhookEventPublisher:
    async def test_posts_event_json(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(204)

        publisher = WebhookEventPublisher("https://hooks.example.com/tracker")
        await publisher.close()
        publisher.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        await publisher.publish(DomainEvent("assignment_completed", {"team_id": "t-1"}))
        await publisher.close()

        assert received[0]["event"] == "assignment_completed"
        assert received[0]["payload"] == {"team_id": "t-1"}

    async def test_delivery_failures_are_swallowed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        publisher = WebhookEventPublisher("https://hooks.example.com/tracker")
        await publisher.close()
        publisher.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        await publisher.publish(DomainEvent("entry_locked", {}))
        await publisher.close()
