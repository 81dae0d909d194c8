"""Shared fixtures: in-memory SQLite, a fake clock, and a small seeded world."""

import os

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "development")

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from advisory_tracker.core.database import get_session
from advisory_tracker.core.security import hash_password
from advisory_tracker.models import Base, SourceEntry, Team, TeamMember, User, UserRole
from advisory_tracker.services import (
    AssignmentRegistry,
    BufferedEventPublisher,
    EntryInput,
    EntryLockManager,
    SheetCatalog,
    SubmissionCoordinator,
    TeamResponseMaterializer,
)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@dataclass
class World:
    alice: User
    bob: User
    carol: User
    admin: User
    generation: Team
    distribution: Team
    sheet_id: UUID
    entries: list[SourceEntry]

    @property
    def entry_ids(self) -> list[UUID]:
        return [e.id for e in self.entries]


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed SQLite shared by several connections.

    Every transaction opens with BEGIN IMMEDIATE, so concurrent writers queue
    on the database lock instead of failing on lock upgrade.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tracker.db'}", connect_args={"timeout": 30}
    )

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


# =============================================================================
# SERVICES
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> BufferedEventPublisher:
    return BufferedEventPublisher()


@pytest.fixture
def locks(session, events, clock) -> EntryLockManager:
    return EntryLockManager(session, events, clock)


@pytest.fixture
def materializer(session, events, clock, locks) -> TeamResponseMaterializer:
    return TeamResponseMaterializer(session, events, clock, locks)


@pytest.fixture
def coordinator(session, events, clock, locks) -> SubmissionCoordinator:
    return SubmissionCoordinator(session, events, clock, locks)


# =============================================================================
# SEED DATA
# =============================================================================


async def seed_world(session: AsyncSession) -> World:
    """Two teams, four users and a three-entry sheet assigned to both teams."""
    password = hash_password("correct horse")
    alice = User(email="alice@example.com", name="Alice", hashed_password=password)
    bob = User(email="bob@example.com", name="Bob", hashed_password=password)
    carol = User(email="carol@example.com", name="Carol", hashed_password=password)
    admin = User(
        email="admin@example.com",
        name="Admin",
        hashed_password=password,
        role=UserRole.ADMIN,
    )
    generation = Team(slug="generation", name="Generation")
    distribution = Team(slug="distribution", name="Distribution")
    session.add_all([alice, bob, carol, admin, generation, distribution])
    await session.flush()

    session.add_all(
        [
            TeamMember(team_id=generation.id, user_id=alice.id),
            TeamMember(team_id=generation.id, user_id=bob.id),
            TeamMember(team_id=distribution.id, user_id=carol.id),
        ]
    )

    sheet = await SheetCatalog(session).create_sheet(
        title="October advisories",
        month=10,
        year=2026,
        entries=[
            EntryInput(vendor_name="Siemens", product_name="SIMATIC", cve="CVE-2026-0001", risk_level="High"),
            EntryInput(vendor_name="ABB", product_name="RTU560", cve="CVE-2026-0002", risk_level="critical"),
            EntryInput(vendor_name="Schneider", product_name="EcoStruxure", cve="CVE-2026-0003", risk_level="Low"),
        ],
        uploaded_by=admin.id,
    )
    await AssignmentRegistry(session).distribute_sheet(
        sheet.id, [generation.id, distribution.id], assigned_by=admin.id
    )
    entries = list(await SheetCatalog(session).list_entries(sheet.id))
    await session.commit()

    return World(
        alice=alice,
        bob=bob,
        carol=carol,
        admin=admin,
        generation=generation,
        distribution=distribution,
        sheet_id=sheet.id,
        entries=entries,
    )


@pytest.fixture
async def world(session) -> World:
    return await seed_world(session)


@pytest.fixture
async def file_world(file_engine) -> World:
    async with AsyncSession(file_engine, expire_on_commit=False) as session:
        return await seed_world(session)


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
async def client(engine):
    from advisory_tracker.main import app

    async def override_get_session():
        async with AsyncSession(engine, expire_on_commit=False) as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
