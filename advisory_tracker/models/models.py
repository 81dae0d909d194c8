"""SQLAlchemy ORM Models for the Advisory Tracker.

Tables: users, teams, team_members, sheets, sheet_entries, team_sheets,
sheet_responses, entry_locks, audit_log.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, SoftDeleteMixin, UUIDMixin, utcnow

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str, PyEnum):
    ADMIN = "admin"
    MEMBER = "member"


class RiskLevel(str, PyEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class AssignmentStatus(str, PyEnum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AuditAction(str, PyEnum):
    CREATE = "create"
    DISTRIBUTE = "distribute"
    LOCK = "lock"
    UNLOCK = "unlock"
    FORCE_UNLOCK = "force_unlock"
    SAVE_DRAFT = "save_draft"
    COMPLETE_ENTRY = "complete_entry"
    UPDATE_STATUS = "update_status"
    START = "start"
    SUBMIT = "submit"
    REOPEN = "reopen"
    RELEASE_EXPIRED = "release_expired"


# =============================================================================
# USER & TEAM MODELS
# =============================================================================


class User(Base, UUIDMixin, SoftDeleteMixin):
    """Application user."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    hashed_password: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=lambda x: [e.value for e in x]),
        default=UserRole.MEMBER,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column()

    # Relationships
    team_memberships: Mapped[list["TeamMember"]] = relationship(
        back_populates="user"
    )


class Team(Base, UUIDMixin, SoftDeleteMixin):
    """Operational team (generation, distribution, transmission, ...)."""

    __tablename__ = "teams"

    slug: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    members: Mapped[list["TeamMember"]] = relationship(back_populates="team")


class TeamMember(Base, UUIDMixin):
    """Membership linking users to teams."""

    __tablename__ = "team_members"

    team_id: Mapped[UUID] = mapped_column(ForeignKey("teams.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="member")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    team: Mapped["Team"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship(back_populates="team_memberships")

    __table_args__ = (
        UniqueConstraint("team_id", "user_id"),
        Index("idx_team_members_user", "user_id"),
    )


# =============================================================================
# SHEET MODELS
# =============================================================================


class Sheet(Base, UUIDMixin):
    """One uploaded batch of advisory rows for a given month/year."""

    __tablename__ = "sheets"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    month: Mapped[int | None] = mapped_column(Integer)
    year: Mapped[int | None] = mapped_column(Integer)
    uploaded_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class SourceEntry(Base, UUIDMixin):
    """One advisory row of a sheet. Never mutated after upload."""

    __tablename__ = "sheet_entries"

    sheet_id: Mapped[UUID] = mapped_column(
        ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    vendor_name: Mapped[str | None] = mapped_column(String(255))
    product_name: Mapped[str | None] = mapped_column(String(255))
    cve: Mapped[str | None] = mapped_column(String(100))
    risk_level: Mapped[RiskLevel | None] = mapped_column(
        Enum(RiskLevel, name="risk_level", values_callable=lambda x: [e.value for e in x]),
    )
    source_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_sheet_entries_sheet", "sheet_id", "position"),
    )


class TeamAssignment(Base, UUIDMixin):
    """A sheet assigned to one team. Never deleted."""

    __tablename__ = "team_sheets"

    sheet_id: Mapped[UUID] = mapped_column(ForeignKey("sheets.id"), nullable=False)
    team_id: Mapped[UUID] = mapped_column(ForeignKey("teams.id"), nullable=False)
    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(
            AssignmentStatus,
            name="assignment_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=AssignmentStatus.ASSIGNED,
        nullable=False,
    )
    assigned_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    assigned_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    started_at: Mapped[datetime | None] = mapped_column()
    started_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    completed_at: Mapped[datetime | None] = mapped_column()
    completed_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    reopened_at: Mapped[datetime | None] = mapped_column()
    reopened_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    reopen_reason: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("sheet_id", "team_id"),
        Index("idx_team_sheets_team", "team_id", "status"),
    )


class TeamResponse(Base, UUIDMixin):
    """A team's working copy of one entry."""

    __tablename__ = "sheet_responses"

    team_sheet_id: Mapped[UUID] = mapped_column(
        ForeignKey("team_sheets.id"), nullable=False
    )
    original_entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("sheet_entries.id"), nullable=False
    )

    # Response payload
    current_status: Mapped[str | None] = mapped_column(String(255))
    comments: Mapped[str | None] = mapped_column(Text)
    deployed_in_ke: Mapped[str | None] = mapped_column(String(10))
    vendor_contacted: Mapped[str | None] = mapped_column(String(10))
    vendor_contact_date: Mapped[date | None] = mapped_column(Date)
    compensatory_controls_provided: Mapped[str | None] = mapped_column(String(10))
    compensatory_controls_details: Mapped[str | None] = mapped_column(Text)
    estimated_time: Mapped[str | None] = mapped_column(String(255))
    site: Mapped[str | None] = mapped_column(String(255))
    patching: Mapped[str | None] = mapped_column(String(10))
    patching_est_release_date: Mapped[date | None] = mapped_column(Date)
    implementation_date: Mapped[date | None] = mapped_column(Date)

    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column()
    submitted_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column()
    updated_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))

    __table_args__ = (
        UniqueConstraint("team_sheet_id", "original_entry_id"),
        Index("idx_sheet_responses_entry", "original_entry_id"),
    )


class EntryLock(Base, UUIDMixin):
    """Time-bounded editing claim on one entry for one team."""

    __tablename__ = "entry_locks"

    entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("sheet_entries.id", ondelete="CASCADE"), nullable=False
    )
    team_id: Mapped[UUID] = mapped_column(ForeignKey("teams.id"), nullable=False)
    locked_by_user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    locked_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("entry_id", "team_id"),
        Index("idx_entry_locks_user", "locked_by_user_id"),
        Index("idx_entry_locks_expires", "expires_at"),
    )


# =============================================================================
# AUDIT
# =============================================================================


class AuditLog(Base, UUIDMixin):
    """Append-only audit trail."""

    __tablename__ = "audit_log"

    user_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    team_id: Mapped[UUID | None] = mapped_column(ForeignKey("teams.id"))
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, name="audit_action", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    details: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_audit_log_time", "created_at"),
        Index("idx_audit_log_resource", "resource_type", "resource_id"),
        Index("idx_audit_log_team", "team_id", "created_at"),
    )
