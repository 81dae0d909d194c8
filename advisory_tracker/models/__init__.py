"""SQLAlchemy ORM Models for the Advisory Tracker."""

from .base import Base, SoftDeleteMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    AssignmentStatus,
    AuditAction,
    RiskLevel,
    UserRole,
    # Users & teams
    Team,
    TeamMember,
    User,
    # Sheets
    EntryLock,
    Sheet,
    SourceEntry,
    TeamAssignment,
    TeamResponse,
    # Audit
    AuditLog,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "SoftDeleteMixin",
    "utcnow",
    "as_utc",
    # Enums
    "AssignmentStatus",
    "AuditAction",
    "RiskLevel",
    "UserRole",
    # Users & teams
    "User",
    "Team",
    "TeamMember",
    # Sheets
    "Sheet",
    "SourceEntry",
    "TeamAssignment",
    "TeamResponse",
    "EntryLock",
    # Audit
    "AuditLog",
]
