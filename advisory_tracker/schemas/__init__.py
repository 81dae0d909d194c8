"""Advisory Tracker API Schemas.

Schemas are organized by domain:
- base: Common types, pagination, errors
- responses: Team response payloads
- sheets: Sheets, entries, assignments, locks, admin views
- audit: Audit log
"""

from .audit import AuditLogEntry, AuditLogResponse
from .base import (
    ErrorDetail,
    ErrorResponse,
    PaginatedResponse,
    TeamRef,
    TrackerBaseModel,
    UserRef,
)
from .responses import (
    DraftRequest,
    ResponseFieldsOut,
    ResponseFieldsPayload,
    StatusCommentsRequest,
    TeamResponseOut,
)
from .sheets import (
    AssignedSheetOut,
    AssignmentOut,
    AvailableEntriesOut,
    CreateSheetRequest,
    DistributeRequest,
    EntryIn,
    EntrySnapshotOut,
    LockedEntryOut,
    LockOut,
    LockRequest,
    ReleaseExpiredOut,
    ReopenRequest,
    SheetOut,
    SheetOverviewOut,
    SheetWithEntriesOut,
    SourceEntryOut,
    StartSheetRequest,
    SubmissionOut,
    SubmitSheetRequest,
    TeamProgressOut,
    TeamSnapshotOut,
    UnlockOut,
    UnlockRequest,
)

__all__ = [
    # Base
    "TrackerBaseModel",
    "PaginatedResponse",
    "ErrorDetail",
    "ErrorResponse",
    "UserRef",
    "TeamRef",
    # Responses
    "ResponseFieldsPayload",
    "ResponseFieldsOut",
    "TeamResponseOut",
    "DraftRequest",
    "StatusCommentsRequest",
    # Sheets
    "EntryIn",
    "CreateSheetRequest",
    "SourceEntryOut",
    "SheetOut",
    "SheetWithEntriesOut",
    "DistributeRequest",
    "AssignmentOut",
    "AssignedSheetOut",
    "StartSheetRequest",
    "SubmitSheetRequest",
    "SubmissionOut",
    "ReopenRequest",
    # Locks
    "LockRequest",
    "UnlockRequest",
    "LockOut",
    "UnlockOut",
    "ReleaseExpiredOut",
    "LockedEntryOut",
    "EntrySnapshotOut",
    "AvailableEntriesOut",
    # Admin
    "TeamProgressOut",
    "SheetOverviewOut",
    "TeamSnapshotOut",
    # Audit
    "AuditLogEntry",
    "AuditLogResponse",
]
