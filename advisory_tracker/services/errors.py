"""Typed errors raised by the tracker services.

The HTTP layer maps each of these to a status code (see ``api/errors.py``).
"""

from datetime import datetime
from typing import Any
from uuid import UUID


class TrackerError(Exception):
    """Base exception for tracker operations."""

    code = "tracker_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# LOCKING
# =============================================================================


class EntryLockedError(TrackerError):
    """Another user holds an active lock on the entry."""

    code = "entry_locked"

    def __init__(
        self,
        entry_id: UUID,
        locked_by_user_id: UUID,
        locked_by_name: str | None,
        expires_at: datetime | None,
    ):
        holder = locked_by_name or str(locked_by_user_id)
        super().__init__(
            f"Entry is locked by {holder}",
            details={
                "entry_id": str(entry_id),
                "locked_by": {
                    "id": str(locked_by_user_id),
                    "name": locked_by_name,
                },
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        self.entry_id = entry_id
        self.locked_by_user_id = locked_by_user_id
        self.locked_by_name = locked_by_name
        self.expires_at = expires_at


class NotLockHolderError(TrackerError):
    """Caller tried to edit or unlock without holding the lock."""

    code = "not_lock_holder"


# =============================================================================
# VALIDATION
# =============================================================================


class ValidationError(TrackerError):
    """Invalid or missing field values. ``details`` maps field -> problem."""

    code = "validation_error"

    def __init__(self, message: str, field_errors: dict[str, str] | None = None):
        super().__init__(message, details={"fields": field_errors or {}})
        self.field_errors = field_errors or {}


# =============================================================================
# LOOKUP
# =============================================================================


class NotFoundError(TrackerError):
    code = "not_found"


class SheetNotFoundError(NotFoundError):
    code = "sheet_not_found"


class EntryNotFoundError(NotFoundError):
    code = "entry_not_found"


class AssignmentNotFoundError(NotFoundError):
    code = "assignment_not_found"


# =============================================================================
# STATE
# =============================================================================


class InvalidStateError(TrackerError):
    """Operation not allowed in the assignment's current state."""

    code = "invalid_state"


class AssignmentClosedError(InvalidStateError):
    """The assignment is completed; only status and comments may change."""

    code = "assignment_closed"


class PartialSubmissionFailure(TrackerError):
    """Some entries failed during sheet submission; the sheet stays open."""

    code = "partial_submission_failure"

    def __init__(self, failures: dict[UUID, str]):
        super().__init__(
            f"{len(failures)} entries need attention before the sheet can be submitted",
            details={
                "failed_entries": [
                    {"entry_id": str(entry_id), "reason": reason}
                    for entry_id, reason in failures.items()
                ]
            },
        )
        self.failures = failures
