"""Business logic services for the Advisory Tracker."""

from .admin_view import AdminAggregationView, SheetOverview, TeamProgress
from .assignments import AssignmentRegistry
from .audit import AuditService
from .cascade import (
    ResponseFields,
    apply_cascade,
    normalize_changes,
    validate_for_completion,
)
from .entry_locking import EntryLockManager, EntrySnapshot, LockedEntryInfo
from .errors import (
    AssignmentClosedError,
    AssignmentNotFoundError,
    EntryLockedError,
    EntryNotFoundError,
    InvalidStateError,
    NotFoundError,
    NotLockHolderError,
    PartialSubmissionFailure,
    SheetNotFoundError,
    TrackerError,
    ValidationError,
)
from .events import (
    BufferedEventPublisher,
    DomainEvent,
    EventPublisher,
    LoggingEventPublisher,
    WebhookEventPublisher,
)
from .sheets import EntryInput, SheetCatalog
from .submission import SubmissionCoordinator, SubmissionResult
from .team_responses import TeamResponseMaterializer

__all__ = [
    # Core
    "EntryLockManager",
    "TeamResponseMaterializer",
    "SubmissionCoordinator",
    "SubmissionResult",
    "EntrySnapshot",
    "LockedEntryInfo",
    # Rules
    "ResponseFields",
    "apply_cascade",
    "normalize_changes",
    "validate_for_completion",
    # Collaborators
    "SheetCatalog",
    "EntryInput",
    "AssignmentRegistry",
    "AdminAggregationView",
    "SheetOverview",
    "TeamProgress",
    "AuditService",
    # Events
    "DomainEvent",
    "EventPublisher",
    "LoggingEventPublisher",
    "WebhookEventPublisher",
    "BufferedEventPublisher",
    # Errors
    "TrackerError",
    "EntryLockedError",
    "NotLockHolderError",
    "ValidationError",
    "NotFoundError",
    "SheetNotFoundError",
    "EntryNotFoundError",
    "AssignmentNotFoundError",
    "InvalidStateError",
    "AssignmentClosedError",
    "PartialSubmissionFailure",
]
