"""Translate service errors into HTTP responses."""

import logging

from fastapi import HTTPException, status

from ..schemas import ErrorDetail, ErrorResponse
from ..services.errors import (
    EntryLockedError,
    InvalidStateError,
    NotFoundError,
    NotLockHolderError,
    PartialSubmissionFailure,
    TrackerError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases
STATUS_CODES: list[tuple[type[TrackerError], int]] = [
    (EntryLockedError, status.HTTP_409_CONFLICT),
    (NotLockHolderError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (PartialSubmissionFailure, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(error: TrackerError) -> int:
    for error_type, code in STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(error: TrackerError) -> ErrorResponse:
    details: list[ErrorDetail] = []
    if isinstance(error, ValidationError):
        details = [
            ErrorDetail(field=name, message=problem, code="invalid")
            for name, problem in sorted(error.field_errors.items())
        ]
    elif isinstance(error, PartialSubmissionFailure):
        details = [
            ErrorDetail(field=str(entry_id), message=reason, code="entry_failed")
            for entry_id, reason in error.failures.items()
        ]
    return ErrorResponse(
        error=error.code,
        message=error.message,
        details=details,
        context=error.details,
    )


def to_http_exception(error: TrackerError) -> HTTPException:
    code = status_for(error)
    if code >= 500:
        logger.warning(f"{error.code}: {error.message}")
    return HTTPException(status_code=code, detail=error_body(error).model_dump(mode="json"))
