"""Typed errors raised by the psychosocial automation core.

Taxonomy:
    NotFoundError : assessment or employee missing; fatal for a job
    ValidationFailureError : malformed response payload; fatal for a job
    TransientStoreError : query/write failure against the store; retryable
    NotificationError : notification dispatch failed; never fatal
    ConflictError : a uniqueness invariant would be violated
"""

from enum import Enum

from sqlalchemy.exc import SQLAlchemyError


class ErrorCode(str, Enum):
    """Machine-readable error codes carried by every PsychosocialError."""

    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    STORE_UNAVAILABLE = "store_unavailable"
    NOTIFICATION_FAILED = "notification_failed"
    CONFLICT = "conflict"


class PsychosocialError(Exception):
    """Base class for all service errors.

    Args:
        message: Human-readable description surfaced to callers.
        error_code: Machine-readable classification.
    """

    default_code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, error_code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code


class NotFoundError(PsychosocialError):
    """Raised when an assessment response or its employee does not exist."""

    default_code = ErrorCode.NOT_FOUND


class ValidationFailureError(PsychosocialError):
    """Raised when an assessment response payload is malformed."""

    default_code = ErrorCode.VALIDATION_FAILED


class TransientStoreError(PsychosocialError):
    """Raised when a read or write against the backing store fails."""

    default_code = ErrorCode.STORE_UNAVAILABLE


class NotificationError(PsychosocialError):
    """Raised when a notification could not be recorded or sent."""

    default_code = ErrorCode.NOTIFICATION_FAILED


class ConflictError(PsychosocialError):
    """Raised when a write would violate a uniqueness invariant."""

    default_code = ErrorCode.CONFLICT


class DuplicateActionPlanError(ConflictError):
    """Raised when an action plan already exists for an assessment response."""


def is_retryable(exc: BaseException) -> bool:
    """Decide whether a failed job should be retried.

    NotFound and ValidationFailure errors can never succeed on a retry.
    Store failures (typed or raw SQLAlchemy) and unexpected exceptions can.

    Args:
        exc: The exception raised while processing a job.

    Returns:
        True if the job may be re-queued.
    """
    if isinstance(exc, (NotFoundError, ValidationFailureError)):
        return False
    if isinstance(exc, (TransientStoreError, SQLAlchemyError)):
        return True
    return not isinstance(exc, PsychosocialError)
