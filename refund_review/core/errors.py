"""
Domain-specific exceptions for the Refund Review service.

Every exception carries a stable ``reason`` code that the presentation
layer can display or branch on, and maps to an HTTP status code in the
API layer.
"""

from typing import Any


class RefundReviewError(Exception):
    """Base exception for all refund review domain errors."""

    reason = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(RefundReviewError):
    """
    Raised when input data fails validation.

    Examples:
    - Override requested with an ``escalated`` decision
    - Empty note text

    HTTP Status: 400 Bad Request
    """

    reason = "validation_failed"


class UnauthorizedError(RefundReviewError):
    """
    Raised when no authenticated principal can be resolved.

    Examples:
    - Missing or invalid bearer token
    - Token subject has no reviewer profile

    HTTP Status: 401 Unauthorized
    """

    reason = "unauthenticated"


class AccessDeniedError(RefundReviewError):
    """
    Raised when the principal lacks the capability for an operation.

    Examples:
    - Edit without ``can_edit_transactions``
    - Escalate without ``can_escalate``

    HTTP Status: 403 Forbidden
    """

    reason = "access_denied"


class ScopeViolationError(AccessDeniedError):
    """
    Raised when the target record lies outside the principal's scope.

    Reported as access denied so the caller cannot probe for records
    outside their visibility.

    HTTP Status: 403 Forbidden
    """

    def __init__(self, message: str = "Access denied", details: dict[str, Any] | None = None):
        super().__init__(message, details={"scope_violation": True, **(details or {})})


class NotFoundError(RefundReviewError):
    """
    Raised when a requested entity does not exist.

    HTTP Status: 404 Not Found
    """

    reason = "not_found"


class WriteConflictError(RefundReviewError):
    """
    Raised when the backing store rejects a write.

    HTTP Status: 409 Conflict
    """

    reason = "write_conflict"


class StoreUnavailableError(RefundReviewError):
    """
    Raised when the backing store cannot be reached or fails transiently.

    HTTP Status: 503 Service Unavailable
    """

    reason = "store_unavailable"


class PartialWriteFailureError(RefundReviewError):
    """
    Raised when the primary state write succeeded but its audit entry did not.

    Never retried automatically; the caller decides whether to retry the
    audit append or reconcile.

    HTTP Status: 500 Internal Server Error
    """

    reason = "partial_write_failure"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        committed: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.committed = committed


ERROR_STATUS_MAP: dict[type[RefundReviewError], int] = {
    ValidationError: 400,
    UnauthorizedError: 401,
    AccessDeniedError: 403,
    NotFoundError: 404,
    WriteConflictError: 409,
    PartialWriteFailureError: 500,
    StoreUnavailableError: 503,
}


def get_status_code(error: Exception) -> int:
    """
    Get the HTTP status code for a given exception.

    Subclasses inherit the status of their nearest mapped ancestor.

    Returns:
        HTTP status code (defaults to 500 for unknown errors)
    """
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_MAP:
            return ERROR_STATUS_MAP[cls]
    return 500


def reason_for(error: Exception) -> str:
    """Return the display reason code for any exception."""
    if isinstance(error, RefundReviewError):
        return error.reason
    return RefundReviewError.reason
