"""
Base exception classes for application-wide error handling.

Every domain error raised by a service derives from BaseApplicationError so
that views, workers and admin actions can treat them uniformly:

- ``message`` is human readable
- ``error_code`` is machine readable and stable
- ``details`` carries structured context (ids, amounts, states)
- ``http_status`` is what an API view should answer with

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed input, rejected before any state change
    ├── NotFoundError - Resource not found
    ├── PermissionDeniedError - Caller may not act on the resource
    ├── ConflictError - Operation not permitted in the current state
    ├── ExternalServiceError - Third-party (gateway) failures
    └── ConfigurationError - Missing or invalid platform configuration

Usage:
    from core.exceptions import BaseApplicationError, ConflictError

    raise ConflictError(
        "Booking is not checked in",
        error_code="INVALID_BOOKING_STATE",
        details={"booking_id": str(booking.id), "status": booking.status},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Dispute window has closed",
                "error_code": "DISPUTE_WINDOW_CLOSED",
                "details": {"booking_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for malformed amounts, dates outside the allowed range, unknown
    categories and similar service-layer checks. DRF serializers still
    handle request-shape validation.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource is not found."""

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller may not perform an operation.

    Example:
        if dispute.opened_by == actor_id:
            raise PermissionDeniedError(
                "Claimant cannot respond to their own dispute",
                error_code="NOT_RESPONDENT",
            )
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Transitions that are not permitted right now
    - Duplicate or mismatched idempotent requests
    - Optimistic locking failures
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but don't expose provider
    internals to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502


class ConfigurationError(BaseApplicationError):
    """
    Raised when required platform configuration is missing or invalid.

    Pricing refuses to run on a broken fee schedule rather than guess.
    """

    default_error_code: str = "CONFIGURATION_ERROR"
    http_status: int = 503
