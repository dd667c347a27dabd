"""
Settlement-specific exceptions.

Exception Hierarchy:
    InvalidAmount - Non-positive or malformed money amounts (inherits ValidationError)
    BookingNotFoundError / DisputeNotFoundError - Lookup failures (inherit NotFoundError)

    ConfigurationMissing - No fee tier/config matches (inherits ConfigurationError)

    ProviderError - Gateway call failed (inherits ExternalServiceError)
    ├── PaystackError - Paystack HTTP API failures
    └── StripeGatewayError - Stripe SDK failures

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)
    DisputeBlockedError - Release blocked by an open dispute (inherits ConflictError)
    DisputeWindowClosedError - Dispute opened too late (inherits ConflictError)
    CancellationNotAllowedError - Cancelled inside the notice period (inherits ConflictError)

Usage:
    from settlement.exceptions import InvalidStateTransitionError

    try:
        booking.check_in()
    except TransitionNotAllowed:
        raise InvalidStateTransitionError(
            f"Cannot check in booking from '{booking.status}'",
            details={"current_state": booking.status, "transition": "check_in"},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Settlement Domain Exceptions
# =============================================================================


class InvalidAmount(ValidationError):
    """
    Raised for money amounts that cannot be priced or moved.

    Example:
        if room_fee <= 0:
            raise InvalidAmount(
                "Room fee must be positive",
                details={"room_fee": str(room_fee)},
            )
    """

    default_error_code: str = "INVALID_AMOUNT"


class BookingNotFoundError(NotFoundError):
    default_error_code: str = "BOOKING_NOT_FOUND"


class DisputeNotFoundError(NotFoundError):
    default_error_code: str = "DISPUTE_NOT_FOUND"


class ConfigurationMissing(ConfigurationError):
    """Raised when no commission tier or fee schedule covers an amount."""

    default_error_code: str = "CONFIGURATION_MISSING"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class ProviderError(ExternalServiceError):
    """
    Base exception for payment gateway failures.

    Use is_retryable to determine retry behavior:
    - True: Transient error (timeouts, rate limits, 5xx), retry with backoff
    - False: Permanent error (invalid account, bad request), park for review
    """

    default_error_code: str = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        is_retryable: bool = False,
        provider_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(message, error_code=error_code, details=details)
        self.is_retryable = is_retryable
        self.provider_code = provider_code


class PaystackError(ProviderError):
    default_error_code: str = "PAYSTACK_ERROR"


class StripeGatewayError(ProviderError):
    default_error_code: str = "STRIPE_ERROR"


# =============================================================================
# Concurrency & State Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    The caller should either retry with fresh data or abort.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Example:
        raise LockAcquisitionError(
            "Failed to acquire lock 'booking:123' within 5s",
            details={"key": "booking:123", "timeout": 5},
        )
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed with our standard error format.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


class DisputeBlockedError(ConflictError):
    """Raised when a release is attempted while a dispute is open on it."""

    default_error_code: str = "DISPUTE_BLOCKED"


class DisputeWindowClosedError(ConflictError):
    default_error_code: str = "DISPUTE_WINDOW_CLOSED"


class CancellationNotAllowedError(ConflictError):
    """Raised when a paid booking is cancelled too close to check-in."""

    default_error_code: str = "CANCELLATION_NOT_ALLOWED"


__all__ = [
    "InvalidAmount",
    "BookingNotFoundError",
    "DisputeNotFoundError",
    "ConfigurationMissing",
    "ProviderError",
    "PaystackError",
    "StripeGatewayError",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
    "DisputeBlockedError",
    "DisputeWindowClosedError",
    "CancellationNotAllowedError",
]
