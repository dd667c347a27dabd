"""
State enums for settlement models.

These are Django TextChoices for database storage and admin integration;
the lifecycle enums back django-fsm fields.

State Machines Overview:

Booking:
    pending → paid → checked_in → checked_out → completed
    checked_in → dispute_opened → checked_in (dispute ended, stay continues)
    dispute_opened → checked_out (checkout, or stay terminated by full refund)
    pending/paid → cancelled

Payment:
    initiated → held → partially_released → settled
    initiated → failed
    held/partially_released → refunded

Dispute:
    open → awaiting_response → resolved
    awaiting_response → escalated → resolved
    open/awaiting_response/escalated → cancelled
"""

from django.db import models


class BookingStatus(models.TextChoices):
    """
    Lifecycle of a single stay.

    Terminal states: COMPLETED, CANCELLED
    """

    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    CHECKED_IN = "checked_in", "Checked In"
    DISPUTE_OPENED = "dispute_opened", "Dispute Opened"
    CHECKED_OUT = "checked_out", "Checked Out"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class PaymentStatus(models.TextChoices):
    """
    Lifecycle of the captured funds for a booking.

    PARTIALLY_RELEASED means the room fee has been settled while the
    security deposit is still in escrow.
    """

    INITIATED = "initiated", "Initiated"
    HELD = "held", "Held"
    PARTIALLY_RELEASED = "partially_released", "Partially Released"
    SETTLED = "settled", "Settled"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"


class ComponentState(models.TextChoices):
    """
    Settlement state of one escrowed component (room fee or deposit).

    FAILED is retried by the sweeps with backoff; ADMIN_REVIEW is parked
    until an operator retries it manually.
    """

    NOT_HELD = "not_held", "Not Held"
    HELD = "held", "Held"
    SETTLED = "settled", "Settled"
    FAILED = "failed", "Failed"
    ADMIN_REVIEW = "admin_review", "Admin Review"


class CheckInConfirmation(models.TextChoices):
    GUEST = "guest", "Guest Confirmed"
    OPERATOR = "operator", "Operator Confirmed"
    AUTO_FALLBACK = "auto_fallback", "Automatic Fallback"


class ProcessingMode(models.TextChoices):
    LOCAL = "local", "Local"
    INTERNATIONAL = "international", "International"


class CancellationTier(models.TextChoices):
    EARLY = "early", "Early"
    NONE = "none", "None"


class DisputeSubject(models.TextChoices):
    ROOM_FEE = "room_fee", "Room Fee"
    SECURITY_DEPOSIT = "security_deposit", "Security Deposit"


class DisputeCategory(models.TextChoices):
    """Claim categories; the first four apply to room fee disputes."""

    SAFETY_UNINHABITABLE = "SAFETY_UNINHABITABLE", "Safety / Uninhabitable"
    MAJOR_MISREPRESENTATION = "MAJOR_MISREPRESENTATION", "Major Misrepresentation"
    MISSING_AMENITIES_CLEANLINESS = (
        "MISSING_AMENITIES_CLEANLINESS",
        "Missing Amenities / Cleanliness",
    )
    MINOR_INCONVENIENCE = "MINOR_INCONVENIENCE", "Minor Inconvenience"
    PROPERTY_DAMAGE = "PROPERTY_DAMAGE", "Property Damage"
    MISSING_ITEMS = "MISSING_ITEMS", "Missing Items"
    CLEANING_REQUIRED = "CLEANING_REQUIRED", "Cleaning Required"
    OTHER_DEPOSIT_CLAIM = "OTHER_DEPOSIT_CLAIM", "Other Deposit Claim"


ROOM_FEE_CATEGORIES = frozenset(
    {
        DisputeCategory.SAFETY_UNINHABITABLE,
        DisputeCategory.MAJOR_MISREPRESENTATION,
        DisputeCategory.MISSING_AMENITIES_CLEANLINESS,
        DisputeCategory.MINOR_INCONVENIENCE,
    }
)
DEPOSIT_CATEGORIES = frozenset(
    {
        DisputeCategory.PROPERTY_DAMAGE,
        DisputeCategory.MISSING_ITEMS,
        DisputeCategory.CLEANING_REQUIRED,
        DisputeCategory.OTHER_DEPOSIT_CLAIM,
    }
)


class DisputeStatus(models.TextChoices):
    OPEN = "open", "Open"
    AWAITING_RESPONSE = "awaiting_response", "Awaiting Response"
    ESCALATED = "escalated", "Escalated"
    RESOLVED = "resolved", "Resolved"
    CANCELLED = "cancelled", "Cancelled"


BLOCKING_DISPUTE_STATUSES = (
    DisputeStatus.OPEN,
    DisputeStatus.AWAITING_RESPONSE,
    DisputeStatus.ESCALATED,
)


class DisputeResponseAction(models.TextChoices):
    ACCEPT = "accept", "Accept"
    REJECT_ESCALATE = "reject_escalate", "Reject and Escalate"


class AdminDecision(models.TextChoices):
    """Admin ruling, always read from the guest's perspective."""

    FULL_REFUND = "full_refund", "Full Refund"
    PARTIAL_REFUND = "partial_refund", "Partial Refund"
    NO_REFUND = "no_refund", "No Refund"


class DisputeOutcome(models.TextChoices):
    FULL_REFUND_EXECUTED = "FULL_REFUND_EXECUTED", "Full Refund Executed"
    PARTIAL_REFUND_EXECUTED = "PARTIAL_REFUND_EXECUTED", "Partial Refund Executed"
    NO_REFUND_EXECUTED = "NO_REFUND_EXECUTED", "No Refund Executed"
    DEPOSIT_RETURNED = "DEPOSIT_RETURNED", "Deposit Returned"
    DEPOSIT_PARTIAL = "DEPOSIT_PARTIAL", "Deposit Partially Returned"
    DEPOSIT_FORFEITED = "DEPOSIT_FORFEITED", "Deposit Forfeited"


class EscrowEventType(models.TextChoices):
    HOLD_ROOM_FEE = "HOLD_ROOM_FEE", "Hold Room Fee"
    HOLD_SECURITY_DEPOSIT = "HOLD_SECURITY_DEPOSIT", "Hold Security Deposit"
    RELEASE_CLEANING_FEE = "RELEASE_CLEANING_FEE", "Release Cleaning Fee"
    COLLECT_SERVICE_FEE = "COLLECT_SERVICE_FEE", "Collect Service Fee"
    COLLECT_PLATFORM_FEE = "COLLECT_PLATFORM_FEE", "Collect Platform Fee"
    RELEASE_ROOM_FEE_TO_OPERATOR = (
        "RELEASE_ROOM_FEE_TO_OPERATOR",
        "Release Room Fee to Operator",
    )
    COLLECT_COMMISSION = "COLLECT_COMMISSION", "Collect Commission"
    REFUND_ROOM_FEE_TO_GUEST = "REFUND_ROOM_FEE_TO_GUEST", "Refund Room Fee to Guest"
    RELEASE_DEPOSIT_TO_GUEST = "RELEASE_DEPOSIT_TO_GUEST", "Release Deposit to Guest"
    PAY_OPERATOR_FROM_DEPOSIT = (
        "PAY_OPERATOR_FROM_DEPOSIT",
        "Pay Operator from Deposit",
    )


class Party(models.TextChoices):
    GUEST = "GUEST", "Guest"
    ESCROW = "ESCROW", "Escrow"
    OPERATOR = "OPERATOR", "Operator"
    PLATFORM = "PLATFORM", "Platform"


class WithdrawalStatus(models.TextChoices):
    """
    Operator cash-out lifecycle.

    pending → processing → completed
    pending/processing → failed (debit reversed)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
