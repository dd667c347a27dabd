"""
State machine enums for settlement models.
"""

from settlement.state_machines.states import (
    BLOCKING_DISPUTE_STATUSES,
    DEPOSIT_CATEGORIES,
    ROOM_FEE_CATEGORIES,
    AdminDecision,
    BookingStatus,
    CancellationTier,
    CheckInConfirmation,
    ComponentState,
    DisputeCategory,
    DisputeOutcome,
    DisputeResponseAction,
    DisputeStatus,
    DisputeSubject,
    EscrowEventType,
    Party,
    PaymentStatus,
    ProcessingMode,
    WithdrawalStatus,
)

__all__ = [
    "BLOCKING_DISPUTE_STATUSES",
    "DEPOSIT_CATEGORIES",
    "ROOM_FEE_CATEGORIES",
    "AdminDecision",
    "BookingStatus",
    "CancellationTier",
    "CheckInConfirmation",
    "ComponentState",
    "DisputeCategory",
    "DisputeOutcome",
    "DisputeResponseAction",
    "DisputeStatus",
    "DisputeSubject",
    "EscrowEventType",
    "Party",
    "PaymentStatus",
    "ProcessingMode",
    "WithdrawalStatus",
]
