"""
Settlement services.

This module provides:
- BookingService: Pricing, reservation, payment confirmation and the stay
- EscrowService: Holds captured funds and executes releases
- DisputeService: Dispute opening, response, admin ruling and fallbacks
- WithdrawalService: Operator cash-outs from wallet balance

Usage:
    from settlement.services import BookingService, EscrowService

    booking = BookingService.confirm_payment(booking_id, "ref_123")
    result = EscrowService.execute_room_fee_split(booking.id)
"""

from settlement.services.bookings import BookingService, CreateBookingParams
from settlement.services.disputes import DisputeService, OpenDisputeParams, refund_ceiling
from settlement.services.escrow import EscrowService
from settlement.services.withdrawals import WithdrawalService

__all__ = [
    "BookingService",
    "CreateBookingParams",
    "DisputeService",
    "EscrowService",
    "OpenDisputeParams",
    "WithdrawalService",
    "refund_ceiling",
]
