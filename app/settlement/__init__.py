"""
Settlement app: escrow and settlement for stay bookings.

This app handles:
- Pricing: service, processing and withdrawal fees, tiered commission
- Escrow custody of room fees and security deposits
- Time-boxed disputes that change the room fee or deposit split
- Timer-driven releases, check-in/checkout fallbacks
- Operator and platform wallets with an append-only ledger
- Operator withdrawals through the payment gateways

Related apps:
    - notifications: Booking, dispute and payout notifications

Usage:
    from settlement.services import BookingService, EscrowService

    booking = BookingService.confirm_payment(booking_id, provider_reference)
    result = EscrowService.execute_room_fee_split(booking.id)
"""
