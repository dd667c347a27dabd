"""
Payment gateway adapters.

Usage:
    from settlement.gateways import TransferDestination, get_gateway

    gateway = get_gateway(booking.gateway)
    result = gateway.transfer(
        TransferDestination.refund(payment.provider_transaction_id),
        amount,
        reference=f"booking:{booking.id}:deposit:guest",
        currency=booking.currency,
    )
"""

from settlement.gateways.base import (
    PaymentGateway,
    TransferDestination,
    TransferResult,
    VerificationResult,
    backoff_delay,
)
from settlement.gateways.registry import available_gateways, get_gateway

__all__ = [
    "PaymentGateway",
    "TransferDestination",
    "TransferResult",
    "VerificationResult",
    "available_gateways",
    "backoff_delay",
    "get_gateway",
]
