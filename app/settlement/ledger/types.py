"""
Data types and money helpers for ledger operations.

All money in the settlement engine is a ``Decimal`` with two fractional
digits (the minor currency unit). Rates carry six fractional digits.
Gateways deal in integer minor units; ``to_minor_units`` converts.

Types:
    PostingParams: Parameters for posting one wallet transaction

Usage:
    from settlement.ledger.types import PostingParams, to_money

    params = PostingParams(
        wallet_id=wallet.id,
        amount=to_money("45000"),
        source=TransactionSource.ROOM_FEE,
        reference="booking:123:room_fee:operator",
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any

MONEY_PLACES = Decimal("0.01")
RATE_PLACES = Decimal("0.000001")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """
    Quantize a value to the minor currency unit.

    Uses banker's rounding so repeated splits don't drift in one direction.
    Floats are converted through ``str`` to avoid binary artefacts.
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_EVEN)


def to_rate(value: Any) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_EVEN)


def to_minor_units(amount: Decimal) -> int:
    """Convert a money amount to integer minor units (kobo, cents)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_EVEN))


def from_minor_units(units: int) -> Decimal:
    return to_money(Decimal(units) / 100)


@dataclass
class PostingParams:
    """
    Parameters for posting a single wallet transaction.

    Attributes:
        wallet_id: Wallet to credit or debit
        amount: Positive amount in the minor unit
        source: TransactionSource value describing why money moved
        reference: Idempotency key, unique across all wallet transactions
        booking_id: Booking the movement belongs to, if any
        description: Human-readable description
        metadata: Arbitrary JSON context
    """

    wallet_id: uuid.UUID
    amount: Decimal
    source: str
    reference: str
    booking_id: uuid.UUID | None = None
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.reference:
            raise ValueError("reference is required")
