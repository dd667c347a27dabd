"""
Payment gateway contract.

Every gateway the engine talks to exposes two calls:

- ``verify(reference)``: confirm a guest payment and report the captured amount
- ``transfer(destination, amount, reference, currency)``: move money out,
  either back to the guest's original payment (refund) or to a payee account

``reference`` on transfer is the idempotency key; adapters forward it to the
provider so a retried release never pays twice.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    amount: Decimal
    currency: str
    provider_transaction_id: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransferDestination:
    """
    Where a transfer goes.

    kind:
        refund: back to the guest's original payment (identifier is the
            provider transaction id / payment intent)
        account: to a payee's connected account or recipient code
    """

    kind: str
    identifier: str

    REFUND = "refund"
    ACCOUNT = "account"

    @classmethod
    def refund(cls, provider_transaction_id: str) -> TransferDestination:
        return cls(cls.REFUND, provider_transaction_id)

    @classmethod
    def account(cls, identifier: str) -> TransferDestination:
        return cls(cls.ACCOUNT, identifier)


@dataclass(frozen=True)
class TransferResult:
    reference: str
    status: str
    provider_reference: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PaymentGateway(Protocol):
    name: str

    def verify(self, reference: str) -> VerificationResult: ...

    def transfer(
        self,
        destination: TransferDestination,
        amount: Decimal,
        reference: str,
        currency: str,
    ) -> TransferResult: ...


def backoff_delay(attempt: int, base: float = 60.0, max_delay: float = 3600.0) -> float:
    """
    Exponential backoff with 0-25% jitter.

    ``attempt`` is 1 for the first retry:
        1 -> base, 2 -> 2 x base, 3 -> 4 x base ... capped at max_delay
    """
    delay = min(base * (2 ** max(attempt - 1, 0)), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter
