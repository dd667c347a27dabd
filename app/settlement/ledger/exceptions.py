"""
Wallet ledger exceptions.

Exception Hierarchy:
    LedgerError (base)
    ├── WalletNotFound - Wallet lookup failures
    └── InsufficientBalance - Debit larger than the available balance
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal
    from typing import Any


class LedgerError(BaseApplicationError):
    """Base exception for all wallet ledger operations."""

    default_error_code: str = "LEDGER_ERROR"


class WalletNotFound(LedgerError):
    default_error_code: str = "WALLET_NOT_FOUND"
    http_status: int = 404


class InsufficientBalance(LedgerError):
    """
    Raised when a wallet cannot cover a debit.

    Attributes:
        wallet_id: The wallet that was short
        required: Amount requested
        available: Available balance at the time of the check
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"
    http_status: int = 409

    def __init__(
        self,
        wallet_id: uuid.UUID,
        required: Decimal,
        available: Decimal,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.wallet_id = wallet_id
        self.required = required
        self.available = available

        full_details = {
            "wallet_id": str(wallet_id),
            "required": str(required),
            "available": str(available),
        }
        if details:
            full_details.update(details)

        super().__init__(
            message=(
                f"Wallet {wallet_id} has insufficient balance: "
                f"required {required}, available {available}"
            ),
            error_code=error_code,
            details=full_details,
        )
