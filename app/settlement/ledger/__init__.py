"""
Wallet ledger - per-payee balances backed by an append-only transaction log.

Public API:
    Models:
        Wallet - Running balance per operator / platform
        WalletTransaction - Immutable CREDIT/DEBIT record
        WalletOwnerType, TransactionType, TransactionSource, TransactionStatus

    Service:
        WalletService - credit, debit, post (batch), adjust_pending,
                        recompute_balance, verify_balance

    Types:
        PostingParams - Parameters for one wallet movement
        to_money, to_minor_units - Decimal money helpers

    Exceptions:
        LedgerError, WalletNotFound, InsufficientBalance

Usage:
    from settlement.ledger import WalletService, PostingParams, TransactionSource

    WalletService.credit(PostingParams(
        wallet_id=WalletService.platform_wallet().id,
        amount=Decimal("1100"),
        source=TransactionSource.SERVICE_FEE,
        reference=f"booking:{booking.id}:service_fee",
    ))
"""

from .exceptions import InsufficientBalance, LedgerError, WalletNotFound
from .models import (
    TransactionSource,
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletOwnerType,
    WalletTransaction,
)
from .services import WalletService
from .types import PostingParams, to_minor_units, to_money

__all__ = [
    # Models
    "Wallet",
    "WalletTransaction",
    "WalletOwnerType",
    "TransactionType",
    "TransactionSource",
    "TransactionStatus",
    # Service
    "WalletService",
    # Types
    "PostingParams",
    "to_minor_units",
    "to_money",
    # Exceptions
    "LedgerError",
    "WalletNotFound",
    "InsufficientBalance",
]
