"""
Wallet ledger service.

All balance changes go through WalletService so that every change has a
matching append-only WalletTransaction and concurrent writers serialize on
the wallet row.

Usage:
    from settlement.ledger.services import WalletService
    from settlement.ledger.types import PostingParams

    operator = WalletService.get_or_create_wallet(WalletOwnerType.OPERATOR, operator_id)
    WalletService.credit(PostingParams(
        wallet_id=operator.id,
        amount=Decimal("5000"),
        source=TransactionSource.CLEANING_FEE,
        reference=f"booking:{booking.id}:cleaning_fee",
        booking_id=booking.id,
    ))
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction

from core.services import BaseService
from settlement.ledger.exceptions import InsufficientBalance, WalletNotFound
from settlement.ledger.models import (
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletOwnerType,
    WalletTransaction,
)
from settlement.ledger.types import PostingParams, to_money

if TYPE_CHECKING:
    from collections.abc import Iterable


class WalletService(BaseService):
    """
    Service class for wallet operations.

    Key features:
    - Idempotency via unique transaction references (safe to retry)
    - Wallet rows locked in id order to prevent deadlocks
    - Balance validation before debits
    """

    @staticmethod
    def get_or_create_wallet(
        owner_type: WalletOwnerType | str,
        owner_id: uuid.UUID | str,
        currency: str | None = None,
    ) -> Wallet:
        currency = currency or settings.SETTLEMENT_CURRENCY
        try:
            with transaction.atomic():
                wallet, _ = Wallet.objects.get_or_create(
                    owner_type=owner_type,
                    owner_id=owner_id,
                    currency=currency,
                )
        except IntegrityError:
            wallet = Wallet.objects.get(
                owner_type=owner_type, owner_id=owner_id, currency=currency
            )
        return wallet

    @classmethod
    def platform_wallet(cls, currency: str | None = None) -> Wallet:
        return cls.get_or_create_wallet(
            WalletOwnerType.PLATFORM,
            uuid.UUID(str(settings.PLATFORM_WALLET_OWNER_ID)),
            currency,
        )

    @classmethod
    def operator_wallet(cls, operator_id: uuid.UUID, currency: str | None = None) -> Wallet:
        return cls.get_or_create_wallet(WalletOwnerType.OPERATOR, operator_id, currency)

    @staticmethod
    def get_wallet(owner_type: str, owner_id: uuid.UUID, currency: str | None = None) -> Wallet:
        try:
            return Wallet.objects.get(
                owner_type=owner_type,
                owner_id=owner_id,
                currency=currency or settings.SETTLEMENT_CURRENCY,
            )
        except Wallet.DoesNotExist:
            raise WalletNotFound(
                f"No {owner_type} wallet for {owner_id}",
                details={"owner_type": owner_type, "owner_id": str(owner_id)},
            )

    @classmethod
    def credit(cls, params: PostingParams) -> WalletTransaction:
        return cls.post([(TransactionType.CREDIT, params)])[0]

    @classmethod
    def debit(cls, params: PostingParams) -> WalletTransaction:
        return cls.post([(TransactionType.DEBIT, params)])[0]

    @classmethod
    def post(
        cls,
        postings: Iterable[tuple[TransactionType | str, PostingParams]],
    ) -> list[WalletTransaction]:
        """
        Post several wallet movements atomically.

        Idempotent per posting: a reference that already exists returns the
        stored transaction without touching the balance. Postings are applied
        in order, so earlier credits can fund later debits in the same batch.

        Raises:
            WalletNotFound: If any wallet doesn't exist
            InsufficientBalance: If a debit exceeds the available balance
        """
        postings = list(postings)
        if not postings:
            return []

        results: list[WalletTransaction] = []
        with transaction.atomic():
            wallet_ids = {params.wallet_id for _, params in postings}
            wallets = {
                wallet.id: wallet
                for wallet in Wallet.objects.filter(id__in=wallet_ids)
                .select_for_update()
                .order_by("id")
            }
            for wallet_id in wallet_ids:
                if wallet_id not in wallets:
                    raise WalletNotFound(
                        f"Wallet {wallet_id} not found",
                        details={"wallet_id": str(wallet_id)},
                    )

            touched: set[uuid.UUID] = set()
            for txn_type, params in postings:
                # Idempotency before validation so replays never hit balance checks
                existing = WalletTransaction.objects.filter(reference=params.reference).first()
                if existing is not None:
                    results.append(existing)
                    continue

                wallet = wallets[params.wallet_id]
                amount = to_money(params.amount)
                if txn_type == TransactionType.DEBIT:
                    if wallet.balance_available < amount:
                        raise InsufficientBalance(
                            wallet_id=wallet.id,
                            required=amount,
                            available=wallet.balance_available,
                        )
                    wallet.balance_available -= amount
                else:
                    wallet.balance_available += amount

                try:
                    with transaction.atomic():
                        txn = WalletTransaction.objects.create(
                            wallet=wallet,
                            type=txn_type,
                            source=params.source,
                            status=TransactionStatus.COMPLETED,
                            amount=amount,
                            currency=wallet.currency,
                            balance_after=wallet.balance_available,
                            reference=params.reference,
                            booking_id=params.booking_id,
                            description=params.description,
                            metadata=params.metadata,
                        )
                except IntegrityError:
                    # Another writer recorded this reference first
                    if txn_type == TransactionType.DEBIT:
                        wallet.balance_available += amount
                    else:
                        wallet.balance_available -= amount
                    txn = WalletTransaction.objects.get(reference=params.reference)
                else:
                    touched.add(wallet.id)

                results.append(txn)

            for wallet_id in touched:
                wallets[wallet_id].save(update_fields=["balance_available"])

        cls.get_logger().info(
            "Wallet postings recorded",
            extra={
                "references": [params.reference for _, params in postings],
                "wallets": [str(w) for w in touched],
            },
        )
        return results

    @classmethod
    def adjust_pending(cls, wallet_id: uuid.UUID, delta: Decimal) -> Wallet:
        """
        Move the in-flight withdrawal balance by ``delta`` under the row lock.

        The pending balance tracks gateway transfers only; it never feeds the
        available balance.
        """
        with transaction.atomic():
            wallet = Wallet.objects.select_for_update().get(id=wallet_id)
            new_pending = wallet.balance_pending + to_money(delta)
            if new_pending < 0:
                raise InsufficientBalance(
                    wallet_id=wallet.id,
                    required=-to_money(delta),
                    available=wallet.balance_pending,
                    error_code="INSUFFICIENT_PENDING_BALANCE",
                )
            wallet.balance_pending = new_pending
            wallet.save(update_fields=["balance_pending"])
        return wallet

    @staticmethod
    def recompute_balance(wallet_id: uuid.UUID) -> Decimal:
        """Balance derived purely from the transaction log."""
        try:
            wallet = Wallet.objects.get(id=wallet_id)
        except Wallet.DoesNotExist:
            raise WalletNotFound(
                f"Wallet {wallet_id} not found",
                details={"wallet_id": str(wallet_id)},
            )
        return wallet.computed_balance()

    @classmethod
    def verify_balance(cls, wallet_id: uuid.UUID) -> bool:
        wallet = Wallet.objects.get(id=wallet_id)
        computed = wallet.computed_balance()
        if computed != wallet.balance_available:
            cls.get_logger().error(
                "Wallet balance drift detected",
                extra={
                    "wallet_id": str(wallet_id),
                    "stored": str(wallet.balance_available),
                    "computed": str(computed),
                },
            )
            return False
        return True

    @staticmethod
    def recent_transactions(wallet_id: uuid.UUID, limit: int = 50) -> list[WalletTransaction]:
        return list(
            WalletTransaction.objects.filter(wallet_id=wallet_id).order_by("-created_at")[:limit]
        )
