"""
Tests for the wallet ledger.

Covers:
- Wallet creation per (owner type, owner, currency)
- Credits and debits with idempotent references
- Atomic multi-posting batches
- Pending balance adjustments
- Balance verification against the transaction log
- Append-only transaction rows
"""

import uuid
from decimal import Decimal

import pytest

from settlement.ledger import (
    InsufficientBalance,
    PostingParams,
    TransactionSource,
    TransactionType,
    WalletNotFound,
    WalletOwnerType,
    WalletService,
    WalletTransaction,
)
from settlement.ledger.types import from_minor_units, to_minor_units, to_money


@pytest.fixture
def operator_wallet(db):
    return WalletService.operator_wallet(uuid.uuid4(), "NGN")


def credit(wallet, amount, reference, source=TransactionSource.ROOM_FEE):
    return WalletService.credit(
        PostingParams(wallet_id=wallet.id, amount=Decimal(amount), source=source, reference=reference)
    )


class TestMoneyHelpers:
    def test_to_money_rounds_half_even(self):
        assert to_money("10.005") == Decimal("10.00")
        assert to_money("10.015") == Decimal("10.02")
        assert to_money(Decimal("10.004")) == Decimal("10.00")

    def test_minor_units(self):
        assert to_minor_units(Decimal("661.00")) == 66100
        assert from_minor_units(66100) == Decimal("661.00")

    def test_posting_params_reject_non_positive_amount(self):
        with pytest.raises(ValueError):
            PostingParams(wallet_id=uuid.uuid4(), amount=Decimal("0"), source="room_fee", reference="r")

    def test_posting_params_require_reference(self):
        with pytest.raises(ValueError):
            PostingParams(wallet_id=uuid.uuid4(), amount=Decimal("1"), source="room_fee", reference="")


@pytest.mark.django_db
class TestWallets:
    """Tests for wallet lookup and creation."""

    def test_get_or_create_is_idempotent(self):
        owner_id = uuid.uuid4()

        first = WalletService.operator_wallet(owner_id, "NGN")
        second = WalletService.operator_wallet(owner_id, "NGN")

        assert first.id == second.id
        assert first.balance_available == Decimal("0.00")

    def test_wallet_per_currency(self):
        owner_id = uuid.uuid4()

        ngn = WalletService.operator_wallet(owner_id, "NGN")
        usd = WalletService.operator_wallet(owner_id, "USD")

        assert ngn.id != usd.id

    def test_platform_wallet_uses_configured_owner(self, settings):
        wallet = WalletService.platform_wallet("NGN")

        assert wallet.owner_type == WalletOwnerType.PLATFORM
        assert str(wallet.owner_id) == str(settings.PLATFORM_WALLET_OWNER_ID)

    def test_get_wallet_missing(self):
        with pytest.raises(WalletNotFound) as exc_info:
            WalletService.get_wallet(WalletOwnerType.OPERATOR, uuid.uuid4(), "NGN")

        assert exc_info.value.http_status == 404


@pytest.mark.django_db
class TestPostings:
    """Tests for credits, debits and batches."""

    def test_credit_increases_balance(self, operator_wallet):
        txn = credit(operator_wallet, "45000", "booking:1:room_fee:operator")

        operator_wallet.refresh_from_db()
        assert operator_wallet.balance_available == Decimal("45000.00")
        assert txn.type == TransactionType.CREDIT
        assert txn.balance_after == Decimal("45000.00")
        assert txn.currency == "NGN"

    def test_debit_decreases_balance(self, operator_wallet):
        credit(operator_wallet, "5000", "credit-1")

        WalletService.debit(PostingParams(
            wallet_id=operator_wallet.id,
            amount=Decimal("2000"),
            source=TransactionSource.WITHDRAWAL,
            reference="debit-1",
        ))

        operator_wallet.refresh_from_db()
        assert operator_wallet.balance_available == Decimal("3000.00")

    def test_debit_exceeding_balance_raises(self, operator_wallet):
        credit(operator_wallet, "1000", "credit-1")

        with pytest.raises(InsufficientBalance) as exc_info:
            WalletService.debit(PostingParams(
                wallet_id=operator_wallet.id,
                amount=Decimal("1000.01"),
                source=TransactionSource.WITHDRAWAL,
                reference="debit-1",
            ))

        assert exc_info.value.error_code == "INSUFFICIENT_BALANCE"
        assert exc_info.value.http_status == 409
        operator_wallet.refresh_from_db()
        assert operator_wallet.balance_available == Decimal("1000.00")

    def test_repeated_reference_posts_once(self, operator_wallet):
        """Replaying a posting returns the stored transaction without moving money."""
        first = credit(operator_wallet, "5000", "booking:1:cleaning_fee")
        second = credit(operator_wallet, "5000", "booking:1:cleaning_fee")

        operator_wallet.refresh_from_db()
        assert first.id == second.id
        assert operator_wallet.balance_available == Decimal("5000.00")
        assert WalletTransaction.objects.filter(reference="booking:1:cleaning_fee").count() == 1

    def test_batch_is_atomic(self, operator_wallet):
        """A failing debit rolls back earlier postings in the same batch."""
        platform = WalletService.platform_wallet("NGN")

        with pytest.raises(InsufficientBalance):
            WalletService.post([
                (
                    TransactionType.CREDIT,
                    PostingParams(platform.id, Decimal("100"), TransactionSource.SERVICE_FEE, "batch-credit"),
                ),
                (
                    TransactionType.DEBIT,
                    PostingParams(operator_wallet.id, Decimal("100"), TransactionSource.WITHDRAWAL, "batch-debit"),
                ),
            ])

        platform.refresh_from_db()
        assert platform.balance_available == Decimal("0.00")
        assert not WalletTransaction.objects.filter(reference="batch-credit").exists()

    def test_batch_credit_funds_later_debit(self, operator_wallet):
        WalletService.post([
            (
                TransactionType.CREDIT,
                PostingParams(operator_wallet.id, Decimal("500"), TransactionSource.ROOM_FEE, "fund"),
            ),
            (
                TransactionType.DEBIT,
                PostingParams(operator_wallet.id, Decimal("300"), TransactionSource.WITHDRAWAL, "spend"),
            ),
        ])

        operator_wallet.refresh_from_db()
        assert operator_wallet.balance_available == Decimal("200.00")

    def test_unknown_wallet(self):
        with pytest.raises(WalletNotFound):
            WalletService.credit(
                PostingParams(uuid.uuid4(), Decimal("1"), TransactionSource.ROOM_FEE, "missing")
            )

    def test_empty_batch(self):
        assert WalletService.post([]) == []


@pytest.mark.django_db
class TestPendingBalance:
    def test_adjust_pending(self, operator_wallet):
        WalletService.adjust_pending(operator_wallet.id, Decimal("9970"))
        wallet = WalletService.adjust_pending(operator_wallet.id, Decimal("-9970"))

        assert wallet.balance_pending == Decimal("0.00")

    def test_pending_cannot_go_negative(self, operator_wallet):
        with pytest.raises(InsufficientBalance) as exc_info:
            WalletService.adjust_pending(operator_wallet.id, Decimal("-1"))

        assert exc_info.value.error_code == "INSUFFICIENT_PENDING_BALANCE"


@pytest.mark.django_db
class TestBalanceIntegrity:
    """Stored balances always equal the replayed transaction log."""

    def test_stored_balance_matches_log(self, operator_wallet):
        credit(operator_wallet, "5000", "c1")
        credit(operator_wallet, "45000", "c2")
        WalletService.debit(
            PostingParams(operator_wallet.id, Decimal("20000"), TransactionSource.WITHDRAWAL, "d1")
        )

        assert WalletService.recompute_balance(operator_wallet.id) == Decimal("30000.00")
        assert WalletService.verify_balance(operator_wallet.id) is True

    def test_drift_detected(self, operator_wallet):
        credit(operator_wallet, "5000", "c1")
        type(operator_wallet).objects.filter(id=operator_wallet.id).update(
            balance_available=Decimal("9999")
        )

        assert WalletService.verify_balance(operator_wallet.id) is False

    def test_recent_transactions_newest_first(self, operator_wallet):
        credit(operator_wallet, "1", "first")
        credit(operator_wallet, "2", "second")

        references = [t.reference for t in WalletService.recent_transactions(operator_wallet.id)]

        assert set(references) == {"first", "second"}
        assert len(WalletService.recent_transactions(operator_wallet.id, limit=1)) == 1


@pytest.mark.django_db
class TestAppendOnly:
    def test_transaction_cannot_be_updated(self, operator_wallet):
        txn = credit(operator_wallet, "100", "immutable")
        txn.description = "edited"

        with pytest.raises(ValueError):
            txn.save()

    def test_transaction_cannot_be_deleted(self, operator_wallet):
        txn = credit(operator_wallet, "100", "undeletable")

        with pytest.raises(ValueError):
            txn.delete()
