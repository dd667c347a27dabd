"""
Wallet ledger models.

- Wallet: running balance per payee (an operator, or the platform)
- WalletTransaction: append-only CREDIT/DEBIT record behind every balance change

Invariant: ``balance_available`` equals the sum of COMPLETED credits minus
COMPLETED debits for the wallet. Balances are only changed by
WalletService while the wallet row is locked.

Usage:
    from settlement.ledger.models import Wallet, WalletOwnerType

    wallet = Wallet.objects.get(owner_type=WalletOwnerType.OPERATOR, owner_id=operator_id)
    wallet.computed_balance() == wallet.balance_available
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum

from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel


class WalletOwnerType(models.TextChoices):
    OPERATOR = "operator", "Operator"
    PLATFORM = "platform", "Platform"


class TransactionType(models.TextChoices):
    CREDIT = "credit", "Credit"
    DEBIT = "debit", "Debit"


class TransactionStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"


class TransactionSource(models.TextChoices):
    """Why money moved into or out of a wallet."""

    CLEANING_FEE = "cleaning_fee", "Cleaning Fee"
    SERVICE_FEE = "service_fee", "Service Fee"
    PLATFORM_FEE = "platform_fee", "Platform Fee"
    ROOM_FEE = "room_fee", "Room Fee"
    COMMISSION = "commission", "Commission"
    DEPOSIT_DEDUCTION = "deposit_deduction", "Deposit Deduction"
    WITHDRAWAL = "withdrawal", "Withdrawal"
    WITHDRAWAL_FEE = "withdrawal_fee", "Withdrawal Fee"
    WITHDRAWAL_REVERSAL = "withdrawal_reversal", "Withdrawal Reversal"
    WITHDRAWAL_FEE_REVERSAL = "withdrawal_fee_reversal", "Withdrawal Fee Reversal"


class Wallet(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Running balance for one payee.

    Fields:
        owner_type: OPERATOR or PLATFORM
        owner_id: Operator id, or settings.PLATFORM_WALLET_OWNER_ID
        currency: ISO 4217 code
        balance_available: Withdrawable balance (ledger sum)
        balance_pending: Net withdrawals handed to the gateway, not yet confirmed
    """

    owner_type = models.CharField(
        max_length=20,
        choices=WalletOwnerType.choices,
        help_text="Kind of payee that owns this wallet",
    )
    owner_id = models.UUIDField(
        db_index=True,
        help_text="UUID of the operator (or the platform owner id)",
    )
    currency = models.CharField(
        max_length=3,
        default="NGN",
        help_text="ISO 4217 currency code",
    )
    balance_available = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Sum of completed credits minus completed debits",
    )
    balance_pending = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Withdrawal amounts in flight at the gateway",
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Inactive wallets accept no new transactions",
    )

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["owner_type", "owner_id", "currency"],
                name="unique_wallet_per_owner",
            ),
            models.CheckConstraint(
                condition=Q(balance_available__gte=0),
                name="wallet_balance_available_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(balance_pending__gte=0),
                name="wallet_balance_pending_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Wallet({self.owner_type}:{self.owner_id}, {self.balance_available} {self.currency})"

    @property
    def is_platform(self) -> bool:
        return (
            self.owner_type == WalletOwnerType.PLATFORM
            and str(self.owner_id) == str(settings.PLATFORM_WALLET_OWNER_ID)
        )

    def computed_balance(self) -> Decimal:
        """Replay completed transactions; must equal balance_available."""
        totals = self.transactions.filter(status=TransactionStatus.COMPLETED).aggregate(
            credits=Sum("amount", filter=Q(type=TransactionType.CREDIT)),
            debits=Sum("amount", filter=Q(type=TransactionType.DEBIT)),
        )
        credits = totals["credits"] or Decimal("0.00")
        debits = totals["debits"] or Decimal("0.00")
        return credits - debits


class WalletTransaction(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
    """
    One immutable balance movement.

    Corrections are made with new compensating transactions, never by
    editing rows.
    """

    wallet = models.ForeignKey(
        Wallet,
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Wallet whose balance moved",
    )
    type = models.CharField(
        max_length=10,
        choices=TransactionType.choices,
        help_text="CREDIT increases the balance, DEBIT decreases it",
    )
    source = models.CharField(
        max_length=30,
        choices=TransactionSource.choices,
        help_text="Business reason for the movement",
    )
    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        default=TransactionStatus.COMPLETED,
    )
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Always positive; direction comes from type",
    )
    currency = models.CharField(max_length=3, default="NGN")
    balance_after = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Wallet available balance right after this movement",
    )
    reference = models.CharField(
        max_length=255,
        unique=True,
        help_text="Idempotency key; one movement per reference",
    )
    booking_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Booking this movement settles, if any",
    )
    description = models.CharField(max_length=255, blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["wallet", "created_at"], name="wallet_txn_wallet_created_idx"),
            models.Index(fields=["source"], name="wallet_txn_source_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="wallet_transaction_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_type_display()} {self.amount} ({self.source})"

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == TransactionType.CREDIT else -self.amount
