"""
WithdrawalRequest: an operator cashing out wallet balance.

The gross amount is debited from the wallet when the request is created;
the net amount sits in ``balance_pending`` while the gateway transfer is
in flight.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from settlement.ledger.models import Wallet
from settlement.models.booking import money_field
from settlement.state_machines import WithdrawalStatus


class WithdrawalRequest(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    State Flow:
        PENDING -> PROCESSING -> COMPLETED
        PENDING/PROCESSING -> FAILED (debit and fee reversed)
    """

    wallet = models.ForeignKey(
        Wallet,
        on_delete=models.PROTECT,
        related_name="withdrawals",
    )
    operator_id = models.UUIDField(db_index=True)
    amount = money_field("Gross amount debited from the wallet")
    fee_amount = money_field("Withdrawal fee credited to the platform")
    net_amount = money_field("Amount transferred to the operator")
    currency = models.CharField(max_length=3)
    gateway = models.CharField(max_length=30)
    destination_account = models.CharField(
        max_length=255,
        help_text="Gateway recipient code / connected account id",
    )
    reference = models.CharField(max_length=255, unique=True)
    status = FSMField(
        default=WithdrawalStatus.PENDING,
        choices=WithdrawalStatus.choices,
        protected=True,
        db_index=True,
    )
    attempts = models.PositiveIntegerField(default=0)
    next_attempt_at = models.DateTimeField(null=True, blank=True)
    provider_reference = models.CharField(max_length=255, blank=True, default="")
    failure_reason = models.TextField(blank=True, default="")
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="withdrawal_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Withdrawal({self.id}, {self.status}, {self.amount} {self.currency})"

    @transition(
        field=status,
        source=WithdrawalStatus.PENDING,
        target=WithdrawalStatus.PROCESSING,
    )
    def start_processing(self):
        pass

    @transition(
        field=status,
        source=WithdrawalStatus.PROCESSING,
        target=WithdrawalStatus.COMPLETED,
    )
    def complete(self, provider_reference: str = ""):
        self.provider_reference = provider_reference
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING],
        target=WithdrawalStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        self.failure_reason = reason
        self.failed_at = timezone.now()
