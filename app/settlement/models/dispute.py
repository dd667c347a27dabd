"""
Dispute model.

A dispute is a claim against one escrowed component of a booking: the
guest disputes the room fee during the stay, the operator claims against
the security deposit after checkout. Disputes never move money; the
resolution records the award and the escrow service executes it.

Usage:
    dispute.await_response(deadline)  # open -> awaiting_response
    dispute.escalate(admin_deadline)  # awaiting_response -> escalated
    dispute.resolve(DisputeOutcome.PARTIAL_REFUND_EXECUTED)
    dispute.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from settlement.models.booking import Booking, money_field
from settlement.state_machines import (
    BLOCKING_DISPUTE_STATUSES,
    AdminDecision,
    DisputeCategory,
    DisputeOutcome,
    DisputeResponseAction,
    DisputeStatus,
    DisputeSubject,
)


class DisputeQuerySet(models.QuerySet):
    def blocking(self):
        return self.filter(status__in=BLOCKING_DISPUTE_STATUSES)

    def for_subject(self, subject: str):
        return self.filter(subject=subject)


class Dispute(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    One claim against a booking's room fee or security deposit.

    State Flow:
        OPEN -> AWAITING_RESPONSE -> RESOLVED
        AWAITING_RESPONSE -> ESCALATED -> RESOLVED
        OPEN/AWAITING_RESPONSE/ESCALATED -> CANCELLED

    At most one unresolved dispute exists per (booking, subject).
    """

    booking = models.ForeignKey(
        Booking,
        on_delete=models.PROTECT,
        related_name="disputes",
    )
    subject = models.CharField(max_length=20, choices=DisputeSubject.choices)
    category = models.CharField(max_length=40, choices=DisputeCategory.choices)
    status = FSMField(
        default=DisputeStatus.OPEN,
        choices=DisputeStatus.choices,
        protected=True,
        db_index=True,
    )

    # =========================================================================
    # Claim
    # =========================================================================
    opened_by = models.UUIDField(help_text="Claimant (guest or operator) user id")
    claimed_amount = money_field("Amount claimed, capped at the subject amount")
    subject_amount = money_field("Escrowed amount under dispute")
    max_refund_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0"),
        help_text="Category ceiling as a percentage of the claimed amount",
    )
    max_award_amount = money_field("Largest award the category allows")
    description = models.TextField(blank=True, default="")
    attachments = models.JSONField(default=list, blank=True)

    # =========================================================================
    # Response
    # =========================================================================
    response_deadline_at = models.DateTimeField(null=True, blank=True, db_index=True)
    responded_by = models.UUIDField(null=True, blank=True)
    response_action = models.CharField(
        max_length=20,
        choices=DisputeResponseAction.choices,
        blank=True,
        default="",
    )
    response_notes = models.TextField(blank=True, default="")
    responded_at = models.DateTimeField(null=True, blank=True)

    # =========================================================================
    # Escalation & Admin Ruling
    # =========================================================================
    escalated_at = models.DateTimeField(null=True, blank=True)
    admin_deadline_at = models.DateTimeField(null=True, blank=True, db_index=True)
    admin_id = models.UUIDField(null=True, blank=True)
    admin_decision = models.CharField(
        max_length=20,
        choices=AdminDecision.choices,
        blank=True,
        default="",
    )
    admin_amount = models.DecimalField(
        max_digits=14, decimal_places=2, null=True, blank=True
    )
    admin_notes = models.TextField(blank=True, default="")

    # =========================================================================
    # Outcome
    # =========================================================================
    final_outcome = models.CharField(
        max_length=30,
        choices=DisputeOutcome.choices,
        blank=True,
        default="",
    )
    guest_refund_amount = money_field("Amount returned to the guest")
    operator_payout_amount = money_field("Amount paid to the operator")
    platform_fee_amount = money_field("Commission the platform keeps")
    resolved_at = models.DateTimeField(null=True, blank=True)
    executed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When escrow executed the resolution",
    )
    auto_resolved = models.BooleanField(default=False)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    objects = DisputeQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "subject"],
                condition=models.Q(status__in=BLOCKING_DISPUTE_STATUSES),
                name="dispute_one_open_per_subject",
            ),
            models.CheckConstraint(
                condition=models.Q(claimed_amount__gte=0),
                name="dispute_claimed_amount_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Dispute({self.id}, {self.subject}, {self.status})"

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_DISPUTE_STATUSES

    @property
    def is_room_fee(self) -> bool:
        return self.subject == DisputeSubject.ROOM_FEE

    # =========================================================================
    # State Transitions
    # =========================================================================

    @transition(
        field=status,
        source=DisputeStatus.OPEN,
        target=DisputeStatus.AWAITING_RESPONSE,
    )
    def await_response(self, deadline):
        self.response_deadline_at = deadline

    @transition(
        field=status,
        source=[DisputeStatus.OPEN, DisputeStatus.AWAITING_RESPONSE],
        target=DisputeStatus.ESCALATED,
    )
    def escalate(self, admin_deadline):
        self.escalated_at = timezone.now()
        self.admin_deadline_at = admin_deadline

    @transition(
        field=status,
        source=list(BLOCKING_DISPUTE_STATUSES),
        target=DisputeStatus.RESOLVED,
    )
    def resolve(self, outcome: str):
        self.final_outcome = outcome
        self.resolved_at = timezone.now()

    @transition(
        field=status,
        source=list(BLOCKING_DISPUTE_STATUSES),
        target=DisputeStatus.CANCELLED,
    )
    def cancel(self):
        self.cancelled_at = timezone.now()
