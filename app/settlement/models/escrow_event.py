"""
EscrowEvent: append-only record of every movement of booking funds.

The escrow position of a booking is never stored; it is folded from its
events by ``replay_escrow_events``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import models
from django.utils import timezone

from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel
from settlement.models.booking import Booking
from settlement.state_machines import EscrowEventType, Party

if TYPE_CHECKING:
    from collections.abc import Iterable


class EscrowEvent(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
    """
    Immutable audit record of one escrow movement.

    ``reference`` is unique and doubles as the idempotency key, e.g.
    ``booking:<id>:room_fee:operator``.
    """

    booking = models.ForeignKey(
        Booking,
        on_delete=models.PROTECT,
        related_name="escrow_events",
    )
    event_type = models.CharField(
        max_length=40,
        choices=EscrowEventType.choices,
        db_index=True,
    )
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    currency = models.CharField(max_length=3)
    from_party = models.CharField(max_length=10, choices=Party.choices)
    to_party = models.CharField(max_length=10, choices=Party.choices)
    executed_at = models.DateTimeField(default=timezone.now)
    reference = models.CharField(max_length=255, unique=True)
    provider_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Gateway transfer reference for movements to the guest",
    )
    dispute = models.ForeignKey(
        "settlement.Dispute",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="escrow_events",
    )
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["executed_at", "created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="escrow_event_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.event_type} {self.amount} {self.currency} ({self.from_party}->{self.to_party})"


@dataclass
class EscrowState:
    """Escrow position of one booking, derived from its events."""

    room_fee_held: Decimal = Decimal("0.00")
    deposit_held: Decimal = Decimal("0.00")
    paid_to_operator: Decimal = Decimal("0.00")
    collected_by_platform: Decimal = Decimal("0.00")
    refunded_to_guest: Decimal = Decimal("0.00")
    event_types: list[str] = field(default_factory=list)

    @property
    def in_escrow(self) -> Decimal:
        return self.room_fee_held + self.deposit_held

    @property
    def disbursed(self) -> Decimal:
        return self.paid_to_operator + self.collected_by_platform + self.refunded_to_guest

    def as_dict(self) -> dict[str, str | list[str]]:
        return {
            "room_fee_held": str(self.room_fee_held),
            "deposit_held": str(self.deposit_held),
            "in_escrow": str(self.in_escrow),
            "paid_to_operator": str(self.paid_to_operator),
            "collected_by_platform": str(self.collected_by_platform),
            "refunded_to_guest": str(self.refunded_to_guest),
            "event_types": list(self.event_types),
        }


def replay_escrow_events(events: Iterable[EscrowEvent]) -> EscrowState:
    state = EscrowState()
    for event in events:
        amount = event.amount
        kind = event.event_type
        state.event_types.append(kind)

        if kind == EscrowEventType.HOLD_ROOM_FEE:
            state.room_fee_held += amount
        elif kind == EscrowEventType.HOLD_SECURITY_DEPOSIT:
            state.deposit_held += amount
        elif kind == EscrowEventType.RELEASE_CLEANING_FEE:
            state.paid_to_operator += amount
        elif kind in (EscrowEventType.COLLECT_SERVICE_FEE, EscrowEventType.COLLECT_PLATFORM_FEE):
            state.collected_by_platform += amount
        elif kind == EscrowEventType.RELEASE_ROOM_FEE_TO_OPERATOR:
            state.room_fee_held -= amount
            state.paid_to_operator += amount
        elif kind == EscrowEventType.COLLECT_COMMISSION:
            state.room_fee_held -= amount
            state.collected_by_platform += amount
        elif kind == EscrowEventType.REFUND_ROOM_FEE_TO_GUEST:
            state.room_fee_held -= amount
            state.refunded_to_guest += amount
        elif kind == EscrowEventType.RELEASE_DEPOSIT_TO_GUEST:
            state.deposit_held -= amount
            state.refunded_to_guest += amount
        elif kind == EscrowEventType.PAY_OPERATOR_FROM_DEPOSIT:
            state.deposit_held -= amount
            state.paid_to_operator += amount
    return state
