"""
Booking and Payment models.

Booking is one stay with its priced fee breakdown and commission snapshot.
Payment tracks the captured funds for that booking, including which
components are still in escrow and how their settlement is going.

Usage:
    from settlement.models import Booking, Payment

    booking.mark_paid()  # pending -> paid
    booking.save()

    payment.hold()  # initiated -> held
    payment.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from settlement.state_machines import (
    BookingStatus,
    CheckInConfirmation,
    ComponentState,
    PaymentStatus,
    ProcessingMode,
)

ZERO = Decimal("0.00")


def money_field(help_text: str, **kwargs) -> models.DecimalField:
    kwargs.setdefault("default", ZERO)
    return models.DecimalField(
        max_digits=14, decimal_places=2, help_text=help_text, **kwargs
    )


def rate_field(help_text: str) -> models.DecimalField:
    return models.DecimalField(
        max_digits=7, decimal_places=6, default=Decimal("0"), help_text=help_text
    )


class Booking(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    One stay and its priced breakdown.

    State Flow:
        PENDING -> PAID -> CHECKED_IN -> CHECKED_OUT -> COMPLETED
        CHECKED_IN -> DISPUTE_OPENED -> CHECKED_IN | CHECKED_OUT
        PENDING/PAID -> CANCELLED

    Invariant at payment time:
        room_fee + cleaning_fee + service_fee + platform_fee + security_deposit
        == payment.amount_captured

    Bookings are never deleted.
    """

    # =========================================================================
    # Parties (owned by external systems)
    # =========================================================================
    guest_id = models.UUIDField(db_index=True, help_text="Guest user id")
    operator_id = models.UUIDField(
        db_index=True, help_text="Property operator (payee) user id"
    )
    property_id = models.UUIDField(db_index=True, help_text="Listed property id")

    # =========================================================================
    # Stay
    # =========================================================================
    check_in_date = models.DateField(help_text="Scheduled check-in date")
    check_out_date = models.DateField(help_text="Scheduled check-out date")
    scheduled_check_in_at = models.DateTimeField(
        help_text="Scheduled check-in moment (date + property check-in time)"
    )
    scheduled_check_out_at = models.DateTimeField(
        help_text="Scheduled checkout moment (date + property checkout time)"
    )
    nights = models.PositiveIntegerField(help_text="Number of nights")
    nightly_rate = money_field("Price per night")

    # =========================================================================
    # Fee Breakdown
    # =========================================================================
    currency = models.CharField(max_length=3, default="NGN")
    room_fee = money_field("nightly_rate x nights; held in escrow until check-in + window")
    cleaning_fee = money_field("Paid to the operator immediately at capture")
    security_deposit = money_field("Held in escrow until checkout + window")
    service_fee = money_field("Guest-side platform service fee, collected at capture")
    platform_fee = money_field("Additional guest-side platform surcharge")
    processing_fee = money_field("Gateway processing fee absorbed by the platform")
    processing_mode = models.CharField(
        max_length=20,
        choices=ProcessingMode.choices,
        default=ProcessingMode.LOCAL,
    )
    total_amount = money_field("Total the guest must pay")

    # =========================================================================
    # Commission Snapshot (frozen when priced)
    # =========================================================================
    commission_base_rate = rate_field("Tier rate before volume discount")
    commission_volume_reduction = rate_field("Volume discount applied to the tier rate")
    commission_effective_rate = rate_field("Rate used for every room fee split")
    commission_amount = money_field("Platform commission on the full room fee")
    operator_room_payout = money_field("Room fee minus commission")
    pricing_snapshot = models.JSONField(
        default=dict,
        blank=True,
        help_text="Full quote and config version used to price this booking",
    )

    # =========================================================================
    # Gateway
    # =========================================================================
    gateway = models.CharField(
        max_length=30,
        help_text="Payment gateway name (key of settings.PAYMENT_GATEWAYS)",
    )

    # =========================================================================
    # Lifecycle
    # =========================================================================
    status = FSMField(
        default=BookingStatus.PENDING,
        choices=BookingStatus.choices,
        protected=True,
        db_index=True,
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    check_in_confirmation = models.CharField(
        max_length=20,
        choices=CheckInConfirmation.choices,
        blank=True,
        default="",
    )
    room_fee_release_eligible_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Check-in + guest dispute window",
    )
    checked_out_at = models.DateTimeField(null=True, blank=True)
    check_out_confirmation = models.CharField(
        max_length=20,
        choices=CheckInConfirmation.choices,
        blank=True,
        default="",
    )
    deposit_release_eligible_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Checkout + operator dispute window",
    )
    guest_dispute_opened = models.BooleanField(default=False)
    operator_dispute_opened = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "room_fee_release_eligible_at"], name="booking_room_fee_release_idx"),
            models.Index(fields=["status", "deposit_release_eligible_at"], name="booking_deposit_release_idx"),
            models.Index(fields=["operator_id", "paid_at"], name="booking_operator_paid_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(room_fee__gt=0),
                name="booking_room_fee_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(check_out_date__gt=models.F("check_in_date")),
                name="booking_checkout_after_checkin",
            ),
        ]

    def __str__(self) -> str:
        return f"Booking({self.id}, {self.status}, {self.total_amount} {self.currency})"

    @property
    def components_total(self) -> Decimal:
        return (
            self.room_fee
            + self.cleaning_fee
            + self.service_fee
            + self.platform_fee
            + self.security_deposit
        )

    # =========================================================================
    # State Transitions
    # =========================================================================

    @transition(field=status, source=BookingStatus.PENDING, target=BookingStatus.PAID)
    def mark_paid(self):
        """Capture verified and funds held."""
        self.paid_at = timezone.now()

    @transition(field=status, source=BookingStatus.PAID, target=BookingStatus.CHECKED_IN)
    def check_in(self, confirmation: str = CheckInConfirmation.GUEST):
        self.checked_in_at = timezone.now()
        self.check_in_confirmation = confirmation

    @transition(
        field=status,
        source=BookingStatus.CHECKED_IN,
        target=BookingStatus.DISPUTE_OPENED,
    )
    def open_dispute(self):
        """Guest disputes the stay before the room fee is released."""
        self.guest_dispute_opened = True

    @transition(
        field=status,
        source=BookingStatus.DISPUTE_OPENED,
        target=BookingStatus.CHECKED_IN,
    )
    def resume_stay(self):
        """Room fee dispute ended without ending the stay."""
        pass

    @transition(
        field=status,
        source=[BookingStatus.CHECKED_IN, BookingStatus.DISPUTE_OPENED],
        target=BookingStatus.CHECKED_OUT,
    )
    def check_out(self, confirmation: str = CheckInConfirmation.GUEST):
        self.checked_out_at = timezone.now()
        self.check_out_confirmation = confirmation

    @transition(
        field=status,
        source=BookingStatus.CHECKED_OUT,
        target=BookingStatus.COMPLETED,
    )
    def complete(self):
        """Room fee and deposit both settled."""
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[BookingStatus.PENDING, BookingStatus.PAID],
        target=BookingStatus.CANCELLED,
    )
    def cancel(self, reason: str = ""):
        self.cancelled_at = timezone.now()
        self.cancellation_reason = reason


class Payment(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Captured funds for one booking.

    State Flow:
        INITIATED -> HELD -> PARTIALLY_RELEASED -> SETTLED
        INITIATED -> FAILED
        HELD/PARTIALLY_RELEASED -> REFUNDED

    Each escrowed component (room fee, deposit) also carries its own
    settlement state so a failed release can be retried or parked for
    admin review without affecting the other component.
    """

    booking = models.OneToOneField(
        Booking,
        on_delete=models.PROTECT,
        related_name="payment",
    )
    status = FSMField(
        default=PaymentStatus.INITIATED,
        choices=PaymentStatus.choices,
        protected=True,
        db_index=True,
    )
    amount_captured = money_field("Amount verified at the gateway")
    currency = models.CharField(max_length=3, default="NGN")
    gateway = models.CharField(max_length=30)
    provider_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway payment reference supplied by the client",
    )
    provider_transaction_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Gateway transaction id returned by verification",
    )

    # =========================================================================
    # Escrow Flags
    # =========================================================================
    room_fee_in_escrow = models.BooleanField(default=False)
    deposit_in_escrow = models.BooleanField(default=False)
    cleaning_fee_released = models.BooleanField(default=False)
    service_fee_collected = models.BooleanField(default=False)

    # =========================================================================
    # Component Settlement
    # =========================================================================
    room_fee_state = models.CharField(
        max_length=20,
        choices=ComponentState.choices,
        default=ComponentState.NOT_HELD,
        db_index=True,
    )
    room_fee_attempts = models.PositiveIntegerField(default=0)
    room_fee_next_attempt_at = models.DateTimeField(null=True, blank=True)
    room_fee_last_error = models.TextField(blank=True, default="")
    room_fee_released_at = models.DateTimeField(null=True, blank=True)

    deposit_state = models.CharField(
        max_length=20,
        choices=ComponentState.choices,
        default=ComponentState.NOT_HELD,
        db_index=True,
    )
    deposit_attempts = models.PositiveIntegerField(default=0)
    deposit_next_attempt_at = models.DateTimeField(null=True, blank=True)
    deposit_last_error = models.TextField(blank=True, default="")
    deposit_released_at = models.DateTimeField(null=True, blank=True)

    # =========================================================================
    # Timestamps
    # =========================================================================
    held_at = models.DateTimeField(null=True, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_captured__gte=0),
                name="payment_amount_captured_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.status}, {self.amount_captured} {self.currency})"

    @property
    def room_fee_settled(self) -> bool:
        return self.room_fee_state in (ComponentState.SETTLED, ComponentState.ADMIN_REVIEW)

    # =========================================================================
    # State Transitions
    # =========================================================================

    @transition(field=status, source=PaymentStatus.INITIATED, target=PaymentStatus.HELD)
    def hold(self):
        self.held_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.INITIATED,
        target=PaymentStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        self.failed_at = timezone.now()
        self.failure_reason = reason

    @transition(
        field=status,
        source=PaymentStatus.HELD,
        target=PaymentStatus.PARTIALLY_RELEASED,
    )
    def release_room_fee(self):
        self.room_fee_released_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.PARTIALLY_RELEASED,
        target=PaymentStatus.SETTLED,
    )
    def settle(self):
        self.settled_at = timezone.now()

    @transition(
        field=status,
        source=[PaymentStatus.HELD, PaymentStatus.PARTIALLY_RELEASED],
        target=PaymentStatus.REFUNDED,
    )
    def refund(self):
        """Every escrowed amount went back to the guest."""
        self.refunded_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.FAILED,
        target=PaymentStatus.INITIATED,
    )
    def reopen(self):
        """Allow the guest to retry a payment that failed verification."""
        self.failed_at = None
        self.failure_reason = ""
