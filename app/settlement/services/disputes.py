"""
Dispute resolution workflow.

A guest may dispute the room fee while checked in, before the room fee
release deadline. An operator may claim against the security deposit after
checkout, before the deposit release deadline. The other party responds;
a rejection escalates to admin review.

Disputes never move money. Resolution records the award on the dispute
and queues the escrow release, which reads the resolved dispute for its
amounts. A retried release therefore reuses the same award.

Award semantics:
    room fee dispute: award = refund to the guest
    deposit dispute:  award = deduction paid to the operator

In both cases award <= max_award_amount = claimed_amount x ceiling%.

Usage:
    from settlement.services import DisputeService, OpenDisputeParams

    dispute = DisputeService.open_dispute(OpenDisputeParams(
        booking_id=booking.id,
        actor_id=guest_id,
        subject=DisputeSubject.ROOM_FEE,
        category=DisputeCategory.MISSING_AMENITIES_CLEANLINESS,
    ))
    DisputeService.respond(dispute.id, operator_id, DisputeResponseAction.ACCEPT)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import ConfigurationError, ConflictError, PermissionDeniedError, ValidationError
from core.services import BaseService
from notifications.models import NotificationEvent
from notifications.services import NotificationDispatcher
from settlement.exceptions import (
    BookingNotFoundError,
    DisputeNotFoundError,
    DisputeWindowClosedError,
    InvalidAmount,
)
from settlement.fees import split_room_fee
from settlement.ledger.types import ZERO, to_money
from settlement.locks import check_version
from settlement.models import Booking, Dispute, Payment, PlatformSetting
from settlement.services.escrow import RETRYABLE_COMPONENT_STATES, EscrowService
from settlement.services.transitions import apply_transition
from settlement.state_machines import (
    DEPOSIT_CATEGORIES,
    ROOM_FEE_CATEGORIES,
    AdminDecision,
    BookingStatus,
    CheckInConfirmation,
    DisputeOutcome,
    DisputeResponseAction,
    DisputeStatus,
    DisputeSubject,
)

if TYPE_CHECKING:
    import uuid
    from typing import Any

REFUND_CEILINGS_SETTING_KEY = "disputes.refund_ceilings.v1"

HUNDRED = Decimal("100")


class FallbackPolicy:
    """What happens to an escalated dispute nobody ruled on."""

    REJECT_CLAIM = "reject_claim"
    ACCEPT_CLAIM = "accept_claim"
    ALL = (REJECT_CLAIM, ACCEPT_CLAIM)

    @classmethod
    def configured(cls) -> str:
        """
        The policy named by DISPUTE_FALLBACK_POLICY.

        Raises:
            ConfigurationError: The setting names no known policy
        """
        policy = settings.DISPUTE_FALLBACK_POLICY
        if policy not in cls.ALL:
            raise ConfigurationError(
                f"Unknown dispute fallback policy '{policy}'",
                error_code="INVALID_FALLBACK_POLICY",
                details={"policy": policy, "allowed": list(cls.ALL)},
            )
        return policy


@dataclass
class OpenDisputeParams:
    """
    Parameters for opening a dispute.

    Attributes:
        booking_id: Booking under dispute
        actor_id: Claimant (guest for room fee, operator for deposit)
        subject: DisputeSubject
        category: DisputeCategory valid for the subject
        claimed_amount: Defaults to (and is capped at) the subject amount
        description: Free-text claim
        attachments: Evidence references (URLs / storage keys)
    """

    booking_id: uuid.UUID
    actor_id: uuid.UUID
    subject: str
    category: str
    claimed_amount: Decimal | None = None
    description: str = ""
    attachments: list[Any] = field(default_factory=list)


def refund_ceilings() -> dict[str, Decimal]:
    """Category -> maximum refund percent; the platform setting overrides settings."""
    ceilings = {key: Decimal(str(value)) for key, value in settings.DISPUTE_REFUND_CEILINGS.items()}
    override = PlatformSetting.latest_value(REFUND_CEILINGS_SETTING_KEY)
    if isinstance(override, dict):
        for key, value in override.items():
            ceilings[key] = Decimal(str(value))
    return ceilings


def refund_ceiling(category: str) -> Decimal:
    percent = refund_ceilings().get(str(category))
    if percent is None or percent < 0 or percent > HUNDRED:
        raise ValidationError(
            f"No refund ceiling configured for category '{category}'",
            error_code="REFUND_CEILING_MISSING",
            details={"category": str(category)},
        )
    return percent


def room_fee_outcome(award: Decimal, dispute: Dispute) -> str:
    if award <= 0:
        return DisputeOutcome.NO_REFUND_EXECUTED
    if award >= dispute.subject_amount:
        return DisputeOutcome.FULL_REFUND_EXECUTED
    return DisputeOutcome.PARTIAL_REFUND_EXECUTED


def deposit_outcome(deduction: Decimal, dispute: Dispute) -> str:
    if deduction <= 0:
        return DisputeOutcome.DEPOSIT_RETURNED
    if deduction >= dispute.subject_amount:
        return DisputeOutcome.DEPOSIT_FORFEITED
    return DisputeOutcome.DEPOSIT_PARTIAL


class DisputeService(BaseService):
    """
    Dispute lifecycle.

    Methods:
        open_dispute: Claimant opens a dispute inside its window
        respond: Responder accepts (max award) or escalates
        admin_resolve: Admin rules on an escalated dispute
        cancel_dispute: Claimant withdraws before resolution
        escalate_stale_disputes: Unanswered disputes go to admin review
        auto_resolve_stale_disputes: Apply the fallback policy to old escalations
    """

    @staticmethod
    def _lock_dispute(dispute_id: uuid.UUID | str) -> Dispute:
        try:
            return Dispute.objects.select_for_update().get(id=dispute_id)
        except Dispute.DoesNotExist:
            raise DisputeNotFoundError(
                f"Dispute {dispute_id} not found",
                details={"dispute_id": str(dispute_id)},
            )

    @staticmethod
    def claimant_id(booking: Booking, subject: str) -> uuid.UUID:
        return booking.guest_id if subject == DisputeSubject.ROOM_FEE else booking.operator_id

    @staticmethod
    def responder_id(booking: Booking, subject: str) -> uuid.UUID:
        return booking.operator_id if subject == DisputeSubject.ROOM_FEE else booking.guest_id

    # =========================================================================
    # Opening
    # =========================================================================

    @classmethod
    def open_dispute(cls, params: OpenDisputeParams) -> Dispute:
        """
        Open a dispute against an escrowed component.

        Raises:
            PermissionDeniedError: Actor is not the claimant for this subject
            ValidationError: Category doesn't apply to the subject
            InvalidAmount: Claimed amount is not positive
            DisputeWindowClosedError: Release deadline has passed
            ConflictError: Wrong booking state, funds released, or a dispute
                on this subject is already open
        """
        now = timezone.now()
        subject = params.subject
        if subject not in DisputeSubject.values:
            raise ValidationError(
                f"Unknown dispute subject '{subject}'",
                error_code="INVALID_DISPUTE_SUBJECT",
                details={"subject": str(subject)},
            )
        is_room_fee = subject == DisputeSubject.ROOM_FEE
        allowed_categories = ROOM_FEE_CATEGORIES if is_room_fee else DEPOSIT_CATEGORIES
        if params.category not in allowed_categories:
            raise ValidationError(
                f"Category '{params.category}' does not apply to {subject} disputes",
                error_code="INVALID_DISPUTE_CATEGORY",
                details={"subject": subject, "category": str(params.category)},
            )
        ceiling = refund_ceiling(params.category)

        with cls.atomic():
            try:
                booking = Booking.objects.select_for_update().get(id=params.booking_id)
            except Booking.DoesNotExist:
                raise BookingNotFoundError(
                    f"Booking {params.booking_id} not found",
                    details={"booking_id": str(params.booking_id)},
                )
            payment = Payment.objects.select_for_update().get(booking_id=booking.id)

            if str(params.actor_id) != str(cls.claimant_id(booking, subject)):
                raise PermissionDeniedError(
                    "Only the guest may dispute the room fee and only the operator may claim the deposit",
                    details={"booking_id": str(booking.id), "subject": subject},
                )

            if Dispute.objects.filter(booking=booking, subject=subject).blocking().exists():
                raise ConflictError(
                    f"A {subject} dispute is already open on this booking",
                    error_code="DISPUTE_ALREADY_OPEN",
                    details={"booking_id": str(booking.id), "subject": subject},
                )
            if Dispute.objects.filter(
                booking=booking, subject=subject, status=DisputeStatus.RESOLVED, executed_at__isnull=True
            ).exists():
                raise ConflictError(
                    f"A resolved {subject} dispute has not been paid out yet",
                    error_code="DISPUTE_RELEASE_PENDING",
                    details={"booking_id": str(booking.id), "subject": subject},
                )

            if is_room_fee:
                required_status = BookingStatus.CHECKED_IN
                deadline = booking.room_fee_release_eligible_at
                subject_amount = booking.room_fee
                component_state = payment.room_fee_state
                in_escrow = payment.room_fee_in_escrow
            else:
                required_status = BookingStatus.CHECKED_OUT
                deadline = booking.deposit_release_eligible_at
                subject_amount = booking.security_deposit
                component_state = payment.deposit_state
                in_escrow = payment.deposit_in_escrow

            if booking.status != required_status:
                raise ConflictError(
                    f"A {subject} dispute requires a {required_status} booking",
                    error_code="DISPUTE_NOT_ALLOWED",
                    details={"booking_id": str(booking.id), "status": booking.status},
                )
            if deadline is None or now >= deadline:
                raise DisputeWindowClosedError(
                    f"The {subject} dispute window has closed",
                    details={
                        "booking_id": str(booking.id),
                        "deadline": deadline.isoformat() if deadline else None,
                    },
                )
            if not in_escrow or component_state not in RETRYABLE_COMPONENT_STATES:
                raise ConflictError(
                    f"The {subject} is no longer in escrow",
                    error_code="FUNDS_ALREADY_RELEASED",
                    details={"booking_id": str(booking.id), "state": component_state},
                )

            claimed = subject_amount if params.claimed_amount is None else to_money(params.claimed_amount)
            if claimed <= 0:
                raise InvalidAmount(
                    "Claimed amount must be positive",
                    details={"claimed_amount": str(claimed)},
                )
            claimed = min(claimed, subject_amount)
            max_award = to_money(claimed * ceiling / HUNDRED)

            try:
                with transaction.atomic():
                    dispute = Dispute.objects.create(
                        booking=booking,
                        subject=subject,
                        category=params.category,
                        opened_by=params.actor_id,
                        claimed_amount=claimed,
                        subject_amount=subject_amount,
                        max_refund_percent=ceiling,
                        max_award_amount=max_award,
                        description=params.description,
                        attachments=params.attachments,
                    )
            except IntegrityError:
                raise ConflictError(
                    f"A {subject} dispute is already open on this booking",
                    error_code="DISPUTE_ALREADY_OPEN",
                    details={"booking_id": str(booking.id), "subject": subject},
                )

            response_deadline = now + timedelta(hours=settings.DISPUTE_RESPONSE_WINDOW_HOURS)
            dispute.await_response(response_deadline)
            dispute.save()

            if is_room_fee:
                apply_transition(booking, "open_dispute")
            else:
                booking.operator_dispute_opened = True
            booking.save()

            NotificationDispatcher.notify(
                recipient_id=cls.responder_id(booking, subject),
                event_type=NotificationEvent.DISPUTE_OPENED,
                context={
                    "booking_id": booking.id,
                    "subject": dispute.get_subject_display().lower(),
                    "category": dispute.get_category_display(),
                    "deadline": response_deadline.isoformat(),
                },
                booking_id=booking.id,
                idempotency_key=f"dispute:{dispute.id}:opened",
            )

        cls.get_logger().info(
            "Dispute opened",
            extra={
                "dispute_id": str(dispute.id),
                "booking_id": str(booking.id),
                "subject": subject,
                "category": params.category,
                "claimed_amount": str(claimed),
                "max_award_amount": str(max_award),
            },
        )
        return dispute

    # =========================================================================
    # Response & Escalation
    # =========================================================================

    @classmethod
    def respond(
        cls,
        dispute_id: uuid.UUID | str,
        actor_id: uuid.UUID | str,
        action: str,
        notes: str = "",
    ) -> Dispute:
        """
        Responder accepts the claim or rejects it.

        ACCEPT resolves with the maximum award. REJECT_ESCALATE hands the
        dispute to admin review.

        Raises:
            PermissionDeniedError: Actor is not the responder
            ConflictError: Dispute is not awaiting a response
        """
        if action not in DisputeResponseAction.values:
            raise ValidationError(
                f"Unknown response action '{action}'",
                error_code="INVALID_RESPONSE_ACTION",
                details={"action": str(action)},
            )

        with cls.atomic():
            dispute = cls._lock_dispute(dispute_id)
            booking = Booking.objects.select_for_update().get(id=dispute.booking_id)

            if str(actor_id) != str(cls.responder_id(booking, dispute.subject)):
                raise PermissionDeniedError(
                    "Only the other party can respond to this dispute",
                    details={"dispute_id": str(dispute.id)},
                )
            if dispute.status not in (DisputeStatus.OPEN, DisputeStatus.AWAITING_RESPONSE):
                raise ConflictError(
                    f"Dispute is {dispute.status}, not awaiting a response",
                    error_code="DISPUTE_NOT_AWAITING_RESPONSE",
                    details={"dispute_id": str(dispute.id), "status": dispute.status},
                )

            dispute.responded_by = actor_id
            dispute.response_action = action
            dispute.response_notes = notes
            dispute.responded_at = timezone.now()

            if action == DisputeResponseAction.ACCEPT:
                award = dispute.max_award_amount
                outcome = (
                    room_fee_outcome(award, dispute)
                    if dispute.is_room_fee
                    else deposit_outcome(award, dispute)
                )
                if dispute.is_room_fee and award > 0 and dispute.max_refund_percent >= HUNDRED:
                    outcome = DisputeOutcome.FULL_REFUND_EXECUTED
                cls._resolve(dispute, booking, award, outcome)
            else:
                cls._escalate(dispute, booking)

        return dispute

    @classmethod
    def _escalate(cls, dispute: Dispute, booking: Booking) -> None:
        admin_deadline = timezone.now() + timedelta(hours=settings.DISPUTE_MAX_ESCALATION_HOURS)
        apply_transition(dispute, "escalate", admin_deadline)
        dispute.save()

        for recipient in (booking.guest_id, booking.operator_id):
            NotificationDispatcher.notify(
                recipient_id=recipient,
                event_type=NotificationEvent.DISPUTE_ESCALATED,
                context={"booking_id": booking.id},
                booking_id=booking.id,
                idempotency_key=f"dispute:{dispute.id}:escalated:{recipient}",
            )
        cls.get_logger().info(
            "Dispute escalated",
            extra={
                "dispute_id": str(dispute.id),
                "booking_id": str(booking.id),
                "admin_deadline_at": admin_deadline.isoformat(),
            },
        )

    # =========================================================================
    # Admin Ruling
    # =========================================================================

    @classmethod
    def admin_award(cls, dispute: Dispute, decision: str, amount: Decimal | None) -> Decimal:
        """
        Award implied by an admin decision (read from the guest's side).

        Room fee: full = max award, partial = amount (default half), none = 0.
        Deposit:  full refund = no deduction, partial = amount as deduction,
                  no refund = max award as deduction.

        Raises:
            InvalidAmount: amount is negative or above the max award
        """
        max_award = dispute.max_award_amount
        if amount is not None:
            amount = to_money(amount)
            if amount < 0 or amount > max_award:
                raise InvalidAmount(
                    "Admin amount must be between 0 and the maximum award",
                    error_code="AWARD_EXCEEDS_CEILING",
                    details={"amount": str(amount), "max_award_amount": str(max_award)},
                )
        partial = amount if amount is not None else to_money(max_award / 2)

        if dispute.is_room_fee:
            awards = {
                AdminDecision.FULL_REFUND: max_award,
                AdminDecision.PARTIAL_REFUND: partial,
                AdminDecision.NO_REFUND: ZERO,
            }
        else:
            awards = {
                AdminDecision.FULL_REFUND: ZERO,
                AdminDecision.PARTIAL_REFUND: partial,
                AdminDecision.NO_REFUND: max_award,
            }
        return awards[decision]

    @classmethod
    def admin_resolve(
        cls,
        dispute_id: uuid.UUID | str,
        admin_id: uuid.UUID | str,
        decision: str,
        amount: Decimal | None = None,
        notes: str = "",
        expected_version: int | None = None,
    ) -> Dispute:
        """
        Rule on an escalated dispute.

        Raises:
            ValidationError: Unknown decision
            InvalidAmount: Amount outside [0, max award]
            StaleRecordError: expected_version no longer matches
            ConflictError: Dispute is not escalated
        """
        if decision not in AdminDecision.values:
            raise ValidationError(
                f"Unknown admin decision '{decision}'",
                error_code="INVALID_ADMIN_DECISION",
                details={"decision": str(decision)},
            )

        with cls.atomic():
            if expected_version is not None:
                dispute = check_version(Dispute, dispute_id, expected_version)
            else:
                dispute = cls._lock_dispute(dispute_id)
            booking = Booking.objects.select_for_update().get(id=dispute.booking_id)

            if dispute.status != DisputeStatus.ESCALATED:
                raise ConflictError(
                    "Only escalated disputes can be ruled on by an admin",
                    error_code="DISPUTE_NOT_ESCALATED",
                    details={"dispute_id": str(dispute.id), "status": dispute.status},
                )

            award = cls.admin_award(dispute, decision, amount)
            dispute.admin_id = admin_id
            dispute.admin_decision = decision
            dispute.admin_amount = award
            dispute.admin_notes = notes

            if dispute.is_room_fee:
                outcome = {
                    AdminDecision.FULL_REFUND: DisputeOutcome.FULL_REFUND_EXECUTED,
                    AdminDecision.PARTIAL_REFUND: DisputeOutcome.PARTIAL_REFUND_EXECUTED,
                    AdminDecision.NO_REFUND: DisputeOutcome.NO_REFUND_EXECUTED,
                }[decision]
                if award <= 0:
                    outcome = DisputeOutcome.NO_REFUND_EXECUTED
            else:
                outcome = deposit_outcome(award, dispute)
            cls._resolve(dispute, booking, award, outcome)

        return dispute

    # =========================================================================
    # Resolution
    # =========================================================================

    @classmethod
    def _resolve(cls, dispute: Dispute, booking: Booking, award: Decimal, outcome: str) -> None:
        """Record the award, settle the booking state and queue the escrow release."""
        award = to_money(award)
        if dispute.is_room_fee:
            operator_amount, commission = split_room_fee(
                booking.room_fee - award, booking.commission_effective_rate
            )
            dispute.guest_refund_amount = award
            dispute.operator_payout_amount = operator_amount
            dispute.platform_fee_amount = commission
        else:
            dispute.guest_refund_amount = dispute.subject_amount - award
            dispute.operator_payout_amount = award
            dispute.platform_fee_amount = ZERO

        apply_transition(dispute, "resolve", outcome)
        dispute.save()

        if dispute.is_room_fee and booking.status == BookingStatus.DISPUTE_OPENED:
            if award >= booking.room_fee:
                # Full refund ends the stay
                apply_transition(booking, "check_out", confirmation=CheckInConfirmation.AUTO_FALLBACK)
                booking.save()
                booking = EscrowService.schedule_deposit_release(booking.id)
            else:
                apply_transition(booking, "resume_stay")
                booking.save()

        for recipient in (booking.guest_id, booking.operator_id):
            NotificationDispatcher.notify(
                recipient_id=recipient,
                event_type=NotificationEvent.DISPUTE_RESOLVED,
                context={"booking_id": booking.id, "outcome": dispute.get_final_outcome_display()},
                booking_id=booking.id,
                idempotency_key=f"dispute:{dispute.id}:resolved:{recipient}",
            )

        cls._queue_release(dispute)
        cls.get_logger().info(
            "Dispute resolved",
            extra={
                "dispute_id": str(dispute.id),
                "booking_id": str(booking.id),
                "outcome": outcome,
                "award": str(award),
                "auto_resolved": dispute.auto_resolved,
            },
        )

    @staticmethod
    def _queue_release(dispute: Dispute) -> None:
        from settlement.workers.release_scheduler import release_deposit, release_room_fee

        task = release_room_fee if dispute.is_room_fee else release_deposit
        booking_id = str(dispute.booking_id)
        transaction.on_commit(lambda: task.delay(booking_id))

    # =========================================================================
    # Cancellation
    # =========================================================================

    @classmethod
    def cancel_dispute(
        cls,
        dispute_id: uuid.UUID | str,
        actor_id: uuid.UUID | str | None = None,
        is_staff: bool = False,
    ) -> Dispute:
        """
        Withdraw an unresolved dispute; scheduled releases resume.

        Raises:
            PermissionDeniedError: Actor is neither the claimant nor staff
            InvalidStateTransitionError: Dispute already resolved or cancelled
        """
        with cls.atomic():
            dispute = cls._lock_dispute(dispute_id)
            booking = Booking.objects.select_for_update().get(id=dispute.booking_id)
            if not is_staff and str(actor_id) != str(dispute.opened_by):
                raise PermissionDeniedError(
                    "Only the claimant can withdraw a dispute",
                    details={"dispute_id": str(dispute.id)},
                )

            apply_transition(dispute, "cancel")
            dispute.save()
            if dispute.is_room_fee and booking.status == BookingStatus.DISPUTE_OPENED:
                apply_transition(booking, "resume_stay")
                booking.save()

        cls.get_logger().info(
            "Dispute cancelled",
            extra={"dispute_id": str(dispute.id), "booking_id": str(booking.id)},
        )
        return dispute

    # =========================================================================
    # Stale Dispute Fallbacks
    # =========================================================================

    @classmethod
    def escalate_stale_disputes(cls, limit: int = 100) -> int:
        """Escalate disputes whose response deadline passed without an answer."""
        now = timezone.now()
        dispute_ids = list(
            Dispute.objects.filter(
                status=DisputeStatus.AWAITING_RESPONSE,
                response_deadline_at__lte=now,
            )
            .order_by("response_deadline_at")
            .values_list("id", flat=True)[:limit]
        )

        escalated = 0
        for dispute_id in dispute_ids:
            with cls.atomic():
                dispute = cls._lock_dispute(dispute_id)
                if dispute.status != DisputeStatus.AWAITING_RESPONSE:
                    continue
                booking = Booking.objects.get(id=dispute.booking_id)
                cls._escalate(dispute, booking)
                escalated += 1
        return escalated

    @classmethod
    def auto_resolve_stale_disputes(cls, limit: int = 100) -> int:
        """Resolve escalations older than the admin deadline with the fallback policy."""
        now = timezone.now()
        policy = FallbackPolicy.configured()
        dispute_ids = list(
            Dispute.objects.filter(
                status=DisputeStatus.ESCALATED,
                admin_deadline_at__lte=now,
            )
            .order_by("admin_deadline_at")
            .values_list("id", flat=True)[:limit]
        )

        resolved = 0
        for dispute_id in dispute_ids:
            with cls.atomic():
                dispute = cls._lock_dispute(dispute_id)
                if dispute.status != DisputeStatus.ESCALATED:
                    continue
                booking = Booking.objects.select_for_update().get(id=dispute.booking_id)

                award = dispute.max_award_amount if policy == FallbackPolicy.ACCEPT_CLAIM else ZERO
                outcome = (
                    room_fee_outcome(award, dispute)
                    if dispute.is_room_fee
                    else deposit_outcome(award, dispute)
                )
                dispute.auto_resolved = True
                dispute.admin_amount = award
                cls._resolve(dispute, booking, award, outcome)
                resolved += 1
        return resolved
