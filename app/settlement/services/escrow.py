"""
Escrow service: custody of booking funds from capture to disbursement.

Money flow for one booking:

    capture ──> cleaning fee -> operator wallet (immediately)
            ──> service fee + platform fee -> platform wallet (immediately)
            ──> room fee -> escrow ──(check-in + guest window)──> operator / platform
            ──> deposit  -> escrow ──(checkout + operator window)──> guest / operator

Every release is idempotent: ledger postings and escrow events carry
deterministic references (``booking:<id>:<component>:<destination>``), and
the component settlement state on Payment is re-checked under a row lock
before anything is written.

Gateway calls happen outside database transactions. A failed call records
FAILED on the component with a backoff for the next sweep; after
SETTLEMENT_MAX_RELEASE_ATTEMPTS (or on a non-retryable error) the component
is parked in ADMIN_REVIEW. No ledger rows are written for a failed attempt.

Usage:
    from settlement.services import EscrowService

    EscrowService.hold_funds(booking.id, Decimal("66100"), "ref_123", "txn_456")
    result = EscrowService.execute_room_fee_split(booking.id)
    if not result:
        logger.info(result.error_code)
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult
from notifications.models import NotificationEvent
from notifications.services import NotificationDispatcher
from settlement.exceptions import (
    BookingNotFoundError,
    CancellationNotAllowedError,
    DisputeBlockedError,
    InvalidAmount,
    ProviderError,
)
from settlement.fees import compute_cancellation_refund, load_finance_config, split_room_fee
from settlement.gateways import TransferDestination, backoff_delay, get_gateway
from settlement.ledger import PostingParams, TransactionSource, TransactionType, WalletService
from settlement.ledger.types import ZERO, to_money
from settlement.models import (
    Booking,
    Dispute,
    EscrowEvent,
    EscrowState,
    Payment,
    replay_escrow_events,
)
from settlement.state_machines import (
    BookingStatus,
    ComponentState,
    DisputeStatus,
    DisputeSubject,
    EscrowEventType,
    Party,
    PaymentStatus,
)

if TYPE_CHECKING:
    import uuid
    from typing import Any

    from settlement.fees import CancellationRefund

ROOM_FEE = "room_fee"
DEPOSIT = "deposit"

TERMINAL_COMPONENT_STATES = (ComponentState.SETTLED, ComponentState.ADMIN_REVIEW)
RETRYABLE_COMPONENT_STATES = (ComponentState.HELD, ComponentState.FAILED)


def booking_reference(booking_id: Any, *parts: str) -> str:
    return ":".join(["booking", str(booking_id), *parts])


class EscrowService(BaseService):
    """
    Escrow holder for booking funds.

    Methods:
        hold_funds: Record a captured payment and pay out the immediate parts
        schedule_room_fee_release / schedule_deposit_release: Set release deadlines
        execute_room_fee_split: Release the room fee (after any dispute)
        execute_deposit_release: Release the deposit (after the room fee)
        cancellation_quote: Refund split for cancelling now
        refund_held_funds: Divide the escrow on cancellation
        admin_retry: Re-run a component parked in ADMIN_REVIEW
        replay: Fold a booking's escrow events
    """

    # =========================================================================
    # Lookups
    # =========================================================================

    @staticmethod
    def _locked(booking_id: uuid.UUID | str) -> tuple[Booking, Payment]:
        try:
            booking = Booking.objects.select_for_update().get(id=booking_id)
        except Booking.DoesNotExist:
            raise BookingNotFoundError(
                f"Booking {booking_id} not found",
                details={"booking_id": str(booking_id)},
            )
        payment = Payment.objects.select_for_update().get(booking_id=booking.id)
        return booking, payment

    @staticmethod
    def _load(booking_id: uuid.UUID | str) -> tuple[Booking, Payment]:
        try:
            booking = Booking.objects.select_related("payment").get(id=booking_id)
        except Booking.DoesNotExist:
            raise BookingNotFoundError(
                f"Booking {booking_id} not found",
                details={"booking_id": str(booking_id)},
            )
        return booking, booking.payment

    @staticmethod
    def has_blocking_dispute(booking_id: uuid.UUID | str, subject: str) -> bool:
        return Dispute.objects.filter(booking_id=booking_id, subject=subject).blocking().exists()

    @classmethod
    def ensure_not_blocked(cls, booking_id: uuid.UUID | str, subject: str) -> None:
        """
        Raises:
            DisputeBlockedError: A dispute on the subject is still open
        """
        if cls.has_blocking_dispute(booking_id, subject):
            raise DisputeBlockedError(
                f"{subject} release blocked by an open dispute",
                details={"booking_id": str(booking_id), "subject": subject},
            )

    @classmethod
    def _blocked_after_transfer(
        cls,
        booking: Booking,
        component: str,
        provider_reference: str,
    ) -> ServiceResult[dict]:
        """A dispute opened while the gateway call was in flight; write nothing."""
        if provider_reference:
            # Guest refund already left the gateway under this reference
            cls.get_logger().error(
                "Release blocked after gateway transfer",
                extra={
                    "booking_id": str(booking.id),
                    "component": component,
                    "provider_reference": provider_reference,
                },
            )
        return ServiceResult.failure(
            f"{component} release blocked by an open dispute",
            error_code=DisputeBlockedError.default_error_code,
        )

    @staticmethod
    def resolved_dispute(booking_id: uuid.UUID | str, subject: str) -> Dispute | None:
        """Most recent resolved dispute on a subject; its amounts drive the release."""
        return (
            Dispute.objects.filter(
                booking_id=booking_id,
                subject=subject,
                status=DisputeStatus.RESOLVED,
            )
            .order_by("-resolved_at")
            .first()
        )

    # =========================================================================
    # Event Log
    # =========================================================================

    @staticmethod
    def _record_event(
        booking: Booking,
        event_type: str,
        amount: Decimal,
        from_party: str,
        to_party: str,
        reference: str,
        dispute: Dispute | None = None,
        provider_reference: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> EscrowEvent | None:
        """Append an escrow event; a repeated reference returns the stored one."""
        amount = to_money(amount)
        if amount <= 0:
            return None
        existing = EscrowEvent.objects.filter(reference=reference).first()
        if existing is not None:
            return existing
        try:
            with transaction.atomic():
                return EscrowEvent.objects.create(
                    booking=booking,
                    event_type=event_type,
                    amount=amount,
                    currency=booking.currency,
                    from_party=from_party,
                    to_party=to_party,
                    reference=reference,
                    dispute=dispute,
                    provider_reference=provider_reference,
                    metadata=metadata or {},
                )
        except IntegrityError:
            return EscrowEvent.objects.get(reference=reference)

    @classmethod
    def replay(cls, booking_id: uuid.UUID | str) -> EscrowState:
        return replay_escrow_events(
            EscrowEvent.objects.filter(booking_id=booking_id).order_by("executed_at", "created_at")
        )

    # =========================================================================
    # Capture
    # =========================================================================

    @classmethod
    def hold_funds(
        cls,
        booking_id: uuid.UUID | str,
        captured_amount: Decimal,
        provider_reference: str = "",
        provider_transaction_id: str = "",
    ) -> Payment:
        """
        Take custody of a captured payment.

        Credits the cleaning fee to the operator and the service/platform
        fees to the platform right away; the room fee and deposit stay in
        escrow. Payment moves INITIATED -> HELD.

        Idempotent: repeating the call with the same amount returns the
        existing payment.

        Raises:
            InvalidAmount: Captured amount doesn't equal the fee breakdown
            ConflictError: Funds were already held for a different amount
        """
        captured = to_money(captured_amount)

        with cls.atomic():
            booking, payment = cls._locked(booking_id)

            if payment.status != PaymentStatus.INITIATED:
                if payment.held_at is not None and payment.amount_captured == captured:
                    return payment
                raise ConflictError(
                    "Funds already held for this booking with a different amount",
                    error_code="HOLD_AMOUNT_MISMATCH",
                    details={
                        "booking_id": str(booking.id),
                        "held_amount": str(payment.amount_captured),
                        "captured_amount": str(captured),
                        "payment_status": payment.status,
                    },
                )

            expected = booking.components_total
            if captured != expected:
                raise InvalidAmount(
                    "Captured amount does not match the booking breakdown",
                    error_code="CAPTURE_AMOUNT_MISMATCH",
                    details={
                        "booking_id": str(booking.id),
                        "captured_amount": str(captured),
                        "expected_amount": str(expected),
                    },
                )

            operator_wallet = WalletService.operator_wallet(booking.operator_id, booking.currency)
            platform_wallet = WalletService.platform_wallet(booking.currency)

            postings = []
            if booking.cleaning_fee > 0:
                postings.append((
                    TransactionType.CREDIT,
                    PostingParams(
                        wallet_id=operator_wallet.id,
                        amount=booking.cleaning_fee,
                        source=TransactionSource.CLEANING_FEE,
                        reference=booking_reference(booking.id, "cleaning_fee"),
                        booking_id=booking.id,
                        description="Cleaning fee released at capture",
                    ),
                ))
            if booking.service_fee > 0:
                postings.append((
                    TransactionType.CREDIT,
                    PostingParams(
                        wallet_id=platform_wallet.id,
                        amount=booking.service_fee,
                        source=TransactionSource.SERVICE_FEE,
                        reference=booking_reference(booking.id, "service_fee"),
                        booking_id=booking.id,
                        description="Guest service fee",
                    ),
                ))
            if booking.platform_fee > 0:
                postings.append((
                    TransactionType.CREDIT,
                    PostingParams(
                        wallet_id=platform_wallet.id,
                        amount=booking.platform_fee,
                        source=TransactionSource.PLATFORM_FEE,
                        reference=booking_reference(booking.id, "platform_fee"),
                        booking_id=booking.id,
                        description="Guest platform surcharge",
                    ),
                ))
            WalletService.post(postings)

            cls._record_event(
                booking, EscrowEventType.HOLD_ROOM_FEE, booking.room_fee,
                Party.GUEST, Party.ESCROW, booking_reference(booking.id, "room_fee", "hold"),
                provider_reference=provider_reference,
            )
            cls._record_event(
                booking, EscrowEventType.HOLD_SECURITY_DEPOSIT, booking.security_deposit,
                Party.GUEST, Party.ESCROW, booking_reference(booking.id, "deposit", "hold"),
                provider_reference=provider_reference,
            )
            cls._record_event(
                booking, EscrowEventType.RELEASE_CLEANING_FEE, booking.cleaning_fee,
                Party.GUEST, Party.OPERATOR, booking_reference(booking.id, "cleaning_fee"),
            )
            cls._record_event(
                booking, EscrowEventType.COLLECT_SERVICE_FEE, booking.service_fee,
                Party.GUEST, Party.PLATFORM, booking_reference(booking.id, "service_fee"),
            )
            cls._record_event(
                booking, EscrowEventType.COLLECT_PLATFORM_FEE, booking.platform_fee,
                Party.GUEST, Party.PLATFORM, booking_reference(booking.id, "platform_fee"),
            )

            payment.amount_captured = captured
            payment.provider_reference = provider_reference or payment.provider_reference
            payment.provider_transaction_id = provider_transaction_id or payment.provider_transaction_id
            payment.room_fee_in_escrow = True
            payment.deposit_in_escrow = booking.security_deposit > 0
            payment.cleaning_fee_released = True
            payment.service_fee_collected = True
            payment.room_fee_state = ComponentState.HELD
            payment.deposit_state = ComponentState.HELD
            payment.hold()
            payment.save()

        cls.get_logger().info(
            "Funds held in escrow",
            extra={
                "booking_id": str(booking.id),
                "captured_amount": str(captured),
                "room_fee": str(booking.room_fee),
                "security_deposit": str(booking.security_deposit),
            },
        )
        return payment

    # =========================================================================
    # Release Scheduling
    # =========================================================================

    @classmethod
    def schedule_room_fee_release(cls, booking_id: uuid.UUID | str) -> Booking:
        """Room fee becomes releasable once the guest's dispute window closes."""
        window = timedelta(minutes=settings.GUEST_DISPUTE_WINDOW_MINUTES)
        with cls.atomic():
            booking, _ = cls._locked(booking_id)
            if booking.checked_in_at is None:
                raise ConflictError(
                    "Booking has not checked in",
                    error_code="NOT_CHECKED_IN",
                    details={"booking_id": str(booking.id), "status": booking.status},
                )
            booking.room_fee_release_eligible_at = booking.checked_in_at + window
            booking.save(update_fields=["room_fee_release_eligible_at"])
        return booking

    @classmethod
    def schedule_deposit_release(cls, booking_id: uuid.UUID | str) -> Booking:
        """Deposit becomes releasable once the operator's dispute window closes."""
        window = timedelta(minutes=settings.OPERATOR_DISPUTE_WINDOW_MINUTES)
        with cls.atomic():
            booking, _ = cls._locked(booking_id)
            if booking.checked_out_at is None:
                raise ConflictError(
                    "Booking has not checked out",
                    error_code="NOT_CHECKED_OUT",
                    details={"booking_id": str(booking.id), "status": booking.status},
                )
            booking.deposit_release_eligible_at = booking.checked_out_at + window
            booking.save(update_fields=["deposit_release_eligible_at"])
        return booking

    # =========================================================================
    # Room Fee
    # =========================================================================

    @classmethod
    def execute_room_fee_split(cls, booking_id: uuid.UUID | str) -> ServiceResult[dict]:
        """
        Release the held room fee.

        Without a dispute the operator receives the room fee minus the
        snapshot commission and the platform keeps the commission. After a
        resolved room fee dispute the guest refund is paid through the
        gateway first and the remainder is split at the snapshot rate.

        Returns ServiceResult.failure (nothing moved) when the release is
        blocked by a dispute, not yet eligible, or the gateway failed.
        """
        now = timezone.now()
        booking, payment = cls._load(booking_id)

        if payment.room_fee_state in TERMINAL_COMPONENT_STATES:
            return ServiceResult.ok({"status": "already_settled", "state": payment.room_fee_state})
        if payment.room_fee_state not in RETRYABLE_COMPONENT_STATES:
            return ServiceResult.failure("Room fee is not in escrow", error_code="NOT_HELD")
        if cls.has_blocking_dispute(booking.id, DisputeSubject.ROOM_FEE):
            return ServiceResult.failure(
                "Room fee release blocked by an open dispute",
                error_code="DISPUTE_BLOCKED",
            )

        dispute = cls.resolved_dispute(booking.id, DisputeSubject.ROOM_FEE)
        if dispute is None and not cls._room_fee_due(booking, now):
            return ServiceResult.failure(
                "Room fee release window has not elapsed",
                error_code="NOT_ELIGIBLE",
            )
        if payment.room_fee_next_attempt_at and payment.room_fee_next_attempt_at > now:
            return ServiceResult.failure("Waiting for retry backoff", error_code="BACKOFF")

        guest_refund = dispute.guest_refund_amount if dispute else ZERO
        provider_reference = ""
        if guest_refund > 0:
            try:
                result = get_gateway(booking.gateway).transfer(
                    TransferDestination.refund(payment.provider_transaction_id or payment.provider_reference),
                    guest_refund,
                    reference=booking_reference(booking.id, "room_fee", "guest_refund"),
                    currency=booking.currency,
                )
            except ProviderError as e:
                return cls._record_failure(booking.id, ROOM_FEE, e)
            provider_reference = result.provider_reference

        with cls.atomic():
            booking, payment = cls._locked(booking.id)
            if payment.room_fee_state not in RETRYABLE_COMPONENT_STATES:
                return ServiceResult.ok({"status": "already_settled", "state": payment.room_fee_state})
            if cls.has_blocking_dispute(booking.id, DisputeSubject.ROOM_FEE):
                return cls._blocked_after_transfer(booking, ROOM_FEE, provider_reference)

            remaining = booking.room_fee - guest_refund
            operator_amount, commission = split_room_fee(remaining, booking.commission_effective_rate)
            cls._post_room_fee(booking, operator_amount, commission)

            cls._record_event(
                booking, EscrowEventType.REFUND_ROOM_FEE_TO_GUEST, guest_refund,
                Party.ESCROW, Party.GUEST, booking_reference(booking.id, "room_fee", "guest_refund"),
                dispute=dispute, provider_reference=provider_reference,
            )
            cls._record_event(
                booking, EscrowEventType.RELEASE_ROOM_FEE_TO_OPERATOR, operator_amount,
                Party.ESCROW, Party.OPERATOR, booking_reference(booking.id, "room_fee", "operator"),
                dispute=dispute,
            )
            cls._record_event(
                booking, EscrowEventType.COLLECT_COMMISSION, commission,
                Party.ESCROW, Party.PLATFORM, booking_reference(booking.id, "room_fee", "commission"),
                dispute=dispute,
                metadata={"effective_rate": str(booking.commission_effective_rate)},
            )

            payment.room_fee_in_escrow = False
            payment.room_fee_state = ComponentState.SETTLED
            payment.room_fee_next_attempt_at = None
            payment.release_room_fee()
            payment.save()

            if dispute is not None:
                dispute = Dispute.objects.get(id=dispute.id)
                dispute.operator_payout_amount = operator_amount
                dispute.platform_fee_amount = commission
                dispute.executed_at = timezone.now()
                dispute.save(update_fields=["operator_payout_amount", "platform_fee_amount", "executed_at"])

            cls._maybe_complete(booking, payment)
            cls._notify_room_fee(booking, operator_amount, guest_refund)

        cls.get_logger().info(
            "Room fee released",
            extra={
                "booking_id": str(booking.id),
                "operator_amount": str(operator_amount),
                "commission": str(commission),
                "guest_refund": str(guest_refund),
                "dispute_id": str(dispute.id) if dispute else None,
            },
        )
        return ServiceResult.ok({
            "status": "released",
            "operator_amount": operator_amount,
            "commission": commission,
            "guest_refund": guest_refund,
        })

    @staticmethod
    def _room_fee_due(booking: Booking, now) -> bool:
        return (
            booking.status in (BookingStatus.CHECKED_IN, BookingStatus.CHECKED_OUT)
            and booking.room_fee_release_eligible_at is not None
            and booking.room_fee_release_eligible_at <= now
        )

    @classmethod
    def _post_room_fee(cls, booking: Booking, operator_amount: Decimal, commission: Decimal) -> None:
        postings = []
        if operator_amount > 0:
            postings.append((
                TransactionType.CREDIT,
                PostingParams(
                    wallet_id=WalletService.operator_wallet(booking.operator_id, booking.currency).id,
                    amount=operator_amount,
                    source=TransactionSource.ROOM_FEE,
                    reference=booking_reference(booking.id, "room_fee", "operator"),
                    booking_id=booking.id,
                    description="Room fee payout",
                ),
            ))
        if commission > 0:
            postings.append((
                TransactionType.CREDIT,
                PostingParams(
                    wallet_id=WalletService.platform_wallet(booking.currency).id,
                    amount=commission,
                    source=TransactionSource.COMMISSION,
                    reference=booking_reference(booking.id, "room_fee", "commission"),
                    booking_id=booking.id,
                    description="Commission on room fee",
                    metadata={"effective_rate": str(booking.commission_effective_rate)},
                ),
            ))
        WalletService.post(postings)

    @staticmethod
    def _notify_room_fee(booking: Booking, operator_amount: Decimal, guest_refund: Decimal) -> None:
        if operator_amount > 0:
            NotificationDispatcher.notify(
                recipient_id=booking.operator_id,
                event_type=NotificationEvent.PAYOUT_COMPLETED,
                context={"booking_id": booking.id, "amount": operator_amount, "currency": booking.currency},
                booking_id=booking.id,
                idempotency_key=booking_reference(booking.id, "room_fee", "payout_notice"),
            )
        if guest_refund > 0:
            NotificationDispatcher.notify(
                recipient_id=booking.guest_id,
                event_type=NotificationEvent.REFUND_COMPLETED,
                context={"booking_id": booking.id, "amount": guest_refund, "currency": booking.currency},
                booking_id=booking.id,
                idempotency_key=booking_reference(booking.id, "room_fee", "refund_notice"),
            )

    # =========================================================================
    # Security Deposit
    # =========================================================================

    @classmethod
    def execute_deposit_release(
        cls,
        booking_id: uuid.UUID | str,
        deduction_amount: Decimal | None = None,
    ) -> ServiceResult[dict]:
        """
        Release the held security deposit.

        ``deposit - deduction`` is refunded to the guest through the gateway
        and ``deduction`` is credited to the operator. Without an explicit
        deduction the resolved deposit dispute supplies it; otherwise the
        whole deposit goes back to the guest.

        Raises:
            InvalidAmount: deduction is negative or exceeds the deposit
        """
        now = timezone.now()
        booking, payment = cls._load(booking_id)

        if payment.deposit_state in TERMINAL_COMPONENT_STATES:
            return ServiceResult.ok({"status": "already_settled", "state": payment.deposit_state})
        if payment.deposit_state not in RETRYABLE_COMPONENT_STATES:
            return ServiceResult.failure("Deposit is not in escrow", error_code="NOT_HELD")
        if payment.room_fee_state not in TERMINAL_COMPONENT_STATES:
            return ServiceResult.failure(
                "Deposit is released only after the room fee is settled",
                error_code="ROOM_FEE_NOT_SETTLED",
            )
        if booking.status != BookingStatus.CHECKED_OUT:
            return ServiceResult.failure("Guest has not checked out", error_code="NOT_ELIGIBLE")
        if cls.has_blocking_dispute(booking.id, DisputeSubject.SECURITY_DEPOSIT):
            return ServiceResult.failure(
                "Deposit release blocked by an open dispute",
                error_code="DISPUTE_BLOCKED",
            )

        dispute = cls.resolved_dispute(booking.id, DisputeSubject.SECURITY_DEPOSIT)
        if deduction_amount is None and dispute is None:
            if booking.deposit_release_eligible_at is None or booking.deposit_release_eligible_at > now:
                return ServiceResult.failure(
                    "Deposit release window has not elapsed",
                    error_code="NOT_ELIGIBLE",
                )
        if payment.deposit_next_attempt_at and payment.deposit_next_attempt_at > now:
            return ServiceResult.failure("Waiting for retry backoff", error_code="BACKOFF")

        if deduction_amount is not None:
            deduction = to_money(deduction_amount)
        elif dispute is not None:
            deduction = dispute.operator_payout_amount
        else:
            deduction = ZERO
        if deduction < 0 or deduction > booking.security_deposit:
            raise InvalidAmount(
                "Deposit deduction must be between 0 and the deposit",
                details={"deduction": str(deduction), "security_deposit": str(booking.security_deposit)},
            )

        guest_amount = booking.security_deposit - deduction
        provider_reference = ""
        if guest_amount > 0:
            try:
                result = get_gateway(booking.gateway).transfer(
                    TransferDestination.refund(payment.provider_transaction_id or payment.provider_reference),
                    guest_amount,
                    reference=booking_reference(booking.id, "deposit", "guest"),
                    currency=booking.currency,
                )
            except ProviderError as e:
                return cls._record_failure(booking.id, DEPOSIT, e)
            provider_reference = result.provider_reference

        with cls.atomic():
            booking, payment = cls._locked(booking.id)
            if payment.deposit_state not in RETRYABLE_COMPONENT_STATES:
                return ServiceResult.ok({"status": "already_settled", "state": payment.deposit_state})
            if cls.has_blocking_dispute(booking.id, DisputeSubject.SECURITY_DEPOSIT):
                return cls._blocked_after_transfer(booking, DEPOSIT, provider_reference)

            if deduction > 0:
                WalletService.credit(PostingParams(
                    wallet_id=WalletService.operator_wallet(booking.operator_id, booking.currency).id,
                    amount=deduction,
                    source=TransactionSource.DEPOSIT_DEDUCTION,
                    reference=booking_reference(booking.id, "deposit", "operator"),
                    booking_id=booking.id,
                    description="Security deposit deduction",
                ))

            cls._record_event(
                booking, EscrowEventType.RELEASE_DEPOSIT_TO_GUEST, guest_amount,
                Party.ESCROW, Party.GUEST, booking_reference(booking.id, "deposit", "guest"),
                dispute=dispute, provider_reference=provider_reference,
            )
            cls._record_event(
                booking, EscrowEventType.PAY_OPERATOR_FROM_DEPOSIT, deduction,
                Party.ESCROW, Party.OPERATOR, booking_reference(booking.id, "deposit", "operator"),
                dispute=dispute,
            )

            payment.deposit_in_escrow = False
            payment.deposit_state = ComponentState.SETTLED
            payment.deposit_next_attempt_at = None
            payment.deposit_released_at = timezone.now()
            payment.save()

            if dispute is not None and dispute.executed_at is None:
                dispute = Dispute.objects.get(id=dispute.id)
                dispute.executed_at = timezone.now()
                dispute.save(update_fields=["executed_at"])

            cls._maybe_complete(booking, payment)

            if guest_amount > 0:
                NotificationDispatcher.notify(
                    recipient_id=booking.guest_id,
                    event_type=NotificationEvent.REFUND_COMPLETED,
                    context={"booking_id": booking.id, "amount": guest_amount, "currency": booking.currency},
                    booking_id=booking.id,
                    idempotency_key=booking_reference(booking.id, "deposit", "refund_notice"),
                )
            if deduction > 0:
                NotificationDispatcher.notify(
                    recipient_id=booking.operator_id,
                    event_type=NotificationEvent.PAYOUT_COMPLETED,
                    context={"booking_id": booking.id, "amount": deduction, "currency": booking.currency},
                    booking_id=booking.id,
                    idempotency_key=booking_reference(booking.id, "deposit", "payout_notice"),
                )

        cls.get_logger().info(
            "Security deposit released",
            extra={
                "booking_id": str(booking.id),
                "guest_amount": str(guest_amount),
                "deduction": str(deduction),
                "dispute_id": str(dispute.id) if dispute else None,
            },
        )
        return ServiceResult.ok({
            "status": "released",
            "guest_amount": guest_amount,
            "deduction": deduction,
        })

    @classmethod
    def _maybe_complete(cls, booking: Booking, payment: Payment) -> None:
        """Finish the payment and booking once both components are settled."""
        if payment.room_fee_state != ComponentState.SETTLED or payment.deposit_state != ComponentState.SETTLED:
            return
        if payment.status == PaymentStatus.HELD:
            payment.release_room_fee()
        if payment.status == PaymentStatus.PARTIALLY_RELEASED:
            state = cls.replay(booking.id)
            if state.refunded_to_guest >= booking.room_fee + booking.security_deposit:
                payment.refund()
            else:
                payment.settle()
            payment.save()
        if booking.status == BookingStatus.CHECKED_OUT:
            booking.complete()
            booking.save()

    # =========================================================================
    # Failure Handling
    # =========================================================================

    @classmethod
    def _record_failure(
        cls,
        booking_id: uuid.UUID | str,
        component: str,
        error: ProviderError,
    ) -> ServiceResult[dict]:
        """Count a failed attempt and schedule the next one, or park for review."""
        max_attempts = settings.SETTLEMENT_MAX_RELEASE_ATTEMPTS

        with cls.atomic():
            booking, payment = cls._locked(booking_id)
            attempts = getattr(payment, f"{component}_attempts") + 1
            setattr(payment, f"{component}_attempts", attempts)
            setattr(payment, f"{component}_last_error", error.message)

            if attempts >= max_attempts or not error.is_retryable:
                state = ComponentState.ADMIN_REVIEW
                setattr(payment, f"{component}_next_attempt_at", None)
                NotificationDispatcher.notify(
                    recipient_id=booking.operator_id,
                    event_type=NotificationEvent.RELEASE_NEEDS_REVIEW,
                    context={"booking_id": booking.id, "component": component},
                    booking_id=booking.id,
                    idempotency_key=booking_reference(booking.id, component, f"review:{attempts}"),
                )
            else:
                state = ComponentState.FAILED
                delay = backoff_delay(
                    attempts,
                    base=settings.SETTLEMENT_RETRY_BASE_SECONDS,
                    max_delay=settings.SETTLEMENT_RETRY_MAX_SECONDS,
                )
                setattr(payment, f"{component}_next_attempt_at", timezone.now() + timedelta(seconds=delay))
            setattr(payment, f"{component}_state", state)
            payment.save()

        log = cls.get_logger().error if state == ComponentState.ADMIN_REVIEW else cls.get_logger().warning
        log(
            "Escrow release failed",
            extra={
                "booking_id": str(booking_id),
                "component": component,
                "attempts": attempts,
                "state": state,
                "error_code": error.error_code,
                "retryable": error.is_retryable,
            },
        )
        return ServiceResult.failure(error.message, error_code=error.error_code)

    @classmethod
    def admin_retry(cls, booking_id: uuid.UUID | str, component: str) -> ServiceResult[dict]:
        """
        Re-run a release parked in ADMIN_REVIEW with its attempt counter reset.

        Raises:
            InvalidAmount: Unknown component name
            ConflictError: The component is not awaiting review
            DisputeBlockedError: A dispute on the component is still open
        """
        if component not in (ROOM_FEE, DEPOSIT):
            raise InvalidAmount(f"Unknown escrow component '{component}'", error_code="UNKNOWN_COMPONENT")
        subject = DisputeSubject.ROOM_FEE if component == ROOM_FEE else DisputeSubject.SECURITY_DEPOSIT

        with cls.atomic():
            booking, payment = cls._locked(booking_id)
            if getattr(payment, f"{component}_state") != ComponentState.ADMIN_REVIEW:
                raise ConflictError(
                    f"{component} is not awaiting admin review",
                    error_code="NOT_IN_ADMIN_REVIEW",
                    details={"booking_id": str(booking.id), "state": getattr(payment, f"{component}_state")},
                )
            cls.ensure_not_blocked(booking.id, subject)
            setattr(payment, f"{component}_state", ComponentState.FAILED)
            setattr(payment, f"{component}_attempts", 0)
            setattr(payment, f"{component}_next_attempt_at", None)
            payment.save()

        if component == ROOM_FEE:
            return cls.execute_room_fee_split(booking_id)
        return cls.execute_deposit_release(booking_id)

    # =========================================================================
    # Cancellation
    # =========================================================================

    @classmethod
    def cancellation_quote(cls, booking: Booking, now=None) -> CancellationRefund:
        """Refund split for cancelling ``booking`` at ``now`` under the active policy."""
        now = now or timezone.now()
        hours = Decimal(str((booking.scheduled_check_in_at - now).total_seconds())) / 3600
        return compute_cancellation_refund(
            booking.room_fee,
            booking.security_deposit,
            hours,
            load_finance_config().cancellation,
        )

    @classmethod
    def refund_held_funds(cls, booking_id: uuid.UUID | str, reason: str = "") -> Payment:
        """
        Cancel a paid booking and divide its escrow under the cancellation policy.

        Early enough before check-in the guest gets the policy's share of the
        room fee and the whole deposit back through the gateway; the operator
        and platform portions of the room fee are credited to their wallets.
        The cleaning, service and platform fees already disbursed at capture
        are not reversed. The booking moves to CANCELLED.

        Raises:
            ConflictError: Booking is not PAID or funds are no longer in escrow
            CancellationNotAllowedError: Inside the notice period before check-in
            ProviderError: The gateway refund failed; nothing was changed
        """
        booking, payment = cls._load(booking_id)
        if booking.status != BookingStatus.PAID or payment.status != PaymentStatus.HELD:
            raise ConflictError(
                "Only a paid booking that has not checked in can be refunded",
                error_code="REFUND_NOT_ALLOWED",
                details={"booking_id": str(booking.id), "status": booking.status},
            )

        refund = cls.cancellation_quote(booking)
        if not refund.allowed:
            raise CancellationNotAllowedError(
                "Bookings cannot be cancelled this close to check-in",
                details={
                    "booking_id": str(booking.id),
                    "hours_until_check_in": str(refund.hours_until_check_in),
                    "tier": refund.tier,
                },
            )

        provider_reference = ""
        if refund.guest_total > 0:
            result = get_gateway(booking.gateway).transfer(
                TransferDestination.refund(payment.provider_transaction_id or payment.provider_reference),
                refund.guest_total,
                reference=booking_reference(booking.id, "cancellation_refund"),
                currency=booking.currency,
            )
            provider_reference = result.provider_reference

        with cls.atomic():
            booking, payment = cls._locked(booking.id)
            if payment.status != PaymentStatus.HELD:
                return payment

            cls._post_room_fee(booking, refund.operator_room_portion, refund.platform_room_portion)

            metadata = {"reason": "cancellation", "tier": refund.tier}
            cls._record_event(
                booking, EscrowEventType.REFUND_ROOM_FEE_TO_GUEST, refund.guest_room_refund,
                Party.ESCROW, Party.GUEST, booking_reference(booking.id, "room_fee", "guest_refund"),
                provider_reference=provider_reference, metadata=metadata,
            )
            cls._record_event(
                booking, EscrowEventType.RELEASE_ROOM_FEE_TO_OPERATOR, refund.operator_room_portion,
                Party.ESCROW, Party.OPERATOR, booking_reference(booking.id, "room_fee", "operator"),
                metadata=metadata,
            )
            cls._record_event(
                booking, EscrowEventType.COLLECT_COMMISSION, refund.platform_room_portion,
                Party.ESCROW, Party.PLATFORM, booking_reference(booking.id, "room_fee", "commission"),
                metadata=metadata,
            )
            cls._record_event(
                booking, EscrowEventType.RELEASE_DEPOSIT_TO_GUEST, refund.deposit_refund,
                Party.ESCROW, Party.GUEST, booking_reference(booking.id, "deposit", "guest"),
                provider_reference=provider_reference, metadata=metadata,
            )

            payment.room_fee_in_escrow = False
            payment.deposit_in_escrow = False
            payment.room_fee_state = ComponentState.SETTLED
            payment.deposit_state = ComponentState.SETTLED
            payment.refund()
            payment.save()

            booking.cancel(reason=reason)
            booking.save()

            if refund.guest_total > 0:
                NotificationDispatcher.notify(
                    recipient_id=booking.guest_id,
                    event_type=NotificationEvent.REFUND_COMPLETED,
                    context={"booking_id": booking.id, "amount": refund.guest_total, "currency": booking.currency},
                    booking_id=booking.id,
                    idempotency_key=booking_reference(booking.id, "cancellation_refund"),
                )
            if refund.operator_room_portion > 0:
                NotificationDispatcher.notify(
                    recipient_id=booking.operator_id,
                    event_type=NotificationEvent.PAYOUT_COMPLETED,
                    context={
                        "booking_id": booking.id,
                        "amount": refund.operator_room_portion,
                        "currency": booking.currency,
                    },
                    booking_id=booking.id,
                    idempotency_key=booking_reference(booking.id, "cancellation_payout"),
                )

        cls.get_logger().info(
            "Escrow divided on cancellation",
            extra={
                "booking_id": str(booking.id),
                "tier": refund.tier,
                "guest_amount": str(refund.guest_total),
                "operator_amount": str(refund.operator_room_portion),
                "platform_amount": str(refund.platform_room_portion),
                "reason": reason,
            },
        )
        return payment
