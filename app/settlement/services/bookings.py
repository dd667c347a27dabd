"""
Booking service: pricing, reservation, payment confirmation and the stay.

Flow:
    quote() / create_booking()   -> PENDING, Payment INITIATED
    confirm_payment()            -> PAID, funds held in escrow
    confirm_check_in()           -> CHECKED_IN, room fee release scheduled
    confirm_check_out()          -> CHECKED_OUT, deposit release scheduled
    cancel_booking()             -> CANCELLED (escrow refunded when PAID)

The automatic check-in/checkout fallbacks are driven by the sweeps in
settlement.workers.stay_fallbacks.

Usage:
    from settlement.services import BookingService, CreateBookingParams

    booking = BookingService.create_booking(
        CreateBookingParams(
            guest_id=guest_id,
            operator_id=operator_id,
            property_id=property_id,
            check_in_date=date(2026, 11, 1),
            check_out_date=date(2026, 11, 3),
            nightly_rate=Decimal("25000"),
            cleaning_fee=Decimal("5000"),
            security_deposit=Decimal("10000"),
        )
    )
    BookingService.confirm_payment(booking.id, "ref_123")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from core.services import BaseService, ServiceResult
from notifications.models import NotificationEvent
from notifications.services import NotificationDispatcher
from settlement.exceptions import BookingNotFoundError
from settlement.fees import BookingQuote, load_finance_config, monthly_room_fee_volume, quote_booking
from settlement.gateways import available_gateways, get_gateway
from settlement.ledger.types import ZERO, to_money
from settlement.models import Booking, Payment
from settlement.services.escrow import EscrowService
from settlement.services.transitions import apply_transition
from settlement.state_machines import (
    BookingStatus,
    CheckInConfirmation,
    PaymentStatus,
    ProcessingMode,
)

if TYPE_CHECKING:
    import uuid
    from datetime import date


@dataclass
class CreateBookingParams:
    """
    Parameters for reserving a stay.

    Attributes:
        guest_id / operator_id / property_id: External ids
        check_in_date / check_out_date: Stay dates (checkout after check-in)
        nightly_rate: Price per night
        cleaning_fee: Paid to the operator at capture
        security_deposit: Held until checkout + operator window
        platform_fee: Optional guest surcharge collected by the platform
        processing_mode: LOCAL or INTERNATIONAL card processing
        gateway: Payment gateway name, defaults to DEFAULT_PAYMENT_GATEWAY
        currency: Defaults to SETTLEMENT_CURRENCY
        check_in_hour / check_out_hour: Scheduled times of day
    """

    guest_id: uuid.UUID
    operator_id: uuid.UUID
    property_id: uuid.UUID
    check_in_date: date
    check_out_date: date
    nightly_rate: Decimal
    cleaning_fee: Decimal = ZERO
    security_deposit: Decimal = ZERO
    platform_fee: Decimal = ZERO
    processing_mode: str = ProcessingMode.LOCAL
    gateway: str | None = None
    currency: str | None = None
    check_in_hour: int | None = None
    check_out_hour: int | None = None


def scheduled_moment(day: date, hour: int) -> datetime:
    return timezone.make_aware(datetime.combine(day, time(hour=hour)))


class BookingService(BaseService):
    """
    Reservation and stay lifecycle.

    Methods:
        quote: Price a prospective stay without persisting anything
        create_booking: Reserve a stay and create its Payment
        confirm_payment: Verify capture at the gateway and hold funds
        confirm_check_in / auto_check_in: PAID -> CHECKED_IN
        confirm_check_out / auto_check_out: CHECKED_IN/DISPUTE_OPENED -> CHECKED_OUT
        cancel_booking: PENDING/PAID -> CANCELLED
    """

    @staticmethod
    def get_booking(booking_id: uuid.UUID | str) -> Booking:
        try:
            return Booking.objects.select_related("payment").get(id=booking_id)
        except Booking.DoesNotExist:
            raise BookingNotFoundError(
                f"Booking {booking_id} not found",
                details={"booking_id": str(booking_id)},
            )

    @staticmethod
    def _lock(booking_id: uuid.UUID | str) -> Booking:
        try:
            return Booking.objects.select_for_update().get(id=booking_id)
        except Booking.DoesNotExist:
            raise BookingNotFoundError(
                f"Booking {booking_id} not found",
                details={"booking_id": str(booking_id)},
            )

    # =========================================================================
    # Pricing & Reservation
    # =========================================================================

    @classmethod
    def quote(
        cls,
        operator_id: uuid.UUID,
        nightly_rate: Decimal,
        nights: int,
        cleaning_fee: Decimal = ZERO,
        security_deposit: Decimal = ZERO,
        platform_fee: Decimal = ZERO,
        processing_mode: str = ProcessingMode.LOCAL,
    ) -> BookingQuote:
        """Price a stay with the active config and the operator's volume this month."""
        return quote_booking(
            nightly_rate=nightly_rate,
            nights=nights,
            cleaning_fee=cleaning_fee,
            security_deposit=security_deposit,
            platform_fee=platform_fee,
            monthly_volume=monthly_room_fee_volume(operator_id),
            processing_mode=processing_mode,
            config=load_finance_config(),
        )

    @classmethod
    def create_booking(cls, params: CreateBookingParams) -> Booking:
        """
        Reserve a stay.

        The commission snapshot is frozen on the booking; later config
        changes never reprice it.

        Raises:
            ValidationError: Bad dates or unknown gateway
            InvalidAmount: Negative fees or zero room fee
            ConfigurationError: Finance config invalid (strict mode)
        """
        nights = (params.check_out_date - params.check_in_date).days
        if nights < 1:
            raise ValidationError(
                "Checkout must be after check-in",
                error_code="INVALID_STAY_DATES",
                details={
                    "check_in_date": str(params.check_in_date),
                    "check_out_date": str(params.check_out_date),
                },
            )

        gateway = params.gateway or settings.DEFAULT_PAYMENT_GATEWAY
        if gateway not in available_gateways():
            raise ValidationError(
                f"Unknown payment gateway '{gateway}'",
                error_code="UNKNOWN_GATEWAY",
                details={"gateway": gateway, "available": available_gateways()},
            )

        quote = cls.quote(
            operator_id=params.operator_id,
            nightly_rate=params.nightly_rate,
            nights=nights,
            cleaning_fee=params.cleaning_fee,
            security_deposit=params.security_deposit,
            platform_fee=params.platform_fee,
            processing_mode=params.processing_mode,
        )
        currency = (params.currency or settings.SETTLEMENT_CURRENCY).upper()
        check_in_hour = params.check_in_hour if params.check_in_hour is not None else settings.DEFAULT_CHECK_IN_HOUR
        check_out_hour = (
            params.check_out_hour if params.check_out_hour is not None else settings.DEFAULT_CHECK_OUT_HOUR
        )

        with cls.atomic():
            booking = Booking.objects.create(
                guest_id=params.guest_id,
                operator_id=params.operator_id,
                property_id=params.property_id,
                check_in_date=params.check_in_date,
                check_out_date=params.check_out_date,
                scheduled_check_in_at=scheduled_moment(params.check_in_date, check_in_hour),
                scheduled_check_out_at=scheduled_moment(params.check_out_date, check_out_hour),
                nights=nights,
                nightly_rate=quote.nightly_rate,
                currency=currency,
                room_fee=quote.room_fee,
                cleaning_fee=quote.cleaning_fee,
                security_deposit=quote.security_deposit,
                service_fee=quote.service_fee,
                platform_fee=quote.platform_fee,
                processing_fee=quote.processing_fee,
                processing_mode=quote.processing_mode,
                total_amount=quote.total_payable,
                commission_base_rate=quote.commission.base_rate,
                commission_volume_reduction=quote.commission.volume_reduction,
                commission_effective_rate=quote.commission.effective_rate,
                commission_amount=quote.commission.commission_amount,
                operator_room_payout=quote.commission.operator_room_payout,
                pricing_snapshot=quote.to_snapshot(),
                gateway=gateway,
            )
            Payment.objects.create(booking=booking, currency=currency, gateway=gateway)

        cls.get_logger().info(
            "Booking created",
            extra={
                "booking_id": str(booking.id),
                "operator_id": str(booking.operator_id),
                "total_amount": str(booking.total_amount),
                "effective_rate": str(booking.commission_effective_rate),
                "config_version": quote.config_version,
            },
        )
        return booking

    # =========================================================================
    # Payment
    # =========================================================================

    @classmethod
    def confirm_payment(cls, booking_id: uuid.UUID | str, provider_reference: str) -> Booking:
        """
        Verify the guest's payment and take the funds into escrow.

        Verification runs before any database lock. A failed or mismatched
        verification marks the Payment FAILED; the guest may retry with a
        new reference, which reopens it.

        Raises:
            ValidationError: Verification failed or the amount/currency differ
            InvalidStateTransitionError: Booking is not awaiting payment
            ProviderError: Gateway unreachable (payment left untouched)
        """
        booking = cls.get_booking(booking_id)
        payment = booking.payment

        if booking.status == BookingStatus.PAID and payment.provider_reference == provider_reference:
            return booking
        if booking.status != BookingStatus.PENDING:
            raise ConflictError(
                f"Booking is {booking.status}, not awaiting payment",
                error_code="PAYMENT_NOT_EXPECTED",
                details={"booking_id": str(booking.id), "status": booking.status},
            )

        verification = get_gateway(booking.gateway).verify(provider_reference)
        amount = to_money(verification.amount)
        currency = (verification.currency or booking.currency).upper()

        failure_reason = ""
        if not verification.success:
            failure_reason = "Gateway reported the payment as unsuccessful"
        elif amount != booking.total_amount or currency != booking.currency:
            failure_reason = (
                f"Captured {amount} {currency} but booking total is "
                f"{booking.total_amount} {booking.currency}"
            )

        with cls.atomic():
            booking = cls._lock(booking.id)
            payment = Payment.objects.select_for_update().get(booking_id=booking.id)
            if booking.status != BookingStatus.PENDING:
                return booking

            if payment.status == PaymentStatus.FAILED:
                payment.reopen()
            payment.provider_reference = provider_reference
            payment.provider_transaction_id = verification.provider_transaction_id

            if failure_reason:
                payment.fail(reason=failure_reason)
                payment.save()
            else:
                payment.save()
                EscrowService.hold_funds(
                    booking.id,
                    amount,
                    provider_reference=provider_reference,
                    provider_transaction_id=verification.provider_transaction_id,
                )
                booking.mark_paid()
                booking.save()
                for recipient in (booking.guest_id, booking.operator_id):
                    NotificationDispatcher.notify(
                        recipient_id=recipient,
                        event_type=NotificationEvent.BOOKING_PAID,
                        context={"booking_id": booking.id, "amount": amount, "currency": booking.currency},
                        booking_id=booking.id,
                        idempotency_key=f"booking:{booking.id}:paid:{recipient}",
                    )

        if failure_reason:
            cls.get_logger().warning(
                "Payment verification failed",
                extra={
                    "booking_id": str(booking.id),
                    "provider_reference": provider_reference,
                    "reason": failure_reason,
                },
            )
            raise ValidationError(
                failure_reason,
                error_code="PAYMENT_VERIFICATION_FAILED",
                details={
                    "booking_id": str(booking.id),
                    "verified_amount": str(amount),
                    "expected_amount": str(booking.total_amount),
                },
            )

        cls.get_logger().info(
            "Booking paid",
            extra={"booking_id": str(booking.id), "amount": str(amount)},
        )
        return booking

    # =========================================================================
    # Check-in / Checkout
    # =========================================================================

    @staticmethod
    def _party(booking: Booking, actor_id: uuid.UUID | str) -> str:
        actor = str(actor_id)
        if actor == str(booking.guest_id):
            return CheckInConfirmation.GUEST
        if actor == str(booking.operator_id):
            return CheckInConfirmation.OPERATOR
        raise PermissionDeniedError(
            "Only the guest or the operator can confirm this booking",
            details={"booking_id": str(booking.id)},
        )

    @classmethod
    def confirm_check_in(cls, booking_id: uuid.UUID | str, actor_id: uuid.UUID | str) -> Booking:
        """
        Confirm check-in as the guest (any time after payment) or the
        operator (at or after the scheduled check-in).

        Raises:
            PermissionDeniedError: Actor is not a party to the booking
            ConflictError: Already checked in, or operator confirmation too early
            InvalidStateTransitionError: Booking is not PAID
        """
        with cls.atomic():
            booking = cls._lock(booking_id)
            confirmation = cls._party(booking, actor_id)

            if booking.checked_in_at is not None:
                raise ConflictError(
                    "Check-in was already confirmed",
                    error_code="ALREADY_CHECKED_IN",
                    details={"booking_id": str(booking.id), "confirmation": booking.check_in_confirmation},
                )
            if confirmation == CheckInConfirmation.OPERATOR and timezone.now() < booking.scheduled_check_in_at:
                raise ConflictError(
                    "Operator cannot confirm check-in before the scheduled time",
                    error_code="CHECK_IN_TOO_EARLY",
                    details={
                        "booking_id": str(booking.id),
                        "scheduled_check_in_at": booking.scheduled_check_in_at.isoformat(),
                    },
                )
            return cls._check_in(booking, confirmation)

    @classmethod
    def auto_check_in(cls, booking_id: uuid.UUID | str) -> ServiceResult[Booking]:
        """Fallback check-in once the scheduled time plus grace period has passed."""
        grace = timedelta(minutes=settings.CHECK_IN_FALLBACK_MINUTES)
        with cls.atomic():
            booking = cls._lock(booking_id)
            if booking.status != BookingStatus.PAID:
                return ServiceResult.failure("Booking is not awaiting check-in", error_code="NOT_ELIGIBLE")
            if timezone.now() < booking.scheduled_check_in_at + grace:
                return ServiceResult.failure("Fallback check-in not due yet", error_code="NOT_DUE")
            return ServiceResult.ok(cls._check_in(booking, CheckInConfirmation.AUTO_FALLBACK))

    @classmethod
    def _check_in(cls, booking: Booking, confirmation: str) -> Booking:
        apply_transition(booking, "check_in", confirmation=confirmation)
        booking.save()
        booking = EscrowService.schedule_room_fee_release(booking.id)

        NotificationDispatcher.notify(
            recipient_id=booking.operator_id,
            event_type=NotificationEvent.CHECKED_IN,
            context={"booking_id": booking.id, "confirmation": confirmation},
            booking_id=booking.id,
            idempotency_key=f"booking:{booking.id}:checked_in",
        )
        cls.get_logger().info(
            "Booking checked in",
            extra={
                "booking_id": str(booking.id),
                "confirmation": confirmation,
                "room_fee_release_eligible_at": booking.room_fee_release_eligible_at.isoformat(),
            },
        )
        return booking

    @classmethod
    def confirm_check_out(cls, booking_id: uuid.UUID | str, actor_id: uuid.UUID | str) -> Booking:
        """
        Confirm checkout as the guest or the operator.

        Raises:
            PermissionDeniedError: Actor is not a party to the booking
            ConflictError: Already checked out
            InvalidStateTransitionError: Booking is not checked in
        """
        with cls.atomic():
            booking = cls._lock(booking_id)
            confirmation = cls._party(booking, actor_id)
            if booking.checked_out_at is not None:
                raise ConflictError(
                    "Checkout was already confirmed",
                    error_code="ALREADY_CHECKED_OUT",
                    details={"booking_id": str(booking.id), "confirmation": booking.check_out_confirmation},
                )
            return cls._check_out(booking, confirmation)

    @classmethod
    def auto_check_out(cls, booking_id: uuid.UUID | str) -> ServiceResult[Booking]:
        """Fallback checkout once the scheduled time plus grace period has passed."""
        grace = timedelta(minutes=settings.CHECK_OUT_FALLBACK_MINUTES)
        with cls.atomic():
            booking = cls._lock(booking_id)
            if booking.status not in (BookingStatus.CHECKED_IN, BookingStatus.DISPUTE_OPENED):
                return ServiceResult.failure("Booking is not checked in", error_code="NOT_ELIGIBLE")
            if timezone.now() < booking.scheduled_check_out_at + grace:
                return ServiceResult.failure("Fallback checkout not due yet", error_code="NOT_DUE")
            return ServiceResult.ok(cls._check_out(booking, CheckInConfirmation.AUTO_FALLBACK))

    @classmethod
    def _check_out(cls, booking: Booking, confirmation: str) -> Booking:
        apply_transition(booking, "check_out", confirmation=confirmation)
        booking.save()
        booking = EscrowService.schedule_deposit_release(booking.id)

        NotificationDispatcher.notify(
            recipient_id=booking.operator_id,
            event_type=NotificationEvent.CHECKED_OUT,
            context={"booking_id": booking.id, "confirmation": confirmation},
            booking_id=booking.id,
            idempotency_key=f"booking:{booking.id}:checked_out",
        )
        cls.get_logger().info(
            "Booking checked out",
            extra={
                "booking_id": str(booking.id),
                "confirmation": confirmation,
                "deposit_release_eligible_at": booking.deposit_release_eligible_at.isoformat(),
            },
        )
        return booking

    # =========================================================================
    # Cancellation
    # =========================================================================

    @classmethod
    def cancel_booking(
        cls,
        booking_id: uuid.UUID | str,
        actor_id: uuid.UUID | str | None = None,
        reason: str = "",
        is_staff: bool = False,
    ) -> Booking:
        """
        Cancel before check-in.

        A PENDING booking is cancelled outright. A PAID booking has its
        escrow divided under the cancellation policy first (see
        EscrowService.refund_held_funds).

        Raises:
            PermissionDeniedError: Actor is neither a party nor staff
            CancellationNotAllowedError: Paid booking inside the notice period
            InvalidStateTransitionError: Booking already checked in or finished
        """
        booking = cls.get_booking(booking_id)
        if not is_staff:
            cls._party(booking, actor_id)

        if booking.status == BookingStatus.PAID:
            EscrowService.refund_held_funds(booking.id, reason=reason)
            booking = cls.get_booking(booking.id)
        else:
            with cls.atomic():
                booking = cls._lock(booking.id)
                apply_transition(booking, "cancel", reason=reason)
                booking.save()
                payment = Payment.objects.select_for_update().get(booking_id=booking.id)
                if payment.status == PaymentStatus.INITIATED:
                    payment.fail(reason="Booking cancelled before payment")
                    payment.save()

        NotificationDispatcher.notify(
            recipient_id=booking.operator_id,
            event_type=NotificationEvent.BOOKING_CANCELLED,
            context={"booking_id": booking.id},
            booking_id=booking.id,
            idempotency_key=f"booking:{booking.id}:cancelled",
        )
        cls.get_logger().info(
            "Booking cancelled",
            extra={"booking_id": str(booking.id), "reason": reason, "refunded": booking.paid_at is not None},
        )
        return booking


__all__ = ["BookingService", "CreateBookingParams", "scheduled_moment"]
