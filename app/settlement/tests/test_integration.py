"""
End-to-end booking journeys.

Each test drives a booking from reservation to completion through the
services and the periodic sweeps (Celery runs eagerly in tests), then
checks that every unit of the captured total ended up with exactly one
party.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from settlement.ledger import WalletService
from settlement.models import Booking
from settlement.services import (
    BookingService,
    CreateBookingParams,
    DisputeService,
    EscrowService,
    OpenDisputeParams,
)
from settlement.state_machines import (
    AdminDecision,
    BookingStatus,
    DisputeCategory,
    DisputeResponseAction,
    DisputeSubject,
)
from settlement.workers import sweep_deposit_releases, sweep_room_fee_releases


@pytest.fixture
def reserved_booking(db):
    today = timezone.now().date()
    return BookingService.create_booking(CreateBookingParams(
        guest_id=uuid.uuid4(),
        operator_id=uuid.uuid4(),
        property_id=uuid.uuid4(),
        check_in_date=today + timedelta(days=7),
        check_out_date=today + timedelta(days=9),
        nightly_rate=Decimal("25000"),
        cleaning_fee=Decimal("5000"),
        security_deposit=Decimal("10000"),
    ))


def pass_window(booking, field):
    Booking.objects.filter(id=booking.id).update(**{field: timezone.now() - timedelta(minutes=1)})


def assert_fully_disbursed(booking, guest_refunds):
    state = EscrowService.replay(booking.id)
    operator = WalletService.operator_wallet(booking.operator_id, booking.currency)
    platform = WalletService.platform_wallet(booking.currency)

    assert state.in_escrow == Decimal("0.00")
    assert state.refunded_to_guest == guest_refunds
    assert operator.balance_available + platform.balance_available + guest_refunds == booking.total_amount
    assert WalletService.verify_balance(operator.id)
    assert WalletService.verify_balance(platform.id)


@pytest.mark.django_db
class TestBookingJourneys:
    def test_undisputed_stay(self, reserved_booking, fake_gateway, mock_redis):
        booking = BookingService.confirm_payment(reserved_booking.id, "ref_test_123")
        BookingService.confirm_check_in(booking.id, booking.guest_id)

        pass_window(booking, "room_fee_release_eligible_at")
        assert sweep_room_fee_releases()["queued_count"] == 1

        BookingService.confirm_check_out(booking.id, booking.guest_id)
        pass_window(booking, "deposit_release_eligible_at")
        assert sweep_deposit_releases()["queued_count"] == 1

        booking = Booking.objects.get(id=booking.id)
        assert booking.status == BookingStatus.COMPLETED
        assert WalletService.operator_wallet(booking.operator_id, "NGN").balance_available == Decimal("50000.00")
        assert WalletService.platform_wallet("NGN").balance_available == Decimal("6100.00")
        assert_fully_disbursed(booking, guest_refunds=Decimal("10000.00"))

    def test_disputed_room_fee_and_deposit(self, reserved_booking, fake_gateway, mock_redis):
        """Guest wins half the room fee dispute; admin awards the operator 6000 of the deposit."""
        booking = BookingService.confirm_payment(reserved_booking.id, "ref_test_123")
        BookingService.confirm_check_in(booking.id, booking.guest_id)

        room_fee_dispute = DisputeService.open_dispute(OpenDisputeParams(
            booking_id=booking.id,
            actor_id=booking.guest_id,
            subject=DisputeSubject.ROOM_FEE,
            category=DisputeCategory.MISSING_AMENITIES_CLEANLINESS,
        ))
        DisputeService.respond(room_fee_dispute.id, booking.operator_id, DisputeResponseAction.ACCEPT)

        # A resolved dispute is released without waiting for the window
        assert sweep_room_fee_releases()["queued_count"] == 1

        BookingService.confirm_check_out(booking.id, booking.guest_id)
        deposit_dispute = DisputeService.open_dispute(OpenDisputeParams(
            booking_id=booking.id,
            actor_id=booking.operator_id,
            subject=DisputeSubject.SECURITY_DEPOSIT,
            category=DisputeCategory.PROPERTY_DAMAGE,
            claimed_amount=Decimal("8000"),
        ))
        pass_window(booking, "deposit_release_eligible_at")
        assert sweep_deposit_releases()["queued_count"] == 0

        DisputeService.respond(deposit_dispute.id, booking.guest_id, DisputeResponseAction.REJECT_ESCALATE)
        DisputeService.admin_resolve(
            deposit_dispute.id, uuid.uuid4(), AdminDecision.PARTIAL_REFUND, amount=Decimal("6000")
        )
        assert sweep_deposit_releases()["queued_count"] == 1

        booking = Booking.objects.get(id=booking.id)
        assert booking.status == BookingStatus.COMPLETED
        # 22500 room fee + 5000 cleaning + 6000 deposit
        assert WalletService.operator_wallet(booking.operator_id, "NGN").balance_available == Decimal("33500.00")
        assert_fully_disbursed(booking, guest_refunds=Decimal("29000.00"))
