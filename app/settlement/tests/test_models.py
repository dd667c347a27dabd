"""
Tests for settlement models.

Covers:
- Booking transitions and the protected status field
- Optimistic version increments
- Database constraints
- Escrow replay from events
- Append-only escrow log
- Versioned platform settings
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError
from django_fsm import TransitionNotAllowed

from settlement.models import Booking, Dispute, EscrowEvent, PlatformSetting, replay_escrow_events
from settlement.state_machines import (
    BookingStatus,
    CheckInConfirmation,
    DisputeStatus,
    DisputeSubject,
    EscrowEventType,
)
from settlement.tests.factories import BookingFactory, DisputeFactory


def event(event_type, amount):
    return EscrowEvent(event_type=event_type, amount=Decimal(amount))


@pytest.mark.django_db
class TestBookingModel:
    def test_components_sum_to_total(self):
        booking = BookingFactory()

        assert booking.components_total == booking.total_amount == Decimal("66100.00")

    def test_check_in_requires_payment(self):
        booking = BookingFactory()

        with pytest.raises(TransitionNotAllowed):
            booking.check_in()

    def test_transition_records_confirmation(self):
        booking = BookingFactory()
        booking.mark_paid()
        booking.check_in(CheckInConfirmation.OPERATOR)

        assert booking.status == BookingStatus.CHECKED_IN
        assert booking.check_in_confirmation == CheckInConfirmation.OPERATOR
        assert booking.checked_in_at is not None

    def test_status_cannot_be_assigned(self):
        """Status only changes through transitions."""
        booking = BookingFactory()

        with pytest.raises(AttributeError):
            booking.status = BookingStatus.COMPLETED

    def test_cancel_not_allowed_after_check_in(self):
        booking = BookingFactory()
        booking.mark_paid()
        booking.check_in()

        with pytest.raises(TransitionNotAllowed):
            booking.cancel("too late")

    def test_version_increments_on_save(self):
        booking = BookingFactory()
        assert booking.version == 1

        booking.mark_paid()
        booking.save()

        assert booking.version == 2
        assert Booking.objects.get(id=booking.id).version == 2

    def test_checkout_date_must_follow_check_in(self):
        booking = BookingFactory.build()
        booking.check_out_date = booking.check_in_date - timedelta(days=1)

        with pytest.raises(IntegrityError):
            booking.save()


@pytest.mark.django_db
class TestDisputeQuerySet:
    def test_blocking(self):
        open_dispute = DisputeFactory()
        DisputeFactory(status=DisputeStatus.CANCELLED, booking=open_dispute.booking)

        blocking = Dispute.objects.blocking().for_subject(DisputeSubject.ROOM_FEE)

        assert list(blocking) == [open_dispute]


class TestEscrowReplay:
    """replay_escrow_events is a pure fold over events."""

    def test_capture_and_split(self):
        state = replay_escrow_events([
            event(EscrowEventType.HOLD_ROOM_FEE, "50000"),
            event(EscrowEventType.HOLD_SECURITY_DEPOSIT, "10000"),
            event(EscrowEventType.RELEASE_CLEANING_FEE, "5000"),
            event(EscrowEventType.COLLECT_SERVICE_FEE, "1100"),
            event(EscrowEventType.RELEASE_ROOM_FEE_TO_OPERATOR, "45000"),
            event(EscrowEventType.COLLECT_COMMISSION, "5000"),
        ])

        assert state.room_fee_held == Decimal("0")
        assert state.deposit_held == Decimal("10000")
        assert state.paid_to_operator == Decimal("50000")
        assert state.collected_by_platform == Decimal("6100")
        assert state.in_escrow + state.disbursed == Decimal("66100")

    def test_deposit_split(self):
        state = replay_escrow_events([
            event(EscrowEventType.HOLD_SECURITY_DEPOSIT, "10000"),
            event(EscrowEventType.PAY_OPERATOR_FROM_DEPOSIT, "6000"),
            event(EscrowEventType.RELEASE_DEPOSIT_TO_GUEST, "4000"),
        ])

        assert state.deposit_held == Decimal("0")
        assert state.refunded_to_guest == Decimal("4000")
        assert state.event_types[-1] == EscrowEventType.RELEASE_DEPOSIT_TO_GUEST

    def test_empty(self):
        assert replay_escrow_events([]).as_dict()["in_escrow"] == "0.00"


@pytest.mark.django_db
class TestEscrowEventLog:
    def test_events_cannot_be_changed(self, paid_booking):
        hold = paid_booking.escrow_events.get(event_type=EscrowEventType.HOLD_ROOM_FEE)
        hold.amount = Decimal("1.00")

        with pytest.raises(ValueError):
            hold.save()

        with pytest.raises(ValueError):
            hold.delete()


@pytest.mark.django_db
class TestPlatformSetting:
    def test_publish_appends_versions(self):
        PlatformSetting.publish("disputes.refund_ceilings.v1", {"MINOR": "30"})
        latest = PlatformSetting.publish("disputes.refund_ceilings.v1", {"MINOR": "35"})

        assert latest.version == 2
        assert PlatformSetting.objects.filter(key="disputes.refund_ceilings.v1").count() == 2
        assert PlatformSetting.latest_value("disputes.refund_ceilings.v1") == {"MINOR": "35"}

    def test_missing_key_default(self):
        assert PlatformSetting.latest_value("unknown.key", default=[]) == []
