"""
Pytest fixtures for settlement tests.

Bookings are provided at each lifecycle stage, built through the real
services so escrow postings and events exist exactly as in production:

    pending_booking -> paid_booking -> checked_in_booking -> checked_out_booking

Gateway calls are replaced by ``fake_gateway`` and Redis by ``mock_redis``.

Usage:
    def test_release(checked_in_booking, expire_room_fee_window):
        expire_room_fee_window(checked_in_booking)
        result = EscrowService.execute_room_fee_split(checked_in_booking.id)
        assert result.success
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from django.utils import timezone

from settlement.gateways import TransferResult, VerificationResult
from settlement.ledger import WalletService
from settlement.models import Booking, Payment
from settlement.services import BookingService, EscrowService
from settlement.tests.factories import BookingFactory, PaymentFactory


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """Mock Redis connection for DistributedLock."""
    mock_redis = MagicMock()
    mock_redis.set.return_value = True
    mock_redis.eval.return_value = 1
    mocker.patch("settlement.locks.get_redis_connection", return_value=mock_redis)
    return mock_redis


@pytest.fixture
def fake_gateway(mocker):
    """
    Gateway double patched into every service that moves money.

    verify() reports a successful 66100 NGN capture; transfer() succeeds
    and echoes the reference.
    """
    gateway = MagicMock()
    gateway.name = "paystack"
    gateway.verify.return_value = VerificationResult(
        success=True,
        amount=Decimal("66100.00"),
        currency="NGN",
        provider_transaction_id="txn_test_123",
    )
    gateway.transfer.side_effect = lambda destination, amount, reference, currency: TransferResult(
        reference=reference,
        status="success",
        provider_reference=f"prov:{reference}",
    )
    for module in ("escrow", "bookings", "withdrawals"):
        mocker.patch(f"settlement.services.{module}.get_gateway", return_value=gateway)
    return gateway


# =============================================================================
# Booking Fixtures
# =============================================================================


@pytest.fixture
def pending_booking(db):
    """Booking awaiting payment, with its INITIATED payment."""
    booking = BookingFactory()
    PaymentFactory(booking=booking)
    return booking


@pytest.fixture
def paid_booking(pending_booking):
    """Booking whose 66100 capture is held in escrow."""
    EscrowService.hold_funds(
        pending_booking.id,
        pending_booking.total_amount,
        provider_reference="ref_test_123",
        provider_transaction_id="txn_test_123",
    )
    booking = Booking.objects.get(id=pending_booking.id)
    booking.mark_paid()
    booking.save()
    return Booking.objects.get(id=booking.id)


@pytest.fixture
def checked_in_booking(paid_booking):
    """Guest confirmed check-in just now; the guest window is open."""
    return BookingService.confirm_check_in(paid_booking.id, paid_booking.guest_id)


@pytest.fixture
def room_fee_released_booking(checked_in_booking, expire_room_fee_window):
    """Checked-in booking whose room fee was split without a dispute."""
    expire_room_fee_window(checked_in_booking)
    result = EscrowService.execute_room_fee_split(checked_in_booking.id)
    assert result.success
    return Booking.objects.get(id=checked_in_booking.id)


@pytest.fixture
def checked_out_booking(room_fee_released_booking):
    """Room fee settled and the guest checked out; the operator window is open."""
    return BookingService.confirm_check_out(
        room_fee_released_booking.id, room_fee_released_booking.guest_id
    )


@pytest.fixture
def stranger_id():
    """A user who is neither the guest nor the operator."""
    return uuid.uuid4()


# =============================================================================
# Window Helpers
# =============================================================================


@pytest.fixture
def expire_room_fee_window():
    """Move a booking's room fee release deadline into the past."""

    def _expire(booking, minutes=1):
        Booking.objects.filter(id=booking.id).update(
            room_fee_release_eligible_at=timezone.now() - timedelta(minutes=minutes)
        )

    return _expire


@pytest.fixture
def expire_deposit_window():
    """Move a booking's deposit release deadline into the past."""

    def _expire(booking, minutes=1):
        Booking.objects.filter(id=booking.id).update(
            deposit_release_eligible_at=timezone.now() - timedelta(minutes=minutes)
        )

    return _expire


@pytest.fixture
def schedule_check_in():
    """Move a booking's scheduled check-in to ``hours`` from now."""

    def _move(booking, hours):
        Booking.objects.filter(id=booking.id).update(
            scheduled_check_in_at=timezone.now() + timedelta(hours=hours)
        )

    return _move


# =============================================================================
# Lookup Helpers
# =============================================================================


@pytest.fixture
def payment_for():
    """Fresh Payment row for a booking."""

    def _payment(booking):
        return Payment.objects.get(booking_id=booking.id)

    return _payment


@pytest.fixture
def operator_balance():
    """Available balance of the booking operator's wallet."""

    def _balance(booking):
        return WalletService.operator_wallet(booking.operator_id, booking.currency).balance_available

    return _balance


@pytest.fixture
def platform_balance():
    """Available balance of the platform wallet."""

    def _balance(currency="NGN"):
        return WalletService.platform_wallet(currency).balance_available

    return _balance
