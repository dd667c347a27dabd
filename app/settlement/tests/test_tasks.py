"""
Tests for settlement Celery tasks.

Covers:
- Release sweeps: eligibility, queueing, JobLock skipping
- Per-booking releases under the Redis lock
- Automatic check-in/checkout sweeps
- Stale dispute monitor and job lock cleanup
- Withdrawal execution and retry pickup

Tasks are called directly (synchronously); Redis and the gateway are mocked.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from settlement.exceptions import PaystackError
from settlement.ledger import PostingParams, TransactionSource, WalletService
from settlement.models import Booking, Dispute, JobLock, WithdrawalRequest
from settlement.services import DisputeService, OpenDisputeParams, WithdrawalService
from settlement.state_machines import (
    BookingStatus,
    CheckInConfirmation,
    ComponentState,
    DisputeCategory,
    DisputeStatus,
    DisputeSubject,
    WithdrawalStatus,
)
from settlement.workers import (
    cleanup_job_locks,
    monitor_stale_disputes,
    process_withdrawal,
    release_deposit,
    release_room_fee,
    retry_pending_withdrawals,
    sweep_check_in_fallbacks,
    sweep_check_out_fallbacks,
    sweep_deposit_releases,
    sweep_room_fee_releases,
)
from settlement.workers.release_scheduler import eligible_deposit_bookings, eligible_room_fee_bookings


def open_room_fee_dispute(booking):
    return DisputeService.open_dispute(OpenDisputeParams(
        booking_id=booking.id,
        actor_id=booking.guest_id,
        subject=DisputeSubject.ROOM_FEE,
        category=DisputeCategory.MISSING_AMENITIES_CLEANLINESS,
    ))


@pytest.fixture
def pending_withdrawal(db):
    wallet = WalletService.operator_wallet(uuid.uuid4(), "NGN")
    WalletService.credit(PostingParams(
        wallet_id=wallet.id,
        amount=Decimal("50000"),
        source=TransactionSource.ROOM_FEE,
        reference=f"seed:{wallet.id}",
    ))
    return WithdrawalService.request_withdrawal(wallet.owner_id, Decimal("10000"), "RCP_operator_bank")


# =============================================================================
# Release Sweeps
# =============================================================================


@pytest.mark.django_db
class TestRoomFeeSweep:
    """Tests for sweep_room_fee_releases and its eligibility query."""

    def test_window_still_open(self, checked_in_booking):
        assert not eligible_room_fee_bookings().exists()

    def test_window_passed(self, checked_in_booking, expire_room_fee_window):
        expire_room_fee_window(checked_in_booking)

        assert list(eligible_room_fee_bookings().values_list("id", flat=True)) == [checked_in_booking.id]

    def test_open_dispute_blocks(self, checked_in_booking, expire_room_fee_window):
        open_room_fee_dispute(checked_in_booking)
        expire_room_fee_window(checked_in_booking)

        assert not eligible_room_fee_bookings().exists()

    def test_backoff_not_elapsed(self, checked_in_booking, expire_room_fee_window, payment_for):
        expire_room_fee_window(checked_in_booking)
        payment = payment_for(checked_in_booking)
        type(payment).objects.filter(id=payment.id).update(
            room_fee_next_attempt_at=timezone.now() + timedelta(minutes=5)
        )

        assert not eligible_room_fee_bookings().exists()

    def test_queues_eligible_bookings(self, checked_in_booking, expire_room_fee_window, mocker):
        delay = mocker.patch("settlement.workers.release_scheduler.release_room_fee.delay")
        expire_room_fee_window(checked_in_booking)

        result = sweep_room_fee_releases()

        assert result == {"status": "completed", "queued_count": 1}
        delay.assert_called_once_with(str(checked_in_booking.id))
        assert not JobLock.objects.filter(job_name="sweep_room_fee_releases").exists()

    def test_skipped_while_another_sweep_runs(self, checked_in_booking, expire_room_fee_window, mocker):
        delay = mocker.patch("settlement.workers.release_scheduler.release_room_fee.delay")
        expire_room_fee_window(checked_in_booking)
        JobLock.acquire("sweep_room_fee_releases", "worker-elsewhere")

        result = sweep_room_fee_releases()

        assert result["status"] == "skipped"
        delay.assert_not_called()

    def test_queue_failure_counted(self, checked_in_booking, expire_room_fee_window, mocker):
        """A broker error on one booking does not abort the sweep."""
        mocker.patch(
            "settlement.workers.release_scheduler.release_room_fee.delay",
            side_effect=ConnectionError("broker down"),
        )
        expire_room_fee_window(checked_in_booking)

        assert sweep_room_fee_releases()["queued_count"] == 0


@pytest.mark.django_db
class TestDepositSweep:
    def test_window_still_open(self, checked_out_booking):
        assert not eligible_deposit_bookings().exists()

    def test_queues_after_window(self, checked_out_booking, expire_deposit_window, mocker):
        delay = mocker.patch("settlement.workers.release_scheduler.release_deposit.delay")
        expire_deposit_window(checked_out_booking)

        result = sweep_deposit_releases()

        assert result["queued_count"] == 1
        delay.assert_called_once_with(str(checked_out_booking.id))

    def test_room_fee_must_be_settled(self, checked_in_booking, expire_deposit_window):
        Booking.objects.filter(id=checked_in_booking.id).update(status=BookingStatus.CHECKED_OUT)
        expire_deposit_window(checked_in_booking)

        assert not eligible_deposit_bookings().exists()


# =============================================================================
# Per-Booking Releases
# =============================================================================


@pytest.mark.django_db
class TestReleaseTasks:
    """Tests for release_room_fee and release_deposit."""

    def test_room_fee_released(
        self, mock_redis, fake_gateway, checked_in_booking, expire_room_fee_window, payment_for
    ):
        expire_room_fee_window(checked_in_booking)

        result = release_room_fee(str(checked_in_booking.id))

        assert result == {"status": "released", "booking_id": str(checked_in_booking.id)}
        assert payment_for(checked_in_booking).room_fee_state == ComponentState.SETTLED
        key = mock_redis.set.call_args[0][0]
        assert key == f"lock:settlement:booking:{checked_in_booking.id}"

    def test_second_run_already_settled(self, mock_redis, fake_gateway, room_fee_released_booking):
        result = release_room_fee(str(room_fee_released_booking.id))

        assert result["status"] == "already_settled"

    def test_not_yet_eligible_skipped(self, mock_redis, fake_gateway, checked_in_booking):
        result = release_room_fee(str(checked_in_booking.id))

        assert result["status"] == "skipped"
        assert result["error_code"] == "NOT_ELIGIBLE"

    def test_lock_held_elsewhere(self, mock_redis, checked_in_booking, payment_for):
        mock_redis.set.return_value = False

        result = release_room_fee(str(checked_in_booking.id))

        assert result["status"] == "lock_failed"
        assert payment_for(checked_in_booking).room_fee_state == ComponentState.HELD

    def test_invalid_booking_id(self, mock_redis):
        assert release_room_fee("not-a-uuid")["status"] == "not_found"
        mock_redis.set.assert_not_called()

    def test_missing_booking(self, db, mock_redis):
        assert release_deposit(str(uuid.uuid4()))["status"] == "not_found"

    def test_deposit_released(
        self, mock_redis, fake_gateway, checked_out_booking, expire_deposit_window
    ):
        expire_deposit_window(checked_out_booking)

        result = release_deposit(str(checked_out_booking.id))

        assert result["status"] == "released"
        assert Booking.objects.get(id=checked_out_booking.id).status == BookingStatus.COMPLETED


# =============================================================================
# Stay Fallbacks
# =============================================================================


@pytest.mark.django_db
class TestStayFallbacks:
    """Tests for the automatic check-in and checkout sweeps."""

    def test_auto_check_in(self, paid_booking, settings):
        Booking.objects.filter(id=paid_booking.id).update(
            scheduled_check_in_at=timezone.now() - timedelta(minutes=settings.CHECK_IN_FALLBACK_MINUTES + 1)
        )

        result = sweep_check_in_fallbacks()

        assert result["confirmed"] == 1
        booking = Booking.objects.get(id=paid_booking.id)
        assert booking.status == BookingStatus.CHECKED_IN
        assert booking.check_in_confirmation == CheckInConfirmation.AUTO_FALLBACK
        assert booking.room_fee_release_eligible_at is not None

    def test_grace_period_respected(self, paid_booking):
        Booking.objects.filter(id=paid_booking.id).update(
            scheduled_check_in_at=timezone.now() - timedelta(minutes=1)
        )

        assert sweep_check_in_fallbacks()["confirmed"] == 0
        assert Booking.objects.get(id=paid_booking.id).status == BookingStatus.PAID

    def test_auto_check_out(self, checked_in_booking, settings):
        Booking.objects.filter(id=checked_in_booking.id).update(
            scheduled_check_out_at=timezone.now() - timedelta(minutes=settings.CHECK_OUT_FALLBACK_MINUTES + 1)
        )

        result = sweep_check_out_fallbacks()

        assert result == {"status": "completed", "confirmed": 1, "skipped": 0, "failed": 0}
        booking = Booking.objects.get(id=checked_in_booking.id)
        assert booking.status == BookingStatus.CHECKED_OUT
        assert booking.check_out_confirmation == CheckInConfirmation.AUTO_FALLBACK

    def test_skipped_while_locked(self, db):
        JobLock.acquire("sweep_check_in_fallbacks", "worker-elsewhere")

        assert sweep_check_in_fallbacks() == {"status": "skipped", "reason": "locked"}


# =============================================================================
# Dispute Monitor
# =============================================================================


@pytest.mark.django_db
class TestDisputeMonitor:
    def test_escalates_unanswered(self, checked_in_booking):
        dispute = open_room_fee_dispute(checked_in_booking)
        Dispute.objects.filter(id=dispute.id).update(response_deadline_at=timezone.now() - timedelta(minutes=1))

        result = monitor_stale_disputes()

        assert result == {"status": "completed", "escalated": 1, "auto_resolved": 0}
        assert Dispute.objects.get(id=dispute.id).status == DisputeStatus.ESCALATED

    def test_nothing_stale(self, checked_in_booking):
        open_room_fee_dispute(checked_in_booking)

        assert monitor_stale_disputes()["escalated"] == 0

    def test_skipped_while_locked(self, db):
        JobLock.acquire("monitor_stale_disputes", "worker-elsewhere")

        assert monitor_stale_disputes()["status"] == "skipped"

    def test_cleanup_job_locks(self, db):
        JobLock.acquire("crashed_sweep", "worker-a")
        JobLock.objects.filter(job_name="crashed_sweep").update(expires_at=timezone.now() - timedelta(minutes=1))

        assert cleanup_job_locks() == {"deleted_count": 1}
        assert not JobLock.objects.exists()


# =============================================================================
# Withdrawal Executor
# =============================================================================


@pytest.mark.django_db
class TestWithdrawalTasks:
    """Tests for process_withdrawal and retry_pending_withdrawals."""

    def test_process_completes(self, mock_redis, fake_gateway, pending_withdrawal):
        result = process_withdrawal(str(pending_withdrawal.id))

        assert result["status"] == WithdrawalStatus.COMPLETED
        assert mock_redis.set.call_args[0][0] == f"lock:settlement:withdrawal:{pending_withdrawal.id}"

    def test_retryable_failure(self, mock_redis, fake_gateway, pending_withdrawal):
        fake_gateway.transfer.side_effect = PaystackError("Gateway timeout", is_retryable=True)

        result = process_withdrawal(str(pending_withdrawal.id))

        assert result["status"] == "retry_scheduled"
        assert result["error"] == "Gateway timeout"

    def test_permanent_failure(self, mock_redis, fake_gateway, pending_withdrawal):
        fake_gateway.transfer.side_effect = PaystackError("Invalid recipient", is_retryable=False)

        assert process_withdrawal(str(pending_withdrawal.id))["status"] == "failed"

    def test_lock_held_elsewhere(self, mock_redis, fake_gateway, pending_withdrawal):
        mock_redis.set.return_value = False

        assert process_withdrawal(str(pending_withdrawal.id))["status"] == "lock_failed"
        fake_gateway.transfer.assert_not_called()

    def test_invalid_and_missing_ids(self, db, mock_redis):
        assert process_withdrawal("bogus")["status"] == "not_found"
        assert process_withdrawal(str(uuid.uuid4()))["status"] == "not_found"

    def test_retry_sweep_picks_up_stale_pending(self, pending_withdrawal, mocker):
        delay = mocker.patch("settlement.workers.withdrawal_executor.process_withdrawal.delay")
        WithdrawalRequest.objects.filter(id=pending_withdrawal.id).update(
            created_at=timezone.now() - timedelta(minutes=30)
        )

        result = retry_pending_withdrawals()

        assert result == {"status": "completed", "queued_count": 1}
        delay.assert_called_once_with(str(pending_withdrawal.id))

    def test_retry_sweep_waits_for_backoff(self, pending_withdrawal, mocker):
        delay = mocker.patch("settlement.workers.withdrawal_executor.process_withdrawal.delay")
        WithdrawalRequest.objects.filter(id=pending_withdrawal.id).update(
            status=WithdrawalStatus.PROCESSING,
            next_attempt_at=timezone.now() + timedelta(minutes=5),
        )

        assert retry_pending_withdrawals()["queued_count"] == 0
        delay.assert_not_called()
