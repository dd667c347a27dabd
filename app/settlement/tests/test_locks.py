"""
Tests for settlement concurrency helpers.

Covers:
- DistributedLock (Redis mocked): acquire, release, extend, context manager
- check_version optimistic locking on bookings
- JobLock database leases for sweeps
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from core.exceptions import NotFoundError
from settlement.exceptions import LockAcquisitionError, StaleRecordError
from settlement.locks import DistributedLock, booking_lock_key, check_version
from settlement.models import Booking, JobLock
from settlement.tests.factories import BookingFactory


class TestDistributedLock:
    """Tests for the per-booking Redis lock."""

    def test_acquire_sets_key_with_ttl(self, mock_redis):
        lock = DistributedLock(booking_lock_key("b-1"), ttl=120, blocking=False)

        assert lock.acquire() is True

        key, token = mock_redis.set.call_args[0]
        assert key == "lock:settlement:booking:b-1"
        assert token == lock._token
        assert mock_redis.set.call_args[1] == {"nx": True, "ex": 120}

    def test_held_elsewhere_fails_fast(self, mock_redis):
        mock_redis.set.return_value = False
        lock = DistributedLock("release:b-1", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in exc_info.value.message
        assert lock.is_held is False

    def test_blocking_retries_until_free(self, mock_redis):
        mock_redis.set.side_effect = [False, True]

        assert DistributedLock("release:b-1", timeout=1.0).acquire() is True
        assert mock_redis.set.call_count == 2

    def test_blocking_gives_up_after_timeout(self, mock_redis):
        mock_redis.set.return_value = False

        with pytest.raises(LockAcquisitionError) as exc_info:
            DistributedLock("release:b-1", timeout=0.1).acquire()

        assert exc_info.value.details["timeout"] == 0.1

    def test_release_runs_owner_script(self, mock_redis):
        lock = DistributedLock("release:b-1", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True
        mock_redis.eval.assert_called_once_with(
            DistributedLock.RELEASE_SCRIPT, 1, "lock:release:b-1", token
        )
        assert lock.release() is False

    def test_extend(self, mock_redis):
        lock = DistributedLock("release:b-1", ttl=30, blocking=False)
        lock.acquire()

        assert lock.extend(90) is True
        assert mock_redis.eval.call_args[0][-1] == 90

    def test_extend_without_lock(self, mock_redis):
        assert DistributedLock("release:b-1").extend() is False
        mock_redis.eval.assert_not_called()

    def test_context_manager_releases_on_error(self, mock_redis):
        with pytest.raises(RuntimeError):
            with DistributedLock("release:b-1", blocking=False):
                raise RuntimeError("gateway exploded")

        mock_redis.eval.assert_called_once()


@pytest.mark.django_db
class TestCheckVersion:
    """Tests for optimistic version checks."""

    def test_matching_version(self):
        booking = BookingFactory()

        locked = check_version(Booking, booking.id, booking.version)

        assert locked.id == booking.id

    def test_stale_version(self):
        booking = BookingFactory()
        booking.cancellation_reason = "touch"
        booking.save()

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(Booking, booking.id, booking.version - 1)

        assert exc_info.value.details["current_version"] == booking.version

    def test_missing_row(self):
        with pytest.raises(NotFoundError) as exc_info:
            check_version(Booking, uuid.uuid4(), 1)

        assert exc_info.value.error_code == "BOOKING_NOT_FOUND"


@pytest.mark.django_db
class TestJobLock:
    """Tests for sweep leases."""

    def test_single_owner(self):
        assert JobLock.acquire("sweep_room_fee_releases", "worker-a") is True
        assert JobLock.acquire("sweep_room_fee_releases", "worker-b") is False

    def test_expired_lease_taken_over(self):
        JobLock.acquire("sweep_room_fee_releases", "worker-a")
        JobLock.objects.filter(job_name="sweep_room_fee_releases").update(
            expires_at=timezone.now() - timedelta(seconds=1)
        )

        assert JobLock.acquire("sweep_room_fee_releases", "worker-b") is True
        assert JobLock.objects.get(job_name="sweep_room_fee_releases").locked_by == "worker-b"

    def test_release_only_by_owner(self):
        JobLock.acquire("sweep_room_fee_releases", "worker-a")

        assert JobLock.release("sweep_room_fee_releases", "worker-b") is False
        assert JobLock.release("sweep_room_fee_releases", "worker-a") is True

    def test_extend(self):
        JobLock.acquire("sweep_room_fee_releases", "worker-a", ttl_seconds=10)

        assert JobLock.extend("sweep_room_fee_releases", "worker-a", ttl_seconds=600) is True
        lock = JobLock.objects.get(job_name="sweep_room_fee_releases")
        assert lock.expires_at > timezone.now() + timedelta(seconds=500)

    def test_records_booking_ids(self):
        booking_ids = [uuid.uuid4(), uuid.uuid4()]
        JobLock.acquire("sweep_room_fee_releases", "worker-a")

        JobLock.update_booking_ids("sweep_room_fee_releases", "worker-a", booking_ids)

        lock = JobLock.objects.get(job_name="sweep_room_fee_releases")
        assert lock.booking_ids == [str(b) for b in booking_ids]

    def test_hold_releases_on_exit(self):
        with JobLock.hold("sweep_room_fee_releases", owner="worker-a") as owner:
            assert owner == "worker-a"
            assert JobLock.objects.filter(job_name="sweep_room_fee_releases").exists()

        assert not JobLock.objects.filter(job_name="sweep_room_fee_releases").exists()

    def test_hold_yields_none_when_taken(self):
        JobLock.acquire("sweep_room_fee_releases", "worker-a")

        with JobLock.hold("sweep_room_fee_releases", owner="worker-b") as owner:
            assert owner is None

        assert JobLock.objects.get(job_name="sweep_room_fee_releases").locked_by == "worker-a"

    def test_cleanup_expired(self):
        JobLock.acquire("old_job", "worker-a")
        JobLock.acquire("live_job", "worker-a")
        JobLock.objects.filter(job_name="old_job").update(expires_at=timezone.now() - timedelta(minutes=5))

        assert JobLock.cleanup_expired() == 1
        assert list(JobLock.objects.values_list("job_name", flat=True)) == ["live_job"]
