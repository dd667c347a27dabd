"""
Release scheduler: timer-driven escrow releases.

Tasks:
- sweep_room_fee_releases: Periodic scan for room fees past their guest window
- sweep_deposit_releases: Periodic scan for deposits past their operator window
- release_room_fee: Release one booking's room fee under a per-booking lock
- release_deposit: Release one booking's deposit under a per-booking lock

Each sweep holds a JobLock for its job name, so overlapping beats skip
instead of double-queuing. The queued booking ids are recorded on the lock.
Per-booking tasks re-check state under the Redis lock; every escrow call
is idempotent, so a booking queued twice is released once.

Usage:
    from settlement.workers import sweep_room_fee_releases, release_room_fee

    sweep_room_fee_releases.delay()
    release_room_fee.delay(str(booking.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.db.models import Exists, OuterRef, Q
from django.utils import timezone

from settlement.exceptions import LockAcquisitionError
from settlement.locks import DistributedLock, booking_lock_key
from settlement.models import Booking, Dispute, JobLock
from settlement.state_machines import (
    BLOCKING_DISPUTE_STATUSES,
    BookingStatus,
    ComponentState,
    DisputeStatus,
    DisputeSubject,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum bookings queued per sweep cycle
BATCH_SIZE = 100

# Per-booking lock TTL (seconds); covers one gateway round trip
RELEASE_LOCK_TTL = 120

ROOM_FEE_SWEEP = "sweep_room_fee_releases"
DEPOSIT_SWEEP = "sweep_deposit_releases"


# =============================================================================
# Eligibility Queries
# =============================================================================


def _dispute_exists(subject: str, **filters) -> Exists:
    return Exists(
        Dispute.objects.filter(booking=OuterRef("pk"), subject=subject, **filters)
    )


def _backoff_elapsed(prefix: str, now) -> Q:
    return Q(**{f"payment__{prefix}_next_attempt_at__isnull": True}) | Q(
        **{f"payment__{prefix}_next_attempt_at__lte": now}
    )


def eligible_room_fee_bookings(now=None):
    """
    Bookings whose room fee can be released now.

    Either the guest window has passed on a checked-in (or checked-out)
    stay, or a resolved room fee dispute is waiting to be executed.
    """
    now = now or timezone.now()
    return (
        Booking.objects.filter(
            payment__room_fee_state__in=[ComponentState.HELD, ComponentState.FAILED],
        )
        .filter(_backoff_elapsed("room_fee", now))
        .annotate(
            has_blocking_dispute=_dispute_exists(
                DisputeSubject.ROOM_FEE, status__in=BLOCKING_DISPUTE_STATUSES
            ),
            has_pending_resolution=_dispute_exists(
                DisputeSubject.ROOM_FEE,
                status=DisputeStatus.RESOLVED,
                executed_at__isnull=True,
            ),
        )
        .filter(has_blocking_dispute=False)
        .filter(
            Q(
                status__in=[BookingStatus.CHECKED_IN, BookingStatus.CHECKED_OUT],
                room_fee_release_eligible_at__lte=now,
            )
            | Q(has_pending_resolution=True)
        )
        .order_by("room_fee_release_eligible_at")
    )


def eligible_deposit_bookings(now=None):
    """
    Checked-out bookings whose deposit can be released now.

    The room fee must be terminal first.
    """
    now = now or timezone.now()
    return (
        Booking.objects.filter(
            status=BookingStatus.CHECKED_OUT,
            payment__deposit_state__in=[ComponentState.HELD, ComponentState.FAILED],
            payment__room_fee_state__in=[ComponentState.SETTLED, ComponentState.ADMIN_REVIEW],
        )
        .filter(_backoff_elapsed("deposit", now))
        .annotate(
            has_blocking_dispute=_dispute_exists(
                DisputeSubject.SECURITY_DEPOSIT, status__in=BLOCKING_DISPUTE_STATUSES
            ),
            has_pending_resolution=_dispute_exists(
                DisputeSubject.SECURITY_DEPOSIT,
                status=DisputeStatus.RESOLVED,
                executed_at__isnull=True,
            ),
        )
        .filter(has_blocking_dispute=False)
        .filter(Q(deposit_release_eligible_at__lte=now) | Q(has_pending_resolution=True))
        .order_by("deposit_release_eligible_at")
    )


# =============================================================================
# Periodic Sweeps
# =============================================================================


def _sweep(job_name: str, queryset, task) -> dict:
    with JobLock.hold(job_name) as owner:
        if owner is None:
            return {"status": "skipped", "reason": "locked", "queued_count": 0}

        booking_ids = [str(pk) for pk in queryset.values_list("id", flat=True)[:BATCH_SIZE]]
        JobLock.update_booking_ids(job_name, owner, booking_ids)

        queued_count = 0
        for booking_id in booking_ids:
            try:
                task.delay(booking_id)
                queued_count += 1
            except Exception as e:
                logger.error(
                    f"Failed to queue release: {e}",
                    extra={"job_name": job_name, "booking_id": booking_id},
                )

    logger.info(
        f"{job_name} complete: queued {queued_count} bookings",
        extra={"job_name": job_name, "queued_count": queued_count},
    )
    return {"status": "completed", "queued_count": queued_count}


@shared_task(bind=True)
def sweep_room_fee_releases(self) -> dict:
    """Queue room fee releases for bookings past their guest window."""
    return _sweep(ROOM_FEE_SWEEP, eligible_room_fee_bookings(), release_room_fee)


@shared_task(bind=True)
def sweep_deposit_releases(self) -> dict:
    """Queue deposit releases for bookings past their operator window."""
    return _sweep(DEPOSIT_SWEEP, eligible_deposit_bookings(), release_deposit)


# =============================================================================
# Per-Booking Releases
# =============================================================================


def _run_release(booking_id: str, component: str, execute) -> dict:
    try:
        UUID(str(booking_id))
    except ValueError:
        logger.error(f"Invalid booking_id format: {booking_id}")
        return {"status": "not_found", "booking_id": booking_id, "error": "Invalid UUID format"}

    if not Booking.objects.filter(id=booking_id).exists():
        logger.warning("Booking not found", extra={"booking_id": str(booking_id)})
        return {"status": "not_found", "booking_id": str(booking_id)}

    try:
        with DistributedLock(booking_lock_key(booking_id), ttl=RELEASE_LOCK_TTL, blocking=False):
            result = execute(booking_id)
    except LockAcquisitionError as e:
        logger.info(
            f"Booking locked elsewhere, skipping {component} release",
            extra={"booking_id": str(booking_id), "component": component},
        )
        return {"status": "lock_failed", "booking_id": str(booking_id), "error": str(e)}
    except Exception as e:
        logger.exception(
            f"Unexpected error during {component} release: {e}",
            extra={"booking_id": str(booking_id), "component": component},
        )
        raise

    if result.success:
        return {"status": result.data["status"], "booking_id": str(booking_id)}

    logger.info(
        f"{component} release not executed: {result.error}",
        extra={
            "booking_id": str(booking_id),
            "component": component,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "skipped",
        "booking_id": str(booking_id),
        "error": result.error,
        "error_code": result.error_code,
    }


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def release_room_fee(self, booking_id: str) -> dict:
    """
    Release one booking's room fee.

    Returns:
        Dict with status: "released", "already_settled", "skipped",
        "lock_failed" or "not_found"

    Raises:
        Exception: Re-raised to trigger Celery retry for unexpected failures
    """
    from settlement.services import EscrowService

    return _run_release(booking_id, "room_fee", EscrowService.execute_room_fee_split)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def release_deposit(self, booking_id: str) -> dict:
    """Release one booking's security deposit; same contract as release_room_fee."""
    from settlement.services import EscrowService

    return _run_release(booking_id, "deposit", EscrowService.execute_deposit_release)


__all__ = [
    "eligible_deposit_bookings",
    "eligible_room_fee_bookings",
    "release_deposit",
    "release_room_fee",
    "sweep_deposit_releases",
    "sweep_room_fee_releases",
]
