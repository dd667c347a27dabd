"""
Automatic check-in and checkout.

When neither party confirms, a paid booking is checked in
CHECK_IN_FALLBACK_MINUTES after its scheduled check-in, and a checked-in
booking is checked out CHECK_OUT_FALLBACK_MINUTES after its scheduled
checkout. Each confirmation also schedules the matching escrow release.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from core.exceptions import BaseApplicationError
from settlement.models import Booking, JobLock
from settlement.state_machines import BookingStatus

logger = logging.getLogger(__name__)

BATCH_SIZE = 100

CHECK_IN_SWEEP = "sweep_check_in_fallbacks"
CHECK_OUT_SWEEP = "sweep_check_out_fallbacks"


def _confirm_all(job_name: str, booking_ids: list, confirm) -> dict:
    confirmed = 0
    skipped = 0
    failed = 0
    for booking_id in booking_ids:
        try:
            result = confirm(booking_id)
        except BaseApplicationError as e:
            failed += 1
            logger.warning(
                f"Fallback confirmation rejected: {e.message}",
                extra={"job_name": job_name, "booking_id": str(booking_id), "error_code": e.error_code},
            )
            continue
        if result.success:
            confirmed += 1
        else:
            skipped += 1

    logger.info(
        f"{job_name} complete: confirmed {confirmed} bookings",
        extra={"job_name": job_name, "confirmed": confirmed, "skipped": skipped, "failed": failed},
    )
    return {"status": "completed", "confirmed": confirmed, "skipped": skipped, "failed": failed}


@shared_task(bind=True)
def sweep_check_in_fallbacks(self) -> dict:
    """Check in paid bookings nobody confirmed after the grace period."""
    from settlement.services import BookingService

    cutoff = timezone.now() - timedelta(minutes=settings.CHECK_IN_FALLBACK_MINUTES)
    with JobLock.hold(CHECK_IN_SWEEP) as owner:
        if owner is None:
            return {"status": "skipped", "reason": "locked"}
        booking_ids = list(
            Booking.objects.filter(status=BookingStatus.PAID, scheduled_check_in_at__lte=cutoff)
            .order_by("scheduled_check_in_at")
            .values_list("id", flat=True)[:BATCH_SIZE]
        )
        JobLock.update_booking_ids(CHECK_IN_SWEEP, owner, booking_ids)
        return _confirm_all(CHECK_IN_SWEEP, booking_ids, BookingService.auto_check_in)


@shared_task(bind=True)
def sweep_check_out_fallbacks(self) -> dict:
    """Check out stays nobody confirmed after the grace period."""
    from settlement.services import BookingService

    cutoff = timezone.now() - timedelta(minutes=settings.CHECK_OUT_FALLBACK_MINUTES)
    with JobLock.hold(CHECK_OUT_SWEEP) as owner:
        if owner is None:
            return {"status": "skipped", "reason": "locked"}
        booking_ids = list(
            Booking.objects.filter(
                status__in=[BookingStatus.CHECKED_IN, BookingStatus.DISPUTE_OPENED],
                scheduled_check_out_at__lte=cutoff,
            )
            .order_by("scheduled_check_out_at")
            .values_list("id", flat=True)[:BATCH_SIZE]
        )
        JobLock.update_booking_ids(CHECK_OUT_SWEEP, owner, booking_ids)
        return _confirm_all(CHECK_OUT_SWEEP, booking_ids, BookingService.auto_check_out)


__all__ = ["sweep_check_in_fallbacks", "sweep_check_out_fallbacks"]
