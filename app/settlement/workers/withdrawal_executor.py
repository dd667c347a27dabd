"""
Withdrawal executor.

Tasks:
- process_withdrawal: Execute one withdrawal transfer (queued on request)
- retry_pending_withdrawals: Periodic pickup of withdrawals whose retry
  backoff has elapsed, or that were never picked up
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.db.models import Q
from django.utils import timezone

from core.exceptions import NotFoundError
from settlement.exceptions import LockAcquisitionError
from settlement.locks import DistributedLock
from settlement.models import JobLock, WithdrawalRequest
from settlement.state_machines import WithdrawalStatus

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
WITHDRAWAL_LOCK_TTL = 120

# PENDING requests older than this were never queued (e.g. broker outage)
STALE_PENDING_MINUTES = 10

WITHDRAWAL_SWEEP = "retry_pending_withdrawals"


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def process_withdrawal(self, withdrawal_id: str) -> dict:
    """
    Execute one withdrawal under a per-withdrawal lock.

    Returns:
        Dict with status: "completed", "failed", "retry_scheduled",
        "lock_failed" or "not_found"
    """
    from settlement.services import WithdrawalService

    try:
        UUID(str(withdrawal_id))
    except ValueError:
        logger.error(f"Invalid withdrawal_id format: {withdrawal_id}")
        return {"status": "not_found", "withdrawal_id": withdrawal_id}

    try:
        with DistributedLock(f"settlement:withdrawal:{withdrawal_id}", ttl=WITHDRAWAL_LOCK_TTL, blocking=False):
            result = WithdrawalService.process_withdrawal(withdrawal_id)
    except LockAcquisitionError as e:
        return {"status": "lock_failed", "withdrawal_id": str(withdrawal_id), "error": str(e)}
    except NotFoundError:
        return {"status": "not_found", "withdrawal_id": str(withdrawal_id)}
    except Exception as e:
        logger.exception(
            f"Unexpected error processing withdrawal: {e}",
            extra={"withdrawal_id": str(withdrawal_id)},
        )
        raise

    status = WithdrawalRequest.objects.filter(id=withdrawal_id).values_list("status", flat=True).first()
    if result.success:
        return {"status": status, "withdrawal_id": str(withdrawal_id)}
    return {
        "status": "failed" if status == WithdrawalStatus.FAILED else "retry_scheduled",
        "withdrawal_id": str(withdrawal_id),
        "error": result.error,
        "error_code": result.error_code,
    }


@shared_task(bind=True)
def retry_pending_withdrawals(self) -> dict:
    now = timezone.now()
    with JobLock.hold(WITHDRAWAL_SWEEP) as owner:
        if owner is None:
            return {"status": "skipped", "reason": "locked"}

        withdrawal_ids = [
            str(pk)
            for pk in WithdrawalRequest.objects.filter(
                Q(status=WithdrawalStatus.PROCESSING, next_attempt_at__lte=now)
                | Q(
                    status=WithdrawalStatus.PENDING,
                    created_at__lte=now - timedelta(minutes=STALE_PENDING_MINUTES),
                )
            )
            .order_by("created_at")
            .values_list("id", flat=True)[:BATCH_SIZE]
        ]
        for withdrawal_id in withdrawal_ids:
            process_withdrawal.delay(withdrawal_id)

    logger.info(
        f"Withdrawal retry sweep complete: queued {len(withdrawal_ids)}",
        extra={"queued_count": len(withdrawal_ids)},
    )
    return {"status": "completed", "queued_count": len(withdrawal_ids)}


__all__ = ["process_withdrawal", "retry_pending_withdrawals"]
