"""
Stale dispute monitor and job lock housekeeping.

Tasks:
- monitor_stale_disputes: escalate unanswered disputes, then auto-resolve
  escalations nobody ruled on (DISPUTE_FALLBACK_POLICY)
- cleanup_job_locks: delete expired JobLock rows left by crashed sweeps
"""

from __future__ import annotations

import logging

from celery import shared_task

from settlement.models import JobLock

logger = logging.getLogger(__name__)

DISPUTE_SWEEP = "monitor_stale_disputes"


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
)
def monitor_stale_disputes(self) -> dict:
    from settlement.services import DisputeService

    with JobLock.hold(DISPUTE_SWEEP) as owner:
        if owner is None:
            return {"status": "skipped", "reason": "locked"}
        escalated = DisputeService.escalate_stale_disputes()
        auto_resolved = DisputeService.auto_resolve_stale_disputes()

    if escalated or auto_resolved:
        logger.info(
            "Stale disputes processed",
            extra={"escalated": escalated, "auto_resolved": auto_resolved},
        )
    return {"status": "completed", "escalated": escalated, "auto_resolved": auto_resolved}


@shared_task
def cleanup_job_locks() -> dict:
    deleted = JobLock.cleanup_expired()
    if deleted:
        logger.warning("Removed expired job locks", extra={"deleted_count": deleted})
    return {"deleted_count": deleted}


__all__ = ["cleanup_job_locks", "monitor_stale_disputes"]
