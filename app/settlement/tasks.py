"""
Celery task discovery entry point for the settlement app.

``app.autodiscover_tasks()`` imports ``<app>.tasks``; the tasks themselves
live in settlement.workers.
"""

from settlement.workers import (  # noqa: F401
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
