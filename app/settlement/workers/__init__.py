"""
Workers for settlement background processing.

This module contains Celery tasks driven by celery-beat:
- ReleaseScheduler: Room fee and deposit release sweeps and per-booking releases
- StayFallbacks: Automatic check-in/checkout
- DisputeMonitor: Stale dispute escalation/auto-resolution, job lock cleanup
- WithdrawalExecutor: Operator withdrawal transfers

Usage:
    from settlement.workers import release_room_fee, sweep_room_fee_releases

    sweep_room_fee_releases.delay()
    release_room_fee.delay(str(booking_id))
"""

from settlement.workers.dispute_monitor import cleanup_job_locks, monitor_stale_disputes
from settlement.workers.release_scheduler import (
    release_deposit,
    release_room_fee,
    sweep_deposit_releases,
    sweep_room_fee_releases,
)
from settlement.workers.stay_fallbacks import sweep_check_in_fallbacks, sweep_check_out_fallbacks
from settlement.workers.withdrawal_executor import process_withdrawal, retry_pending_withdrawals

__all__ = [
    # Release Scheduler
    "release_deposit",
    "release_room_fee",
    "sweep_deposit_releases",
    "sweep_room_fee_releases",
    # Stay Fallbacks
    "sweep_check_in_fallbacks",
    "sweep_check_out_fallbacks",
    # Dispute Monitor
    "cleanup_job_locks",
    "monitor_stale_disputes",
    # Withdrawal Executor
    "process_withdrawal",
    "retry_pending_withdrawals",
]
