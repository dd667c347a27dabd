"""
Add Celery Beat schedules for settlement sweeps.

This migration creates periodic task schedules for:
- Escrow releases (room fee after check-in window, deposit after checkout window)
- Stay fallbacks (automatic check-in and checkout)
- Dispute monitoring (escalation and auto-resolution of stale disputes)
- Withdrawal retries
- Job lock cleanup
"""

from django.db import migrations

PERIODIC_TASKS = [
    # (name, task, every, period, description)
    (
        "Settlement: Sweep Room Fee Releases",
        "settlement.workers.release_scheduler.sweep_room_fee_releases",
        5,
        "minutes",
        "Queues room fee splits for bookings whose guest dispute window has "
        "passed with no blocking dispute.",
    ),
    (
        "Settlement: Sweep Deposit Releases",
        "settlement.workers.release_scheduler.sweep_deposit_releases",
        5,
        "minutes",
        "Queues security deposit releases for checked-out bookings whose "
        "operator dispute window has passed.",
    ),
    (
        "Settlement: Check-in Fallbacks",
        "settlement.workers.stay_fallbacks.sweep_check_in_fallbacks",
        15,
        "minutes",
        "Checks in paid bookings nobody confirmed after the grace period.",
    ),
    (
        "Settlement: Checkout Fallbacks",
        "settlement.workers.stay_fallbacks.sweep_check_out_fallbacks",
        15,
        "minutes",
        "Checks out stays nobody confirmed after the grace period.",
    ),
    (
        "Settlement: Monitor Stale Disputes",
        "settlement.workers.dispute_monitor.monitor_stale_disputes",
        15,
        "minutes",
        "Escalates unanswered disputes and auto-resolves escalations past "
        "the maximum escalation age.",
    ),
    (
        "Settlement: Retry Pending Withdrawals",
        "settlement.workers.withdrawal_executor.retry_pending_withdrawals",
        5,
        "minutes",
        "Re-queues withdrawals whose retry backoff has elapsed or that were "
        "never picked up.",
    ),
    (
        "Settlement: Cleanup Job Locks",
        "settlement.workers.dispute_monitor.cleanup_job_locks",
        1,
        "hours",
        "Deletes expired JobLock rows left behind by crashed sweeps.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    """Create the settlement periodic tasks."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, every, period, description in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(every=every, period=period)
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=[entry[0] for entry in PERIODIC_TASKS]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("settlement", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
