"""
Celery tasks for notification delivery.

Tasks:
    deliver_notification: Persist an in-app notification

The task is idempotent through the notification's idempotency key, so a
retry after a partial failure never duplicates the record.
"""

from __future__ import annotations

import logging

from celery import shared_task

from notifications.services import NotificationDispatcher

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def deliver_notification(
    self,
    recipient_id: str,
    event_type: str,
    context: dict,
    booking_id: str | None = None,
    idempotency_key: str | None = None,
) -> bool:
    """
    Returns:
        True if delivered or already delivered, False on a permanent failure

    Raises:
        Exception: Unexpected errors are re-raised to trigger a retry
    """
    try:
        result = NotificationDispatcher.create(
            recipient_id=recipient_id,
            event_type=event_type,
            context=context,
            booking_id=booking_id,
            idempotency_key=idempotency_key,
        )
    except KeyError as e:
        logger.error(
            f"Notification template placeholder missing: {e}",
            extra={"event_type": event_type, "recipient_id": recipient_id},
        )
        return False

    if result.success or result.error_code == "DUPLICATE":
        return True

    logger.warning(
        f"Notification not delivered: {result.error}",
        extra={"event_type": event_type, "error_code": result.error_code},
    )
    return False
