"""
Notification service layer.

Services:
    NotificationDispatcher: fire-and-forget notifications from settlement code
    NotificationService: inbox read status management

Settlement transitions call ``NotificationDispatcher.notify`` inside their
transaction. Delivery is queued with ``transaction.on_commit`` so a rolled
back transition never notifies, and a failed delivery never rolls back the
money movement.

Usage:
    from notifications.services import NotificationDispatcher
    from notifications.models import NotificationEvent

    NotificationDispatcher.notify(
        recipient_id=booking.operator_id,
        event_type=NotificationEvent.DISPUTE_OPENED,
        context={"booking_id": str(booking.id), "category": dispute.category},
        booking_id=booking.id,
        idempotency_key=f"dispute:{dispute.id}:opened",
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from notifications.models import Notification, NotificationEvent

if TYPE_CHECKING:
    import uuid
    from typing import Any


# Templates are formatted with the context passed to notify()
NOTIFICATION_TEMPLATES: dict[str, tuple[str, str]] = {
    NotificationEvent.BOOKING_PAID: (
        "Booking confirmed",
        "Payment of {amount} {currency} for booking {booking_id} was received.",
    ),
    NotificationEvent.CHECKED_IN: (
        "Guest checked in",
        "Check-in for booking {booking_id} was confirmed ({confirmation}).",
    ),
    NotificationEvent.CHECKED_OUT: (
        "Guest checked out",
        "Checkout for booking {booking_id} was confirmed ({confirmation}).",
    ),
    NotificationEvent.BOOKING_CANCELLED: (
        "Booking cancelled",
        "Booking {booking_id} was cancelled.",
    ),
    NotificationEvent.DISPUTE_OPENED: (
        "Dispute opened",
        "A {subject} dispute ({category}) was opened on booking {booking_id}. "
        "Please respond before {deadline}.",
    ),
    NotificationEvent.DISPUTE_ESCALATED: (
        "Dispute escalated",
        "The dispute on booking {booking_id} was escalated for admin review.",
    ),
    NotificationEvent.DISPUTE_RESOLVED: (
        "Dispute resolved",
        "The dispute on booking {booking_id} was resolved: {outcome}.",
    ),
    NotificationEvent.PAYOUT_COMPLETED: (
        "Payout released",
        "{amount} {currency} from booking {booking_id} was credited to your wallet.",
    ),
    NotificationEvent.REFUND_COMPLETED: (
        "Refund issued",
        "{amount} {currency} from booking {booking_id} was refunded to you.",
    ),
    NotificationEvent.RELEASE_NEEDS_REVIEW: (
        "Release needs review",
        "The {component} release for booking {booking_id} failed and was parked for review.",
    ),
    NotificationEvent.WITHDRAWAL_COMPLETED: (
        "Withdrawal sent",
        "Your withdrawal of {amount} {currency} was sent.",
    ),
    NotificationEvent.WITHDRAWAL_FAILED: (
        "Withdrawal failed",
        "Your withdrawal of {amount} {currency} failed and the funds were returned to your wallet.",
    ),
}


def render(event_type: str, context: dict[str, Any]) -> tuple[str, str]:
    """
    Render the title and body for an event.

    Raises KeyError when the context is missing a placeholder.
    """
    title_template, body_template = NOTIFICATION_TEMPLATES[event_type]
    return title_template.format(**context), body_template.format(**context)


class NotificationDispatcher(BaseService):
    @classmethod
    def notify(
        cls,
        recipient_id: uuid.UUID | str,
        event_type: str,
        context: dict[str, Any] | None = None,
        booking_id: uuid.UUID | str | None = None,
        idempotency_key: str | None = None,
    ) -> None:
        """Queue a notification for delivery once the current transaction commits."""
        from notifications.tasks import deliver_notification

        payload = {
            "recipient_id": str(recipient_id),
            "event_type": str(event_type),
            "context": {key: str(value) for key, value in (context or {}).items()},
            "booking_id": str(booking_id) if booking_id else None,
            "idempotency_key": idempotency_key,
        }

        def enqueue() -> None:
            try:
                deliver_notification.delay(**payload)
            except Exception:
                cls.get_logger().exception(
                    "Failed to queue notification",
                    extra={"event_type": payload["event_type"], "recipient_id": payload["recipient_id"]},
                )

        transaction.on_commit(enqueue)

    @classmethod
    def create(
        cls,
        recipient_id: str,
        event_type: str,
        context: dict[str, Any],
        booking_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> ServiceResult[Notification]:
        """
        Persist a notification.

        Error codes:
            UNKNOWN_EVENT: No template for the event type
            DUPLICATE: idempotency_key already used
        """
        if event_type not in NOTIFICATION_TEMPLATES:
            return ServiceResult.failure(
                f"Unknown notification event: {event_type}",
                error_code="UNKNOWN_EVENT",
            )

        title, body = render(event_type, context)
        try:
            with transaction.atomic():
                notification = Notification.objects.create(
                    recipient_id=recipient_id,
                    event_type=event_type,
                    title=title,
                    body=body,
                    data=context,
                    booking_id=booking_id,
                    idempotency_key=idempotency_key,
                )
        except IntegrityError:
            cls.get_logger().info(
                "Duplicate notification prevented",
                extra={"idempotency_key": idempotency_key},
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )
        return ServiceResult.ok(notification)


class NotificationService(BaseService):
    @classmethod
    def mark_as_read(cls, notification: Notification) -> ServiceResult[Notification]:
        """Idempotent: already-read notifications succeed unchanged."""
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = timezone.now()
            notification.save(update_fields=["is_read", "read_at", "updated_at"])
        return ServiceResult.ok(notification)

    @classmethod
    def mark_all_as_read(cls, recipient_id: uuid.UUID | str) -> ServiceResult[int]:
        now = timezone.now()
        count = Notification.objects.filter(recipient_id=recipient_id, is_read=False).update(
            is_read=True, read_at=now, updated_at=now
        )
        return ServiceResult.ok(count)
