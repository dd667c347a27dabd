"""
Notification models.

Notifications are in-app records addressed to a user id owned by the
upstream identity service. Title and body are rendered once at creation
and never change.

Usage:
    from notifications.models import Notification, NotificationEvent

    unread = Notification.objects.filter(recipient_id=user_id, is_read=False)
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class NotificationEvent(models.TextChoices):
    BOOKING_PAID = "booking_paid", "Booking Paid"
    CHECKED_IN = "checked_in", "Checked In"
    CHECKED_OUT = "checked_out", "Checked Out"
    BOOKING_CANCELLED = "booking_cancelled", "Booking Cancelled"
    DISPUTE_OPENED = "dispute_opened", "Dispute Opened"
    DISPUTE_ESCALATED = "dispute_escalated", "Dispute Escalated"
    DISPUTE_RESOLVED = "dispute_resolved", "Dispute Resolved"
    PAYOUT_COMPLETED = "payout_completed", "Payout Completed"
    REFUND_COMPLETED = "refund_completed", "Refund Completed"
    RELEASE_NEEDS_REVIEW = "release_needs_review", "Release Needs Review"
    WITHDRAWAL_COMPLETED = "withdrawal_completed", "Withdrawal Completed"
    WITHDRAWAL_FAILED = "withdrawal_failed", "Withdrawal Failed"


class Notification(UUIDPrimaryKeyMixin, BaseModel):
    """
    One notification for one recipient.

    ``idempotency_key`` keeps retried deliveries from creating duplicates.
    """

    recipient_id = models.UUIDField(db_index=True)
    event_type = models.CharField(max_length=40, choices=NotificationEvent.choices)
    title = models.CharField(max_length=500)
    body = models.TextField(blank=True, default="")
    data = models.JSONField(default=dict, blank=True)
    booking_id = models.UUIDField(null=True, blank=True, db_index=True)
    idempotency_key = models.CharField(max_length=255, null=True, blank=True)
    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["recipient_id", "is_read", "-created_at"],
                name="notif_recipient_unread_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                name="notif_idempotency_key_unique",
                condition=models.Q(idempotency_key__isnull=False),
            ),
        ]

    def __str__(self) -> str:
        read_status = "read" if self.is_read else "unread"
        return f"Notification({self.event_type}) -> {self.recipient_id} [{read_status}]"
