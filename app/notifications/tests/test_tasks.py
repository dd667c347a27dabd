"""
Tests for deliver_notification.
"""

import pytest

from notifications.models import Notification, NotificationEvent
from notifications.tasks import deliver_notification


@pytest.mark.django_db
class TestDeliverNotification:
    def test_delivers(self, recipient_id):
        assert deliver_notification(
            recipient_id=str(recipient_id),
            event_type=NotificationEvent.WITHDRAWAL_COMPLETED,
            context={"amount": "9970.00", "currency": "NGN"},
            idempotency_key="withdrawal:1:completed",
        ) is True

        notification = Notification.objects.get()
        assert notification.body == "Your withdrawal of 9970.00 NGN was sent."

    def test_redelivery_is_success(self, recipient_id):
        """A retried task finds the existing row and reports success."""
        kwargs = {
            "recipient_id": str(recipient_id),
            "event_type": NotificationEvent.WITHDRAWAL_COMPLETED,
            "context": {"amount": "9970.00", "currency": "NGN"},
            "idempotency_key": "withdrawal:1:completed",
        }
        deliver_notification(**kwargs)

        assert deliver_notification(**kwargs) is True
        assert Notification.objects.count() == 1

    def test_missing_placeholder_is_permanent_failure(self, recipient_id):
        assert deliver_notification(
            recipient_id=str(recipient_id),
            event_type=NotificationEvent.WITHDRAWAL_COMPLETED,
            context={},
        ) is False
        assert not Notification.objects.exists()

    def test_unknown_event_is_permanent_failure(self, recipient_id):
        assert deliver_notification(str(recipient_id), "party_started", {}) is False
