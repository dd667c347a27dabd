"""
Tests for notification services.

Covers:
- render(): templates filled from the context
- NotificationDispatcher.notify: delivery queued only after commit
- NotificationDispatcher.create: unknown events, idempotency keys
- NotificationService: read status
"""

import uuid

import pytest
from django.db import transaction

from notifications.models import Notification, NotificationEvent
from notifications.services import (
    NOTIFICATION_TEMPLATES,
    NotificationDispatcher,
    NotificationService,
    render,
)


class TestRender:
    def test_every_event_has_a_template(self):
        assert set(NOTIFICATION_TEMPLATES) == set(NotificationEvent.values)

    def test_fills_placeholders(self):
        title, body = render(
            NotificationEvent.PAYOUT_COMPLETED,
            {"amount": "45000.00", "currency": "NGN", "booking_id": "b-1"},
        )

        assert title == "Payout released"
        assert body == "45000.00 NGN from booking b-1 was credited to your wallet."

    def test_missing_placeholder(self):
        with pytest.raises(KeyError):
            render(NotificationEvent.PAYOUT_COMPLETED, {"amount": "1"})


@pytest.mark.django_db
class TestNotify:
    """Tests for NotificationDispatcher.notify."""

    def test_queued_on_commit(self, mocker, recipient_id, django_capture_on_commit_callbacks):
        delay = mocker.patch("notifications.tasks.deliver_notification.delay")
        booking_id = uuid.uuid4()

        with django_capture_on_commit_callbacks(execute=True):
            NotificationDispatcher.notify(
                recipient_id=recipient_id,
                event_type=NotificationEvent.BOOKING_CANCELLED,
                context={"booking_id": booking_id},
                booking_id=booking_id,
                idempotency_key=f"booking:{booking_id}:cancelled",
            )
            delay.assert_not_called()

        delay.assert_called_once_with(
            recipient_id=str(recipient_id),
            event_type="booking_cancelled",
            context={"booking_id": str(booking_id)},
            booking_id=str(booking_id),
            idempotency_key=f"booking:{booking_id}:cancelled",
        )

    def test_rolled_back_transaction_never_notifies(
        self, mocker, recipient_id, django_capture_on_commit_callbacks
    ):
        delay = mocker.patch("notifications.tasks.deliver_notification.delay")

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(RuntimeError):
                with transaction.atomic():
                    NotificationDispatcher.notify(recipient_id, NotificationEvent.BOOKING_CANCELLED, {})
                    raise RuntimeError("transition failed")

        assert callbacks == []
        delay.assert_not_called()

    def test_broker_failure_is_logged(self, mocker, recipient_id, django_capture_on_commit_callbacks):
        mocker.patch(
            "notifications.tasks.deliver_notification.delay",
            side_effect=ConnectionError("broker down"),
        )
        logger = mocker.patch.object(NotificationDispatcher, "get_logger")

        with django_capture_on_commit_callbacks(execute=True):
            NotificationDispatcher.notify(recipient_id, NotificationEvent.BOOKING_CANCELLED, {"booking_id": "b-1"})

        logger.return_value.exception.assert_called_once()


@pytest.mark.django_db
class TestCreate:
    def test_creates_rendered_notification(self, recipient_id):
        result = NotificationDispatcher.create(
            recipient_id=str(recipient_id),
            event_type=NotificationEvent.DISPUTE_ESCALATED,
            context={"booking_id": "b-1"},
            idempotency_key="dispute:1:escalated",
        )

        assert result.success
        notification = result.data
        assert notification.title == "Dispute escalated"
        assert "b-1" in notification.body
        assert notification.data == {"booking_id": "b-1"}
        assert notification.is_read is False

    def test_unknown_event(self, recipient_id):
        result = NotificationDispatcher.create(str(recipient_id), "party_started", {})

        assert result.error_code == "UNKNOWN_EVENT"

    def test_duplicate_idempotency_key(self, recipient_id):
        kwargs = {
            "recipient_id": str(recipient_id),
            "event_type": NotificationEvent.DISPUTE_ESCALATED,
            "context": {"booking_id": "b-1"},
            "idempotency_key": "dispute:1:escalated",
        }
        NotificationDispatcher.create(**kwargs)

        result = NotificationDispatcher.create(**kwargs)

        assert result.error_code == "DUPLICATE"
        assert Notification.objects.count() == 1

    def test_without_key_not_deduplicated(self, make_notification):
        make_notification(booking_id="b-1")
        make_notification(booking_id="b-1")

        assert Notification.objects.count() == 2


@pytest.mark.django_db
class TestReadStatus:
    def test_mark_as_read(self, make_notification):
        notification = make_notification()

        result = NotificationService.mark_as_read(notification)

        assert result.data.is_read is True
        assert result.data.read_at is not None

    def test_mark_as_read_idempotent(self, make_notification):
        notification = make_notification()
        NotificationService.mark_as_read(notification)
        first_read_at = notification.read_at

        NotificationService.mark_as_read(notification)

        assert notification.read_at == first_read_at

    def test_mark_all_as_read_scoped_to_recipient(self, make_notification, recipient_id):
        make_notification()
        make_notification()
        other = make_notification(recipient=uuid.uuid4())

        result = NotificationService.mark_all_as_read(recipient_id)

        assert result.data == 2
        other.refresh_from_db()
        assert other.is_read is False
