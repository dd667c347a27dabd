"""
Fixtures for notification tests.
"""

import uuid

import pytest

from notifications.models import NotificationEvent
from notifications.services import NotificationDispatcher


@pytest.fixture
def recipient_id():
    return uuid.uuid4()


@pytest.fixture
def make_notification(db, recipient_id):
    """Create a rendered notification for the recipient (or another user)."""

    def _make(event_type=NotificationEvent.BOOKING_CANCELLED, recipient=None, **context):
        context.setdefault("booking_id", str(uuid.uuid4()))
        result = NotificationDispatcher.create(
            recipient_id=str(recipient or recipient_id),
            event_type=event_type,
            context=context,
        )
        assert result.success
        return result.data

    return _make
