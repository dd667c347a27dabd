"""
API tests for the notification inbox.

Test Classes:
    TestNotificationList: GET /api/v1/notifications/
    TestUnreadCount: GET /api/v1/notifications/unread-count/
    TestMarkRead: POST /api/v1/notifications/{id}/read/ and /read-all/
"""

import uuid

import pytest
from django.urls import reverse
from rest_framework import status


@pytest.mark.django_db
class TestNotificationList:
    def test_returns_own_notifications(self, client_for, recipient_id, make_notification):
        notification = make_notification()
        make_notification(recipient=uuid.uuid4())

        response = client_for(recipient_id).get(reverse("notifications:notification-list"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["count"] == 1
        assert response.data["results"][0]["id"] == str(notification.id)

    def test_filter_by_is_read(self, client_for, recipient_id, make_notification):
        make_notification()
        read = make_notification()
        read.is_read = True
        read.save()

        response = client_for(recipient_id).get(
            reverse("notifications:notification-list"), {"is_read": "false"}
        )

        assert response.data["count"] == 1

    def test_requires_authentication(self, api_client):
        response = api_client.get(reverse("notifications:notification-list"))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_detail_of_other_user_not_found(self, client_for, make_notification):
        notification = make_notification(recipient=uuid.uuid4())

        response = client_for().get(
            reverse("notifications:notification-detail", kwargs={"pk": notification.id})
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestUnreadCount:
    def test_counts_unread(self, client_for, recipient_id, make_notification):
        make_notification()
        make_notification()

        response = client_for(recipient_id).get(reverse("notifications:notification-unread-count"))

        assert response.data == {"unread_count": 2}


@pytest.mark.django_db
class TestMarkRead:
    def test_mark_single(self, client_for, recipient_id, make_notification):
        notification = make_notification()

        response = client_for(recipient_id).post(
            reverse("notifications:notification-read", kwargs={"pk": notification.id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_read"] is True

    def test_cannot_mark_others(self, client_for, make_notification):
        notification = make_notification(recipient=uuid.uuid4())

        response = client_for().post(
            reverse("notifications:notification-read", kwargs={"pk": notification.id})
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_mark_all(self, client_for, recipient_id, make_notification):
        make_notification()
        make_notification()

        response = client_for(recipient_id).post(reverse("notifications:notification-read-all"))

        assert response.data == {"marked_count": 2}
