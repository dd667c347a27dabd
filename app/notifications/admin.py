"""Django admin configuration for notifications."""

from django.contrib import admin

from notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    """Read-only view of notifications for support."""

    list_display = ["id", "event_type", "recipient_id", "title", "is_read", "created_at"]
    list_filter = ["is_read", "event_type", "created_at"]
    search_fields = ["title", "recipient_id", "booking_id", "idempotency_key"]
    ordering = ["-created_at"]
    readonly_fields = [
        "recipient_id",
        "event_type",
        "title",
        "body",
        "data",
        "booking_id",
        "idempotency_key",
        "read_at",
        "created_at",
        "updated_at",
    ]

    def has_add_permission(self, request):
        return False
