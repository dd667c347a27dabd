"""
Notifications app: in-app notifications for settlement events.

Usage:
    from notifications.services import NotificationDispatcher

    NotificationDispatcher.notify(
        recipient_id=booking.guest_id,
        event_type=NotificationEvent.REFUND_COMPLETED,
        context={"booking_id": str(booking.id), "amount": "10000.00", "currency": "NGN"},
    )
"""
