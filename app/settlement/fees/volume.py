"""
Operator monthly room-fee volume used for commission discounts.

Months are calendar months in ``settings.SETTLEMENT_VOLUME_TIMEZONE``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from django.conf import settings
from django.db.models import Sum
from django.utils import timezone

from settlement.ledger.types import ZERO, to_money


def month_bounds(reference: datetime | None = None) -> tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) of the reference's month, as aware datetimes."""
    tz = ZoneInfo(settings.SETTLEMENT_VOLUME_TIMEZONE)
    local = (reference or timezone.now()).astimezone(tz)
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def monthly_room_fee_volume(operator_id, as_of: datetime | None = None) -> Decimal:
    """
    Sum of room fees on the operator's paid bookings this month.

    Cancelled bookings that were never paid carry no ``paid_at`` and are
    excluded naturally.
    """
    from settlement.models import Booking

    start, end = month_bounds(as_of)
    total = Booking.objects.filter(
        operator_id=operator_id,
        paid_at__gte=start,
        paid_at__lt=end,
    ).aggregate(total=Sum("room_fee"))["total"]
    return to_money(total or ZERO)
