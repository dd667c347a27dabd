"""
Factory Boy factories for settlement test data.

The default booking is the canonical two-night stay used across the suite:

    room fee      25000 x 2 = 50000   (10% tier -> commission 5000)
    cleaning fee              5000
    security deposit         10000
    service fee 2% of 55000   1100
    guest total              66100

Usage:
    from settlement.tests.factories import BookingFactory, PaymentFactory

    booking = BookingFactory()
    PaymentFactory(booking=booking)

    # A stay for a specific operator
    booking = BookingFactory(operator_id=operator_id)
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone

from settlement.models import (
    Booking,
    Dispute,
    Payment,
    PlatformSetting,
    WithdrawalRequest,
)
from settlement.services.bookings import scheduled_moment
from settlement.state_machines import DisputeCategory, DisputeSubject, ProcessingMode


class BookingFactory(factory.django.DjangoModelFactory):
    """
    Factory for a PENDING booking priced at the default commission tier.

    Dates start today so guest and operator windows behave like a live stay.
    """

    class Meta:
        model = Booking
        skip_postgeneration_save = True

    guest_id = factory.LazyFunction(uuid.uuid4)
    operator_id = factory.LazyFunction(uuid.uuid4)
    property_id = factory.LazyFunction(uuid.uuid4)
    check_in_date = factory.LazyFunction(lambda: timezone.now().date())
    check_out_date = factory.LazyAttribute(lambda o: o.check_in_date + timedelta(days=2))
    scheduled_check_in_at = factory.LazyAttribute(lambda o: scheduled_moment(o.check_in_date, 14))
    scheduled_check_out_at = factory.LazyAttribute(lambda o: scheduled_moment(o.check_out_date, 11))
    nights = 2
    nightly_rate = Decimal("25000.00")
    currency = "NGN"
    room_fee = Decimal("50000.00")
    cleaning_fee = Decimal("5000.00")
    security_deposit = Decimal("10000.00")
    service_fee = Decimal("1100.00")
    platform_fee = Decimal("0.00")
    processing_fee = Decimal("925.00")
    processing_mode = ProcessingMode.LOCAL
    total_amount = Decimal("66100.00")
    commission_base_rate = Decimal("0.1000")
    commission_volume_reduction = Decimal("0.0000")
    commission_effective_rate = Decimal("0.1000")
    commission_amount = Decimal("5000.00")
    operator_room_payout = Decimal("45000.00")
    gateway = "paystack"


class PaymentFactory(factory.django.DjangoModelFactory):
    """Factory for the INITIATED payment that accompanies a booking."""

    class Meta:
        model = Payment
        skip_postgeneration_save = True

    booking = factory.SubFactory(BookingFactory)
    currency = factory.LazyAttribute(lambda o: o.booking.currency)
    gateway = factory.LazyAttribute(lambda o: o.booking.gateway)


class DisputeFactory(factory.django.DjangoModelFactory):
    """
    Factory for a raw room fee dispute row.

    Service tests open disputes through DisputeService; this factory is for
    model-level tests that need a row in a given status.
    """

    class Meta:
        model = Dispute
        skip_postgeneration_save = True

    booking = factory.SubFactory(BookingFactory)
    subject = DisputeSubject.ROOM_FEE
    category = DisputeCategory.MISSING_AMENITIES_CLEANLINESS
    opened_by = factory.LazyAttribute(lambda o: o.booking.guest_id)
    claimed_amount = Decimal("50000.00")
    subject_amount = Decimal("50000.00")
    max_refund_percent = Decimal("50.00")
    max_award_amount = Decimal("25000.00")


class WithdrawalRequestFactory(factory.django.DjangoModelFactory):
    """Factory for a PENDING withdrawal; pass ``wallet`` explicitly."""

    class Meta:
        model = WithdrawalRequest
        skip_postgeneration_save = True

    operator_id = factory.LazyAttribute(lambda o: o.wallet.owner_id)
    amount = Decimal("10000.00")
    fee_amount = Decimal("30.00")
    net_amount = Decimal("9970.00")
    currency = "NGN"
    gateway = "paystack"
    destination_account = "RCP_test_recipient"
    reference = factory.LazyFunction(lambda: f"withdrawal:{uuid.uuid4()}")


class PlatformSettingFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PlatformSetting
        skip_postgeneration_save = True

    key = factory.Sequence(lambda n: f"test.setting.{n}")
    version = 1
    value = factory.LazyFunction(dict)
