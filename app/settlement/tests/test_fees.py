"""
Tests for fee calculation and finance configuration.

Covers:
- Booking quote breakdown (service, processing and commission)
- Commission tier boundaries and monthly volume discounts
- Fee caps and their triggers
- Withdrawal fee schedule
- Room fee splits at the snapshot rate
- Cancellation refund tiers and their stored policy
- Loading stored configuration in strict and lenient mode
"""

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from django.utils import timezone
from freezegun import freeze_time

from core.exceptions import ConfigurationError
from settlement.exceptions import ConfigurationMissing, InvalidAmount
from settlement.fees import (
    DEFAULT_FINANCE_CONFIG,
    compute_cancellation_refund,
    compute_commission_reversal,
    compute_withdrawal_fee,
    finance_config_health,
    load_finance_config,
    monthly_room_fee_volume,
    quote_booking,
    quote_commission,
    split_room_fee,
)
from settlement.fees.calculator import find_commission_tier
from settlement.fees.config import (
    CommissionTier,
    FinanceSettingKey,
    VolumeDiscount,
    validate_commission_tiers,
)
from settlement.fees.volume import month_bounds
from settlement.models import PlatformSetting
from settlement.state_machines import CancellationTier, ProcessingMode
from settlement.tests.factories import BookingFactory


def canonical_quote(**overrides):
    params = {
        "nightly_rate": Decimal("25000"),
        "nights": 2,
        "cleaning_fee": Decimal("5000"),
        "security_deposit": Decimal("10000"),
        "config": DEFAULT_FINANCE_CONFIG,
    }
    params.update(overrides)
    return quote_booking(**params)


class TestQuoteBooking:
    """Tests for the full booking price breakdown."""

    def test_canonical_breakdown(self):
        """Two nights at 25000 with cleaning and deposit prices to 66100."""
        quote = canonical_quote()

        assert quote.room_fee == Decimal("50000.00")
        assert quote.service_fee == Decimal("1100.00")
        assert quote.processing_fee == Decimal("925.00")
        assert quote.total_payable == Decimal("66100.00")
        assert quote.commission.base_rate == Decimal("0.10")
        assert quote.commission.commission_amount == Decimal("5000.00")
        assert quote.commission.operator_room_payout == Decimal("45000.00")
        assert quote.estimated_operator_payout == Decimal("50000.00")

    def test_processing_fee_not_charged_to_guest(self):
        """Processing fee is absorbed by the platform, not added to the total."""
        quote = canonical_quote()

        components = (
            quote.room_fee + quote.cleaning_fee + quote.security_deposit
            + quote.service_fee + quote.platform_fee
        )
        assert quote.total_payable == components

    def test_platform_fee_added_to_total(self):
        """An optional platform surcharge is payable by the guest."""
        quote = canonical_quote(platform_fee=Decimal("500"))

        assert quote.platform_fee == Decimal("500.00")
        assert quote.total_payable == Decimal("66600.00")

    def test_service_fee_cap_applies_above_trigger(self):
        """Service fee variable part is capped at 2500 once the subtotal reaches 125000."""
        quote = canonical_quote(nightly_rate=Decimal("100000"), cleaning_fee=Decimal("0"))

        # 2% of 200000 would be 4000
        assert quote.service_fee == Decimal("2500.00")
        assert quote.service_fee_cap_applied is True

    def test_service_fee_uncapped_below_trigger(self):
        quote = canonical_quote(nightly_rate=Decimal("60000"), cleaning_fee=Decimal("0"))

        assert quote.service_fee == Decimal("2400.00")
        assert quote.service_fee_cap_applied is False

    def test_international_processing_has_no_cap(self):
        """International cards pay 3.9% + 100 with no cap."""
        quote = canonical_quote(
            nightly_rate=Decimal("100000"),
            cleaning_fee=Decimal("0"),
            processing_mode=ProcessingMode.INTERNATIONAL,
        )

        assert quote.processing_fee == Decimal("7900.00")
        assert quote.processing_fee_cap_applied is False

    def test_local_processing_capped(self):
        quote = canonical_quote(nightly_rate=Decimal("100000"), cleaning_fee=Decimal("0"))

        assert quote.processing_fee == Decimal("2100.00")
        assert quote.processing_fee_cap_applied is True

    def test_rejects_zero_nights(self):
        with pytest.raises(InvalidAmount):
            canonical_quote(nights=0)

    def test_rejects_negative_cleaning_fee(self):
        with pytest.raises(InvalidAmount):
            canonical_quote(cleaning_fee=Decimal("-1"))

    def test_snapshot_is_json_safe(self):
        """Snapshot stores decimals as strings and includes the operator payout."""
        snapshot = canonical_quote().to_snapshot()

        assert snapshot["total_payable"] == "66100.00"
        assert snapshot["commission"]["commission_amount"] == "5000.00"
        assert snapshot["estimated_operator_payout"] == "50000.00"
        assert snapshot["config_version"] == DEFAULT_FINANCE_CONFIG.version

    def test_volume_progress_points_at_next_threshold(self):
        quote = canonical_quote(monthly_volume=Decimal("6000000"))

        assert quote.volume_progress.next_threshold == Decimal("10000000.00")
        assert quote.volume_progress.next_reduction == Decimal("0.01")


class TestCommission:
    """Tests for tier lookup and volume discounts."""

    @pytest.mark.parametrize(
        "room_fee,expected_rate",
        [
            (Decimal("1"), Decimal("0.10")),
            (Decimal("500000"), Decimal("0.10")),
            (Decimal("500000.50"), Decimal("0.10")),
            (Decimal("500001"), Decimal("0.07")),
            (Decimal("2000000"), Decimal("0.07")),
            (Decimal("2000001"), Decimal("0.05")),
            (Decimal("90000000"), Decimal("0.05")),
        ],
    )
    def test_tier_boundaries(self, room_fee, expected_rate):
        tier = find_commission_tier(room_fee, DEFAULT_FINANCE_CONFIG)

        assert tier.rate == expected_rate

    @pytest.mark.parametrize(
        "monthly_volume,expected_reduction",
        [
            (Decimal("0"), Decimal("0")),
            (Decimal("4999999"), Decimal("0")),
            (Decimal("5000000"), Decimal("0.005")),
            (Decimal("10000000"), Decimal("0.01")),
            (Decimal("25000000"), Decimal("0.015")),
        ],
    )
    def test_volume_discount(self, monthly_volume, expected_reduction):
        quote = quote_commission(Decimal("50000"), monthly_volume, DEFAULT_FINANCE_CONFIG)

        assert quote.volume_reduction == expected_reduction
        assert quote.effective_rate == Decimal("0.10") - expected_reduction

    def test_volume_discount_capped(self):
        """A discount above the cap is limited to the cap."""
        config = replace(
            DEFAULT_FINANCE_CONFIG,
            volume_discounts=(
                *DEFAULT_FINANCE_CONFIG.volume_discounts,
                VolumeDiscount(Decimal("50000000"), Decimal("0.03")),
            ),
        )

        quote = quote_commission(Decimal("50000"), Decimal("60000000"), config)

        assert quote.volume_reduction == Decimal("0.02")
        assert quote.effective_rate == Decimal("0.08")

    def test_commission_and_payout_sum_to_room_fee(self):
        quote = quote_commission(Decimal("333333.33"), Decimal("0"), DEFAULT_FINANCE_CONFIG)

        assert quote.commission_amount + quote.operator_room_payout == Decimal("333333.33")

    def test_rejects_non_positive_room_fee(self):
        with pytest.raises(InvalidAmount):
            quote_commission(Decimal("0"), Decimal("0"), DEFAULT_FINANCE_CONFIG)

    def test_missing_tier_raises(self):
        config = replace(
            DEFAULT_FINANCE_CONFIG,
            commission_tiers=(CommissionTier(Decimal("1000"), None, Decimal("0.10")),),
        )

        with pytest.raises(ConfigurationMissing):
            find_commission_tier(Decimal("500"), config)


class TestWithdrawalFee:
    """Tests for the withdrawal fee schedule (0.3%, cap 3000, minimum 1000)."""

    def test_percentage_fee(self):
        fee = compute_withdrawal_fee(Decimal("100000"), DEFAULT_FINANCE_CONFIG)

        assert fee.fee_amount == Decimal("300.00")
        assert fee.net_amount == Decimal("99700.00")
        assert fee.cap_applied is False

    def test_fee_capped(self):
        fee = compute_withdrawal_fee(Decimal("2000000"), DEFAULT_FINANCE_CONFIG)

        assert fee.fee_amount == Decimal("3000.00")
        assert fee.net_amount == Decimal("1997000.00")
        assert fee.cap_applied is True

    def test_reports_minimum(self):
        fee = compute_withdrawal_fee(Decimal("500"), DEFAULT_FINANCE_CONFIG)

        assert fee.minimum_withdrawal == Decimal("1000.00")


class TestRoomFeeSplit:
    """Tests for splitting room fee amounts at the snapshot rate."""

    @pytest.mark.parametrize(
        "amount,rate",
        [
            (Decimal("50000"), Decimal("0.10")),
            (Decimal("25000"), Decimal("0.10")),
            (Decimal("33333.33"), Decimal("0.07")),
            (Decimal("0.01"), Decimal("0.05")),
        ],
    )
    def test_parts_sum_to_amount(self, amount, rate):
        operator, platform = split_room_fee(amount, rate)

        assert operator + platform == amount
        assert operator >= 0 and platform >= 0

    def test_canonical_split(self):
        assert split_room_fee(Decimal("50000"), Decimal("0.10")) == (
            Decimal("45000.00"),
            Decimal("5000.00"),
        )

    def test_commission_reversal_bounded_rate(self):
        """Rates outside [0, 1] are clamped."""
        assert compute_commission_reversal(Decimal("1000"), Decimal("1.5")) == Decimal("1000.00")
        assert compute_commission_reversal(Decimal("1000"), Decimal("-0.1")) == Decimal("0.00")


class TestCancellationRefund:
    """Tests for the cancellation refund split."""

    policy = DEFAULT_FINANCE_CONFIG.cancellation

    def test_early_split(self):
        refund = compute_cancellation_refund(Decimal("50000"), Decimal("10000"), Decimal("72"), self.policy)

        assert refund.tier == CancellationTier.EARLY
        assert refund.allowed is True
        assert refund.guest_room_refund == Decimal("45000.00")
        assert refund.operator_room_portion == Decimal("3500.00")
        assert refund.platform_room_portion == Decimal("1500.00")
        assert refund.deposit_refund == Decimal("10000.00")
        assert refund.guest_total == Decimal("55000.00")

    def test_exactly_at_notice_boundary(self):
        refund = compute_cancellation_refund(Decimal("50000"), Decimal("0"), 24, self.policy)

        assert refund.tier == CancellationTier.EARLY

    @pytest.mark.parametrize("hours", [Decimal("23.999"), Decimal("1"), Decimal("-3")])
    def test_inside_notice_period_moves_nothing(self, hours):
        refund = compute_cancellation_refund(Decimal("50000"), Decimal("10000"), hours, self.policy)

        assert refund.tier == CancellationTier.NONE
        assert refund.allowed is False
        assert refund.guest_total == Decimal("0.00")
        assert refund.operator_room_portion == Decimal("0.00")

    def test_portions_sum_to_room_fee(self):
        refund = compute_cancellation_refund(Decimal("33333.33"), Decimal("0"), Decimal("30"), self.policy)

        total = refund.guest_room_refund + refund.operator_room_portion + refund.platform_room_portion
        assert total == Decimal("33333.33")

    def test_hours_reported_truncated(self):
        refund = compute_cancellation_refund(Decimal("50000"), Decimal("0"), 23.9999, self.policy)

        assert refund.hours_until_check_in == Decimal("23.99")
        assert refund.tier == CancellationTier.NONE


class TestTierValidation:
    """Tests for commission tier validation."""

    def test_default_tiers_valid(self):
        assert validate_commission_tiers(DEFAULT_FINANCE_CONFIG.commission_tiers) == []

    def test_gap_between_tiers(self):
        tiers = [
            CommissionTier(Decimal("0"), Decimal("500000"), Decimal("0.10")),
            CommissionTier(Decimal("600000"), None, Decimal("0.07")),
        ]

        errors = validate_commission_tiers(tiers)

        assert "Commission tiers must be contiguous and non-overlapping" in errors

    def test_must_start_at_zero(self):
        tiers = [CommissionTier(Decimal("100"), None, Decimal("0.10"))]

        assert "Commission tiers must start at 0" in validate_commission_tiers(tiers)

    def test_final_tier_open_ended(self):
        tiers = [CommissionTier(Decimal("0"), Decimal("500000"), Decimal("0.10"))]

        assert "Final commission tier must be open-ended" in validate_commission_tiers(tiers)

    def test_rate_above_ceiling(self):
        tiers = [CommissionTier(Decimal("0"), None, Decimal("0.30"))]

        assert "Commission tier rate must be between 0 and 0.25" in validate_commission_tiers(tiers)


@pytest.mark.django_db
class TestLoadFinanceConfig:
    """Tests for reading the active configuration from PlatformSetting."""

    def test_defaults_without_stored_settings(self):
        assert load_finance_config() == DEFAULT_FINANCE_CONFIG
        assert finance_config_health()["state"] == "valid"

    def test_stored_tiers_override_defaults(self):
        PlatformSetting.publish(
            FinanceSettingKey.COMMISSION_TIERS,
            [
                {"min": 0, "max": 100000, "rate": "0.12"},
                {"min": 100001, "max": None, "rate": "0.08"},
            ],
        )

        config = load_finance_config()

        assert config.commission_tiers[0].rate == Decimal("0.12")
        assert find_commission_tier(Decimal("150000"), config).rate == Decimal("0.08")

    def test_latest_version_wins(self):
        PlatformSetting.publish(FinanceSettingKey.MONTHLY_DISCOUNT_CAP, "0.01")
        PlatformSetting.publish(FinanceSettingKey.MONTHLY_DISCOUNT_CAP, "0.015")

        assert load_finance_config().volume_discount_cap == Decimal("0.015")

    def test_invalid_config_strict_raises(self, settings):
        settings.FINANCE_CONFIG_STRICT = True
        PlatformSetting.publish(
            FinanceSettingKey.COMMISSION_TIERS,
            [{"min": 100, "max": None, "rate": "0.10"}],
        )

        with pytest.raises(ConfigurationError) as exc_info:
            load_finance_config()

        assert exc_info.value.error_code == "FINANCE_CONFIG_INVALID"
        assert finance_config_health()["state"] == "invalid"

    def test_invalid_config_lenient_falls_back(self, settings):
        settings.FINANCE_CONFIG_STRICT = False
        PlatformSetting.publish(FinanceSettingKey.WITHDRAWAL_FEE, "not-a-schedule")

        assert load_finance_config() == DEFAULT_FINANCE_CONFIG
        health = finance_config_health()
        assert health["state"] == "defaults"
        assert health["errors"]

    def test_stored_cancellation_policy(self):
        PlatformSetting.publish(
            FinanceSettingKey.CANCELLATION_REFUND,
            {"min_notice_hours": 48, "guest_rate": "0.80", "operator_rate": "0.15", "platform_rate": "0.05"},
        )

        policy = load_finance_config().cancellation

        assert policy.min_notice_hours == 48
        assert policy.guest_rate == Decimal("0.80")
        assert policy.platform_rate == Decimal("0.05")

    def test_cancellation_rates_must_sum_to_one(self, settings):
        settings.FINANCE_CONFIG_STRICT = True
        PlatformSetting.publish(
            FinanceSettingKey.CANCELLATION_REFUND,
            {"min_notice_hours": 24, "guest_rate": "0.90", "operator_rate": "0.07", "platform_rate": "0.05"},
        )

        with pytest.raises(ConfigurationError) as exc_info:
            load_finance_config()

        assert "Cancellation refund rates must sum to 1" in exc_info.value.details["errors"]

    def test_malformed_cancellation_policy(self, settings):
        settings.FINANCE_CONFIG_STRICT = False
        PlatformSetting.publish(FinanceSettingKey.CANCELLATION_REFUND, {"min_notice_hours": "soon"})

        assert load_finance_config().cancellation == DEFAULT_FINANCE_CONFIG.cancellation
        assert f"{FinanceSettingKey.CANCELLATION_REFUND}: malformed value" in finance_config_health()["errors"]


@pytest.mark.django_db
class TestMonthlyVolume:
    """Tests for the operator's monthly room fee volume."""

    def test_sums_paid_bookings_in_current_month(self):
        booking = BookingFactory(paid_at=timezone.now())
        BookingFactory(operator_id=booking.operator_id, paid_at=timezone.now())
        # Unpaid bookings don't count
        BookingFactory(operator_id=booking.operator_id)

        assert monthly_room_fee_volume(booking.operator_id) == Decimal("100000.00")

    def test_excludes_previous_month(self):
        start, _ = month_bounds()
        booking = BookingFactory(paid_at=start - timedelta(seconds=1))

        assert monthly_room_fee_volume(booking.operator_id) == Decimal("0.00")

    def test_month_bounds_in_settlement_timezone(self, settings):
        settings.SETTLEMENT_VOLUME_TIMEZONE = "Africa/Lagos"
        # 23:30 UTC on Jan 31 is already Feb 1 in Lagos (UTC+1)
        reference = datetime(2026, 1, 31, 23, 30, tzinfo=ZoneInfo("UTC"))

        start, end = month_bounds(reference)

        assert (start.month, start.day) == (2, 1)
        assert (end.month, end.day) == (3, 1)

    @freeze_time("2026-02-15 12:00:00")
    def test_current_month_follows_settlement_timezone(self, settings):
        settings.SETTLEMENT_VOLUME_TIMEZONE = "Africa/Lagos"
        utc = ZoneInfo("UTC")
        # 00:30 on Feb 1 in Lagos
        booking = BookingFactory(paid_at=datetime(2026, 1, 31, 23, 30, tzinfo=utc))
        # 23:30 on Jan 31 in Lagos
        BookingFactory(operator_id=booking.operator_id, paid_at=datetime(2026, 1, 31, 22, 30, tzinfo=utc))

        assert monthly_room_fee_volume(booking.operator_id) == Decimal("50000.00")
