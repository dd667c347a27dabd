"""
Pure fee and commission calculations.

Nothing in this module touches the database; callers pass the active
FinanceConfig (see settlement.fees.config) and persist the returned
snapshots on the Booking when it is priced.

Amounts are Decimals rounded to the minor unit with ROUND_HALF_EVEN.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_DOWN, Decimal
from typing import TYPE_CHECKING

from settlement.exceptions import ConfigurationMissing, InvalidAmount
from settlement.fees.config import jsonable
from settlement.ledger.types import ZERO, to_money, to_rate
from settlement.state_machines import CancellationTier, ProcessingMode

if TYPE_CHECKING:
    from typing import Any

    from settlement.fees.config import CancellationPolicy, CommissionTier, FeeComponent, FinanceConfig

ONE = Decimal("1")


@dataclass(frozen=True)
class FeeAmount:
    total: Decimal
    variable: Decimal
    fixed: Decimal
    cap_applied: bool


@dataclass(frozen=True)
class CommissionQuote:
    base_rate: Decimal
    volume_reduction: Decimal
    effective_rate: Decimal
    commission_amount: Decimal
    operator_room_payout: Decimal


@dataclass(frozen=True)
class VolumeProgress:
    current: Decimal
    next_threshold: Decimal | None
    next_reduction: Decimal | None


@dataclass(frozen=True)
class BookingQuote:
    """Full price breakdown for a stay, as persisted on the Booking."""

    nights: int
    nightly_rate: Decimal
    room_fee: Decimal
    cleaning_fee: Decimal
    security_deposit: Decimal
    service_fee: Decimal
    platform_fee: Decimal
    processing_fee: Decimal
    processing_mode: str
    total_payable: Decimal
    commission: CommissionQuote
    volume_progress: VolumeProgress
    service_fee_cap_applied: bool
    processing_fee_cap_applied: bool
    config_version: str

    @property
    def estimated_operator_payout(self) -> Decimal:
        return to_money(self.cleaning_fee + self.commission.operator_room_payout)

    def to_snapshot(self) -> dict[str, Any]:
        snapshot = jsonable(asdict(self))
        snapshot["estimated_operator_payout"] = str(self.estimated_operator_payout)
        return snapshot


def compute_fee_component(subtotal: Decimal, component: FeeComponent) -> FeeAmount:
    """
    Apply a percentage + fixed fee component to a subtotal.

    The variable part is capped at ``cap_variable`` when the subtotal is at
    or above ``cap_trigger`` (no trigger means the cap always applies).
    """
    subtotal = max(to_money(subtotal), ZERO)
    variable_raw = to_money(subtotal * component.percent)
    fixed = to_money(component.fixed)

    if component.no_cap or component.cap_variable is None:
        return FeeAmount(variable_raw + fixed, variable_raw, fixed, False)

    can_cap = component.cap_trigger is None or subtotal >= component.cap_trigger
    variable = min(variable_raw, component.cap_variable) if can_cap else variable_raw
    return FeeAmount(
        total=to_money(variable + fixed),
        variable=variable,
        fixed=fixed,
        cap_applied=can_cap and variable != variable_raw,
    )


def find_commission_tier(room_fee: Decimal, config: FinanceConfig) -> CommissionTier:
    """
    Tier covering a room fee; the highest matching ``min_amount`` wins.

    Tier bounds are whole currency units: a tier with max 500000 covers
    amounts below 500001, where the next tier starts.
    """
    matches = [
        tier
        for tier in config.commission_tiers
        if tier.min_amount <= room_fee
        and (tier.max_amount is None or room_fee < tier.max_amount + 1)
    ]
    if not matches:
        raise ConfigurationMissing(
            "No commission tier covers this room fee",
            details={"room_fee": str(room_fee)},
        )
    return max(matches, key=lambda tier: tier.min_amount)


def volume_reduction_for(monthly_volume: Decimal, config: FinanceConfig) -> Decimal:
    """Highest discount whose threshold has been reached, capped."""
    reduction = ZERO
    for discount in sorted(config.volume_discounts, key=lambda d: d.volume):
        if monthly_volume >= discount.volume:
            reduction = discount.reduction_rate
    return to_rate(min(reduction, config.volume_discount_cap))


def quote_commission(
    room_fee: Decimal,
    monthly_volume: Decimal,
    config: FinanceConfig,
) -> CommissionQuote:
    """
    Commission the platform keeps out of a room fee.

    Raises:
        InvalidAmount: room_fee is not positive
        ConfigurationMissing: no tier covers the room fee
    """
    room_fee = to_money(room_fee)
    if room_fee <= 0:
        raise InvalidAmount(
            "Room fee must be positive",
            details={"room_fee": str(room_fee)},
        )

    tier = find_commission_tier(room_fee, config)
    reduction = volume_reduction_for(max(to_money(monthly_volume), ZERO), config)
    effective = to_rate(min(max(tier.rate - reduction, ZERO), ONE))
    commission = to_money(room_fee * effective)

    return CommissionQuote(
        base_rate=tier.rate,
        volume_reduction=reduction,
        effective_rate=effective,
        commission_amount=commission,
        operator_room_payout=room_fee - commission,
    )


def build_monthly_volume_progress(
    monthly_volume: Decimal, config: FinanceConfig
) -> VolumeProgress:
    current = max(to_money(monthly_volume), ZERO)
    upcoming = [d for d in sorted(config.volume_discounts, key=lambda d: d.volume) if d.volume > current]
    if not upcoming:
        return VolumeProgress(current, None, None)
    return VolumeProgress(current, upcoming[0].volume, upcoming[0].reduction_rate)


def quote_booking(
    *,
    nightly_rate: Decimal,
    nights: int,
    cleaning_fee: Decimal = ZERO,
    security_deposit: Decimal = ZERO,
    platform_fee: Decimal = ZERO,
    monthly_volume: Decimal = ZERO,
    processing_mode: str = ProcessingMode.LOCAL,
    config: FinanceConfig,
) -> BookingQuote:
    """
    Price a stay.

    The guest pays room + cleaning + deposit + service fee (+ any platform
    surcharge). Commission comes out of the room fee. The processing fee is
    absorbed by the platform and only recorded.

    Raises:
        InvalidAmount: negative fees, fewer than one night, or a zero room fee
        ConfigurationMissing: no tier covers the room fee
    """
    if nights < 1:
        raise InvalidAmount("A stay must be at least one night", details={"nights": nights})

    nightly_rate = to_money(nightly_rate)
    cleaning_fee = to_money(cleaning_fee)
    security_deposit = to_money(security_deposit)
    platform_fee = to_money(platform_fee)
    for name, value in (
        ("cleaning_fee", cleaning_fee),
        ("security_deposit", security_deposit),
        ("platform_fee", platform_fee),
    ):
        if value < 0:
            raise InvalidAmount(f"{name} cannot be negative", details={name: str(value)})

    room_fee = to_money(nightly_rate * nights)
    commission = quote_commission(room_fee, monthly_volume, config)

    chargeable = room_fee + cleaning_fee
    service = compute_fee_component(chargeable, config.platform_service_fee)
    processing_component = (
        config.processing_international
        if processing_mode == ProcessingMode.INTERNATIONAL
        else config.processing_local
    )
    processing = compute_fee_component(chargeable, processing_component)

    total = room_fee + cleaning_fee + security_deposit + service.total + platform_fee

    return BookingQuote(
        nights=nights,
        nightly_rate=nightly_rate,
        room_fee=room_fee,
        cleaning_fee=cleaning_fee,
        security_deposit=security_deposit,
        service_fee=service.total,
        platform_fee=platform_fee,
        processing_fee=processing.total,
        processing_mode=str(processing_mode),
        total_payable=to_money(total),
        commission=commission,
        volume_progress=build_monthly_volume_progress(monthly_volume, config),
        service_fee_cap_applied=service.cap_applied,
        processing_fee_cap_applied=processing.cap_applied,
        config_version=config.version,
    )


@dataclass(frozen=True)
class WithdrawalFee:
    requested_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal
    cap_applied: bool
    minimum_withdrawal: Decimal


def compute_withdrawal_fee(amount: Decimal, config: FinanceConfig) -> WithdrawalFee:
    """Fee = min(amount × percent, cap); net = amount − fee."""
    requested = max(to_money(amount), ZERO)
    schedule = config.withdrawal_fee
    raw_fee = requested * schedule.percent
    fee = to_money(min(raw_fee, schedule.cap))
    return WithdrawalFee(
        requested_amount=requested,
        fee_amount=fee,
        net_amount=requested - fee,
        cap_applied=raw_fee > schedule.cap,
        minimum_withdrawal=schedule.minimum_withdrawal,
    )


def compute_commission_reversal(refunded_room_fee: Decimal, effective_rate: Decimal) -> Decimal:
    """Commission attributable to a refunded slice of the room fee."""
    rate = min(max(Decimal(effective_rate), ZERO), ONE)
    return to_money(max(to_money(refunded_room_fee), ZERO) * rate)


def split_room_fee(amount: Decimal, effective_rate: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split a room fee amount into (operator, platform) at the snapshot rate.

    The two parts always sum to ``amount``.
    """
    amount = to_money(amount)
    platform = compute_commission_reversal(amount, effective_rate)
    return amount - platform, platform


@dataclass(frozen=True)
class CancellationRefund:
    """How a cancelled booking's escrow is divided."""

    tier: str
    hours_until_check_in: Decimal
    guest_room_refund: Decimal
    operator_room_portion: Decimal
    platform_room_portion: Decimal
    deposit_refund: Decimal

    @property
    def allowed(self) -> bool:
        return self.tier != CancellationTier.NONE

    @property
    def guest_total(self) -> Decimal:
        return self.guest_room_refund + self.deposit_refund


def cancellation_tier(hours_until_check_in: Decimal, policy: CancellationPolicy) -> str:
    if hours_until_check_in >= policy.min_notice_hours:
        return CancellationTier.EARLY
    return CancellationTier.NONE


def compute_cancellation_refund(
    room_fee: Decimal,
    security_deposit: Decimal,
    hours_until_check_in: Decimal,
    policy: CancellationPolicy,
) -> CancellationRefund:
    """
    Divide the escrowed room fee and deposit for a guest cancellation.

    Inside the notice period nothing moves (tier NONE). Otherwise the guest
    gets ``guest_rate`` of the room fee plus the whole deposit, the operator
    ``operator_rate`` and the platform the remainder, so the three room fee
    portions always sum to the room fee. Cleaning and service fees are
    never part of the refund.
    """
    room_fee = to_money(room_fee)
    security_deposit = to_money(security_deposit)
    raw_hours = Decimal(str(hours_until_check_in))
    tier = cancellation_tier(raw_hours, policy)
    hours = raw_hours.quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    if tier == CancellationTier.NONE:
        return CancellationRefund(tier, hours, ZERO, ZERO, ZERO, ZERO)

    guest = to_money(room_fee * policy.guest_rate)
    operator = to_money(room_fee * policy.operator_rate)
    return CancellationRefund(
        tier=tier,
        hours_until_check_in=hours,
        guest_room_refund=guest,
        operator_room_portion=operator,
        platform_room_portion=room_fee - guest - operator,
        deposit_refund=security_deposit,
    )
