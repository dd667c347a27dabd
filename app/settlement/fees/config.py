"""
Finance configuration: commission tiers, volume discounts, fee schedules and
the cancellation refund split.

The configuration is assembled from versioned PlatformSetting rows (the
highest active version of each key wins) layered over built-in defaults.
Every stored value is validated; an invalid schedule either raises
ConfigurationError (strict mode) or falls back to the defaults with an
error log, depending on ``settings.FINANCE_CONFIG_STRICT``.

Usage:
    from settlement.fees.config import load_finance_config

    config = load_finance_config()
    config.commission_tiers[0].rate  # Decimal("0.100000")
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.conf import settings

from core.exceptions import ConfigurationError
from settlement.ledger.types import to_money, to_rate

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)

FINANCE_CONFIG_VERSION = "v1"


class FinanceSettingKey:
    COMMISSION_TIERS = "finance.commission.tiers.v1"
    MONTHLY_DISCOUNTS = "finance.commission.monthly_discounts.v1"
    MONTHLY_DISCOUNT_CAP = "finance.commission.monthly_discount_cap.v1"
    PLATFORM_SERVICE_FEE = "finance.service_fee.platform.v1"
    PROCESSING_LOCAL = "finance.processing_fee.local.v1"
    PROCESSING_INTERNATIONAL = "finance.processing_fee.international.v1"
    WITHDRAWAL_FEE = "finance.withdrawal_fee.v1"
    CANCELLATION_REFUND = "finance.cancellation_refund.v1"

    ALL = (
        COMMISSION_TIERS,
        MONTHLY_DISCOUNTS,
        MONTHLY_DISCOUNT_CAP,
        PLATFORM_SERVICE_FEE,
        PROCESSING_LOCAL,
        PROCESSING_INTERNATIONAL,
        WITHDRAWAL_FEE,
        CANCELLATION_REFUND,
    )


MAX_TIER_RATE = Decimal("0.25")
MAX_DISCOUNT_CAP = Decimal("0.05")


# =============================================================================
# Configuration Types
# =============================================================================


@dataclass(frozen=True)
class CommissionTier:
    """Commission rate for room fees in [min_amount, max_amount]; open-ended when max is None."""

    min_amount: Decimal
    max_amount: Decimal | None
    rate: Decimal


@dataclass(frozen=True)
class VolumeDiscount:
    """Rate reduction once the operator's monthly volume reaches ``volume``."""

    volume: Decimal
    reduction_rate: Decimal


@dataclass(frozen=True)
class FeeComponent:
    """
    Percentage + fixed fee with an optional cap on the variable part.

    The variable part is capped at ``cap_variable`` once the subtotal reaches
    ``cap_trigger`` (or always, when no trigger is set). ``no_cap`` disables
    capping entirely.
    """

    percent: Decimal
    fixed: Decimal
    cap_variable: Decimal | None = None
    cap_trigger: Decimal | None = None
    no_cap: bool = False


@dataclass(frozen=True)
class WithdrawalFeeSchedule:
    percent: Decimal
    cap: Decimal
    minimum_withdrawal: Decimal


@dataclass(frozen=True)
class CancellationPolicy:
    """
    Split of the escrowed room fee when a guest cancels early enough.

    Cancellations at least ``min_notice_hours`` before check-in refund
    ``guest_rate`` of the room fee and the whole deposit; the operator and
    platform keep their rates of the room fee. Later cancellations are refused.
    """

    min_notice_hours: int
    guest_rate: Decimal
    operator_rate: Decimal
    platform_rate: Decimal


@dataclass(frozen=True)
class FinanceConfig:
    version: str
    commission_tiers: tuple[CommissionTier, ...]
    volume_discounts: tuple[VolumeDiscount, ...]
    volume_discount_cap: Decimal
    platform_service_fee: FeeComponent
    processing_local: FeeComponent
    processing_international: FeeComponent
    withdrawal_fee: WithdrawalFeeSchedule
    cancellation: CancellationPolicy

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe representation stored alongside priced bookings."""
        return jsonable(asdict(self))


DEFAULT_FINANCE_CONFIG = FinanceConfig(
    version=FINANCE_CONFIG_VERSION,
    commission_tiers=(
        CommissionTier(to_money(0), to_money(500000), to_rate("0.10")),
        CommissionTier(to_money(500001), to_money(2000000), to_rate("0.07")),
        CommissionTier(to_money(2000001), None, to_rate("0.05")),
    ),
    volume_discounts=(
        VolumeDiscount(to_money(5000000), to_rate("0.005")),
        VolumeDiscount(to_money(10000000), to_rate("0.01")),
        VolumeDiscount(to_money(20000000), to_rate("0.015")),
    ),
    volume_discount_cap=to_rate("0.02"),
    platform_service_fee=FeeComponent(
        percent=to_rate("0.02"),
        fixed=to_money(0),
        cap_variable=to_money(2500),
        cap_trigger=to_money(125000),
    ),
    processing_local=FeeComponent(
        percent=to_rate("0.015"),
        fixed=to_money(100),
        cap_variable=to_money(2000),
        cap_trigger=to_money(133333),
    ),
    processing_international=FeeComponent(
        percent=to_rate("0.039"),
        fixed=to_money(100),
        no_cap=True,
    ),
    withdrawal_fee=WithdrawalFeeSchedule(
        percent=to_rate("0.003"),
        cap=to_money(3000),
        minimum_withdrawal=to_money(1000),
    ),
    cancellation=CancellationPolicy(
        min_notice_hours=24,
        guest_rate=to_rate("0.90"),
        operator_rate=to_rate("0.07"),
        platform_rate=to_rate("0.03"),
    ),
)


def jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


# =============================================================================
# Parsing
# =============================================================================


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def _parse_tiers(raw: Any) -> list[CommissionTier] | None:
    if not isinstance(raw, list) or not raw:
        return None
    tiers = []
    for entry in raw:
        if not isinstance(entry, dict):
            return None
        min_amount = _decimal_or_none(entry.get("min"))
        rate = _decimal_or_none(entry.get("rate"))
        max_raw = entry.get("max")
        max_amount = None if max_raw is None else _decimal_or_none(max_raw)
        if min_amount is None or rate is None or (max_raw is not None and max_amount is None):
            return None
        tiers.append(
            CommissionTier(
                to_money(min_amount),
                None if max_amount is None else to_money(max_amount),
                to_rate(rate),
            )
        )
    return sorted(tiers, key=lambda t: t.min_amount)


def _parse_discounts(raw: Any) -> list[VolumeDiscount] | None:
    if not isinstance(raw, list) or not raw:
        return None
    discounts = []
    for entry in raw:
        if not isinstance(entry, dict):
            return None
        volume = _decimal_or_none(entry.get("volume"))
        reduction = _decimal_or_none(entry.get("reduction_rate"))
        if volume is None or reduction is None:
            return None
        discounts.append(VolumeDiscount(to_money(volume), to_rate(reduction)))
    return discounts


def _parse_fee_component(raw: Any) -> FeeComponent | None:
    if not isinstance(raw, dict):
        return None
    percent = _decimal_or_none(raw.get("percent"))
    fixed = _decimal_or_none(raw.get("fixed"))
    if percent is None or fixed is None:
        return None
    cap_variable = _decimal_or_none(raw.get("cap_variable"))
    cap_trigger = _decimal_or_none(raw.get("cap_trigger"))
    return FeeComponent(
        percent=to_rate(percent),
        fixed=to_money(fixed),
        cap_variable=None if cap_variable is None else to_money(cap_variable),
        cap_trigger=None if cap_trigger is None else to_money(cap_trigger),
        no_cap=raw.get("no_cap") is True,
    )


def _parse_withdrawal_fee(raw: Any) -> WithdrawalFeeSchedule | None:
    if not isinstance(raw, dict):
        return None
    percent = _decimal_or_none(raw.get("percent"))
    cap = _decimal_or_none(raw.get("cap"))
    minimum = _decimal_or_none(raw.get("minimum_withdrawal"))
    if percent is None or cap is None or minimum is None:
        return None
    return WithdrawalFeeSchedule(to_rate(percent), to_money(cap), to_money(minimum))


def _parse_cancellation(raw: Any) -> CancellationPolicy | None:
    if not isinstance(raw, dict):
        return None
    hours = raw.get("min_notice_hours")
    if not isinstance(hours, int) or isinstance(hours, bool):
        return None
    rates = [_decimal_or_none(raw.get(key)) for key in ("guest_rate", "operator_rate", "platform_rate")]
    if any(rate is None for rate in rates):
        return None
    return CancellationPolicy(hours, *(to_rate(rate) for rate in rates))


# =============================================================================
# Validation
# =============================================================================


def validate_commission_tiers(tiers: list[CommissionTier] | tuple) -> list[str]:
    if not tiers:
        return ["Commission tiers must be a non-empty list"]

    errors = []
    ordered = sorted(tiers, key=lambda t: t.min_amount)
    if ordered[0].min_amount != 0:
        errors.append("Commission tiers must start at 0")

    for index, tier in enumerate(ordered):
        if tier.min_amount < 0:
            errors.append("Commission tier min cannot be negative")
        if tier.max_amount is not None and tier.max_amount < tier.min_amount:
            errors.append("Commission tier max must be >= min")
        if tier.rate < 0 or tier.rate > MAX_TIER_RATE:
            errors.append("Commission tier rate must be between 0 and 0.25")
        if index > 0:
            previous = ordered[index - 1]
            if previous.max_amount is None:
                errors.append("Only the final commission tier can be open-ended")
            elif tier.min_amount != previous.max_amount + 1:
                errors.append("Commission tiers must be contiguous and non-overlapping")

    if ordered[-1].max_amount is not None:
        errors.append("Final commission tier must be open-ended")
    return errors


def validate_volume_discounts(discounts: list[VolumeDiscount] | tuple) -> list[str]:
    if not discounts:
        return ["Monthly discounts must be a non-empty list"]

    errors = []
    previous_volume = None
    for entry in sorted(discounts, key=lambda d: d.volume):
        if previous_volume is not None and entry.volume <= previous_volume:
            errors.append("Monthly discounts must have strictly increasing volume")
            break
        previous_volume = entry.volume
        if entry.volume <= 0:
            errors.append("Monthly discount volume must be positive")
        if entry.reduction_rate < 0 or entry.reduction_rate > MAX_TIER_RATE:
            errors.append("Monthly discount rate must be between 0 and 0.25")
    return errors


def validate_fee_component(component: FeeComponent, label: str) -> list[str]:
    errors = []
    if component.percent < 0 or component.percent > MAX_TIER_RATE:
        errors.append(f"{label} percent must be between 0 and 0.25")
    if component.fixed < 0:
        errors.append(f"{label} fixed fee cannot be negative")
    if not component.no_cap:
        if component.cap_variable is not None and component.cap_variable < 0:
            errors.append(f"{label} cap_variable cannot be negative")
        if component.cap_trigger is not None and component.cap_trigger <= 0:
            errors.append(f"{label} cap_trigger must be positive")
    return errors


def validate_withdrawal_fee(schedule: WithdrawalFeeSchedule) -> list[str]:
    errors = []
    if schedule.percent < 0 or schedule.percent > MAX_TIER_RATE:
        errors.append("Withdrawal fee percent must be between 0 and 0.25")
    if schedule.cap <= 0:
        errors.append("Withdrawal fee cap must be positive")
    if schedule.minimum_withdrawal <= 0:
        errors.append("Minimum withdrawal must be positive")
    return errors


def validate_cancellation(policy: CancellationPolicy) -> list[str]:
    errors = []
    if policy.min_notice_hours < 0:
        errors.append("Cancellation notice hours cannot be negative")
    rates = (policy.guest_rate, policy.operator_rate, policy.platform_rate)
    if any(rate < 0 or rate > 1 for rate in rates):
        errors.append("Cancellation refund rates must be between 0 and 1")
    if sum(rates) != 1:
        errors.append("Cancellation refund rates must sum to 1")
    return errors


def validate_finance_config(config: FinanceConfig) -> list[str]:
    errors = []
    errors.extend(validate_commission_tiers(config.commission_tiers))
    errors.extend(validate_volume_discounts(config.volume_discounts))
    if config.volume_discount_cap < 0 or config.volume_discount_cap > MAX_DISCOUNT_CAP:
        errors.append("Monthly discount cap must be between 0 and 0.05")
    errors.extend(validate_fee_component(config.platform_service_fee, "Platform service fee"))
    errors.extend(validate_fee_component(config.processing_local, "Local processing fee"))
    errors.extend(
        validate_fee_component(config.processing_international, "International processing fee")
    )
    errors.extend(validate_withdrawal_fee(config.withdrawal_fee))
    errors.extend(validate_cancellation(config.cancellation))
    return errors


# =============================================================================
# Loading
# =============================================================================


def _resolve_finance_config() -> tuple[FinanceConfig, list[str]]:
    """Build the config from stored settings; returns it with any validation errors."""
    from settlement.models import PlatformSetting

    stored = PlatformSetting.latest_values(FinanceSettingKey.ALL)
    defaults = DEFAULT_FINANCE_CONFIG
    errors: list[str] = []

    def pick(key, parser, default):
        if key not in stored:
            return default
        parsed = parser(stored[key])
        if parsed is None:
            errors.append(f"{key}: malformed value")
            return default
        return parsed

    cap_raw = stored.get(FinanceSettingKey.MONTHLY_DISCOUNT_CAP)
    discount_cap = defaults.volume_discount_cap
    if cap_raw is not None:
        parsed_cap = _decimal_or_none(cap_raw)
        if parsed_cap is None:
            errors.append(f"{FinanceSettingKey.MONTHLY_DISCOUNT_CAP}: malformed value")
        else:
            discount_cap = to_rate(parsed_cap)

    config = FinanceConfig(
        version=FINANCE_CONFIG_VERSION,
        commission_tiers=tuple(
            pick(FinanceSettingKey.COMMISSION_TIERS, _parse_tiers, defaults.commission_tiers)
        ),
        volume_discounts=tuple(
            pick(FinanceSettingKey.MONTHLY_DISCOUNTS, _parse_discounts, defaults.volume_discounts)
        ),
        volume_discount_cap=discount_cap,
        platform_service_fee=pick(
            FinanceSettingKey.PLATFORM_SERVICE_FEE,
            _parse_fee_component,
            defaults.platform_service_fee,
        ),
        processing_local=pick(
            FinanceSettingKey.PROCESSING_LOCAL,
            _parse_fee_component,
            defaults.processing_local,
        ),
        processing_international=pick(
            FinanceSettingKey.PROCESSING_INTERNATIONAL,
            _parse_fee_component,
            defaults.processing_international,
        ),
        withdrawal_fee=pick(
            FinanceSettingKey.WITHDRAWAL_FEE,
            _parse_withdrawal_fee,
            defaults.withdrawal_fee,
        ),
        cancellation=pick(
            FinanceSettingKey.CANCELLATION_REFUND,
            _parse_cancellation,
            defaults.cancellation,
        ),
    )
    errors.extend(validate_finance_config(config))
    return config, errors


def load_finance_config() -> FinanceConfig:
    """
    Load the active finance configuration.

    Raises:
        ConfigurationError: Stored configuration is invalid and
            FINANCE_CONFIG_STRICT is enabled
    """
    config, errors = _resolve_finance_config()
    if not errors:
        return config

    strict = settings.FINANCE_CONFIG_STRICT
    logger.error(
        "Finance config invalid",
        extra={"strict_mode": strict, "validation_errors": errors},
    )
    if strict:
        raise ConfigurationError(
            f"Finance config invalid: {' | '.join(errors)}",
            error_code="FINANCE_CONFIG_INVALID",
            details={"errors": errors},
        )
    return DEFAULT_FINANCE_CONFIG


def finance_config_health() -> dict[str, Any]:
    """
    Report whether pricing can run on the stored configuration.

    Returns:
        Dict with ``state`` ("valid", "defaults" or "invalid"), ``strict_mode``
        and ``errors``
    """
    _, errors = _resolve_finance_config()
    strict = settings.FINANCE_CONFIG_STRICT
    if not errors:
        state = "valid"
    elif strict:
        state = "invalid"
    else:
        state = "defaults"
    return {"state": state, "strict_mode": strict, "errors": errors}
