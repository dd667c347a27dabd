"""
Fee & commission calculator.

- config: FinanceConfig loading and validation from PlatformSetting rows
- calculator: pure pricing functions (commission, service/processing fees,
  withdrawal fee, room fee splits, cancellation refunds)
- volume: operator monthly room-fee volume for discount tiers

Usage:
    from settlement.fees import load_finance_config, quote_booking

    quote = quote_booking(
        nightly_rate=Decimal("25000"),
        nights=2,
        cleaning_fee=Decimal("5000"),
        security_deposit=Decimal("10000"),
        config=load_finance_config(),
    )
"""

from settlement.fees.calculator import (
    BookingQuote,
    CancellationRefund,
    CommissionQuote,
    compute_cancellation_refund,
    compute_commission_reversal,
    compute_fee_component,
    compute_withdrawal_fee,
    quote_booking,
    quote_commission,
    split_room_fee,
)
from settlement.fees.config import (
    DEFAULT_FINANCE_CONFIG,
    CancellationPolicy,
    FinanceConfig,
    finance_config_health,
    load_finance_config,
)
from settlement.fees.volume import monthly_room_fee_volume

__all__ = [
    "BookingQuote",
    "CancellationPolicy",
    "CancellationRefund",
    "CommissionQuote",
    "DEFAULT_FINANCE_CONFIG",
    "FinanceConfig",
    "compute_cancellation_refund",
    "compute_commission_reversal",
    "compute_fee_component",
    "compute_withdrawal_fee",
    "finance_config_health",
    "load_finance_config",
    "monthly_room_fee_volume",
    "quote_booking",
    "quote_commission",
    "split_room_fee",
]
