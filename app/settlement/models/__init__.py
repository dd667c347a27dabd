"""
Settlement models.

Usage:
    from settlement.models import Booking, Payment, Dispute, EscrowEvent
"""

from settlement.ledger.models import Wallet, WalletTransaction
from settlement.models.booking import Booking, Payment
from settlement.models.dispute import Dispute
from settlement.models.escrow_event import EscrowEvent, EscrowState, replay_escrow_events
from settlement.models.job_lock import JobLock
from settlement.models.platform_setting import PlatformSetting
from settlement.models.withdrawal import WithdrawalRequest

__all__ = [
    "Booking",
    "Payment",
    "Dispute",
    "EscrowEvent",
    "EscrowState",
    "replay_escrow_events",
    "JobLock",
    "PlatformSetting",
    "WithdrawalRequest",
    "Wallet",
    "WalletTransaction",
]
