"""
Operator withdrawals: cashing out wallet balance through the gateway.

Two-phase pattern:
1. request_withdrawal: debit the gross amount, credit the fee to the
   platform and park the net amount in ``balance_pending`` (one transaction)
2. process_withdrawal: call the gateway outside any transaction, then
   complete, schedule a retry, or reverse the debit and fee

Reversals use compensating ledger entries; completed transactions are
never edited.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService, ServiceResult
from notifications.models import NotificationEvent
from notifications.services import NotificationDispatcher
from settlement.exceptions import InvalidAmount, ProviderError
from settlement.fees import compute_withdrawal_fee, load_finance_config
from settlement.gateways import TransferDestination, available_gateways, backoff_delay, get_gateway
from settlement.ledger import (
    InsufficientBalance,
    PostingParams,
    TransactionSource,
    TransactionType,
    WalletOwnerType,
    WalletService,
)
from settlement.ledger.types import to_money
from settlement.models import WithdrawalRequest
from settlement.state_machines import WithdrawalStatus


class WithdrawalService(BaseService):
    """
    Methods:
        request_withdrawal: Reserve funds for a cash-out
        process_withdrawal: Execute the gateway transfer for a request
    """

    @staticmethod
    def _lock(withdrawal_id: uuid.UUID | str) -> WithdrawalRequest:
        try:
            return WithdrawalRequest.objects.select_for_update().get(id=withdrawal_id)
        except WithdrawalRequest.DoesNotExist:
            raise NotFoundError(
                f"Withdrawal {withdrawal_id} not found",
                error_code="WITHDRAWAL_NOT_FOUND",
                details={"withdrawal_id": str(withdrawal_id)},
            )

    @classmethod
    def request_withdrawal(
        cls,
        operator_id: uuid.UUID | str,
        amount: Decimal,
        destination_account: str,
        gateway: str | None = None,
        currency: str | None = None,
    ) -> WithdrawalRequest:
        """
        Debit an operator wallet for a cash-out.

        Raises:
            InvalidAmount: Below the minimum withdrawal
            InsufficientBalance: Amount exceeds the available balance
            WalletNotFound: Operator has no wallet
            ValidationError: Missing destination or unknown gateway
        """
        amount = to_money(amount)
        if not destination_account:
            raise ValidationError(
                "A destination account is required",
                error_code="DESTINATION_REQUIRED",
            )
        gateway = gateway or settings.DEFAULT_PAYMENT_GATEWAY
        if gateway not in available_gateways():
            raise ValidationError(
                f"Unknown payment gateway '{gateway}'",
                error_code="UNKNOWN_GATEWAY",
                details={"gateway": gateway},
            )

        fee = compute_withdrawal_fee(amount, load_finance_config())
        if amount < fee.minimum_withdrawal:
            raise InvalidAmount(
                f"Minimum withdrawal is {fee.minimum_withdrawal}",
                error_code="BELOW_MINIMUM_WITHDRAWAL",
                details={"amount": str(amount), "minimum_withdrawal": str(fee.minimum_withdrawal)},
            )

        wallet = WalletService.get_wallet(
            WalletOwnerType.OPERATOR, uuid.UUID(str(operator_id)), currency
        )
        if amount > wallet.balance_available:
            raise InsufficientBalance(
                wallet_id=wallet.id,
                required=amount,
                available=wallet.balance_available,
            )

        withdrawal_id = uuid.uuid4()
        reference = f"withdrawal:{withdrawal_id}"

        with cls.atomic():
            withdrawal = WithdrawalRequest.objects.create(
                id=withdrawal_id,
                wallet=wallet,
                operator_id=operator_id,
                amount=amount,
                fee_amount=fee.fee_amount,
                net_amount=fee.net_amount,
                currency=wallet.currency,
                gateway=gateway,
                destination_account=destination_account,
                reference=reference,
            )

            postings = [
                (
                    TransactionType.DEBIT,
                    PostingParams(
                        wallet_id=wallet.id,
                        amount=amount,
                        source=TransactionSource.WITHDRAWAL,
                        reference=f"{reference}:debit",
                        description="Withdrawal",
                        metadata={"withdrawal_id": str(withdrawal_id)},
                    ),
                ),
            ]
            if fee.fee_amount > 0:
                postings.append((
                    TransactionType.CREDIT,
                    PostingParams(
                        wallet_id=WalletService.platform_wallet(wallet.currency).id,
                        amount=fee.fee_amount,
                        source=TransactionSource.WITHDRAWAL_FEE,
                        reference=f"{reference}:fee",
                        description="Withdrawal fee",
                        metadata={"withdrawal_id": str(withdrawal_id)},
                    ),
                ))
            WalletService.post(postings)
            if fee.net_amount > 0:
                WalletService.adjust_pending(wallet.id, fee.net_amount)

            transaction.on_commit(lambda: cls._queue(withdrawal_id))

        cls.get_logger().info(
            "Withdrawal requested",
            extra={
                "withdrawal_id": str(withdrawal_id),
                "operator_id": str(operator_id),
                "amount": str(amount),
                "fee_amount": str(fee.fee_amount),
                "net_amount": str(fee.net_amount),
            },
        )
        return withdrawal

    @staticmethod
    def _queue(withdrawal_id: uuid.UUID) -> None:
        from settlement.workers.withdrawal_executor import process_withdrawal

        process_withdrawal.delay(str(withdrawal_id))

    @classmethod
    def process_withdrawal(cls, withdrawal_id: uuid.UUID | str) -> ServiceResult[WithdrawalRequest]:
        """
        Send the net amount to the operator's account.

        Returns ServiceResult.failure when the transfer failed; the request
        is either scheduled for retry or reversed.
        """
        with cls.atomic():
            withdrawal = cls._lock(withdrawal_id)
            if withdrawal.status in (WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED):
                return ServiceResult.ok(withdrawal)
            if withdrawal.next_attempt_at and withdrawal.next_attempt_at > timezone.now():
                return ServiceResult.failure("Waiting for retry backoff", error_code="BACKOFF")
            if withdrawal.status == WithdrawalStatus.PENDING:
                withdrawal.start_processing()
            withdrawal.attempts += 1
            withdrawal.save()

        try:
            result = get_gateway(withdrawal.gateway).transfer(
                TransferDestination.account(withdrawal.destination_account),
                withdrawal.net_amount,
                reference=withdrawal.reference,
                currency=withdrawal.currency,
            )
        except ProviderError as e:
            return cls._handle_failure(withdrawal.id, e)

        with cls.atomic():
            withdrawal = cls._lock(withdrawal.id)
            if withdrawal.status != WithdrawalStatus.PROCESSING:
                return ServiceResult.ok(withdrawal)
            withdrawal.complete(provider_reference=result.provider_reference)
            withdrawal.next_attempt_at = None
            withdrawal.save()
            if withdrawal.net_amount > 0:
                WalletService.adjust_pending(withdrawal.wallet_id, -withdrawal.net_amount)

            NotificationDispatcher.notify(
                recipient_id=withdrawal.operator_id,
                event_type=NotificationEvent.WITHDRAWAL_COMPLETED,
                context={"amount": withdrawal.net_amount, "currency": withdrawal.currency},
                idempotency_key=f"{withdrawal.reference}:completed",
            )

        cls.get_logger().info(
            "Withdrawal completed",
            extra={
                "withdrawal_id": str(withdrawal.id),
                "provider_reference": result.provider_reference,
                "attempts": withdrawal.attempts,
            },
        )
        return ServiceResult.ok(withdrawal)

    @classmethod
    def _handle_failure(cls, withdrawal_id: uuid.UUID, error: ProviderError) -> ServiceResult[WithdrawalRequest]:
        with cls.atomic():
            withdrawal = cls._lock(withdrawal_id)
            exhausted = withdrawal.attempts >= settings.WITHDRAWAL_MAX_ATTEMPTS

            if error.is_retryable and not exhausted:
                delay = backoff_delay(
                    withdrawal.attempts,
                    base=settings.SETTLEMENT_RETRY_BASE_SECONDS,
                    max_delay=settings.SETTLEMENT_RETRY_MAX_SECONDS,
                )
                withdrawal.next_attempt_at = timezone.now() + timedelta(seconds=delay)
                withdrawal.failure_reason = error.message
                withdrawal.save()
                cls.get_logger().warning(
                    "Withdrawal transfer failed, will retry",
                    extra={
                        "withdrawal_id": str(withdrawal.id),
                        "attempts": withdrawal.attempts,
                        "error_code": error.error_code,
                    },
                )
                return ServiceResult.failure(error.message, error_code=error.error_code)

            cls._reverse(withdrawal, error.message)

        cls.get_logger().error(
            "Withdrawal failed and was reversed",
            extra={
                "withdrawal_id": str(withdrawal_id),
                "attempts": withdrawal.attempts,
                "error_code": error.error_code,
                "retryable": error.is_retryable,
            },
        )
        return ServiceResult.failure(error.message, error_code=error.error_code)

    @classmethod
    def _reverse(cls, withdrawal: WithdrawalRequest, reason: str) -> None:
        """Fail the request and return the gross amount to the operator."""
        withdrawal.fail(reason=reason)
        withdrawal.next_attempt_at = None
        withdrawal.save()

        postings = [
            (
                TransactionType.CREDIT,
                PostingParams(
                    wallet_id=withdrawal.wallet_id,
                    amount=withdrawal.amount,
                    source=TransactionSource.WITHDRAWAL_REVERSAL,
                    reference=f"{withdrawal.reference}:reversal",
                    description="Withdrawal reversed",
                    metadata={"withdrawal_id": str(withdrawal.id)},
                ),
            ),
        ]
        if withdrawal.fee_amount > 0:
            postings.append((
                TransactionType.DEBIT,
                PostingParams(
                    wallet_id=WalletService.platform_wallet(withdrawal.currency).id,
                    amount=withdrawal.fee_amount,
                    source=TransactionSource.WITHDRAWAL_FEE_REVERSAL,
                    reference=f"{withdrawal.reference}:fee_reversal",
                    description="Withdrawal fee reversed",
                    metadata={"withdrawal_id": str(withdrawal.id)},
                ),
            ))
        WalletService.post(postings)
        if withdrawal.net_amount > 0:
            WalletService.adjust_pending(withdrawal.wallet_id, -withdrawal.net_amount)

        NotificationDispatcher.notify(
            recipient_id=withdrawal.operator_id,
            event_type=NotificationEvent.WITHDRAWAL_FAILED,
            context={"amount": withdrawal.amount, "currency": withdrawal.currency},
            idempotency_key=f"{withdrawal.reference}:failed",
        )
