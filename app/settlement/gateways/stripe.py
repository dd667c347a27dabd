"""
Stripe gateway over the stripe SDK.

verify() reads a PaymentIntent; transfer() issues a Refund against the
guest's PaymentIntent or a Transfer to a connected account. The transfer
reference is sent as Stripe's idempotency key.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: SDK-level network retries (default: 2)
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import TYPE_CHECKING

import stripe
from django.conf import settings

from settlement.exceptions import StripeGatewayError
from settlement.gateways.base import TransferDestination, TransferResult, VerificationResult
from settlement.ledger.types import from_minor_units, to_minor_units

if TYPE_CHECKING:
    from typing import Any


class StripeGateway:
    name = "stripe"

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = settings.STRIPE_MAX_RETRIES
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.STRIPE_API_TIMEOUT_SECONDS
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def verify(self, reference: str) -> VerificationResult:
        self._configure_stripe()
        log_context = {"operation": "verify", "payment_intent_id": reference}
        start_time = time.time()

        try:
            intent = stripe.PaymentIntent.retrieve(reference)
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        self.get_logger().info(
            "Stripe operation completed",
            extra={**log_context, "status": intent.status},
        )
        return VerificationResult(
            success=intent.status == "succeeded",
            amount=from_minor_units(intent.amount_received or 0),
            currency=(intent.currency or "").upper(),
            provider_transaction_id=intent.id,
            raw_response=intent.to_dict(),
        )

    def transfer(
        self,
        destination: TransferDestination,
        amount: Decimal,
        reference: str,
        currency: str,
    ) -> TransferResult:
        self._configure_stripe()
        log_context = {
            "operation": f"transfer:{destination.kind}",
            "amount": str(amount),
            "idempotency_key": reference,
        }
        start_time = time.time()

        try:
            if destination.kind == TransferDestination.REFUND:
                result = stripe.Refund.create(
                    payment_intent=destination.identifier,
                    amount=to_minor_units(amount),
                    metadata={"reference": reference},
                    idempotency_key=reference,
                )
                status = result.status
            else:
                result = stripe.Transfer.create(
                    amount=to_minor_units(amount),
                    currency=currency.lower(),
                    destination=destination.identifier,
                    metadata={"reference": reference},
                    idempotency_key=reference,
                )
                status = "succeeded"
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        self.get_logger().info(
            "Stripe operation completed",
            extra={
                **log_context,
                "provider_reference": result.id,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return TransferResult(
            reference=reference,
            status=status or "pending",
            provider_reference=result.id,
            raw_response=result.to_dict(),
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe SDK exceptions into StripeGatewayError.

        Rate limits, connection failures and 5xx API errors are retryable;
        everything else needs a human.
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeGatewayError(str(error), provider_code=error.code) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeGatewayError(
                "Stripe rate limit exceeded. Please retry.",
                is_retryable=True,
                provider_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise StripeGatewayError(
                "Could not connect to Stripe. Please retry.",
                is_retryable=True,
                provider_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeGatewayError(
                "Stripe authentication failed",
                provider_code="authentication_error",
            ) from error

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeGatewayError(
                "Stripe service error. Please retry.",
                is_retryable=True,
                provider_code="api_error",
            ) from error

        if isinstance(error, stripe.StripeError):
            logger.error(
                "Stripe rejected the operation",
                extra={**log_context, "stripe_code": getattr(error, "code", None)},
            )
            raise StripeGatewayError(
                str(error),
                provider_code=getattr(error, "code", None) or "stripe_error",
            ) from error
