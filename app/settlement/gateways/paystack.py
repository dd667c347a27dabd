"""
Paystack gateway over its HTTP API.

Configuration (via settings):
- PAYSTACK_SECRET_KEY: Secret key sent as a bearer token
- PAYSTACK_BASE_URL: API root (default: https://api.paystack.co)
- PAYSTACK_TIMEOUT_SECONDS: Per-request timeout (default: 15)

Amounts go over the wire in kobo.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import TYPE_CHECKING

import requests
from django.conf import settings

from settlement.exceptions import PaystackError
from settlement.gateways.base import TransferDestination, TransferResult, VerificationResult
from settlement.ledger.types import from_minor_units, to_minor_units

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class PaystackGateway:
    name = "paystack"

    def __init__(self, session: requests.Session | None = None) -> None:
        self.session = session or requests.Session()
        self.base_url = settings.PAYSTACK_BASE_URL.rstrip("/")
        self.timeout = settings.PAYSTACK_TIMEOUT_SECONDS

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        log_context = {"operation": f"{method} {path}"}
        start_time = time.time()

        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.warning(
                "Paystack unreachable",
                extra={**log_context, "error": str(e)},
            )
            raise PaystackError(
                "Could not reach Paystack. Please retry.",
                is_retryable=True,
                provider_code="network_error",
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not body.get("status", False):
            retryable = response.status_code in RETRYABLE_STATUS_CODES
            logger.error(
                "Paystack request failed",
                extra={
                    **log_context,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                    "provider_message": body.get("message"),
                },
            )
            raise PaystackError(
                body.get("message") or f"Paystack returned HTTP {response.status_code}",
                is_retryable=retryable,
                provider_code=str(body.get("code") or response.status_code),
            )

        logger.info(
            "Paystack request completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return body.get("data") or {}

    def verify(self, reference: str) -> VerificationResult:
        data = self._request("GET", f"/transaction/verify/{reference}")
        return VerificationResult(
            success=data.get("status") == "success",
            amount=from_minor_units(int(data.get("amount") or 0)),
            currency=(data.get("currency") or "").upper(),
            provider_transaction_id=str(data.get("id") or ""),
            raw_response=data,
        )

    def transfer(
        self,
        destination: TransferDestination,
        amount: Decimal,
        reference: str,
        currency: str,
    ) -> TransferResult:
        if destination.kind == TransferDestination.REFUND:
            data = self._request(
                "POST",
                "/refund",
                {
                    "transaction": destination.identifier,
                    "amount": to_minor_units(amount),
                    "currency": currency,
                    "merchant_note": reference,
                },
            )
        else:
            data = self._request(
                "POST",
                "/transfer",
                {
                    "source": "balance",
                    "amount": to_minor_units(amount),
                    "recipient": destination.identifier,
                    "reference": _transfer_reference(reference),
                    "currency": currency,
                },
            )
        return TransferResult(
            reference=reference,
            status=str(data.get("status") or "pending"),
            provider_reference=str(data.get("transfer_code") or data.get("id") or ""),
            raw_response=data,
        )


def _transfer_reference(reference: str) -> str:
    # Paystack accepts lowercase letters, digits, "-" and "_" only
    cleaned = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in reference.lower())
    return cleaned[:100]
