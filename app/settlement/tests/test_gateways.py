"""
Tests for payment gateway adapters.

Paystack is exercised through a mocked requests session; Stripe through
patched SDK calls. No network traffic.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests
import stripe

from core.exceptions import ConfigurationError
from settlement.exceptions import PaystackError, StripeGatewayError
from settlement.gateways import TransferDestination, available_gateways, backoff_delay, get_gateway
from settlement.gateways.paystack import PaystackGateway
from settlement.gateways.stripe import StripeGateway


def paystack_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    return response


@pytest.fixture
def paystack_session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def paystack(paystack_session):
    return PaystackGateway(session=paystack_session)


# =============================================================================
# Paystack
# =============================================================================


class TestPaystackVerify:
    def test_successful_charge(self, paystack, paystack_session):
        """Kobo amounts are converted to naira."""
        paystack_session.request.return_value = paystack_response(body={
            "status": True,
            "data": {"status": "success", "amount": 6610000, "currency": "ngn", "id": 98765},
        })

        result = paystack.verify("ref_123")

        assert result.success is True
        assert result.amount == Decimal("66100.00")
        assert result.currency == "NGN"
        assert result.provider_transaction_id == "98765"
        method, url = paystack_session.request.call_args[0]
        assert method == "GET"
        assert url.endswith("/transaction/verify/ref_123")
        headers = paystack_session.request.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer sk_test_paystack"

    def test_abandoned_charge(self, paystack, paystack_session):
        paystack_session.request.return_value = paystack_response(body={
            "status": True,
            "data": {"status": "abandoned", "amount": 6610000, "currency": "NGN", "id": 1},
        })

        assert paystack.verify("ref_123").success is False


class TestPaystackTransfer:
    def test_refund_posts_to_refund_endpoint(self, paystack, paystack_session):
        paystack_session.request.return_value = paystack_response(body={
            "status": True,
            "data": {"status": "pending", "id": 555},
        })

        result = paystack.transfer(
            TransferDestination.refund("98765"), Decimal("25000"), reference="booking:1:room_fee:guest_refund",
            currency="NGN",
        )

        method, url = paystack_session.request.call_args[0]
        payload = paystack_session.request.call_args[1]["json"]
        assert (method, url.rsplit("/", 1)[-1]) == ("POST", "refund")
        assert payload["transaction"] == "98765"
        assert payload["amount"] == 2500000
        assert result.provider_reference == "555"
        assert result.reference == "booking:1:room_fee:guest_refund"

    def test_payout_sanitizes_reference(self, paystack, paystack_session):
        """Paystack rejects ':' in references, so it is replaced."""
        paystack_session.request.return_value = paystack_response(body={
            "status": True,
            "data": {"status": "success", "transfer_code": "TRF_abc"},
        })

        result = paystack.transfer(
            TransferDestination.account("RCP_123"), Decimal("9970"), reference="withdrawal:AB-12", currency="NGN"
        )

        payload = paystack_session.request.call_args[1]["json"]
        assert payload["recipient"] == "RCP_123"
        assert payload["reference"] == "withdrawal-ab-12"
        assert payload["amount"] == 997000
        assert result.provider_reference == "TRF_abc"
        assert result.status == "success"


class TestPaystackErrors:
    @pytest.mark.parametrize("status_code,retryable", [(503, True), (429, True), (400, False), (404, False)])
    def test_http_errors(self, paystack, paystack_session, status_code, retryable):
        paystack_session.request.return_value = paystack_response(
            status_code, {"status": False, "message": "Nope"}
        )

        with pytest.raises(PaystackError) as exc_info:
            paystack.verify("ref_123")

        assert exc_info.value.is_retryable is retryable
        assert exc_info.value.message == "Nope"

    def test_status_false_with_200(self, paystack, paystack_session):
        paystack_session.request.return_value = paystack_response(200, {"status": False, "message": "Invalid key"})

        with pytest.raises(PaystackError) as exc_info:
            paystack.verify("ref_123")

        assert exc_info.value.is_retryable is False

    def test_timeout_is_retryable(self, paystack, paystack_session):
        paystack_session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(PaystackError) as exc_info:
            paystack.verify("ref_123")

        assert exc_info.value.is_retryable is True
        assert exc_info.value.provider_code == "network_error"

    def test_non_json_body(self, paystack, paystack_session):
        response = paystack_response(502)
        response.json.side_effect = ValueError("not json")
        paystack_session.request.return_value = response

        with pytest.raises(PaystackError) as exc_info:
            paystack.verify("ref_123")

        assert "502" in exc_info.value.message
        assert exc_info.value.is_retryable is True

    def test_failure_logged_with_provider_message(self, paystack, paystack_session, mocker):
        """The provider's message is logged under its own key, never LogRecord's ``message``."""
        logger = mocker.patch("settlement.gateways.paystack.logger")
        paystack_session.request.return_value = paystack_response(
            503, {"status": False, "message": "Service unavailable"}
        )

        with pytest.raises(PaystackError):
            paystack.verify("ref_123")

        extra = logger.error.call_args.kwargs["extra"]
        assert extra["provider_message"] == "Service unavailable"
        assert extra["status_code"] == 503
        assert "message" not in extra


# =============================================================================
# Stripe
# =============================================================================


class TestStripeGateway:
    def test_verify(self, mocker):
        intent = MagicMock(id="pi_123", status="succeeded", amount_received=6610000, currency="ngn")
        intent.to_dict.return_value = {"id": "pi_123"}
        retrieve = mocker.patch("stripe.PaymentIntent.retrieve", return_value=intent)

        result = StripeGateway().verify("pi_123")

        retrieve.assert_called_once_with("pi_123")
        assert result.success is True
        assert result.amount == Decimal("66100.00")
        assert result.provider_transaction_id == "pi_123"

    def test_refund_uses_reference_as_idempotency_key(self, mocker):
        refund = MagicMock(id="re_1", status="succeeded")
        refund.to_dict.return_value = {}
        create = mocker.patch("stripe.Refund.create", return_value=refund)

        result = StripeGateway().transfer(
            TransferDestination.refund("pi_123"), Decimal("10000"), reference="booking:1:deposit:guest",
            currency="NGN",
        )

        create.assert_called_once_with(
            payment_intent="pi_123",
            amount=1000000,
            metadata={"reference": "booking:1:deposit:guest"},
            idempotency_key="booking:1:deposit:guest",
        )
        assert result.provider_reference == "re_1"

    def test_payout_to_connected_account(self, mocker):
        transfer = MagicMock(id="tr_1")
        transfer.to_dict.return_value = {}
        create = mocker.patch("stripe.Transfer.create", return_value=transfer)

        result = StripeGateway().transfer(
            TransferDestination.account("acct_1"), Decimal("9970"), reference="withdrawal:1", currency="USD"
        )

        assert create.call_args[1]["destination"] == "acct_1"
        assert create.call_args[1]["currency"] == "usd"
        assert result.status == "succeeded"

    @pytest.mark.parametrize(
        "error,retryable",
        [
            (stripe.RateLimitError("Too many requests"), True),
            (stripe.APIConnectionError("Network down"), True),
            (stripe.APIError("Stripe had a problem"), True),
            (stripe.AuthenticationError("Bad key"), False),
            (stripe.InvalidRequestError("No such payment_intent", "id", code="resource_missing"), False),
        ],
    )
    def test_error_mapping(self, mocker, error, retryable):
        mocker.patch("stripe.PaymentIntent.retrieve", side_effect=error)

        with pytest.raises(StripeGatewayError) as exc_info:
            StripeGateway().verify("pi_123")

        assert exc_info.value.is_retryable is retryable
        assert exc_info.value.__cause__ is error


# =============================================================================
# Registry & Backoff
# =============================================================================


class TestRegistry:
    def test_available(self):
        assert available_gateways() == ["paystack", "stripe"]

    def test_get_gateway_by_name(self):
        assert isinstance(get_gateway("stripe"), StripeGateway)

    def test_default_gateway(self, settings):
        settings.DEFAULT_PAYMENT_GATEWAY = "paystack"

        assert isinstance(get_gateway(), PaystackGateway)

    def test_unknown_gateway(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_gateway("barter")

        assert exc_info.value.error_code == "UNKNOWN_GATEWAY"


class TestBackoffDelay:
    def test_grows_exponentially(self, mocker):
        mocker.patch("settlement.gateways.base.random.uniform", return_value=0)

        assert [backoff_delay(n, base=60) for n in (1, 2, 3)] == [60, 120, 240]

    def test_capped(self, mocker):
        mocker.patch("settlement.gateways.base.random.uniform", return_value=0)

        assert backoff_delay(20, base=60, max_delay=3600) == 3600

    def test_jitter_at_most_quarter(self):
        for _ in range(20):
            assert 60 <= backoff_delay(1, base=60) <= 75
