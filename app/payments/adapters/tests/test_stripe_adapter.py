"""
Tests for Stripe adapter.

Tests cover:
- Idempotency key generation
- Configuration (missing secret key)
- Error translation for each Stripe exception type
- Successful API operations and result mapping
- Helper functions (is_retryable, backoff_delay, cents conversion)
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from payments.adapters import (
    IdempotencyKeyGenerator,
    PaymentGateway,
    PaymentIntentResult,
    RefundResult,
    StripeAdapter,
    backoff_delay,
    from_cents,
    is_retryable_gateway_error,
    to_cents,
)
from payments.exceptions import (
    ConfigError,
    GatewayCardDeclinedError,
    GatewayInsufficientFundsError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayUnavailableError,
)


def make_intent(**overrides):
    values = {
        "id": "pi_test123",
        "status": "succeeded",
        "amount": 1440,
        "currency": "usd",
        "amount_received": 1440,
        "customer": "cus_test",
        "payment_method": "pm_test",
        "metadata": {"booking_id": "b-1"},
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def card_error(decline_code="generic_decline", message="Your card was declined."):
    error = stripe.CardError(message=message, param=None, code="card_declined")
    error.decline_code = decline_code
    return error


@pytest.fixture
def stripe_settings(settings):
    settings.STRIPE_SECRET_KEY = "sk_test_fake"
    settings.STRIPE_MAX_RETRIES = 2
    settings.STRIPE_API_TIMEOUT_SECONDS = 7
    return settings


@pytest.fixture
def mock_http_client(mocker):
    return mocker.patch("stripe.RequestsClient")


@pytest.fixture
def mock_payment_intent(mocker, stripe_settings, mock_http_client):
    mock = mocker.patch("stripe.PaymentIntent")
    mock.create.return_value = make_intent()
    mock.capture.return_value = make_intent()
    mock.cancel.return_value = make_intent(status="canceled", amount_received=0)
    mock.retrieve.return_value = make_intent(status="requires_capture", amount_received=0)
    return mock


@pytest.fixture
def mock_refund(mocker, stripe_settings, mock_http_client):
    mock = mocker.patch("stripe.Refund")
    mock.create.return_value = SimpleNamespace(
        id="re_test123",
        amount=10560,
        currency="usd",
        status="succeeded",
        payment_intent="pi_test123",
        metadata={},
    )
    return mock


# =============================================================================
# IdempotencyKeyGenerator Tests
# =============================================================================


class TestIdempotencyKeyGenerator:
    """Tests for IdempotencyKeyGenerator."""

    def test_generate_key_format(self):
        """Should generate key in operation:entity:attempt:hash format."""
        entity_id = uuid.uuid4()
        key = IdempotencyKeyGenerator.generate(
            operation="charge_service_fee",
            entity_id=entity_id,
            attempt=1,
        )

        parts = key.split(":")
        assert len(parts) == 4
        assert parts[0] == "charge_service_fee"
        assert parts[1] == str(entity_id)
        assert parts[2] == "1"
        assert len(parts[3]) == 8

    def test_same_inputs_produce_same_key(self):
        """A retry after a timeout must replay the original request."""
        entity_id = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("capture", entity_id) == (
            IdempotencyKeyGenerator.generate("capture", entity_id)
        )

    def test_different_attempts_produce_different_keys(self):
        entity_id = uuid.uuid4()
        key1 = IdempotencyKeyGenerator.generate("charge_service_amount", entity_id, attempt=1)
        key2 = IdempotencyKeyGenerator.generate("charge_service_amount", entity_id, attempt=2)

        assert key1 != key2

    def test_different_operations_produce_different_keys(self):
        entity_id = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("refund", entity_id) != (
            IdempotencyKeyGenerator.generate("cancel", entity_id)
        )


# =============================================================================
# Helper Function Tests
# =============================================================================


class TestIsRetryableGatewayError:
    def test_retryable_errors(self):
        assert is_retryable_gateway_error(GatewayRateLimitError("Rate limited")) is True
        assert is_retryable_gateway_error(GatewayUnavailableError("Timeout")) is True

    def test_non_retryable_errors(self):
        assert is_retryable_gateway_error(GatewayCardDeclinedError("Declined")) is False
        assert is_retryable_gateway_error(GatewayInsufficientFundsError("No funds")) is False
        assert is_retryable_gateway_error(GatewayInvalidRequestError("Bad request")) is False

    def test_non_gateway_errors(self):
        assert is_retryable_gateway_error(ValueError("test")) is False
        assert is_retryable_gateway_error(RuntimeError("test")) is False


class TestBackoffDelay:
    def test_exponential_growth(self):
        """Delays grow 1, 2, 4 with up to 25% jitter."""
        assert 1.0 <= backoff_delay(0, base=1.0, max_delay=60.0) <= 1.25
        assert 2.0 <= backoff_delay(1, base=1.0, max_delay=60.0) <= 2.5
        assert 4.0 <= backoff_delay(2, base=1.0, max_delay=60.0) <= 5.0

    def test_respects_max_delay(self):
        assert backoff_delay(10, base=1.0, max_delay=60.0) <= 75.0


class TestCentsConversion:
    def test_to_cents(self):
        assert to_cents(Decimal("105.60")) == 10560
        assert to_cents(Decimal("14.40")) == 1440
        assert to_cents(Decimal("0.005")) == 1

    def test_from_cents(self):
        assert from_cents(10560) == Decimal("105.60")
        assert from_cents(7) == Decimal("0.07")


# =============================================================================
# Configuration Tests
# =============================================================================


class TestStripeAdapterConfiguration:
    def test_missing_secret_key_raises_config_error(self, settings):
        settings.STRIPE_SECRET_KEY = ""

        with pytest.raises(ConfigError) as exc_info:
            StripeAdapter.ensure_configured()

        assert exc_info.value.details["setting"] == "STRIPE_SECRET_KEY"

    def test_calls_fail_fast_without_secret_key(self, settings, mocker):
        settings.STRIPE_SECRET_KEY = ""
        mock = mocker.patch("stripe.PaymentIntent")

        with pytest.raises(ConfigError):
            StripeAdapter.retrieve("pi_test123")

        mock.retrieve.assert_not_called()

    def test_configures_client(self, mock_payment_intent, mock_http_client):
        StripeAdapter.retrieve("pi_test123")

        assert stripe.api_key == "sk_test_fake"
        assert stripe.max_network_retries == 2
        mock_http_client.assert_called_with(timeout=7)

    def test_satisfies_gateway_protocol(self):
        assert isinstance(StripeAdapter, PaymentGateway)


# =============================================================================
# StripeAdapter Operation Tests
# =============================================================================


class TestStripeAdapterOperations:
    def test_authorize_and_confirm(self, mock_payment_intent):
        result = StripeAdapter.authorize_and_confirm(
            amount_cents=1440,
            customer_id="cus_test",
            payment_method_id="pm_test",
            idempotency_key="charge_service_fee:b-1:1:abcd1234",
            metadata={"booking_id": "b-1"},
        )

        assert isinstance(result, PaymentIntentResult)
        assert result.id == "pi_test123"
        assert result.status == "succeeded"
        assert result.amount_captured_cents == 1440
        assert result.customer_id == "cus_test"
        kwargs = mock_payment_intent.create.call_args.kwargs
        assert kwargs["capture_method"] == "automatic"
        assert kwargs["confirm"] is True
        assert kwargs["off_session"] is True
        assert kwargs["idempotency_key"] == "charge_service_fee:b-1:1:abcd1234"

    def test_manual_capture_authorization(self, mock_payment_intent):
        mock_payment_intent.create.return_value = make_intent(
            status="requires_capture", amount=10560, amount_received=0
        )

        result = StripeAdapter.create_manual_capture_authorization(
            amount_cents=10560,
            customer_id="cus_test",
            payment_method_id="pm_test",
            idempotency_key="key",
        )

        assert result.status == "requires_capture"
        assert result.amount_cents == 10560
        assert mock_payment_intent.create.call_args.kwargs["capture_method"] == "manual"

    def test_expanded_customer_object(self, mock_payment_intent):
        mock_payment_intent.retrieve.return_value = make_intent(
            customer=SimpleNamespace(id="cus_expanded"),
            payment_method=SimpleNamespace(id="pm_expanded"),
        )

        result = StripeAdapter.retrieve("pi_test123")

        assert result.customer_id == "cus_expanded"
        assert result.payment_method_id == "pm_expanded"

    def test_rejects_non_positive_amount(self, mock_payment_intent):
        with pytest.raises(ValueError, match="amount_cents must be positive"):
            StripeAdapter.authorize_and_confirm(
                amount_cents=0,
                customer_id="cus_test",
                payment_method_id="pm_test",
                idempotency_key="key",
            )
        mock_payment_intent.create.assert_not_called()

    def test_requires_idempotency_key(self, mock_payment_intent):
        with pytest.raises(ValueError, match="idempotency_key is required"):
            StripeAdapter.authorize_and_confirm(
                amount_cents=100,
                customer_id="cus_test",
                payment_method_id="pm_test",
                idempotency_key="",
            )

    def test_capture(self, mock_payment_intent):
        result = StripeAdapter.capture("pi_test123", idempotency_key="capture-key")

        assert result.status == "succeeded"
        mock_payment_intent.capture.assert_called_once_with(
            "pi_test123", idempotency_key="capture-key"
        )

    def test_cancel_passes_reason(self, mock_payment_intent):
        result = StripeAdapter.cancel(
            "pi_test123",
            idempotency_key="cancel-key",
            cancellation_reason="requested_by_customer",
        )

        assert result.status == "canceled"
        mock_payment_intent.cancel.assert_called_once_with(
            "pi_test123",
            idempotency_key="cancel-key",
            cancellation_reason="requested_by_customer",
        )

    def test_partial_refund(self, mock_refund):
        result = StripeAdapter.refund(
            "pi_test123",
            idempotency_key="refund-key",
            amount_cents=10560,
            reason="requested_by_customer",
        )

        assert isinstance(result, RefundResult)
        assert result.id == "re_test123"
        assert result.amount_cents == 10560
        kwargs = mock_refund.create.call_args.kwargs
        assert kwargs["payment_intent"] == "pi_test123"
        assert kwargs["amount"] == 10560
        assert kwargs["idempotency_key"] == "refund-key"

    def test_full_refund_omits_amount(self, mock_refund):
        StripeAdapter.refund("pi_test123", idempotency_key="refund-key")

        assert "amount" not in mock_refund.create.call_args.kwargs


# =============================================================================
# StripeAdapter Error Translation Tests
# =============================================================================


class TestStripeAdapterErrorTranslation:
    """Stripe exceptions become gateway exceptions at the adapter boundary."""

    def test_card_declined_error(self, mock_payment_intent):
        mock_payment_intent.create.side_effect = card_error()

        with pytest.raises(GatewayCardDeclinedError) as exc_info:
            StripeAdapter.authorize_and_confirm(1440, "cus_test", "pm_test", "key")

        assert exc_info.value.decline_code == "generic_decline"
        assert exc_info.value.gateway_code == "card_declined"
        assert exc_info.value.outcome_unknown is False

    def test_insufficient_funds_error(self, mock_payment_intent):
        mock_payment_intent.create.side_effect = card_error(
            decline_code="insufficient_funds",
            message="Your card has insufficient funds.",
        )

        with pytest.raises(GatewayInsufficientFundsError) as exc_info:
            StripeAdapter.authorize_and_confirm(1440, "cus_test", "pm_test", "key")

        assert exc_info.value.decline_code == "insufficient_funds"

    def test_invalid_request_error(self, mock_payment_intent):
        mock_payment_intent.capture.side_effect = stripe.InvalidRequestError(
            message="This PaymentIntent could not be captured.",
            param=None,
            code="payment_intent_unexpected_state",
        )

        with pytest.raises(GatewayInvalidRequestError) as exc_info:
            StripeAdapter.capture("pi_test123", idempotency_key="key")

        assert exc_info.value.gateway_code == "payment_intent_unexpected_state"

    def test_rate_limit_error(self, mock_payment_intent):
        mock_payment_intent.retrieve.side_effect = stripe.RateLimitError("Too many requests")

        with pytest.raises(GatewayRateLimitError) as exc_info:
            StripeAdapter.retrieve("pi_test123")

        assert exc_info.value.is_retryable is True

    def test_connection_error_is_outcome_unknown(self, mock_payment_intent):
        mock_payment_intent.capture.side_effect = stripe.APIConnectionError("Read timed out")

        with pytest.raises(GatewayUnavailableError) as exc_info:
            StripeAdapter.capture("pi_test123", idempotency_key="key")

        assert exc_info.value.outcome_unknown is True
        assert exc_info.value.gateway_code == "api_connection_error"

    def test_authentication_error(self, mock_payment_intent):
        mock_payment_intent.retrieve.side_effect = stripe.AuthenticationError("Invalid API Key")

        with pytest.raises(GatewayInvalidRequestError) as exc_info:
            StripeAdapter.retrieve("pi_test123")

        assert exc_info.value.gateway_code == "authentication_error"

    def test_api_error(self, mock_payment_intent):
        mock_payment_intent.cancel.side_effect = stripe.APIError("Internal error")

        with pytest.raises(GatewayUnavailableError):
            StripeAdapter.cancel("pi_test123", idempotency_key="key")

    def test_unexpected_error(self, mock_payment_intent):
        mock_payment_intent.retrieve.side_effect = RuntimeError("boom")

        with pytest.raises(GatewayUnavailableError):
            StripeAdapter.retrieve("pi_test123")
