"""
Stripe implementation of the payment gateway interface.

All Stripe API calls made by the booking payment engine go through this
adapter so that timeouts, idempotency, error translation and logging are
handled in one place.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key (ConfigError if empty)
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: SDK network retries (default: 3)

Usage:
    from payments.adapters import IdempotencyKeyGenerator, StripeAdapter

    StripeAdapter.ensure_configured()

    intent = StripeAdapter.create_manual_capture_authorization(
        amount_cents=10560,
        customer_id="cus_xxx",
        payment_method_id="pm_xxx",
        idempotency_key=IdempotencyKeyGenerator.generate("authorize_service", booking.id),
        metadata={"booking_id": str(booking.id)},
    )

    StripeAdapter.capture(intent.id, idempotency_key="capture:...")
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from payments.adapters.gateway import PaymentIntentResult, RefundResult
from payments.exceptions import (
    ConfigError,
    GatewayCardDeclinedError,
    GatewayError,
    GatewayInsufficientFundsError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import Callable


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same operation, entity and attempt always produce the same key, so
    a retry after a timeout replays the original request instead of
    creating a second charge. Bump the attempt after a definite failure.

    Example:
        key = IdempotencyKeyGenerator.generate("charge_service_fee", booking.id, attempt=1)
        # "charge_service_fee:550e8400-...:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_gateway_error(error: Exception) -> bool:
    """
    Check if a gateway error is transient.

    Use this in Celery tasks to decide whether to retry:

        except Exception as e:
            if is_retryable_gateway_error(e):
                raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
            raise
    """
    if isinstance(error, GatewayError):
        return error.is_retryable
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Exponential backoff delay with 0-25% jitter.

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe PaymentIntent and Refund operations.

    All methods are classmethods - no instance state is maintained, so the
    class itself is passed wherever a PaymentGateway is expected.
    Thread-safe for use from Celery workers.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def ensure_configured() -> None:
        """
        Fail fast when the Stripe credential is missing.

        Raises:
            ConfigError: STRIPE_SECRET_KEY is not set
        """
        if not getattr(settings, "STRIPE_SECRET_KEY", ""):
            raise ConfigError(
                "STRIPE_SECRET_KEY is not configured",
                details={"setting": "STRIPE_SECRET_KEY"},
            )

    @classmethod
    def _configure_stripe(cls) -> None:
        """Configure Stripe client with API key, timeout and retries."""
        cls.ensure_configured()
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _run(
        cls,
        log_context: dict[str, Any],
        call: Callable[[], Any],
        level: int = logging.INFO,
    ) -> Any:
        """
        Execute one Stripe call with timing logs and error translation.

        Raises:
            GatewayError subclass for any Stripe failure
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        start_time = time.time()
        logger.log(level, "Starting Stripe operation", extra=log_context)

        try:
            result = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise  # Never reached, _handle_stripe_error always raises

        duration_ms = (time.time() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={
                **log_context,
                "object_id": getattr(result, "id", None),
                "status": getattr(result, "status", None),
                "duration_ms": duration_ms,
            },
        )
        return result

    @staticmethod
    def _to_intent_result(intent: Any) -> PaymentIntentResult:
        customer = intent.customer
        payment_method = intent.payment_method
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            amount_captured_cents=intent.amount_received or 0,
            # Expanded objects carry their own id
            customer_id=getattr(customer, "id", customer),
            payment_method_id=getattr(payment_method, "id", payment_method),
            metadata=dict(intent.metadata or {}),
            raw_response=intent.to_dict() if hasattr(intent, "to_dict") else {},
        )

    # =========================================================================
    # Charges & Authorizations
    # =========================================================================

    @classmethod
    def authorize_and_confirm(
        cls,
        amount_cents: int,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntentResult:
        """
        Create and confirm an off-session charge on a saved card.

        Returns:
            PaymentIntentResult, normally with status "succeeded"

        Raises:
            GatewayCardDeclinedError: Card was declined
            GatewayInsufficientFundsError: Insufficient funds
            GatewayUnavailableError: Stripe unreachable or timed out
        """
        return cls._create_confirmed_intent(
            operation="authorize_and_confirm",
            capture_method="automatic",
            amount_cents=amount_cents,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            idempotency_key=idempotency_key,
            currency=currency,
            metadata=metadata,
        )

    @classmethod
    def create_manual_capture_authorization(
        cls,
        amount_cents: int,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntentResult:
        """
        Place a hold for later capture.

        Returns:
            PaymentIntentResult, normally with status "requires_capture"
        """
        return cls._create_confirmed_intent(
            operation="create_manual_capture_authorization",
            capture_method="manual",
            amount_cents=amount_cents,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            idempotency_key=idempotency_key,
            currency=currency,
            metadata=metadata,
        )

    @classmethod
    def _create_confirmed_intent(
        cls,
        operation: str,
        capture_method: str,
        amount_cents: int,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        currency: str,
        metadata: dict[str, str] | None,
    ) -> PaymentIntentResult:
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not idempotency_key:
            raise ValueError("idempotency_key is required")

        log_context = {
            "operation": operation,
            "amount_cents": amount_cents,
            "currency": currency,
            "customer_id": customer_id,
            "idempotency_key": idempotency_key,
        }

        intent = cls._run(
            log_context,
            lambda: stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                customer=customer_id,
                payment_method=payment_method_id,
                capture_method=capture_method,
                confirm=True,
                off_session=True,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )
        return cls._to_intent_result(intent)

    @classmethod
    def capture(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_to_capture_cents: int | None = None,
    ) -> PaymentIntentResult:
        """
        Capture a manual-capture PaymentIntent.

        Raises:
            GatewayInvalidRequestError: Intent not capturable (already
                captured, canceled or expired)
            GatewayUnavailableError: Outcome unknown
        """
        log_context = {
            "operation": "capture",
            "payment_intent_id": payment_intent_id,
            "idempotency_key": idempotency_key,
            "amount_to_capture": amount_to_capture_cents,
        }

        capture_params: dict[str, Any] = {}
        if amount_to_capture_cents is not None:
            capture_params["amount_to_capture"] = amount_to_capture_cents

        intent = cls._run(
            log_context,
            lambda: stripe.PaymentIntent.capture(
                payment_intent_id,
                idempotency_key=idempotency_key,
                **capture_params,
            ),
        )
        return cls._to_intent_result(intent)

    @classmethod
    def cancel(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        cancellation_reason: str | None = None,
    ) -> PaymentIntentResult:
        """
        Cancel a PaymentIntent that has not captured funds.

        Args:
            cancellation_reason: duplicate, fraudulent, requested_by_customer
                or abandoned
        """
        log_context = {
            "operation": "cancel",
            "payment_intent_id": payment_intent_id,
            "idempotency_key": idempotency_key,
            "cancellation_reason": cancellation_reason,
        }

        cancel_params: dict[str, Any] = {}
        if cancellation_reason:
            cancel_params["cancellation_reason"] = cancellation_reason

        intent = cls._run(
            log_context,
            lambda: stripe.PaymentIntent.cancel(
                payment_intent_id,
                idempotency_key=idempotency_key,
                **cancel_params,
            ),
        )
        return cls._to_intent_result(intent)

    @classmethod
    def refund(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund a succeeded PaymentIntent.

        Args:
            amount_cents: Amount to refund (None for full refund)
            reason: duplicate, fraudulent or requested_by_customer
        """
        log_context = {
            "operation": "refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        refund_params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "metadata": metadata or {},
        }
        if amount_cents is not None:
            refund_params["amount"] = amount_cents
        if reason:
            refund_params["reason"] = reason

        refund = cls._run(
            log_context,
            lambda: stripe.Refund.create(
                idempotency_key=idempotency_key,
                **refund_params,
            ),
        )
        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=refund.payment_intent,
            metadata=dict(refund.metadata or {}),
            raw_response=refund.to_dict() if hasattr(refund, "to_dict") else {},
        )

    @classmethod
    def retrieve(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        Raises:
            GatewayInvalidRequestError: PaymentIntent not found
        """
        log_context = {
            "operation": "retrieve",
            "payment_intent_id": payment_intent_id,
        }

        intent = cls._run(
            log_context,
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id),
            level=logging.DEBUG,
        )
        return cls._to_intent_result(intent)

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
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            GatewayCardDeclinedError: Card was declined
            GatewayInsufficientFundsError: Insufficient funds
            GatewayInvalidRequestError: Invalid request or wrong object state
            GatewayRateLimitError: Rate limited
            GatewayUnavailableError: Network failure, timeout or server error
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )

            if decline_code == "insufficient_funds":
                raise GatewayInsufficientFundsError(
                    str(error.user_message or error),
                    gateway_code=error.code,
                    decline_code=decline_code,
                )

            raise GatewayCardDeclinedError(
                str(error.user_message or error),
                gateway_code=error.code,
                decline_code=decline_code,
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise GatewayInvalidRequestError(
                str(error.user_message or error),
                gateway_code=error.code,
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                gateway_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            # Includes read timeouts: the request may have been applied
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise GatewayUnavailableError(
                "Could not connect to Stripe. Outcome unknown, please retry.",
                gateway_code="api_connection_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise GatewayInvalidRequestError(
                "Stripe authentication failed",
                gateway_code="authentication_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Stripe service error. Please retry.",
                gateway_code="api_error",
            )

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise GatewayUnavailableError(
                f"Unexpected Stripe error: {error}",
                gateway_code="unknown_error",
            )
