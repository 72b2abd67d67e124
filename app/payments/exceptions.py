"""
Payment-specific exceptions for booking payment operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── BookingNotFoundError - Booking / schedule lookup failures (NotFound)
    ├── PaymentValidationError - Missing or malformed payment references
    ├── PartialLegFailure - One payment leg succeeded, the other did not
    ├── ConfigError - Missing gateway credentials
    └── GatewayError - Base for all payment processor errors
        ├── GatewayCardDeclinedError - Card declined (permanent)
        ├── GatewayInsufficientFundsError - Insufficient funds (permanent)
        ├── GatewayInvalidRequestError - Invalid request / bad state (permanent)
        ├── GatewayRateLimitError - Rate limited (transient, retry)
        └── GatewayUnavailableError - Network failure or timeout (outcome unknown)

    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from payments.exceptions import GatewayError, PartialLegFailure

    try:
        gateway.capture(intent_id, idempotency_key=key)
    except GatewayError as e:
        if e.outcome_unknown:
            # Don't mark anything failed; the next read decides
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    All payment-specific exceptions inherit from this class, which itself
    inherits from BaseApplicationError for consistent API error responses.
    """

    default_error_code: str = "PAYMENT_ERROR"


class BookingNotFoundError(PaymentError, NotFoundError):
    """
    Raised when a booking, schedule or referenced authorization is missing.

    Example:
        booking = Booking.objects.filter(id=booking_id).first()
        if booking is None:
            raise BookingNotFoundError(
                f"Booking {booking_id} not found",
                details={"booking_id": str(booking_id)},
            )
    """

    default_error_code: str = "BOOKING_NOT_FOUND"


class PaymentValidationError(PaymentError, ValidationError):
    """
    Raised when a payment reference is missing or malformed.

    Use for:
    - Booking without a purchase-time payment intent
    - No customer / payment method to charge against
    - Amounts that violate the fee + service == total invariant
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class PartialLegFailure(PaymentError):
    """
    Raised when the fee leg succeeded but the service-amount leg did not.

    The booking is intentionally left at payment_status=partial. Re-invoking
    acceptance is safe: it sees the fee charge and retries leg 2 only.

    Attributes:
        leg_error: The underlying exception for the failed leg
    """

    default_error_code: str = "PARTIAL_LEG_FAILURE"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        leg_error: Exception | None = None,
    ):
        super().__init__(message, error_code=error_code, details=details)
        self.leg_error = leg_error


class ConfigError(PaymentError):
    """
    Raised when payment configuration is incomplete (e.g. no Stripe key).

    Fatal for the component being built; it is raised when the
    orchestrator or sweeper is constructed, not per request.
    """

    default_error_code: str = "PAYMENT_CONFIG_ERROR"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentError):
    """
    Base exception for payment processor errors.

    Attributes:
        gateway_code: Processor error code (e.g., "card_declined")
        decline_code: Card decline reason if applicable
        is_retryable: Whether re-invoking the operation may succeed
        outcome_unknown: Whether the processor may have applied the
            mutation despite the error (network failure, timeout)
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False
    outcome_unknown: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        gateway_code: str | None = None,
        decline_code: str | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        if decline_code:
            details["decline_code"] = decline_code

        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code
        self.decline_code = decline_code


class GatewayCardDeclinedError(GatewayError):
    """Card was declined by the issuing bank. Permanent."""

    default_error_code: str = "CARD_DECLINED"
    is_retryable: bool = False


class GatewayInsufficientFundsError(GatewayError):
    """Card has insufficient funds. Permanent for this attempt."""

    default_error_code: str = "INSUFFICIENT_FUNDS"
    is_retryable: bool = False


class GatewayInvalidRequestError(GatewayError):
    """
    Invalid request parameters or an object in the wrong state.

    Covers "already captured", "cannot cancel a succeeded intent" and
    authentication failures. Permanent; fix the request instead.
    """

    default_error_code: str = "GATEWAY_INVALID_REQUEST"
    is_retryable: bool = False


class GatewayRateLimitError(GatewayError):
    """Rate limited by the processor. Transient, retry with backoff."""

    default_error_code: str = "GATEWAY_RATE_LIMITED"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """
    Processor unreachable, errored server-side, or timed out.

    The mutation may or may not have been applied, so callers must read
    the object's current state before acting again.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True
    outcome_unknown: bool = True


# =============================================================================
# Concurrency Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Example:
        raise LockAcquisitionError(
            "Could not acquire lock for booking:payment:123 within 10s",
            details={"key": "lock:booking:payment:123", "timeout": 10},
        )
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


__all__ = [
    # Domain
    "PaymentError",
    "BookingNotFoundError",
    "PaymentValidationError",
    "PartialLegFailure",
    "ConfigError",
    # Gateway
    "GatewayError",
    "GatewayCardDeclinedError",
    "GatewayInsufficientFundsError",
    "GatewayInvalidRequestError",
    "GatewayRateLimitError",
    "GatewayUnavailableError",
    # Concurrency
    "LockAcquisitionError",
]
