"""
Payment gateway interface consumed by the booking payment engine.

The orchestrator and the capture sweeper depend on this Protocol, never on
Stripe directly. StripeAdapter is the production implementation; tests
pass a fake with the same methods.

Usage:
    from payments.adapters.gateway import PaymentGateway

    class BookingPaymentOrchestrator:
        def __init__(self, gateway: PaymentGateway | None = None):
            self.gateway = gateway or StripeAdapter
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class PaymentIntentResult:
    """
    Gateway view of a payment intent.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Gateway status (requires_capture, succeeded, canceled, ...)
        amount_cents: Intent amount in cents
        amount_captured_cents: Amount actually received
        currency: Currency code
        customer_id: Customer the intent charges (cus_xxx)
        payment_method_id: Payment method attached (pm_xxx)
        metadata: Attached metadata
        raw_response: Full gateway response dict (for debugging)
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    amount_captured_cents: int = 0
    customer_id: str | None = None
    payment_method_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result from refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Refunded PaymentIntent ID
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Money helpers
# =============================================================================

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    """Convert a major-unit Decimal amount to integer cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a major-unit Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


# =============================================================================
# Gateway Protocol
# =============================================================================


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Capability set the payment engine needs from a processor.

    Every mutating call takes an idempotency key so that re-invoking an
    operation after an unknown outcome cannot move money twice.
    """

    def authorize_and_confirm(
        self,
        amount_cents: int,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntentResult:
        """Create and confirm an automatic-capture charge."""
        ...

    def create_manual_capture_authorization(
        self,
        amount_cents: int,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntentResult:
        """Create and confirm a hold that must be captured later."""
        ...

    def capture(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount_to_capture_cents: int | None = None,
    ) -> PaymentIntentResult:
        """Capture an authorization (requires_capture -> succeeded)."""
        ...

    def cancel(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        cancellation_reason: str | None = None,
    ) -> PaymentIntentResult:
        """Void an intent that has not moved money."""
        ...

    def refund(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """Refund a succeeded intent, fully (amount None) or partially."""
        ...

    def retrieve(self, payment_intent_id: str) -> PaymentIntentResult:
        """Read the current state of an intent."""
        ...
