"""
Payment gateway adapters.

The booking payment engine talks to the processor through the
PaymentGateway interface. StripeAdapter is the production implementation
and handles timeouts, idempotency keys, error translation and logging.

Usage:
    from payments.adapters import IdempotencyKeyGenerator, StripeAdapter

    intent = StripeAdapter.authorize_and_confirm(
        amount_cents=1440,
        customer_id="cus_xxx",
        payment_method_id="pm_xxx",
        idempotency_key=IdempotencyKeyGenerator.generate("charge_service_fee", booking.id),
    )
"""

from payments.adapters.gateway import (
    PaymentGateway,
    PaymentIntentResult,
    RefundResult,
    from_cents,
    to_cents,
)
from payments.adapters.stripe_adapter import (
    IdempotencyKeyGenerator,
    StripeAdapter,
    backoff_delay,
    is_retryable_gateway_error,
)

__all__ = [
    "IdempotencyKeyGenerator",
    "PaymentGateway",
    "PaymentIntentResult",
    "RefundResult",
    "StripeAdapter",
    "backoff_delay",
    "from_cents",
    "is_retryable_gateway_error",
    "to_cents",
]
