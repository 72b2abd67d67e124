"""
State enums for booking payment models.

These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Booking status (driven by upstream booking events):
    pending → confirmed → completed / no_show
    pending → declined
    pending/confirmed → cancelled

Booking payment status:
    pending → partial (fee charged, service amount authorized or failed)
    partial → paid (service amount captured)
    pending → paid (both legs charged at acceptance)
    partial/paid → pending (decline)

PaymentSchedule status:
    scheduled → processing (atomic claim) → processed
    scheduled → processing → failed
    processing → scheduled (unknown gateway outcome, abandoned claim)
    scheduled → cancelled (booking declined or cancelled)
"""

from django.db import models


class BookingStatus(models.TextChoices):
    """
    Lifecycle status of a booking.

    Only CONFIRMED bookings are eligible for scheduled capture.
    """

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    DECLINED = "declined", "Declined"
    CANCELLED = "cancelled", "Cancelled"
    COMPLETED = "completed", "Completed"
    NO_SHOW = "no_show", "No Show"


class BookingPaymentStatus(models.TextChoices):
    """
    Aggregate payment state across both legs of a booking.

    PARTIAL means the platform fee is charged and the service amount is
    either held as an authorization or still has to be retried.
    """

    PENDING = "pending", "Pending"
    PARTIAL = "partial", "Partial"
    PAID = "paid", "Paid"


class PaymentScheduleStatus(models.TextChoices):
    """
    States for the PaymentSchedule lifecycle.

    Terminal states: PROCESSED, FAILED, CANCELLED
    PROCESSING is held only while one sweep owns the row.
    """

    SCHEDULED = "scheduled", "Scheduled"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class PaymentScheduleType(models.TextChoices):
    """Which leg a schedule captures."""

    REMAINING_BALANCE = "remaining_balance", "Remaining Balance"


class TransactionType(models.TextChoices):
    """Kinds of FinancialTransaction ledger entries."""

    BOOKING_PAYMENT = "booking_payment", "Booking Payment"
    REFUND = "refund", "Refund"


class TransactionStatus(models.TextChoices):
    """FinancialTransaction states. PENDING flips to COMPLETED on capture."""

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"


class PaymentLeg(models.TextChoices):
    """The two independent transfers composing a booking's total."""

    SERVICE_FEE = "service_fee", "Service Fee"
    SERVICE_AMOUNT = "service_amount", "Service Amount"


class PayoutTransactionType(models.TextChoices):
    """Kinds of BusinessPayoutTransaction records."""

    INITIAL_BOOKING = "initial_booking", "Initial Booking"


class GatewayIntentStatus(models.TextChoices):
    """
    Payment intent statuses reported by the gateway.

    SUCCEEDED is final success, CANCELED and REQUIRES_PAYMENT_METHOD are
    final failure for an authorization, REQUIRES_CAPTURE is an open hold.
    """

    REQUIRES_PAYMENT_METHOD = "requires_payment_method", "Requires Payment Method"
    REQUIRES_CONFIRMATION = "requires_confirmation", "Requires Confirmation"
    REQUIRES_ACTION = "requires_action", "Requires Action"
    PROCESSING = "processing", "Processing"
    REQUIRES_CAPTURE = "requires_capture", "Requires Capture"
    CANCELED = "canceled", "Canceled"
    SUCCEEDED = "succeeded", "Succeeded"


# Intents that can still be voided without moving money
CANCELLABLE_INTENT_STATUSES = frozenset(
    {
        GatewayIntentStatus.REQUIRES_PAYMENT_METHOD,
        GatewayIntentStatus.REQUIRES_CONFIRMATION,
        GatewayIntentStatus.REQUIRES_ACTION,
        GatewayIntentStatus.REQUIRES_CAPTURE,
    }
)

# Authorizations that can never be captured
DEAD_AUTHORIZATION_STATUSES = frozenset(
    {
        GatewayIntentStatus.CANCELED,
        GatewayIntentStatus.REQUIRES_PAYMENT_METHOD,
    }
)
