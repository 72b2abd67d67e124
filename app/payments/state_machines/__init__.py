"""
State machine enums and helpers for booking payment models.
"""

from payments.state_machines.states import (
    CANCELLABLE_INTENT_STATUSES,
    DEAD_AUTHORIZATION_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
    GatewayIntentStatus,
    PaymentLeg,
    PaymentScheduleStatus,
    PaymentScheduleType,
    PayoutTransactionType,
    TransactionStatus,
    TransactionType,
)

__all__ = [
    "CANCELLABLE_INTENT_STATUSES",
    "DEAD_AUTHORIZATION_STATUSES",
    "BookingPaymentStatus",
    "BookingStatus",
    "GatewayIntentStatus",
    "PaymentLeg",
    "PaymentScheduleStatus",
    "PaymentScheduleType",
    "PayoutTransactionType",
    "TransactionStatus",
    "TransactionType",
]
