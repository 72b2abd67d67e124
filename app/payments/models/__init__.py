"""
Booking payment models.

- Booking: Scheduled service purchase and the state of its two payment legs
- PaymentSchedule: Deferred capture obligation for the service-amount leg
- FinancialTransaction: Append-only charge / refund entries
- BusinessPayoutTransaction: Net amount owed to the business per booking
"""

from payments.models.booking import Booking
from payments.models.payment_schedule import PaymentSchedule, PaymentScheduleQuerySet
from payments.models.transactions import BusinessPayoutTransaction, FinancialTransaction

__all__ = [
    "Booking",
    "BusinessPayoutTransaction",
    "FinancialTransaction",
    "PaymentSchedule",
    "PaymentScheduleQuerySet",
]
