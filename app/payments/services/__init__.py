"""
Booking payment services.

This module provides:
- BookingPaymentOrchestrator: Acceptance, decline, cancellation and the
  service-leg capture primitive
- LedgerStore: ORM operations on bookings, schedules and ledger records

Usage:
    from payments.services import BookingPaymentOrchestrator

    orchestrator = BookingPaymentOrchestrator()

    result = orchestrator.accept_booking(booking_id, actor_id=user.pk)
    result = orchestrator.decline_booking(booking_id, actor_id=user.pk, reason="Fully booked")
    result = orchestrator.cancel_booking(booking_id, actor_id=user.pk, reason="Plans changed")
"""

from payments.services.booking_payments import (
    CAPTURE_CUTOFF_HOURS,
    BookingPaymentOrchestrator,
    capture_cutoff_hours,
)
from payments.services.ledger_store import LedgerStore

__all__ = [
    "CAPTURE_CUTOFF_HOURS",
    "BookingPaymentOrchestrator",
    "LedgerStore",
    "capture_cutoff_hours",
]
