"""
Payments app for booking payments.

This app handles:
- Charging the platform fee and the service amount when a booking is accepted
- Holding the service amount and capturing it 24 hours before the service
- Releasing, refunding and retaining money on decline and cancellation
- Ledger records for charges, refunds and business payouts

Related apps:
    - core: Base models, service results and exceptions

Usage:
    from payments.services import BookingPaymentOrchestrator

    result = BookingPaymentOrchestrator().accept_booking(booking_id, actor_id=user.pk)
"""
