"""
Tests for booking payment models.

Tests cover:
- Booking amount split and service instant
- PaymentSchedule queryset (due, claim, stale claim release)
- PaymentSchedule FSM transitions
- FinancialTransaction append-only rule
- Database constraints
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from django_fsm import TransitionNotAllowed

from payments.models import PaymentSchedule
from payments.state_machines import (
    BookingPaymentStatus,
    BookingStatus,
    PaymentScheduleStatus,
    TransactionStatus,
)
from payments.tests.factories import (
    NOW,
    BookingFactory,
    BusinessPayoutTransactionFactory,
    FinancialTransactionFactory,
    PaymentScheduleFactory,
)


# =============================================================================
# Booking
# =============================================================================


@pytest.mark.django_db
class TestBooking:
    def test_service_amount_is_total_minus_fee(self):
        booking = BookingFactory(total_amount=Decimal("120.00"), service_fee=Decimal("14.40"))

        assert booking.service_amount == Decimal("105.60")

    def test_service_instant_is_aware(self):
        booking = BookingFactory(service_in_hours=48)

        assert timezone.is_aware(booking.service_instant)
        assert booking.service_instant == NOW + timedelta(hours=48)

    def test_hours_until_service(self):
        booking = BookingFactory(service_in_hours=10)

        assert booking.hours_until_service(NOW) == pytest.approx(10.0)
        assert booking.hours_until_service(NOW + timedelta(hours=12)) == pytest.approx(-2.0)

    def test_was_accepted(self):
        assert BookingFactory().was_accepted is False
        assert BookingFactory(booking_status=BookingStatus.CONFIRMED).was_accepted is True
        assert BookingFactory(service_fee_charged=True).was_accepted is True

    def test_fee_cannot_exceed_total(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                BookingFactory(total_amount=Decimal("10.00"), service_fee=Decimal("10.01"))

    def test_charged_balance_cannot_be_pending(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                BookingFactory(
                    remaining_balance_charged=True,
                    payment_status=BookingPaymentStatus.PENDING,
                )


# =============================================================================
# PaymentSchedule
# =============================================================================


@pytest.mark.django_db
class TestPaymentScheduleQuerySet:
    def test_due_selects_open_rows_at_or_before_now(self):
        due = PaymentScheduleFactory(scheduled_at=NOW - timedelta(minutes=1))
        exact = PaymentScheduleFactory(scheduled_at=NOW)
        PaymentScheduleFactory(scheduled_at=NOW + timedelta(seconds=1))
        PaymentScheduleFactory(
            scheduled_at=NOW - timedelta(hours=1),
            status=PaymentScheduleStatus.PROCESSED,
        )

        assert list(PaymentSchedule.objects.due(NOW)) == [due, exact]

    def test_claim_succeeds_once(self):
        schedule = PaymentScheduleFactory(scheduled_at=NOW)

        assert PaymentSchedule.objects.claim(schedule.pk, NOW) is True
        assert PaymentSchedule.objects.claim(schedule.pk, NOW) is False

        schedule.refresh_from_db()
        assert schedule.status == PaymentScheduleStatus.PROCESSING
        assert schedule.claimed_at == NOW

    def test_release_stale_claims(self):
        stale = PaymentScheduleFactory(
            status=PaymentScheduleStatus.PROCESSING,
            claimed_at=NOW - timedelta(minutes=30),
        )
        fresh = PaymentScheduleFactory(
            status=PaymentScheduleStatus.PROCESSING,
            claimed_at=NOW - timedelta(minutes=5),
        )

        released = PaymentSchedule.objects.release_stale_claims(NOW - timedelta(minutes=15))

        assert released == 1
        stale.refresh_from_db()
        fresh.refresh_from_db()
        assert stale.status == PaymentScheduleStatus.SCHEDULED
        assert stale.claimed_at is None
        assert fresh.status == PaymentScheduleStatus.PROCESSING

    def test_one_open_schedule_per_booking(self):
        schedule = PaymentScheduleFactory()

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PaymentScheduleFactory(booking=schedule.booking)

    def test_closed_schedule_allows_a_new_one(self):
        schedule = PaymentScheduleFactory(status=PaymentScheduleStatus.FAILED)

        PaymentScheduleFactory(booking=schedule.booking)

        assert schedule.booking.payment_schedules.count() == 2


@pytest.mark.django_db
class TestPaymentScheduleTransitions:
    def test_mark_processed(self):
        schedule = PaymentScheduleFactory(status=PaymentScheduleStatus.PROCESSING, claimed_at=NOW)

        schedule.mark_processed(NOW)
        schedule.save()

        assert schedule.status == PaymentScheduleStatus.PROCESSED
        assert schedule.processed_at == NOW
        assert schedule.claimed_at is None

    def test_mark_failed_counts_attempts(self):
        schedule = PaymentScheduleFactory(status=PaymentScheduleStatus.PROCESSING)

        schedule.mark_failed("Your card was declined.")

        assert schedule.status == PaymentScheduleStatus.FAILED
        assert schedule.retry_count == 1
        assert schedule.failure_reason == "Your card was declined."

    def test_release_claim_returns_to_scheduled(self):
        schedule = PaymentScheduleFactory(status=PaymentScheduleStatus.PROCESSING, claimed_at=NOW)

        schedule.release_claim("timeout")

        assert schedule.status == PaymentScheduleStatus.SCHEDULED
        assert schedule.retry_count == 1
        assert schedule.claimed_at is None

    def test_release_claim_requires_processing(self):
        schedule = PaymentScheduleFactory()

        with pytest.raises(TransitionNotAllowed):
            schedule.release_claim("timeout")

    def test_cancel_only_from_scheduled(self):
        schedule = PaymentScheduleFactory(status=PaymentScheduleStatus.PROCESSED)

        with pytest.raises(TransitionNotAllowed):
            schedule.cancel("Booking cancelled")

    def test_requeue_failed(self):
        schedule = PaymentScheduleFactory(
            status=PaymentScheduleStatus.FAILED,
            failure_reason="Authorization is canceled",
        )

        schedule.requeue()

        assert schedule.status == PaymentScheduleStatus.SCHEDULED
        assert schedule.failure_reason == ""


# =============================================================================
# Ledger Records
# =============================================================================


@pytest.mark.django_db
class TestFinancialTransaction:
    def test_append_only(self):
        entry = FinancialTransactionFactory()
        entry.amount = Decimal("1.00")

        with pytest.raises(ValueError, match="append-only"):
            entry.save()

    def test_mark_completed(self):
        entry = FinancialTransactionFactory(status=TransactionStatus.PENDING, processed_at=None)

        entry.mark_completed(NOW)

        entry.refresh_from_db()
        assert entry.status == TransactionStatus.COMPLETED
        assert entry.processed_at == NOW


@pytest.mark.django_db
class TestBusinessPayoutTransaction:
    def test_one_payout_per_booking(self):
        payout = BusinessPayoutTransactionFactory()

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                BusinessPayoutTransactionFactory(booking=payout.booking)

    def test_net_amount(self):
        payout = BusinessPayoutTransactionFactory(
            booking__total_amount=Decimal("80.00"),
            booking__service_fee=Decimal("9.60"),
        )

        assert payout.net_payment_amount == Decimal("70.40")
