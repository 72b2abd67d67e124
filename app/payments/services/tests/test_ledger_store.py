"""Tests for LedgerStore."""

from datetime import timedelta
from decimal import Decimal

import pytest

from payments.exceptions import BookingNotFoundError
from payments.models import PaymentSchedule
from payments.state_machines import (
    PaymentLeg,
    PaymentScheduleStatus,
    TransactionStatus,
    TransactionType,
)
from payments.tests.factories import (
    NOW,
    BookingFactory,
    FinancialTransactionFactory,
    PaymentScheduleFactory,
)

pytestmark = pytest.mark.django_db


class TestBookings:
    def test_get_booking_not_found(self, ledger):
        with pytest.raises(BookingNotFoundError) as exc_info:
            ledger.get_booking("5f0c7a2e-3c1b-4a7e-9a52-0d1f3b8e6c11")

        assert exc_info.value.error_code == "BOOKING_NOT_FOUND"

    def test_get_schedule_not_found(self, ledger):
        with pytest.raises(BookingNotFoundError) as exc_info:
            ledger.get_schedule("5f0c7a2e-3c1b-4a7e-9a52-0d1f3b8e6c11")

        assert exc_info.value.error_code == "PAYMENT_SCHEDULE_NOT_FOUND"


class TestSchedules:
    def test_save_open_schedule_updates_existing(self, ledger):
        schedule = PaymentScheduleFactory()
        later = schedule.scheduled_at + timedelta(hours=3)

        updated = ledger.save_open_schedule(
            schedule.booking,
            scheduled_at=later,
            amount=Decimal("105.60"),
            payment_intent_id="pi_new_hold",
        )

        assert updated.pk == schedule.pk
        schedule.refresh_from_db()
        assert schedule.scheduled_at == later
        assert schedule.stripe_payment_intent_id == "pi_new_hold"

    def test_save_open_schedule_leaves_claimed_row(self, ledger):
        schedule = PaymentScheduleFactory(status=PaymentScheduleStatus.PROCESSING, claimed_at=NOW)

        returned = ledger.save_open_schedule(
            schedule.booking,
            scheduled_at=schedule.scheduled_at + timedelta(hours=3),
            amount=Decimal("105.60"),
            payment_intent_id="pi_new_hold",
        )

        assert returned.pk == schedule.pk
        assert PaymentSchedule.objects.filter(booking=schedule.booking).count() == 1
        schedule.refresh_from_db()
        assert schedule.status == PaymentScheduleStatus.PROCESSING
        assert schedule.stripe_payment_intent_id != "pi_new_hold"

    def test_due_schedules_respects_limit(self, ledger):
        for minutes in (30, 20, 10):
            PaymentScheduleFactory(scheduled_at=NOW - timedelta(minutes=minutes))

        due = ledger.due_schedules(NOW, limit=2)

        assert [s.scheduled_at for s in due] == [
            NOW - timedelta(minutes=30),
            NOW - timedelta(minutes=20),
        ]

    def test_cancel_open_schedules(self, ledger):
        schedule = PaymentScheduleFactory()

        assert ledger.cancel_open_schedules(schedule.booking, "Booking declined") == 1

        schedule.refresh_from_db()
        assert schedule.status == PaymentScheduleStatus.CANCELLED
        assert schedule.failure_reason == "Booking declined"

    def test_release_stale_claims(self, ledger):
        PaymentScheduleFactory(
            status=PaymentScheduleStatus.PROCESSING,
            claimed_at=NOW - timedelta(minutes=20),
        )

        assert ledger.release_stale_claims(NOW, timeout_minutes=15) == 1
        assert PaymentSchedule.objects.filter(status=PaymentScheduleStatus.SCHEDULED).count() == 1


class TestTransactions:
    def test_record_transaction_tags_leg_and_currency(self, ledger):
        booking = BookingFactory()

        entry = ledger.record_transaction(
            booking,
            amount=Decimal("14.40"),
            stripe_transaction_id="pi_fee",
            transaction_type=TransactionType.BOOKING_PAYMENT,
            leg=PaymentLeg.SERVICE_FEE,
            processed_at=NOW,
            metadata={"actor_id": "biz-1"},
        )

        assert entry.currency == "USD"
        assert entry.metadata == {"payment_type": "service_fee", "actor_id": "biz-1"}
        assert entry.processed_at == NOW

    def test_pending_entry_has_no_processed_at(self, ledger):
        entry = ledger.record_transaction(
            BookingFactory(),
            amount=Decimal("105.60"),
            stripe_transaction_id="pi_hold",
            transaction_type=TransactionType.BOOKING_PAYMENT,
            leg=PaymentLeg.SERVICE_AMOUNT,
            status=TransactionStatus.PENDING,
            processed_at=NOW,
        )

        assert entry.processed_at is None

    def test_complete_pending_transaction(self, ledger):
        entry = FinancialTransactionFactory(
            stripe_transaction_id="pi_hold",
            status=TransactionStatus.PENDING,
            processed_at=None,
        )

        assert ledger.complete_pending_transaction(entry.booking, "pi_hold", NOW) == 1
        assert ledger.complete_pending_transaction(entry.booking, "pi_hold", NOW) == 0

    def test_has_transaction_by_leg(self, ledger):
        entry = FinancialTransactionFactory(stripe_transaction_id="pi_purchase")

        assert ledger.has_transaction(entry.booking, "pi_purchase")
        assert ledger.has_transaction(entry.booking, "pi_purchase", leg=PaymentLeg.SERVICE_FEE)
        assert not ledger.has_transaction(
            entry.booking, "pi_purchase", leg=PaymentLeg.SERVICE_AMOUNT
        )

    def test_has_refund_by_leg(self, ledger):
        entry = FinancialTransactionFactory(transaction_type=TransactionType.REFUND)

        assert ledger.has_refund(entry.booking)
        assert ledger.has_refund(entry.booking, leg=PaymentLeg.SERVICE_FEE)
        assert not ledger.has_refund(entry.booking, leg=PaymentLeg.SERVICE_AMOUNT)


class TestPayouts:
    def test_create_payout_if_absent(self, ledger):
        booking = BookingFactory(total_amount=Decimal("80.00"), service_fee=Decimal("9.60"))

        payout, created = ledger.create_payout_if_absent(booking, "pi_service", NOW)
        again, created_again = ledger.create_payout_if_absent(booking, "pi_service", NOW)

        assert created is True
        assert created_again is False
        assert again.pk == payout.pk
        assert payout.net_payment_amount == Decimal("70.40")
        assert payout.stripe_payment_intent_id == "pi_service"
