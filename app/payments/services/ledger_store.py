"""
Persistence operations for the booking payment engine.

LedgerStore wraps the ORM calls the orchestrator and the capture sweeper
make against Booking, PaymentSchedule, FinancialTransaction and
BusinessPayoutTransaction, so services can be given a different store in
tests and so every conditional write lives in one place.

Usage:
    from payments.services import LedgerStore

    ledger = LedgerStore()
    booking = ledger.get_booking(booking_id)
    if ledger.claim_schedule(schedule.pk, now):
        ...
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction

from payments.exceptions import BookingNotFoundError
from payments.models import (
    Booking,
    BusinessPayoutTransaction,
    FinancialTransaction,
    PaymentSchedule,
)
from payments.state_machines import (
    PaymentScheduleType,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID

    from django.db.models import QuerySet


logger = logging.getLogger(__name__)


class LedgerStore:
    """
    ORM-backed store for booking payment records.

    Point lookups, due-schedule queries, the atomic schedule claim, and
    existence-guarded inserts. Callers own the surrounding transaction.
    """

    # ==========================================================================
    # Bookings
    # ==========================================================================

    def get_booking(self, booking_id: UUID | str) -> Booking:
        """
        Load a booking by id.

        Raises:
            BookingNotFoundError: No booking with that id
        """
        booking = Booking.objects.filter(id=booking_id).first()
        if booking is None:
            raise BookingNotFoundError(
                f"Booking {booking_id} not found",
                details={"booking_id": str(booking_id)},
            )
        return booking

    def save_booking(self, booking: Booking, fields: list[str]) -> None:
        booking.save(update_fields=[*fields, "updated_at"])

    # ==========================================================================
    # Payment Schedules
    # ==========================================================================

    def get_schedule(self, schedule_id: UUID | str) -> PaymentSchedule:
        schedule = (
            PaymentSchedule.objects.select_related("booking")
            .filter(id=schedule_id)
            .first()
        )
        if schedule is None:
            raise BookingNotFoundError(
                f"Payment schedule {schedule_id} not found",
                error_code="PAYMENT_SCHEDULE_NOT_FOUND",
                details={"schedule_id": str(schedule_id)},
            )
        return schedule

    def due_schedules(self, now: datetime, limit: int) -> list[PaymentSchedule]:
        """Scheduled remaining-balance rows due at ``now``, oldest first."""
        return list(PaymentSchedule.objects.due(now).select_related("booking")[:limit])

    def open_schedule(self, booking: Booking) -> PaymentSchedule | None:
        return PaymentSchedule.objects.open_for_booking(booking).first()

    def save_open_schedule(
        self,
        booking: Booking,
        scheduled_at: datetime,
        amount: Decimal,
        payment_intent_id: str,
    ) -> PaymentSchedule:
        """
        Create the booking's open schedule, or point the existing one at
        the given authorization and capture time.

        A schedule claimed by a running sweep is returned untouched; the
        sweep resolves it.
        """
        claimed = PaymentSchedule.objects.claimed_for_booking(booking).first()
        if claimed is not None:
            logger.info(
                "Schedule is being captured, leaving it unchanged",
                extra={
                    "booking_id": str(booking.id),
                    "schedule_id": str(claimed.id),
                    "payment_intent_id": payment_intent_id,
                },
            )
            return claimed

        schedule = self.open_schedule(booking)
        if schedule is None:
            return PaymentSchedule.objects.create(
                booking=booking,
                payment_type=PaymentScheduleType.REMAINING_BALANCE,
                scheduled_at=scheduled_at,
                amount=amount,
                stripe_payment_intent_id=payment_intent_id,
            )

        schedule.scheduled_at = scheduled_at
        schedule.amount = amount
        schedule.stripe_payment_intent_id = payment_intent_id
        schedule.save(
            update_fields=[
                "scheduled_at",
                "amount",
                "stripe_payment_intent_id",
                "updated_at",
            ]
        )
        return schedule

    def cancel_open_schedules(self, booking: Booking, reason: str) -> int:
        cancelled = 0
        for schedule in PaymentSchedule.objects.open_for_booking(booking):
            schedule.cancel(reason)
            schedule.save()
            cancelled += 1
        return cancelled

    def resolve_open_schedules(self, booking: Booking, when: datetime) -> int:
        """Mark scheduled rows processed once their leg is settled elsewhere."""
        resolved = 0
        for schedule in PaymentSchedule.objects.open_for_booking(booking):
            schedule.mark_processed(when)
            schedule.save()
            resolved += 1
        return resolved

    def claim_schedule(self, schedule_id: UUID | str, now: datetime) -> bool:
        """Conditional scheduled -> processing update; True for the winner only."""
        return PaymentSchedule.objects.claim(schedule_id, now)

    def release_stale_claims(self, now: datetime, timeout_minutes: int) -> int:
        released = PaymentSchedule.objects.release_stale_claims(
            now - timedelta(minutes=timeout_minutes)
        )
        if released:
            logger.warning(
                f"Released {released} abandoned schedule claims",
                extra={"released_count": released, "timeout_minutes": timeout_minutes},
            )
        return released

    def save_schedule(self, schedule: PaymentSchedule) -> None:
        schedule.save()

    # ==========================================================================
    # Financial Transactions
    # ==========================================================================

    def record_transaction(
        self,
        booking: Booking,
        amount: Decimal,
        stripe_transaction_id: str,
        transaction_type: str,
        leg: str,
        status: str = TransactionStatus.COMPLETED,
        description: str = "",
        processed_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> FinancialTransaction:
        return FinancialTransaction.objects.create(
            booking=booking,
            amount=amount,
            currency=booking_currency(),
            stripe_transaction_id=stripe_transaction_id,
            transaction_type=transaction_type,
            status=status,
            description=description,
            processed_at=processed_at if status == TransactionStatus.COMPLETED else None,
            metadata={"payment_type": leg, **(metadata or {})},
        )

    def has_transaction(
        self,
        booking: Booking,
        stripe_transaction_id: str,
        leg: str | None = None,
    ) -> bool:
        """One intent can pay both legs, so callers narrow by leg."""
        charges = FinancialTransaction.objects.filter(
            booking=booking,
            stripe_transaction_id=stripe_transaction_id,
            transaction_type=TransactionType.BOOKING_PAYMENT,
        )
        if leg is not None:
            charges = charges.filter(metadata__payment_type=leg)
        return charges.exists()

    def complete_pending_transaction(
        self,
        booking: Booking,
        stripe_transaction_id: str,
        when: datetime,
    ) -> int:
        """Flip the pending charge entry for a captured authorization."""
        completed = 0
        pending = FinancialTransaction.objects.filter(
            booking=booking,
            stripe_transaction_id=stripe_transaction_id,
            transaction_type=TransactionType.BOOKING_PAYMENT,
            status=TransactionStatus.PENDING,
        )
        for entry in pending:
            entry.mark_completed(when)
            completed += 1
        return completed

    def has_refund(self, booking: Booking, leg: str | None = None) -> bool:
        refunds = FinancialTransaction.objects.filter(
            booking=booking,
            transaction_type=TransactionType.REFUND,
        )
        if leg is not None:
            refunds = refunds.filter(metadata__payment_type=leg)
        return refunds.exists()

    def transactions_for(self, booking: Booking) -> QuerySet[FinancialTransaction]:
        return FinancialTransaction.objects.filter(booking=booking)

    # ==========================================================================
    # Business Payouts
    # ==========================================================================

    def create_payout_if_absent(
        self,
        booking: Booking,
        payment_intent_id: str,
        when: datetime,
    ) -> tuple[BusinessPayoutTransaction, bool]:
        """
        Record the business payout for a captured booking, at most once.

        Returns:
            (payout, created)
        """
        with transaction.atomic():
            existing = BusinessPayoutTransaction.objects.filter(booking=booking).first()
            if existing is not None:
                return existing, False

            payout = BusinessPayoutTransaction.objects.create(
                booking=booking,
                business_id=booking.business_id,
                payment_date=when,
                gross_payment_amount=booking.total_amount,
                platform_fee=booking.service_fee,
                net_payment_amount=booking.total_amount - booking.service_fee,
                tax_year=when.year,
                stripe_payment_intent_id=payment_intent_id,
                stripe_connect_account_id=booking.stripe_connect_account_id,
                booking_reference=booking.booking_reference,
                transaction_description=f"Payout for booking {booking.booking_reference or booking.id}",
            )

        logger.info(
            "Business payout recorded",
            extra={
                "booking_id": str(booking.id),
                "business_id": str(booking.business_id),
                "net_payment_amount": str(payout.net_payment_amount),
            },
        )
        return payout, True


def booking_currency() -> str:
    return getattr(settings, "BOOKING_PAYMENT_CURRENCY", "usd").upper()
