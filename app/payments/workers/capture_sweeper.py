"""
Capture sweeper for deferred service-amount authorizations.

Bookings accepted more than the capture cutoff ahead of the service hold
the service amount as a manual-capture authorization with a
PaymentSchedule. This worker captures those authorizations once they are
due.

Tasks:
- capture_due_payments: Periodic task (celery-beat, every 15 minutes)

The same sweep is reachable over HTTP for external cron triggers (see
payments.views.CaptureSweepView).

Usage:
    from payments.workers import CaptureSweeper

    summary = CaptureSweeper().sweep_due_captures()
    # {"total": 3, "captured": 2, "failed": 0, "skipped": 1, "results": [...]}

    # Or via Celery
    capture_due_payments.delay()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from celery import shared_task
from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from payments.adapters import IdempotencyKeyGenerator
from payments.exceptions import GatewayError, LockAcquisitionError
from payments.locks import booking_payment_lock
from payments.services import BookingPaymentOrchestrator, LedgerStore
from payments.state_machines import (
    DEAD_AUTHORIZATION_STATUSES,
    BookingStatus,
    GatewayIntentStatus,
    PaymentScheduleStatus,
)

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from payments.adapters import PaymentGateway
    from payments.models import PaymentSchedule

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum schedules processed per sweep
BATCH_SIZE = 100

# Minutes after which a processing claim is considered abandoned
CLAIM_TIMEOUT_MINUTES = 15

CAPTURED = "captured"
FAILED = "failed"
DEFERRED = "deferred"
SKIPPED = "skipped"


# =============================================================================
# Sweeper
# =============================================================================


class CaptureSweeper:
    """
    Claims due payment schedules and captures their authorizations.

    Each row is claimed with a conditional scheduled -> processing update
    before any gateway call; a sweep that loses the claim leaves the row
    alone. Rows are processed under the booking's payment lock, so a
    capture never overlaps an orchestrator operation on the same booking.
    Failures are isolated per row.

    Args:
        gateway: PaymentGateway (defaults to the orchestrator's gateway)
        orchestrator: Provides the capture primitive
        ledger: LedgerStore

    Raises:
        ConfigError: On construction, when defaulting to Stripe without
            a configured secret key
    """

    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        orchestrator: BookingPaymentOrchestrator | None = None,
        ledger: LedgerStore | None = None,
    ) -> None:
        self.ledger = ledger or LedgerStore()
        self.orchestrator = orchestrator or BookingPaymentOrchestrator(
            gateway=gateway, ledger=self.ledger
        )
        self.gateway = gateway or self.orchestrator.gateway

    def sweep_due_captures(
        self,
        now: datetime | None = None,
        batch_limit: int | None = None,
    ) -> dict[str, Any]:
        """
        Capture every due schedule in one batch.

        Args:
            now: Override of the current time (defaults to timezone.now())
            batch_limit: Maximum rows to process

        Returns:
            {"total", "captured", "failed", "skipped", "results"} where each
            result is {"schedule_id", "booking_id", "status", "error"}
        """
        now = now or timezone.now()
        batch_limit = batch_limit or getattr(settings, "CAPTURE_SWEEP_BATCH_LIMIT", BATCH_SIZE)

        self.ledger.release_stale_claims(
            now,
            getattr(settings, "CAPTURE_CLAIM_TIMEOUT_MINUTES", CLAIM_TIMEOUT_MINUTES),
        )

        due = self.ledger.due_schedules(now, batch_limit)
        logger.info(
            f"Starting capture sweep: {len(due)} due schedules",
            extra={"due_count": len(due), "now": now.isoformat(), "batch_limit": batch_limit},
        )

        summary: dict[str, Any] = {
            "total": len(due),
            "captured": 0,
            "failed": 0,
            "skipped": 0,
            "results": [],
        }

        for schedule in due:
            try:
                result = self._process_locked(schedule, now)
            except Exception as e:
                logger.error(
                    f"Unexpected error sweeping schedule: {e}",
                    extra={"schedule_id": str(schedule.id), "booking_id": str(schedule.booking_id)},
                    exc_info=True,
                )
                result = self._release(schedule, f"Unexpected error: {e}")

            if result["status"] == CAPTURED:
                summary["captured"] += 1
            elif result["status"] == SKIPPED:
                summary["skipped"] += 1
            else:
                summary["failed"] += 1
            summary["results"].append(result)

        logger.info(
            f"Capture sweep complete: captured {summary['captured']}, "
            f"failed {summary['failed']}, skipped {summary['skipped']}",
            extra={key: summary[key] for key in ("total", "captured", "failed", "skipped")},
        )
        return summary

    def _process_locked(self, schedule: PaymentSchedule, now: datetime) -> dict[str, Any]:
        """Process one row under the booking's payment lock."""
        try:
            with booking_payment_lock(schedule.booking_id):
                return self._process_schedule(schedule, now)
        except LockAcquisitionError:
            logger.info(
                "Booking payment lock held elsewhere, leaving schedule for the next sweep",
                extra={"schedule_id": str(schedule.id), "booking_id": str(schedule.booking_id)},
            )
            return _result(schedule, SKIPPED, "booking_locked")

    def _process_schedule(self, schedule: PaymentSchedule, now: datetime) -> dict[str, Any]:
        # The batch was read before the lock was taken
        schedule = self.ledger.get_schedule(schedule.id)
        booking = schedule.booking
        log_context = {"schedule_id": str(schedule.id), "booking_id": str(booking.id)}

        if schedule.status != PaymentScheduleStatus.SCHEDULED:
            logger.info(
                "Schedule left the scheduled state before the sweep reached it",
                extra={**log_context, "status": schedule.status},
            )
            return _result(schedule, SKIPPED, "not_scheduled")

        if booking.booking_status != BookingStatus.CONFIRMED:
            return self._skip_unconfirmed(schedule, booking.booking_status, log_context)

        if not self.ledger.claim_schedule(schedule.id, now):
            logger.info("Schedule claimed by another sweep", extra=log_context)
            return _result(schedule, SKIPPED, "claim_lost")

        # Reload with the claimed state for the FSM transitions below
        schedule = self.ledger.get_schedule(schedule.id)
        booking = schedule.booking

        if booking.remaining_balance_charged:
            self._finish(schedule, now)
            logger.info("Service amount already charged, schedule closed", extra=log_context)
            return _result(schedule, SKIPPED, "already_resolved")

        try:
            intent = self.gateway.retrieve(schedule.stripe_payment_intent_id)
        except GatewayError as e:
            return self._gateway_failure(schedule, e, log_context)

        if intent.status == GatewayIntentStatus.SUCCEEDED:
            self.orchestrator.settle_service_leg(booking, intent, now)
            self._finish(schedule, now)
            logger.info("Authorization already captured, reconciled", extra=log_context)
            return _result(schedule, SKIPPED, "already_captured")

        if intent.status in DEAD_AUTHORIZATION_STATUSES:
            reason = f"Authorization is {intent.status}"
            schedule.mark_failed(reason)
            self.ledger.save_schedule(schedule)
            logger.warning(reason, extra={**log_context, "status": intent.status})
            return _result(schedule, FAILED, reason)

        idempotency_key = IdempotencyKeyGenerator.generate(
            "capture", schedule.id, attempt=schedule.retry_count + 1
        )
        try:
            captured = self.orchestrator.capture_service_leg(
                booking,
                schedule.stripe_payment_intent_id,
                idempotency_key=idempotency_key,
                now=now,
            )
        except GatewayError as e:
            return self._gateway_failure(schedule, e, log_context)

        self._finish(schedule, now)
        logger.info(
            "Service amount captured",
            extra={**log_context, "payment_intent_id": captured.id},
        )
        return _result(schedule, CAPTURED)

    def _skip_unconfirmed(
        self,
        schedule: PaymentSchedule,
        booking_status: str,
        log_context: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Take a schedule for a booking that is no longer capturable out of
        the due queue.

        Declined and cancelled bookings cancel the schedule. Any other
        status fails it, so an operator can re-queue the capture from the
        admin once the booking is sorted out.
        """
        reason = f"Booking is {booking_status}"
        if booking_status in (BookingStatus.DECLINED, BookingStatus.CANCELLED):
            schedule.cancel(reason)
        else:
            schedule.mark_failed(reason)
        self.ledger.save_schedule(schedule)

        logger.info(
            "Skipping schedule for unconfirmed booking",
            extra={**log_context, "booking_status": booking_status, "status": schedule.status},
        )
        return _result(schedule, SKIPPED, "booking_not_confirmed")

    def _finish(self, schedule: PaymentSchedule, now: datetime) -> None:
        schedule.mark_processed(now)
        self.ledger.save_schedule(schedule)

    def _gateway_failure(
        self,
        schedule: PaymentSchedule,
        error: GatewayError,
        log_context: dict[str, Any],
    ) -> dict[str, Any]:
        log_context = {**log_context, "gateway_code": error.gateway_code}

        if error.outcome_unknown:
            logger.warning(
                f"Capture outcome unknown, releasing claim: {error.message}",
                extra=log_context,
            )
            return self._release(schedule, error.message)

        schedule.mark_failed(error.message)
        self.ledger.save_schedule(schedule)
        logger.error(f"Capture failed: {error.message}", extra=log_context)
        return _result(schedule, FAILED, error.message)

    def _release(self, schedule: PaymentSchedule, reason: str) -> dict[str, Any]:
        """Hand the row back to the next sweep, which reads gateway state first."""
        schedule = self.ledger.get_schedule(schedule.id)
        if schedule.status != PaymentScheduleStatus.PROCESSING:
            return _result(schedule, FAILED, reason)
        schedule.release_claim(reason)
        self.ledger.save_schedule(schedule)
        return _result(schedule, DEFERRED, reason)


def _result(
    schedule: PaymentSchedule,
    status: str,
    error: str | None = None,
) -> dict[str, Any]:
    return {
        "schedule_id": str(schedule.id),
        "booking_id": str(schedule.booking_id),
        "status": status,
        "error": error,
    }


# =============================================================================
# Periodic Task
# =============================================================================


@shared_task(bind=True, acks_late=True)
def capture_due_payments(
    self,
    now: str | None = None,
    batch_limit: int | None = None,
) -> dict:
    """
    Capture due service-amount authorizations.

    Runs every 15 minutes via celery-beat. Safe to run concurrently and
    repeatedly: rows are claimed before capture, and processed rows are
    never selected again.

    Args:
        now: Optional ISO-8601 override of the current time
        batch_limit: Optional maximum rows to process
    """
    sweep_now = parse_sweep_time(now)
    summary = CaptureSweeper().sweep_due_captures(now=sweep_now, batch_limit=batch_limit)
    summary.pop("results", None)
    return summary


def parse_sweep_time(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 ``now`` override; naive values use the project time zone.

    Raises:
        ValueError: Value is not a valid ISO-8601 datetime
    """
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid datetime: {value!r}")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_default_timezone())
    return parsed
