"""
PaymentSchedule model for deferred capture of the service-amount leg.

A schedule row is written at acceptance when the service amount was held
as a manual-capture authorization. The capture sweeper claims due rows and
captures them.

Usage:
    from payments.models import PaymentSchedule

    due = PaymentSchedule.objects.due(now)[:100]
    if PaymentSchedule.objects.claim(schedule.pk, now):
        ...  # this worker owns the row
"""

from __future__ import annotations

from datetime import datetime

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import PaymentScheduleStatus, PaymentScheduleType


class PaymentScheduleQuerySet(models.QuerySet):
    """QuerySet helpers for selecting and claiming schedules."""

    def due(self, now: datetime) -> PaymentScheduleQuerySet:
        """Open remaining-balance schedules whose capture time has passed."""
        return self.filter(
            status=PaymentScheduleStatus.SCHEDULED,
            payment_type=PaymentScheduleType.REMAINING_BALANCE,
            scheduled_at__lte=now,
        ).order_by("scheduled_at")

    def open_for_booking(self, booking) -> PaymentScheduleQuerySet:
        return self.filter(
            booking=booking,
            payment_type=PaymentScheduleType.REMAINING_BALANCE,
            status=PaymentScheduleStatus.SCHEDULED,
        )

    def claimed_for_booking(self, booking) -> PaymentScheduleQuerySet:
        """Schedules a sweep is capturing right now."""
        return self.filter(
            booking=booking,
            payment_type=PaymentScheduleType.REMAINING_BALANCE,
            status=PaymentScheduleStatus.PROCESSING,
        )

    def claim(self, pk, now: datetime) -> bool:
        """
        Atomically move one schedule from scheduled to processing.

        A single conditional UPDATE: only one concurrent caller can observe
        the row as scheduled, so only one caller gets True.
        """
        updated = self.filter(pk=pk, status=PaymentScheduleStatus.SCHEDULED).update(
            status=PaymentScheduleStatus.PROCESSING,
            claimed_at=now,
            updated_at=timezone.now(),
        )
        return updated == 1

    def release_stale_claims(self, older_than: datetime) -> int:
        """Return abandoned processing claims to scheduled."""
        return self.filter(
            status=PaymentScheduleStatus.PROCESSING,
            claimed_at__lt=older_than,
        ).update(
            status=PaymentScheduleStatus.SCHEDULED,
            claimed_at=None,
            updated_at=timezone.now(),
        )


class PaymentSchedule(UUIDPrimaryKeyMixin, BaseModel):
    """
    Deferred capture obligation for a booking's service-amount leg.

    State Flow:
        SCHEDULED -> PROCESSING -> PROCESSED
        SCHEDULED -> PROCESSING -> FAILED
        PROCESSING -> SCHEDULED (unknown outcome / abandoned claim)
        SCHEDULED -> CANCELLED (booking declined or cancelled)
        FAILED -> SCHEDULED (manual re-queue)

    Fields:
        booking: Booking whose service amount is captured
        payment_type: Always remaining_balance for this engine
        scheduled_at: Capture-due instant (service instant minus cutoff)
        amount: Service amount to capture
        status: Current FSM state
        stripe_payment_intent_id: Authorization to capture
        retry_count: Failed attempts so far
        claimed_at: When the current sweep claimed the row
        processed_at: When the schedule reached a terminal success
        failure_reason: Last failure message
    """

    booking = models.ForeignKey(
        "payments.Booking",
        on_delete=models.PROTECT,
        related_name="payment_schedules",
        help_text="Booking whose service amount this schedule captures",
    )

    payment_type = models.CharField(
        max_length=30,
        choices=PaymentScheduleType.choices,
        default=PaymentScheduleType.REMAINING_BALANCE,
        help_text="Which leg this schedule captures",
    )

    scheduled_at = models.DateTimeField(
        db_index=True,
        help_text="When the authorization becomes due for capture",
    )

    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Amount to capture in major currency units",
    )

    status = FSMField(
        default=PaymentScheduleStatus.SCHEDULED,
        choices=PaymentScheduleStatus.choices,
        db_index=True,
        help_text="Current state of the schedule (managed by FSM)",
    )

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        help_text="Manual-capture PaymentIntent (pi_xxx) to capture",
    )

    retry_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of failed capture attempts",
    )

    claimed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a sweep claimed this row for processing",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the capture was completed or reconciled",
    )

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Most recent failure message",
    )

    objects = PaymentScheduleQuerySet.as_manager()

    class Meta:
        ordering = ["scheduled_at"]
        verbose_name = "Payment Schedule"
        verbose_name_plural = "Payment Schedules"
        indexes = [
            models.Index(
                fields=["status", "payment_type", "scheduled_at"],
                name="payment_schedule_due_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "payment_type"],
                condition=models.Q(
                    status__in=[
                        PaymentScheduleStatus.SCHEDULED,
                        PaymentScheduleStatus.PROCESSING,
                    ]
                ),
                name="payment_schedule_one_open_per_booking",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_schedule_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentSchedule({self.id}, {self.status}, due {self.scheduled_at:%Y-%m-%d %H:%M})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PaymentScheduleStatus.SCHEDULED, PaymentScheduleStatus.PROCESSING],
        target=PaymentScheduleStatus.PROCESSED,
    )
    def mark_processed(self, when: datetime | None = None):
        """Capture finished, or the leg was found already resolved."""
        self.processed_at = when or timezone.now()
        self.claimed_at = None
        self.failure_reason = ""

    @transition(
        field=status,
        source=[PaymentScheduleStatus.SCHEDULED, PaymentScheduleStatus.PROCESSING],
        target=PaymentScheduleStatus.FAILED,
    )
    def mark_failed(self, reason: str):
        """Capture failed definitively for this attempt."""
        self.retry_count += 1
        self.failure_reason = reason
        self.claimed_at = None

    @transition(
        field=status,
        source=PaymentScheduleStatus.PROCESSING,
        target=PaymentScheduleStatus.SCHEDULED,
    )
    def release_claim(self, reason: str):
        """
        Give the row back after an unknown gateway outcome.

        The next sweep reads the authorization's state before acting.
        """
        self.retry_count += 1
        self.failure_reason = reason
        self.claimed_at = None

    @transition(
        field=status,
        source=PaymentScheduleStatus.SCHEDULED,
        target=PaymentScheduleStatus.CANCELLED,
    )
    def cancel(self, reason: str = ""):
        """Booking was declined or cancelled before capture."""
        self.failure_reason = reason

    @transition(
        field=status,
        source=PaymentScheduleStatus.FAILED,
        target=PaymentScheduleStatus.SCHEDULED,
    )
    def requeue(self):
        """Operator decided to retry a failed capture."""
        self.failure_reason = ""
