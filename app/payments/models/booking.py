"""
Booking model carrying the two-leg payment state of a scheduled service.

A booking is created at purchase time by the booking flow (outside this
app) with a purchase-time payment intent. The payment orchestrator then
mutates it on acceptance, decline and cancellation.

Usage:
    from payments.models import Booking

    booking = Booking.objects.get(id=booking_id)
    booking.service_amount          # Decimal("105.60")
    booking.hours_until_service()   # 48.0
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import BookingPaymentStatus, BookingStatus


class Booking(UUIDPrimaryKeyMixin, BaseModel):
    """
    One scheduled service purchase and its payment legs.

    Leg model:
        The total is split into a non-refundable platform fee
        (service_fee) and the service amount (total_amount - service_fee).
        Each leg has its own gateway payment intent.

    Invariants:
        - service_fee + service_amount == total_amount
        - service_fee_charged only reverts on decline or pre-acceptance cancel
        - remaining_balance_charged implies payment_status != pending

    Fields:
        customer_id/business_id: External identifiers of the two parties
        stripe_customer_id/stripe_payment_method_id: Saved payment references
        total_amount/service_fee: Money in major currency units
        booking_date/start_time: Together define the service instant
        booking_status/payment_status: Lifecycle and aggregate payment state
        *_charged/*_charged_at: Per-leg charge flags
        cancellation_fee/refund_amount: Outcome of a cancellation
        stripe_payment_intent_id: Fee leg (initially the purchase intent)
        stripe_service_amount_payment_intent_id: Service-amount leg
    """

    # ==========================================================================
    # Parties & References
    # ==========================================================================

    booking_reference = models.CharField(
        max_length=50,
        unique=True,
        null=True,
        blank=True,
        help_text="Human-readable booking reference (e.g., BK-2024-0001)",
    )

    customer_id = models.UUIDField(
        db_index=True,
        help_text="Customer profile that purchased the service",
    )

    business_id = models.UUIDField(
        db_index=True,
        help_text="Business providing the service and receiving the payout",
    )

    stripe_customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Customer ID (cus_xxx) charged for both legs",
    )

    stripe_payment_method_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Saved Stripe PaymentMethod ID (pm_xxx)",
    )

    stripe_connect_account_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Business's Stripe Connect account (acct_xxx) for payout records",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    total_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Total price paid by the customer",
    )

    service_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Non-refundable platform fee included in the total",
    )

    cancellation_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Amount retained on cancellation",
    )

    refund_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Amount returned to the customer on cancellation",
    )

    # ==========================================================================
    # Schedule
    # ==========================================================================

    booking_date = models.DateField(
        help_text="Date of the service",
    )

    start_time = models.TimeField(
        help_text="Start time of the service (project time zone)",
    )

    # ==========================================================================
    # Status
    # ==========================================================================

    booking_status = models.CharField(
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING,
        db_index=True,
        help_text="Lifecycle status driven by upstream booking events",
    )

    payment_status = models.CharField(
        max_length=20,
        choices=BookingPaymentStatus.choices,
        default=BookingPaymentStatus.PENDING,
        db_index=True,
        help_text="Aggregate payment state across both legs",
    )

    # ==========================================================================
    # Leg Flags
    # ==========================================================================

    service_fee_charged = models.BooleanField(
        default=False,
        help_text="Whether the platform fee leg has been charged",
    )

    service_fee_charged_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the platform fee was charged",
    )

    remaining_balance_charged = models.BooleanField(
        default=False,
        help_text="Whether the service amount leg has been charged or captured",
    )

    remaining_balance_charged_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the service amount was charged or captured",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Fee leg PaymentIntent (purchase-time intent until acceptance)",
    )

    stripe_service_amount_payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Service amount leg PaymentIntent (charge or manual-capture hold)",
    )

    payment_attempts = models.PositiveIntegerField(
        default=0,
        help_text="Definitively failed acceptance charge attempts (idempotency key seed)",
    )

    # ==========================================================================
    # Audit
    # ==========================================================================

    accepted_at = models.DateTimeField(null=True, blank=True)
    accepted_by = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Actor who accepted the booking",
    )

    declined_at = models.DateTimeField(null=True, blank=True)
    declined_by = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Actor who declined the booking",
    )
    decline_reason = models.TextField(blank=True, default="")

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Actor who cancelled the booking",
    )
    cancellation_reason = models.TextField(blank=True, default="")

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Booking"
        verbose_name_plural = "Bookings"
        indexes = [
            models.Index(
                fields=["business_id", "booking_status"],
                name="booking_business_status_idx",
            ),
            models.Index(
                fields=["booking_date", "start_time"],
                name="booking_service_instant_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gte=0),
                name="booking_total_amount_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(service_fee__gte=0)
                & models.Q(service_fee__lte=models.F("total_amount")),
                name="booking_service_fee_within_total",
            ),
            models.CheckConstraint(
                condition=models.Q(remaining_balance_charged=False)
                | ~models.Q(payment_status=BookingPaymentStatus.PENDING),
                name="booking_charged_balance_not_pending",
            ),
        ]

    def __str__(self) -> str:
        reference = self.booking_reference or self.id
        return f"Booking({reference}, {self.booking_status}, {self.total_amount})"

    @property
    def service_amount(self) -> Decimal:
        """Service-amount leg: everything except the platform fee."""
        return self.total_amount - self.service_fee

    @property
    def service_instant(self) -> datetime:
        """Aware datetime at which the service starts."""
        naive = datetime.combine(self.booking_date, self.start_time)
        return timezone.make_aware(naive, timezone.get_default_timezone())

    @property
    def was_accepted(self) -> bool:
        """Whether the booking ever reached acceptance."""
        return self.service_fee_charged or self.booking_status in (
            BookingStatus.CONFIRMED,
            BookingStatus.COMPLETED,
        )

    def hours_until_service(self, now: datetime | None = None) -> float:
        """Hours from ``now`` to the service instant (negative if past)."""
        now = now or timezone.now()
        return (self.service_instant - now).total_seconds() / 3600
