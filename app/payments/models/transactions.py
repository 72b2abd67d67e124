"""
Ledger records for booking money movements.

- FinancialTransaction: append-only entry per charge or refund
- BusinessPayoutTransaction: net amount owed to the business, once per booking

Neither model is a general ledger; they record what the payment engine did
so that finance and payout jobs can read it.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import (
    PayoutTransactionType,
    TransactionStatus,
    TransactionType,
)


class FinancialTransaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    Append-only record of one monetary event against a booking.

    The only permitted mutation after creation is status
    PENDING -> COMPLETED when the associated deferred capture finalizes
    (see mark_completed()).

    Fields:
        booking: Booking the money moved for
        amount: Amount in major currency units (always positive)
        currency: ISO 4217 code, upper case
        stripe_transaction_id: PaymentIntent or Refund ID
        transaction_type: booking_payment or refund
        status: pending or completed
        metadata: Leg ("payment_type"), actor and gateway details
    """

    booking = models.ForeignKey(
        "payments.Booking",
        on_delete=models.PROTECT,
        related_name="financial_transactions",
        help_text="Booking this entry belongs to",
    )

    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Amount in major currency units",
    )

    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code",
    )

    stripe_transaction_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Stripe PaymentIntent (pi_xxx) or Refund (re_xxx) ID",
    )

    transaction_type = models.CharField(
        max_length=30,
        choices=TransactionType.choices,
        help_text="Kind of monetary event",
    )

    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        default=TransactionStatus.COMPLETED,
        help_text="pending until a deferred capture finalizes",
    )

    description = models.CharField(
        max_length=255,
        blank=True,
        default="",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Leg, actor and gateway details",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the money movement completed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Financial Transaction"
        verbose_name_plural = "Financial Transactions"
        indexes = [
            models.Index(
                fields=["booking", "transaction_type"],
                name="fin_txn_booking_type_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gte=0),
                name="financial_transaction_amount_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"FinancialTransaction({self.transaction_type}, {self.amount} "
            f"{self.currency}, {self.status})"
        )

    def save(self, *args, **kwargs):
        """Reject in-place edits except the pending -> completed flip."""
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            allowed = {"status", "processed_at", "updated_at"}
            if update_fields is None or not set(update_fields) <= allowed:
                raise ValueError(
                    "FinancialTransaction is append-only; use mark_completed()"
                )
        super().save(*args, **kwargs)

    def mark_completed(self, when=None) -> None:
        """Flip a pending entry to completed."""
        if self.status == TransactionStatus.COMPLETED:
            return
        self.status = TransactionStatus.COMPLETED
        self.processed_at = when or timezone.now()
        self.save(update_fields=["status", "processed_at", "updated_at"])


class BusinessPayoutTransaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    Net amount owed to the business for one booking's captured payment.

    Created once per booking after the service amount is captured. The
    payment engine checks for an existing row before inserting; the
    unique booking constraint backs that check.
    """

    booking = models.OneToOneField(
        "payments.Booking",
        on_delete=models.PROTECT,
        related_name="payout_transaction",
        help_text="Booking this payout summarises",
    )

    business_id = models.UUIDField(
        db_index=True,
        help_text="Business receiving the payout",
    )

    payment_date = models.DateTimeField(
        default=timezone.now,
        help_text="When the customer's payment was captured",
    )

    gross_payment_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Total paid by the customer",
    )

    platform_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Platform fee retained",
    )

    net_payment_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Gross minus platform fee",
    )

    tax_year = models.PositiveIntegerField(
        help_text="Calendar year of the payment, for provider reporting",
    )

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="PaymentIntent that carried the service amount",
    )

    stripe_connect_account_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Business's Stripe Connect account",
    )

    booking_reference = models.CharField(
        max_length=50,
        null=True,
        blank=True,
    )

    transaction_description = models.CharField(
        max_length=255,
        blank=True,
        default="",
    )

    transaction_type = models.CharField(
        max_length=30,
        choices=PayoutTransactionType.choices,
        default=PayoutTransactionType.INITIAL_BOOKING,
    )

    class Meta:
        ordering = ["-payment_date"]
        verbose_name = "Business Payout Transaction"
        verbose_name_plural = "Business Payout Transactions"
        indexes = [
            models.Index(
                fields=["business_id", "tax_year"],
                name="payout_business_tax_year_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"BusinessPayoutTransaction({self.booking_id}, net {self.net_payment_amount})"
