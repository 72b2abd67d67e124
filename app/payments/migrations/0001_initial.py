import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "booking_reference",
                    models.CharField(
                        blank=True,
                        help_text="Human-readable booking reference (e.g., BK-2024-0001)",
                        max_length=50,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "customer_id",
                    models.UUIDField(
                        db_index=True,
                        help_text="Customer profile that purchased the service",
                    ),
                ),
                (
                    "business_id",
                    models.UUIDField(
                        db_index=True,
                        help_text="Business providing the service and receiving the payout",
                    ),
                ),
                (
                    "stripe_customer_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Customer ID (cus_xxx) charged for both legs",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "stripe_payment_method_id",
                    models.CharField(
                        blank=True,
                        help_text="Saved Stripe PaymentMethod ID (pm_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "stripe_connect_account_id",
                    models.CharField(
                        blank=True,
                        help_text="Business's Stripe Connect account (acct_xxx) for payout records",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "total_amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Total price paid by the customer",
                        max_digits=10,
                    ),
                ),
                (
                    "service_fee",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Non-refundable platform fee included in the total",
                        max_digits=10,
                    ),
                ),
                (
                    "cancellation_fee",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Amount retained on cancellation",
                        max_digits=10,
                    ),
                ),
                (
                    "refund_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Amount returned to the customer on cancellation",
                        max_digits=10,
                    ),
                ),
                ("booking_date", models.DateField(help_text="Date of the service")),
                (
                    "start_time",
                    models.TimeField(
                        help_text="Start time of the service (project time zone)"
                    ),
                ),
                (
                    "booking_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("confirmed", "Confirmed"),
                            ("declined", "Declined"),
                            ("cancelled", "Cancelled"),
                            ("completed", "Completed"),
                            ("no_show", "No Show"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Lifecycle status driven by upstream booking events",
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("partial", "Partial"),
                            ("paid", "Paid"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Aggregate payment state across both legs",
                        max_length=20,
                    ),
                ),
                (
                    "service_fee_charged",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the platform fee leg has been charged",
                    ),
                ),
                (
                    "service_fee_charged_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the platform fee was charged",
                        null=True,
                    ),
                ),
                (
                    "remaining_balance_charged",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the service amount leg has been charged or captured",
                    ),
                ),
                (
                    "remaining_balance_charged_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the service amount was charged or captured",
                        null=True,
                    ),
                ),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Fee leg PaymentIntent (purchase-time intent until acceptance)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "stripe_service_amount_payment_intent_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Service amount leg PaymentIntent (charge or manual-capture hold)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "payment_attempts",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Definitively failed acceptance charge attempts (idempotency key seed)",
                    ),
                ),
                ("accepted_at", models.DateTimeField(blank=True, null=True)),
                (
                    "accepted_by",
                    models.CharField(
                        blank=True,
                        help_text="Actor who accepted the booking",
                        max_length=64,
                        null=True,
                    ),
                ),
                ("declined_at", models.DateTimeField(blank=True, null=True)),
                (
                    "declined_by",
                    models.CharField(
                        blank=True,
                        help_text="Actor who declined the booking",
                        max_length=64,
                        null=True,
                    ),
                ),
                ("decline_reason", models.TextField(blank=True, default="")),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "cancelled_by",
                    models.CharField(
                        blank=True,
                        help_text="Actor who cancelled the booking",
                        max_length=64,
                        null=True,
                    ),
                ),
                ("cancellation_reason", models.TextField(blank=True, default="")),
            ],
            options={
                "verbose_name": "Booking",
                "verbose_name_plural": "Bookings",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["business_id", "booking_status"],
                        name="booking_business_status_idx",
                    ),
                    models.Index(
                        fields=["booking_date", "start_time"],
                        name="booking_service_instant_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total_amount__gte", 0)),
                        name="booking_total_amount_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("service_fee__gte", 0),
                            ("service_fee__lte", models.F("total_amount")),
                        ),
                        name="booking_service_fee_within_total",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("remaining_balance_charged", False),
                            models.Q(("payment_status", "pending"), _negated=True),
                            _connector="OR",
                        ),
                        name="booking_charged_balance_not_pending",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentSchedule",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "payment_type",
                    models.CharField(
                        choices=[("remaining_balance", "Remaining Balance")],
                        default="remaining_balance",
                        help_text="Which leg this schedule captures",
                        max_length=30,
                    ),
                ),
                (
                    "scheduled_at",
                    models.DateTimeField(
                        db_index=True,
                        help_text="When the authorization becomes due for capture",
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount to capture in major currency units",
                        max_digits=10,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("scheduled", "Scheduled"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="scheduled",
                        help_text="Current state of the schedule (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        help_text="Manual-capture PaymentIntent (pi_xxx) to capture",
                        max_length=255,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Number of failed capture attempts",
                    ),
                ),
                (
                    "claimed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When a sweep claimed this row for processing",
                        null=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the capture was completed or reconciled",
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Most recent failure message",
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        help_text="Booking whose service amount this schedule captures",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_schedules",
                        to="payments.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Schedule",
                "verbose_name_plural": "Payment Schedules",
                "ordering": ["scheduled_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "payment_type", "scheduled_at"],
                        name="payment_schedule_due_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["scheduled", "processing"])),
                        fields=("booking", "payment_type"),
                        name="payment_schedule_one_open_per_booking",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="payment_schedule_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="FinancialTransaction",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount in major currency units",
                        max_digits=10,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="USD",
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "stripe_transaction_id",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe PaymentIntent (pi_xxx) or Refund (re_xxx) ID",
                        max_length=255,
                    ),
                ),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("booking_payment", "Booking Payment"),
                            ("refund", "Refund"),
                        ],
                        help_text="Kind of monetary event",
                        max_length=30,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("completed", "Completed")],
                        default="completed",
                        help_text="pending until a deferred capture finalizes",
                        max_length=20,
                    ),
                ),
                (
                    "description",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Leg, actor and gateway details",
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the money movement completed",
                        null=True,
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        help_text="Booking this entry belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="financial_transactions",
                        to="payments.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Financial Transaction",
                "verbose_name_plural": "Financial Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["booking", "transaction_type"],
                        name="fin_txn_booking_type_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gte", 0)),
                        name="financial_transaction_amount_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BusinessPayoutTransaction",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "business_id",
                    models.UUIDField(
                        db_index=True,
                        help_text="Business receiving the payout",
                    ),
                ),
                (
                    "payment_date",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the customer's payment was captured",
                    ),
                ),
                (
                    "gross_payment_amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Total paid by the customer",
                        max_digits=10,
                    ),
                ),
                (
                    "platform_fee",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Platform fee retained",
                        max_digits=10,
                    ),
                ),
                (
                    "net_payment_amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Gross minus platform fee",
                        max_digits=10,
                    ),
                ),
                (
                    "tax_year",
                    models.PositiveIntegerField(
                        help_text="Calendar year of the payment, for provider reporting"
                    ),
                ),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        blank=True,
                        help_text="PaymentIntent that carried the service amount",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "stripe_connect_account_id",
                    models.CharField(
                        blank=True,
                        help_text="Business's Stripe Connect account",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "booking_reference",
                    models.CharField(blank=True, max_length=50, null=True),
                ),
                (
                    "transaction_description",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[("initial_booking", "Initial Booking")],
                        default="initial_booking",
                        max_length=30,
                    ),
                ),
                (
                    "booking",
                    models.OneToOneField(
                        help_text="Booking this payout summarises",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_transaction",
                        to="payments.booking",
                    ),
                ),
            ],
            options={
                "verbose_name": "Business Payout Transaction",
                "verbose_name_plural": "Business Payout Transactions",
                "ordering": ["-payment_date"],
                "indexes": [
                    models.Index(
                        fields=["business_id", "tax_year"],
                        name="payout_business_tax_year_idx",
                    ),
                ],
            },
        ),
    ]
