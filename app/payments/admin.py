"""
Payment admin configuration.

Registers the booking payment models with the Django admin. Payment state
changes go through BookingPaymentOrchestrator and the capture sweeper;
the admin is read-mostly, with one operator action to re-queue failed
capture schedules.
"""

from django.contrib import admin

from payments.models import (
    Booking,
    BusinessPayoutTransaction,
    FinancialTransaction,
    PaymentSchedule,
)
from payments.state_machines import PaymentScheduleStatus

__all__ = [
    "BookingAdmin",
    "PaymentScheduleAdmin",
    "FinancialTransactionAdmin",
    "BusinessPayoutTransactionAdmin",
]


class PaymentScheduleInline(admin.TabularInline):
    model = PaymentSchedule
    extra = 0
    can_delete = False
    fields = ["status", "scheduled_at", "amount", "retry_count", "failure_reason"]
    readonly_fields = fields


class FinancialTransactionInline(admin.TabularInline):
    model = FinancialTransaction
    extra = 0
    can_delete = False
    fields = ["transaction_type", "status", "amount", "currency", "stripe_transaction_id"]
    readonly_fields = fields


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """
    Admin configuration for Booking.

    Provides visibility into both payment legs and cancellation outcomes.
    """

    list_display = [
        "id",
        "booking_reference",
        "booking_status",
        "payment_status",
        "total_amount",
        "service_fee",
        "booking_date",
        "start_time",
        "created_at",
    ]
    list_filter = ["booking_status", "payment_status", "booking_date"]
    search_fields = [
        "id",
        "booking_reference",
        "stripe_payment_intent_id",
        "stripe_service_amount_payment_intent_id",
    ]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "service_fee_charged",
        "service_fee_charged_at",
        "remaining_balance_charged",
        "remaining_balance_charged_at",
        "payment_status",
        "cancellation_fee",
        "refund_amount",
        "stripe_payment_intent_id",
        "stripe_service_amount_payment_intent_id",
        "payment_attempts",
        "accepted_at",
        "accepted_by",
        "declined_at",
        "declined_by",
        "cancelled_at",
        "cancelled_by",
    ]
    date_hierarchy = "booking_date"
    ordering = ["-created_at"]
    inlines = [PaymentScheduleInline, FinancialTransactionInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "booking_reference", "booking_status"),
            },
        ),
        (
            "Parties",
            {
                "fields": (
                    "customer_id",
                    "business_id",
                    "stripe_customer_id",
                    "stripe_payment_method_id",
                    "stripe_connect_account_id",
                ),
            },
        ),
        (
            "Service",
            {
                "fields": ("booking_date", "start_time"),
            },
        ),
        (
            "Amounts",
            {
                "fields": (
                    "total_amount",
                    "service_fee",
                    "cancellation_fee",
                    "refund_amount",
                ),
            },
        ),
        (
            "Payment Legs",
            {
                "fields": (
                    "payment_status",
                    "service_fee_charged",
                    "service_fee_charged_at",
                    "stripe_payment_intent_id",
                    "remaining_balance_charged",
                    "remaining_balance_charged_at",
                    "stripe_service_amount_payment_intent_id",
                    "payment_attempts",
                ),
            },
        ),
        (
            "Audit",
            {
                "fields": (
                    "accepted_at",
                    "accepted_by",
                    "declined_at",
                    "declined_by",
                    "decline_reason",
                    "cancelled_at",
                    "cancelled_by",
                    "cancellation_reason",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for bookings (audit trail)."""
        return False


@admin.register(PaymentSchedule)
class PaymentScheduleAdmin(admin.ModelAdmin):
    """
    Admin configuration for PaymentSchedule.

    Failed schedules are never retried automatically; an operator
    re-queues them after checking the authorization.
    """

    list_display = [
        "id",
        "booking",
        "status",
        "scheduled_at",
        "amount",
        "retry_count",
        "processed_at",
    ]
    list_filter = ["status", "payment_type"]
    search_fields = ["id", "booking__id", "booking__booking_reference", "stripe_payment_intent_id"]
    readonly_fields = [
        "id",
        "booking",
        "payment_type",
        "status",
        "stripe_payment_intent_id",
        "retry_count",
        "claimed_at",
        "processed_at",
        "failure_reason",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "scheduled_at"
    ordering = ["scheduled_at"]
    actions = ["requeue_failed"]

    @admin.action(description="Re-queue failed schedules")
    def requeue_failed(self, request, queryset):
        """Move failed schedules back to scheduled for the next sweep."""
        count = 0
        for schedule in queryset.filter(status=PaymentScheduleStatus.FAILED):
            schedule.requeue()
            schedule.save()
            count += 1
        self.message_user(request, f"Re-queued {count} failed schedules.")

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(FinancialTransaction)
class FinancialTransactionAdmin(admin.ModelAdmin):
    """Read-only view of the append-only transaction log."""

    list_display = [
        "id",
        "booking",
        "transaction_type",
        "status",
        "amount",
        "currency",
        "stripe_transaction_id",
        "created_at",
    ]
    list_filter = ["transaction_type", "status", "currency"]
    search_fields = ["id", "booking__id", "stripe_transaction_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(BusinessPayoutTransaction)
class BusinessPayoutTransactionAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "booking",
        "business_id",
        "gross_payment_amount",
        "platform_fee",
        "net_payment_amount",
        "tax_year",
        "payment_date",
    ]
    list_filter = ["tax_year", "transaction_type"]
    search_fields = ["id", "booking__id", "business_id", "booking_reference"]
    ordering = ["-payment_date"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
