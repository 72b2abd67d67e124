"""
DRF serializers for payments app.

This module provides serializers for:
- Booking decline / cancellation requests
- Orchestrator result payloads (OpenAPI documentation)
- Capture sweep trigger parameters and summary

Related files:
    - views.py: Booking payment and capture sweep views
    - services/booking_payments.py: Result payload shape
"""

from __future__ import annotations

from rest_framework import serializers


class BookingReasonSerializer(serializers.Serializer):
    """Optional free-text reason for a decline or cancellation."""

    reason = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        max_length=1000,
    )


class BookingPaymentSummarySerializer(serializers.Serializer):
    """Payment state of a booking after an orchestrator operation."""

    booking_id = serializers.UUIDField()
    booking_status = serializers.CharField()
    payment_status = serializers.CharField()
    service_fee_charged = serializers.BooleanField()
    remaining_balance_charged = serializers.BooleanField()
    service_fee = serializers.DecimalField(max_digits=10, decimal_places=2)
    service_amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    cancellation_fee = serializers.DecimalField(max_digits=10, decimal_places=2)
    refund_amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    stripe_payment_intent_id = serializers.CharField(allow_null=True)
    stripe_service_amount_payment_intent_id = serializers.CharField(allow_null=True)
    mode = serializers.CharField(required=False)
    schedule_id = serializers.UUIDField(required=False)
    scheduled_at = serializers.DateTimeField(required=False)


class BookingPaymentResponseSerializer(serializers.Serializer):
    """Envelope returned by the booking payment endpoints."""

    success = serializers.BooleanField()
    data = BookingPaymentSummarySerializer(required=False)
    error = serializers.CharField(required=False)
    error_code = serializers.CharField(required=False)
    errors = serializers.DictField(
        child=serializers.ListField(child=serializers.CharField()),
        required=False,
    )


class CaptureSweepParamsSerializer(serializers.Serializer):
    """
    Capture sweep trigger parameters.

    Fields:
        now: Override of the current time (ISO-8601)
        limit: Maximum schedules to process in this sweep
    """

    now = serializers.DateTimeField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=1000)


class CaptureSweepResultSerializer(serializers.Serializer):
    schedule_id = serializers.UUIDField()
    booking_id = serializers.UUIDField()
    status = serializers.ChoiceField(choices=["captured", "failed", "deferred", "skipped"])
    error = serializers.CharField(allow_null=True)


class CaptureSweepSummarySerializer(serializers.Serializer):
    total = serializers.IntegerField()
    captured = serializers.IntegerField()
    failed = serializers.IntegerField()
    skipped = serializers.IntegerField()
    results = CaptureSweepResultSerializer(many=True)
