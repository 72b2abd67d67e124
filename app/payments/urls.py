"""
URL configuration for the payments app.

Routes:
    - POST bookings/<uuid>/accept/ - Accept booking (payment side)
    - POST bookings/<uuid>/decline/ - Decline booking
    - POST bookings/<uuid>/cancel/ - Cancel booking
    - GET|POST captures/sweep/ - Cron-triggered capture sweep

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import (
    AcceptBookingView,
    CancelBookingView,
    CaptureSweepView,
    DeclineBookingView,
)

app_name = "payments"

urlpatterns = [
    # Booking lifecycle
    path(
        "bookings/<uuid:booking_id>/accept/",
        AcceptBookingView.as_view(),
        name="booking_accept",
    ),
    path(
        "bookings/<uuid:booking_id>/decline/",
        DeclineBookingView.as_view(),
        name="booking_decline",
    ),
    path(
        "bookings/<uuid:booking_id>/cancel/",
        CancelBookingView.as_view(),
        name="booking_cancel",
    ),
    # Scheduled captures
    path("captures/sweep/", CaptureSweepView.as_view(), name="capture_sweep"),
]
