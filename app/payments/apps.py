"""
Payments app configuration.

This app provides the booking payment lifecycle engine:
- Two-leg charging at acceptance (platform fee + service amount)
- Deferred capture of service-amount authorizations
- Decline and cancellation refund handling
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
