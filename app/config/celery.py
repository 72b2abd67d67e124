"""
Celery configuration for the Django application.

Celery runs the periodic capture sweep that charges held service amounts
once their booking is within the capture cutoff. The schedule itself is
stored in the database (django-celery-beat's DatabaseScheduler).

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all registered Django apps.

Usage:
    # Trigger a sweep by hand:
    from payments.tasks import capture_due_payments
    capture_due_payments.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Create Celery application instance
app = Celery("config")

# Load configuration from Django settings
# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
