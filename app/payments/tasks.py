"""
Celery tasks for booking payments.

Celery autodiscovers this module; the task bodies live with their workers.

Tasks:
- capture_due_payments: Capture due service-amount authorizations
  (celery-beat every 15 minutes, see migration 0002)

Usage:
    from payments.tasks import capture_due_payments

    capture_due_payments.delay()
    capture_due_payments.delay(now="2026-03-01T09:00:00+00:00", batch_limit=50)
"""

from payments.workers import capture_due_payments  # noqa: F401

__all__ = ["capture_due_payments"]
