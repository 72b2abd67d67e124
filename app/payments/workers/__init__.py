"""
Workers for async payment processing.

This module contains the Celery task that captures deferred service-amount
authorizations once they fall inside the capture cutoff.

Usage:
    from payments.workers import CaptureSweeper, capture_due_payments

    # Typically called via celery-beat schedule
    capture_due_payments.delay()

    # Or synchronously, e.g. from the cron endpoint
    summary = CaptureSweeper().sweep_due_captures(now=now, batch_limit=50)
"""

from payments.workers.capture_sweeper import (
    CaptureSweeper,
    capture_due_payments,
    parse_sweep_time,
)

__all__ = [
    "CaptureSweeper",
    "capture_due_payments",
    "parse_sweep_time",
]
