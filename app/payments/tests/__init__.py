"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Booking, PaymentSchedule and ledger record tests
- test_locks.py: Redis-backed booking payment lock tests
- test_views.py: API endpoint tests
- factories.py / fakes.py: Test data and the in-memory gateway

Usage:
    pytest payments/tests/
    pytest payments/tests/test_views.py
"""
