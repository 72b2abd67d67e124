"""
Pytest fixtures for booking payment tests.

Shared by payments/tests, payments/services/tests, payments/workers/tests
and payments/adapters/tests.

Sections:
    - Infrastructure (Redis lock, settings)
    - Gateway and services
    - Booking fixtures

Usage:
    def test_accept_charges_fee(orchestrator, make_booking, gateway, now):
        booking = make_booking(service_in_hours=48)
        result = orchestrator.accept_booking(booking.id, now=now)
        assert result.success
"""

from decimal import Decimal

import pytest

from payments.services import BookingPaymentOrchestrator, LedgerStore
from payments.tests.factories import NOW, BookingFactory
from payments.tests.fakes import FakeGateway
from payments.workers import CaptureSweeper


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """
    Mock Redis client behind the booking payment lock.

    Every acquire succeeds and every release reports ownership.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch("payments.locks.get_redis_connection", return_value=mock_client)
    return mock_client


@pytest.fixture
def payment_settings(settings):
    settings.STRIPE_SECRET_KEY = "sk_test_fake"
    settings.BOOKING_CAPTURE_CUTOFF_HOURS = 24
    settings.BOOKING_PAYMENT_CURRENCY = "usd"
    settings.CRON_SECRET = "cron-secret"
    return settings


# =============================================================================
# Gateway and Services
# =============================================================================


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def ledger():
    return LedgerStore()


@pytest.fixture
def orchestrator(gateway, ledger):
    return BookingPaymentOrchestrator(gateway=gateway, ledger=ledger)


@pytest.fixture
def sweeper(gateway, orchestrator, ledger):
    return CaptureSweeper(gateway=gateway, orchestrator=orchestrator, ledger=ledger)


# =============================================================================
# Booking Fixtures
# =============================================================================


@pytest.fixture
def make_booking(db, gateway):
    """
    Create a pending booking whose purchase intent exists on the gateway.

    Accepts BookingFactory keyword arguments, plus ``purchase_status`` for
    the purchase-time intent.
    """

    def _make(purchase_status="requires_payment_method", **kwargs):
        booking = BookingFactory(**kwargs)
        if booking.stripe_payment_intent_id:
            gateway.add_intent(
                booking.stripe_payment_intent_id,
                status=purchase_status,
                amount_cents=int(booking.total_amount * 100),
            )
        return booking

    return _make


@pytest.fixture
def far_booking(make_booking):
    """120.00 total, 14.40 fee, service 48 hours out."""
    return make_booking(service_in_hours=48)


@pytest.fixture
def near_booking(make_booking):
    """80.00 total, 9.60 fee, service 10 hours out."""
    return make_booking(
        service_in_hours=10,
        total_amount=Decimal("80.00"),
        service_fee=Decimal("9.60"),
    )


@pytest.fixture
def authorized_booking(orchestrator, far_booking, now):
    """Accepted far booking: fee charged, service amount held for capture."""
    result = orchestrator.accept_booking(far_booking.id, actor_id="business-user", now=now)
    assert result.success, result.error
    far_booking.refresh_from_db()
    return far_booking
