"""
Tests for the booking payment and capture sweep API views.

Tests cover:
- Orchestrator results mapped to HTTP statuses
- Authentication on booking endpoints
- Cron secret on the sweep endpoint
"""

import uuid

import pytest
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from core.services import ServiceResult
from payments.exceptions import ConfigError
from payments.models import Booking
from payments.state_machines import BookingStatus
from payments.tests.factories import NOW
from payments.views import BookingPaymentView


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(username="business", password="pass")


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def mock_orchestrator(mocker):
    orchestrator = mocker.MagicMock()
    mocker.patch.object(BookingPaymentView, "get_orchestrator", return_value=orchestrator)
    return orchestrator


def booking_url(name, booking_id=None):
    return reverse(f"payments:booking_{name}", kwargs={"booking_id": booking_id or uuid.uuid4()})


# =============================================================================
# Booking Endpoints
# =============================================================================


@pytest.mark.django_db
class TestBookingPaymentViews:
    def test_accept_with_fake_gateway(self, api_client, user, orchestrator, far_booking, mocker):
        mocker.patch.object(BookingPaymentView, "get_orchestrator", return_value=orchestrator)
        mocker.patch("payments.services.booking_payments.timezone.now", return_value=NOW)

        response = api_client.post(booking_url("accept", far_booking.id))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["success"] is True
        assert response.data["data"]["mode"] == "authorized"
        booking = Booking.objects.get(id=far_booking.id)
        assert booking.booking_status == BookingStatus.CONFIRMED
        assert booking.accepted_by == str(user.pk)

    def test_decline_passes_reason(self, api_client, user, mock_orchestrator):
        booking_id = uuid.uuid4()
        mock_orchestrator.decline_booking.return_value = ServiceResult.success({"legs": {}})

        response = api_client.post(
            booking_url("decline", booking_id), {"reason": "Fully booked"}, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        mock_orchestrator.decline_booking.assert_called_once_with(
            booking_id, actor_id=user.pk, reason="Fully booked"
        )

    def test_cancel_without_reason(self, api_client, mock_orchestrator):
        mock_orchestrator.cancel_booking.return_value = ServiceResult.success(
            {"mode": "not_accepted"}
        )

        response = api_client.post(booking_url("cancel"), {}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert mock_orchestrator.cancel_booking.call_args.kwargs["reason"] == ""

    @pytest.mark.parametrize(
        "error_code,expected_status",
        [
            ("PARTIAL_LEG_FAILURE", status.HTTP_207_MULTI_STATUS),
            ("CARD_DECLINED", status.HTTP_402_PAYMENT_REQUIRED),
            ("GATEWAY_UNAVAILABLE", status.HTTP_402_PAYMENT_REQUIRED),
            ("PAYMENT_VALIDATION_ERROR", status.HTTP_400_BAD_REQUEST),
            ("BOOKING_NOT_FOUND", status.HTTP_404_NOT_FOUND),
            ("LOCK_ACQUISITION_FAILED", status.HTTP_409_CONFLICT),
        ],
    )
    def test_failure_statuses(self, api_client, mock_orchestrator, error_code, expected_status):
        mock_orchestrator.accept_booking.return_value = ServiceResult.failure(
            "failed", error_code=error_code, data={"payment_status": "partial"}
        )

        response = api_client.post(booking_url("accept"))

        assert response.status_code == expected_status
        assert response.data["success"] is False
        assert response.data["error_code"] == error_code

    def test_partial_decline_lists_leg_errors(self, api_client, mock_orchestrator):
        mock_orchestrator.decline_booking.return_value = ServiceResult.failure(
            "Booking declined but not every payment leg was released",
            error_code="PARTIAL_LEG_FAILURE",
            errors={"service_fee": ["Read timed out"]},
            data={"legs": {"service_fee": "failed", "service_amount": "cancelled"}},
        )

        response = api_client.post(booking_url("decline"), {}, format="json")

        assert response.status_code == status.HTTP_207_MULTI_STATUS
        assert response.data["errors"] == {"service_fee": ["Read timed out"]}

    def test_unconfigured_gateway(self, api_client, mocker):
        mocker.patch.object(
            BookingPaymentView,
            "get_orchestrator",
            side_effect=ConfigError("STRIPE_SECRET_KEY is not configured"),
        )

        response = api_client.post(booking_url("accept"))

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.data["error_code"] == "PAYMENT_CONFIG_ERROR"

    def test_requires_authentication(self, mock_orchestrator):
        response = APIClient().post(booking_url("accept"))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        mock_orchestrator.accept_booking.assert_not_called()


# =============================================================================
# Capture Sweep Endpoint
# =============================================================================


@pytest.mark.django_db
class TestCaptureSweepView:
    url = "/api/v1/payments/captures/sweep/"

    @pytest.fixture
    def mock_sweeper(self, mocker):
        sweeper_class = mocker.patch("payments.views.CaptureSweeper")
        sweeper_class.return_value.sweep_due_captures.return_value = {
            "total": 0,
            "captured": 0,
            "failed": 0,
            "skipped": 0,
            "results": [],
        }
        return sweeper_class.return_value

    def test_not_configured(self, settings, mock_sweeper):
        settings.CRON_SECRET = ""

        response = APIClient().get(self.url, HTTP_AUTHORIZATION="Bearer anything")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        mock_sweeper.sweep_due_captures.assert_not_called()

    def test_wrong_secret(self, payment_settings, mock_sweeper):
        response = APIClient().get(self.url, HTTP_AUTHORIZATION="Bearer wrong")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        mock_sweeper.sweep_due_captures.assert_not_called()

    def test_missing_header(self, payment_settings, mock_sweeper):
        response = APIClient().post(self.url)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_runs_sweep(self, payment_settings, mock_sweeper):
        response = APIClient().get(
            self.url,
            {"now": "2026-03-03T12:00:01Z", "limit": "25"},
            HTTP_AUTHORIZATION="Bearer cron-secret",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["total"] == 0
        kwargs = mock_sweeper.sweep_due_captures.call_args.kwargs
        assert kwargs["batch_limit"] == 25
        assert kwargs["now"].isoformat() == "2026-03-03T12:00:01+00:00"

    def test_post_without_params(self, payment_settings, mock_sweeper):
        response = APIClient().post(self.url, HTTP_AUTHORIZATION="Bearer cron-secret")

        assert response.status_code == status.HTTP_200_OK
        mock_sweeper.sweep_due_captures.assert_called_once_with(now=None, batch_limit=None)

    def test_invalid_limit(self, payment_settings, mock_sweeper):
        response = APIClient().get(
            self.url, {"limit": "0"}, HTTP_AUTHORIZATION="Bearer cron-secret"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        mock_sweeper.sweep_due_captures.assert_not_called()
