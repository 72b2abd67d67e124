"""
DRF views for payments app.

This module provides API views for:
- Booking acceptance, decline and cancellation (payment side)
- The capture sweep trigger for external schedulers

Related files:
    - services/booking_payments.py: BookingPaymentOrchestrator
    - workers/capture_sweeper.py: CaptureSweeper
    - serializers.py: Request/response serializers
    - urls.py: URL routing

Endpoints:
    POST /api/v1/payments/bookings/{id}/accept/ - Charge fee, charge or authorize service amount
    POST /api/v1/payments/bookings/{id}/decline/ - Release both payment legs
    POST /api/v1/payments/bookings/{id}/cancel/ - Apply cancellation refund rules
    GET|POST /api/v1/payments/captures/sweep/ - Capture due authorizations

Security:
    - Booking endpoints require authentication
    - The sweep endpoint requires "Authorization: Bearer <CRON_SECRET>"
"""

from __future__ import annotations

import hmac
import logging

from django.conf import settings
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema

from core.exceptions import NotFoundError, ValidationError
from core.services import ServiceResult

from payments.exceptions import (
    BookingNotFoundError,
    ConfigError,
    GatewayCardDeclinedError,
    GatewayError,
    GatewayInsufficientFundsError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayUnavailableError,
    LockAcquisitionError,
    PartialLegFailure,
    PaymentValidationError,
)
from payments.serializers import (
    BookingPaymentResponseSerializer,
    BookingReasonSerializer,
    CaptureSweepParamsSerializer,
    CaptureSweepSummarySerializer,
)
from payments.services import BookingPaymentOrchestrator
from payments.workers import CaptureSweeper

logger = logging.getLogger(__name__)


GATEWAY_ERROR_CODES = {
    error_class.default_error_code
    for error_class in (
        GatewayError,
        GatewayCardDeclinedError,
        GatewayInsufficientFundsError,
        GatewayInvalidRequestError,
        GatewayRateLimitError,
        GatewayUnavailableError,
    )
}

ERROR_STATUS = {
    ValidationError.default_error_code: status.HTTP_400_BAD_REQUEST,
    PaymentValidationError.default_error_code: status.HTTP_400_BAD_REQUEST,
    NotFoundError.default_error_code: status.HTTP_404_NOT_FOUND,
    BookingNotFoundError.default_error_code: status.HTTP_404_NOT_FOUND,
    LockAcquisitionError.default_error_code: status.HTTP_409_CONFLICT,
    PartialLegFailure.default_error_code: status.HTTP_207_MULTI_STATUS,
    ConfigError.default_error_code: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def result_status(result: ServiceResult) -> int:
    """HTTP status for an orchestrator result."""
    if result.success:
        return status.HTTP_200_OK
    if result.error_code in GATEWAY_ERROR_CODES:
        return status.HTTP_402_PAYMENT_REQUIRED
    return ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST)


BOOKING_RESPONSES = {
    200: BookingPaymentResponseSerializer,
    207: OpenApiResponse(
        response=BookingPaymentResponseSerializer,
        description="One payment leg succeeded, the other did not",
    ),
    400: OpenApiResponse(description="Booking cannot be processed in its current state"),
    402: OpenApiResponse(description="Payment processor rejected the operation"),
    404: OpenApiResponse(description="Booking not found"),
    409: OpenApiResponse(description="Another payment operation is in progress"),
}


class BookingPaymentView(APIView):
    """Base view: builds the orchestrator and renders its result."""

    permission_classes = [IsAuthenticated]

    def get_orchestrator(self) -> BookingPaymentOrchestrator:
        return BookingPaymentOrchestrator()

    def respond(self, operation, booking_id, **kwargs) -> Response:
        try:
            orchestrator = self.get_orchestrator()
        except ConfigError as e:
            logger.critical(f"Payments are not configured: {e.message}")
            return Response(
                {"success": False, **e.to_dict()},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        result = getattr(orchestrator, operation)(
            booking_id,
            actor_id=self.request.user.pk,
            **kwargs,
        )
        return Response(result.to_response(), status=result_status(result))


class AcceptBookingView(BookingPaymentView):
    """
    Accept a booking: charge the platform fee and charge or authorize
    the service amount depending on how far away the service is.

    POST /api/v1/payments/bookings/{id}/accept/
    """

    @extend_schema(
        operation_id="accept_booking_payment",
        summary="Accept booking",
        description=(
            "Charge the non-refundable platform fee. The service amount is "
            "charged immediately when the service starts within the capture "
            "cutoff, otherwise it is authorized and captured later. "
            "Safe to retry: a charged fee is never charged again."
        ),
        request=None,
        responses=BOOKING_RESPONSES,
        tags=["Payments - Bookings"],
    )
    def post(self, request, booking_id):
        return self.respond("accept_booking", booking_id)


class DeclineBookingView(BookingPaymentView):
    """
    Decline a booking and release both payment legs.

    POST /api/v1/payments/bookings/{id}/decline/
    """

    @extend_schema(
        operation_id="decline_booking_payment",
        summary="Decline booking",
        description=(
            "Cancel outstanding authorizations and fully refund charged legs. "
            "Each leg is handled independently; failures are listed per leg."
        ),
        request=BookingReasonSerializer,
        responses=BOOKING_RESPONSES,
        tags=["Payments - Bookings"],
    )
    def post(self, request, booking_id):
        serializer = BookingReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.respond(
            "decline_booking",
            booking_id,
            reason=serializer.validated_data["reason"],
        )


class CancelBookingView(BookingPaymentView):
    """
    Cancel a booking and apply the refund rules.

    POST /api/v1/payments/bookings/{id}/cancel/
    """

    @extend_schema(
        operation_id="cancel_booking_payment",
        summary="Cancel booking",
        description=(
            "Within the capture cutoff the full amount is kept. Beyond it the "
            "service amount is refunded and the platform fee is kept. "
            "Bookings never accepted only release the purchase authorization."
        ),
        request=BookingReasonSerializer,
        responses=BOOKING_RESPONSES,
        tags=["Payments - Bookings"],
    )
    def post(self, request, booking_id):
        serializer = BookingReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.respond(
            "cancel_booking",
            booking_id,
            reason=serializer.validated_data["reason"],
        )


SWEEP_PARAMETERS = [
    OpenApiParameter(
        name="now",
        type=str,
        location=OpenApiParameter.QUERY,
        description="Override of the current time (ISO-8601)",
        required=False,
    ),
    OpenApiParameter(
        name="limit",
        type=int,
        location=OpenApiParameter.QUERY,
        description="Maximum schedules to process",
        required=False,
    ),
]

SWEEP_RESPONSES = {
    200: CaptureSweepSummarySerializer,
    400: OpenApiResponse(description="Invalid now or limit"),
    401: OpenApiResponse(description="Missing or wrong cron secret"),
    503: OpenApiResponse(description="Cron secret or gateway not configured"),
}


class CaptureSweepView(APIView):
    """
    Trigger a capture sweep from an external scheduler.

    GET|POST /api/v1/payments/captures/sweep/

    Authenticated with a shared secret instead of a user session.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="capture_sweep_get",
        summary="Run capture sweep",
        parameters=SWEEP_PARAMETERS,
        responses=SWEEP_RESPONSES,
        tags=["Payments - Captures"],
    )
    def get(self, request):
        return self.sweep(request, request.query_params)

    @extend_schema(
        operation_id="capture_sweep_post",
        summary="Run capture sweep",
        parameters=SWEEP_PARAMETERS,
        request=CaptureSweepParamsSerializer,
        responses=SWEEP_RESPONSES,
        tags=["Payments - Captures"],
    )
    def post(self, request):
        return self.sweep(request, request.data or request.query_params)

    def sweep(self, request, params) -> Response:
        cron_secret = getattr(settings, "CRON_SECRET", "")
        if not cron_secret:
            logger.error("Capture sweep requested but CRON_SECRET is not configured")
            return Response(
                {"success": False, "error": "Cron trigger is not configured"},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        header = request.headers.get("Authorization", "")
        if not hmac.compare_digest(header, f"Bearer {cron_secret}"):
            logger.warning("Capture sweep rejected: bad cron secret")
            return Response(
                {"success": False, "error": "Unauthorized"},
                status=status.HTTP_401_UNAUTHORIZED,
            )

        serializer = CaptureSweepParamsSerializer(data=params)
        serializer.is_valid(raise_exception=True)

        try:
            sweeper = CaptureSweeper()
        except ConfigError as e:
            logger.critical(f"Payments are not configured: {e.message}")
            return Response(
                {"success": False, **e.to_dict()},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        summary = sweeper.sweep_due_captures(
            now=serializer.validated_data.get("now"),
            batch_limit=serializer.validated_data.get("limit"),
        )
        return Response(summary, status=status.HTTP_200_OK)
