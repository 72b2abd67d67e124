"""
Booking payment orchestrator.

Decides how and when money moves for a booking:

- accept_booking: charge the non-refundable platform fee, then either
  charge the service amount (service starts within the capture cutoff)
  or hold it as a manual-capture authorization with a PaymentSchedule
- decline_booking: release each leg independently (cancel a hold,
  refund a charge)
- cancel_booking: apply the cancellation refund rules
- capture_service_leg: capture primitive shared with the capture sweeper

Every public operation returns a ServiceResult. Gateway failures are
translated into failed results at this boundary and never raised to the
caller.

Usage:
    from payments.services import BookingPaymentOrchestrator

    orchestrator = BookingPaymentOrchestrator()
    result = orchestrator.accept_booking(booking_id, actor_id=request.user.pk)
    if not result:
        logger.warning(result.error, extra={"error_code": result.error_code})
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from payments.adapters import (
    IdempotencyKeyGenerator,
    StripeAdapter,
    from_cents,
    to_cents,
)
from payments.exceptions import (
    GatewayError,
    GatewayInvalidRequestError,
    PartialLegFailure,
    PaymentValidationError,
)
from payments.locks import booking_payment_lock
from payments.services.ledger_store import LedgerStore
from payments.state_machines import (
    CANCELLABLE_INTENT_STATUSES,
    DEAD_AUTHORIZATION_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
    GatewayIntentStatus,
    PaymentLeg,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any
    from uuid import UUID

    from payments.adapters import PaymentGateway, PaymentIntentResult
    from payments.models import Booking, PaymentSchedule


# Service leg is charged immediately when the service starts within this many hours
CAPTURE_CUTOFF_HOURS = 24


def capture_cutoff_hours() -> int:
    return getattr(settings, "BOOKING_CAPTURE_CUTOFF_HOURS", CAPTURE_CUTOFF_HOURS)


def _actor(actor_id: UUID | str | int | None) -> str | None:
    return str(actor_id) if actor_id is not None else None


class BookingPaymentOrchestrator(BaseService):
    """
    Coordinates the two payment legs of a booking.

    Leg 1 (service fee) is always charged at acceptance. Leg 2 (service
    amount) is charged at acceptance inside the cutoff window, otherwise
    authorized and captured later by the capture sweeper.

    Args:
        gateway: PaymentGateway implementation (defaults to StripeAdapter)
        ledger: LedgerStore (defaults to the ORM-backed store)

    Raises:
        ConfigError: On construction, when defaulting to Stripe without
            a configured secret key
    """

    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        ledger: LedgerStore | None = None,
    ) -> None:
        if gateway is None:
            StripeAdapter.ensure_configured()
            gateway = StripeAdapter
        self.gateway = gateway
        self.ledger = ledger or LedgerStore()
        self.currency = getattr(settings, "BOOKING_PAYMENT_CURRENCY", "usd")

    # ==========================================================================
    # Public Operations
    # ==========================================================================

    def accept_booking(
        self,
        booking_id: UUID | str,
        actor_id: UUID | str | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[dict]:
        """
        Charge the fee leg and charge or authorize the service leg.

        Re-invoking after a partial failure retries the service leg only.

        Returns:
            ServiceResult with the booking's payment summary. A failed
            service leg after a successful fee charge yields
            error_code PARTIAL_LEG_FAILURE and payment_status "partial".
        """
        return self._run_locked(
            "accept",
            booking_id,
            lambda: self._accept(booking_id, actor_id, now or timezone.now()),
        )

    def decline_booking(
        self,
        booking_id: UUID | str,
        actor_id: UUID | str | None = None,
        reason: str = "",
        now: datetime | None = None,
    ) -> ServiceResult[dict]:
        """
        Release every leg of a declined booking.

        Holds are cancelled and charges fully refunded, one leg at a time.
        A failure on one leg is logged and reported in ``errors`` without
        blocking the other leg.
        """
        return self._run_locked(
            "decline",
            booking_id,
            lambda: self._decline(booking_id, actor_id, reason, now or timezone.now()),
        )

    def cancel_booking(
        self,
        booking_id: UUID | str,
        actor_id: UUID | str | None = None,
        reason: str = "",
        now: datetime | None = None,
    ) -> ServiceResult[dict]:
        """
        Cancel a booking and apply the refund rules.

        - Never accepted: release the purchase authorization, refund 0
        - Accepted, service within the cutoff: keep the total
        - Accepted, service beyond the cutoff: refund the service amount,
          keep the fee
        """
        return self._run_locked(
            "cancel",
            booking_id,
            lambda: self._cancel(booking_id, actor_id, reason, now or timezone.now()),
        )

    def _run_locked(
        self,
        operation: str,
        booking_id: UUID | str,
        func: Callable[[], ServiceResult[dict]],
    ) -> ServiceResult[dict]:
        logger = self.get_logger()
        log_context = {"operation": operation, "booking_id": str(booking_id)}

        try:
            with booking_payment_lock(booking_id):
                return func()
        except PartialLegFailure as exc:
            logger.warning(
                f"Booking {operation} partially completed: {exc.message}",
                extra={**log_context, **exc.details},
            )
            return ServiceResult.from_exception(exc, data=exc.details)
        except BaseApplicationError as exc:
            logger.warning(
                f"Booking {operation} failed: {exc.message}",
                extra={**log_context, "error_code": exc.error_code},
            )
            return ServiceResult.from_exception(
                exc, data={"booking_id": str(booking_id), **exc.details}
            )

    # ==========================================================================
    # Acceptance
    # ==========================================================================

    def _accept(
        self,
        booking_id: UUID | str,
        actor_id: UUID | str | None,
        now: datetime,
    ) -> ServiceResult[dict]:
        logger = self.get_logger()
        booking = self.ledger.get_booking(booking_id)

        if booking.booking_status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise PaymentValidationError(
                f"Booking in status {booking.booking_status} cannot be accepted",
                details={"booking_status": booking.booking_status},
            )
        if not booking.stripe_payment_intent_id:
            raise PaymentValidationError(
                "Booking has no purchase payment intent",
                details={"booking_id": str(booking.id)},
            )

        if booking.service_fee_charged:
            return self._resume_acceptance(booking, actor_id, now)

        purchase_intent = self.gateway.retrieve(booking.stripe_payment_intent_id)
        if purchase_intent.status == GatewayIntentStatus.SUCCEEDED:
            return self._accept_paid_purchase(booking, purchase_intent, actor_id, now)

        customer_id, payment_method_id = self._payment_references(booking, purchase_intent)

        logger.info(
            "Accepting booking",
            extra={
                "booking_id": str(booking.id),
                "hours_until_service": round(booking.hours_until_service(now), 2),
                "service_fee": str(booking.service_fee),
                "service_amount": str(booking.service_amount),
            },
        )

        fee_intent = self._charge_fee_leg(booking, customer_id, payment_method_id)
        booking.stripe_customer_id = customer_id
        booking.stripe_payment_method_id = payment_method_id
        with self.atomic():
            self._record_fee_leg(
                booking,
                fee_intent,
                actor_id,
                now,
                purchase_intent_id=purchase_intent.id,
            )

        if fee_intent is not None and purchase_intent.id != fee_intent.id:
            self._release_purchase_intent(booking, purchase_intent)

        return self._execute_service_leg(booking, customer_id, payment_method_id, now)

    def _accept_paid_purchase(
        self,
        booking: Booking,
        purchase_intent: PaymentIntentResult,
        actor_id: UUID | str | None,
        now: datetime,
    ) -> ServiceResult[dict]:
        """
        Accept a booking whose purchase intent already moved money.

        Nothing is charged again. The captured amount pays the fee first
        and the service amount from the remainder. When it covered only the
        fee, the service leg runs afterwards as usual. Any other amount is
        left for manual review.
        """
        captured = from_cents(
            purchase_intent.amount_captured_cents or purchase_intent.amount_cents
        )
        fee_paid = min(captured, booking.service_fee)
        service_paid = captured - fee_paid
        fully_paid = service_paid >= booking.service_amount

        if fee_paid < booking.service_fee or (service_paid > 0 and not fully_paid):
            raise PaymentValidationError(
                "Purchase intent captured an amount matching neither the fee nor the total",
                details={
                    "booking_id": str(booking.id),
                    "payment_intent_id": purchase_intent.id,
                    "captured_amount": str(captured),
                },
            )

        self.get_logger().info(
            "Purchase intent already succeeded, accepting without a new charge",
            extra={
                "booking_id": str(booking.id),
                "payment_intent_id": purchase_intent.id,
                "captured_amount": str(captured),
                "fully_paid": fully_paid,
            },
        )

        with self.atomic():
            self._record_fee_leg(booking, purchase_intent, actor_id, now, amount=fee_paid)
            if fully_paid and booking.service_amount > 0:
                self.settle_service_leg(
                    booking, purchase_intent, now, amount=booking.service_amount
                )

        if not fully_paid:
            return self._resume_acceptance(booking, actor_id, now)

        self._confirm_booking(booking, now, fully_paid=True)
        return ServiceResult.success(self._summary(booking, mode="already_paid"))

    def _payment_references(
        self,
        booking: Booking,
        purchase_intent: PaymentIntentResult | None = None,
    ) -> tuple[str, str]:
        customer_id = booking.stripe_customer_id
        payment_method_id = booking.stripe_payment_method_id

        if not (customer_id and payment_method_id):
            if purchase_intent is None:
                purchase_intent = self.gateway.retrieve(booking.stripe_payment_intent_id)
            customer_id = customer_id or purchase_intent.customer_id
            payment_method_id = payment_method_id or purchase_intent.payment_method_id

        if not (customer_id and payment_method_id):
            raise PaymentValidationError(
                "No customer or payment method available to charge",
                details={
                    "booking_id": str(booking.id),
                    "has_customer": bool(customer_id),
                    "has_payment_method": bool(payment_method_id),
                },
            )
        return customer_id, payment_method_id

    def _charge_fee_leg(
        self,
        booking: Booking,
        customer_id: str,
        payment_method_id: str,
    ) -> PaymentIntentResult | None:
        """Charge the platform fee. None when the booking carries no fee."""
        if booking.service_fee <= 0:
            return None

        key = self._charge_key(booking, PaymentLeg.SERVICE_FEE)
        try:
            intent = self.gateway.authorize_and_confirm(
                amount_cents=to_cents(booking.service_fee),
                customer_id=customer_id,
                payment_method_id=payment_method_id,
                idempotency_key=key,
                currency=self.currency,
                metadata=self._metadata(booking, PaymentLeg.SERVICE_FEE),
            )
        except GatewayError as exc:
            self._note_failed_attempt(booking, exc)
            raise

        if intent.status != GatewayIntentStatus.SUCCEEDED:
            error = GatewayError(
                f"Service fee charge ended in status {intent.status}",
                gateway_code=intent.status,
                details={"payment_intent_id": intent.id},
            )
            self._note_failed_attempt(booking, error)
            raise error
        return intent

    def _record_fee_leg(
        self,
        booking: Booking,
        fee_intent: PaymentIntentResult | None,
        actor_id: UUID | str | None,
        now: datetime,
        purchase_intent_id: str | None = None,
        amount: Decimal | None = None,
    ) -> None:
        fields = [
            "service_fee_charged",
            "service_fee_charged_at",
            "payment_status",
            "accepted_at",
            "accepted_by",
            "stripe_customer_id",
            "stripe_payment_method_id",
        ]
        booking.service_fee_charged = True
        booking.service_fee_charged_at = now
        booking.payment_status = BookingPaymentStatus.PARTIAL
        booking.accepted_at = booking.accepted_at or now
        booking.accepted_by = booking.accepted_by or _actor(actor_id)

        if fee_intent is not None:
            booking.stripe_payment_intent_id = fee_intent.id
            fields.append("stripe_payment_intent_id")
            if not self.ledger.has_transaction(booking, fee_intent.id, leg=PaymentLeg.SERVICE_FEE):
                self.ledger.record_transaction(
                    booking,
                    amount=booking.service_fee if amount is None else amount,
                    stripe_transaction_id=fee_intent.id,
                    transaction_type=TransactionType.BOOKING_PAYMENT,
                    leg=PaymentLeg.SERVICE_FEE,
                    description="Platform service fee",
                    processed_at=now,
                    metadata={
                        "actor_id": _actor(actor_id),
                        "purchase_payment_intent_id": purchase_intent_id,
                    },
                )

        self.ledger.save_booking(booking, fields)

    def _release_purchase_intent(
        self,
        booking: Booking,
        purchase_intent: PaymentIntentResult,
    ) -> None:
        """Void the purchase-time authorization once the fee is charged separately."""
        if purchase_intent.status not in CANCELLABLE_INTENT_STATUSES:
            return

        try:
            self.gateway.cancel(
                purchase_intent.id,
                idempotency_key=IdempotencyKeyGenerator.generate("cancel", purchase_intent.id),
                cancellation_reason="abandoned",
            )
        except GatewayError as exc:
            # The fee is already charged; a dangling hold expires on its own
            self.get_logger().warning(
                "Could not cancel purchase payment intent",
                extra={
                    "booking_id": str(booking.id),
                    "payment_intent_id": purchase_intent.id,
                    "gateway_code": exc.gateway_code,
                },
            )

    def _execute_service_leg(
        self,
        booking: Booking,
        customer_id: str,
        payment_method_id: str,
        now: datetime,
    ) -> ServiceResult[dict]:
        """Charge the service amount now, or authorize it for deferred capture."""
        logger = self.get_logger()
        cutoff = capture_cutoff_hours()
        amount = booking.service_amount
        charge_now = booking.hours_until_service(now) <= cutoff

        if amount <= 0:
            self._confirm_booking(booking, now, fully_paid=True)
            return ServiceResult.success(self._summary(booking))

        key = self._charge_key(booking, PaymentLeg.SERVICE_AMOUNT)
        create = (
            self.gateway.authorize_and_confirm
            if charge_now
            else self.gateway.create_manual_capture_authorization
        )
        expected_status = (
            GatewayIntentStatus.SUCCEEDED if charge_now else GatewayIntentStatus.REQUIRES_CAPTURE
        )

        try:
            intent = create(
                amount_cents=to_cents(amount),
                customer_id=customer_id,
                payment_method_id=payment_method_id,
                idempotency_key=key,
                currency=self.currency,
                metadata=self._metadata(booking, PaymentLeg.SERVICE_AMOUNT),
            )
        except GatewayError as exc:
            self._note_failed_attempt(booking, exc)
            raise self._partial_failure(booking, exc) from exc

        booking.stripe_service_amount_payment_intent_id = intent.id
        self.ledger.save_booking(booking, ["stripe_service_amount_payment_intent_id"])

        if intent.status != expected_status:
            error = GatewayError(
                f"Service amount intent ended in status {intent.status}",
                gateway_code=intent.status,
            )
            if intent.status in DEAD_AUTHORIZATION_STATUSES:
                self._note_failed_attempt(booking, error)
            raise self._partial_failure(booking, error)

        if charge_now:
            self.settle_service_leg(booking, intent, now)
            logger.info(
                "Service amount charged at acceptance",
                extra={"booking_id": str(booking.id), "payment_intent_id": intent.id},
            )
            return ServiceResult.success(self._summary(booking, mode="charged"))

        schedule = self._schedule_capture(booking, intent.id, now)
        logger.info(
            "Service amount authorized for deferred capture",
            extra={
                "booking_id": str(booking.id),
                "payment_intent_id": intent.id,
                "schedule_id": str(schedule.id),
                "scheduled_at": schedule.scheduled_at.isoformat(),
            },
        )
        return ServiceResult.success(self._summary(booking, schedule=schedule, mode="authorized"))

    def _schedule_capture(
        self,
        booking: Booking,
        payment_intent_id: str,
        now: datetime,
    ) -> PaymentSchedule:
        scheduled_at = booking.service_instant - timedelta(hours=capture_cutoff_hours())
        with self.atomic():
            schedule = self.ledger.save_open_schedule(
                booking,
                scheduled_at=scheduled_at,
                amount=booking.service_amount,
                payment_intent_id=payment_intent_id,
            )
            if not self.ledger.has_transaction(
                booking, payment_intent_id, leg=PaymentLeg.SERVICE_AMOUNT
            ):
                self.ledger.record_transaction(
                    booking,
                    amount=booking.service_amount,
                    stripe_transaction_id=payment_intent_id,
                    transaction_type=TransactionType.BOOKING_PAYMENT,
                    leg=PaymentLeg.SERVICE_AMOUNT,
                    status=TransactionStatus.PENDING,
                    description="Service amount (authorized, capture pending)",
                    metadata={"schedule_id": str(schedule.id)},
                )
            self._confirm_booking(booking, now, fully_paid=False)
        return schedule

    def _resume_acceptance(
        self,
        booking: Booking,
        actor_id: UUID | str | None,
        now: datetime,
    ) -> ServiceResult[dict]:
        """
        Re-entrant acceptance: the fee leg is already charged.

        Never charges the fee again. Only the service leg is inspected and,
        when it is missing or dead, executed again.
        """
        logger = self.get_logger()
        logger.info(
            "Fee leg already charged, resuming acceptance",
            extra={"booking_id": str(booking.id)},
        )

        if booking.remaining_balance_charged:
            self._confirm_booking(booking, now, fully_paid=True)
            return ServiceResult.success(self._summary(booking, mode="already_paid"))

        service_intent_id = booking.stripe_service_amount_payment_intent_id
        service_intent = self.gateway.retrieve(service_intent_id) if service_intent_id else None

        if service_intent is None or service_intent.status in DEAD_AUTHORIZATION_STATUSES:
            customer_id, payment_method_id = self._payment_references(booking)
            return self._execute_service_leg(booking, customer_id, payment_method_id, now)

        if service_intent.status == GatewayIntentStatus.REQUIRES_CAPTURE:
            schedule = self._schedule_capture(booking, service_intent.id, now)
            return ServiceResult.success(
                self._summary(booking, schedule=schedule, mode="authorized")
            )

        if service_intent.status == GatewayIntentStatus.SUCCEEDED:
            self.settle_service_leg(booking, service_intent, now)
            return ServiceResult.success(self._summary(booking, mode="charged"))

        raise self._partial_failure(
            booking,
            GatewayError(
                f"Service amount intent is still {service_intent.status}",
                gateway_code=service_intent.status,
            ),
        )

    def _confirm_booking(self, booking: Booking, now: datetime, fully_paid: bool) -> None:
        fields = ["booking_status"]
        if booking.booking_status == BookingStatus.PENDING:
            booking.booking_status = BookingStatus.CONFIRMED
        if booking.accepted_at is None:
            booking.accepted_at = now
            fields.append("accepted_at")
        if fully_paid:
            if booking.service_amount <= 0 and not booking.remaining_balance_charged:
                booking.remaining_balance_charged = True
                booking.remaining_balance_charged_at = now
                fields += ["remaining_balance_charged", "remaining_balance_charged_at"]
            booking.payment_status = BookingPaymentStatus.PAID
            fields.append("payment_status")
        self.ledger.save_booking(booking, fields)

    # ==========================================================================
    # Capture Primitive
    # ==========================================================================

    def capture_service_leg(
        self,
        booking: Booking,
        payment_intent_id: str,
        idempotency_key: str,
        now: datetime | None = None,
    ) -> PaymentIntentResult:
        """
        Capture the service-amount authorization and settle the booking.

        Used by the capture sweeper and by late cancellation. An
        authorization that turns out to be already captured is treated as
        captured.

        Raises:
            GatewayError: Capture failed; ``outcome_unknown`` tells the
                caller whether the gateway may have applied it
        """
        now = now or timezone.now()
        try:
            intent = self.gateway.capture(payment_intent_id, idempotency_key=idempotency_key)
        except GatewayInvalidRequestError:
            intent = self.gateway.retrieve(payment_intent_id)
            if intent.status != GatewayIntentStatus.SUCCEEDED:
                raise
            self.get_logger().info(
                "Authorization was already captured",
                extra={"booking_id": str(booking.id), "payment_intent_id": payment_intent_id},
            )

        if intent.status != GatewayIntentStatus.SUCCEEDED:
            raise GatewayError(
                f"Capture ended in status {intent.status}",
                gateway_code=intent.status,
                details={"payment_intent_id": payment_intent_id},
            )

        self.settle_service_leg(booking, intent, now)
        return intent

    def settle_service_leg(
        self,
        booking: Booking,
        intent: PaymentIntentResult,
        now: datetime,
        amount: Decimal | None = None,
    ) -> None:
        """
        Record a succeeded service-amount intent against the booking.

        ``amount`` overrides the captured amount for intents that also
        paid the fee.

        Idempotent: flags are only set once, the pending charge entry is
        completed (or a completed one written if none exists), and the
        business payout is guarded by an existence check.
        """
        with self.atomic():
            booking.stripe_service_amount_payment_intent_id = (
                booking.stripe_service_amount_payment_intent_id or intent.id
            )
            if not booking.remaining_balance_charged:
                booking.remaining_balance_charged = True
                booking.remaining_balance_charged_at = now
            booking.payment_status = (
                BookingPaymentStatus.PAID
                if booking.service_fee_charged
                else BookingPaymentStatus.PARTIAL
            )
            if booking.booking_status == BookingStatus.PENDING:
                booking.booking_status = BookingStatus.CONFIRMED
            self.ledger.save_booking(
                booking,
                [
                    "stripe_service_amount_payment_intent_id",
                    "remaining_balance_charged",
                    "remaining_balance_charged_at",
                    "payment_status",
                    "booking_status",
                ],
            )

            completed = self.ledger.complete_pending_transaction(booking, intent.id, now)
            if not completed and not self.ledger.has_transaction(
                booking, intent.id, leg=PaymentLeg.SERVICE_AMOUNT
            ):
                if amount is None:
                    amount = from_cents(intent.amount_captured_cents or intent.amount_cents)
                self.ledger.record_transaction(
                    booking,
                    amount=amount,
                    stripe_transaction_id=intent.id,
                    transaction_type=TransactionType.BOOKING_PAYMENT,
                    leg=PaymentLeg.SERVICE_AMOUNT,
                    description="Service amount",
                    processed_at=now,
                )

            self.ledger.resolve_open_schedules(booking, now)
            self.ledger.create_payout_if_absent(booking, intent.id, now)

    # ==========================================================================
    # Decline
    # ==========================================================================

    def _decline(
        self,
        booking_id: UUID | str,
        actor_id: UUID | str | None,
        reason: str,
        now: datetime,
    ) -> ServiceResult[dict]:
        logger = self.get_logger()
        booking = self.ledger.get_booking(booking_id)

        if booking.booking_status not in (
            BookingStatus.PENDING,
            BookingStatus.CONFIRMED,
            BookingStatus.DECLINED,
        ):
            raise PaymentValidationError(
                f"Booking in status {booking.booking_status} cannot be declined",
                details={"booking_status": booking.booking_status},
            )

        legs = [
            (PaymentLeg.SERVICE_FEE, booking.stripe_payment_intent_id),
            (PaymentLeg.SERVICE_AMOUNT, booking.stripe_service_amount_payment_intent_id),
        ]
        outcomes: dict[str, str] = {}
        errors: dict[str, list[str]] = {}

        for leg, intent_id in legs:
            if not intent_id:
                outcomes[leg] = "none"
                continue
            try:
                outcomes[leg] = self._release_leg(booking, leg, intent_id, actor_id, now)
            except GatewayError as exc:
                logger.error(
                    f"Failed to release {leg} leg on decline: {exc.message}",
                    extra={
                        "booking_id": str(booking.id),
                        "leg": leg,
                        "payment_intent_id": intent_id,
                        "gateway_code": exc.gateway_code,
                    },
                )
                outcomes[leg] = "failed"
                errors[leg] = [exc.message]

        fee_resolved = outcomes[PaymentLeg.SERVICE_FEE] != "failed"
        service_resolved = outcomes[PaymentLeg.SERVICE_AMOUNT] != "failed"

        with self.atomic():
            if fee_resolved:
                booking.service_fee_charged = False
                booking.service_fee_charged_at = None
            if service_resolved:
                booking.remaining_balance_charged = False
                booking.remaining_balance_charged_at = None
            if fee_resolved and service_resolved:
                booking.payment_status = BookingPaymentStatus.PENDING
            booking.booking_status = BookingStatus.DECLINED
            booking.declined_at = now
            booking.declined_by = _actor(actor_id)
            booking.decline_reason = reason or ""
            self.ledger.save_booking(
                booking,
                [
                    "service_fee_charged",
                    "service_fee_charged_at",
                    "remaining_balance_charged",
                    "remaining_balance_charged_at",
                    "payment_status",
                    "booking_status",
                    "declined_at",
                    "declined_by",
                    "decline_reason",
                ],
            )
            self.ledger.cancel_open_schedules(booking, "Booking declined")

        data = {**self._summary(booking), "legs": outcomes}
        if errors:
            return ServiceResult.failure(
                "Booking declined but not every payment leg was released",
                error_code=PartialLegFailure.default_error_code,
                errors=errors,
                data=data,
            )

        logger.info("Booking declined", extra={"booking_id": str(booking.id), "legs": outcomes})
        return ServiceResult.success(data)

    def _release_leg(
        self,
        booking: Booking,
        leg: str,
        intent_id: str,
        actor_id: UUID | str | None,
        now: datetime,
    ) -> str:
        """Cancel a hold or fully refund a charge. Returns the outcome."""
        intent = self.gateway.retrieve(intent_id)

        if intent.status in CANCELLABLE_INTENT_STATUSES:
            self.gateway.cancel(
                intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate("cancel", intent_id),
                cancellation_reason="requested_by_customer",
            )
            return "cancelled"

        if intent.status == GatewayIntentStatus.CANCELED:
            return "already_cancelled"

        if intent.status == GatewayIntentStatus.SUCCEEDED:
            if self.ledger.has_refund(booking, leg=leg):
                return "already_refunded"
            refund = self.gateway.refund(
                intent_id,
                idempotency_key=self._refund_key(booking, leg),
                reason="requested_by_customer",
                metadata=self._metadata(booking, leg),
            )
            self.ledger.record_transaction(
                booking,
                amount=from_cents(refund.amount_cents),
                stripe_transaction_id=refund.id,
                transaction_type=TransactionType.REFUND,
                leg=leg,
                description=f"Refund of {leg} on decline",
                processed_at=now,
                metadata={
                    "payment_intent_id": intent_id,
                    "actor_id": _actor(actor_id),
                    "method": "refund",
                },
            )
            return "refunded"

        raise GatewayError(
            f"Payment intent in status {intent.status} cannot be released yet",
            gateway_code=intent.status,
            details={"payment_intent_id": intent_id},
        )

    # ==========================================================================
    # Cancellation
    # ==========================================================================

    def _cancel(
        self,
        booking_id: UUID | str,
        actor_id: UUID | str | None,
        reason: str,
        now: datetime,
    ) -> ServiceResult[dict]:
        logger = self.get_logger()
        booking = self.ledger.get_booking(booking_id)

        if booking.booking_status == BookingStatus.CANCELLED and self.ledger.has_refund(booking):
            return ServiceResult.success(self._summary(booking, mode="already_cancelled"))

        if booking.booking_status not in (
            BookingStatus.PENDING,
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        ):
            raise PaymentValidationError(
                f"Booking in status {booking.booking_status} cannot be cancelled",
                details={"booking_status": booking.booking_status},
            )

        hours_until_service = booking.hours_until_service(now)

        if not booking.was_accepted:
            self._cancel_unaccepted(booking)
            booking.cancellation_fee = Decimal("0.00")
            booking.refund_amount = Decimal("0.00")
            policy = "not_accepted"
        elif hours_until_service <= capture_cutoff_hours():
            self._collect_late_cancellation(booking, now)
            booking.cancellation_fee = booking.total_amount
            booking.refund_amount = Decimal("0.00")
            policy = "within_cutoff"
        else:
            self._refund_service_leg(booking, actor_id, now)
            booking.cancellation_fee = booking.service_fee
            booking.refund_amount = booking.service_amount
            policy = "beyond_cutoff"

        with self.atomic():
            booking.booking_status = BookingStatus.CANCELLED
            booking.cancelled_at = now
            booking.cancelled_by = _actor(actor_id)
            booking.cancellation_reason = reason or ""
            self.ledger.save_booking(
                booking,
                [
                    "cancellation_fee",
                    "refund_amount",
                    "booking_status",
                    "cancelled_at",
                    "cancelled_by",
                    "cancellation_reason",
                ],
            )
            self.ledger.cancel_open_schedules(booking, "Booking cancelled")

        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": str(booking.id),
                "policy": policy,
                "hours_until_service": round(hours_until_service, 2),
                "cancellation_fee": str(booking.cancellation_fee),
                "refund_amount": str(booking.refund_amount),
            },
        )
        return ServiceResult.success(self._summary(booking, mode=policy))

    def _cancel_unaccepted(self, booking: Booking) -> None:
        if not booking.stripe_payment_intent_id:
            return

        intent = self.gateway.retrieve(booking.stripe_payment_intent_id)
        if intent.status in (GatewayIntentStatus.SUCCEEDED, GatewayIntentStatus.CANCELED):
            return

        self.gateway.cancel(
            intent.id,
            idempotency_key=IdempotencyKeyGenerator.generate("cancel", intent.id),
            cancellation_reason="requested_by_customer",
        )

    def _collect_late_cancellation(self, booking: Booking, now: datetime) -> None:
        """Capture an outstanding service hold; a late cancellation keeps the total."""
        intent_id = booking.stripe_service_amount_payment_intent_id
        if booking.remaining_balance_charged or not intent_id:
            return

        intent = self.gateway.retrieve(intent_id)
        if intent.status == GatewayIntentStatus.SUCCEEDED:
            self.settle_service_leg(booking, intent, now)
        elif intent.status == GatewayIntentStatus.REQUIRES_CAPTURE:
            self.capture_service_leg(
                booking,
                intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "capture_late_cancellation", booking.id
                ),
                now=now,
            )
        else:
            self.get_logger().warning(
                "Service authorization not collectable on late cancellation",
                extra={
                    "booking_id": str(booking.id),
                    "payment_intent_id": intent_id,
                    "status": intent.status,
                },
            )

    def _refund_service_leg(
        self,
        booking: Booking,
        actor_id: UUID | str | None,
        now: datetime,
    ) -> None:
        """Return the service amount; the platform fee is kept."""
        if self.ledger.has_refund(booking):
            return

        metadata = {"actor_id": _actor(actor_id)}
        service_intent_id = booking.stripe_service_amount_payment_intent_id

        if service_intent_id and not booking.remaining_balance_charged:
            intent = self.gateway.retrieve(service_intent_id)
            if intent.status in CANCELLABLE_INTENT_STATUSES:
                self.gateway.cancel(
                    service_intent_id,
                    idempotency_key=IdempotencyKeyGenerator.generate("cancel", service_intent_id),
                    cancellation_reason="requested_by_customer",
                )
                self.ledger.record_transaction(
                    booking,
                    amount=booking.service_amount,
                    stripe_transaction_id=service_intent_id,
                    transaction_type=TransactionType.REFUND,
                    leg=PaymentLeg.SERVICE_AMOUNT,
                    description="Service amount authorization released on cancellation",
                    processed_at=now,
                    metadata={**metadata, "method": "authorization_cancelled"},
                )
                return
            if intent.status != GatewayIntentStatus.SUCCEEDED:
                return
        elif not booking.remaining_balance_charged:
            return

        charge_intent_id = service_intent_id or booking.stripe_payment_intent_id
        refund = self.gateway.refund(
            charge_intent_id,
            idempotency_key=self._refund_key(booking, PaymentLeg.SERVICE_AMOUNT),
            amount_cents=to_cents(booking.service_amount),
            reason="requested_by_customer",
            metadata=self._metadata(booking, PaymentLeg.SERVICE_AMOUNT),
        )
        self.ledger.record_transaction(
            booking,
            amount=from_cents(refund.amount_cents),
            stripe_transaction_id=refund.id,
            transaction_type=TransactionType.REFUND,
            leg=PaymentLeg.SERVICE_AMOUNT,
            description="Service amount refund on cancellation",
            processed_at=now,
            metadata={**metadata, "payment_intent_id": charge_intent_id, "method": "refund"},
        )

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _charge_key(self, booking: Booking, leg: str) -> str:
        return IdempotencyKeyGenerator.generate(
            f"charge_{leg}", booking.id, attempt=booking.payment_attempts + 1
        )

    @staticmethod
    def _refund_key(booking: Booking, leg: str) -> str:
        return IdempotencyKeyGenerator.generate("refund", f"{booking.id}:{leg}")

    def _note_failed_attempt(self, booking: Booking, exc: GatewayError) -> None:
        """Definite failures get a fresh idempotency key on the next attempt."""
        if exc.outcome_unknown:
            return
        booking.payment_attempts += 1
        self.ledger.save_booking(booking, ["payment_attempts"])

    def _partial_failure(self, booking: Booking, exc: GatewayError) -> PartialLegFailure:
        return PartialLegFailure(
            f"Service fee charged but service amount failed: {exc.message}",
            details={
                **self._summary(booking),
                "leg": PaymentLeg.SERVICE_AMOUNT,
                "gateway_code": exc.gateway_code,
                "outcome_unknown": exc.outcome_unknown,
            },
            leg_error=exc,
        )

    @staticmethod
    def _metadata(booking: Booking, leg: str) -> dict[str, str]:
        return {
            "booking_id": str(booking.id),
            "booking_reference": booking.booking_reference or "",
            "payment_type": leg,
        }

    @staticmethod
    def _summary(
        booking: Booking,
        schedule: PaymentSchedule | None = None,
        mode: str | None = None,
    ) -> dict[str, Any]:
        summary: dict[str, Any] = {
            "booking_id": str(booking.id),
            "booking_status": booking.booking_status,
            "payment_status": booking.payment_status,
            "service_fee_charged": booking.service_fee_charged,
            "remaining_balance_charged": booking.remaining_balance_charged,
            "service_fee": str(booking.service_fee),
            "service_amount": str(booking.service_amount),
            "cancellation_fee": str(booking.cancellation_fee),
            "refund_amount": str(booking.refund_amount),
            "stripe_payment_intent_id": booking.stripe_payment_intent_id,
            "stripe_service_amount_payment_intent_id": (
                booking.stripe_service_amount_payment_intent_id
            ),
        }
        if mode:
            summary["mode"] = mode
        if schedule is not None:
            summary["schedule_id"] = str(schedule.id)
            summary["scheduled_at"] = schedule.scheduled_at.isoformat()
        return summary
