"""Payment lifecycle service for ride bookings.

Drives each booking's manual-capture payment through authorization, capture,
cancellation and refund, and applies the cancellation refund policy. Money
only moves through the gateway; state only changes through conditional
writes in the store.
"""

import datetime as dt
import logging
import os
import uuid
from collections.abc import Callable
from decimal import ROUND_FLOOR, Decimal
from typing import TYPE_CHECKING

from ridepay.models import (
    AuthorizationResult,
    CancellationOutcome,
    CancellationRecord,
    CancellationRole,
    CancellationStatus,
    CaptureOutcome,
    EarningsCredit,
    ErrorCode,
    GatewayError,
    InvalidStateError,
    NoShowOutcome,
    NoShowRecord,
    NoShowStatus,
    PaymentError,
    PaymentHistoryStatus,
    PaymentIntent,
    PaymentIntentStatus,
    PersistenceError,
    RefundOutcome,
    ValidationError,
)
from ridepay.models.payment_intent import ensure_transition
from ridepay.utils.items import utc_now
from ridepay.utils.logging import log_payment_operation

from .cancellation_store import cancellation_id_for
from .no_show_store import NoShowStore, no_show_id_for
from .refund_policy_service import RefundCalculation, RefundPolicyService

if TYPE_CHECKING:
    from .cancellation_store import CancellationStore
    from .outbox import OutboxService
    from .payment_gateway import PaymentGateway
    from .payment_store import PaymentIntentStore

logger = logging.getLogger(__name__)

_S = PaymentIntentStatus
_H = PaymentHistoryStatus

PLATFORM_FEE_RATE = Decimal("0.15")
DEFAULT_CURRENCY = "cad"

# A pending cancellation untouched for this long is taken to be abandoned
CANCELLATION_LEASE = dt.timedelta(minutes=2)

NO_SHOW_REASON = "Driver no-show"


class PaymentLifecycleService:
    """Service for authorizing, capturing, cancelling and refunding ride payments."""

    def __init__(
        self,
        store: "PaymentIntentStore",
        gateway: "PaymentGateway",
        outbox: "OutboxService",
        cancellations: "CancellationStore",
        refund_policy: RefundPolicyService | None = None,
        *,
        no_shows: NoShowStore | None = None,
        currency: str | None = None,
        clock: Callable[[], dt.datetime] = utc_now,
    ) -> None:
        """Initialize the lifecycle service.

        Args:
            store: Payment intent store
            gateway: Payment processor binding
            outbox: Best-effort history and event writer
            cancellations: Cancellation record store
            refund_policy: Refund calculator (default policy if omitted)
            no_shows: Driver no-show report store (shares the intent store's table client if omitted)
            currency: Charge currency. Defaults to PAYMENT_CURRENCY env var, then "cad"
            clock: Source of the current time
        """
        self.store = store
        self.gateway = gateway
        self.outbox = outbox
        self.cancellations = cancellations
        self.refund_policy = refund_policy or RefundPolicyService()
        self.no_shows = no_shows or NoShowStore(store.db)
        self.currency = (currency or os.getenv("PAYMENT_CURRENCY", DEFAULT_CURRENCY)).lower()
        self._clock = clock

    def _generate_payment_id(self) -> str:
        """Generate a unique payment intent ID like PI-ABC123DEF456."""
        return f"PI-{uuid.uuid4().hex[:12].upper()}"

    # =========================================================================
    # Reads
    # =========================================================================

    def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        """Get a payment intent by ID.

        Raises:
            ValidationError: If no such intent exists
        """
        intent = self.store.get(payment_intent_id)
        if intent is None:
            raise ValidationError(
                code=ErrorCode.PAYMENT_INTENT_NOT_FOUND,
                details={"payment_intent_id": payment_intent_id},
            )
        return intent

    def get_payment_intent_for_booking(self, booking_id: str) -> PaymentIntent:
        """Get the current payment of a booking.

        Raises:
            ValidationError: If the booking has no payment
        """
        intent = self.store.get_by_booking_id(booking_id)
        if intent is None:
            raise ValidationError(
                code=ErrorCode.PAYMENT_INTENT_NOT_FOUND,
                details={"booking_id": booking_id},
            )
        return intent

    def estimate_refund(
        self,
        payment_intent_id: str,
        departure_time: dt.datetime,
        cancelled_by_role: CancellationRole | str,
        at: dt.datetime | None = None,
    ) -> RefundCalculation:
        """Refund terms a cancellation would get right now, without side effects."""
        intent = self.get_payment_intent(payment_intent_id)
        return self.refund_policy.calculate_refund(
            departure_time,
            intent.amount_total,
            at or self._clock(),
            cancelled_by_role,
            quantum=Decimal("1"),
        )

    # =========================================================================
    # Authorization
    # =========================================================================

    def authorize_for_booking(
        self,
        *,
        ride_id: str,
        booking_id: str | None,
        rider_id: str,
        driver_id: str,
        amount_subtotal: int,
        referral_code: str | None = None,
        payment_method_id: str | None = None,
    ) -> AuthorizationResult:
        """Place a hold for a booking's fare.

        Args:
            ride_id: Ride being booked
            booking_id: Booking the payment belongs to
            rider_id: Payer
            driver_id: Payee
            amount_subtotal: Fare before discounts, in cents
            referral_code: Optional referral code; ignored if invalid
            payment_method_id: Saved payment method to confirm with immediately

        Returns:
            AuthorizationResult with the stored intent and the client secret

        Raises:
            ValidationError: Missing reference or non-positive amount
            GatewayError: The processor declined the hold
            PersistenceError: The intent could not be stored (hold released)
        """
        missing = [
            name
            for name, value in (("ride_id", ride_id), ("rider_id", rider_id), ("driver_id", driver_id))
            if not value
        ]
        if missing:
            raise ValidationError(
                code=ErrorCode.MISSING_REFERENCE,
                details={"missing": ", ".join(missing)},
            )
        if amount_subtotal <= 0:
            raise ValidationError(
                f"Amount must be positive, got {amount_subtotal}",
                code=ErrorCode.INVALID_AMOUNT,
            )

        now = self._clock()
        discount = 0
        applied_code: str | None = None
        if referral_code:
            discount = self.store.get_referral_discount(referral_code, amount_subtotal, now)
            if discount:
                applied_code = referral_code

        amount_total = amount_subtotal - discount
        if amount_total <= 0:
            raise ValidationError(
                "Discount leaves nothing to charge",
                code=ErrorCode.INVALID_AMOUNT,
                details={"referral_code": referral_code or ""},
            )

        payment_intent_id = self._generate_payment_id()
        result = self.gateway.authorize(
            amount=amount_total,
            currency=self.currency,
            metadata={
                "payment_intent_id": payment_intent_id,
                "ride_id": ride_id,
                "booking_id": booking_id or "",
                "rider_id": rider_id,
                "driver_id": driver_id,
                "referral_code": applied_code or "",
            },
            description=f"Ride {ride_id}",
            idempotency_key=f"authorize_{payment_intent_id}",
            payment_method_id=payment_method_id,
        )

        intent = PaymentIntent(
            payment_intent_id=payment_intent_id,
            stripe_payment_intent_id=result["external_id"],
            ride_id=ride_id,
            booking_id=booking_id,
            rider_id=rider_id,
            driver_id=driver_id,
            amount_subtotal=amount_subtotal,
            discount_amount=discount,
            amount_total=amount_total,
            currency=self.currency,
            status=PaymentIntentStatus.from_processor(result["status"]),
            referral_code=applied_code,
            created_at=now,
            updated_at=now,
        )

        try:
            self.store.create(intent)
        except PersistenceError:
            # Never leave a hold on the rider's card that nothing tracks
            try:
                self.gateway.cancel(result["external_id"], "payment record could not be saved")
            except GatewayError:
                logger.exception("Failed to release orphaned hold %s", result["external_id"])
            raise

        if applied_code:
            try:
                if not self.store.mark_referral_used(applied_code, now):
                    logger.warning("Referral code %s was consumed concurrently", applied_code)
            except PersistenceError:
                logger.exception("Failed to mark referral code %s used", applied_code)

        self.outbox.record_history(
            intent,
            _H.AUTHORIZED,
            amount_total,
            f"Payment authorized for ride {ride_id}",
            now,
        )
        log_payment_operation(
            logger,
            "authorize",
            payment_intent_id=payment_intent_id,
            ride_id=ride_id,
            amount_cents=amount_total,
            status=intent.status.value,
        )
        return AuthorizationResult(payment_intent=intent, client_secret=result["client_secret"])

    # =========================================================================
    # Capture
    # =========================================================================

    def capture_payment(
        self,
        payment_intent_id: str,
        amount_to_capture: int | None = None,
    ) -> CaptureOutcome:
        """Capture an authorized payment.

        Raises:
            ValidationError: Unknown intent or amount outside (0, amount_total]
            InvalidStateError: Intent not authorized; the gateway is not called
            GatewayError: The processor rejected the capture
        """
        intent = self.get_payment_intent(payment_intent_id)
        return self._capture(intent, amount_to_capture, self._clock())

    def capture_on_completion(
        self,
        payment_intent_id: str,
        *,
        attempt: int | None = None,
    ) -> CaptureOutcome:
        """Capture the full fare of a completed ride and credit the driver.

        Errors propagate before any ledger event is written.

        Args:
            payment_intent_id: Payment to capture
            attempt: Worker attempt number; each attempt gets its own
                processor idempotency key so a stored failure is not replayed
        """
        now = self._clock()
        intent = self.get_payment_intent(payment_intent_id)
        outcome = self._capture(intent, None, now, attempt=attempt)

        self._credit_earnings(outcome.payment_intent, outcome.captured_amount, now)
        self.outbox.record_history(
            outcome.payment_intent,
            _H.SUCCEEDED,
            outcome.captured_amount,
            f"Payment captured for ride {intent.ride_id}",
            now,
        )
        return outcome

    def _capture(
        self,
        intent: PaymentIntent,
        amount_to_capture: int | None,
        now: dt.datetime,
        extra_metadata: dict[str, int] | None = None,
        *,
        attempt: int | None = None,
    ) -> CaptureOutcome:
        if not intent.is_capturable:
            raise InvalidStateError(
                f"Cannot capture payment in status {intent.status.value}",
                details={
                    "payment_intent_id": intent.payment_intent_id,
                    "current_status": intent.status.value,
                },
            )
        ensure_transition(intent.status, _S.SUCCEEDED, intent.payment_intent_id)

        amount = intent.amount_total if amount_to_capture is None else amount_to_capture
        if amount <= 0 or amount > intent.amount_total:
            raise ValidationError(
                f"Capture amount must be between 1 and {intent.amount_total}",
                code=ErrorCode.INVALID_AMOUNT,
                details={"amount_to_capture": str(amount)},
            )
        external_id = self._external_id(intent)

        # Same amount and attempt replays safely; a different amount needs its own key
        key = f"capture_{external_id}_{amount}"
        if attempt is not None:
            key += f"_{attempt}"
        response = self.gateway.capture(external_id, amount_to_capture, idempotency_key=key)
        captured = response["captured_amount"]

        metadata = {**intent.metadata, "amount_captured": captured}
        if extra_metadata:
            metadata.update(extra_metadata)
        saved = self._persist(
            intent,
            intent.model_copy(
                update={
                    "status": _S.SUCCEEDED,
                    "captured_at": now,
                    "updated_at": now,
                    "metadata": metadata,
                }
            ),
        )
        log_payment_operation(
            logger,
            "capture",
            payment_intent_id=intent.payment_intent_id,
            ride_id=intent.ride_id,
            amount_cents=captured,
            status=saved.status.value,
        )
        return CaptureOutcome(
            payment_intent=saved,
            captured_amount=captured,
            charge_id=response["charge_id"],
        )

    def _credit_earnings(self, intent: PaymentIntent, captured: int, now: dt.datetime) -> None:
        platform_fee = int(
            (Decimal(captured) * PLATFORM_FEE_RATE).to_integral_value(rounding=ROUND_FLOOR)
        )
        credit = EarningsCredit(
            payee_id=intent.driver_id,
            payment_intent_id=intent.payment_intent_id,
            ride_id=intent.ride_id,
            booking_id=intent.booking_id,
            gross_amount=captured,
            platform_fee=platform_fee,
            net_amount=captured - platform_fee,
            platform_fee_rate=PLATFORM_FEE_RATE,
        )
        self.outbox.emit_earnings_credit(credit, now)

    # =========================================================================
    # Cancel and refund
    # =========================================================================

    def cancel_payment(self, payment_intent_id: str, reason: str) -> PaymentIntent:
        """Release the hold on an authorized payment.

        Raises:
            InvalidStateError: Intent not authorized
            GatewayError: The processor rejected the cancellation
        """
        now = self._clock()
        intent = self.get_payment_intent(payment_intent_id)
        cancelled = self._cancel(intent, reason, now)
        self.outbox.record_history(
            cancelled,
            _H.CANCELLED,
            0,
            f"Payment cancelled: {reason}",
            now,
        )
        return cancelled

    def _cancel(self, intent: PaymentIntent, reason: str, now: dt.datetime) -> PaymentIntent:
        if intent.status != _S.AUTHORIZED:
            raise InvalidStateError(
                f"Cannot cancel payment in status {intent.status.value}",
                details={
                    "payment_intent_id": intent.payment_intent_id,
                    "current_status": intent.status.value,
                },
            )
        ensure_transition(intent.status, _S.CANCELED, intent.payment_intent_id)

        self.gateway.cancel(self._external_id(intent), reason)
        saved = self._persist(
            intent,
            intent.model_copy(
                update={
                    "status": _S.CANCELED,
                    "canceled_at": now,
                    "cancellation_reason": reason,
                    "updated_at": now,
                }
            ),
        )
        log_payment_operation(
            logger,
            "cancel",
            payment_intent_id=intent.payment_intent_id,
            ride_id=intent.ride_id,
            status=saved.status.value,
            reason=reason,
        )
        return saved

    def refund_payment(
        self,
        payment_intent_id: str,
        amount: int | None = None,
        reason: str | None = None,
    ) -> RefundOutcome:
        """Refund part or all of a captured payment.

        Args:
            payment_intent_id: Payment to refund
            amount: Cents to refund; defaults to everything not yet refunded
            reason: Reason recorded with the refund

        Raises:
            InvalidStateError: Intent not captured
            ValidationError: Amount outside (0, remaining refundable]
            GatewayError: The processor rejected the refund
        """
        now = self._clock()
        intent = self.get_payment_intent(payment_intent_id)
        saved, refund_id, refunded = self._refund(intent, amount, reason, now)

        fully_refunded = saved.refundable_amount == 0
        self.outbox.record_history(
            saved,
            _H.REFUNDED if fully_refunded else _H.PARTIAL_REFUND,
            saved.amount_captured,
            f"Refunded {refunded} cents" + (f": {reason}" if reason else ""),
            now,
            amount_refunded=saved.amount_refunded,
        )
        return RefundOutcome(
            payment_intent_id=saved.payment_intent_id,
            refund_id=refund_id,
            amount_refunded=refunded,
            total_refunded=saved.amount_refunded,
            remaining_refundable=saved.refundable_amount,
        )

    def _refund(
        self,
        intent: PaymentIntent,
        amount: int | None,
        reason: str | None,
        now: dt.datetime,
        extra_metadata: dict[str, int] | None = None,
    ) -> tuple[PaymentIntent, str, int]:
        if intent.status != _S.SUCCEEDED:
            raise InvalidStateError(
                f"Cannot refund payment in status {intent.status.value}",
                details={
                    "payment_intent_id": intent.payment_intent_id,
                    "current_status": intent.status.value,
                },
            )
        refundable = intent.refundable_amount
        requested = refundable if amount is None else amount
        if requested <= 0 or requested > refundable:
            raise ValidationError(
                f"Refund amount must be between 1 and {refundable}",
                code=(
                    ErrorCode.REFUND_EXCEEDS_CAPTURE
                    if requested > refundable
                    else ErrorCode.INVALID_AMOUNT
                ),
                details={"amount": str(requested), "refundable": str(refundable)},
            )
        external_id = self._external_id(intent)

        # Keyed on the running total so a retried refund is not applied twice
        response = self.gateway.refund(
            external_id,
            requested,
            reason,
            idempotency_key=f"refund_{external_id}_{intent.amount_refunded + requested}",
        )
        refunded = response["amount_refunded"]

        saved = self._persist(
            intent,
            intent.model_copy(
                update={
                    "updated_at": now,
                    "metadata": {
                        **intent.metadata,
                        **(extra_metadata or {}),
                        "amount_refunded": intent.amount_refunded + refunded,
                    },
                }
            ),
        )
        self.outbox.emit_earnings_reversal(saved, refunded, now)
        log_payment_operation(
            logger,
            "refund",
            payment_intent_id=intent.payment_intent_id,
            ride_id=intent.ride_id,
            amount_cents=refunded,
            status=saved.status.value,
            refund_id=response["refund_id"],
        )
        return saved, response["refund_id"], refunded

    # =========================================================================
    # Policy cancellation
    # =========================================================================

    def cancel_with_policy(
        self,
        payment_intent_id: str,
        departure_time: dt.datetime,
        cancelled_by_role: CancellationRole | str,
        reason: str,
        *,
        cancelled_by: str | None = None,
        cancellation_time: dt.datetime | None = None,
    ) -> CancellationOutcome:
        """Cancel a booking's payment, applying the refund policy.

        Safe to call repeatedly: the first call records the terms and moves
        money; later calls return the recorded outcome. A call that failed at
        the processor can be retried and reuses the recorded terms.

        Args:
            payment_intent_id: Booking payment to cancel
            departure_time: Scheduled departure of the ride
            cancelled_by_role: driver or passenger
            reason: Free-text cancellation reason
            cancelled_by: User who cancelled
            cancellation_time: When the cancellation happened (default now)

        Returns:
            CancellationOutcome with the refund terms and what was applied
        """
        stamp = self._clock()
        now = cancellation_time or stamp
        role = CancellationRole(cancelled_by_role)
        intent = self.get_payment_intent(payment_intent_id)
        cancellation_id = cancellation_id_for(payment_intent_id)

        terms = self.refund_policy.calculate_refund(
            departure_time,
            intent.amount_total,
            now,
            role,
            quantum=Decimal("1"),
        )
        record = CancellationRecord(
            cancellation_id=cancellation_id,
            payment_intent_id=payment_intent_id,
            ride_id=intent.ride_id,
            booking_id=intent.booking_id,
            cancelled_by=cancelled_by,
            cancelled_by_role=role,
            reason=reason,
            cancellation_time=now,
            departure_time=departure_time,
            original_amount=intent.amount_total,
            hours_before_departure=terms["hours_before_departure"],
            refund_eligible=terms["refund_eligible"],
            refund_percentage=terms["refund_percentage"],
            refund_amount=int(terms["refund_amount"]),
            cancellation_fee=int(terms["cancellation_fee"]),
            status=CancellationStatus.PENDING,
            created_at=stamp,
            updated_at=stamp,
        )

        if not self.cancellations.create(record):
            existing = self.cancellations.get(cancellation_id)
            if existing is None:
                raise PersistenceError(
                    f"Cancellation {cancellation_id} disappeared during creation",
                    details={"cancellation_id": cancellation_id},
                )
            if existing.status == CancellationStatus.COMPLETED:
                return CancellationOutcome.from_record(existing, "Cancellation already processed")
            if existing.status == CancellationStatus.PENDING:
                last_touched = existing.updated_at or existing.created_at
                if stamp - last_touched < CANCELLATION_LEASE:
                    return _in_progress(existing)
                reclaimed = self.cancellations.take_over(existing, stamp)
                if reclaimed is not None:
                    logger.warning("Taking over abandoned cancellation %s", cancellation_id)
            else:
                reclaimed = self.cancellations.reclaim(cancellation_id, stamp)
                if reclaimed is not None:
                    logger.info("Retrying cancellation %s from pending reconciliation", cancellation_id)

            if reclaimed is None:
                return _in_progress(self.cancellations.get(cancellation_id) or existing)
            record = reclaimed
            intent = self.get_payment_intent(payment_intent_id)

        return self._apply_cancellation(intent, record, now)

    def _apply_cancellation(
        self,
        intent: PaymentIntent,
        record: CancellationRecord,
        now: dt.datetime,
    ) -> CancellationOutcome:
        try:
            settled = self._settle_cancellation(intent, record, now)
        except GatewayError as e:
            try:
                parked = self.cancellations.mark_pending_reconciliation(
                    record.cancellation_id, e.message, now
                )
            except PersistenceError:
                # Left pending; the next call takes it over once the lease lapses
                logger.exception("Failed to park cancellation %s", record.cancellation_id)
                parked = None
            log_payment_operation(
                logger,
                "cancel_with_policy",
                payment_intent_id=intent.payment_intent_id,
                ride_id=intent.ride_id,
                status=CancellationStatus.PENDING_RECONCILIATION.value,
                error=e.message,
            )
            return CancellationOutcome.from_record(
                parked or record.model_copy(update={"error_message": e.message}),
                "Refund terms recorded; payment processor call failed and will be reconciled",
                success=False,
            )
        except PaymentError as e:
            try:
                self.cancellations.mark_pending_reconciliation(record.cancellation_id, e.message, now)
            except PersistenceError:
                logger.exception("Failed to park cancellation %s", record.cancellation_id)
            raise

        if settled is None:
            message = f"Payment is {intent.status.value}; nothing can be applied yet"
            parked = self.cancellations.mark_pending_reconciliation(
                record.cancellation_id, message, now
            )
            return CancellationOutcome.from_record(parked or record, message, success=False)

        outcome_status, message, current = settled
        completed = self.cancellations.complete(record.cancellation_id, outcome_status, now)

        self.outbox.record_history(
            current,
            outcome_status,
            record.original_amount,
            message,
            now,
            amount_refunded=current.amount_refunded or None,
        )
        self.outbox.emit_cancellation_notice(
            current,
            {
                "cancellation_id": record.cancellation_id,
                "cancelled_by_role": record.cancelled_by_role.value,
                "refund_amount": record.refund_amount,
                "refund_percentage": record.refund_percentage,
                "cancellation_fee": record.cancellation_fee,
                "outcome": outcome_status.value,
            },
            now,
        )
        if record.refund_percentage == 100 and current.referral_code:
            try:
                self.store.release_referral(current.referral_code, now)
            except PersistenceError:
                logger.exception("Failed to release referral code %s", current.referral_code)

        log_payment_operation(
            logger,
            "cancel_with_policy",
            payment_intent_id=current.payment_intent_id,
            ride_id=current.ride_id,
            status=outcome_status.value,
            refund_percentage=record.refund_percentage,
        )
        return CancellationOutcome.from_record(
            completed
            or record.model_copy(
                update={"status": CancellationStatus.COMPLETED, "outcome": outcome_status}
            ),
            message,
        )

    def _settle_cancellation(
        self,
        intent: PaymentIntent,
        record: CancellationRecord,
        now: dt.datetime,
    ) -> tuple[PaymentHistoryStatus, str, PaymentIntent] | None:
        """Move the money a cancellation calls for.

        Returns:
            (history status, message, resulting intent), or None when the
            payment is not yet authorized and nothing can be applied
        """
        pct = record.refund_percentage

        if intent.status == _S.AUTHORIZED:
            fee = record.cancellation_fee
            if pct == 100 or fee == 0:
                cancelled = self._cancel(intent, record.reason, now)
                return _H.CANCELLED, "Authorization released; you were not charged", cancelled
            if pct == 0:
                outcome = self._capture(intent, None, now)
                self._credit_earnings(outcome.payment_intent, outcome.captured_amount, now)
                return (
                    _H.COMPLETED_NO_REFUND,
                    f"No refund under the cancellation policy; charged {outcome.captured_amount} cents",
                    outcome.payment_intent,
                )
            outcome = self._capture(
                intent,
                fee,
                now,
                extra_metadata={
                    "cancellation_fee": fee,
                    "charged_amount": fee,
                    "never_charged_amount": intent.amount_total - fee,
                },
            )
            self._credit_earnings(outcome.payment_intent, outcome.captured_amount, now)
            return (
                _H.PARTIAL_REFUND,
                f"Charged a {fee} cent cancellation fee; {intent.amount_total - fee} cents released",
                outcome.payment_intent,
            )

        if intent.status == _S.SUCCEEDED:
            # An earlier attempt at this cancellation may already have moved the money
            if "cancellation_fee" in intent.metadata:
                fee = int(intent.metadata["cancellation_fee"])
                return _H.PARTIAL_REFUND, f"Charged a {fee} cent cancellation fee", intent
            already = int(intent.metadata.get("cancellation_refunded", 0))
            refund = min(record.refund_amount - already, intent.refundable_amount)
            status = _H.REFUNDED if pct == 100 else _H.PARTIAL_REFUND
            if refund <= 0:
                if already:
                    return status, f"Refunded {already} cents ({pct}%)", intent
                return _H.COMPLETED_NO_REFUND, "No refund under the cancellation policy", intent
            refunded, _, amount = self._refund(
                intent,
                refund,
                record.reason,
                now,
                extra_metadata={"cancellation_refunded": already + refund},
            )
            return status, f"Refunded {amount} cents ({pct}%)", refunded

        if intent.status in (_S.CANCELED, _S.FAILED):
            return _H.CANCELLED, f"Payment already {intent.status.value}; nothing to refund", intent

        return None

    # =========================================================================
    # Driver no-show
    # =========================================================================

    def report_driver_no_show(
        self,
        payment_intent_id: str,
        *,
        reported_by: str,
        reason: str,
    ) -> NoShowOutcome:
        """Record that the driver never showed up, and give the rider their money back.

        An authorized hold is released. A captured payment is refunded in
        full, and that refund is the driver's penalty. Reporting a payment
        again returns the confirmed report, or retries a refund that failed.

        Args:
            payment_intent_id: Payment of the booking the driver missed
            reported_by: User reporting the no-show
            reason: What happened

        Returns:
            NoShowOutcome with the refund and penalty recorded

        Raises:
            ValidationError: Unknown payment, or no reporter or reason given
        """
        if not reported_by or not reason:
            raise ValidationError(
                "A no-show report needs a reporter and a reason",
                code=ErrorCode.MISSING_REFERENCE,
                details={"payment_intent_id": payment_intent_id},
            )
        now = self._clock()
        intent = self.get_payment_intent(payment_intent_id)
        record = NoShowRecord(
            no_show_id=no_show_id_for(payment_intent_id),
            payment_intent_id=payment_intent_id,
            ride_id=intent.ride_id,
            booking_id=intent.booking_id,
            driver_id=intent.driver_id,
            rider_id=intent.rider_id,
            reported_by=reported_by,
            reason=reason,
            reported_at=now,
            updated_at=now,
        )

        if not self.no_shows.create(record):
            existing = self.no_shows.get(record.no_show_id)
            if existing is None:
                raise PersistenceError(
                    f"No-show {record.no_show_id} disappeared during creation",
                    details={"no_show_id": record.no_show_id},
                )
            if existing.status == NoShowStatus.CONFIRMED:
                return NoShowOutcome.from_record(existing, "No-show already reported")
            logger.info("Retrying refund for no-show %s", existing.no_show_id)
            record = existing

        try:
            settled = self._settle_no_show(intent, now)
        except GatewayError as e:
            noted = self.no_shows.note_failure(record.no_show_id, e.message, now)
            log_payment_operation(
                logger,
                "driver_no_show",
                payment_intent_id=payment_intent_id,
                ride_id=intent.ride_id,
                status=NoShowStatus.PENDING.value,
                error=e.message,
            )
            return NoShowOutcome.from_record(
                noted or record.model_copy(update={"error_message": e.message}),
                "No-show recorded; the refund failed and is retried when reported again",
                success=False,
            )

        if settled is None:
            return NoShowOutcome.from_record(
                record,
                f"No-show recorded; payment is {intent.status.value} and nothing was refunded",
            )

        refund_amount, penalty_amount, message, current = settled
        confirmed = self.no_shows.confirm(record.no_show_id, refund_amount, penalty_amount, now)
        self.outbox.emit_no_show_notice(
            current,
            {
                "no_show_id": record.no_show_id,
                "refund_amount": refund_amount,
                "penalty_amount": penalty_amount,
            },
            now,
        )
        log_payment_operation(
            logger,
            "driver_no_show",
            payment_intent_id=payment_intent_id,
            ride_id=intent.ride_id,
            amount_cents=refund_amount,
            status=current.status.value,
            penalty_cents=penalty_amount,
        )
        return NoShowOutcome.from_record(
            confirmed
            or record.model_copy(
                update={
                    "status": NoShowStatus.CONFIRMED,
                    "refund_amount": refund_amount,
                    "penalty_amount": penalty_amount,
                }
            ),
            message,
        )

    def _settle_no_show(
        self,
        intent: PaymentIntent,
        now: dt.datetime,
    ) -> tuple[int, int, str, PaymentIntent] | None:
        """Give a no-show's fare back.

        Returns:
            (refund, penalty, message, resulting intent), or None when the
            payment is not settled enough to act on
        """
        if intent.status == _S.AUTHORIZED:
            cancelled = self._cancel(intent, NO_SHOW_REASON, now)
            self.outbox.record_history(
                cancelled,
                _H.CANCELLED,
                0,
                f"{NO_SHOW_REASON}: authorization released",
                now,
            )
            return intent.amount_total, 0, "Authorization released; the rider was not charged", cancelled

        if intent.status == _S.SUCCEEDED:
            # Counts what an earlier report of this no-show already refunded
            refunded = int(intent.metadata.get("no_show_refunded", 0))
            current = intent
            remaining = intent.refundable_amount
            if remaining > 0:
                current, _, amount = self._refund(
                    intent,
                    remaining,
                    NO_SHOW_REASON,
                    now,
                    extra_metadata={"no_show_refunded": refunded + remaining},
                )
                refunded += amount
                self.outbox.record_history(
                    current,
                    _H.REFUNDED,
                    current.amount_captured,
                    f"{NO_SHOW_REASON}: refunded {amount} cents",
                    now,
                    amount_refunded=current.amount_refunded,
                )
            if not refunded:
                return 0, 0, "Payment was already fully refunded", current
            return refunded, refunded, f"Refunded {refunded} cents; the driver forfeits the fare", current

        if intent.status == _S.CANCELED:
            released = intent.amount_total if intent.cancellation_reason == NO_SHOW_REASON else 0
            return released, 0, "Payment already cancelled; the rider was not charged", intent

        if intent.status == _S.FAILED:
            return 0, 0, "Payment failed; the rider was not charged", intent

        return None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _external_id(self, intent: PaymentIntent) -> str:
        if not intent.stripe_payment_intent_id:
            raise ValidationError(
                "Payment has no processor reference",
                code=ErrorCode.MISSING_REFERENCE,
                details={"payment_intent_id": intent.payment_intent_id},
            )
        return intent.stripe_payment_intent_id

    def _persist(self, before: PaymentIntent, after: PaymentIntent) -> PaymentIntent:
        saved = self.store.save(
            after,
            expected_status=before.status,
            expected_version=before.version,
        )
        if saved is None:
            raise InvalidStateError(
                code=ErrorCode.CONCURRENT_MODIFICATION,
                details={"payment_intent_id": before.payment_intent_id},
            )
        return saved


def _in_progress(record: CancellationRecord) -> CancellationOutcome:
    """Outcome for a caller that found another caller's cancellation unfinished.

    Reported as unsuccessful: no money has provably moved yet.
    """
    if record.status == CancellationStatus.COMPLETED:
        return CancellationOutcome.from_record(record, "Cancellation already processed")
    return CancellationOutcome.from_record(record, "Cancellation already in progress", success=False)
