"""Best-effort writer for payment history and downstream events.

Notification and earnings services consume the outbox table. A failed write
here never undoes a money movement: it is logged and reported as False.
"""

import datetime as dt
import logging
import uuid
from typing import TYPE_CHECKING, Any

from ridepay.models import (
    EarningsCredit,
    OutboxEventType,
    PaymentHistoryStatus,
    PaymentIntent,
)
from ridepay.utils.items import drop_none, dynamo_numbers

from .dynamodb import BOTO_ERRORS

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


class OutboxService:
    """Appends payment-history rows and outbox events."""

    HISTORY_TABLE = "payment-history"
    OUTBOX_TABLE = "outbox-events"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def _generate_id(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"

    def record_history(
        self,
        intent: PaymentIntent,
        status: PaymentHistoryStatus,
        amount: int,
        description: str,
        at: dt.datetime,
        *,
        amount_refunded: int | None = None,
    ) -> bool:
        """Append one payment-history transition.

        Args:
            intent: Payment the transition belongs to
            status: History status written
            amount: Amount relevant to the transition, in cents
            description: Human-readable summary
            at: Transition time
            amount_refunded: Refunded amount, for refund transitions

        Returns:
            True if written, False if the write failed
        """
        item = drop_none(
            {
                "history_id": self._generate_id("PH"),
                "payment_intent_id": intent.payment_intent_id,
                "stripe_payment_intent_id": intent.stripe_payment_intent_id,
                "user_id": intent.rider_id,
                "ride_id": intent.ride_id,
                "booking_id": intent.booking_id,
                "status": status.value,
                "amount": amount,
                "amount_refunded": amount_refunded,
                "currency": intent.currency,
                "description": description,
                "created_at": at.isoformat(),
            }
        )
        try:
            self.db.put_item(self.HISTORY_TABLE, item)
        except BOTO_ERRORS:
            logger.exception(
                "Failed to record %s history for %s",
                status.value,
                intent.payment_intent_id,
            )
            return False
        return True

    def emit(
        self,
        event_type: OutboxEventType,
        payload: dict[str, Any],
        at: dt.datetime,
    ) -> bool:
        """Append an event for downstream consumers.

        Returns:
            True if written, False if the write failed
        """
        event_id = self._generate_id("EVT")
        item = {
            "event_id": event_id,
            "event_type": event_type.value,
            "payload": dynamo_numbers(drop_none(payload)),
            "status": "pending",
            "created_at": at.isoformat(),
        }
        try:
            self.db.put_item(self.OUTBOX_TABLE, item)
        except BOTO_ERRORS:
            logger.exception("Failed to emit %s event", event_type.value)
            return False
        logger.info("Emitted %s event %s", event_type.value, event_id)
        return True

    def emit_earnings_credit(self, credit: EarningsCredit, at: dt.datetime) -> bool:
        return self.emit(OutboxEventType.EARNINGS_CREDIT, credit.model_dump(), at)

    def emit_earnings_reversal(
        self,
        intent: PaymentIntent,
        amount_refunded: int,
        at: dt.datetime,
    ) -> bool:
        return self.emit(
            OutboxEventType.EARNINGS_REVERSAL,
            {
                "payee_id": intent.driver_id,
                "payment_intent_id": intent.payment_intent_id,
                "ride_id": intent.ride_id,
                "booking_id": intent.booking_id,
                "amount_refunded": amount_refunded,
            },
            at,
        )

    def emit_cancellation_notice(
        self,
        intent: PaymentIntent,
        payload: dict[str, Any],
        at: dt.datetime,
    ) -> bool:
        """Tell the rider what their cancellation cost them."""
        body = {
            "user_id": intent.rider_id,
            "payment_intent_id": intent.payment_intent_id,
            "ride_id": intent.ride_id,
            "booking_id": intent.booking_id,
        }
        body.update(payload)
        return self.emit(OutboxEventType.CANCELLATION_NOTICE, body, at)

    def emit_no_show_notice(
        self,
        intent: PaymentIntent,
        payload: dict[str, Any],
        at: dt.datetime,
    ) -> bool:
        """Tell the rider about their refund and the driver about the penalty."""
        body = {
            "user_id": intent.rider_id,
            "payee_id": intent.driver_id,
            "payment_intent_id": intent.payment_intent_id,
            "ride_id": intent.ride_id,
            "booking_id": intent.booking_id,
        }
        body.update(payload)
        return self.emit(OutboxEventType.NO_SHOW_NOTICE, body, at)
