"""Webhook handler for processing Stripe payment intent events.

Keeps stored payment intents in step with status changes that happen on the
processor side, such as a rider confirming their card on the device. Events
only move an intent forward; stale or out-of-order deliveries are skipped.
"""

import datetime as dt
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ridepay.models import PaymentIntentStatus, StripeWebhookEvent, can_transition
from ridepay.utils.items import drop_none, utc_now
from ridepay.utils.logging import log_webhook_event

from .dynamodb import BOTO_ERRORS, persistence_error

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService
    from .payment_store import PaymentIntentStore

logger = logging.getLogger(__name__)

# Event type -> status the intent moves to
EVENT_STATUS: dict[str, PaymentIntentStatus] = {
    "payment_intent.amount_capturable_updated": PaymentIntentStatus.AUTHORIZED,
    "payment_intent.requires_action": PaymentIntentStatus.REQUIRES_ACTION,
    "payment_intent.processing": PaymentIntentStatus.PROCESSING,
    "payment_intent.payment_failed": PaymentIntentStatus.FAILED,
    "payment_intent.canceled": PaymentIntentStatus.CANCELED,
}


class WebhookHandler:
    """Handler for processing Stripe webhook events.

    Ensures idempotent processing using event_id tracking.
    """

    WEBHOOK_EVENTS_TABLE = "stripe-webhook-events"

    def __init__(
        self,
        db: "DynamoDBService",
        store: "PaymentIntentStore",
        clock: Callable[[], dt.datetime] = utc_now,
    ) -> None:
        self._db = db
        self.store = store
        self._clock = clock

    def is_event_already_processed(self, event_id: str) -> bool:
        """Check if webhook event was already processed (idempotency)."""
        try:
            existing = self._db.get_item(self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id})
        except BOTO_ERRORS as e:
            raise persistence_error("read webhook event", e) from e
        return existing is not None

    def log_event(self, event: StripeWebhookEvent) -> None:
        """Record a processed event for idempotency and audit trail."""
        item: dict[str, Any] = drop_none(
            {
                "event_id": event.event_id,
                "event_type": event.event_type,
                "processed_at": event.processed_at.isoformat(),
                "payload_hash": event.payload_hash,
                "payment_intent_id": event.payment_intent_id,
                "processing_result": event.processing_result,
                "error_message": event.error_message,
            }
        )
        try:
            self._db.put_item(self.WEBHOOK_EVENTS_TABLE, item)
        except BOTO_ERRORS as e:
            raise persistence_error("log webhook event", e) from e

    def handle_event(self, event: dict, payload_hash: str) -> tuple[str, str | None]:
        """Process a verified Stripe event.

        Args:
            event: Parsed Stripe webhook event
            payload_hash: SHA-256 hash of the raw payload

        Returns:
            Tuple of (processing_result, message) where the result is one of
            success, duplicate, skipped or error
        """
        event_id = event.get("id", "")
        event_type = event.get("type", "")

        if self.is_event_already_processed(event_id):
            log_webhook_event(logger, event_type, event_id, result="duplicate")
            return "duplicate", "Event already processed"

        if event_type not in EVENT_STATUS:
            result, message, payment_intent_id = "skipped", f"Unhandled event type {event_type}", None
        else:
            result, message, payment_intent_id = self._apply_status_event(event)

        self.log_event(
            StripeWebhookEvent(
                event_id=event_id,
                event_type=event_type,
                processed_at=self._clock(),
                payload_hash=payload_hash,
                payment_intent_id=payment_intent_id,
                processing_result=result,
                error_message=message,
            )
        )
        log_webhook_event(
            logger,
            event_type,
            event_id,
            payment_intent_id=payment_intent_id,
            result=result,
            error=message if result == "error" else None,
        )
        return result, message

    def _apply_status_event(self, event: dict) -> tuple[str, str | None, str | None]:
        obj = event.get("data", {}).get("object", {})
        external_id = obj.get("id")
        if not external_id:
            return "error", "Missing payment intent id in event", None

        intent = self.store.get_by_stripe_id(external_id)
        if intent is None:
            logger.warning("Webhook for unknown processor payment %s", external_id)
            return "error", f"Payment intent {external_id} not found", None

        target = EVENT_STATUS[event["type"]]
        if intent.status == target:
            return "success", None, intent.payment_intent_id
        if not can_transition(intent.status, target):
            return (
                "skipped",
                f"Ignoring {target.value} for payment in status {intent.status.value}",
                intent.payment_intent_id,
            )

        now = self._clock()
        update: dict[str, Any] = {"status": target, "updated_at": now}
        if target == PaymentIntentStatus.CANCELED:
            update["canceled_at"] = now
            update["cancellation_reason"] = obj.get("cancellation_reason") or intent.cancellation_reason
        if target == PaymentIntentStatus.FAILED:
            last_error = obj.get("last_payment_error") or {}
            message = last_error.get("message")
            if message:
                update["metadata"] = {**intent.metadata, "last_payment_error": message}

        saved = self.store.save(
            intent.model_copy(update=update),
            expected_status=intent.status,
            expected_version=intent.version,
        )
        if saved is None:
            return "error", "Payment intent was modified concurrently", intent.payment_intent_id

        logger.info(
            "Payment %s moved %s -> %s via webhook",
            intent.payment_intent_id,
            intent.status.value,
            target.value,
        )
        return "success", None, intent.payment_intent_id
