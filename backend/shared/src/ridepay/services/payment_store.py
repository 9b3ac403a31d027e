"""Durable storage for payment intents and referral rewards.

Every intent write after creation is a compare-and-swap on ``(status,
version)``: callers pass the values they read, and a write that lost a race
returns None instead of overwriting the winner.
"""

import datetime as dt
import logging
import math
from typing import TYPE_CHECKING, Any

from ridepay.models import PaymentIntent, PaymentIntentStatus, PersistenceError
from ridepay.utils.items import drop_none, dynamo_numbers, from_iso, plain_numbers, to_iso

from .dynamodb import BOTO_ERRORS, persistence_error

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

REFERRAL_EXTENSION = dt.timedelta(days=30)


class PaymentIntentStore:
    """Read/write access to the payment-intents and referral-rewards tables."""

    PAYMENT_INTENTS_TABLE = "payment-intents"
    REFERRALS_TABLE = "referral-rewards"

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize the store.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def create(self, intent: PaymentIntent) -> None:
        """Insert a new payment intent.

        Raises:
            PersistenceError: If the write fails or the ID already exists
        """
        try:
            created = self.db.put_item(
                self.PAYMENT_INTENTS_TABLE,
                intent_to_item(intent),
                condition_expression="attribute_not_exists(payment_intent_id)",
            )
        except BOTO_ERRORS as e:
            raise persistence_error("create payment intent", e) from e
        if not created:
            raise PersistenceError(
                f"Payment intent {intent.payment_intent_id} already exists",
                details={"payment_intent_id": intent.payment_intent_id},
            )

    def get(self, payment_intent_id: str) -> PaymentIntent | None:
        """Get a payment intent by internal ID (strongly consistent)."""
        try:
            item = self.db.get_item(
                self.PAYMENT_INTENTS_TABLE,
                {"payment_intent_id": payment_intent_id},
                consistent_read=True,
            )
        except BOTO_ERRORS as e:
            raise persistence_error("read payment intent", e) from e
        return item_to_intent(item) if item else None

    def get_by_stripe_id(self, stripe_payment_intent_id: str) -> PaymentIntent | None:
        """Look up an intent by its processor ID."""
        try:
            items = self.db.query_index(
                self.PAYMENT_INTENTS_TABLE,
                "stripe_payment_intent_id-index",
                "stripe_payment_intent_id",
                stripe_payment_intent_id,
            )
        except BOTO_ERRORS as e:
            raise persistence_error("query payment intent by processor id", e) from e
        if not items:
            return None
        # GSI reads are eventually consistent; re-read the base item
        return self.get(items[0]["payment_intent_id"])

    def get_by_booking_id(self, booking_id: str) -> PaymentIntent | None:
        """Look up the payment for a booking.

        A booking re-authorized after a failed hold has several intents; the
        most recently created one is returned.
        """
        try:
            items = self.db.query_index(
                self.PAYMENT_INTENTS_TABLE,
                "booking_id-index",
                "booking_id",
                booking_id,
            )
        except BOTO_ERRORS as e:
            raise persistence_error("query payment intent by booking", e) from e
        if not items:
            return None
        latest = max(items, key=lambda item: item["created_at"])
        return self.get(latest["payment_intent_id"])

    def save(
        self,
        intent: PaymentIntent,
        *,
        expected_status: PaymentIntentStatus,
        expected_version: int,
    ) -> PaymentIntent | None:
        """Write ``intent`` if the stored copy still has the expected status and version.

        Args:
            intent: New state of the intent
            expected_status: Status the caller read before deciding
            expected_version: Version the caller read before deciding

        Returns:
            The stored intent with its version incremented, or None if
            another writer got there first

        Raises:
            PersistenceError: If the store cannot be reached
        """
        updated = intent.model_copy(update={"version": expected_version + 1})
        try:
            written = self.db.put_item(
                self.PAYMENT_INTENTS_TABLE,
                intent_to_item(updated),
                condition_expression="#status = :expected_status AND version = :expected_version",
                expression_attribute_values={
                    ":expected_status": expected_status.value,
                    ":expected_version": expected_version,
                },
                expression_attribute_names={"#status": "status"},
            )
        except BOTO_ERRORS as e:
            raise persistence_error("update payment intent", e) from e

        if not written:
            logger.warning(
                "Conditional write lost for %s (expected %s v%d)",
                intent.payment_intent_id,
                expected_status.value,
                expected_version,
            )
            return None
        return updated

    # Referral rewards

    def get_referral_discount(
        self,
        code: str,
        amount_subtotal: int,
        at: dt.datetime,
    ) -> int:
        """Discount a referral code grants on ``amount_subtotal``.

        Returns:
            Discount in cents; 0 for unknown, used or expired codes
        """
        try:
            item = self.db.get_item(self.REFERRALS_TABLE, {"code": code})
        except BOTO_ERRORS as e:
            raise persistence_error("read referral", e) from e

        if not item:
            logger.info("Ignoring unknown referral code %s", code)
            return 0
        if item.get("used"):
            logger.info("Ignoring used referral code %s", code)
            return 0
        expires_at = from_iso(item.get("expires_at"))
        if expires_at is not None and expires_at <= at:
            logger.info("Ignoring expired referral code %s", code)
            return 0

        percent = int(item.get("discount_percent", 0))
        return math.floor(amount_subtotal * percent / 100)

    def mark_referral_used(self, code: str, at: dt.datetime) -> bool:
        """Consume a referral code.

        Returns:
            True if this call consumed it, False if already used
        """
        try:
            result = self.db.update_item(
                self.REFERRALS_TABLE,
                {"code": code},
                "SET #used = :true, used_at = :at",
                {":true": True, ":false": False, ":at": at.isoformat()},
                {"#code": "code", "#used": "used"},
                condition_expression=(
                    "attribute_exists(#code) AND "
                    "(attribute_not_exists(#used) OR #used = :false)"
                ),
            )
        except BOTO_ERRORS as e:
            raise persistence_error("mark referral used", e) from e
        return result is not None

    def release_referral(self, code: str, at: dt.datetime) -> bool:
        """Make a referral code usable again and extend its expiry."""
        try:
            result = self.db.update_item(
                self.REFERRALS_TABLE,
                {"code": code},
                "SET #used = :false, expires_at = :expires REMOVE used_at",
                {":false": False, ":expires": (at + REFERRAL_EXTENSION).isoformat()},
                {"#code": "code", "#used": "used"},
                condition_expression="attribute_exists(#code)",
            )
        except BOTO_ERRORS as e:
            raise persistence_error("release referral", e) from e
        return result is not None


def intent_to_item(intent: PaymentIntent) -> dict[str, Any]:
    """Convert PaymentIntent model to DynamoDB item."""
    return drop_none(
        {
            "payment_intent_id": intent.payment_intent_id,
            "stripe_payment_intent_id": intent.stripe_payment_intent_id,
            "ride_id": intent.ride_id,
            "booking_id": intent.booking_id,
            "rider_id": intent.rider_id,
            "driver_id": intent.driver_id,
            "amount_subtotal": intent.amount_subtotal,
            "discount_amount": intent.discount_amount,
            "amount_total": intent.amount_total,
            "currency": intent.currency,
            "capture_method": intent.capture_method,
            "status": intent.status.value,
            "referral_code": intent.referral_code,
            "captured_at": to_iso(intent.captured_at),
            "canceled_at": to_iso(intent.canceled_at),
            "cancellation_reason": intent.cancellation_reason,
            "metadata": dynamo_numbers(intent.metadata),
            "version": intent.version,
            "created_at": intent.created_at.isoformat(),
            "updated_at": to_iso(intent.updated_at),
        }
    )


def item_to_intent(item: dict[str, Any]) -> PaymentIntent:
    """Convert DynamoDB item to PaymentIntent model."""
    return PaymentIntent(
        payment_intent_id=item["payment_intent_id"],
        stripe_payment_intent_id=item.get("stripe_payment_intent_id"),
        ride_id=item["ride_id"],
        booking_id=item.get("booking_id"),
        rider_id=item["rider_id"],
        driver_id=item["driver_id"],
        amount_subtotal=int(item["amount_subtotal"]),
        discount_amount=int(item.get("discount_amount", 0)),
        amount_total=int(item["amount_total"]),
        currency=item.get("currency", "cad"),
        capture_method=item.get("capture_method", "manual"),
        status=PaymentIntentStatus(item["status"]),
        referral_code=item.get("referral_code"),
        captured_at=from_iso(item.get("captured_at")),
        canceled_at=from_iso(item.get("canceled_at")),
        cancellation_reason=item.get("cancellation_reason"),
        metadata=plain_numbers(item.get("metadata", {})),
        version=int(item.get("version", 0)),
        created_at=from_iso(item["created_at"]),
        updated_at=from_iso(item.get("updated_at")),
    )
