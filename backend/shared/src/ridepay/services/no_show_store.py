"""Durable storage for driver no-show reports.

Keyed on the payment intent like cancellation records, so a payment can be
reported once and a repeated report finds the first one.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from ridepay.models import NoShowRecord, NoShowStatus
from ridepay.utils.items import drop_none, from_iso, to_iso

from .dynamodb import BOTO_ERRORS, persistence_error

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


def no_show_id_for(payment_intent_id: str) -> str:
    return f"NS-{payment_intent_id}"


class NoShowStore:
    """Read/write access to the driver-no-shows table."""

    NO_SHOWS_TABLE = "driver-no-shows"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def create(self, record: NoShowRecord) -> bool:
        """Insert a new pending report.

        Returns:
            True if created, False if this payment was already reported
        """
        try:
            return self.db.put_item(
                self.NO_SHOWS_TABLE,
                record_to_item(record),
                condition_expression="attribute_not_exists(no_show_id)",
            )
        except BOTO_ERRORS as e:
            raise persistence_error("create no-show record", e) from e

    def get(self, no_show_id: str) -> NoShowRecord | None:
        try:
            item = self.db.get_item(
                self.NO_SHOWS_TABLE,
                {"no_show_id": no_show_id},
                consistent_read=True,
            )
        except BOTO_ERRORS as e:
            raise persistence_error("read no-show record", e) from e
        return item_to_record(item) if item else None

    def confirm(
        self,
        no_show_id: str,
        refund_amount: int,
        penalty_amount: int,
        now: dt.datetime,
    ) -> NoShowRecord | None:
        """Record the refund and penalty and mark the report confirmed.

        Returns:
            The confirmed record, or None if it was confirmed already
        """
        return self._update(
            no_show_id,
            "SET #status = :confirmed, refund_issued = :refund_issued, refund_amount = :refund, "
            "penalty_applied = :penalty_applied, penalty_amount = :penalty, updated_at = :now "
            "REMOVE error_message",
            {
                ":confirmed": NoShowStatus.CONFIRMED.value,
                ":refund_issued": refund_amount > 0,
                ":refund": refund_amount,
                ":penalty_applied": penalty_amount > 0,
                ":penalty": penalty_amount,
                ":now": now.isoformat(),
            },
            operation="confirm no-show record",
        )

    def note_failure(self, no_show_id: str, error: str, now: dt.datetime) -> NoShowRecord | None:
        """Keep a report pending with the error that stopped its refund."""
        return self._update(
            no_show_id,
            "SET error_message = :error, updated_at = :now",
            {":error": error, ":now": now.isoformat()},
            operation="record no-show failure",
        )

    def _update(
        self,
        no_show_id: str,
        expression: str,
        values: dict[str, Any],
        *,
        operation: str,
    ) -> NoShowRecord | None:
        try:
            attrs = self.db.update_item(
                self.NO_SHOWS_TABLE,
                {"no_show_id": no_show_id},
                expression,
                {**values, ":pending": NoShowStatus.PENDING.value},
                {"#status": "status"},
                condition_expression="#status = :pending",
            )
        except BOTO_ERRORS as e:
            raise persistence_error(operation, e) from e

        if attrs is None:
            logger.warning("No-show %s is no longer pending; %s skipped", no_show_id, operation)
            return None
        return item_to_record(attrs)


def record_to_item(record: NoShowRecord) -> dict[str, Any]:
    return drop_none(
        {
            "no_show_id": record.no_show_id,
            "payment_intent_id": record.payment_intent_id,
            "ride_id": record.ride_id,
            "booking_id": record.booking_id,
            "driver_id": record.driver_id,
            "rider_id": record.rider_id,
            "reported_by": record.reported_by,
            "reason": record.reason,
            "status": record.status.value,
            "refund_issued": record.refund_issued,
            "refund_amount": record.refund_amount,
            "penalty_applied": record.penalty_applied,
            "penalty_amount": record.penalty_amount,
            "error_message": record.error_message,
            "reported_at": record.reported_at.isoformat(),
            "updated_at": to_iso(record.updated_at),
        }
    )


def item_to_record(item: dict[str, Any]) -> NoShowRecord:
    return NoShowRecord(
        no_show_id=item["no_show_id"],
        payment_intent_id=item["payment_intent_id"],
        ride_id=item["ride_id"],
        booking_id=item.get("booking_id"),
        driver_id=item["driver_id"],
        rider_id=item["rider_id"],
        reported_by=item["reported_by"],
        reason=item["reason"],
        status=NoShowStatus(item["status"]),
        refund_issued=bool(item.get("refund_issued", False)),
        refund_amount=int(item.get("refund_amount", 0)),
        penalty_applied=bool(item.get("penalty_applied", False)),
        penalty_amount=int(item.get("penalty_amount", 0)),
        error_message=item.get("error_message"),
        reported_at=from_iso(item["reported_at"]),
        updated_at=from_iso(item.get("updated_at")),
    )
