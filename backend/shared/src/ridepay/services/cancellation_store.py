"""Durable storage for cancellation records.

The record ID is derived from the payment intent, so the conditional create
doubles as a lock: exactly one caller proceeds with a given cancellation.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from ridepay.models import (
    CancellationRecord,
    CancellationRole,
    CancellationStatus,
    PaymentHistoryStatus,
)
from ridepay.utils.items import drop_none, from_iso, to_iso

from .dynamodb import BOTO_ERRORS, persistence_error

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


def cancellation_id_for(payment_intent_id: str) -> str:
    return f"CXL-{payment_intent_id}"


class CancellationStore:
    """Read/write access to the ride-cancellations table."""

    CANCELLATIONS_TABLE = "ride-cancellations"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def create(self, record: CancellationRecord) -> bool:
        """Insert a new pending record.

        Returns:
            True if created, False if a record for this intent already exists
        """
        try:
            return self.db.put_item(
                self.CANCELLATIONS_TABLE,
                record_to_item(record),
                condition_expression="attribute_not_exists(cancellation_id)",
            )
        except BOTO_ERRORS as e:
            raise persistence_error("create cancellation record", e) from e

    def get(self, cancellation_id: str) -> CancellationRecord | None:
        try:
            item = self.db.get_item(
                self.CANCELLATIONS_TABLE,
                {"cancellation_id": cancellation_id},
                consistent_read=True,
            )
        except BOTO_ERRORS as e:
            raise persistence_error("read cancellation record", e) from e
        return item_to_record(item) if item else None

    def reclaim(self, cancellation_id: str, now: dt.datetime) -> CancellationRecord | None:
        """Move a ``pending_reconciliation`` record back to ``pending`` for a retry.

        Returns:
            The reclaimed record, or None if another caller reclaimed it first
        """
        return self._update_status(
            cancellation_id,
            CancellationStatus.PENDING_RECONCILIATION,
            CancellationStatus.PENDING,
            now,
            operation="reclaim cancellation record",
        )

    def take_over(
        self,
        stale: CancellationRecord,
        now: dt.datetime,
    ) -> CancellationRecord | None:
        """Claim a ``pending`` record left behind by a caller that never finished.

        Only succeeds if the record is unchanged since ``stale`` was read, so
        of several callers that find the same abandoned record one wins.

        Returns:
            The record with a fresh ``updated_at``, or None if it moved on
        """
        return self._update_status(
            stale.cancellation_id,
            CancellationStatus.PENDING,
            CancellationStatus.PENDING,
            now,
            operation="take over cancellation record",
            expected_updated_at=stale.updated_at or stale.created_at,
        )

    def complete(
        self,
        cancellation_id: str,
        outcome: PaymentHistoryStatus,
        now: dt.datetime,
    ) -> CancellationRecord | None:
        return self._update_status(
            cancellation_id,
            CancellationStatus.PENDING,
            CancellationStatus.COMPLETED,
            now,
            outcome=outcome,
            operation="complete cancellation record",
        )

    def mark_pending_reconciliation(
        self,
        cancellation_id: str,
        error: str,
        now: dt.datetime,
    ) -> CancellationRecord | None:
        """Park a record whose money movement failed or could not be applied yet."""
        return self._update_status(
            cancellation_id,
            CancellationStatus.PENDING,
            CancellationStatus.PENDING_RECONCILIATION,
            now,
            error_message=error,
            operation="park cancellation record",
        )

    def _update_status(
        self,
        cancellation_id: str,
        expected: CancellationStatus,
        target: CancellationStatus,
        now: dt.datetime,
        *,
        operation: str,
        outcome: PaymentHistoryStatus | None = None,
        error_message: str | None = None,
        expected_updated_at: dt.datetime | None = None,
    ) -> CancellationRecord | None:
        sets = ["#status = :target", "updated_at = :now"]
        values: dict[str, Any] = {
            ":target": target.value,
            ":expected": expected.value,
            ":now": now.isoformat(),
        }
        removes: list[str] = []
        if outcome is not None:
            sets.append("outcome = :outcome")
            values[":outcome"] = outcome.value
        if error_message is not None:
            sets.append("error_message = :error")
            values[":error"] = error_message
        elif target == CancellationStatus.COMPLETED:
            removes.append("error_message")

        expression = "SET " + ", ".join(sets)
        if removes:
            expression += " REMOVE " + ", ".join(removes)
        condition = "#status = :expected"
        if expected_updated_at is not None:
            condition += " AND updated_at = :seen"
            values[":seen"] = expected_updated_at.isoformat()

        try:
            attrs = self.db.update_item(
                self.CANCELLATIONS_TABLE,
                {"cancellation_id": cancellation_id},
                expression,
                values,
                {"#status": "status"},
                condition_expression=condition,
            )
        except BOTO_ERRORS as e:
            raise persistence_error(operation, e) from e

        if attrs is None:
            logger.warning("Cancellation %s was not %s; %s skipped", cancellation_id, expected.value, operation)
            return None
        return item_to_record(attrs)


def record_to_item(record: CancellationRecord) -> dict[str, Any]:
    """Convert CancellationRecord model to DynamoDB item."""
    return drop_none(
        {
            "cancellation_id": record.cancellation_id,
            "payment_intent_id": record.payment_intent_id,
            "ride_id": record.ride_id,
            "booking_id": record.booking_id,
            "cancelled_by": record.cancelled_by,
            "cancelled_by_role": record.cancelled_by_role.value,
            "reason": record.reason,
            "cancellation_time": record.cancellation_time.isoformat(),
            "departure_time": record.departure_time.isoformat(),
            "original_amount": record.original_amount,
            # Stored as a string; boto3 rejects float
            "hours_before_departure": str(record.hours_before_departure),
            "refund_eligible": record.refund_eligible,
            "refund_percentage": record.refund_percentage,
            "refund_amount": record.refund_amount,
            "cancellation_fee": record.cancellation_fee,
            "status": record.status.value,
            "outcome": record.outcome.value if record.outcome else None,
            "error_message": record.error_message,
            "created_at": record.created_at.isoformat(),
            "updated_at": to_iso(record.updated_at),
        }
    )


def item_to_record(item: dict[str, Any]) -> CancellationRecord:
    """Convert DynamoDB item to CancellationRecord model."""
    return CancellationRecord(
        cancellation_id=item["cancellation_id"],
        payment_intent_id=item["payment_intent_id"],
        ride_id=item["ride_id"],
        booking_id=item.get("booking_id"),
        cancelled_by=item.get("cancelled_by"),
        cancelled_by_role=CancellationRole(item["cancelled_by_role"]),
        reason=item["reason"],
        cancellation_time=from_iso(item["cancellation_time"]),
        departure_time=from_iso(item["departure_time"]),
        original_amount=int(item["original_amount"]),
        hours_before_departure=float(item["hours_before_departure"]),
        refund_eligible=bool(item["refund_eligible"]),
        refund_percentage=int(item["refund_percentage"]),
        refund_amount=int(item["refund_amount"]),
        cancellation_fee=int(item["cancellation_fee"]),
        status=CancellationStatus(item["status"]),
        outcome=PaymentHistoryStatus(item["outcome"]) if item.get("outcome") else None,
        error_message=item.get("error_message"),
        created_at=from_iso(item["created_at"]),
        updated_at=from_iso(item.get("updated_at")),
    )
