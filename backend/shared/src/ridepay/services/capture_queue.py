"""Durable work list of payments awaiting capture.

Entries move ``pending -> processing -> completed | failed`` and may drop back
from ``processing`` to ``pending`` for a retry. Every transition is a single
conditional UpdateItem, so two workers can never both hold an entry.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr, Key

from ridepay.models import CaptureQueueEntry, CaptureQueueStatus, PaymentIntent
from ridepay.utils.items import drop_none, from_iso, to_iso

from .dynamodb import BOTO_ERRORS, persistence_error

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

_Q = CaptureQueueStatus


def entry_id_for(payment_intent_id: str) -> str:
    """Queue entry ID for a payment intent; one entry per intent."""
    return f"CQ-{payment_intent_id}"


class CaptureQueue:
    """Read/write access to the payment-capture-queue table."""

    QUEUE_TABLE = "payment-capture-queue"
    STATUS_INDEX = "status-created_at-index"

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize the queue.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def enqueue(self, intent: PaymentIntent, at: dt.datetime) -> CaptureQueueEntry | None:
        """Queue a completed ride's payment for capture.

        Args:
            intent: The payment to capture
            at: Enqueue time; becomes the entry's ``created_at``

        Returns:
            The new entry, or None if the intent was already queued
        """
        entry = CaptureQueueEntry(
            entry_id=entry_id_for(intent.payment_intent_id),
            payment_intent_id=intent.payment_intent_id,
            ride_id=intent.ride_id,
            stripe_payment_intent_id=intent.stripe_payment_intent_id,
            amount_cents=intent.amount_total,
            status=_Q.PENDING,
            attempts=0,
            created_at=at,
            updated_at=at,
        )
        try:
            created = self.db.put_item(
                self.QUEUE_TABLE,
                entry_to_item(entry),
                condition_expression="attribute_not_exists(entry_id)",
            )
        except BOTO_ERRORS as e:
            raise persistence_error("enqueue capture", e) from e

        if not created:
            logger.info("Payment %s already queued for capture", intent.payment_intent_id)
            return None
        logger.info("Queued payment %s for capture as %s", intent.payment_intent_id, entry.entry_id)
        return entry

    def get(self, entry_id: str) -> CaptureQueueEntry | None:
        try:
            item = self.db.get_item(self.QUEUE_TABLE, {"entry_id": entry_id}, consistent_read=True)
        except BOTO_ERRORS as e:
            raise persistence_error("read capture entry", e) from e
        return item_to_entry(item) if item else None

    def select_pending(
        self,
        batch_size: int,
        max_attempts: int,
        now: dt.datetime,
    ) -> list[CaptureQueueEntry]:
        """Oldest pending entries that still have attempts left.

        Entries whose ``next_attempt_at`` lies in the future are skipped.

        Args:
            batch_size: Maximum entries to return
            max_attempts: Entries with this many attempts are excluded
            now: Reference time for ``next_attempt_at``

        Returns:
            Up to ``batch_size`` entries, oldest ``created_at`` first
        """
        if batch_size <= 0:
            return []

        key_condition = Key("status").eq(_Q.PENDING.value)
        filter_expression = Attr("attempts").lt(max_attempts) & (
            Attr("next_attempt_at").not_exists() | Attr("next_attempt_at").lte(now.isoformat())
        )

        selected: list[dict[str, Any]] = []
        start_key: dict[str, Any] | None = None
        try:
            while len(selected) < batch_size:
                items, start_key = self.db.query_page(
                    self.QUEUE_TABLE,
                    key_condition,
                    index_name=self.STATUS_INDEX,
                    filter_expression=filter_expression,
                    limit=batch_size,
                    scan_index_forward=True,
                    exclusive_start_key=start_key,
                )
                selected.extend(items)
                if not start_key:
                    break
        except BOTO_ERRORS as e:
            raise persistence_error("select pending captures", e) from e

        return [item_to_entry(item) for item in selected[:batch_size]]

    def claim(
        self,
        entry_id: str,
        max_attempts: int,
        now: dt.datetime,
    ) -> CaptureQueueEntry | None:
        """Lock an entry for processing and count the attempt.

        Returns:
            The claimed entry, or None if it was no longer claimable
        """
        try:
            attrs = self.db.update_item(
                self.QUEUE_TABLE,
                {"entry_id": entry_id},
                "SET #status = :processing, attempts = attempts + :one, "
                "last_attempt_at = :now, updated_at = :now",
                {
                    ":processing": _Q.PROCESSING.value,
                    ":pending": _Q.PENDING.value,
                    ":one": 1,
                    ":max": max_attempts,
                    ":now": now.isoformat(),
                },
                {"#status": "status"},
                condition_expression="#status = :pending AND attempts < :max",
            )
        except BOTO_ERRORS as e:
            raise persistence_error("claim capture entry", e) from e
        return item_to_entry(attrs) if attrs else None

    def mark_ineligible(self, entry_id: str, reason: str, now: dt.datetime) -> bool:
        """Fail a pending entry whose payment can no longer be captured.

        Attempts are left unchanged; no capture was tried.
        """
        return self._transition(
            entry_id,
            _Q.PENDING,
            _Q.FAILED,
            now,
            error_message=reason,
            operation="mark capture entry ineligible",
        )

    def mark_completed(self, entry_id: str, now: dt.datetime) -> bool:
        return self._transition(
            entry_id,
            _Q.PROCESSING,
            _Q.COMPLETED,
            now,
            operation="complete capture entry",
        )

    def mark_failed(self, entry_id: str, error: str, now: dt.datetime) -> bool:
        return self._transition(
            entry_id,
            _Q.PROCESSING,
            _Q.FAILED,
            now,
            error_message=error,
            operation="fail capture entry",
        )

    def release_for_retry(
        self,
        entry_id: str,
        error: str,
        now: dt.datetime,
        next_attempt_at: dt.datetime | None = None,
    ) -> bool:
        """Return a processing entry to pending after a retryable failure."""
        return self._transition(
            entry_id,
            _Q.PROCESSING,
            _Q.PENDING,
            now,
            error_message=error,
            next_attempt_at=next_attempt_at,
            operation="release capture entry",
        )

    def find_stale(self, older_than: dt.datetime) -> list[CaptureQueueEntry]:
        """Entries in processing whose last attempt started before ``older_than``."""
        try:
            items = self.db.query(
                self.QUEUE_TABLE,
                Key("status").eq(_Q.PROCESSING.value),
                index_name=self.STATUS_INDEX,
                filter_expression=Attr("last_attempt_at").lt(older_than.isoformat()),
            )
        except BOTO_ERRORS as e:
            raise persistence_error("find stale capture entries", e) from e
        return [item_to_entry(item) for item in items]

    def reset_stale(self, older_than: dt.datetime, now: dt.datetime) -> list[str]:
        """Return entries stuck in processing to pending.

        Only for operator recovery after a worker crash; attempts are kept.

        Args:
            older_than: Entries whose last attempt started before this are reset
            now: Timestamp written to ``updated_at``

        Returns:
            IDs of the entries that were reset
        """
        reset: list[str] = []
        for entry in self.find_stale(older_than):
            entry_id = entry.entry_id
            try:
                attrs = self.db.update_item(
                    self.QUEUE_TABLE,
                    {"entry_id": entry_id},
                    "SET #status = :pending, updated_at = :now",
                    {
                        ":pending": _Q.PENDING.value,
                        ":processing": _Q.PROCESSING.value,
                        ":seen": to_iso(entry.last_attempt_at),
                        ":now": now.isoformat(),
                    },
                    {"#status": "status"},
                    condition_expression="#status = :processing AND last_attempt_at = :seen",
                )
            except BOTO_ERRORS as e:
                raise persistence_error("reset stale capture entry", e) from e
            if attrs:
                logger.warning("Reset stale capture entry %s to pending", entry_id)
                reset.append(entry_id)
        return reset

    def _transition(
        self,
        entry_id: str,
        expected: CaptureQueueStatus,
        target: CaptureQueueStatus,
        now: dt.datetime,
        *,
        operation: str,
        error_message: str | None = None,
        next_attempt_at: dt.datetime | None = None,
    ) -> bool:
        sets = ["#status = :target", "updated_at = :now"]
        removes: list[str] = []
        values: dict[str, Any] = {
            ":target": target.value,
            ":expected": expected.value,
            ":now": now.isoformat(),
        }
        if error_message is not None:
            sets.append("error_message = :error")
            values[":error"] = error_message
        elif target == _Q.COMPLETED:
            removes.append("error_message")
        if next_attempt_at is not None:
            sets.append("next_attempt_at = :next")
            values[":next"] = next_attempt_at.isoformat()
        else:
            removes.append("next_attempt_at")

        expression = "SET " + ", ".join(sets)
        if removes:
            expression += " REMOVE " + ", ".join(removes)

        try:
            attrs = self.db.update_item(
                self.QUEUE_TABLE,
                {"entry_id": entry_id},
                expression,
                values,
                {"#status": "status"},
                condition_expression="#status = :expected",
            )
        except BOTO_ERRORS as e:
            raise persistence_error(operation, e) from e

        if attrs is None:
            logger.warning(
                "Capture entry %s was not %s; %s skipped",
                entry_id,
                expected.value,
                operation,
            )
            return False
        return True


def entry_to_item(entry: CaptureQueueEntry) -> dict[str, Any]:
    """Convert CaptureQueueEntry model to DynamoDB item."""
    return drop_none(
        {
            "entry_id": entry.entry_id,
            "payment_intent_id": entry.payment_intent_id,
            "ride_id": entry.ride_id,
            "stripe_payment_intent_id": entry.stripe_payment_intent_id,
            "amount_cents": entry.amount_cents,
            "status": entry.status.value,
            "attempts": entry.attempts,
            "last_attempt_at": to_iso(entry.last_attempt_at),
            "next_attempt_at": to_iso(entry.next_attempt_at),
            "error_message": entry.error_message,
            "created_at": entry.created_at.isoformat(),
            "updated_at": to_iso(entry.updated_at),
        }
    )


def item_to_entry(item: dict[str, Any]) -> CaptureQueueEntry:
    """Convert DynamoDB item to CaptureQueueEntry model."""
    return CaptureQueueEntry(
        entry_id=item["entry_id"],
        payment_intent_id=item["payment_intent_id"],
        ride_id=item["ride_id"],
        stripe_payment_intent_id=item.get("stripe_payment_intent_id"),
        amount_cents=int(item["amount_cents"]),
        status=CaptureQueueStatus(item["status"]),
        attempts=int(item.get("attempts", 0)),
        last_attempt_at=from_iso(item.get("last_attempt_at")),
        next_attempt_at=from_iso(item.get("next_attempt_at")),
        error_message=item.get("error_message"),
        created_at=from_iso(item["created_at"]),
        updated_at=from_iso(item.get("updated_at")),
    )
