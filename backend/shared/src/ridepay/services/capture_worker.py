"""Capture worker: drains the capture queue one entry at a time.

Invoked by a scheduler through the worker endpoint. Each run selects the
oldest pending entries, claims them one by one and captures the payment.
Processor failures are retried on later runs until ``max_attempts`` is
reached; a data store failure aborts the run.
"""

import datetime as dt
import logging
import os
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ridepay.models import (
    CaptureQueueEntry,
    CaptureResult,
    CaptureRunSummary,
    GatewayError,
    InvalidStateError,
    ValidationError,
)
from ridepay.utils.items import utc_now
from ridepay.utils.logging import log_queue_entry

if TYPE_CHECKING:
    from .capture_queue import CaptureQueue
    from .payment_service import PaymentLifecycleService

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_ATTEMPTS = 5
INTER_ITEM_DELAY_SECONDS = 0.5


class CaptureWorker:
    """Processes pending capture queue entries sequentially."""

    def __init__(
        self,
        queue: "CaptureQueue",
        payments: "PaymentLifecycleService",
        *,
        inter_item_delay: float = INTER_ITEM_DELAY_SECONDS,
        retry_backoff_seconds: float | None = None,
        clock: Callable[[], dt.datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the worker.

        Args:
            queue: Capture queue
            payments: Lifecycle service performing the captures
            inter_item_delay: Seconds to wait between entries (processor rate limits)
            retry_backoff_seconds: Base delay before a retried entry is eligible
                again. Defaults to CAPTURE_RETRY_BACKOFF_SECONDS; 0 disables backoff
            clock: Source of the current time
            sleep: Sleep function, replaced in tests
        """
        self.queue = queue
        self.payments = payments
        self.inter_item_delay = inter_item_delay
        if retry_backoff_seconds is None:
            retry_backoff_seconds = float(os.getenv("CAPTURE_RETRY_BACKOFF_SECONDS", "0"))
        self.retry_backoff_seconds = retry_backoff_seconds
        self._clock = clock
        self._sleep = sleep

    def run(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> CaptureRunSummary:
        """Process one batch of pending captures.

        Args:
            batch_size: Maximum entries to process
            max_attempts: Attempt ceiling per entry

        Returns:
            CaptureRunSummary with per-entry results

        Raises:
            PersistenceError: The queue or payment store is unreachable
        """
        entries = self.queue.select_pending(batch_size, max_attempts, self._clock())
        summary = CaptureRunSummary()
        if not entries:
            logger.info("No pending captures")
            return summary

        logger.info("Processing %d pending captures", len(entries))
        for index, entry in enumerate(entries):
            if index and self.inter_item_delay > 0:
                self._sleep(self.inter_item_delay)

            result = self._process(entry, max_attempts)
            if result is None:
                continue
            summary.processed += 1
            if result.success:
                summary.succeeded += 1
            else:
                summary.failed += 1
            summary.results.append(result)

        logger.info(
            "Capture run finished: processed=%d succeeded=%d failed=%d",
            summary.processed,
            summary.succeeded,
            summary.failed,
        )
        return summary

    def _process(self, entry: CaptureQueueEntry, max_attempts: int) -> CaptureResult | None:
        """Process one entry; None means another worker holds it."""
        now = self._clock()

        intent = self.payments.store.get(entry.payment_intent_id)
        if intent is None or not intent.is_capturable:
            reason = (
                f"Payment is {intent.status.value}, not capturable"
                if intent is not None
                else "Payment intent not found"
            )
            if self.queue.mark_ineligible(entry.entry_id, reason, now):
                log_queue_entry(logger, entry.entry_id, "failed", attempts=entry.attempts, error=reason)
                return CaptureResult(success=False, payment_id=entry.entry_id, error=reason)
            log_queue_entry(logger, entry.entry_id, "skipped")
            return None

        claimed = self.queue.claim(entry.entry_id, max_attempts, now)
        if claimed is None:
            log_queue_entry(logger, entry.entry_id, "skipped")
            return None

        try:
            self.payments.capture_on_completion(claimed.payment_intent_id, attempt=claimed.attempts)
        except GatewayError as e:
            return self._handle_gateway_failure(claimed, max_attempts, e)
        except (InvalidStateError, ValidationError) as e:
            self.queue.mark_failed(claimed.entry_id, e.message, self._clock())
            log_queue_entry(
                logger,
                claimed.entry_id,
                "failed",
                attempts=claimed.attempts,
                max_attempts=max_attempts,
                error=e.message,
            )
            return CaptureResult(success=False, payment_id=claimed.entry_id, error=e.message)

        self.queue.mark_completed(claimed.entry_id, self._clock())
        log_queue_entry(
            logger,
            claimed.entry_id,
            "completed",
            attempts=claimed.attempts,
            max_attempts=max_attempts,
            payment_intent_id=claimed.payment_intent_id,
        )
        return CaptureResult(success=True, payment_id=claimed.entry_id)

    def _handle_gateway_failure(
        self,
        entry: CaptureQueueEntry,
        max_attempts: int,
        error: GatewayError,
    ) -> CaptureResult:
        now = self._clock()
        if entry.attempts < max_attempts:
            next_attempt_at = None
            if self.retry_backoff_seconds > 0:
                delay = self.retry_backoff_seconds * 2 ** (entry.attempts - 1)
                next_attempt_at = now + dt.timedelta(seconds=delay)
            self.queue.release_for_retry(entry.entry_id, error.message, now, next_attempt_at)
            result = "retry"
        else:
            self.queue.mark_failed(entry.entry_id, error.message, now)
            result = "failed"

        log_queue_entry(
            logger,
            entry.entry_id,
            result,
            attempts=entry.attempts,
            max_attempts=max_attempts,
            error=error.message,
            stripe_error_code=error.stripe_error_code,
        )
        return CaptureResult(success=False, payment_id=entry.entry_id, error=error.message)
