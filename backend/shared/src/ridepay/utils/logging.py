"""Logging setup and structured log helpers.

Every line written through the root handler carries the current request's
correlation ID. The ``log_*`` helpers put payment, queue and webhook context
into ``extra`` so it can be filtered on in CloudWatch.

Usage:
    configure_logging("INFO")
    set_correlation_id(request.headers.get("X-Correlation-ID"))
    log_queue_entry(logger, entry_id, "completed", attempts=1)
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# One value per asyncio task or thread
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind ``correlation_id``, or a fresh UUID when it is empty, and return it."""
    cid = correlation_id or str(uuid.uuid4())
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Stamps records with the correlation ID bound when they were created."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """Prefixes each line with its correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        cid = getattr(record, "correlation_id", None) or get_correlation_id() or "-"
        return f"[{cid}] {super().format(record)}"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install the structured formatter on the root logger.

    Safe to call more than once; existing ridepay handlers are replaced.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_ridepay", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    handler.addFilter(CorrelationIdFilter())
    handler._ridepay = True  # type: ignore[attr-defined]
    root.addHandler(handler)


# Attributes LogRecord already defines; context keys must not shadow them
_RESERVED = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def _emit(
    logger: logging.Logger,
    level: int,
    headline: str,
    context: dict[str, Any],
) -> None:
    """Log ``headline`` followed by ``key=value`` pairs for the non-empty context.

    The same pairs are attached to the record as ``extra`` attributes.
    """
    fields = {k: v for k, v in context.items() if v is not None and v != ""}
    line = " | ".join([headline, *(f"{k}={v}" for k, v in fields.items())])
    extra = {(f"ctx_{k}" if k in _RESERVED else k): v for k, v in fields.items()}
    logger.log(level, line, extra=extra)


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    payment_intent_id: str | None = None,
    ride_id: str | None = None,
    amount_cents: int | None = None,
    status: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Record a lifecycle operation on a payment intent.

    Logged at ERROR when ``error`` is set, INFO otherwise.
    """
    _emit(
        logger,
        logging.ERROR if error else logging.INFO,
        f"payment {operation}",
        {
            "payment_intent_id": payment_intent_id,
            "ride_id": ride_id,
            "amount_cents": amount_cents,
            "status": status,
            **extra,
            "error": error,
        },
    )


_QUEUE_LEVELS = {"failed": logging.ERROR, "retry": logging.WARNING, "skipped": logging.WARNING}


def log_queue_entry(
    logger: logging.Logger,
    entry_id: str,
    result: str,
    *,
    attempts: int | None = None,
    max_attempts: int | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Record what the capture worker did with one queue entry.

    Args:
        logger: Logger instance
        entry_id: Queue entry ID
        result: completed, retry, failed or skipped
        attempts: Attempts recorded after this run
        max_attempts: Attempt ceiling for this run
        error: Error message if the capture failed
        **extra: Additional context fields
    """
    attempt = f"{attempts}/{max_attempts}" if attempts is not None and max_attempts else attempts
    _emit(
        logger,
        _QUEUE_LEVELS.get(result, logging.INFO),
        f"capture entry {entry_id} {result}",
        {"attempt": attempt, **extra, "error": error},
    )


_WEBHOOK_LEVELS = {"error": logging.ERROR, "duplicate": logging.WARNING, "skipped": logging.WARNING}


def log_webhook_event(
    logger: logging.Logger,
    event_type: str | None,
    event_id: str | None,
    *,
    payment_intent_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Record receipt or processing of a Stripe event.

    ``result`` is one of received, success, duplicate, skipped or error and
    picks the level.
    """
    _emit(
        logger,
        _WEBHOOK_LEVELS.get(result or "", logging.INFO),
        f"webhook {event_type} ({event_id})",
        {"result": result, "payment_intent_id": payment_intent_id, **extra, "error": error},
    )
