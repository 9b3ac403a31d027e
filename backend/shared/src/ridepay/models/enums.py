"""Enumeration types for ridepay data models."""

from enum import Enum


class PaymentIntentStatus(str, Enum):
    """Status of a payment intent.

    Mirrors the processor's lifecycle, except that a hold awaiting capture
    is stored as AUTHORIZED (the processor calls it ``requires_capture``).
    """

    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    AUTHORIZED = "authorized"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"

    @classmethod
    def from_processor(cls, value: str) -> "PaymentIntentStatus":
        """Map a processor status string onto a stored status."""
        if value == "requires_capture":
            return cls.AUTHORIZED
        return cls(value)


class CaptureQueueStatus(str, Enum):
    """Status of a capture queue entry."""

    PENDING = "pending"
    PROCESSING = "processing"  # Transient claim, never a resting state
    COMPLETED = "completed"
    FAILED = "failed"


class CancellationRole(str, Enum):
    """Party that cancelled a ride or booking."""

    DRIVER = "driver"
    PASSENGER = "passenger"


class CancellationStatus(str, Enum):
    """Status of a cancellation record."""

    PENDING = "pending"
    COMPLETED = "completed"
    PENDING_RECONCILIATION = "pending_reconciliation"


class NoShowStatus(str, Enum):
    """Verification status of a driver no-show report."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


class PaymentHistoryStatus(str, Enum):
    """Status values written to the payment history log."""

    AUTHORIZED = "authorized"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    PARTIAL_REFUND = "partial_refund"
    COMPLETED_NO_REFUND = "completed_no_refund"
    REFUNDED = "refunded"


class OutboxEventType(str, Enum):
    """Side-channel events consumed by earnings and notification services."""

    EARNINGS_CREDIT = "earnings.credit"
    EARNINGS_REVERSAL = "earnings.reversal"
    CANCELLATION_NOTICE = "cancellation.notice"
    NO_SHOW_NOTICE = "no_show.notice"
