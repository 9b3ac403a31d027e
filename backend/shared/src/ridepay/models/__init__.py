"""Pydantic models for payment intents, the capture queue, cancellations and no-shows."""

from .cancellation import (
    CancellationOutcome,
    CancellationRecord,
    EarningsCredit,
    RefundOutcome,
)
from .capture_queue import CaptureQueueEntry, CaptureResult, CaptureRunSummary
from .enums import (
    CancellationRole,
    CancellationStatus,
    CaptureQueueStatus,
    NoShowStatus,
    OutboxEventType,
    PaymentHistoryStatus,
    PaymentIntentStatus,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    STRIPE_ERROR_MESSAGES,
    ErrorCode,
    ErrorResponse,
    GatewayError,
    InvalidStateError,
    PaymentError,
    PersistenceError,
    ValidationError,
    get_user_friendly_stripe_message,
)
from .no_show import NoShowOutcome, NoShowRecord
from .payment_intent import (
    ALLOWED_TRANSITIONS,
    CAPTURABLE_STATUSES,
    TERMINAL_STATUSES,
    AuthorizationResult,
    CaptureOutcome,
    PaymentIntent,
    can_transition,
    ensure_transition,
)
from .webhook import StripeWebhookEvent

__all__ = [
    # Enums
    "CancellationRole",
    "CancellationStatus",
    "CaptureQueueStatus",
    "NoShowStatus",
    "OutboxEventType",
    "PaymentHistoryStatus",
    "PaymentIntentStatus",
    # Payment intent
    "ALLOWED_TRANSITIONS",
    "CAPTURABLE_STATUSES",
    "TERMINAL_STATUSES",
    "AuthorizationResult",
    "CaptureOutcome",
    "PaymentIntent",
    "can_transition",
    "ensure_transition",
    # Capture queue
    "CaptureQueueEntry",
    "CaptureResult",
    "CaptureRunSummary",
    # Cancellation
    "CancellationOutcome",
    "CancellationRecord",
    "EarningsCredit",
    "RefundOutcome",
    # Driver no-show
    "NoShowOutcome",
    "NoShowRecord",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "STRIPE_ERROR_MESSAGES",
    "ErrorCode",
    "ErrorResponse",
    "GatewayError",
    "InvalidStateError",
    "PaymentError",
    "PersistenceError",
    "ValidationError",
    "get_user_friendly_stripe_message",
    # Stripe
    "StripeWebhookEvent",
]
