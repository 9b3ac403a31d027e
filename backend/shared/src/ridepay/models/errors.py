"""Standard error codes and exception taxonomy for the payment core.

Four failure classes are distinguished:
- ValidationError: malformed input, never retried
- InvalidStateError: operation forbidden from the current status, never retried
- GatewayError: the payment processor declined or errored, retryable in the worker
- PersistenceError: the data store is unreachable, fatal to the operation
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes returned by the payment API."""

    # Input validation (ERR_PAY_001-ERR_PAY_004)
    INVALID_AMOUNT = "ERR_PAY_001"
    MISSING_REFERENCE = "ERR_PAY_002"
    PAYMENT_INTENT_NOT_FOUND = "ERR_PAY_003"
    REFUND_EXCEEDS_CAPTURE = "ERR_PAY_004"

    # State machine
    INVALID_STATE = "ERR_PAY_005"
    CONCURRENT_MODIFICATION = "ERR_PAY_006"

    # Processor/store failures
    GATEWAY_ERROR = "ERR_PAY_007"
    PERSISTENCE_UNAVAILABLE = "ERR_PAY_008"

    # Stripe webhook / worker (ERR_STRIPE_001, ERR_WORKER_001)
    INVALID_WEBHOOK_SIGNATURE = "ERR_STRIPE_001"
    WORKER_UNAUTHORIZED = "ERR_WORKER_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_AMOUNT: "Payment amount is invalid",
    ErrorCode.MISSING_REFERENCE: "A required reference is missing",
    ErrorCode.PAYMENT_INTENT_NOT_FOUND: "Payment intent not found",
    ErrorCode.REFUND_EXCEEDS_CAPTURE: "Refund amount exceeds the remaining captured amount",
    ErrorCode.INVALID_STATE: "Operation not allowed in the payment's current status",
    ErrorCode.CONCURRENT_MODIFICATION: "Payment was modified concurrently",
    ErrorCode.GATEWAY_ERROR: "Payment processor error",
    ErrorCode.PERSISTENCE_UNAVAILABLE: "Payment data store is unavailable",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.WORKER_UNAUTHORIZED: "Worker token missing or invalid",
}

# Recovery suggestions for callers
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.INVALID_AMOUNT: "Provide a positive amount in minor currency units",
    ErrorCode.MISSING_REFERENCE: "Include ride, rider and driver references",
    ErrorCode.PAYMENT_INTENT_NOT_FOUND: "Verify the payment intent ID",
    ErrorCode.REFUND_EXCEEDS_CAPTURE: "Request a refund no larger than the remaining captured amount",
    ErrorCode.INVALID_STATE: "Fetch the payment to check its current status",
    ErrorCode.CONCURRENT_MODIFICATION: "Reload the payment and retry",
    ErrorCode.GATEWAY_ERROR: "Try again or use a different payment method",
    ErrorCode.PERSISTENCE_UNAVAILABLE: "Try again later",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.WORKER_UNAUTHORIZED: "Verify the scheduler's worker token",
}


class ErrorResponse(BaseModel):
    """Standard error body for failed API calls."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
        message: Optional[str] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error
            message: Optional message overriding the default for the code

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=message or ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class PaymentError(Exception):
    """Base exception raised by payment operations."""

    default_code: ErrorCode = ErrorCode.INVALID_STATE

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[ErrorCode] = None,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code or self.default_code
        self.message = message or ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse body."""
        return ErrorResponse.from_code(self.code, self.details, self.message)


class ValidationError(PaymentError):
    """Malformed input: non-positive amount, missing reference, unknown intent."""

    default_code = ErrorCode.INVALID_AMOUNT


class InvalidStateError(PaymentError):
    """Operation attempted from a status that forbids it."""

    default_code = ErrorCode.INVALID_STATE


class GatewayError(PaymentError):
    """The payment processor declined the request or could not be reached."""

    default_code = ErrorCode.GATEWAY_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        stripe_error_code: Optional[str] = None,
        details: Optional[dict[str, str]] = None,
    ):
        super().__init__(message, details=details)
        self.stripe_error_code = stripe_error_code


class PersistenceError(PaymentError):
    """The data store could not be read or written."""

    default_code = ErrorCode.PERSISTENCE_UNAVAILABLE


# Stripe error code to user-friendly message mapping
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    # Card errors - user can fix
    "card_declined": "Your card was declined. Please try a different card.",
    "expired_card": "Your card has expired. Please use a different card.",
    "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
    "incorrect_cvc": "The security code (CVC) is incorrect. Please check and try again.",
    "incorrect_number": "The card number is incorrect. Please check and try again.",
    "card_velocity_exceeded": "Too many card transactions. Please wait and try again later.",
    # Capture-specific
    "charge_expired_for_capture": "The authorization expired before it could be captured.",
    "payment_intent_unexpected_state": "The payment is not in a state that allows this action.",
    # Processing errors - may be retryable
    "processing_error": "A processing error occurred. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    # Generic fallback
    "generic_decline": "Your card was declined. Please try a different card.",
}


def get_user_friendly_stripe_message(
    stripe_error_code: Optional[str],
    default_message: str = "Payment could not be processed. Please try again.",
) -> str:
    """Get a user-friendly message for a Stripe error code.

    Args:
        stripe_error_code: The Stripe error code (e.g., 'card_declined').
        default_message: Message to use if error code is unknown.

    Returns:
        User-friendly error message.
    """
    if stripe_error_code and stripe_error_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[stripe_error_code]
    return default_message
