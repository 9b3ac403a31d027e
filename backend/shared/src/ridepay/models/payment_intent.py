"""Payment intent model and its status transition table."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import PaymentIntentStatus
from .errors import ErrorCode, InvalidStateError

_S = PaymentIntentStatus

TERMINAL_STATUSES: frozenset[PaymentIntentStatus] = frozenset(
    {_S.SUCCEEDED, _S.CANCELED, _S.FAILED}
)

# Statuses from which a capture may be attempted. PROCESSING is a pass-through
# state the processor reports while it settles an authorization.
CAPTURABLE_STATUSES: frozenset[PaymentIntentStatus] = frozenset(
    {_S.AUTHORIZED, _S.PROCESSING}
)

ALLOWED_TRANSITIONS: dict[PaymentIntentStatus, frozenset[PaymentIntentStatus]] = {
    _S.REQUIRES_PAYMENT_METHOD: frozenset(
        {
            _S.REQUIRES_CONFIRMATION,
            _S.REQUIRES_ACTION,
            _S.PROCESSING,
            _S.AUTHORIZED,
            _S.CANCELED,
            _S.FAILED,
        }
    ),
    _S.REQUIRES_CONFIRMATION: frozenset(
        {_S.REQUIRES_ACTION, _S.PROCESSING, _S.AUTHORIZED, _S.CANCELED, _S.FAILED}
    ),
    _S.REQUIRES_ACTION: frozenset(
        {_S.PROCESSING, _S.AUTHORIZED, _S.CANCELED, _S.FAILED}
    ),
    _S.PROCESSING: frozenset({_S.AUTHORIZED, _S.SUCCEEDED, _S.CANCELED, _S.FAILED}),
    _S.AUTHORIZED: frozenset({_S.SUCCEEDED, _S.CANCELED, _S.FAILED}),
    _S.SUCCEEDED: frozenset(),
    _S.CANCELED: frozenset(),
    _S.FAILED: frozenset(),
}


def can_transition(current: PaymentIntentStatus, target: PaymentIntentStatus) -> bool:
    """Check whether moving from ``current`` to ``target`` is a legal forward move."""
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(
    current: PaymentIntentStatus,
    target: PaymentIntentStatus,
    payment_intent_id: str | None = None,
) -> None:
    """Raise InvalidStateError unless ``current -> target`` is allowed.

    Args:
        current: Status the intent is in now
        target: Status the caller wants to move to
        payment_intent_id: Included in error details when given

    Raises:
        InvalidStateError: If the transition table forbids the move
    """
    if can_transition(current, target):
        return
    details = {"current_status": current.value, "target_status": target.value}
    if payment_intent_id:
        details["payment_intent_id"] = payment_intent_id
    raise InvalidStateError(
        f"Cannot move payment from {current.value} to {target.value}",
        code=ErrorCode.INVALID_STATE,
        details=details,
    )


class PaymentIntent(BaseModel):
    """A manual-capture payment for one booking.

    Amounts are stored in minor currency units (cents). Capture and refund
    progress is tracked in ``metadata`` (``amount_captured``,
    ``amount_refunded``).
    """

    model_config = ConfigDict(strict=True)

    payment_intent_id: str = Field(..., description="Internal payment intent ID")
    stripe_payment_intent_id: str | None = Field(
        default=None,
        description="Processor PaymentIntent ID (pi_xxx), immutable once set",
        examples=["pi_3ABC123DEF456"],
    )
    ride_id: str = Field(..., description="Reference to the ride")
    booking_id: str | None = Field(default=None, description="Reference to the booking")
    rider_id: str = Field(..., description="Payer user ID")
    driver_id: str = Field(..., description="Payee user ID")
    amount_subtotal: int = Field(..., ge=0, description="Price before discounts, in cents")
    discount_amount: int = Field(default=0, ge=0, description="Referral discount, in cents")
    amount_total: int = Field(..., ge=0, description="Amount held, in cents")
    currency: str = Field(default="cad", description="ISO currency code, lowercase")
    capture_method: str = Field(default="manual", description="Always manual")
    status: PaymentIntentStatus = Field(..., description="Lifecycle status")
    referral_code: str | None = Field(default=None, description="Referral code applied")
    captured_at: datetime | None = Field(default=None)
    canceled_at: datetime | None = Field(default=None)
    cancellation_reason: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)
    version: int = Field(default=0, ge=0, description="Optimistic concurrency counter")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime | None = Field(default=None)

    @model_validator(mode="after")
    def _check_amounts(self) -> "PaymentIntent":
        if self.amount_total != self.amount_subtotal - self.discount_amount:
            raise ValueError("amount_total must equal amount_subtotal - discount_amount")
        if self.capture_method != "manual":
            raise ValueError("capture_method must be manual")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_capturable(self) -> bool:
        return self.status in CAPTURABLE_STATUSES

    @property
    def amount_captured(self) -> int:
        return int(self.metadata.get("amount_captured", 0))

    @property
    def amount_refunded(self) -> int:
        return int(self.metadata.get("amount_refunded", 0))

    @property
    def refundable_amount(self) -> int:
        """Captured amount not yet returned to the payer."""
        return self.amount_captured - self.amount_refunded


class AuthorizationResult(BaseModel):
    """Result of authorizing a booking payment.

    ``client_secret`` lets the rider's device complete confirmation when the
    processor requires further action.
    """

    payment_intent: PaymentIntent
    client_secret: str | None = None


class CaptureOutcome(BaseModel):
    """Result of capturing a completed ride's payment."""

    payment_intent: PaymentIntent
    captured_amount: int
    charge_id: str | None = None
