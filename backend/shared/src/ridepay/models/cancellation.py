"""Cancellation record and policy outcome models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .enums import CancellationRole, CancellationStatus, PaymentHistoryStatus


class CancellationRecord(BaseModel):
    """Snapshot of one cancellation event and its refund terms.

    Immutable after creation except for ``status``, ``outcome`` and
    ``error_message``.
    """

    model_config = ConfigDict(strict=True)

    cancellation_id: str = Field(..., description="CXL-<payment_intent_id>")
    payment_intent_id: str
    ride_id: str
    booking_id: str | None = None
    cancelled_by: str | None = Field(default=None, description="User who cancelled")
    cancelled_by_role: CancellationRole
    reason: str
    cancellation_time: datetime
    departure_time: datetime
    original_amount: int = Field(..., ge=0, description="Booking amount in cents")
    hours_before_departure: float
    refund_eligible: bool
    refund_percentage: int = Field(..., ge=0, le=100)
    refund_amount: int = Field(..., ge=0)
    cancellation_fee: int = Field(..., ge=0)
    status: CancellationStatus = CancellationStatus.PENDING
    outcome: PaymentHistoryStatus | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class CancellationOutcome(BaseModel):
    """Definite answer returned to a caller of policy cancellation.

    Amounts always reflect the computed policy terms. ``success`` is False and
    ``status`` is ``pending_reconciliation`` when the processor call failed.
    """

    success: bool
    cancellation_id: str
    payment_intent_id: str
    status: CancellationStatus
    outcome: PaymentHistoryStatus | None = None
    refund_eligible: bool
    refund_percentage: int
    refund_amount: int
    cancellation_fee: int
    hours_before_departure: float
    message: str
    error: str | None = None

    @classmethod
    def from_record(
        cls,
        record: CancellationRecord,
        message: str,
        *,
        success: bool = True,
    ) -> "CancellationOutcome":
        return cls(
            success=success,
            cancellation_id=record.cancellation_id,
            payment_intent_id=record.payment_intent_id,
            status=record.status,
            outcome=record.outcome,
            refund_eligible=record.refund_eligible,
            refund_percentage=record.refund_percentage,
            refund_amount=record.refund_amount,
            cancellation_fee=record.cancellation_fee,
            hours_before_departure=record.hours_before_departure,
            message=message,
            error=record.error_message,
        )


class RefundOutcome(BaseModel):
    """Result of a refund against a captured payment."""

    payment_intent_id: str
    refund_id: str
    amount_refunded: int
    total_refunded: int
    remaining_refundable: int


class EarningsCredit(BaseModel):
    """Earnings-ledger credit emitted after a successful capture."""

    payee_id: str
    payment_intent_id: str
    ride_id: str
    booking_id: str | None = None
    gross_amount: int
    platform_fee: int
    net_amount: int
    platform_fee_rate: Decimal
