"""Driver no-show report models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import NoShowStatus


class NoShowRecord(BaseModel):
    """One driver no-show report and the refund it triggered.

    ``penalty_amount`` is what the driver forfeits: the refund of fare that
    had already been captured. Releasing a hold costs the driver nothing
    they were paid.
    """

    model_config = ConfigDict(strict=True)

    no_show_id: str = Field(..., description="NS-<payment_intent_id>")
    payment_intent_id: str
    ride_id: str
    booking_id: str | None = None
    driver_id: str
    rider_id: str
    reported_by: str
    reason: str
    status: NoShowStatus = NoShowStatus.PENDING
    refund_issued: bool = False
    refund_amount: int = Field(default=0, ge=0)
    penalty_applied: bool = False
    penalty_amount: int = Field(default=0, ge=0)
    error_message: str | None = None
    reported_at: datetime
    updated_at: datetime | None = None


class NoShowOutcome(BaseModel):
    """Answer returned to whoever reported the no-show."""

    success: bool
    no_show_id: str
    payment_intent_id: str
    status: NoShowStatus
    refund_amount: int
    penalty_amount: int
    message: str
    error: str | None = None

    @classmethod
    def from_record(
        cls,
        record: NoShowRecord,
        message: str,
        *,
        success: bool = True,
    ) -> "NoShowOutcome":
        return cls(
            success=success,
            no_show_id=record.no_show_id,
            payment_intent_id=record.payment_intent_id,
            status=record.status,
            refund_amount=record.refund_amount,
            penalty_amount=record.penalty_amount,
            message=message,
            error=record.error_message,
        )
