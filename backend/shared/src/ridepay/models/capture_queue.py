"""Capture queue entry and worker result models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import CaptureQueueStatus


class CaptureQueueEntry(BaseModel):
    """One payment awaiting capture.

    Created when a ride completes; consumed only by the capture worker.
    """

    model_config = ConfigDict(strict=True)

    entry_id: str = Field(..., description="Queue entry ID (CQ-<payment_intent_id>)")
    payment_intent_id: str = Field(..., description="Reference to PaymentIntent")
    ride_id: str = Field(..., description="Reference to the ride")
    stripe_payment_intent_id: str | None = Field(default=None)
    amount_cents: int = Field(..., ge=0)
    status: CaptureQueueStatus = Field(default=CaptureQueueStatus.PENDING)
    attempts: int = Field(default=0, ge=0)
    last_attempt_at: datetime | None = Field(default=None)
    next_attempt_at: datetime | None = Field(
        default=None,
        description="Earliest time a retried entry becomes eligible again",
    )
    error_message: str | None = Field(default=None)
    created_at: datetime = Field(...)
    updated_at: datetime | None = Field(default=None)


class CaptureResult(BaseModel):
    """Outcome of processing one queue entry.

    Serialized as ``paymentId``, the queue entry ID.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    payment_id: str = Field(..., alias="paymentId")
    error: str | None = None


class CaptureRunSummary(BaseModel):
    """Summary returned by one worker invocation."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[CaptureResult] = Field(default_factory=list)
