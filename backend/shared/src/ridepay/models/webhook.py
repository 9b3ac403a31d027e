"""Stripe webhook event model for idempotency and auditing."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class StripeWebhookEvent(BaseModel):
    """Log of a received Stripe webhook event.

    Used for:
    - Idempotency: prevent applying the same event twice
    - Auditing: track all webhook deliveries
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(
        ...,
        description="Stripe event ID (evt_xxx)",
        examples=["evt_1ABC123DEF456"],
    )
    event_type: str = Field(
        ...,
        description="Stripe event type",
        examples=["payment_intent.amount_capturable_updated"],
    )
    processed_at: datetime = Field(..., description="When the event was processed")
    payload_hash: str = Field(..., description="SHA-256 hash of payload")
    payment_intent_id: str | None = Field(
        default=None,
        description="Internal payment intent the event applied to",
    )
    processing_result: str = Field(
        default="success",
        description="Result of processing: success, duplicate, skipped, error",
    )
    error_message: str | None = Field(default=None)
