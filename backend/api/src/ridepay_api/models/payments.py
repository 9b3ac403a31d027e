"""API models for payment endpoints.

Amounts are integer cents. The payer is taken from the authenticated user,
never from the request body.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ridepay.models import CancellationRole, PaymentIntent


class AuthorizePaymentRequest(BaseModel):
    """Request to place a hold for a booking's fare."""

    model_config = ConfigDict(
        strict=True,
        json_schema_extra={
            "examples": [
                {
                    "ride_id": "RIDE-123",
                    "booking_id": "BKG-456",
                    "driver_id": "driver-sub-789",
                    "amount_subtotal": 4000,
                    "referral_code": "FRIEND10",
                }
            ]
        },
    )

    ride_id: str = Field(..., description="Ride being booked")
    booking_id: str | None = Field(default=None, description="Booking the payment belongs to")
    driver_id: str = Field(..., description="Driver receiving the fare")
    amount_subtotal: int = Field(..., description="Fare before discounts, in cents")
    referral_code: str | None = Field(default=None, description="Optional referral code")
    payment_method_id: str | None = Field(
        default=None,
        description="Saved payment method to confirm immediately (pm_xxx)",
    )


class AuthorizePaymentResponse(BaseModel):
    """Stored payment intent plus the secret the device needs to confirm it."""

    payment_intent: PaymentIntent
    client_secret: str | None = None


class CapturePaymentRequest(BaseModel):
    """Request to capture an authorized payment."""

    model_config = ConfigDict(strict=True)

    amount_to_capture: int | None = Field(
        default=None,
        description="Cents to capture; defaults to the full authorized amount",
    )


class CancelPaymentRequest(BaseModel):
    """Request to release an authorization hold."""

    model_config = ConfigDict(strict=True)

    reason: str = Field(..., min_length=1, description="Why the hold is released")


class RefundPaymentRequest(BaseModel):
    """Request to refund a captured payment."""

    model_config = ConfigDict(strict=True)

    amount: int | None = Field(
        default=None,
        description="Cents to refund; defaults to everything not yet refunded",
    )
    reason: str | None = Field(default=None, description="Reason recorded with the refund")


class PolicyCancellationRequest(BaseModel):
    """Request to cancel a booking under the refund policy."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "departure_time": "2026-07-01T15:00:00Z",
                    "cancelled_by_role": "passenger",
                    "reason": "Plans changed",
                }
            ]
        },
    )

    departure_time: datetime = Field(..., description="Scheduled ride departure")
    cancelled_by_role: CancellationRole = Field(..., description="driver or passenger")
    reason: str = Field(..., min_length=1)


class RefundEstimateRequest(BaseModel):
    """Request for the refund a cancellation would get."""

    departure_time: datetime
    cancelled_by_role: CancellationRole
    at: datetime | None = Field(
        default=None,
        description="Hypothetical cancellation time; defaults to now",
    )


class RefundEstimateResponse(BaseModel):
    """Refund terms without side effects."""

    payment_intent_id: str
    refund_eligible: bool
    refund_percentage: int
    refund_amount: int
    cancellation_fee: int
    hours_before_departure: float
    policy_tier: str
    description: str
    policy: str = Field(..., description="The full cancellation policy, for display beside the estimate")


class DriverNoShowRequest(BaseModel):
    """Report that the driver never arrived for a booked ride."""

    model_config = ConfigDict(
        strict=True,
        json_schema_extra={"examples": [{"reason": "Driver did not arrive at the pickup point"}]},
    )

    reason: str = Field(..., min_length=1, description="What happened")
