"""Payment endpoints for ride bookings.

Provides REST endpoints for:
- Authorizing a hold for a booking (payer from the authenticated user)
- Getting a payment intent, by ID or by booking
- Capturing, cancelling and refunding a payment
- Cancelling a booking under the refund policy, and estimating the refund
- Reporting a driver no-show, which refunds the rider

Amounts are integer cents.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.status import HTTP_201_CREATED, HTTP_401_UNAUTHORIZED

from ridepay.models import (
    CancellationOutcome,
    CaptureOutcome,
    NoShowOutcome,
    PaymentIntent,
    RefundOutcome,
)
from ridepay.services.payment_service import PaymentLifecycleService
from ridepay_api.dependencies import get_payment_lifecycle_service
from ridepay_api.models.payments import (
    AuthorizePaymentRequest,
    AuthorizePaymentResponse,
    CancelPaymentRequest,
    CapturePaymentRequest,
    DriverNoShowRequest,
    PolicyCancellationRequest,
    RefundEstimateRequest,
    RefundEstimateResponse,
    RefundPaymentRequest,
)

router = APIRouter(tags=["payments"])


def _get_user_sub(request: Request) -> str:
    """Extract the authenticated user's sub, set by the API Gateway authorizer."""
    user_sub = request.headers.get("x-user-sub")
    if not user_sub:
        raise HTTPException(
            status_code=HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user_sub


@router.post(
    "/payments/authorize",
    summary="Authorize a booking payment",
    description="""
Place a manual-capture hold on the rider's card for a booking's fare.

**Requires authentication.** The payer is the authenticated user.

**Notes:**
- A valid referral code reduces the held amount
- Nothing is charged until the ride is completed and the hold is captured
- The returned client secret lets the device confirm the card if needed
""",
    response_model=AuthorizePaymentResponse,
    status_code=HTTP_201_CREATED,
    responses={
        201: {"description": "Hold placed"},
        400: {"description": "Invalid amount or missing reference"},
        401: {"description": "Authentication required"},
        402: {"description": "The processor declined the hold"},
    },
)
async def authorize_payment(
    request: Request,
    body: AuthorizePaymentRequest,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> AuthorizePaymentResponse:
    """Authorize a hold for the authenticated rider."""
    rider_id = _get_user_sub(request)
    result = payments.authorize_for_booking(
        ride_id=body.ride_id,
        booking_id=body.booking_id,
        rider_id=rider_id,
        driver_id=body.driver_id,
        amount_subtotal=body.amount_subtotal,
        referral_code=body.referral_code,
        payment_method_id=body.payment_method_id,
    )
    return AuthorizePaymentResponse(
        payment_intent=result.payment_intent,
        client_secret=result.client_secret,
    )


@router.get(
    "/payments/{payment_intent_id}",
    summary="Get payment intent",
    response_model=PaymentIntent,
    responses={
        200: {"description": "Payment intent found"},
        404: {"description": "Payment intent not found"},
    },
)
async def get_payment(
    payment_intent_id: str,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> PaymentIntent:
    return payments.get_payment_intent(payment_intent_id)


@router.get(
    "/bookings/{booking_id}/payment",
    summary="Get a booking's payment",
    description="The most recent payment intent created for the booking.",
    response_model=PaymentIntent,
    responses={
        200: {"description": "Payment intent found"},
        404: {"description": "The booking has no payment"},
    },
)
async def get_booking_payment(
    booking_id: str,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> PaymentIntent:
    return payments.get_payment_intent_for_booking(booking_id)


@router.post(
    "/payments/{payment_intent_id}/capture",
    summary="Capture an authorized payment",
    description="""
Capture all or part of an authorized hold.

**Notes:**
- Only authorized payments can be captured (409 otherwise)
- The processor is never called for a payment that cannot be captured
""",
    response_model=CaptureOutcome,
    responses={
        200: {"description": "Payment captured"},
        400: {"description": "Capture amount out of range"},
        402: {"description": "The processor rejected the capture"},
        404: {"description": "Payment intent not found"},
        409: {"description": "Payment is not authorized"},
    },
)
async def capture_payment(
    payment_intent_id: str,
    body: CapturePaymentRequest | None = None,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> CaptureOutcome:
    amount = body.amount_to_capture if body else None
    return payments.capture_payment(payment_intent_id, amount)


@router.post(
    "/payments/{payment_intent_id}/cancel",
    summary="Release an authorization hold",
    response_model=PaymentIntent,
    responses={
        200: {"description": "Hold released"},
        402: {"description": "The processor rejected the cancellation"},
        404: {"description": "Payment intent not found"},
        409: {"description": "Payment is not authorized"},
    },
)
async def cancel_payment(
    payment_intent_id: str,
    body: CancelPaymentRequest,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> PaymentIntent:
    return payments.cancel_payment(payment_intent_id, body.reason)


@router.post(
    "/payments/{payment_intent_id}/refund",
    summary="Refund a captured payment",
    description="""
Refund part or all of a captured payment.

**Notes:**
- Omitting the amount refunds everything not yet refunded
- Total refunds can never exceed the captured amount
""",
    response_model=RefundOutcome,
    responses={
        200: {"description": "Refund issued"},
        400: {"description": "Refund amount out of range"},
        402: {"description": "The processor rejected the refund"},
        404: {"description": "Payment intent not found"},
        409: {"description": "Payment has not been captured"},
    },
)
async def refund_payment(
    payment_intent_id: str,
    body: RefundPaymentRequest | None = None,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> RefundOutcome:
    return payments.refund_payment(
        payment_intent_id,
        body.amount if body else None,
        body.reason if body else None,
    )


@router.post(
    "/payments/{payment_intent_id}/cancellation",
    summary="Cancel a booking under the refund policy",
    description="""
Cancel a booking's payment and apply the cancellation refund policy:

- Driver cancellations are always fully refunded
- Passenger cancellations 24h+ before departure: full refund
- 12-24h before departure: 50% refund
- Under 12h: no refund

**Idempotent**: repeated calls return the recorded outcome. When the
processor call fails the terms are still returned with `success: false`
and the cancellation is parked for reconciliation.
A call that overlaps an unfinished one gets `success: false` until the
first finishes or is abandoned.
""",
    response_model=CancellationOutcome,
    responses={
        200: {"description": "Cancellation processed (or recorded for reconciliation)"},
        401: {"description": "Authentication required"},
        404: {"description": "Payment intent not found"},
    },
)
async def cancel_booking(
    request: Request,
    payment_intent_id: str,
    body: PolicyCancellationRequest,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> CancellationOutcome:
    user_sub = _get_user_sub(request)
    return payments.cancel_with_policy(
        payment_intent_id,
        body.departure_time,
        body.cancelled_by_role,
        body.reason,
        cancelled_by=user_sub,
    )


@router.post(
    "/payments/{payment_intent_id}/refund-estimate",
    summary="Estimate a cancellation refund",
    description="Refund terms a cancellation would get, without side effects.",
    response_model=RefundEstimateResponse,
    responses={
        200: {"description": "Refund terms"},
        404: {"description": "Payment intent not found"},
    },
)
async def estimate_refund(
    payment_intent_id: str,
    body: RefundEstimateRequest,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> RefundEstimateResponse:
    terms = payments.estimate_refund(
        payment_intent_id,
        body.departure_time,
        body.cancelled_by_role,
        body.at,
    )
    return RefundEstimateResponse(
        payment_intent_id=payment_intent_id,
        refund_eligible=terms["refund_eligible"],
        refund_percentage=terms["refund_percentage"],
        refund_amount=int(terms["refund_amount"]),
        cancellation_fee=int(terms["cancellation_fee"]),
        hours_before_departure=terms["hours_before_departure"],
        policy_tier=terms["policy_tier"],
        description=terms["description"],
        policy=payments.refund_policy.get_policy_description(),
    )


@router.post(
    "/payments/{payment_intent_id}/driver-no-show",
    summary="Report a driver no-show",
    description="""
Record that the driver never arrived and give the rider their money back.

**Requires authentication.** The reporter is the authenticated user.

**Notes:**
- An authorized hold is released; a captured payment is refunded in full
- A refund of captured fare is recorded as the driver's penalty
- Reporting the same payment again returns the first report
- `success: false` means the refund failed; report again to retry it
""",
    response_model=NoShowOutcome,
    responses={
        200: {"description": "No-show recorded"},
        401: {"description": "Authentication required"},
        404: {"description": "Payment intent not found"},
        422: {"description": "Missing reason"},
    },
)
async def report_driver_no_show(
    request: Request,
    payment_intent_id: str,
    body: DriverNoShowRequest,
    payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
) -> NoShowOutcome:
    reported_by = _get_user_sub(request)
    return payments.report_driver_no_show(
        payment_intent_id,
        reported_by=reported_by,
        reason=body.reason,
    )
