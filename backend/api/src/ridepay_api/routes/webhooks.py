"""Stripe webhook endpoint.

Receives payment intent events so stored payments follow status changes made
on the processor side. Requests carry no user credentials; the
``Stripe-Signature`` header is verified against the webhook secret instead.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from ridepay.models.errors import ErrorCode, ErrorResponse, PaymentError
from ridepay.services.stripe_service import StripeService, StripeServiceError, get_stripe_service
from ridepay.services.webhook_handler import EVENT_STATUS, WebhookHandler
from ridepay.utils.logging import log_webhook_event
from ridepay_api.dependencies import get_webhook_handler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


class WebhookResponse(BaseModel):
    """Acknowledgement returned to Stripe.

    Any 2xx stops Stripe from redelivering, so events that were skipped or
    could not be matched are acknowledged too; ``processing_result`` says which.
    """

    received: bool
    event_id: str | None = None
    event_type: str | None = None
    processing_result: str
    message: str | None = None


class VerifiedEvent(BaseModel):
    event: dict[str, Any]
    payload_hash: str


async def verified_event(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> VerifiedEvent:
    """Parse the request body into a Stripe event whose signature checks out."""
    if not stripe_signature:
        logger.warning("Webhook request missing Stripe-Signature header")
        raise PaymentError(
            code=ErrorCode.INVALID_WEBHOOK_SIGNATURE,
            details={"message": "Missing Stripe-Signature header"},
        )

    # Signature covers the raw bytes, so the body is read unparsed
    payload = await request.body()
    try:
        event = stripe_service.verify_webhook_signature(payload, stripe_signature)
    except StripeServiceError as e:
        raise PaymentError(
            code=ErrorCode.INVALID_WEBHOOK_SIGNATURE,
            details={"message": e.message},
        ) from e

    return VerifiedEvent(event=event, payload_hash=StripeService.compute_payload_hash(payload))


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description="Handled event types:\n"
    + "\n".join(f"- {event_type}: moves the payment to {status.value}" for event_type, status in EVENT_STATUS.items())
    + "\n\nOther event types are acknowledged and skipped. Redeliveries of an "
    "event ID already seen return `duplicate` without reapplying it.",
    response_model=WebhookResponse,
    responses={
        200: {"description": "Event received (applied, skipped or duplicate)"},
        400: {"description": "Missing or invalid signature", "model": ErrorResponse},
    },
)
async def handle_stripe_webhook(
    verified: VerifiedEvent = Depends(verified_event),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse:
    event = verified.event
    event_id = event.get("id")
    event_type = event.get("type")
    log_webhook_event(logger, event_type, event_id, result="received")

    processing_result, message = handler.handle_event(event, verified.payload_hash)
    return WebhookResponse(
        received=True,
        event_id=event_id,
        event_type=event_type,
        processing_result=processing_result,
        message=message,
    )
