"""Stripe payment service implementing the manual-capture gateway.

Provides integration with Stripe using the v8+ StripeClient pattern.
Retrieves API keys from SSM Parameter Store.
"""

import hashlib
import logging
import os
from functools import lru_cache
from typing import Any

import stripe
from stripe import StripeClient

from ridepay.models.errors import GatewayError

from .payment_gateway import AuthorizeResult, CancelResponse, CaptureResponse, RefundResponse
from .ssm_service import (
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    SSMServiceError,
    get_ssm_service,
    parameter_path,
)

logger = logging.getLogger(__name__)


class StripeServiceError(GatewayError):
    """Raised when a Stripe operation fails."""

    def __init__(self, message: str, stripe_error_code: str | None = None) -> None:
        """Initialize with message and optional Stripe error code.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
        """
        details = {"stripe_error_code": stripe_error_code} if stripe_error_code else None
        super().__init__(message, stripe_error_code=stripe_error_code, details=details)


class StripeService:
    """Service for Stripe payment operations.

    Handles:
    - Manual-capture PaymentIntent authorization
    - Capture, cancellation and refund of held funds
    - Webhook signature validation

    Usage:
        stripe_svc = get_stripe_service()
        result = stripe_svc.authorize(
            amount=2500,
            currency="cad",
            metadata={"payment_intent_id": "PI-ABC123DEF456"},
            description="Ride RIDE-1",
            idempotency_key="authorize_PI-ABC123DEF456",
        )
    """

    def __init__(
        self,
        environment: str | None = None,
        client: StripeClient | None = None,
    ) -> None:
        """Initialize Stripe service with credentials from SSM.

        Args:
            environment: Environment name (dev, prod). Defaults to ENVIRONMENT env var.
            client: Pre-built StripeClient, skipping the SSM key lookup.
        """
        self._environment = environment or os.environ.get("ENVIRONMENT", "dev")
        self._ssm = get_ssm_service()
        self._client: StripeClient | None = client
        self._webhook_secret: str | None = None

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            StripeServiceError: If credentials cannot be retrieved.
        """
        if self._client is None:
            try:
                secret_key = self._ssm.get_parameter(
                    parameter_path(STRIPE_SECRET_KEY, self._environment)
                )
                self._client = StripeClient(secret_key)
                logger.info("Stripe client initialized for environment: %s", self._environment)
            except SSMServiceError as e:
                raise StripeServiceError(f"Failed to initialize Stripe client: {e}") from e
        return self._client

    def _get_webhook_secret(self) -> str:
        """Get the webhook signing secret.

        Raises:
            StripeServiceError: If secret cannot be retrieved.
        """
        if self._webhook_secret is None:
            try:
                self._webhook_secret = self._ssm.get_parameter(
                    parameter_path(STRIPE_WEBHOOK_SECRET, self._environment)
                )
            except SSMServiceError as e:
                raise StripeServiceError(f"Failed to get webhook secret: {e}") from e
        return self._webhook_secret

    @staticmethod
    def _wrap(action: str, e: stripe.StripeError) -> StripeServiceError:
        error_code = getattr(e, "code", None)
        logger.error("Stripe %s failed: %s (code: %s)", action, str(e), error_code)
        return StripeServiceError(f"Failed to {action}: {e}", stripe_error_code=error_code)

    def authorize(
        self,
        *,
        amount: int,
        currency: str,
        metadata: dict[str, Any],
        description: str,
        idempotency_key: str,
        payment_method_id: str | None = None,
    ) -> AuthorizeResult:
        """Create a manual-capture PaymentIntent holding ``amount``.

        Without a payment method the intent stays in requires_payment_method
        and the client secret is handed to the rider's device to confirm.

        Raises:
            StripeServiceError: If the processor rejects the request.
        """
        client = self._get_client()

        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "capture_method": "manual",
            "description": description,
            "metadata": {k: str(v) for k, v in metadata.items()},
        }
        if payment_method_id:
            params["payment_method"] = payment_method_id
            params["confirm"] = True
            params["automatic_payment_methods"] = {
                "enabled": True,
                "allow_redirects": "never",
            }

        try:
            logger.info("Authorizing %d %s (key %s)", amount, currency, idempotency_key)
            intent = client.payment_intents.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            raise self._wrap("authorize payment", e) from e

        logger.info("PaymentIntent created: %s status=%s", intent.id, intent.status)
        return AuthorizeResult(
            external_id=intent.id,
            status=intent.status,
            client_secret=intent.client_secret,
        )

    def capture(
        self,
        external_id: str,
        amount_to_capture: int | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> CaptureResponse:
        """Capture funds held on a PaymentIntent.

        Args:
            external_id: Stripe PaymentIntent ID (pi_xxx).
            amount_to_capture: Amount in cents. If None, the full hold.
            idempotency_key: Key making repeated captures safe.

        Raises:
            StripeServiceError: If capture fails.
        """
        client = self._get_client()
        params: dict[str, Any] = {}
        if amount_to_capture is not None:
            params["amount_to_capture"] = amount_to_capture
        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        try:
            logger.info(
                "Capturing PaymentIntent %s, amount %s cents",
                external_id,
                amount_to_capture or "full",
            )
            intent = client.payment_intents.capture(external_id, params=params, options=options)
        except stripe.StripeError as e:
            raise self._wrap("capture payment", e) from e

        return CaptureResponse(
            captured_amount=intent.amount_received,
            status=intent.status,
            charge_id=intent.latest_charge if isinstance(intent.latest_charge, str) else None,
        )

    def cancel(self, external_id: str, reason: str | None = None) -> CancelResponse:
        """Release the hold on a PaymentIntent.

        Stripe accepts only a fixed set of cancellation reasons, so the
        free-text reason is logged and "requested_by_customer" is sent.

        Raises:
            StripeServiceError: If cancellation fails.
        """
        client = self._get_client()
        try:
            logger.info("Cancelling PaymentIntent %s (reason: %s)", external_id, reason)
            intent = client.payment_intents.cancel(
                external_id,
                params={"cancellation_reason": "requested_by_customer"},
            )
        except stripe.StripeError as e:
            raise self._wrap("cancel payment", e) from e
        return CancelResponse(status=intent.status)

    def refund(
        self,
        external_id: str,
        amount: int | None = None,
        reason: str | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> RefundResponse:
        """Create a refund for a captured payment.

        Args:
            external_id: Stripe PaymentIntent ID (pi_xxx).
            amount: Refund amount in cents. If None, full refund.
            reason: Reason for refund (for records).
            idempotency_key: Key making repeated refunds safe.

        Raises:
            StripeServiceError: If refund creation fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {"payment_intent": external_id}
        if amount is not None:
            params["amount"] = amount
        if reason:
            params["metadata"] = {"reason": reason}
        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %s cents",
                external_id,
                amount or "full",
            )
            refund = client.refunds.create(params=params, options=options)
        except stripe.StripeError as e:
            raise self._wrap("create refund", e) from e

        logger.info("Refund created: %s for PaymentIntent %s", refund.id, external_id)
        return RefundResponse(
            refund_id=refund.id,
            amount_refunded=refund.amount,
            status=refund.status or "pending",
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict:
        """Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body bytes.
            signature: Stripe-Signature header value.

        Returns:
            Parsed Stripe event dictionary.

        Raises:
            StripeServiceError: If signature is invalid.
        """
        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
            logger.info("Webhook signature verified for event: %s", event["id"])
            return dict(event)

        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise StripeServiceError("Invalid webhook signature") from e

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """Compute SHA-256 hash of webhook payload for deduplication."""
        return hashlib.sha256(payload).hexdigest()


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Get the shared StripeService instance (singleton pattern).

    Returns:
        StripeService: Shared service instance.
    """
    return StripeService()
