"""Payment processor interface used by the lifecycle service.

The gateway exposes the processor's four primitives and nothing else.
Implementations raise GatewayError (or a subclass) for every failure,
including timeouts, so callers can treat processor trouble uniformly.
"""

from typing import Any, Protocol, TypedDict


class AuthorizeResult(TypedDict):
    """Result of placing an authorization hold."""

    external_id: str
    status: str  # processor status, e.g. "requires_capture"
    client_secret: str | None


class CaptureResponse(TypedDict):
    """Result of capturing a held amount."""

    captured_amount: int
    status: str
    charge_id: str | None


class CancelResponse(TypedDict):
    """Result of releasing a hold."""

    status: str


class RefundResponse(TypedDict):
    """Result of refunding captured funds."""

    refund_id: str
    amount_refunded: int
    status: str


class PaymentGateway(Protocol):
    """Processor operations keyed by the processor's payment ID."""

    def authorize(
        self,
        *,
        amount: int,
        currency: str,
        metadata: dict[str, Any],
        description: str,
        idempotency_key: str,
        payment_method_id: str | None = None,
    ) -> AuthorizeResult: ...

    def capture(
        self,
        external_id: str,
        amount_to_capture: int | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> CaptureResponse: ...

    def cancel(self, external_id: str, reason: str | None = None) -> CancelResponse: ...

    def refund(
        self,
        external_id: str,
        amount: int | None = None,
        reason: str | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> RefundResponse: ...
