"""FastAPI exception handlers for converting PaymentError to HTTP responses.

The ErrorCode-to-HTTP status mapping follows REST conventions:
- 400 Bad Request: Invalid amounts or missing references
- 401 Unauthorized: Worker token missing or wrong
- 402 Payment Required: The processor declined or failed
- 404 Not Found: Unknown payment intent
- 409 Conflict: Operation not allowed in the payment's current status
- 503 Service Unavailable: Data store unreachable

Usage:
    from ridepay_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_402_PAYMENT_REQUIRED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from ridepay.models.errors import (
    ErrorCode,
    GatewayError,
    PaymentError,
    get_user_friendly_stripe_message,
)
from ridepay_api.models.worker import WorkerErrorResponse

logger = logging.getLogger(__name__)

# Map ErrorCode to HTTP status codes
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_AMOUNT: HTTP_400_BAD_REQUEST,
    ErrorCode.MISSING_REFERENCE: HTTP_400_BAD_REQUEST,
    ErrorCode.REFUND_EXCEEDS_CAPTURE: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_400_BAD_REQUEST,
    ErrorCode.PAYMENT_INTENT_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_STATE: HTTP_409_CONFLICT,
    ErrorCode.CONCURRENT_MODIFICATION: HTTP_409_CONFLICT,
    ErrorCode.GATEWAY_ERROR: HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.PERSISTENCE_UNAVAILABLE: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.WORKER_UNAUTHORIZED: HTTP_401_UNAUTHORIZED,
}


class WorkerUnavailableError(Exception):
    """The capture worker cannot run because its own configuration is unreadable.

    Answered in the worker's `{success, error}` shape rather than as an ErrorResponse,
    so the scheduler reads one body format for every worker failure.
    """

    def __init__(self, error: str):
        super().__init__(error)
        self.error = error


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode, defaulting to 400."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    """Convert a PaymentError to a JSON ErrorResponse.

    Processor declines carry a user-friendly message in place of the raw
    processor text.

    Args:
        request: The incoming request (unused but required by FastAPI)
        exc: The PaymentError exception

    Returns:
        JSONResponse with error details and appropriate status code.
    """
    status_code = get_http_status_for_error(exc.code)
    body = exc.to_error_response()
    if isinstance(exc, GatewayError):
        body.message = get_user_friendly_stripe_message(exc.stripe_error_code)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)

    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
    )


async def worker_unavailable_handler(request: Request, exc: WorkerUnavailableError) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc.error)
    return JSONResponse(
        status_code=HTTP_503_SERVICE_UNAVAILABLE,
        content=WorkerErrorResponse(error=exc.error).model_dump(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(PaymentError, payment_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(WorkerUnavailableError, worker_unavailable_handler)  # type: ignore[arg-type]
