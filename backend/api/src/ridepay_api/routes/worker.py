"""Capture worker endpoints.

Provides endpoints for:
- Triggering one capture worker run (called by the scheduler)
- Worker health check

The trigger is not user-facing; it is guarded by a shared token kept in SSM.
"""

import datetime as dt
import logging
import secrets

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from ridepay.models.errors import ErrorCode, PaymentError, PersistenceError
from ridepay.services.capture_worker import CaptureWorker
from ridepay.services.ssm_service import WORKER_TOKEN, SSMService, SSMServiceError, parameter_path
from ridepay_api.dependencies import get_capture_worker, get_secrets
from ridepay_api.exceptions import WorkerUnavailableError
from ridepay_api.models.worker import (
    CaptureWorkerRequest,
    CaptureWorkerResponse,
    WorkerErrorResponse,
    WorkerHealthResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["worker"])


def require_worker_token(
    x_worker_token: str | None = Header(default=None),
    ssm: SSMService = Depends(get_secrets),
) -> None:
    """Reject calls that do not carry the scheduler's shared token.

    A mismatch is checked once more against a fresh read, so a token rotated
    in SSM is accepted before the cached copy expires.
    """
    if not x_worker_token:
        raise PaymentError(code=ErrorCode.WORKER_UNAUTHORIZED)

    path = parameter_path(WORKER_TOKEN)
    try:
        if secrets.compare_digest(x_worker_token, ssm.get_parameter(path)):
            return
        fresh = ssm.get_parameter(path, use_cache=False)
    except SSMServiceError as e:
        logger.error("Worker token unavailable: %s", e)
        raise WorkerUnavailableError("Worker token unavailable") from e

    if not secrets.compare_digest(x_worker_token, fresh):
        logger.warning("Capture worker called with an invalid token")
        raise PaymentError(code=ErrorCode.WORKER_UNAUTHORIZED)


@router.post(
    "/worker/payment-capture",
    summary="Run the capture worker",
    description="""
Process one batch of pending captures for completed rides.

**Requires the `X-Worker-Token` header.**

**Notes:**
- The body is optional; `batchSize` defaults to 10 and `maxAttempts` to 5
- Entries held by a concurrent run are skipped and not counted
- A store outage aborts the run with a 500 and `success: false`
- An unreadable worker token is a 503 with the same body
""",
    response_model=CaptureWorkerResponse,
    responses={
        200: {"description": "Batch processed", "model": CaptureWorkerResponse},
        401: {"description": "Missing or invalid worker token"},
        500: {"description": "Queue or payment store unavailable", "model": WorkerErrorResponse},
        503: {"description": "Worker token unreadable", "model": WorkerErrorResponse},
    },
    dependencies=[Depends(require_worker_token)],
)
def run_capture_worker(
    body: CaptureWorkerRequest | None = None,
    worker: CaptureWorker = Depends(get_capture_worker),
) -> CaptureWorkerResponse | JSONResponse:
    """Run one capture batch.

    Declared sync so the worker's pacing sleeps run in the threadpool.
    """
    params = body or CaptureWorkerRequest()
    try:
        summary = worker.run(batch_size=params.batch_size, max_attempts=params.max_attempts)
    except PersistenceError as e:
        logger.error("Capture worker aborted: %s", e.message)
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=WorkerErrorResponse(error=e.message).model_dump(),
        )

    return CaptureWorkerResponse(
        processed=summary.processed,
        succeeded=summary.succeeded,
        failed=summary.failed,
        results=summary.results,
    )


@router.get(
    "/worker/health",
    summary="Capture worker health check",
    response_model=WorkerHealthResponse,
)
async def worker_health() -> WorkerHealthResponse:
    return WorkerHealthResponse(
        status="healthy",
        service="payment-capture-worker",
        timestamp=dt.datetime.now(dt.UTC).isoformat(),
    )
