"""Request tracing middleware.

Every request runs under a correlation ID, taken from ``X-Correlation-ID``
or generated, and echoed back on the response. Completed requests are
logged with status and latency so a worker run or a webhook delivery can be
followed through the service logs.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ridepay.utils.logging import clear_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Polled by load balancers and the scheduler; not worth a log line each
QUIET_PATHS = frozenset({"/api/ping", "/api/worker/health"})


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation ID to the request and logs its completion."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            if request.url.path not in QUIET_PATHS:
                logger.info(
                    "%s %s -> %d in %.1fms",
                    request.method,
                    request.url.path,
                    response.status_code,
                    (time.perf_counter() - started) * 1000,
                )
            return response
        finally:
            clear_correlation_id()
