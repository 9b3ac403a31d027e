"""FastAPI application for the ride payment REST API.

Serves booking payment operations, the scheduler's capture worker trigger
and the Stripe webhook. Runs on Lambda behind API Gateway through Mangum,
or locally under uvicorn.
"""

import logging
import os
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from ridepay.utils.logging import configure_logging
from ridepay_api.exceptions import register_exception_handlers
from ridepay_api.middleware import CorrelationIdMiddleware
from ridepay_api.routes import payments_router, webhooks_router, worker_router

logger = logging.getLogger(__name__)

API_PREFIX = "/api"
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app() -> FastAPI:
    """Build the API with middleware, error handlers and all routers."""
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    application = FastAPI(
        title="Ride Payments API",
        description="REST API for ride booking payments and the capture worker",
        version="0.1.0",
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(application)

    for router in (payments_router, worker_router, webhooks_router):
        application.include_router(router, prefix=API_PREFIX)

    @application.get(f"{API_PREFIX}/ping")
    async def ping() -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "service": "ridepay-api",
        }

    return application


app = create_app()

# Lambda entry point (API Gateway proxy events)
handler = Mangum(app, lifespan="off")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ridepay_api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        reload=True,
        reload_dirs=["backend/api/src", "backend/shared/src"],
    )
