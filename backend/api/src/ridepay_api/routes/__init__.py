"""API routes package.

This package contains FastAPI routers for all REST API endpoints.
Routers are organized by domain:

- payments: Booking payment lifecycle and policy cancellation
- worker: Capture worker trigger and health check
- webhooks: Stripe payment intent events

All routers are registered in main.py with /api prefix.
"""

from ridepay_api.routes.payments import router as payments_router
from ridepay_api.routes.webhooks import router as webhooks_router
from ridepay_api.routes.worker import router as worker_router

__all__ = [
    "payments_router",
    "webhooks_router",
    "worker_router",
]
