"""Fixtures for API route tests.

Routes run against the moto-backed services from the root conftest; the
FastAPI providers are replaced through ``app.dependency_overrides``.
"""

from collections.abc import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from ridepay.services.stripe_service import get_stripe_service
from ridepay.services.webhook_handler import WebhookHandler
from ridepay_api.dependencies import (
    get_capture_worker,
    get_payment_lifecycle_service,
    get_secrets,
    get_webhook_handler,
    reset_services,
)
from ridepay_api.main import app

WORKER_TOKEN = "worker-token-abc123"
RIDER_HEADERS = {"x-user-sub": "rider-sub-1"}


@pytest.fixture
def secrets() -> MagicMock:
    """SSM double holding the worker token."""
    mock = MagicMock()
    mock.get_parameter.return_value = WORKER_TOKEN
    return mock


@pytest.fixture
def stripe_mock() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(payments, worker, db, store, clock, secrets, stripe_mock) -> Generator[TestClient, None, None]:
    """Test client with every service provider overridden."""
    app.dependency_overrides[get_payment_lifecycle_service] = lambda: payments
    app.dependency_overrides[get_capture_worker] = lambda: worker
    app.dependency_overrides[get_secrets] = lambda: secrets
    app.dependency_overrides[get_stripe_service] = lambda: stripe_mock
    app.dependency_overrides[get_webhook_handler] = lambda: WebhookHandler(db, store, clock)
    yield TestClient(app)
    app.dependency_overrides.clear()
    reset_services()


@pytest.fixture
def worker_headers() -> dict[str, str]:
    return {"X-Worker-Token": WORKER_TOKEN}


@pytest.fixture
def rider_headers() -> dict[str, str]:
    return dict(RIDER_HEADERS)
