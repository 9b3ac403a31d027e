"""Tests for the FastAPI application setup (health, routing, middleware)."""

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    from ridepay_api.main import app
    return TestClient(app)


class TestHealthCheck:
    """Tests for the /api/ping health check endpoint."""

    def test_ping_returns_ok(self, client: TestClient):
        response = client.get("/api/ping")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "ridepay-api"
        assert "timestamp" in data


class TestCorrelationId:
    def test_generated_when_absent(self, client: TestClient):
        response = client.get("/api/ping")

        assert response.headers["X-Correlation-ID"]

    def test_echoed_when_provided(self, client: TestClient):
        response = client.get("/api/ping", headers={"X-Correlation-ID": "corr-123"})

        assert response.headers["X-Correlation-ID"] == "corr-123"


class TestRoutesRegistered:
    def test_payment_worker_and_webhook_routes(self, client: TestClient):
        from ridepay_api.main import app

        route_paths = {getattr(route, "path", None) for route in app.routes}

        assert {
            "/api/payments/authorize",
            "/api/payments/{payment_intent_id}",
            "/api/payments/{payment_intent_id}/capture",
            "/api/payments/{payment_intent_id}/cancellation",
            "/api/payments/{payment_intent_id}/driver-no-show",
            "/api/bookings/{booking_id}/payment",
            "/api/worker/payment-capture",
            "/api/webhooks/stripe",
        } <= route_paths
