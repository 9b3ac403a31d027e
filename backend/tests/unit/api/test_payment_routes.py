"""Tests for the payment endpoints.

Covers request handling, the authenticated payer, and the ErrorCode to
HTTP status mapping.
"""

from unittest.mock import patch

from ridepay.models import GatewayError, PersistenceError


class TestAuthorizeEndpoint:
    def test_payer_comes_from_authenticated_user(self, client, rider_headers, gateway):
        response = client.post(
            "/api/payments/authorize",
            json={"ride_id": "RIDE-001", "booking_id": "BKG-001", "driver_id": "driver-sub-1", "amount_subtotal": 4000},
            headers=rider_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["payment_intent"]["rider_id"] == "rider-sub-1"
        assert data["payment_intent"]["status"] == "authorized"
        assert data["payment_intent"]["amount_total"] == 4000
        assert data["client_secret"] == "pi_test_123_secret_abc"

    def test_requires_authentication(self, client, gateway):
        response = client.post(
            "/api/payments/authorize",
            json={"ride_id": "RIDE-001", "driver_id": "driver-sub-1", "amount_subtotal": 4000},
        )

        assert response.status_code == 401
        assert gateway.authorize.call_count == 0

    def test_invalid_amount_is_400(self, client, rider_headers):
        response = client.post(
            "/api/payments/authorize",
            json={"ride_id": "RIDE-001", "driver_id": "driver-sub-1", "amount_subtotal": 0},
            headers=rider_headers,
        )

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error_code"] == "ERR_PAY_001"

    def test_decline_is_402_with_friendly_message(self, client, rider_headers, gateway):
        gateway.authorize.side_effect = GatewayError("raw processor text", stripe_error_code="card_declined")

        response = client.post(
            "/api/payments/authorize",
            json={"ride_id": "RIDE-001", "driver_id": "driver-sub-1", "amount_subtotal": 4000},
            headers=rider_headers,
        )

        assert response.status_code == 402
        data = response.json()
        assert data["error_code"] == "ERR_PAY_007"
        assert data["message"] == "Your card was declined. Please try a different card."


class TestGetPayment:
    def test_returns_intent(self, client, authorized_intent):
        response = client.get(f"/api/payments/{authorized_intent.payment_intent_id}")

        assert response.status_code == 200
        assert response.json()["payment_intent_id"] == authorized_intent.payment_intent_id

    def test_unknown_intent_is_404(self, client):
        response = client.get("/api/payments/PI-MISSING")

        assert response.status_code == 404
        assert response.json()["error_code"] == "ERR_PAY_003"

    def test_store_outage_is_503(self, client, store):
        with patch.object(store, "get", side_effect=PersistenceError("DynamoDB unavailable")):
            response = client.get("/api/payments/PI-ANY")

        assert response.status_code == 503
        assert response.json()["error_code"] == "ERR_PAY_008"

    def test_lookup_by_booking(self, client, authorized_intent):
        response = client.get("/api/bookings/BKG-001/payment")

        assert response.status_code == 200
        assert response.json()["payment_intent_id"] == authorized_intent.payment_intent_id

    def test_booking_without_payment_is_404(self, client):
        response = client.get("/api/bookings/BKG-NONE/payment")

        assert response.status_code == 404
        assert response.json()["error_code"] == "ERR_PAY_003"


class TestCaptureEndpoint:
    def test_capture_without_body_takes_full_amount(self, client, authorized_intent):
        response = client.post(f"/api/payments/{authorized_intent.payment_intent_id}/capture")

        assert response.status_code == 200
        data = response.json()
        assert data["captured_amount"] == 4000
        assert data["payment_intent"]["status"] == "succeeded"

    def test_capture_of_captured_payment_is_409(self, client, gateway, captured_intent):
        response = client.post(f"/api/payments/{captured_intent.payment_intent_id}/capture")

        assert response.status_code == 409
        assert response.json()["error_code"] == "ERR_PAY_005"
        assert gateway.capture.call_count == 0

    def test_amount_above_hold_is_400(self, client, authorized_intent):
        response = client.post(
            f"/api/payments/{authorized_intent.payment_intent_id}/capture",
            json={"amount_to_capture": 5000},
        )

        assert response.status_code == 400


class TestCancelAndRefundEndpoints:
    def test_cancel_releases_hold(self, client, authorized_intent):
        response = client.post(
            f"/api/payments/{authorized_intent.payment_intent_id}/cancel",
            json={"reason": "rider changed plans"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "canceled"

    def test_refund_beyond_capture_is_400(self, client, captured_intent):
        response = client.post(
            f"/api/payments/{captured_intent.payment_intent_id}/refund",
            json={"amount": 5000},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "ERR_PAY_004"

    def test_full_refund_without_body(self, client, captured_intent):
        response = client.post(f"/api/payments/{captured_intent.payment_intent_id}/refund")

        assert response.status_code == 200
        data = response.json()
        assert data["amount_refunded"] == 4000
        assert data["remaining_refundable"] == 0


class TestPolicyCancellation:
    def test_applies_partial_refund_tier(self, client, rider_headers, authorized_intent):
        # Fixed clock is 2026-07-01T12:00Z, departure 18h later
        response = client.post(
            f"/api/payments/{authorized_intent.payment_intent_id}/cancellation",
            json={
                "departure_time": "2026-07-02T06:00:00Z",
                "cancelled_by_role": "passenger",
                "reason": "Plans changed",
            },
            headers=rider_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["refund_percentage"] == 50
        assert data["refund_amount"] == 2000
        assert data["cancellation_fee"] == 2000
        assert data["outcome"] == "partial_refund"

    def test_unknown_role_is_422(self, client, rider_headers, authorized_intent):
        response = client.post(
            f"/api/payments/{authorized_intent.payment_intent_id}/cancellation",
            json={
                "departure_time": "2026-07-02T06:00:00Z",
                "cancelled_by_role": "dispatcher",
                "reason": "Plans changed",
            },
            headers=rider_headers,
        )

        assert response.status_code == 422

    def test_estimate_has_no_side_effects(self, client, gateway, authorized_intent, table_items):
        response = client.post(
            f"/api/payments/{authorized_intent.payment_intent_id}/refund-estimate",
            json={"departure_time": "2026-07-02T14:00:00Z", "cancelled_by_role": "passenger"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["refund_percentage"] == 100
        assert data["refund_amount"] == 4000
        assert data["policy_tier"] == "full"
        assert "12-24 hours before departure: Partial refund (50%)" in data["policy"]
        assert table_items("ride-cancellations") == []
        assert not gateway.method_calls


class TestDriverNoShow:
    def test_releases_hold_and_records_reporter(self, client, rider_headers, authorized_intent, table_items):
        response = client.post(
            f"/api/payments/{authorized_intent.payment_intent_id}/driver-no-show",
            json={"reason": "Driver never arrived"},
            headers=rider_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "confirmed"
        assert data["refund_amount"] == 4000
        assert data["penalty_amount"] == 0
        assert table_items("driver-no-shows")[0]["reported_by"] == "rider-sub-1"

    def test_requires_authentication(self, client, gateway, authorized_intent):
        response = client.post(
            f"/api/payments/{authorized_intent.payment_intent_id}/driver-no-show",
            json={"reason": "Driver never arrived"},
        )

        assert response.status_code == 401
        assert not gateway.method_calls

    def test_unknown_intent_is_404(self, client, rider_headers):
        response = client.post(
            "/api/payments/PI-MISSING/driver-no-show",
            json={"reason": "Driver never arrived"},
            headers=rider_headers,
        )

        assert response.status_code == 404
