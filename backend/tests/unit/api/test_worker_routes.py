"""Tests for the capture worker endpoints."""

from unittest.mock import patch

from ridepay.models import PersistenceError
from ridepay.services.ssm_service import WORKER_TOKEN, SSMServiceError, parameter_path

WORKER_URL = "/api/worker/payment-capture"


class TestWorkerToken:
    def test_missing_token_is_401(self, client, gateway):
        response = client.post(WORKER_URL)

        assert response.status_code == 401
        assert response.json()["error_code"] == "ERR_WORKER_001"
        assert gateway.capture.call_count == 0

    def test_wrong_token_is_401(self, client):
        response = client.post(WORKER_URL, headers={"X-Worker-Token": "guess"})

        assert response.status_code == 401

    def test_token_read_from_ssm(self, client, secrets, worker_headers):
        client.post(WORKER_URL, headers=worker_headers)

        secrets.get_parameter.assert_called_once_with(parameter_path(WORKER_TOKEN))

    def test_rotated_token_is_accepted(self, client, secrets, worker_headers):
        rotated = worker_headers["X-Worker-Token"]
        secrets.get_parameter.side_effect = lambda path, use_cache=True: rotated if not use_cache else "stale"

        response = client.post(WORKER_URL, headers=worker_headers)

        assert response.status_code == 200

    def test_unreadable_token_is_503(self, client, secrets, worker_headers):
        secrets.get_parameter.side_effect = SSMServiceError("SSM unavailable")

        response = client.post(WORKER_URL, headers=worker_headers)

        assert response.status_code == 503
        assert response.json() == {"success": False, "error": "Worker token unavailable"}


class TestRunCaptureWorker:
    def test_empty_queue(self, client, worker_headers):
        response = client.post(WORKER_URL, headers=worker_headers)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "processed": 0,
            "succeeded": 0,
            "failed": 0,
            "results": [],
        }

    def test_results_use_payment_id_key(self, client, worker_headers, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)

        response = client.post(WORKER_URL, json={"batchSize": 5, "maxAttempts": 3}, headers=worker_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 1
        assert data["succeeded"] == 1
        assert data["results"] == [{"success": True, "paymentId": entry.entry_id, "error": None}]

    def test_batch_size_out_of_range_is_422(self, client, worker_headers):
        response = client.post(WORKER_URL, json={"batchSize": 0}, headers=worker_headers)

        assert response.status_code == 422

    def test_store_outage_aborts_with_500(self, client, worker_headers, queue):
        with patch.object(queue, "select_pending", side_effect=PersistenceError("DynamoDB unavailable")):
            response = client.post(WORKER_URL, headers=worker_headers)

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "DynamoDB unavailable"}


def test_worker_health(client):
    response = client.get("/api/worker/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "payment-capture-worker"
