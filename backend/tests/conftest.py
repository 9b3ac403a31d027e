"""Pytest configuration and fixtures for the ride payment backend tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (all payment tables and their indexes)
- A MagicMock payment gateway standing in for Stripe
- Wired services (store, queue, cancellations, no-shows, outbox, lifecycle, worker)
- Sample payment intents in each lifecycle status
"""

import datetime as dt
import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "ca-central-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-ridepay")
os.environ.setdefault("ENVIRONMENT", "dev")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from ridepay.models import PaymentIntent, PaymentIntentStatus  # noqa: E402
from ridepay.services.cancellation_store import CancellationStore  # noqa: E402
from ridepay.services.capture_queue import CaptureQueue  # noqa: E402
from ridepay.services.capture_worker import CaptureWorker  # noqa: E402
from ridepay.services.dynamodb import DynamoDBService, reset_dynamodb_service  # noqa: E402
from ridepay.services.no_show_store import NoShowStore  # noqa: E402
from ridepay.services.outbox import OutboxService  # noqa: E402
from ridepay.services.payment_service import PaymentLifecycleService  # noqa: E402
from ridepay.services.payment_store import PaymentIntentStore  # noqa: E402

TABLE_PREFIX = os.environ["DYNAMODB_TABLE_PREFIX"]

# Fixed "now" shared by services under test
NOW = dt.datetime(2026, 7, 1, 12, 0, tzinfo=dt.UTC)


class FakeClock:
    """Controllable clock for services that take a ``clock`` callable."""

    def __init__(self, now: dt.datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


# === DynamoDB Fixtures ===


def _simple_table(suffix: str, key: str) -> dict[str, Any]:
    return {
        "TableName": f"{TABLE_PREFIX}-{suffix}",
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": key, "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    }


TABLES: list[dict[str, Any]] = [
    {
        "TableName": f"{TABLE_PREFIX}-payment-intents",
        "KeySchema": [{"AttributeName": "payment_intent_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "payment_intent_id", "AttributeType": "S"},
            {"AttributeName": "stripe_payment_intent_id", "AttributeType": "S"},
            {"AttributeName": "booking_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "stripe_payment_intent_id-index",
                "KeySchema": [{"AttributeName": "stripe_payment_intent_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
            {
                "IndexName": "booking_id-index",
                "KeySchema": [{"AttributeName": "booking_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-payment-capture-queue",
        "KeySchema": [{"AttributeName": "entry_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "entry_id", "AttributeType": "S"},
            {"AttributeName": "status", "AttributeType": "S"},
            {"AttributeName": "created_at", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "status-created_at-index",
                "KeySchema": [
                    {"AttributeName": "status", "KeyType": "HASH"},
                    {"AttributeName": "created_at", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    _simple_table("payment-history", "history_id"),
    _simple_table("ride-cancellations", "cancellation_id"),
    _simple_table("driver-no-shows", "no_show_id"),
    _simple_table("referral-rewards", "code"),
    _simple_table("outbox-events", "event_id"),
    _simple_table("stripe-webhook-events", "event_id"),
]


@pytest.fixture(autouse=True)
def reset_dynamodb_singleton() -> Generator[None, None, None]:
    """Reset DynamoDB singleton before and after each test.

    This ensures tests using mock_aws get a fresh service instance
    inside the mock context rather than reusing a singleton from
    a previous test or non-mocked context.
    """
    reset_dynamodb_service()
    yield
    reset_dynamodb_service()


@pytest.fixture
def aws_mock() -> Generator[None, None, None]:
    """Start moto for DynamoDB and SSM and create every payment table."""
    with mock_aws():
        client = boto3.client("dynamodb")
        for table in TABLES:
            client.create_table(**table)
        yield


@pytest.fixture
def db(aws_mock: None) -> DynamoDBService:
    return DynamoDBService()


def scan_table(suffix: str) -> list[dict[str, Any]]:
    """All items of a mocked table, for asserting on side effects."""
    table = boto3.resource("dynamodb").Table(f"{TABLE_PREFIX}-{suffix}")
    return table.scan()["Items"]


# === Service Fixtures ===


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> MagicMock:
    """Payment gateway double that succeeds by default."""
    mock = MagicMock()
    mock.authorize.return_value = {
        "external_id": "pi_test_123",
        "status": "requires_capture",
        "client_secret": "pi_test_123_secret_abc",
    }
    mock.capture.side_effect = lambda external_id, amount_to_capture=None, **kwargs: {
        "captured_amount": amount_to_capture if amount_to_capture is not None else 4000,
        "status": "succeeded",
        "charge_id": "ch_test_123",
    }
    mock.cancel.return_value = {"status": "canceled"}
    mock.refund.side_effect = lambda external_id, amount=None, reason=None, **kwargs: {
        "refund_id": "re_test_123",
        "amount_refunded": amount,
        "status": "succeeded",
    }
    return mock


@pytest.fixture
def store(db: DynamoDBService) -> PaymentIntentStore:
    return PaymentIntentStore(db)


@pytest.fixture
def queue(db: DynamoDBService) -> CaptureQueue:
    return CaptureQueue(db)


@pytest.fixture
def cancellations(db: DynamoDBService) -> CancellationStore:
    return CancellationStore(db)


@pytest.fixture
def no_shows(db: DynamoDBService) -> NoShowStore:
    return NoShowStore(db)


@pytest.fixture
def outbox(db: DynamoDBService) -> OutboxService:
    return OutboxService(db)


@pytest.fixture
def payments(
    store: PaymentIntentStore,
    gateway: MagicMock,
    outbox: OutboxService,
    cancellations: CancellationStore,
    no_shows: NoShowStore,
    clock: FakeClock,
) -> PaymentLifecycleService:
    return PaymentLifecycleService(
        store=store,
        gateway=gateway,
        outbox=outbox,
        cancellations=cancellations,
        no_shows=no_shows,
        currency="cad",
        clock=clock,
    )


@pytest.fixture
def worker(
    queue: CaptureQueue,
    payments: PaymentLifecycleService,
    clock: FakeClock,
) -> CaptureWorker:
    return CaptureWorker(
        queue=queue,
        payments=payments,
        inter_item_delay=0,
        retry_backoff_seconds=0,
        clock=clock,
        sleep=lambda _: None,
    )


# === Sample Data ===


def make_intent(
    payment_intent_id: str = "PI-TEST00000001",
    *,
    status: PaymentIntentStatus = PaymentIntentStatus.AUTHORIZED,
    amount: int = 4000,
    created_at: dt.datetime = NOW,
    **overrides: Any,
) -> PaymentIntent:
    """Build a payment intent for a $40.00 ride unless told otherwise."""
    fields: dict[str, Any] = {
        "payment_intent_id": payment_intent_id,
        "stripe_payment_intent_id": f"pi_{payment_intent_id.lower()}",
        "ride_id": "RIDE-001",
        "booking_id": "BKG-001",
        "rider_id": "rider-sub-1",
        "driver_id": "driver-sub-1",
        "amount_subtotal": amount,
        "discount_amount": 0,
        "amount_total": amount,
        "currency": "cad",
        "status": status,
        "created_at": created_at,
        "updated_at": created_at,
    }
    fields.update(overrides)
    return PaymentIntent(**fields)


@pytest.fixture
def authorized_intent(store: PaymentIntentStore) -> PaymentIntent:
    intent = make_intent()
    store.create(intent)
    return intent


@pytest.fixture
def captured_intent(store: PaymentIntentStore) -> PaymentIntent:
    intent = make_intent(
        "PI-TEST00000002",
        status=PaymentIntentStatus.SUCCEEDED,
        captured_at=NOW,
        metadata={"amount_captured": 4000},
    )
    store.create(intent)
    return intent


@pytest.fixture
def intent_factory() -> Any:
    """The ``make_intent`` builder, for tests that need custom intents."""
    return make_intent


@pytest.fixture
def table_items(aws_mock: None) -> Any:
    """The ``scan_table`` reader, for asserting on history and outbox rows."""
    return scan_table
