"""FastAPI dependency injection providers for shared services.

Services are lazily instantiated and cached with @lru_cache.

Usage in routes:
    from ridepay_api.dependencies import get_payment_lifecycle_service

    @router.get("/payments/{payment_intent_id}")
    async def get_payment(
        payments: PaymentLifecycleService = Depends(get_payment_lifecycle_service),
    ):
        ...

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── PaymentIntentStore ─┬── PaymentLifecycleService ── CaptureWorker
        ├── CancellationStore ──┤                                  │
        ├── NoShowStore ────────┤                                  │
        ├── OutboxService ──────┘                                  │
        ├── CaptureQueue ──────────────────────────────────────────┘
        └── WebhookHandler
    StripeService (payment gateway, singleton via get_stripe_service)

Testing:
    Use reset_services() to clear cached instances between tests, or
    override providers with app.dependency_overrides.
"""

from functools import lru_cache

from ridepay.services.cancellation_store import CancellationStore
from ridepay.services.capture_queue import CaptureQueue
from ridepay.services.capture_worker import CaptureWorker
from ridepay.services.dynamodb import get_dynamodb_service
from ridepay.services.no_show_store import NoShowStore
from ridepay.services.outbox import OutboxService
from ridepay.services.payment_gateway import PaymentGateway
from ridepay.services.payment_service import PaymentLifecycleService
from ridepay.services.payment_store import PaymentIntentStore
from ridepay.services.ssm_service import SSMService, get_ssm_service
from ridepay.services.stripe_service import get_stripe_service
from ridepay.services.webhook_handler import WebhookHandler


@lru_cache
def get_payment_store() -> PaymentIntentStore:
    return PaymentIntentStore(db=get_dynamodb_service())


@lru_cache
def get_cancellation_store() -> CancellationStore:
    return CancellationStore(db=get_dynamodb_service())


@lru_cache
def get_no_show_store() -> NoShowStore:
    return NoShowStore(db=get_dynamodb_service())


@lru_cache
def get_outbox_service() -> OutboxService:
    return OutboxService(db=get_dynamodb_service())


@lru_cache
def get_capture_queue() -> CaptureQueue:
    return CaptureQueue(db=get_dynamodb_service())


def get_payment_gateway() -> PaymentGateway:
    """Get the processor binding (the shared StripeService)."""
    return get_stripe_service()


@lru_cache
def get_payment_lifecycle_service() -> PaymentLifecycleService:
    """Get cached PaymentLifecycleService instance.

    Returns:
        PaymentLifecycleService wired to DynamoDB and Stripe.
    """
    return PaymentLifecycleService(
        store=get_payment_store(),
        gateway=get_payment_gateway(),
        outbox=get_outbox_service(),
        cancellations=get_cancellation_store(),
        no_shows=get_no_show_store(),
    )


@lru_cache
def get_capture_worker() -> CaptureWorker:
    """Get cached CaptureWorker instance.

    Returns:
        CaptureWorker draining the capture queue via the lifecycle service.
    """
    return CaptureWorker(
        queue=get_capture_queue(),
        payments=get_payment_lifecycle_service(),
    )


@lru_cache
def get_webhook_handler() -> WebhookHandler:
    return WebhookHandler(db=get_dynamodb_service(), store=get_payment_store())


def get_secrets() -> SSMService:
    """Get the SSM parameter service used for API secrets."""
    return get_ssm_service()


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB, SSM and Stripe singletons.
    """
    from ridepay.services.dynamodb import reset_dynamodb_service

    get_payment_store.cache_clear()
    get_cancellation_store.cache_clear()
    get_no_show_store.cache_clear()
    get_outbox_service.cache_clear()
    get_capture_queue.cache_clear()
    get_payment_lifecycle_service.cache_clear()
    get_capture_worker.cache_clear()
    get_webhook_handler.cache_clear()

    get_stripe_service.cache_clear()
    get_ssm_service.cache_clear()
    reset_dynamodb_service()
