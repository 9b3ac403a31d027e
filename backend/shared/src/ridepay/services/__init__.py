"""Payment lifecycle and capture worker services."""

from .cancellation_store import CancellationStore
from .capture_queue import CaptureQueue
from .capture_worker import CaptureWorker
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .outbox import OutboxService
from .payment_gateway import PaymentGateway
from .payment_service import PaymentLifecycleService
from .payment_store import PaymentIntentStore
from .refund_policy_service import RefundCalculation, RefundPolicyService, calculate_refund
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stripe_service import StripeService, StripeServiceError, get_stripe_service
from .webhook_handler import WebhookHandler

__all__ = [
    "CancellationStore",
    "CaptureQueue",
    "CaptureWorker",
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "OutboxService",
    "PaymentGateway",
    "PaymentLifecycleService",
    "PaymentIntentStore",
    "RefundCalculation",
    "RefundPolicyService",
    "calculate_refund",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
    "StripeService",
    "StripeServiceError",
    "get_stripe_service",
    "WebhookHandler",
]
