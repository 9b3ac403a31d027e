"""API-specific request/response models.

Domain models (PaymentIntent, CaptureResult, CancellationOutcome, etc.) are in
ridepay.models and are reused here where appropriate.

Modules:
- payments: Payment operation request/response models
- worker: Capture worker trigger and health models
"""

__all__: list[str] = []
