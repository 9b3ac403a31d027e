"""API models for the capture worker endpoints.

Field names on the wire are camelCase to match the scheduler's payload.
"""

from pydantic import BaseModel, ConfigDict, Field

from ridepay.models import CaptureResult


class CaptureWorkerRequest(BaseModel):
    """Optional tuning for one worker run."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={"examples": [{"batchSize": 10, "maxAttempts": 5}, {}]},
    )

    batch_size: int = Field(default=10, ge=1, le=100, alias="batchSize")
    max_attempts: int = Field(default=5, ge=1, le=20, alias="maxAttempts")


class CaptureWorkerResponse(BaseModel):
    """Summary of one worker run."""

    success: bool = True
    processed: int
    succeeded: int
    failed: int
    results: list[CaptureResult]


class WorkerErrorResponse(BaseModel):
    """Body returned when a run aborts on an infrastructure failure."""

    success: bool = False
    error: str


class WorkerHealthResponse(BaseModel):
    status: str
    service: str
    timestamp: str
