"""Helpers for moving values between pydantic models and DynamoDB items."""

import datetime as dt
from decimal import Decimal
from typing import Any


def utc_now() -> dt.datetime:
    """Current time, timezone-aware UTC."""
    return dt.datetime.now(dt.UTC)


def to_iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value else None


def from_iso(value: Any) -> dt.datetime | None:
    """Parse an ISO timestamp stored by ``to_iso``; tolerates a trailing Z."""
    if not value:
        return None
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return dt.datetime.fromisoformat(text)


def plain_numbers(value: Any) -> Any:
    """Convert boto3 Decimals back to int (or float) throughout a structure."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: plain_numbers(v) for k, v in value.items()}
    if isinstance(value, list):
        return [plain_numbers(v) for v in value]
    return value


def dynamo_numbers(value: Any) -> Any:
    """Convert floats to Decimal throughout a structure; boto3 rejects float."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: dynamo_numbers(v) for k, v in value.items()}
    if isinstance(value, list):
        return [dynamo_numbers(v) for v in value]
    return value


def drop_none(item: dict[str, Any]) -> dict[str, Any]:
    """Omit unset attributes; DynamoDB items carry no nulls."""
    return {k: v for k, v in item.items() if v is not None}
