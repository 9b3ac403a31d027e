"""DynamoDB access for the payment tables.

Tables are named ``<prefix>-<table>`` where the prefix comes from
DYNAMODB_TABLE_PREFIX (default ``ridepay-<env>``). A failed condition on a
put or update is an expected outcome of the optimistic guards and is
reported as False/None; every other boto failure propagates for the caller
to wrap with ``persistence_error``.
"""

import os
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from ridepay.models.errors import ErrorCode, PersistenceError

# Re-exported so callers can catch boto failures without importing botocore
BOTO_ERRORS = (ClientError, BotoCoreError)

_CONDITION_FAILED = "ConditionalCheckFailedException"

_dynamodb_service_instance: "DynamoDBService | None" = None


def get_dynamodb_service(environment: str | None = None) -> "DynamoDBService":
    """Get or create the process-wide DynamoDBService.

    Args:
        environment: Environment name. Only used on first call.
    """
    global _dynamodb_service_instance
    if _dynamodb_service_instance is None:
        _dynamodb_service_instance = DynamoDBService(environment)
    return _dynamodb_service_instance


def reset_dynamodb_service() -> None:
    """Drop the shared instance so the next call builds a fresh one (tests)."""
    global _dynamodb_service_instance
    _dynamodb_service_instance = None


def persistence_error(operation: str, error: Exception) -> PersistenceError:
    """Wrap a boto error in the payment core's PersistenceError.

    Args:
        operation: Short description of what was being attempted
        error: The underlying ClientError or BotoCoreError

    Returns:
        PersistenceError chained to ``error`` by the caller
    """
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "Unknown")
    else:
        code = type(error).__name__
    return PersistenceError(
        f"Data store failure during {operation}: {code}",
        code=ErrorCode.PERSISTENCE_UNAVAILABLE,
        details={"operation": operation, "aws_error": code},
    )


def _condition_failed(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == _CONDITION_FAILED


def _expression_kwargs(
    condition_expression: str | None,
    values: dict[str, Any] | None,
    names: dict[str, str] | None,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if condition_expression:
        kwargs["ConditionExpression"] = condition_expression
    if values:
        kwargs["ExpressionAttributeValues"] = values
    if names:
        kwargs["ExpressionAttributeNames"] = names
    return kwargs


class DynamoDBService:
    """Thin wrapper over the boto3 table resource."""

    def __init__(self, environment: str | None = None) -> None:
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        self.name_prefix = os.getenv("DYNAMODB_TABLE_PREFIX", f"ridepay-{self.environment}")
        self._dynamodb = boto3.resource("dynamodb")

    def table_name(self, table: str) -> str:
        return f"{self.name_prefix}-{table}"

    def _table(self, table: str) -> Any:
        return self._dynamodb.Table(self.table_name(table))

    def get_item(
        self,
        table: str,
        key: dict[str, Any],
        *,
        consistent_read: bool = False,
    ) -> dict[str, Any] | None:
        """Fetch one item by primary key, or None."""
        response = self._table(table).get_item(Key=key, ConsistentRead=consistent_read)
        item: dict[str, Any] | None = response.get("Item")
        return item

    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
        expression_attribute_names: dict[str, str] | None = None,
    ) -> bool:
        """Write an item, optionally guarded by a condition.

        Returns:
            False if the condition failed, True otherwise
        """
        kwargs = _expression_kwargs(
            condition_expression, expression_attribute_values, expression_attribute_names
        )
        try:
            self._table(table).put_item(Item=item, **kwargs)
        except ClientError as e:
            if _condition_failed(e):
                return False
            raise
        return True

    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Apply an update expression, optionally guarded by a condition.

        Returns:
            The item's attributes after the update, or None if the condition failed
        """
        kwargs = _expression_kwargs(
            condition_expression, expression_attribute_values, expression_attribute_names
        )
        try:
            response = self._table(table).update_item(
                Key=key,
                UpdateExpression=update_expression,
                ReturnValues="ALL_NEW",
                **kwargs,
            )
        except ClientError as e:
            if _condition_failed(e):
                return None
            raise
        attrs: dict[str, Any] | None = response.get("Attributes")
        return attrs

    def query_page(
        self,
        table: str,
        key_condition: Any,
        index_name: str | None = None,
        filter_expression: Any | None = None,
        limit: int | None = None,
        scan_index_forward: bool = True,
        exclusive_start_key: dict[str, Any] | None = None,
    ) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
        """Query one page of a table or GSI.

        ``limit`` bounds the items DynamoDB evaluates, before the filter is
        applied, so a page may hold fewer matches than ``limit`` while more
        remain. Callers loop on the returned key until it is None.

        Returns:
            Tuple of (items, last_evaluated_key)
        """
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition,
            "ScanIndexForward": scan_index_forward,
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        if limit:
            kwargs["Limit"] = limit
        if exclusive_start_key:
            kwargs["ExclusiveStartKey"] = exclusive_start_key

        response = self._table(table).query(**kwargs)
        return response.get("Items", []), response.get("LastEvaluatedKey")

    def query(
        self,
        table: str,
        key_condition: Any,
        index_name: str | None = None,
        filter_expression: Any | None = None,
        scan_index_forward: bool = True,
    ) -> list[dict[str, Any]]:
        """Query a table or GSI, following pagination to the end."""
        items: list[dict[str, Any]] = []
        start_key: dict[str, Any] | None = None
        while True:
            page, start_key = self.query_page(
                table,
                key_condition,
                index_name=index_name,
                filter_expression=filter_expression,
                scan_index_forward=scan_index_forward,
                exclusive_start_key=start_key,
            )
            items.extend(page)
            if not start_key:
                return items

    def query_index(
        self,
        table: str,
        index_name: str,
        attribute: str,
        value: str,
    ) -> list[dict[str, Any]]:
        """All items of a GSI whose partition key ``attribute`` equals ``value``."""
        return self.query(table, Key(attribute).eq(value), index_name=index_name)
