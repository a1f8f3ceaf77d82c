"""DynamoDB access for the spare-parts desk.

Tables are named "<prefix>-<table>", e.g. "partsdesk-prod-requests". Writes
take an optional condition expression; a failed condition is reported as a
False return instead of an exception so callers can decide what it means
(duplicate ID, stale version, missing item).
"""

import os
from collections.abc import Callable
from typing import Any

import boto3
from botocore.exceptions import ClientError

_CONDITION_FAILED = "ConditionalCheckFailedException"

_instance: "DynamoDBService | None" = None


def get_dynamodb_service(name_prefix: str | None = None) -> "DynamoDBService":
    """Process-wide DynamoDBService. The prefix only applies on first use."""
    global _instance
    if _instance is None:
        _instance = DynamoDBService(name_prefix)
    return _instance


def reset_dynamodb_service() -> None:
    """Drop the shared instance so the next call builds a fresh boto3 resource."""
    global _instance
    _instance = None


def default_table_prefix() -> str:
    return os.getenv("DYNAMODB_TABLE_PREFIX") or f"partsdesk-{os.getenv('ENVIRONMENT', 'dev')}"


class DynamoDBService:
    """Item-level reads and conditional writes over prefixed tables."""

    def __init__(self, name_prefix: str | None = None) -> None:
        self.name_prefix = name_prefix or default_table_prefix()
        self._resource = boto3.resource("dynamodb")
        self._tables: dict[str, Any] = {}

    def table_name(self, table: str) -> str:
        return f"{self.name_prefix}-{table}"

    def _table(self, table: str) -> Any:
        if table not in self._tables:
            self._tables[table] = self._resource.Table(self.table_name(table))
        return self._tables[table]

    @staticmethod
    def _conditional(write: Callable[..., Any], **kwargs: Any) -> bool:
        try:
            write(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == _CONDITION_FAILED:
                return False
            raise
        return True

    def get_item(self, table: str, key: dict[str, Any]) -> dict[str, Any] | None:
        """Strongly consistent read of one item, None when absent."""
        response = self._table(table).get_item(Key=key, ConsistentRead=True)
        item: dict[str, Any] | None = response.get("Item")
        return item

    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        *,
        condition_expression: str | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> bool:
        """Write a whole item.

        Args:
            table: Table name without prefix
            item: Item attributes (numbers as Decimal)
            condition_expression: Write only when this holds
            expression_attribute_values: Placeholders used by the condition

        Returns:
            False when the condition failed, True otherwise
        """
        kwargs: dict[str, Any] = {"Item": item}
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        if expression_attribute_values:
            kwargs["ExpressionAttributeValues"] = expression_attribute_values
        return self._conditional(self._table(table).put_item, **kwargs)

    def delete_item(
        self,
        table: str,
        key: dict[str, Any],
        *,
        condition_expression: str | None = None,
    ) -> bool:
        """Delete one item; False when the condition failed."""
        kwargs: dict[str, Any] = {"Key": key}
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        return self._conditional(self._table(table).delete_item, **kwargs)

    def scan_all(self, table: str) -> list[dict[str, Any]]:
        """Every item in the table, following LastEvaluatedKey."""
        dynamo_table = self._table(table)
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {}
        while True:
            page = dynamo_table.scan(**kwargs)
            items.extend(page.get("Items", []))
            if "LastEvaluatedKey" not in page:
                return items
            kwargs["ExclusiveStartKey"] = page["LastEvaluatedKey"]
