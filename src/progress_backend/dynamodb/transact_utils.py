"""
Helpers for building TransactWriteItems entries for the resource-level client.

Guarded one-time awards are sent through ``table.meta.client.transact_write_items``. That client
comes from a DynamoDB service resource, so it marshals plain Python values itself; keys, items
and expression values are passed through unserialized. The guard (a conditional write on the
entity that records the award) always comes first, the XP credit second.
"""

import logging
import typing

from botocore.exceptions import ClientError

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

TransactItem = dict[str, typing.Any]


def build_update_item(
    table_name: str,
    key: dict[str, typing.Any],
    update_expression: str,
    condition_expression: typing.Optional[str] = None,
    attribute_names: typing.Optional[dict[str, str]] = None,
    attribute_values: typing.Optional[dict[str, typing.Any]] = None,
) -> TransactItem:
    update: dict[str, typing.Any] = {
        "TableName": table_name,
        "Key": dict(key),
        "UpdateExpression": update_expression,
    }
    if condition_expression:
        update["ConditionExpression"] = condition_expression
    if attribute_names:
        update["ExpressionAttributeNames"] = attribute_names
    if attribute_values:
        update["ExpressionAttributeValues"] = dict(attribute_values)
    return {"Update": update}


def build_put_item(
    table_name: str,
    item: dict[str, typing.Any],
    condition_expression: typing.Optional[str] = None,
    attribute_names: typing.Optional[dict[str, str]] = None,
) -> TransactItem:
    put: dict[str, typing.Any] = {
        "TableName": table_name,
        "Item": dict(item),
    }
    if condition_expression:
        put["ConditionExpression"] = condition_expression
    if attribute_names:
        put["ExpressionAttributeNames"] = attribute_names
    return {"Put": put}


def get_cancellation_codes(error: ClientError) -> list[str]:
    """
    Per-item cancellation codes of a TransactionCanceledException, in TransactItems order.
    Returns an empty list when the service did not report reasons.
    """
    reasons = error.response.get("CancellationReasons") or []
    return [str(reason.get("Code", "None")) for reason in reasons]


def is_transaction_cancelled(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "TransactionCanceledException"
