"""raptor_shared.record_store — DynamoDB record store used by the CRUD dispatcher and temp-log engine.

Every method is a single DynamoDB round trip (plus pagination) and every
write is conditional. Failures are translated at this boundary:

    ConditionalCheckFailedException / cancelled transaction  -> ConditionFailed
    NoCredentialsError / NoRegionError                        -> ServiceUnavailable
    any other ClientError / BotoCoreError                     -> StorageError (verbatim)
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, NoRegionError

from raptor_shared.aws_clients import _get_ddb
from raptor_shared.config import COUNTERS_TABLE
from raptor_shared.errors import ServiceUnavailable, StorageError
from raptor_shared.serialization import _deserialize, _deserialize_value, _now_iso, _serialize

__all__ = [
    "ConditionFailed",
    "RecordStore",
    "_is_conditional_check_failed",
    "_translate_store_error",
]

logger = logging.getLogger(__name__)


class ConditionFailed(Exception):
    """A conditional write's guard did not hold; callers decide what that means."""


def _is_conditional_check_failed(exc: Exception) -> bool:
    if not isinstance(exc, ClientError):
        return False
    error = exc.response.get("Error", {})
    if error.get("Code") == "ConditionalCheckFailedException":
        return True
    if error.get("Code") == "TransactionCanceledException":
        reasons = exc.response.get("CancellationReasons") or []
        return any((r or {}).get("Code") == "ConditionalCheckFailed" for r in reasons)
    return False


def _translate_store_error(exc: Exception, operation: str) -> Exception:
    if isinstance(exc, (NoCredentialsError, NoRegionError)):
        logger.error("%s failed: store not configured: %s", operation, exc)
        return ServiceUnavailable("Database service not configured")
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code") or "STORAGE_ERROR"
        message = error.get("Message") or str(exc)
        details = exc.response.get("CancellationReasons")
        logger.error("%s failed: code=%s message=%s", operation, code, message)
        return StorageError(message, store_code=code, details=details)
    logger.error("%s failed: %s", operation, exc)
    return StorageError(str(exc), store_code="STORAGE_ERROR")


def _expression_parts(
    fields: Dict[str, Any],
    name_prefix: str,
    value_prefix: str,
) -> Tuple[List[Tuple[str, str]], Dict[str, str], Dict[str, Any]]:
    """Placeholders for a field map: [(#name, :value)], names, values."""
    pairs: List[Tuple[str, str]] = []
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    for i, (attr, value) in enumerate(fields.items()):
        n, v = f"#{name_prefix}{i}", f":{value_prefix}{i}"
        names[n] = attr
        values[v] = _serialize(value)
        pairs.append((n, v))
    return pairs, names, values


class RecordStore:
    """Thin typed wrapper over the low-level DynamoDB client."""

    def __init__(self, ddb: Any = None, counters_table: str = COUNTERS_TABLE) -> None:
        self._ddb = ddb
        self.counters_table = counters_table

    @property
    def ddb(self) -> Any:
        if self._ddb is None:
            self._ddb = _get_ddb()
        return self._ddb

    def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            return getattr(self.ddb, operation)(**kwargs)
        except ClientError as exc:
            if _is_conditional_check_failed(exc):
                raise ConditionFailed(operation) from exc
            raise _translate_store_error(exc, operation) from exc
        except BotoCoreError as exc:
            raise _translate_store_error(exc, operation) from exc

    def _paginate(self, operation: str, kwargs: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
        while True:
            resp = self._call(operation, **kwargs)
            yield resp
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    # -- reads ---------------------------------------------------------------

    def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """GetItem with ConsistentRead. Returns the deserialized item or None."""
        resp = self._call(
            "get_item",
            TableName=table,
            Key={k: _serialize(v) for k, v in key.items()},
            ConsistentRead=True,
        )
        item = resp.get("Item")
        return _deserialize(item) if item else None

    def scan(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Scan with optional attribute equality filters."""
        kwargs: Dict[str, Any] = {"TableName": table}
        if filters:
            pairs, names, values = _expression_parts(filters, "f", "f")
            kwargs["FilterExpression"] = " AND ".join(f"{n} = {v}" for n, v in pairs)
            kwargs["ExpressionAttributeNames"] = names
            kwargs["ExpressionAttributeValues"] = values
        items: List[Dict[str, Any]] = []
        for resp in self._paginate("scan", kwargs):
            items.extend(_deserialize(raw) for raw in resp.get("Items", []))
        return items

    def query(
        self,
        table: str,
        index: str,
        key_attr: str,
        key_value: Any,
        *,
        filters: Optional[Dict[str, Any]] = None,
        floor: Optional[Tuple[str, Any]] = None,
        newest_first: bool = False,
    ) -> List[Dict[str, Any]]:
        """Query a GSI by hash key, with equality filters and an optional ``attr >= value`` floor."""
        kwargs = self._query_kwargs(table, index, key_attr, key_value, filters, floor)
        kwargs["ScanIndexForward"] = not newest_first
        items: List[Dict[str, Any]] = []
        for resp in self._paginate("query", kwargs):
            items.extend(_deserialize(raw) for raw in resp.get("Items", []))
        return items

    def count(self, table: str, index: str, key_attr: str, key_value: Any) -> int:
        kwargs = self._query_kwargs(table, index, key_attr, key_value, None, None)
        kwargs["Select"] = "COUNT"
        return sum(int(resp.get("Count", 0)) for resp in self._paginate("query", kwargs))

    @staticmethod
    def _query_kwargs(
        table: str,
        index: str,
        key_attr: str,
        key_value: Any,
        filters: Optional[Dict[str, Any]],
        floor: Optional[Tuple[str, Any]],
    ) -> Dict[str, Any]:
        names = {"#k": key_attr}
        values = {":k": _serialize(key_value)}
        clauses: List[str] = []
        if filters:
            pairs, f_names, f_values = _expression_parts(filters, "f", "f")
            names.update(f_names)
            values.update(f_values)
            clauses.extend(f"{n} = {v}" for n, v in pairs)
        if floor:
            names["#floor"] = floor[0]
            values[":floor"] = _serialize(floor[1])
            clauses.append("#floor >= :floor")
        kwargs: Dict[str, Any] = {
            "TableName": table,
            "IndexName": index,
            "KeyConditionExpression": "#k = :k",
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }
        if clauses:
            kwargs["FilterExpression"] = " AND ".join(clauses)
        return kwargs

    # -- writes --------------------------------------------------------------

    def put_new(self, table: str, item: Dict[str, Any], key_attr: str = "id") -> Dict[str, Any]:
        """Insert ``item``; raises ConditionFailed if the key already exists."""
        self._call(
            "put_item",
            TableName=table,
            Item={k: _serialize(v) for k, v in item.items()},
            ConditionExpression="attribute_not_exists(#pk)",
            ExpressionAttributeNames={"#pk": key_attr},
        )
        return dict(item)

    def update(
        self,
        table: str,
        key: Dict[str, Any],
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        """SET ``fields`` on an existing row and return it (ALL_NEW).

        Raises ConditionFailed when no row has ``key``.
        """
        if not fields:
            raise ValueError("update requires at least one field")
        pairs, names, values = _expression_parts(fields, "u", "u")
        key_attr = next(iter(key))
        names["#pk"] = key_attr
        resp = self._call(
            "update_item",
            TableName=table,
            Key={k: _serialize(v) for k, v in key.items()},
            UpdateExpression="SET " + ", ".join(f"{n} = {v}" for n, v in pairs),
            ConditionExpression="attribute_exists(#pk)",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
        return _deserialize(resp.get("Attributes") or {})

    def delete(self, table: str, key: Dict[str, Any]) -> None:
        """Physically delete a row; raises ConditionFailed when it does not exist."""
        key_attr = next(iter(key))
        self._call(
            "delete_item",
            TableName=table,
            Key={k: _serialize(v) for k, v in key.items()},
            ConditionExpression="attribute_exists(#pk)",
            ExpressionAttributeNames={"#pk": key_attr},
        )

    def transact(self, items: List[Dict[str, Any]]) -> None:
        """TransactWriteItems; raises ConditionFailed when any guard fails."""
        self._call("transact_write_items", TransactItems=items)

    # -- integer id sequences ------------------------------------------------

    def max_numeric(self, table: str, attr: str = "id") -> int:
        """Scan for the highest numeric ``attr`` (seeds a missing counter)."""
        kwargs: Dict[str, Any] = {
            "TableName": table,
            "ProjectionExpression": "#a",
            "ExpressionAttributeNames": {"#a": attr},
        }
        max_num = 0
        for resp in self._paginate("scan", kwargs):
            for raw in resp.get("Items", []):
                value = raw.get(attr)
                if value and "N" in value:
                    max_num = max(max_num, int(_deserialize_value(value)))
        return max_num

    def next_sequence(self, counter_name: str, seed: Callable[[], int]) -> int:
        """Allocate the next value of a named atomic counter.

        ``seed`` is consulted only when the counter row does not exist yet.
        """
        key = {"counter_name": _serialize(counter_name)}
        existing = self._call(
            "get_item", TableName=self.counters_table, Key=key, ConsistentRead=True,
        ).get("Item")
        seed_num = 0 if existing else int(seed())

        resp = self._call(
            "update_item",
            TableName=self.counters_table,
            Key=key,
            UpdateExpression=(
                "SET next_num = if_not_exists(next_num, :seed) + :one, "
                "updated_at = :now"
            ),
            ExpressionAttributeValues={
                ":seed": _serialize(seed_num),
                ":one": _serialize(1),
                ":now": _serialize(_now_iso()),
            },
            ReturnValues="UPDATED_NEW",
        )
        attrs = resp.get("Attributes") or {}
        if "next_num" not in attrs:
            return seed_num + 1
        return int(_deserialize_value(attrs["next_num"]))
