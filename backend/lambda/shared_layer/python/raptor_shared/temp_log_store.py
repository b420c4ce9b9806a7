"""raptor_shared.temp_log_store — DynamoDB persistence for temp-log sessions and entries.

Every mutation is guarded in the same request that performs it:

* stop-number allocation and session completion are conditional updates on
  the session row (``driver_id = caller AND status = in_progress``);
* entry insert/update/delete are transactions that pair the entry write with
  a ConditionCheck of that same guard on the parent session.

A failed guard raises ConditionFailed; the engine decides what it means.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from raptor_shared.config import (
    TEMP_LOG_ENTRIES_TABLE,
    TEMP_LOG_ENTRY_SESSION_GSI,
    TEMP_LOG_SESSION_DRIVER_GSI,
    TEMP_LOG_SESSIONS_TABLE,
)
from raptor_shared.record_store import ConditionFailed, RecordStore
from raptor_shared.serialization import _deserialize, _deserialize_value, _serialize
from raptor_shared.temp_log_state import SessionStatus

__all__ = ["TempLogStore"]


_SESSION_GUARD = "driver_id = :driver AND #status = :open"


def _guard_values(driver_id: str) -> Dict[str, Any]:
    return {
        ":driver": _serialize(str(driver_id)),
        ":open": _serialize(SessionStatus.IN_PROGRESS.value),
    }


class TempLogStore:
    def __init__(
        self,
        records: Optional[RecordStore] = None,
        sessions_table: str = TEMP_LOG_SESSIONS_TABLE,
        entries_table: str = TEMP_LOG_ENTRIES_TABLE,
    ) -> None:
        self.records = records or RecordStore()
        self.sessions_table = sessions_table
        self.entries_table = entries_table

    def _session_check(self, session_id: str, driver_id: str) -> Dict[str, Any]:
        return {
            "ConditionCheck": {
                "TableName": self.sessions_table,
                "Key": {"id": _serialize(session_id)},
                "ConditionExpression": _SESSION_GUARD,
                "ExpressionAttributeNames": {"#status": "status"},
                "ExpressionAttributeValues": _guard_values(driver_id),
            }
        }

    # -- reads ---------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.records.get(self.sessions_table, {"id": session_id})

    def get_entry(self, entry_id: str) -> Optional[Dict[str, Any]]:
        return self.records.get(self.entries_table, {"id": entry_id})

    def list_sessions(
        self,
        driver_id: str,
        *,
        status: Optional[str] = None,
        since_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Driver's sessions, newest-created first."""
        return self.records.query(
            self.sessions_table,
            TEMP_LOG_SESSION_DRIVER_GSI,
            "driver_id",
            str(driver_id),
            filters={"status": status} if status else None,
            floor=("session_date", since_date) if since_date else None,
            newest_first=True,
        )

    def list_entries(self, session_id: str) -> List[Dict[str, Any]]:
        return self.records.query(
            self.entries_table, TEMP_LOG_ENTRY_SESSION_GSI, "session_id", session_id,
        )

    def count_entries(self, session_id: str) -> int:
        return self.records.count(
            self.entries_table, TEMP_LOG_ENTRY_SESSION_GSI, "session_id", session_id,
        )

    # -- session writes ------------------------------------------------------

    def create_session(self, session: Dict[str, Any]) -> Dict[str, Any]:
        return self.records.put_new(self.sessions_table, session)

    def complete_session(self, session_id: str, driver_id: str, completed_at: str) -> Dict[str, Any]:
        resp = self.records._call(
            "update_item",
            TableName=self.sessions_table,
            Key={"id": _serialize(session_id)},
            UpdateExpression="SET #status = :done, completed_at = :now, updated_at = :now",
            ConditionExpression=_SESSION_GUARD,
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={
                **_guard_values(driver_id),
                ":done": _serialize(SessionStatus.COMPLETED.value),
                ":now": _serialize(completed_at),
            },
            ReturnValues="ALL_NEW",
        )
        return _deserialize(resp.get("Attributes") or {})

    def next_stop_number(self, session_id: str, driver_id: str) -> int:
        """Atomically allocate the session's next delivery stop number."""
        resp = self.records._call(
            "update_item",
            TableName=self.sessions_table,
            Key={"id": _serialize(session_id)},
            UpdateExpression="SET last_stop_number = if_not_exists(last_stop_number, :zero) + :one",
            ConditionExpression=_SESSION_GUARD,
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={
                **_guard_values(driver_id),
                ":zero": _serialize(0),
                ":one": _serialize(1),
            },
            ReturnValues="UPDATED_NEW",
        )
        attrs = resp.get("Attributes") or {}
        return int(_deserialize_value(attrs["last_stop_number"]))

    def raise_stop_floor(self, session_id: str, driver_id: str, stop_number: int) -> None:
        """Lift the session's stop counter to ``stop_number`` if it is below it.

        Raises ConditionFailed both when the guard fails and when the counter
        is already at or above ``stop_number``.
        """
        self.records._call(
            "update_item",
            TableName=self.sessions_table,
            Key={"id": _serialize(session_id)},
            UpdateExpression="SET last_stop_number = :n",
            ConditionExpression=(
                f"{_SESSION_GUARD} AND "
                "(attribute_not_exists(last_stop_number) OR last_stop_number < :n)"
            ),
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={**_guard_values(driver_id), ":n": _serialize(stop_number)},
        )

    # -- entry writes --------------------------------------------------------

    def put_entry(self, entry: Dict[str, Any], driver_id: str) -> Dict[str, Any]:
        self.records.transact([
            self._session_check(entry["session_id"], driver_id),
            {
                "Put": {
                    "TableName": self.entries_table,
                    "Item": {k: _serialize(v) for k, v in entry.items()},
                    "ConditionExpression": "attribute_not_exists(id)",
                }
            },
        ])
        return dict(entry)

    def update_entry(
        self,
        entry_id: str,
        session_id: str,
        driver_id: str,
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        names: Dict[str, str] = {}
        values: Dict[str, Any] = {":sid": _serialize(session_id)}
        sets: List[str] = []
        for i, (attr, value) in enumerate(fields.items()):
            names[f"#u{i}"] = attr
            values[f":u{i}"] = _serialize(value)
            sets.append(f"#u{i} = :u{i}")
        self.records.transact([
            self._session_check(session_id, driver_id),
            {
                "Update": {
                    "TableName": self.entries_table,
                    "Key": {"id": _serialize(entry_id)},
                    "UpdateExpression": "SET " + ", ".join(sets),
                    "ConditionExpression": "attribute_exists(id) AND session_id = :sid",
                    "ExpressionAttributeNames": names,
                    "ExpressionAttributeValues": values,
                }
            },
        ])
        updated = self.get_entry(entry_id)
        if updated is None:
            raise ConditionFailed("entry disappeared after update")
        return updated

    def delete_entry(self, entry_id: str, session_id: str, driver_id: str) -> None:
        self.records.transact([
            self._session_check(session_id, driver_id),
            {
                "Delete": {
                    "TableName": self.entries_table,
                    "Key": {"id": _serialize(entry_id)},
                    "ConditionExpression": "attribute_exists(id) AND session_id = :sid",
                    "ExpressionAttributeValues": {":sid": _serialize(session_id)},
                }
            },
        ])
