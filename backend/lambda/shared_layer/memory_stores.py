"""memory_stores.py — In-memory stand-ins for RecordStore and TempLogStore.

Used by the layer and handler tests. They keep the conditional-write
semantics of the DynamoDB implementations: a failed guard raises
ConditionFailed exactly where the real store would.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Optional, Tuple

from raptor_shared.record_store import ConditionFailed


class InMemoryRecordStore:
    def __init__(self) -> None:
        self.tables: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self.counters: Dict[str, int] = {}

    def _table(self, table: str) -> Dict[Any, Dict[str, Any]]:
        return self.tables.setdefault(table, {})

    def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        row = self._table(table).get(next(iter(key.values())))
        return copy.deepcopy(row) if row is not None else None

    def scan(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(row)
            for row in self._table(table).values()
            if all(row.get(k) == v for k, v in (filters or {}).items())
        ]

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
        rows = [r for r in self.scan(table, filters) if r.get(key_attr) == key_value]
        if floor:
            rows = [r for r in rows if r.get(floor[0]) is not None and r[floor[0]] >= floor[1]]
        return rows[::-1] if newest_first else rows

    def count(self, table: str, index: str, key_attr: str, key_value: Any) -> int:
        return len(self.query(table, index, key_attr, key_value))

    def put_new(self, table: str, item: Dict[str, Any], key_attr: str = "id") -> Dict[str, Any]:
        rows = self._table(table)
        if item[key_attr] in rows:
            raise ConditionFailed("put_item")
        rows[item[key_attr]] = copy.deepcopy(item)
        return dict(item)

    def update(self, table: str, key: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
        if not fields:
            raise ValueError("update requires at least one field")
        row = self._table(table).get(next(iter(key.values())))
        if row is None:
            raise ConditionFailed("update_item")
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    def delete(self, table: str, key: Dict[str, Any]) -> None:
        rows = self._table(table)
        record_id = next(iter(key.values()))
        if record_id not in rows:
            raise ConditionFailed("delete_item")
        del rows[record_id]

    def max_numeric(self, table: str, attr: str = "id") -> int:
        nums = [r[attr] for r in self._table(table).values() if isinstance(r.get(attr), int)]
        return max(nums, default=0)

    def next_sequence(self, counter_name: str, seed: Callable[[], int]) -> int:
        if counter_name not in self.counters:
            self.counters[counter_name] = int(seed())
        self.counters[counter_name] += 1
        return self.counters[counter_name]


class InMemoryTempLogStore:
    def __init__(self) -> None:
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.entries: Dict[str, Dict[str, Any]] = {}

    def _guard(self, session_id: str, driver_id: str) -> Dict[str, Any]:
        session = self.sessions.get(session_id)
        if (
            session is None
            or session.get("driver_id") != str(driver_id)
            or session.get("status") != "in_progress"
        ):
            raise ConditionFailed("session guard")
        return session

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.sessions.get(session_id)
        return copy.deepcopy(session) if session is not None else None

    def get_entry(self, entry_id: str) -> Optional[Dict[str, Any]]:
        entry = self.entries.get(entry_id)
        return copy.deepcopy(entry) if entry is not None else None

    def list_sessions(
        self,
        driver_id: str,
        *,
        status: Optional[str] = None,
        since_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        rows = [
            copy.deepcopy(s)
            for s in self.sessions.values()
            if s.get("driver_id") == str(driver_id)
            and (status is None or s.get("status") == status)
            and (since_date is None or s.get("session_date", "") >= since_date)
        ]
        rows.sort(key=lambda s: s.get("created_at", ""), reverse=True)
        return rows

    def list_entries(self, session_id: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(e) for e in self.entries.values() if e.get("session_id") == session_id]

    def count_entries(self, session_id: str) -> int:
        return len(self.list_entries(session_id))

    def create_session(self, session: Dict[str, Any]) -> Dict[str, Any]:
        if session["id"] in self.sessions:
            raise ConditionFailed("put_item")
        self.sessions[session["id"]] = copy.deepcopy(session)
        return dict(session)

    def complete_session(self, session_id: str, driver_id: str, completed_at: str) -> Dict[str, Any]:
        session = self._guard(session_id, driver_id)
        session.update(status="completed", completed_at=completed_at, updated_at=completed_at)
        return copy.deepcopy(session)

    def next_stop_number(self, session_id: str, driver_id: str) -> int:
        session = self._guard(session_id, driver_id)
        session["last_stop_number"] = session.get("last_stop_number", 0) + 1
        return session["last_stop_number"]

    def raise_stop_floor(self, session_id: str, driver_id: str, stop_number: int) -> None:
        session = self._guard(session_id, driver_id)
        if session.get("last_stop_number", 0) >= stop_number:
            raise ConditionFailed("stop floor")
        session["last_stop_number"] = stop_number

    def put_entry(self, entry: Dict[str, Any], driver_id: str) -> Dict[str, Any]:
        self._guard(entry["session_id"], driver_id)
        if entry["id"] in self.entries:
            raise ConditionFailed("put entry")
        self.entries[entry["id"]] = copy.deepcopy(entry)
        return dict(entry)

    def _owned_entry(self, entry_id: str, session_id: str) -> Dict[str, Any]:
        entry = self.entries.get(entry_id)
        if entry is None or entry.get("session_id") != session_id:
            raise ConditionFailed("entry guard")
        return entry

    def update_entry(
        self,
        entry_id: str,
        session_id: str,
        driver_id: str,
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        self._guard(session_id, driver_id)
        entry = self._owned_entry(entry_id, session_id)
        entry.update(copy.deepcopy(fields))
        return copy.deepcopy(entry)

    def delete_entry(self, entry_id: str, session_id: str, driver_id: str) -> None:
        self._guard(session_id, driver_id)
        self._owned_entry(entry_id, session_id)
        del self.entries[entry_id]
