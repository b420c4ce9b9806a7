"""raptor_shared.temp_log — Driver temperature-log sessions and entries.

Ownership is re-derived on every call from the session row; entries carry no
owner of their own. Reads happen up front so validation and ownership
failures are reported before any write, and each write repeats the same
owner/in-progress guard atomically (see temp_log_store) so a session that
completes between the check and the write cannot be modified.
"""
from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

from raptor_shared.config import TEMP_LOG_MAX_HISTORY_WINDOW_DAYS
from raptor_shared.errors import Forbidden, InvalidState, ValidationError
from raptor_shared.record_store import ConditionFailed
from raptor_shared.serialization import _now_iso, _today
from raptor_shared.temp_log_state import (
    EntryType,
    SessionStatus,
    require_open,
    status_of,
    transition,
)
from raptor_shared.temp_log_store import TempLogStore
from raptor_shared.validation import is_non_empty_string, parse_positive_int

__all__ = ["TempLogEngine", "UPDATABLE_ENTRY_FIELDS"]

logger = logging.getLogger(__name__)

UPDATABLE_ENTRY_FIELDS = ("temperature", "photo_url", "notes", "location_name")

_PICKUP_STOP_NUMBER = 0


def _parse_temperature(raw: Any) -> float:
    if raw is None or isinstance(raw, bool):
        raise ValidationError("temperature must be a number", field="temperature")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("temperature must be a number", field="temperature")
    if value != value or value in (float("inf"), float("-inf")):
        raise ValidationError("temperature must be a number", field="temperature")
    return value


def _optional_text(value: Any) -> Optional[str]:
    return value if is_non_empty_string(value) else None


class TempLogEngine:
    def __init__(
        self,
        store: TempLogStore,
        single_active_session: bool = False,
        history_window_days: int = 30,
    ) -> None:
        self.store = store
        self.single_active_session = single_active_session
        self.history_window_days = history_window_days

    # -- sessions ------------------------------------------------------------

    def get_active_session(self, driver_id: str) -> Optional[Dict[str, Any]]:
        """Newest in-progress session of the driver with its entries, or None."""
        sessions = self.store.list_sessions(driver_id, status=SessionStatus.IN_PROGRESS.value)
        if not sessions:
            return None
        session = max(sessions, key=lambda s: str(s.get("created_at") or ""))
        entries = sorted(
            self.store.list_entries(session["id"]),
            key=lambda e: str(e.get("timestamp") or ""),
        )
        return {**session, "entries": entries}

    def create_session(
        self,
        driver_id: str,
        vehicle_id: Any = None,
        notes: Any = None,
    ) -> Dict[str, Any]:
        if self.single_active_session and self.store.list_sessions(
            driver_id, status=SessionStatus.IN_PROGRESS.value,
        ):
            raise InvalidState("Driver already has a session in progress")

        now = _now_iso()
        session = {
            "id": str(uuid.uuid4()),
            "driver_id": str(driver_id),
            "vehicle_id": _optional_text(vehicle_id),
            "notes": _optional_text(notes),
            "status": SessionStatus.IN_PROGRESS.value,
            "session_date": _today().isoformat(),
            "last_stop_number": 0,
            "created_at": now,
            "updated_at": now,
        }
        self.store.create_session(session)
        logger.info("[TEMP-LOG] Session created: %s by driver %s", session["id"], driver_id)
        return session

    def complete_session(self, session_id: Any, driver_id: str) -> Dict[str, Any]:
        if not is_non_empty_string(session_id):
            raise ValidationError("Session ID required")
        forbidden = "Not authorized to modify this session"
        session = self._owned_session(session_id, driver_id, forbidden)
        transition(status_of(session), SessionStatus.COMPLETED)

        try:
            completed = self.store.complete_session(session_id, str(driver_id), _now_iso())
        except ConditionFailed:
            self._recheck(session_id, driver_id, forbidden, "Session is already completed")
            raise InvalidState("Session is already completed")
        logger.info("[TEMP-LOG] Session completed: %s", session_id)
        return completed

    def get_session_history(
        self,
        driver_id: str,
        window_days: Any = None,
    ) -> List[Dict[str, Any]]:
        """Sessions dated within the trailing window, newest first, with entry counts."""
        days = self.history_window_days
        if window_days not in (None, ""):
            days = parse_positive_int(window_days)
            if days is None:
                raise ValidationError("windowDays must be a positive integer", field="windowDays")
            if days > TEMP_LOG_MAX_HISTORY_WINDOW_DAYS:
                raise ValidationError(
                    f"windowDays must be at most {TEMP_LOG_MAX_HISTORY_WINDOW_DAYS}",
                    field="windowDays",
                )
        since = (_today() - dt.timedelta(days=days)).isoformat()

        sessions = self.store.list_sessions(driver_id, since_date=since)
        sessions.sort(key=lambda s: str(s.get("created_at") or ""), reverse=True)
        return [
            {**session, "entry_count": self.store.count_entries(session["id"])}
            for session in sessions
        ]

    # -- entries -------------------------------------------------------------

    def add_entry(
        self,
        session_id: Any,
        driver_id: str,
        entry_type: Any,
        temperature: Any,
        location_name: Any = None,
        photo_url: Any = None,
        notes: Any = None,
        stop_number: Any = None,
    ) -> Dict[str, Any]:
        if not is_non_empty_string(session_id) or not entry_type or temperature is None:
            raise ValidationError("sessionId, entryType, and temperature are required")
        try:
            kind = EntryType(entry_type)
        except ValueError:
            raise ValidationError("entryType must be pickup or delivery", field="entryType")
        reading = _parse_temperature(temperature)

        requested_stop = None
        if isinstance(stop_number, str):
            stop_number = stop_number.strip()
        # 0, "0" and blank mean "next stop".
        if kind is EntryType.DELIVERY and stop_number not in (None, "", 0, "0"):
            requested_stop = parse_positive_int(stop_number)
            if requested_stop is None:
                raise ValidationError("stopNumber must be a positive integer", field="stopNumber")

        forbidden = "Not authorized to add entries to this session"
        closed = "Cannot add entries to a completed session"
        session = self._owned_session(session_id, driver_id, forbidden)
        require_open(session, closed)

        if kind is EntryType.PICKUP:
            stop = _PICKUP_STOP_NUMBER
        elif requested_stop is not None:
            stop = requested_stop
            try:
                self.store.raise_stop_floor(session_id, str(driver_id), stop)
            except ConditionFailed:
                # Counter already at or past this stop, unless the guard failed.
                self._recheck(session_id, driver_id, forbidden, closed)
        else:
            try:
                stop = self.store.next_stop_number(session_id, str(driver_id))
            except ConditionFailed:
                self._recheck(session_id, driver_id, forbidden, closed)
                raise InvalidState(closed)

        now = _now_iso()
        entry = {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "entry_type": kind.value,
            "stop_number": stop,
            "location_name": _optional_text(location_name),
            "temperature": reading,
            "photo_url": _optional_text(photo_url),
            "notes": _optional_text(notes),
            "timestamp": now,
            "created_at": now,
        }
        try:
            self.store.put_entry(entry, str(driver_id))
        except ConditionFailed:
            self._recheck(session_id, driver_id, forbidden, closed)
            raise InvalidState(closed)
        logger.info(
            "[TEMP-LOG] Entry added: %s at %s°F for session %s (stop %d)",
            kind.value, reading, session_id, stop,
        )
        return entry

    def update_entry(
        self,
        entry_id: Any,
        driver_id: str,
        fields: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Apply only the supplied updatable fields (snake_case keys)."""
        if not is_non_empty_string(entry_id):
            raise ValidationError("entryId required")
        updates = {k: fields[k] for k in UPDATABLE_ENTRY_FIELDS if k in fields}
        if not updates:
            raise ValidationError(
                "At least one of temperature, photoUrl, notes, locationName is required",
            )
        if "temperature" in updates:
            updates["temperature"] = _parse_temperature(updates["temperature"])

        forbidden = "Not authorized to modify this entry"
        closed = "Cannot modify entries in a completed session"
        entry, session = self._owned_entry(entry_id, driver_id, forbidden)
        require_open(session, closed)

        try:
            updated = self.store.update_entry(entry_id, session["id"], str(driver_id), updates)
        except ConditionFailed:
            self._recheck(session["id"], driver_id, forbidden, closed)
            raise Forbidden(forbidden)
        logger.info("[TEMP-LOG] Entry updated: %s (%s)", entry_id, ", ".join(sorted(updates)))
        return updated

    def delete_entry(self, entry_id: Any, driver_id: str) -> None:
        if not is_non_empty_string(entry_id):
            raise ValidationError("entryId required")
        forbidden = "Not authorized to delete this entry"
        closed = "Cannot delete entries from a completed session"
        entry, session = self._owned_entry(entry_id, driver_id, forbidden)
        require_open(session, closed)

        try:
            self.store.delete_entry(entry_id, session["id"], str(driver_id))
        except ConditionFailed:
            self._recheck(session["id"], driver_id, forbidden, closed)
            raise Forbidden(forbidden)
        logger.info("[TEMP-LOG] Entry deleted: %s", entry_id)

    # -- ownership -----------------------------------------------------------

    def _owned_session(self, session_id: str, driver_id: str, message: str) -> Dict[str, Any]:
        session = self.store.get_session(session_id)
        if session is None or str(session.get("driver_id")) != str(driver_id):
            logger.warning("[TEMP-LOG] driver %s denied on session %s", driver_id, session_id)
            raise Forbidden(message)
        return session

    def _owned_entry(self, entry_id: str, driver_id: str, message: str):
        entry = self.store.get_entry(entry_id)
        if entry is None or not entry.get("session_id"):
            raise Forbidden(message)
        return entry, self._owned_session(entry["session_id"], driver_id, message)

    def _recheck(self, session_id: str, driver_id: str, forbidden: str, closed: str) -> None:
        """Classify a failed write guard; returns only if the session is still owned and open."""
        session = self._owned_session(session_id, driver_id, forbidden)
        require_open(session, closed)
