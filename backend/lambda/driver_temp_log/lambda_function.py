"""driver_temp_log/lambda_function.py

Driver temperature-log sessions and entries.

Route (via API Gateway proxy):
    POST    /api/driver/temp-log
    OPTIONS /api/driver/temp-log  (CORS preflight)

Request body:
    {"action": "<operation>", "data": {...}, "id": "<session id>"}

    getActiveSession   -> {session}    (null when none in progress)
    createSession      -> {session}    data: vehicleId?, notes?
    completeSession    -> {session}    id: session id
    getSessionHistory  -> {sessions}   data: windowDays?
    addEntry           -> {entry}      data: sessionId, entryType, temperature,
                                             locationName?, photoUrl?, notes?, stopNumber?
    updateEntry        -> {entry}      data: entryId, temperature?, photoUrl?,
                                             notes?, locationName?
    deleteEntry        -> {}           data: entryId

Auth:
    Driver bearer token (HS256, audience raptor-driver); the driver id always
    comes from the token, never from the body.

Environment variables:
    JWT_SECRET                      token signing secret
    TEMP_LOG_SESSIONS_TABLE         default: raptor-temp_log_sessions
    TEMP_LOG_ENTRIES_TABLE          default: raptor-temp_log_entries
    TEMP_LOG_SINGLE_ACTIVE_SESSION  default: false
    TEMP_LOG_HISTORY_WINDOW_DAYS    default: 30
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from raptor_shared.auth import ROLE_DRIVER, Principal, _authenticate
from raptor_shared.config import TEMP_LOG_HISTORY_WINDOW_DAYS, TEMP_LOG_SINGLE_ACTIVE_SESSION
from raptor_shared.errors import PortalError
from raptor_shared.http_utils import (
    _error,
    _error_from_exc,
    _json_body,
    _path_method,
    _preflight,
    _response,
)
from raptor_shared.serialization import _emit_structured_observability
from raptor_shared.temp_log import TempLogEngine
from raptor_shared.temp_log_store import TempLogStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# wire key -> engine field name
_ENTRY_UPDATE_KEYS = {
    "temperature": "temperature",
    "photoUrl": "photo_url",
    "notes": "notes",
    "locationName": "location_name",
}

# ---------------------------------------------------------------------------
# Engine (module-level for container reuse)
# ---------------------------------------------------------------------------

_engine: Optional[TempLogEngine] = None


def _get_engine() -> TempLogEngine:
    global _engine
    if _engine is None:
        _engine = TempLogEngine(
            TempLogStore(),
            single_active_session=TEMP_LOG_SINGLE_ACTIVE_SESSION,
            history_window_days=TEMP_LOG_HISTORY_WINDOW_DAYS,
        )
    return _engine


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------
# Each returns (status_code, payload).

def _get_active_session(engine: TempLogEngine, driver_id: str, data: Dict, record_id: Any) -> Tuple[int, Dict]:
    return 200, {"session": engine.get_active_session(driver_id)}


def _create_session(engine: TempLogEngine, driver_id: str, data: Dict, record_id: Any) -> Tuple[int, Dict]:
    session = engine.create_session(driver_id, data.get("vehicleId"), data.get("notes"))
    return 201, {"session": session}


def _complete_session(engine: TempLogEngine, driver_id: str, data: Dict, record_id: Any) -> Tuple[int, Dict]:
    return 200, {"session": engine.complete_session(record_id, driver_id)}


def _get_session_history(engine: TempLogEngine, driver_id: str, data: Dict, record_id: Any) -> Tuple[int, Dict]:
    return 200, {"sessions": engine.get_session_history(driver_id, data.get("windowDays"))}


def _add_entry(engine: TempLogEngine, driver_id: str, data: Dict, record_id: Any) -> Tuple[int, Dict]:
    entry = engine.add_entry(
        data.get("sessionId"),
        driver_id,
        data.get("entryType"),
        data.get("temperature"),
        location_name=data.get("locationName"),
        photo_url=data.get("photoUrl"),
        notes=data.get("notes"),
        stop_number=data.get("stopNumber"),
    )
    return 201, {"entry": entry}


def _update_entry(engine: TempLogEngine, driver_id: str, data: Dict, record_id: Any) -> Tuple[int, Dict]:
    fields = {field: data[key] for key, field in _ENTRY_UPDATE_KEYS.items() if key in data}
    return 200, {"entry": engine.update_entry(data.get("entryId"), driver_id, fields)}


def _delete_entry(engine: TempLogEngine, driver_id: str, data: Dict, record_id: Any) -> Tuple[int, Dict]:
    engine.delete_entry(data.get("entryId"), driver_id)
    return 200, {}


_ACTIONS: Dict[str, Callable[[TempLogEngine, str, Dict, Any], Tuple[int, Dict]]] = {
    "getActiveSession": _get_active_session,
    "createSession": _create_session,
    "completeSession": _complete_session,
    "getSessionHistory": _get_session_history,
    "addEntry": _add_entry,
    "updateEntry": _update_entry,
    "deleteEntry": _delete_entry,
}


def _dispatch(principal: Principal, body: Dict) -> Dict:
    action = body.get("action")
    handler = _ACTIONS.get(action) if isinstance(action, str) else None
    if handler is None:
        return _error(400, "Invalid action", validActions=list(_ACTIONS))

    data = body.get("data")
    if not isinstance(data, dict):
        data = {}

    started = time.monotonic()
    try:
        status, payload = handler(_get_engine(), principal.driver_id, data, body.get("id"))
    except PortalError as exc:
        logger.warning("[TEMP-LOG] %s rejected for %s: %s", action, principal.actor, exc.message)
        _emit_structured_observability(
            component="driver_temp_log",
            event=f"temp_log.{action}",
            actor=principal.actor,
            latency_ms=int((time.monotonic() - started) * 1000),
            error_code=exc.code,
        )
        return _error_from_exc(exc)

    _emit_structured_observability(
        component="driver_temp_log",
        event=f"temp_log.{action}",
        actor=principal.actor,
        latency_ms=int((time.monotonic() - started) * 1000),
    )
    return _response(status, {"success": True, **payload})


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

def lambda_handler(event: Dict, context: Any) -> Dict:
    method, _path = _path_method(event)

    if method == "OPTIONS":
        return _preflight()
    if method != "POST":
        return _error(405, "Method not allowed. Use POST with action in body.")

    principal, auth_err = _authenticate(event, ROLE_DRIVER)
    if auth_err:
        return auth_err

    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc))

    try:
        return _dispatch(principal, body)
    except Exception as exc:
        logger.exception("[TEMP-LOG] Error in %s", body.get("action"))
        return _error(500, str(exc) or "Internal server error")
