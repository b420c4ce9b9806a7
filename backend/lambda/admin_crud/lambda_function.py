"""admin_crud/lambda_function.py

Consolidated admin CRUD endpoint over every registered entity type.

Route (via API Gateway proxy):
    POST    /api/admin/crud
    OPTIONS /api/admin/crud  (CORS preflight)

Request body:
    {"table": "<entity type>", "action": "create|read|update|delete",
     "id": <id>, "data": {...}, "filters": {...}}

Auth:
    Admin bearer token (HS256, audience raptor-admin) in the Authorization header.

Environment variables:
    JWT_SECRET        token signing secret
    DYNAMODB_REGION   default: us-west-2
    TABLE_PREFIX      default: raptor-
    <ENTITY>_TABLE    optional per-entity table name override
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from raptor_shared.auth import ROLE_ADMIN, _authenticate
from raptor_shared.crud import CrudDispatcher
from raptor_shared.errors import PortalError
from raptor_shared.http_utils import (
    _error,
    _error_from_exc,
    _json_body,
    _path_method,
    _preflight,
    _response,
)
from raptor_shared.record_store import RecordStore
from raptor_shared.schema_registry import build_registry

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# ---------------------------------------------------------------------------
# Dispatcher (module-level for container reuse)
# ---------------------------------------------------------------------------

_dispatcher: Optional[CrudDispatcher] = None


def _get_dispatcher() -> CrudDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = CrudDispatcher(build_registry(), RecordStore())
    return _dispatcher


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

def lambda_handler(event: Dict, context: Any) -> Dict:
    method, _path = _path_method(event)

    if method == "OPTIONS":
        return _preflight()
    if method != "POST":
        return _error(405, "Method not allowed. Use POST with action in body.")

    principal, auth_err = _authenticate(event, ROLE_ADMIN)
    if auth_err:
        return auth_err

    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc))

    action = body.get("action")
    try:
        result = _get_dispatcher().execute(
            principal,
            body.get("table"),
            action,
            id=body.get("id"),
            data=body.get("data"),
            filters=body.get("filters"),
        )
    except PortalError as exc:
        logger.warning("[CRUD] %s/%s rejected: %s", body.get("table"), action, exc.message)
        return _error_from_exc(exc)
    except Exception as exc:
        logger.exception("[CRUD] %s/%s failed", body.get("table"), action)
        return _error(500, str(exc) or "Internal server error")

    if action == "delete":
        return _response(200, {"success": True})
    return _response(201 if action == "create" else 200, {"success": True, "data": result})
