"""driver_auth/lambda_function.py

Driver access-token login; issues an 8 hour driver token.

Route (via API Gateway proxy):
    POST    /api/driver-auth
    OPTIONS /api/driver-auth  (CORS preflight)

Request body:
    {"accessToken": "<driver access token>"}

Throttling:
    RATE_LIMIT_DRIVER_MAX_ATTEMPTS (default 10) attempts per client IP per
    RATE_LIMIT_WINDOW_SECONDS (default 60), per warm container.

Environment variables:
    JWT_SECRET        token signing secret
    DRIVERS_TABLE     default: raptor-drivers (GSI access-token-index)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from raptor_shared.auth import create_driver_token
from raptor_shared.config import (
    DRIVERS_ACCESS_TOKEN_GSI,
    RATE_LIMIT_DRIVER_MAX_ATTEMPTS,
    RATE_LIMIT_WINDOW_SECONDS,
    entity_table,
)
from raptor_shared.errors import PortalError
from raptor_shared.http_utils import (
    _client_ip,
    _error,
    _error_from_exc,
    _json_body,
    _path_method,
    _preflight,
    _response,
)
from raptor_shared.rate_limit import RateLimiter
from raptor_shared.record_store import RecordStore
from raptor_shared.validation import sanitize_for_log

logger = logging.getLogger()
logger.setLevel(logging.INFO)

MIN_TOKEN_LENGTH = 8
MAX_TOKEN_LENGTH = 32

_limiter = RateLimiter(RATE_LIMIT_DRIVER_MAX_ATTEMPTS, RATE_LIMIT_WINDOW_SECONDS)

# ---------------------------------------------------------------------------
# Store (module-level for container reuse)
# ---------------------------------------------------------------------------

_store: Optional[RecordStore] = None


def _get_store() -> RecordStore:
    global _store
    if _store is None:
        _store = RecordStore()
    return _store


def _find_driver(access_token: str) -> Optional[Dict[str, Any]]:
    matches = _get_store().query(
        entity_table("drivers"),
        DRIVERS_ACCESS_TOKEN_GSI,
        "access_token",
        access_token,
    )
    return matches[0] if matches else None


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

def lambda_handler(event: Dict, context: Any) -> Dict:
    method, _path = _path_method(event)

    if method == "OPTIONS":
        return _preflight()
    if method != "POST":
        return _error(405, "Method not allowed")

    client_ip = _client_ip(event)
    decision = _limiter.check(client_ip)
    if not decision.allowed:
        logger.warning("[DRIVER-AUTH] throttled %s", client_ip)
        return _error(
            429,
            "Too many login attempts. Please try again later.",
            retryAfter=decision.retry_after,
            headers={
                "Retry-After": str(decision.retry_after),
                "X-RateLimit-Remaining": "0",
            },
        )
    throttle_headers = {"X-RateLimit-Remaining": str(decision.remaining)}

    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc), headers=throttle_headers)

    access_token = body.get("accessToken")
    if not access_token or not isinstance(access_token, str):
        return _error(400, "Access token is required", headers=throttle_headers)

    clean_token = access_token.strip().lower()
    if not MIN_TOKEN_LENGTH <= len(clean_token) <= MAX_TOKEN_LENGTH:
        return _error(400, "Invalid token format", headers=throttle_headers)

    try:
        driver = _find_driver(clean_token)
        if driver is None:
            logger.info("[DRIVER-AUTH] Invalid token attempt: %s...", clean_token[:4])
            return _error(401, "Invalid access token", headers=throttle_headers)
        if not driver.get("is_active"):
            logger.info("[DRIVER-AUTH] Inactive driver attempted login: %s", sanitize_for_log(driver.get("name")))
            return _error(401, "Driver account is inactive", headers=throttle_headers)
        token = create_driver_token(driver)
    except PortalError as exc:
        logger.error("[DRIVER-AUTH] login failed: %s", exc.message)
        response = _error_from_exc(exc)
        response["headers"].update(throttle_headers)
        return response
    except Exception:
        logger.exception("[DRIVER-AUTH] login crashed")
        return _error(500, "Authentication failed", headers=throttle_headers)

    logger.info("[DRIVER-AUTH] Successful login: driver %s", driver.get("id"))
    return _response(
        200,
        {"success": True, "token": token, "driver": {"id": driver["id"], "name": driver.get("name")}},
        headers=throttle_headers,
    )
