"""admin_auth/lambda_function.py

Admin password login; issues an 8 hour admin token.

Route (via API Gateway proxy):
    POST    /api/admin-auth
    OPTIONS /api/admin-auth  (CORS preflight)

Request body:
    {"password": "<admin password>"}

Throttling:
    RATE_LIMIT_ADMIN_MAX_ATTEMPTS (default 5) attempts per client IP per
    RATE_LIMIT_WINDOW_SECONDS (default 60), per warm container.

Environment variables:
    ADMIN_PASSWORD   admin password (read per request)
    JWT_SECRET       token signing secret (read per request)
"""

from __future__ import annotations

import hmac
import logging
import os
from typing import Any, Dict

from raptor_shared.auth import create_admin_token
from raptor_shared.config import RATE_LIMIT_ADMIN_MAX_ATTEMPTS, RATE_LIMIT_WINDOW_SECONDS
from raptor_shared.http_utils import _client_ip, _error, _json_body, _path_method, _preflight, _response
from raptor_shared.rate_limit import RateLimiter
from raptor_shared.serialization import _unix_now
from raptor_shared.validation import is_non_empty_string

logger = logging.getLogger()
logger.setLevel(logging.INFO)

MAX_PASSWORD_LENGTH = 256

_limiter = RateLimiter(RATE_LIMIT_ADMIN_MAX_ATTEMPTS, RATE_LIMIT_WINDOW_SECONDS)


def _passwords_match(supplied: str, expected: str) -> bool:
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def lambda_handler(event: Dict, context: Any) -> Dict:
    method, _path = _path_method(event)

    if method == "OPTIONS":
        return _preflight()
    if method != "POST":
        return _error(405, "Method not allowed")

    client_ip = _client_ip(event)
    decision = _limiter.check(client_ip)
    if not decision.allowed:
        logger.warning("admin login throttled for %s", client_ip)
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

    admin_password = os.environ.get("ADMIN_PASSWORD", "")
    if not admin_password or not os.environ.get("JWT_SECRET", ""):
        logger.error("ADMIN_PASSWORD or JWT_SECRET not configured")
        return _error(500, "Service not configured", code="SERVICE_UNAVAILABLE", headers=throttle_headers)

    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc), headers=throttle_headers)

    password = body.get("password")
    if not is_non_empty_string(password):
        return _error(400, "Password is required", headers=throttle_headers)
    if len(password) > MAX_PASSWORD_LENGTH:
        return _error(400, "Invalid password", headers=throttle_headers)

    if not _passwords_match(password, admin_password):
        logger.info("admin login rejected for %s", client_ip)
        return _error(401, "Invalid credentials", headers=throttle_headers)

    try:
        token = create_admin_token({"authenticatedAt": _unix_now() * 1000})
    except Exception:
        logger.exception("admin token generation failed")
        return _error(500, "Failed to generate token", headers=throttle_headers)

    logger.info("admin login succeeded for %s", client_ip)
    return _response(
        200,
        {"success": True, "token": token, "expiresIn": "8h"},
        headers=throttle_headers,
    )
