"""raptor_shared.auth — HS256 JWT issuing and verification for admin and driver callers.

Reads the bearer token from the Authorization header ("Bearer <token>" or the
raw token), verifies it with PyJWT against JWT_SECRET, and checks the
embedded role against the role the route expects.

Requires environment variables:
    JWT_SECRET   shared HMAC signing secret (read per call; unset fails closed)
"""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import jwt

from raptor_shared.config import (
    ADMIN_TOKEN_AUDIENCE,
    DRIVER_TOKEN_AUDIENCE,
    TOKEN_ISSUER,
    TOKEN_TTL_SECONDS,
)
from raptor_shared.errors import PortalError, ServiceUnavailable, TokenExpired, Unauthenticated
from raptor_shared.http_utils import _error_from_exc

__all__ = [
    "ROLE_ADMIN",
    "ROLE_DRIVER",
    "Principal",
    "_authenticate",
    "_extract_token",
    "_jwt_secret",
    "_verify_token",
    "create_admin_token",
    "create_driver_token",
]

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_DRIVER = "driver"

_AUDIENCE_BY_ROLE = {
    ROLE_ADMIN: ADMIN_TOKEN_AUDIENCE,
    ROLE_DRIVER: DRIVER_TOKEN_AUDIENCE,
}


@dataclass(frozen=True)
class Principal:
    """Authenticated caller; lives for one request."""

    role: str
    driver_id: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def actor(self) -> str:
        if self.role == ROLE_DRIVER:
            return f"driver:{self.driver_id}"
        return self.role


def _jwt_secret() -> str:
    secret = os.environ.get("JWT_SECRET", "")
    if not secret:
        raise ServiceUnavailable("Authentication service not configured")
    return secret


def _sign(claims: Dict[str, Any], audience: str) -> str:
    now = int(time.time())
    payload = {
        **claims,
        "iss": TOKEN_ISSUER,
        "aud": audience,
        "iat": now,
        "exp": now + TOKEN_TTL_SECONDS,
    }
    return jwt.encode(payload, _jwt_secret(), algorithm="HS256")


def create_admin_token(payload: Optional[Dict[str, Any]] = None) -> str:
    """Sign an 8 hour admin token."""
    return _sign({**(payload or {}), "role": ROLE_ADMIN}, ADMIN_TOKEN_AUDIENCE)


def create_driver_token(driver: Dict[str, Any]) -> str:
    """Sign an 8 hour driver token embedding the driver's id and name."""
    return _sign(
        {
            "role": ROLE_DRIVER,
            "driverId": str(driver["id"]),
            "name": driver.get("name") or "",
        },
        DRIVER_TOKEN_AUDIENCE,
    )


def _extract_token(event: Dict[str, Any]) -> Optional[str]:
    """Extract the bearer token from the Authorization header."""
    headers = event.get("headers") or {}
    auth_header = headers.get("authorization") or headers.get("Authorization") or ""
    auth_header = str(auth_header).strip()
    if not auth_header:
        return None
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):].strip() or None
    return auth_header


def _verify_token(token: str, expected_role: str) -> Principal:
    """Verify an HS256 token for ``expected_role``. Returns the caller's Principal."""
    audience = _AUDIENCE_BY_ROLE.get(expected_role)
    if audience is None:
        raise ValueError(f"Unknown role: {expected_role}")
    secret = _jwt_secret()

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience,
            issuer=TOKEN_ISSUER,
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpired("Token expired. Please log in again.")
    except jwt.PyJWTError as exc:
        logger.warning("token verification failed: %s", exc)
        raise Unauthenticated("Invalid token") from exc

    if claims.get("role") != expected_role:
        logger.warning("token role mismatch: expected=%s got=%s", expected_role, claims.get("role"))
        raise Unauthenticated("Invalid token")

    driver_id = None
    if expected_role == ROLE_DRIVER:
        driver_id = str(claims.get("driverId") or "").strip()
        if not driver_id:
            raise Unauthenticated("Invalid token")
    return Principal(role=expected_role, driver_id=driver_id, claims=claims)


def _authenticate(
    event: Dict[str, Any],
    expected_role: str,
) -> Tuple[Optional[Principal], Optional[Dict[str, Any]]]:
    """Authenticate request via Authorization bearer token.

    Returns (principal, None) on success or (None, error_response) on failure.
    Fails closed: configuration gaps and unexpected verifier errors answer 500.
    """
    try:
        _jwt_secret()
        token = _extract_token(event)
        if not token:
            raise Unauthenticated("Authorization header required")
        return _verify_token(token, expected_role), None
    except PortalError as exc:
        if isinstance(exc, ServiceUnavailable):
            logger.error("JWT_SECRET not configured")
        return None, _error_from_exc(exc)
    except Exception as exc:
        logger.exception("token verification crashed: %s", exc)
        return None, _error_from_exc(ServiceUnavailable("Authentication service not configured"))
