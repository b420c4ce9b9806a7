"""raptor_shared.http_utils — HTTP response envelope, body parsing, path/method extraction.

Standard response envelope and error formatting used by all portal Lambdas.
"""
from __future__ import annotations

import base64
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from raptor_shared.config import CORS_ORIGIN
from raptor_shared.errors import PortalError, StorageError

__all__ = [
    "_client_ip",
    "_cors_headers",
    "_error",
    "_error_from_exc",
    "_json_body",
    "_path_method",
    "_preflight",
    "_response",
]

logger = logging.getLogger(__name__)


def _cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": CORS_ORIGIN,
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
    }


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _response(
    status_code: int,
    payload: Any,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Build a standard API Gateway response with CORS headers."""
    return {
        "statusCode": status_code,
        "headers": {**_cors_headers(), "Content-Type": "application/json", **(headers or {})},
        "body": json.dumps(payload, default=_json_default),
    }


def _preflight() -> Dict[str, Any]:
    return {"statusCode": 204, "headers": _cors_headers(), "body": ""}


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    """Build a standard error response.

    Args:
        status_code: HTTP status code.
        message: Human-readable error message.
        **extra: ``code`` overrides the envelope code, ``headers`` adds
            response headers; everything else is merged into the payload and
            mirrored under ``error_envelope.details``.
    """
    headers = extra.pop("headers", None)
    code = str(extra.pop("code", "") or "").strip().upper()
    if not code:
        if status_code == 400:
            code = "INVALID_INPUT"
        elif status_code == 401:
            code = "UNAUTHENTICATED"
        elif status_code == 403:
            code = "FORBIDDEN"
        elif status_code == 404:
            code = "NOT_FOUND"
        elif status_code == 405:
            code = "METHOD_NOT_ALLOWED"
        elif status_code == 429:
            code = "RATE_LIMITED"
        else:
            code = "INTERNAL_ERROR"
    retryable = bool(extra.pop("retryable", code in {"RATE_LIMITED", "STORAGE_ERROR"}))
    details = dict(extra)
    body: Dict[str, Any] = {
        "success": False,
        "error": message,
        "error_envelope": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "details": details,
        },
    }
    body.update(details)
    return _response(status_code, body, headers=headers)


def _error_from_exc(exc: PortalError) -> Dict[str, Any]:
    """Map a taxonomy error to its HTTP error response."""
    extra: Dict[str, Any] = dict(exc.extra)
    code = exc.code
    if isinstance(exc, StorageError):
        code = exc.store_code or exc.code
        extra["details"] = exc.details
        extra["hint"] = exc.hint
        extra["retryable"] = True
    return _error(exc.status_code, exc.message, code=code, **extra)


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """Parse the JSON object body of an API Gateway event (handles base64)."""
    raw = event.get("body")
    if raw in (None, ""):
        return {}

    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")

    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ValueError(f"Invalid JSON body: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ValueError("JSON body must be an object")
    return parsed


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    """Extract HTTP method and path from API Gateway v2 (or v1) event."""
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = http.get("path") or event.get("rawPath") or event.get("path") or "/"
    return method, path


def _client_ip(event: Dict[str, Any]) -> str:
    headers = {str(k).lower(): v for k, v in (event.get("headers") or {}).items()}
    forwarded = str(headers.get("x-forwarded-for") or "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = str(headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    http = (event.get("requestContext") or {}).get("http") or {}
    return str(http.get("sourceIp") or "unknown")
