"""raptor_shared.errors — Error taxonomy shared by the portal Lambdas.

Every error carries the HTTP status and envelope code the handlers answer
with; see http_utils._error_from_exc.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "Forbidden",
    "InvalidState",
    "NotFound",
    "PortalError",
    "ServiceUnavailable",
    "StorageError",
    "TokenExpired",
    "Unauthenticated",
    "UnknownEntityType",
    "ValidationError",
]


class PortalError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = dict(extra)


class Unauthenticated(PortalError):
    status_code = 401
    code = "UNAUTHENTICATED"


class TokenExpired(Unauthenticated):
    code = "TOKEN_EXPIRED"


class Forbidden(PortalError):
    status_code = 403
    code = "FORBIDDEN"


class UnknownEntityType(PortalError):
    status_code = 400
    code = "UNKNOWN_ENTITY_TYPE"


class ValidationError(PortalError):
    status_code = 400
    code = "INVALID_INPUT"


class NotFound(PortalError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidState(PortalError):
    status_code = 409
    code = "INVALID_STATE"


class ServiceUnavailable(PortalError):
    status_code = 500
    code = "SERVICE_UNAVAILABLE"


class StorageError(PortalError):
    """Record store failure; store diagnostics are passed through verbatim."""

    status_code = 500
    code = "STORAGE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        store_code: Optional[str] = None,
        details: Any = None,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.store_code = store_code
        self.details = details
        self.hint = hint
