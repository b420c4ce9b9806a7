"""raptor_shared.config — Environment variables, table names, constants, logging.

Secrets (JWT_SECRET, ADMIN_PASSWORD) are not captured here; their consumers
read them at call time and fail closed when they are unset.
"""
from __future__ import annotations

import logging
import os

__all__ = [
    "ADMIN_TOKEN_AUDIENCE",
    "CORS_ORIGIN",
    "COUNTERS_TABLE",
    "DRIVER_TOKEN_AUDIENCE",
    "DRIVERS_ACCESS_TOKEN_GSI",
    "DYNAMODB_REGION",
    "RATE_LIMIT_ADMIN_MAX_ATTEMPTS",
    "RATE_LIMIT_DRIVER_MAX_ATTEMPTS",
    "RATE_LIMIT_WINDOW_SECONDS",
    "TABLE_PREFIX",
    "TEMP_LOG_ENTRIES_TABLE",
    "TEMP_LOG_ENTRY_SESSION_GSI",
    "TEMP_LOG_HISTORY_WINDOW_DAYS",
    "TEMP_LOG_MAX_HISTORY_WINDOW_DAYS",
    "TEMP_LOG_SESSIONS_TABLE",
    "TEMP_LOG_SESSION_DRIVER_GSI",
    "TEMP_LOG_SINGLE_ACTIVE_SESSION",
    "TOKEN_ISSUER",
    "TOKEN_TTL_SECONDS",
    "entity_table",
    "logger",
]


def _env_flag(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DYNAMODB_REGION = os.environ.get("DYNAMODB_REGION", "us-west-2")
TABLE_PREFIX = os.environ.get("TABLE_PREFIX", "raptor-")
CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")

TEMP_LOG_SESSIONS_TABLE = os.environ.get("TEMP_LOG_SESSIONS_TABLE", f"{TABLE_PREFIX}temp_log_sessions")
TEMP_LOG_ENTRIES_TABLE = os.environ.get("TEMP_LOG_ENTRIES_TABLE", f"{TABLE_PREFIX}temp_log_entries")
COUNTERS_TABLE = os.environ.get("COUNTERS_TABLE", f"{TABLE_PREFIX}counters")

TEMP_LOG_SESSION_DRIVER_GSI = "driver-index"
TEMP_LOG_ENTRY_SESSION_GSI = "session-index"
DRIVERS_ACCESS_TOKEN_GSI = "access-token-index"

TEMP_LOG_SINGLE_ACTIVE_SESSION = _env_flag("TEMP_LOG_SINGLE_ACTIVE_SESSION")
TEMP_LOG_HISTORY_WINDOW_DAYS = _env_int("TEMP_LOG_HISTORY_WINDOW_DAYS", 30)
TEMP_LOG_MAX_HISTORY_WINDOW_DAYS = 3650

# Token claims
TOKEN_ISSUER = "raptor-portal"
ADMIN_TOKEN_AUDIENCE = "raptor-admin"
DRIVER_TOKEN_AUDIENCE = "raptor-driver"
TOKEN_TTL_SECONDS = 8 * 60 * 60

# Login throttling (per client IP, per warm container)
RATE_LIMIT_WINDOW_SECONDS = _env_int("RATE_LIMIT_WINDOW_SECONDS", 60)
RATE_LIMIT_ADMIN_MAX_ATTEMPTS = _env_int("RATE_LIMIT_ADMIN_MAX_ATTEMPTS", 5)
RATE_LIMIT_DRIVER_MAX_ATTEMPTS = _env_int("RATE_LIMIT_DRIVER_MAX_ATTEMPTS", 10)


def entity_table(entity_type: str) -> str:
    """Physical DynamoDB table name for a CRUD entity type."""
    override = os.environ.get(f"{entity_type.upper()}_TABLE", "").strip()
    return override or f"{TABLE_PREFIX}{entity_type}"


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(logging.INFO)
