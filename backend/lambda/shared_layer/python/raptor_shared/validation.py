"""raptor_shared.validation — Input validation helpers shared by the portal Lambdas."""
from __future__ import annotations

import re
from typing import Any, Optional, Union

__all__ = [
    "is_non_empty_string",
    "is_valid_email",
    "is_valid_id",
    "is_valid_uuid",
    "parse_positive_int",
    "sanitize_for_log",
]

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_valid_email(value: Any) -> bool:
    if not is_non_empty_string(value):
        return False
    return bool(_EMAIL_PATTERN.match(value))


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(_UUID_PATTERN.match(value))


def parse_positive_int(value: Any) -> Optional[int]:
    """Return value as a positive int, or None when it is not one.

    Accepts ints and canonical decimal strings ("12", not "012" or "12.0").
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        if not value.isdigit():
            return None
        num = int(value)
        if num > 0 and str(num) == value:
            return num
    return None


def is_valid_id(value: Union[int, str, None]) -> bool:
    """Identifiers may be positive integers (or their strings) or UUIDs."""
    if is_valid_uuid(value):
        return True
    return parse_positive_int(value) is not None


def sanitize_for_log(value: Any, max_length: int = 100) -> str:
    """Truncate a value for safe logging."""
    if not is_non_empty_string(value):
        return "[empty]"
    clipped = value[:max_length]
    return f"{clipped}..." if len(clipped) < len(value) else clipped
