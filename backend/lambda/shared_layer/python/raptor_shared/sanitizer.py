"""raptor_shared.sanitizer — Allow-list field filtering (mass-assignment guard)."""
from __future__ import annotations

from typing import Any, Dict, Mapping

from raptor_shared.schema_registry import EntitySchema

__all__ = ["sanitize"]


def sanitize(schema: EntitySchema, fields: Any) -> Dict[str, Any]:
    """Copy only the schema's allow-listed keys out of ``fields``.

    Everything else (``id``, ``created_at``, ``updated_at``, undeclared foreign
    keys) is dropped silently. Never raises.
    """
    if not isinstance(fields, Mapping):
        return {}
    return {key: fields[key] for key in schema.allowed_fields if key in fields}
