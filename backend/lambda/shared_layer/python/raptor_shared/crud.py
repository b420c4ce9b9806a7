"""raptor_shared.crud — Table-driven create/read/update/delete dispatcher for admin callers.

The dispatcher trusts its caller to have authenticated an admin principal;
it owns validation, sanitization, defaulting and persistence, uniformly for
every entity type in the registry.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from raptor_shared.auth import Principal
from raptor_shared.config import entity_table
from raptor_shared.errors import NotFound, StorageError, ValidationError
from raptor_shared.record_store import ConditionFailed, RecordStore
from raptor_shared.sanitizer import sanitize
from raptor_shared.schema_registry import ID_KIND_INT, EntitySchema, SchemaRegistry
from raptor_shared.serialization import _emit_structured_observability, _now_iso
from raptor_shared.validation import (
    is_non_empty_string,
    is_valid_email,
    is_valid_id,
    is_valid_uuid,
    parse_positive_int,
)

__all__ = ["VALID_ACTIONS", "CrudDispatcher"]

logger = logging.getLogger(__name__)

VALID_ACTIONS = ("create", "read", "update", "delete")

_CREATE_MAX_ATTEMPTS = 32

Result = Union[Dict[str, Any], List[Dict[str, Any]], None]


def _is_email_field(name: str) -> bool:
    return name == "email" or name.endswith("_email")


class CrudDispatcher:
    def __init__(
        self,
        registry: SchemaRegistry,
        store: RecordStore,
        table_name: Callable[[str], str] = entity_table,
    ) -> None:
        self.registry = registry
        self.store = store
        self.table_name = table_name

    def execute(
        self,
        principal: Principal,
        entity_type: Optional[str],
        action: Optional[str],
        *,
        id: Any = None,
        data: Any = None,
        filters: Any = None,
    ) -> Result:
        schema = self.registry.lookup(entity_type)
        if action not in VALID_ACTIONS:
            raise ValidationError("Invalid action. Allowed: " + ", ".join(VALID_ACTIONS))

        started = time.monotonic()
        _emit_structured_observability(
            component="admin_crud",
            event="crud.request",
            actor=principal.actor,
            extra={
                "entity_type": schema.name,
                "action": action,
                "record_id": id,
                "data_keys": sorted(data) if isinstance(data, Mapping) else None,
                "filter_keys": sorted(filters) if isinstance(filters, Mapping) else None,
            },
        )

        if action == "read":
            result = self._read(schema, id, filters)
        elif action == "create":
            result = self._create(schema, data)
        elif action == "update":
            result = self._update(schema, id, data)
        else:
            result = self._delete(schema, id)

        logger.info(
            "[CRUD] %s/%s ok in %dms",
            schema.name, action, int((time.monotonic() - started) * 1000),
        )
        return result

    # -- actions -------------------------------------------------------------

    def _read(self, schema: EntitySchema, record_id: Any, filters: Any) -> Result:
        table = self.table_name(schema.name)
        if record_id not in (None, "", 0):
            key = self._coerce_id(schema, record_id, "Invalid ID")
            record = self.store.get(table, {"id": key})
            if record is None:
                raise NotFound(f"Record not found: {key}")
            return record

        conditions: Dict[str, Any] = {}
        if isinstance(filters, Mapping):
            allowed = set(schema.allowed_fields) | {"id"}
            conditions = {k: v for k, v in filters.items() if k in allowed}
            if "id" in conditions:
                conditions["id"] = self._coerce_id(schema, conditions["id"], "Invalid ID")
            conditions = self._coerce_references(schema, conditions)

        records = self.store.scan(table, conditions)
        return self._ordered(schema, records)

    def _create(self, schema: EntitySchema, data: Any) -> Result:
        if not isinstance(data, Mapping) or not data:
            raise ValidationError("Data object is required for create")

        for name in schema.required_on_create:
            value = data.get(name)
            if name.endswith("_id"):
                if not is_valid_id(value):
                    raise ValidationError(f"Valid {name} is required", field=name)
            elif not is_non_empty_string(value):
                raise ValidationError(f"{name} is required", field=name)
        self._validate_emails(data)

        fields = self._coerce_references(schema, sanitize(schema, data))
        fields = schema.apply_defaults(fields)
        table = self.table_name(schema.name)
        now = _now_iso()

        for attempt in range(1, _CREATE_MAX_ATTEMPTS + 1):
            record = {
                **fields,
                "id": self._allocate_id(schema, table),
                "created_at": now,
                "updated_at": now,
            }
            try:
                return self.store.put_new(table, record)
            except ConditionFailed:
                logger.warning(
                    "[CRUD] %s id %s already taken (attempt %d)", schema.name, record["id"], attempt,
                )
        raise StorageError(
            f"Failed to allocate unique {schema.name} id after {_CREATE_MAX_ATTEMPTS} attempts.",
            store_code="ID_ALLOCATION_FAILED",
        )

    def _update(self, schema: EntitySchema, record_id: Any, data: Any) -> Result:
        key = self._coerce_id(schema, record_id, "Valid ID is required for update")
        if not isinstance(data, Mapping) or not data:
            raise ValidationError("Data object is required for update")
        self._validate_emails(data)

        fields = self._coerce_references(schema, sanitize(schema, data))
        fields["updated_at"] = _now_iso()
        try:
            return self.store.update(self.table_name(schema.name), {"id": key}, fields)
        except ConditionFailed:
            raise NotFound(f"Record not found: {key}")

    def _delete(self, schema: EntitySchema, record_id: Any) -> Result:
        key = self._coerce_id(schema, record_id, "Valid ID is required for delete")
        try:
            self.store.delete(self.table_name(schema.name), {"id": key})
        except ConditionFailed:
            raise NotFound(f"Record not found: {key}")
        return None

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _coerce_id(schema: EntitySchema, raw: Any, message: str) -> Union[int, str]:
        """Normalize an incoming id to the entity's key type."""
        if schema.id_kind == ID_KIND_INT:
            num = parse_positive_int(raw)
            if num is None:
                raise ValidationError(message)
            return num
        if is_valid_uuid(raw):
            return raw.lower()
        raise ValidationError(message)

    def _coerce_references(self, schema: EntitySchema, fields: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(fields)
        for name, target in schema.references.items():
            value = out.get(name)
            if value in (None, "") or target not in self.registry:
                continue
            out[name] = self._coerce_id(self.registry[target], value, f"Valid {name} is required")
        return out

    @staticmethod
    def _validate_emails(data: Mapping[str, Any]) -> None:
        for name, value in data.items():
            if not _is_email_field(str(name)) or value in (None, ""):
                continue
            if not is_valid_email(value):
                raise ValidationError("Invalid email format", field=name)

    def _allocate_id(self, schema: EntitySchema, table: str) -> Union[int, str]:
        if schema.id_kind == ID_KIND_INT:
            return self.store.next_sequence(
                f"{schema.name}#id",
                seed=lambda: self.store.max_numeric(table),
            )
        return str(uuid.uuid4())

    @staticmethod
    def _ordered(schema: EntitySchema, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        column = schema.default_order.column
        present = [r for r in records if r.get(column) is not None]
        missing = [r for r in records if r.get(column) is None]
        reverse = not schema.default_order.ascending
        try:
            present.sort(key=lambda r: r[column], reverse=reverse)
        except TypeError:
            present.sort(key=lambda r: str(r[column]), reverse=reverse)
        return present + missing
