"""raptor_shared.schema_registry — Declarative per-entity metadata for the admin CRUD dispatcher.

Each entity's write shape is a ``TypedDict``; its annotations, in declaration
order, are the allow-list the Field Sanitizer enforces. ``build_registry()``
returns an immutable registry that is constructed once per container and
passed to the dispatcher. ``SchemaRegistry.register`` returns a new registry,
so adding an entity type never touches the dispatcher or mutates shared state.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple, Type, TypedDict, Union

from raptor_shared.errors import UnknownEntityType

__all__ = [
    "ID_KIND_INT",
    "ID_KIND_UUID",
    "DEFAULT_ENTITIES",
    "EntitySchema",
    "OrderBy",
    "SchemaRegistry",
    "build_registry",
    "generate_public_token",
]

RecordId = Union[int, str]

ID_KIND_INT = "int"
ID_KIND_UUID = "uuid"


# ---------------------------------------------------------------------------
# Write shapes
# ---------------------------------------------------------------------------


class ProjectFields(TypedDict, total=False):
    location_id: RecordId
    project_number: str
    public_token: str
    is_active: bool
    overall_progress: int
    estimated_completion: str
    configuration: str
    employee_count: int
    email_reminders_enabled: bool
    reminder_email: str
    last_reminder_sent: str
    survey_clicks: int
    survey_completions: int


class PhaseFields(TypedDict, total=False):
    project_id: RecordId
    title: str
    phase_number: int
    status: str
    description: str
    start_date: str
    end_date: str
    is_approximate: bool
    property_responsibility: str
    contractor_name: str
    contractor_scheduled_date: str
    contractor_status: str
    survey_response_rate: float
    survey_top_meals: Any
    survey_top_snacks: Any
    survey_dietary_notes: str


class TaskFields(TypedDict, total=False):
    phase_id: RecordId
    label: str
    completed: bool
    sort_order: int
    scheduled_date: str
    upload_speed: str
    download_speed: str
    enclosure_type: str
    enclosure_color: str
    custom_color_name: str
    smartfridge_qty: int
    smartcooker_qty: int
    deliveries: Any
    document_url: str
    notes: str
    pm_text_response: str


class PropertyManagerFields(TypedDict, total=False):
    name: str
    email: str
    phone: str
    company: str
    is_active: bool
    access_token: str
    notes: str


class PropertyFields(TypedDict, total=False):
    name: str
    property_manager_id: RecordId
    address: str
    city: str
    state: str
    zip: str
    total_employees: int
    notes: str


class LocationFields(TypedDict, total=False):
    name: str
    property_id: RecordId
    floor: str
    employee_count: int
    images: Any
    notes: str


class PmMessageFields(TypedDict, total=False):
    pm_id: RecordId
    sender: str
    sender_name: str
    message: str
    read_at: str


class DriverFields(TypedDict, total=False):
    name: str
    email: str
    phone: str
    is_active: bool
    access_token: str
    notes: str


# ---------------------------------------------------------------------------
# Schema types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderBy:
    column: str
    ascending: bool = True


Defaults = Callable[[Dict[str, Any]], Dict[str, Any]]


def _no_defaults(fields: Dict[str, Any]) -> Dict[str, Any]:
    return fields


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


@dataclass(frozen=True)
class EntitySchema:
    name: str
    fields: Type[Any]
    required_on_create: Tuple[str, ...]
    default_order: OrderBy
    id_kind: str = ID_KIND_UUID
    references: Mapping[str, str] = field(default_factory=dict)
    defaults: Defaults = _no_defaults

    def __post_init__(self) -> None:
        unknown = [f for f in self.required_on_create if f not in self.allowed_fields]
        if unknown:
            raise ValueError(f"{self.name}: required fields not allow-listed: {unknown}")
        unknown = [f for f in self.references if f not in self.allowed_fields]
        if unknown:
            raise ValueError(f"{self.name}: reference fields not allow-listed: {unknown}")

    @property
    def allowed_fields(self) -> Tuple[str, ...]:
        return tuple(self.fields.__annotations__)

    def apply_defaults(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self.defaults(dict(fields))


class SchemaRegistry(Mapping[str, EntitySchema]):
    """Read-only mapping of entity-type name to schema."""

    def __init__(self, schemas: Mapping[str, EntitySchema]) -> None:
        self._schemas = MappingProxyType(dict(schemas))

    def __getitem__(self, name: str) -> EntitySchema:
        return self._schemas[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._schemas)

    def __len__(self) -> int:
        return len(self._schemas)

    def lookup(self, name: Optional[str]) -> EntitySchema:
        schema = self._schemas.get(name or "")
        if schema is None:
            raise UnknownEntityType(
                "Invalid table. Allowed: " + ", ".join(self._schemas),
                allowed=list(self._schemas),
            )
        return schema

    def register(self, schema: EntitySchema) -> "SchemaRegistry":
        return SchemaRegistry({**self._schemas, schema.name: schema})


# ---------------------------------------------------------------------------
# Entity defaults
# ---------------------------------------------------------------------------


def generate_public_token() -> str:
    return secrets.token_hex(12)


def _project_defaults(fields: Dict[str, Any]) -> Dict[str, Any]:
    if _is_missing(fields.get("public_token")):
        fields["public_token"] = generate_public_token()
    fields["is_active"] = fields.get("is_active") is not False
    return fields


def _phase_defaults(fields: Dict[str, Any]) -> Dict[str, Any]:
    if _is_missing(fields.get("phase_number")):
        fields["phase_number"] = 1
    if _is_missing(fields.get("status")):
        fields["status"] = "not_started"
    return fields


def _task_defaults(fields: Dict[str, Any]) -> Dict[str, Any]:
    if _is_missing(fields.get("completed")):
        fields["completed"] = False
    if _is_missing(fields.get("sort_order")):
        fields["sort_order"] = 0
    return fields


def _active_by_default(fields: Dict[str, Any]) -> Dict[str, Any]:
    fields["is_active"] = fields.get("is_active") is not False
    return fields


def _driver_defaults(fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = _active_by_default(fields)
    if _is_missing(fields.get("access_token")):
        fields["access_token"] = secrets.token_hex(6)
    else:
        fields["access_token"] = str(fields["access_token"]).strip().lower()
    return fields


DEFAULT_ENTITIES: Tuple[EntitySchema, ...] = (
    EntitySchema(
        name="projects",
        fields=ProjectFields,
        required_on_create=("location_id",),
        default_order=OrderBy("created_at", ascending=False),
        references={"location_id": "locations"},
        defaults=_project_defaults,
    ),
    EntitySchema(
        name="phases",
        fields=PhaseFields,
        required_on_create=("project_id", "title"),
        default_order=OrderBy("phase_number"),
        references={"project_id": "projects"},
        defaults=_phase_defaults,
    ),
    EntitySchema(
        name="tasks",
        fields=TaskFields,
        required_on_create=("phase_id", "label"),
        default_order=OrderBy("sort_order"),
        references={"phase_id": "phases"},
        defaults=_task_defaults,
    ),
    EntitySchema(
        name="property_managers",
        fields=PropertyManagerFields,
        required_on_create=("name",),
        default_order=OrderBy("name"),
        id_kind=ID_KIND_INT,
        defaults=_active_by_default,
    ),
    EntitySchema(
        name="properties",
        fields=PropertyFields,
        required_on_create=("name",),
        default_order=OrderBy("name"),
        id_kind=ID_KIND_INT,
        references={"property_manager_id": "property_managers"},
    ),
    EntitySchema(
        name="locations",
        fields=LocationFields,
        required_on_create=("name", "property_id"),
        default_order=OrderBy("name"),
        id_kind=ID_KIND_INT,
        references={"property_id": "properties"},
    ),
    EntitySchema(
        name="pm_messages",
        fields=PmMessageFields,
        required_on_create=("pm_id", "message"),
        default_order=OrderBy("created_at", ascending=False),
        id_kind=ID_KIND_INT,
        references={"pm_id": "property_managers"},
    ),
    EntitySchema(
        name="drivers",
        fields=DriverFields,
        required_on_create=("name",),
        default_order=OrderBy("name"),
        id_kind=ID_KIND_INT,
        defaults=_driver_defaults,
    ),
)


def build_registry(extra: Tuple[EntitySchema, ...] = ()) -> SchemaRegistry:
    return SchemaRegistry({s.name: s for s in (*DEFAULT_ENTITIES, *extra)})
