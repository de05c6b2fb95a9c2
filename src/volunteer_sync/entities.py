"""
Per-entity-type descriptors.

Each descriptor carries the field-order mapping between the local record
dict and the remote sheet row (column A is always the record id), the
required fields, the default sheet name and the local SQLModel table.

Field kinds drive sanitisation and validation in sheets.transform:
  id        : trimmed text
  text      : control chars replaced, whitespace collapsed, quotes escaped
  email     : must match a simple address pattern when present
  date      : YYYY-MM-DD
  time      : HH:MM
  datetime  : any parsable ISO-8601 instant (attendance check-in time)
  timestamp : created/updated/synced bookkeeping
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Type

from sqlmodel import SQLModel

from volunteer_sync.models.records import Attendance, Event, Volunteer


class EntityType(str, Enum):
    VOLUNTEERS = "volunteers"
    EVENTS = "events"
    ATTENDANCE = "attendance"


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    header: str
    kind: str = "text"
    default: Optional[str] = None


@dataclass(frozen=True)
class EntityDescriptor:
    entity_type: EntityType
    sheet_name: str
    fields: Tuple[FieldSpec, ...]
    required_fields: Tuple[str, ...]
    model: Type[SQLModel]
    # Fields compared when deciding whether local and remote really differ
    comparable_fields: Tuple[str, ...] = ()

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def headers(self) -> Tuple[str, ...]:
        return tuple(f.header for f in self.fields)

    def column_index(self, field_name: str) -> int:
        return self.field_names.index(field_name)


_TIMESTAMPS = (
    FieldSpec("created_at", "Created", "timestamp"),
    FieldSpec("updated_at", "Updated", "timestamp"),
    FieldSpec("synced_at", "Synced", "timestamp"),
)


DESCRIPTORS: Dict[EntityType, EntityDescriptor] = {
    EntityType.VOLUNTEERS: EntityDescriptor(
        entity_type=EntityType.VOLUNTEERS,
        sheet_name="Volunteers",
        fields=(
            FieldSpec("id", "ID", "id"),
            FieldSpec("name", "Name"),
            FieldSpec("email", "Email", "email"),
            FieldSpec("committee", "Committee"),
        ) + _TIMESTAMPS,
        required_fields=("id", "name"),
        model=Volunteer,
        comparable_fields=("name", "email", "committee"),
    ),
    EntityType.EVENTS: EntityDescriptor(
        entity_type=EntityType.EVENTS,
        sheet_name="Events",
        fields=(
            FieldSpec("id", "ID", "id"),
            FieldSpec("name", "Name"),
            FieldSpec("date", "Date", "date"),
            FieldSpec("start_time", "Start Time", "time"),
            FieldSpec("end_time", "End Time", "time"),
            FieldSpec("status", "Status", default="Active"),
            FieldSpec("description", "Description"),
        ) + _TIMESTAMPS,
        required_fields=("id", "name", "date"),
        model=Event,
        comparable_fields=("name", "date", "start_time", "end_time", "status", "description"),
    ),
    EntityType.ATTENDANCE: EntityDescriptor(
        entity_type=EntityType.ATTENDANCE,
        sheet_name="Attendance",
        fields=(
            FieldSpec("id", "ID", "id"),
            FieldSpec("volunteer_id", "Volunteer ID", "id"),
            FieldSpec("event_id", "Event ID", "id"),
            FieldSpec("volunteer_name", "Volunteer Name"),
            FieldSpec("committee", "Committee"),
            FieldSpec("date", "Date", "date"),
            FieldSpec("date_time", "Time", "datetime"),
        ) + _TIMESTAMPS,
        required_fields=("id", "volunteer_id", "event_id", "date"),
        model=Attendance,
        comparable_fields=("volunteer_id", "event_id", "volunteer_name", "committee", "date"),
    ),
}


def descriptor_for(entity_type) -> EntityDescriptor:
    """Look up a descriptor by EntityType or its string value."""
    return DESCRIPTORS[EntityType(entity_type)]


def resolve_sheet_names(overrides: Optional[Dict[str, str]] = None) -> Dict[EntityType, str]:
    """Sheet name per entity type, with optional overrides keyed by type value."""
    overrides = overrides or {}
    return {
        entity_type: overrides.get(entity_type.value) or descriptor.sheet_name
        for entity_type, descriptor in DESCRIPTORS.items()
    }
