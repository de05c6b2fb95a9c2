"""
Local record store backed by the SQLModel tables.

Every mutation made through a RecordCollection is published to subscribers
as a RecordMutation after it has been committed. The change tracker and the
scheduler's debounced delta sync both subscribe here; nothing wraps or
replaces the store's methods.

Mutations carry an origin: "local" for user edits, "sync" for writes made
while reconciling downloaded rows. Subscribers decide what to do with each.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlmodel import Session, select

from volunteer_sync.entities import EntityType, Operation, descriptor_for
from volunteer_sync.timeutil import now_iso

logger = logging.getLogger(__name__)

ORIGIN_LOCAL = "local"
ORIGIN_SYNC = "sync"

_TIMESTAMP_FIELDS = ("created_at", "updated_at", "synced_at")


class RecordNotFoundError(KeyError):
    """Raised when updating a record id that is not in the store."""


class DuplicateRecordError(ValueError):
    """Raised when adding a record whose id already exists."""


@dataclass
class RecordMutation:
    operation: Operation
    entity_type: EntityType
    id: str
    data: Dict[str, Any] = field(default_factory=dict)
    origin: str = ORIGIN_LOCAL


MutationListener = Callable[[RecordMutation], None]


class RecordCollection:
    """get/add/update/delete over one entity type's table."""

    def __init__(self, store: "LocalStore", entity_type: EntityType):
        self._store = store
        self.entity_type = EntityType(entity_type)
        self.descriptor = descriptor_for(entity_type)
        self._model = self.descriptor.model

    def get_all(self) -> List[Dict[str, Any]]:
        with Session(self._store.engine) as s:
            rows = s.exec(select(self._model)).all()
            return [row.model_dump() for row in rows]

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        with Session(self._store.engine) as s:
            row = s.get(self._model, record_id)
            return row.model_dump() if row else None

    def add(self, record: Dict[str, Any], origin: str = ORIGIN_LOCAL) -> Dict[str, Any]:
        """Insert a new record. Stamps created_at/updated_at when absent."""
        values = self._known_fields(record)
        if not values.get("id"):
            raise ValueError(f"{self.entity_type.value} record has no id")

        now = now_iso()
        values["created_at"] = values.get("created_at") or now
        values["updated_at"] = values.get("updated_at") or values["created_at"]

        with Session(self._store.engine) as s:
            if s.get(self._model, values["id"]) is not None:
                raise DuplicateRecordError(
                    f"{self.entity_type.value} record {values['id']!r} already exists"
                )
            row = self._model(**values)
            s.add(row)
            s.commit()
            s.refresh(row)
            saved = row.model_dump()

        self._store.emit(RecordMutation(Operation.CREATE, self.entity_type, saved["id"], saved, origin))
        return saved

    def update(self, record_id: str, patch: Dict[str, Any], origin: str = ORIGIN_LOCAL) -> Dict[str, Any]:
        """
        Apply a partial update.

        Local edits always bump updated_at. Sync-origin patches keep the
        timestamps they carry, so a reconciled record mirrors the remote row.
        """
        values = self._known_fields(patch)
        values.pop("id", None)
        if origin == ORIGIN_LOCAL:
            for name in _TIMESTAMP_FIELDS:
                values.pop(name, None)
            values["updated_at"] = now_iso()

        with Session(self._store.engine) as s:
            row = s.get(self._model, record_id)
            if row is None:
                raise RecordNotFoundError(record_id)
            for k, v in values.items():
                setattr(row, k, v)
            s.add(row)
            s.commit()
            s.refresh(row)
            saved = row.model_dump()

        self._store.emit(RecordMutation(Operation.UPDATE, self.entity_type, record_id, saved, origin))
        return saved

    def delete(self, record_id: str, origin: str = ORIGIN_LOCAL) -> None:
        """Delete a record. Deleting an absent id is a no-op."""
        with Session(self._store.engine) as s:
            row = s.get(self._model, record_id)
            if row is None:
                return
            snapshot = row.model_dump()
            s.delete(row)
            s.commit()

        self._store.emit(RecordMutation(Operation.DELETE, self.entity_type, record_id, snapshot, origin))

    def _known_fields(self, record: Dict[str, Any]) -> Dict[str, Any]:
        allowed = self._model.model_fields
        return {k: v for k, v in record.items() if k in allowed}


class LocalStore:
    """Entry point to the per-entity collections plus the mutation feed."""

    def __init__(self, engine):
        self.engine = engine
        self._listeners: List[MutationListener] = []
        self._collections = {
            entity_type: RecordCollection(self, entity_type) for entity_type in EntityType
        }

    def collection(self, entity_type) -> RecordCollection:
        return self._collections[EntityType(entity_type)]

    def subscribe(self, listener: MutationListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, mutation: RecordMutation) -> None:
        for listener in list(self._listeners):
            try:
                listener(mutation)
            except Exception:
                # The mutation is already committed; a broken observer must not undo it
                logger.exception(
                    "Mutation listener failed for %s %s",
                    mutation.entity_type.value,
                    mutation.id,
                )
