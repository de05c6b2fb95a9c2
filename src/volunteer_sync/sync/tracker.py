"""
ChangeTracker: what changed locally since the last sync.

One entry per (entity type, record id); a later mutation overwrites the
earlier entry and flips it back to unsynced. Entries live in an in-memory
map and are written through to the ChangeEntry table so they survive a
restart.

Persistence failures are logged and swallowed: a local edit must never fail
because tracking could not be saved. The strategy selector falls back to
comparing record timestamps when an entity type has no tracking data.

Entry timestamps use microsecond precision so a mutation landing during an
in-flight sync always sorts after that sync's plan time.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from volunteer_sync.entities import EntityType, Operation
from volunteer_sync.models.changes import ChangeEntry
from volunteer_sync.store.local import ORIGIN_LOCAL, RecordMutation
from volunteer_sync.timeutil import now_iso, parse_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TrackedChange:
    id: str
    operation: Operation
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""
    synced: bool = False
    synced_at: Optional[str] = None


class ChangeTracker:
    """Flat keyed map of unsynced local changes, per entity type."""

    def __init__(self, engine=None):
        """
        Args:
            engine: SQLAlchemy engine used for write-through persistence.
                    None keeps the tracker in memory only.
        """
        self.engine = engine
        self._entries: Dict[EntityType, Dict[str, TrackedChange]] = {
            entity_type: {} for entity_type in EntityType
        }

    # ─── Mutation path ────────────────────────────────────────────────────────

    def track_change(
        self,
        entity_type,
        record_id: str,
        operation,
        data: Optional[Dict[str, Any]] = None,
    ) -> TrackedChange:
        """Record (or overwrite) the change entry for one record."""
        entity_type = EntityType(entity_type)
        entry = TrackedChange(
            id=record_id,
            operation=Operation(operation),
            data=dict(data or {}),
            timestamp=now_iso(timespec="microseconds"),
        )
        self._entries[entity_type][record_id] = entry
        self._persist(entity_type, [entry])
        return entry

    def handle_mutation(self, mutation: RecordMutation) -> None:
        """LocalStore subscriber. Sync-origin writes are not local changes."""
        if mutation.origin != ORIGIN_LOCAL:
            return
        self.track_change(mutation.entity_type, mutation.id, mutation.operation, mutation.data)

    # ─── Sync path ────────────────────────────────────────────────────────────

    def get_changes_since(self, entity_type, since: Optional[str] = None) -> List[TrackedChange]:
        """Unsynced entries newer than `since` (all unsynced when since is None), oldest first."""
        cutoff = parse_iso(since) if since else None
        changes = []
        for entry in list(self._entries[EntityType(entity_type)].values()):
            if entry.synced:
                continue
            if cutoff is not None:
                ts = parse_iso(entry.timestamp)
                if ts is None or ts <= cutoff:
                    continue
            changes.append(entry)
        return sorted(changes, key=lambda e: e.timestamp)

    def mark_synced(self, entity_type, ids: Iterable[str], as_of: Optional[str] = None) -> int:
        """
        Mark entries synced. Already-synced and unknown ids are ignored.

        With `as_of`, entries whose timestamp is newer than it are left
        unsynced: they were overwritten by a mutation made after the sync
        read them. Returns the number of entries newly marked.
        """
        entity_type = EntityType(entity_type)
        cutoff = parse_iso(as_of) if as_of else None
        synced_at = now_iso()
        marked = []
        for record_id in ids:
            entry = self._entries[entity_type].get(record_id)
            if entry is None or entry.synced:
                continue
            if cutoff is not None:
                ts = parse_iso(entry.timestamp)
                if ts is not None and ts > cutoff:
                    continue
            entry.synced = True
            entry.synced_at = synced_at
            marked.append(entry)
        if marked:
            self._persist(entity_type, marked)
        return len(marked)

    def cleanup_older_than(self, days: float) -> int:
        """Delete synced entries older than `days`. Unsynced entries are always kept."""
        cutoff = utcnow() - timedelta(days=days)
        removed = 0
        for entity_type, entries in list(self._entries.items()):
            stale = [
                record_id
                for record_id, entry in list(entries.items())
                if entry.synced and (parse_iso(entry.timestamp) or utcnow()) < cutoff
            ]
            for record_id in stale:
                del entries[record_id]
            if stale:
                removed += len(stale)
                self._delete(entity_type, stale)
        if removed:
            logger.info("Cleaned up %d synced change entries older than %s days", removed, days)
        return removed

    # ─── Introspection ────────────────────────────────────────────────────────

    def has_entries(self, entity_type) -> bool:
        """True if any entry (synced or not) exists for the entity type."""
        return bool(self._entries[EntityType(entity_type)])

    def pending_count(self, entity_type) -> int:
        return sum(1 for e in list(self._entries[EntityType(entity_type)].values()) if not e.synced)

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {
            entity_type.value: {
                "total": len(entries),
                "pending": sum(1 for e in list(entries.values()) if not e.synced),
            }
            for entity_type, entries in list(self._entries.items())
        }

    def reset(self) -> None:
        """Forget every entry, in memory and on disk."""
        for entries in list(self._entries.values()):
            entries.clear()
        if self.engine is None:
            return
        try:
            with Session(self.engine) as s:
                for row in s.exec(select(ChangeEntry)).all():
                    s.delete(row)
                s.commit()
        except SQLAlchemyError:
            logger.warning("Could not clear persisted change entries", exc_info=True)

    def load(self) -> int:
        """Populate the in-memory map from the database. Returns entries loaded."""
        if self.engine is None:
            return 0
        try:
            with Session(self.engine) as s:
                rows = s.exec(select(ChangeEntry)).all()
        except SQLAlchemyError:
            logger.warning("Could not load change entries; starting empty", exc_info=True)
            return 0

        loaded = 0
        for row in rows:
            try:
                entity_type = EntityType(row.entity_type)
                operation = Operation(row.operation)
            except ValueError:
                logger.warning("Ignoring change entry with unknown type %s/%s", row.entity_type, row.operation)
                continue
            try:
                data = json.loads(row.data_json or "{}")
            except json.JSONDecodeError:
                data = {}
            self._entries[entity_type][row.record_id] = TrackedChange(
                id=row.record_id,
                operation=operation,
                data=data,
                timestamp=row.timestamp,
                synced=row.synced,
                synced_at=row.synced_at,
            )
            loaded += 1
        return loaded

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _persist(self, entity_type: EntityType, entries: List[TrackedChange]) -> None:
        if self.engine is None:
            return
        try:
            with Session(self.engine) as s:
                for entry in entries:
                    row = s.exec(
                        select(ChangeEntry).where(
                            ChangeEntry.entity_type == entity_type.value,
                            ChangeEntry.record_id == entry.id,
                        )
                    ).first()
                    if row is None:
                        row = ChangeEntry(
                            entity_type=entity_type.value,
                            record_id=entry.id,
                            operation=entry.operation.value,
                            timestamp=entry.timestamp,
                        )
                    row.operation = entry.operation.value
                    row.data_json = json.dumps(entry.data, default=str)
                    row.timestamp = entry.timestamp
                    row.synced = entry.synced
                    row.synced_at = entry.synced_at
                    s.add(row)
                s.commit()
        except SQLAlchemyError:
            logger.warning(
                "Failed to persist %d %s change entries; kept in memory only",
                len(entries),
                entity_type.value,
                exc_info=True,
            )

    def _delete(self, entity_type: EntityType, record_ids: List[str]) -> None:
        if self.engine is None:
            return
        try:
            with Session(self.engine) as s:
                rows = s.exec(
                    select(ChangeEntry).where(
                        ChangeEntry.entity_type == entity_type.value,
                        ChangeEntry.record_id.in_(record_ids),
                    )
                ).all()
                for row in rows:
                    s.delete(row)
                s.commit()
        except SQLAlchemyError:
            logger.warning("Failed to delete stale %s change entries", entity_type.value, exc_info=True)
