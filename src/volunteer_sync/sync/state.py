"""
Durable sync state: last-sync timestamps and cumulative counters.

Stored as a small JSON file under settings.state_dir. A missing, unreadable
or corrupt file loads as the default (empty) state, which forces the next
sync to be a full one; it never raises.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from volunteer_sync.entities import EntityType

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "sync_state.json"


class LastSync(BaseModel):
    timestamp: Optional[str] = None
    volunteers: Optional[str] = None
    events: Optional[str] = None
    attendance: Optional[str] = None

    def for_entity(self, entity_type) -> Optional[str]:
        return getattr(self, EntityType(entity_type).value)

    def set_entity(self, entity_type, value: Optional[str]) -> None:
        setattr(self, EntityType(entity_type).value, value)


class SyncStats(BaseModel):
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[str] = None
    uploaded_records: int = 0
    downloaded_records: int = 0
    conflicts_resolved: int = 0


class SyncState(BaseModel):
    last_sync: LastSync = Field(default_factory=LastSync)
    stats: SyncStats = Field(default_factory=SyncStats)


class SyncStateStore:
    """load / save / reset over a JSON file. No business logic."""

    def __init__(self, path: Optional[Path] = None):
        """
        Args:
            path: JSON file location. None keeps state in memory only
                  (tests, one-shot dry runs).
        """
        self.path = Path(path) if path is not None else None
        self._memory: Optional[str] = None

    @classmethod
    def in_dir(cls, state_dir: Path) -> "SyncStateStore":
        return cls(Path(state_dir) / STATE_FILE_NAME)

    def load(self) -> SyncState:
        raw = self._read()
        if raw is None:
            return SyncState()
        try:
            return SyncState.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            logger.warning("Sync state at %s is corrupt (%s); starting from defaults", self.path, exc)
            return SyncState()

    def save(self, state: SyncState) -> None:
        """Persist state. The file is replaced atomically."""
        payload = state.model_dump_json(indent=2)
        if self.path is None:
            self._memory = payload
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(payload)
        os.replace(tmp, self.path)

    def reset(self) -> SyncState:
        """Discard persisted state and return a fresh default."""
        self._memory = None
        if self.path is not None and self.path.exists():
            self.path.unlink()
        return SyncState()

    def _read(self) -> Optional[str]:
        if self.path is None:
            return self._memory
        try:
            return self.path.read_text()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read sync state at %s (%s); starting from defaults", self.path, exc)
            return None
