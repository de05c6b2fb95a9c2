"""
Conflict detection and resolution between a local record and its remote row.

Resolution is last-writer-wins on updated_at, compared as parsed instants.
A tie keeps the local version. Callers may plug in a different resolver with
the same signature.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from volunteer_sync.entities import descriptor_for
from volunteer_sync.timeutil import parse_iso


class Winner(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


ConflictResolver = Callable[[Dict[str, Any], Dict[str, Any]], Winner]


@dataclass
class Conflict:
    entity_type: str
    id: str
    winner: Winner
    local_updated_at: Optional[str]
    remote_updated_at: Optional[str]
    phase: str  # "upload" or "download"
    fields: List[str] = field(default_factory=list)  # user-visible fields that differ

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "id": self.id,
            "winner": self.winner.value,
            "local_updated_at": self.local_updated_at,
            "remote_updated_at": self.remote_updated_at,
            "phase": self.phase,
            "fields": list(self.fields),
        }


def last_writer_wins(local: Dict[str, Any], remote: Dict[str, Any]) -> Winner:
    """Remote wins only when its updated_at is strictly newer than local's."""
    local_ts = parse_iso(local.get("updated_at"))
    remote_ts = parse_iso(remote.get("updated_at"))
    if remote_ts is None:
        return Winner.LOCAL
    if local_ts is None:
        return Winner.REMOTE
    return Winner.REMOTE if remote_ts > local_ts else Winner.LOCAL


def _comparable(value: Any) -> str:
    return "" if value is None else str(value).strip()


def differing_fields(local: Dict[str, Any], remote: Dict[str, Any], entity_type) -> List[str]:
    """Names of user-visible fields whose values differ, in column order.

    Bookkeeping timestamps are ignored; None and "" compare equal.
    """
    descriptor = descriptor_for(entity_type)
    return [
        name
        for name in descriptor.comparable_fields
        if _comparable(local.get(name)) != _comparable(remote.get(name))
    ]
