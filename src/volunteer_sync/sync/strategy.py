"""
Strategy selection: decide how much to sync on this invocation.

Decision order:
  1. force_full requested                        -> full
  2. a participating entity type never synced    -> full ("first sync")
  3. oldest last sync older than full_sync_days  -> full ("stale")
  4. no local changes and no remote change seen  -> none
  5. total local changes < delta_threshold       -> delta
  6. otherwise smart: per entity type, delta if its changes are below
     delta_threshold / 3, else full for that type

The sheet has no change feed, so remote change is approximated by reading
each sheet's Updated column and looking for a cell newer than that entity's
last sync. Any doubt (no prior sync, unreadable cell, read failure) counts
as a change.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from volunteer_sync.config import SyncThresholds
from volunteer_sync.entities import (
    EntityType,
    Operation,
    descriptor_for,
    resolve_sheet_names,
)
from volunteer_sync.sheets.client import column_range
from volunteer_sync.sync.state import SyncState
from volunteer_sync.timeutil import now_iso, parse_iso, utcnow

logger = logging.getLogger(__name__)


class StrategyType(str, Enum):
    NONE = "none"
    DELTA = "delta"
    SMART = "smart"
    FULL = "full"


@dataclass
class EntityPlan:
    """What to do for one entity type."""

    mode: StrategyType = StrategyType.NONE
    upload: List[Dict[str, Any]] = field(default_factory=list)
    # Tracker ids to mark synced once the upload lands (includes deletes)
    change_ids: List[str] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)
    download: bool = False
    local_changes: int = 0
    remote_changed: bool = False


@dataclass
class SyncPlan:
    type: StrategyType
    reason: str
    created_at: str
    entities: Dict[EntityType, EntityPlan] = field(default_factory=dict)

    @property
    def operations(self) -> Dict[str, Dict[str, Any]]:
        return {
            "upload": {et.value: p.upload for et, p in self.entities.items() if p.upload},
            "download": {et.value: p.download for et, p in self.entities.items()},
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "reason": self.reason,
            "created_at": self.created_at,
            "entities": {
                et.value: {
                    "mode": p.mode.value,
                    "upload": len(p.upload),
                    "deletes": len(p.deletes),
                    "download": p.download,
                    "local_changes": p.local_changes,
                    "remote_changed": p.remote_changed,
                }
                for et, p in self.entities.items()
            },
        }


@dataclass
class ChangeAnalysis:
    entity_type: EntityType
    local_changes: int
    remote_changed: bool
    upload: List[Dict[str, Any]]
    change_ids: List[str]
    deletes: List[str]


class StrategySelector:
    """Builds a SyncPlan from sync history, tracked changes and the remote sheet."""

    def __init__(
        self,
        store,
        tracker,
        client,
        thresholds: Optional[SyncThresholds] = None,
        sheet_names: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            store: LocalStore (read-only use here).
            tracker: ChangeTracker.
            client: SheetsClient or any object with read_range().
            thresholds: SyncThresholds; defaults 7 days / 50 changes / 100 rows.
            sheet_names: optional per-entity sheet name overrides.
        """
        self.store = store
        self.tracker = tracker
        self.client = client
        self.thresholds = thresholds or SyncThresholds()
        self.sheet_names = resolve_sheet_names(sheet_names)

    async def determine_strategy(
        self,
        state: SyncState,
        force_full: bool = False,
        entity_types: Optional[Iterable] = None,
    ) -> SyncPlan:
        entity_types = _normalize_types(entity_types)
        created_at = now_iso(timespec="microseconds")

        if force_full:
            return self._full_plan(entity_types, "requested by user", created_at)

        last_syncs = {et: state.last_sync.for_entity(et) for et in entity_types}
        if any(parse_iso(ts) is None for ts in last_syncs.values()):
            return self._full_plan(entity_types, "first sync", created_at)

        oldest = min(parse_iso(ts) for ts in last_syncs.values())
        days_since = (utcnow() - oldest).total_seconds() / 86400
        if days_since > self.thresholds.full_sync_days:
            return self._full_plan(
                entity_types,
                f"stale: {days_since:.1f} days since last sync",
                created_at,
            )

        analyses = {
            et: await self.analyze_changes(et, last_syncs[et]) for et in entity_types
        }
        total_changes = sum(a.local_changes for a in analyses.values())
        remote_changes = [et.value for et, a in analyses.items() if a.remote_changed]

        if total_changes == 0 and not remote_changes:
            plan = SyncPlan(StrategyType.NONE, "no local or remote changes", created_at)
            plan.entities = {et: EntityPlan() for et in entity_types}
            return plan

        if total_changes < self.thresholds.delta_threshold:
            plan = SyncPlan(
                StrategyType.DELTA,
                f"{total_changes} local changes; remote changes in {remote_changes or 'none'}",
                created_at,
            )
            plan.entities = {et: self._delta_entity(a) for et, a in analyses.items()}
            return plan

        per_entity_limit = self.thresholds.delta_threshold / 3
        plan = SyncPlan(
            StrategyType.SMART,
            f"{total_changes} local changes exceed delta threshold {self.thresholds.delta_threshold}",
            created_at,
        )
        for et, analysis in analyses.items():
            if analysis.local_changes < per_entity_limit:
                plan.entities[et] = self._delta_entity(analysis)
            else:
                plan.entities[et] = self._full_entity(et)
        return plan

    async def analyze_changes(self, entity_type, last_sync: Optional[str]) -> ChangeAnalysis:
        """Local pending changes plus the remote-changed signal for one entity type."""
        entity_type = EntityType(entity_type)
        collection = self.store.collection(entity_type)
        upload: List[Dict[str, Any]] = []
        change_ids: List[str] = []
        deletes: List[str] = []

        if self.tracker.has_entries(entity_type):
            for change in self.tracker.get_changes_since(entity_type, None):
                change_ids.append(change.id)
                if change.operation == Operation.DELETE:
                    deletes.append(change.id)
                    continue
                record = collection.get(change.id) or change.data
                if record:
                    upload.append(record)
            local_changes = len(change_ids)
        else:
            # No tracking data: fall back to record timestamps
            cutoff = parse_iso(last_sync)
            for record in collection.get_all():
                updated = parse_iso(record.get("updated_at"))
                if cutoff is None or updated is None or updated > cutoff:
                    upload.append(record)
            local_changes = len(upload)

        remote_changed = await self.detect_remote_changes(entity_type, last_sync)
        return ChangeAnalysis(entity_type, local_changes, remote_changed, upload, change_ids, deletes)

    async def detect_remote_changes(self, entity_type, last_sync: Optional[str]) -> bool:
        """Approximate "the sheet changed since last sync" from its Updated column."""
        cutoff = parse_iso(last_sync)
        if cutoff is None:
            return True

        descriptor = descriptor_for(entity_type)
        sheet = self.sheet_names[descriptor.entity_type]
        target = column_range(sheet, descriptor.column_index("updated_at"))
        try:
            rows = await self.client.read_range(target)
        except Exception as exc:
            logger.warning(
                "Could not read %s to detect remote changes (%s); assuming changed",
                target,
                exc,
            )
            return True

        for row in rows:
            if not row or not str(row[0]).strip():
                continue
            updated = parse_iso(row[0])
            if updated is None or updated > cutoff:
                return True
        return False

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _full_plan(self, entity_types: List[EntityType], reason: str, created_at: str) -> SyncPlan:
        plan = SyncPlan(StrategyType.FULL, reason, created_at)
        plan.entities = {et: self._full_entity(et) for et in entity_types}
        return plan

    def _full_entity(self, entity_type: EntityType) -> EntityPlan:
        pending = self.tracker.get_changes_since(entity_type, None)
        return EntityPlan(
            mode=StrategyType.FULL,
            upload=self.store.collection(entity_type).get_all(),
            change_ids=[c.id for c in pending],
            deletes=[c.id for c in pending if c.operation == Operation.DELETE],
            download=True,
            local_changes=len(pending),
            remote_changed=True,
        )

    @staticmethod
    def _delta_entity(analysis: ChangeAnalysis) -> EntityPlan:
        if not analysis.local_changes and not analysis.remote_changed:
            return EntityPlan()
        return EntityPlan(
            mode=StrategyType.DELTA,
            upload=analysis.upload,
            change_ids=analysis.change_ids,
            deletes=analysis.deletes,
            download=analysis.remote_changed,
            local_changes=analysis.local_changes,
            remote_changed=analysis.remote_changed,
        )


def _normalize_types(entity_types: Optional[Iterable]) -> List[EntityType]:
    if not entity_types:
        return list(EntityType)
    seen = []
    for et in entity_types:
        et = EntityType(et)
        if et not in seen:
            seen.append(et)
    return seen
