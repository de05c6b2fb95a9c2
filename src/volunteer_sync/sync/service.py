"""
SyncService: orchestrates one sync between the local store and the sheet.

Flow for perform_sync():
  1. Refuse immediately if a sync is already running (no queueing)
  2. Create SyncLog (status="running"), emit sync_started
  3. Prerequisites: spreadsheet configured, credentials usable, sheet reachable
  4. Ask the StrategySelector for a plan
  5. Upload phase (skipped with download_only): per entity type, transform,
     partition into append vs row update against a fresh read of the sheet,
     then mark the uploaded change entries synced
  6. Download phase: per flagged entity type, read all rows and reconcile
     record by record (last-writer-wins)
  7. Advance last-sync timestamps, bump counters, persist state,
     update SyncLog, emit sync_completed

Per-entity failures in 5 and 6 are collected into result.errors and never
abort sibling entity types. Anything else that raises in 3-6 is a hard
failure: retryable ones re-run the whole sync after a backoff delay, the
rest end the sync with success=False. The in-progress flag is always
cleared on the way out.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from volunteer_sync.config import SyncThresholds
from volunteer_sync.entities import EntityType, descriptor_for, resolve_sheet_names
from volunteer_sync.models.sync import SyncLog
from volunteer_sync.sheets.client import data_range, row_range
from volunteer_sync.sheets.transform import (
    from_remote_row,
    from_remote_rows,
    row_key,
    to_remote_rows,
)
from volunteer_sync.store.local import ORIGIN_SYNC
from volunteer_sync.sync.conflicts import (
    Conflict,
    ConflictResolver,
    Winner,
    differing_fields,
    last_writer_wins,
)
from volunteer_sync.sync.errors import (
    AuthenticationError,
    ConnectivityError,
    SyncError,
)
from volunteer_sync.sync.events import SyncEvent, SyncEventEmitter
from volunteer_sync.sync.retry import RetryPolicy
from volunteer_sync.sync.state import SyncStateStore
from volunteer_sync.sync.strategy import EntityPlan, StrategySelector, StrategyType, SyncPlan
from volunteer_sync.timeutil import now_iso, parse_iso, utcnow

logger = logging.getLogger(__name__)


class SyncInProgressError(SyncError):
    """Raised by operations that cannot run while a sync is in flight."""

    retryable = False


@dataclass
class SyncOptions:
    force_full: bool = False
    download_only: bool = False
    entity_types: Optional[List[str]] = None


@dataclass
class SyncResult:
    strategy: str
    reason: str
    uploaded: Dict[str, int] = field(default_factory=dict)
    downloaded: Dict[str, int] = field(default_factory=dict)
    deleted: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, int] = field(default_factory=dict)
    conflicts: List[Conflict] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    attempts: int = 1

    @property
    def total_uploaded(self) -> int:
        return sum(self.uploaded.values())

    @property
    def total_downloaded(self) -> int:
        return sum(self.downloaded.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "reason": self.reason,
            "uploaded": dict(self.uploaded),
            "downloaded": dict(self.downloaded),
            "deleted": dict(self.deleted),
            "skipped": dict(self.skipped),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "errors": list(self.errors),
            "attempts": self.attempts,
        }


@dataclass
class SyncOutcome:
    success: bool
    result: Optional[SyncResult] = None
    error: Optional[str] = None
    reason: Optional[str] = None  # "already_syncing", "disabled"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "reason": self.reason,
        }


class SyncService:
    """Owns the in-progress flag, sync state and counters for one process."""

    def __init__(
        self,
        store,
        tracker,
        client,
        state_store: Optional[SyncStateStore] = None,
        *,
        engine=None,
        thresholds: Optional[SyncThresholds] = None,
        retry_policy: Optional[RetryPolicy] = None,
        events: Optional[SyncEventEmitter] = None,
        resolver: ConflictResolver = last_writer_wins,
        sheet_names: Optional[Dict[str, str]] = None,
        selector: Optional[StrategySelector] = None,
        enabled: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            store: LocalStore.
            tracker: ChangeTracker subscribed to the store.
            client: SheetsClient (or a fake with the same coroutine methods).
            state_store: SyncStateStore; defaults to an in-memory one.
            engine: SQLAlchemy engine for SyncLog audit rows; None disables them.
            thresholds: SyncThresholds for strategy selection and batching.
            retry_policy: RetryPolicy for whole-sync retries.
            events: SyncEventEmitter to publish lifecycle events on.
            resolver: conflict resolver, last-writer-wins by default.
            sheet_names: per-entity sheet name overrides.
            selector: StrategySelector; built from the above when omitted.
            enabled: when False, perform_sync() returns reason="disabled".
            sleep: coroutine used for backoff delays (seconds).
        """
        self.store = store
        self.tracker = tracker
        self.client = client
        self.state_store = state_store or SyncStateStore()
        self.engine = engine
        self.thresholds = thresholds or SyncThresholds()
        self.retry_policy = retry_policy or RetryPolicy()
        self.events = events or SyncEventEmitter()
        self.resolver = resolver
        self.sheet_names = resolve_sheet_names(sheet_names)
        self.selector = selector or StrategySelector(
            store, tracker, client, thresholds=self.thresholds, sheet_names=sheet_names
        )
        self.enabled = enabled
        self._sleep = sleep

        self.state = self.state_store.load()
        self.is_syncing = False
        self.online: Optional[bool] = None
        self.last_result: Optional[SyncResult] = None
        self._headers_checked: Set[EntityType] = set()

    # ─── Public API ───────────────────────────────────────────────────────────

    async def perform_sync(self, options: Optional[SyncOptions] = None, **kwargs) -> SyncOutcome:
        """
        Run one sync, retrying the whole operation on retryable failures.

        Accepts a SyncOptions or the same fields as keyword arguments.
        Never raises for sync failures; inspect the returned SyncOutcome.
        """
        options = options or SyncOptions(**kwargs)

        if self.is_syncing:
            logger.info("Sync requested while another is running; ignoring")
            return SyncOutcome(success=False, reason="already_syncing")
        if not self.enabled:
            return SyncOutcome(success=False, reason="disabled")

        self.is_syncing = True
        try:
            log = self._create_sync_log()
            await self.events.emit(SyncEvent.SYNC_STARTED, {"options": options.__dict__})
            return await self._sync_with_retries(options, log)
        finally:
            self.is_syncing = False
            await self.events.emit(SyncEvent.STATUS_UPDATE, self.get_status())

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "online": self.online,
            "syncing": self.is_syncing,
            "last_sync": self.state.last_sync.model_dump(),
            "stats": self.state.stats.model_dump(),
            "pending_changes": self.tracker.stats(),
        }

    async def reset(self) -> None:
        """Forget sync history and all change entries; the next sync is full."""
        if self.is_syncing:
            raise SyncInProgressError("Cannot reset while a sync is running")
        self.state = self.state_store.reset()
        self.tracker.reset()
        self.last_result = None
        self._headers_checked.clear()
        logger.info("Sync state and change tracking reset")
        await self.events.emit(SyncEvent.STATUS_UPDATE, self.get_status())

    def cleanup_changes(self, days: float) -> int:
        return self.tracker.cleanup_older_than(days)

    # ─── Retry loop ───────────────────────────────────────────────────────────

    async def _sync_with_retries(self, options: SyncOptions, log: Optional[SyncLog]) -> SyncOutcome:
        attempt = 0
        while True:
            attempt += 1
            try:
                plan, result = await self._run_once(options)
            except Exception as exc:
                self._record_error(exc)
                if attempt <= self.retry_policy.max_retries and self.retry_policy.should_retry(exc):
                    delay_ms = self.retry_policy.compute_delay(attempt)
                    logger.warning(
                        "Sync attempt %d failed (%s); retrying in %d ms",
                        attempt,
                        exc,
                        delay_ms,
                    )
                    await self.events.emit(
                        SyncEvent.SYNC_RETRY,
                        {"attempt": attempt, "delay_ms": delay_ms, "error": str(exc)},
                    )
                    await self._sleep(delay_ms / 1000)
                    continue
                return await self._fail(exc, attempt, log)

            result.attempts = attempt
            return await self._succeed(plan, result, log)

    async def _succeed(self, plan: SyncPlan, result: SyncResult, log: Optional[SyncLog]) -> SyncOutcome:
        failed_types = {e["entity_type"] for e in result.errors}
        last_sync = self.state.last_sync
        for entity_type in plan.entities:
            if entity_type.value not in failed_types:
                last_sync.set_entity(entity_type, plan.created_at)
        if not failed_types:
            last_sync.timestamp = plan.created_at

        stats = self.state.stats
        stats.total_syncs += 1
        stats.successful_syncs += 1
        stats.uploaded_records += result.total_uploaded
        stats.downloaded_records += result.total_downloaded
        stats.conflicts_resolved += len(result.conflicts)
        if result.errors:
            stats.last_error = "; ".join(
                f"{e['entity_type']} {e['phase']}: {e['error']}" for e in result.errors
            )
            stats.last_error_at = now_iso()
        self._save_state()
        self.last_result = result

        status = "partial" if result.errors else "success"
        self._finish_sync_log(log, status=status, plan=plan, result=result)
        logger.info(
            "Sync %s (%s): uploaded=%d downloaded=%d conflicts=%d errors=%d",
            status,
            result.strategy,
            result.total_uploaded,
            result.total_downloaded,
            len(result.conflicts),
            len(result.errors),
        )
        await self.events.emit(
            SyncEvent.SYNC_COMPLETED,
            {
                "uploaded": dict(result.uploaded),
                "downloaded": dict(result.downloaded),
                "conflicts": len(result.conflicts),
                "errors": list(result.errors),
            },
        )
        return SyncOutcome(success=True, result=result)

    async def _fail(self, exc: Exception, attempts: int, log: Optional[SyncLog]) -> SyncOutcome:
        if isinstance(exc, ConnectivityError):
            self.online = False
        stats = self.state.stats
        stats.total_syncs += 1
        stats.failed_syncs += 1
        self._save_state()

        logger.error("Sync failed after %d attempt(s): %s", attempts, exc)
        self._finish_sync_log(log, status="error", attempts=attempts, error_message=str(exc))
        await self.events.emit(SyncEvent.SYNC_FAILED, {"error": str(exc), "attempts": attempts})
        return SyncOutcome(success=False, error=str(exc))

    def _record_error(self, exc: Exception) -> None:
        self.state.stats.last_error = str(exc) or exc.__class__.__name__
        self.state.stats.last_error_at = now_iso()

    # ─── One attempt ──────────────────────────────────────────────────────────

    async def _run_once(self, options: SyncOptions) -> Tuple[SyncPlan, SyncResult]:
        await self._check_prerequisites()

        plan = await self.selector.determine_strategy(
            self.state,
            force_full=options.force_full,
            entity_types=options.entity_types,
        )
        logger.info("Sync strategy: %s (%s)", plan.type.value, plan.reason)
        result = SyncResult(strategy=plan.type.value, reason=plan.reason)
        if plan.type is StrategyType.NONE:
            return plan, result

        conflict_keys: Set[Tuple[EntityType, str]] = set()

        if not options.download_only:
            volunteers = None
            attendance_plan = plan.entities.get(EntityType.ATTENDANCE)
            if attendance_plan is not None and attendance_plan.upload:
                volunteers = {
                    v["id"]: v for v in self.store.collection(EntityType.VOLUNTEERS).get_all()
                }
            for entity_type, entity_plan in plan.entities.items():
                if not (entity_plan.upload or entity_plan.change_ids):
                    continue
                try:
                    await self._upload_entity(
                        entity_type, entity_plan, plan, result, conflict_keys, volunteers
                    )
                except Exception as exc:
                    self._collect_error(result, entity_type, "upload", exc)

        for entity_type, entity_plan in plan.entities.items():
            if not entity_plan.download:
                continue
            try:
                await self._download_entity(entity_type, result, conflict_keys)
            except Exception as exc:
                self._collect_error(result, entity_type, "download", exc)

        return plan, result

    async def _check_prerequisites(self) -> None:
        if not self.client.is_configured():
            raise ConnectivityError("No spreadsheet configured (set SPREADSHEET_ID)")
        if not self.client.is_authenticated():
            raise AuthenticationError(
                "Not authenticated with Google Sheets. Run `python -m volunteer_sync setup`."
            )
        if not self.client.connected:
            await self.client.connect()
        try:
            await self.client.validate()
        except ConnectivityError:
            self.online = False
            raise
        self.online = True

    # ─── Upload phase ─────────────────────────────────────────────────────────

    async def _upload_entity(
        self,
        entity_type: EntityType,
        entity_plan: EntityPlan,
        plan: SyncPlan,
        result: SyncResult,
        conflict_keys: Set[Tuple[EntityType, str]],
        volunteers: Optional[Dict[str, Dict[str, Any]]],
    ) -> None:
        descriptor = descriptor_for(entity_type)
        sheet = self.sheet_names[entity_type]
        n_columns = len(descriptor.fields)
        last_sync = parse_iso(self.state.last_sync.for_entity(entity_type))

        batch = to_remote_rows(
            entity_plan.upload,
            entity_type,
            volunteers=volunteers if entity_type is EntityType.ATTENDANCE else None,
            synced_at=now_iso(),
        )
        skipped_ids = {exc.record_id for exc in batch.skipped}
        if batch.skipped:
            result.skipped[entity_type.value] = len(batch.skipped)

        new_rows: List[List[str]] = []
        updates: List[Tuple[int, List[str]]] = []
        if batch.items:
            await self._ensure_header(entity_type)
            existing = await self.client.read_range(data_range(sheet, n_columns))
            index: Dict[str, Tuple[int, List[str]]] = {}
            for offset, remote_row in enumerate(existing):
                if remote_row and str(remote_row[0]).strip():
                    index.setdefault(str(remote_row[0]).strip(), (offset + 2, remote_row))

            for record, row in batch.items:
                hit = index.get(row[0])
                if hit is None:
                    new_rows.append(row)
                    continue
                row_number, remote_row = hit
                if row_key(remote_row, descriptor) == row_key(row, descriptor):
                    continue

                remote = from_remote_row(remote_row, entity_type)
                differ = differing_fields(record, remote, entity_type)
                remote_ts = parse_iso(remote.get("updated_at"))
                both_changed = last_sync is None or (remote_ts is not None and remote_ts > last_sync)
                winner = self.resolver(record, remote)
                if winner is Winner.REMOTE:
                    # Keep the sheet's version; make sure the download phase fetches it
                    entity_plan.download = True
                    if differ:
                        self._add_conflict(result, conflict_keys, entity_type, record, remote, winner, "upload", differ)
                    continue
                if differ and both_changed:
                    self._add_conflict(result, conflict_keys, entity_type, record, remote, winner, "upload", differ)
                updates.append((row_number, row))

        target = data_range(sheet, n_columns)
        batch_size = max(1, self.thresholds.batch_size)
        for start in range(0, len(new_rows), batch_size):
            await self.client.append_rows(target, new_rows[start:start + batch_size])
        for row_number, row in updates:
            await self.client.write_range(row_range(sheet, row_number, n_columns), [row])

        uploaded = len(new_rows) + len(updates)
        if uploaded:
            result.uploaded[entity_type.value] = uploaded
        if entity_plan.deletes:
            # The sheet has no delete primitive; deletions stay local
            logger.info(
                "%d %s deletion(s) acknowledged locally only", len(entity_plan.deletes), entity_type.value
            )
            result.deleted[entity_type.value] = len(entity_plan.deletes)

        marked = self.tracker.mark_synced(
            entity_type,
            [i for i in entity_plan.change_ids if i not in skipped_ids],
            as_of=plan.created_at,
        )
        logger.info(
            "Uploaded %s: %d appended, %d updated, %d skipped, %d changes marked synced",
            entity_type.value,
            len(new_rows),
            len(updates),
            len(batch.skipped),
            marked,
        )

    async def _ensure_header(self, entity_type: EntityType) -> None:
        if entity_type in self._headers_checked:
            return
        descriptor = descriptor_for(entity_type)
        await self.client.ensure_header(self.sheet_names[entity_type], descriptor.headers)
        self._headers_checked.add(entity_type)

    # ─── Download phase ───────────────────────────────────────────────────────

    async def _download_entity(
        self,
        entity_type: EntityType,
        result: SyncResult,
        conflict_keys: Set[Tuple[EntityType, str]],
    ) -> None:
        descriptor = descriptor_for(entity_type)
        rows = await self.client.read_range(
            data_range(self.sheet_names[entity_type], len(descriptor.fields))
        )
        collection = self.store.collection(entity_type)
        last_sync = parse_iso(self.state.last_sync.for_entity(entity_type))
        downloaded = 0

        for remote in from_remote_rows(rows, entity_type):
            local = collection.get(remote["id"])
            if local is None:
                remote["synced_at"] = now_iso()
                collection.add(remote, origin=ORIGIN_SYNC)
                downloaded += 1
                continue

            winner = self.resolver(local, remote)
            differ = differing_fields(local, remote, entity_type)
            if winner is Winner.REMOTE:
                if differ:
                    self._add_conflict(result, conflict_keys, entity_type, local, remote, winner, "download", differ)
                patch = dict(remote)
                patch["synced_at"] = now_iso()
                collection.update(remote["id"], patch, origin=ORIGIN_SYNC)
                downloaded += 1
            elif differ:
                remote_ts = parse_iso(remote.get("updated_at"))
                if last_sync is None or (remote_ts is not None and remote_ts > last_sync):
                    self._add_conflict(result, conflict_keys, entity_type, local, remote, winner, "download", differ)

        if downloaded:
            result.downloaded[entity_type.value] = downloaded
        logger.info("Downloaded %s: %d of %d rows applied", entity_type.value, downloaded, len(rows))

    # ─── Internal helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _add_conflict(
        result: SyncResult,
        conflict_keys: Set[Tuple[EntityType, str]],
        entity_type: EntityType,
        local: Dict[str, Any],
        remote: Dict[str, Any],
        winner: Winner,
        phase: str,
        fields: List[str],
    ) -> None:
        key = (entity_type, str(local.get("id")))
        if key in conflict_keys:
            return
        conflict_keys.add(key)
        result.conflicts.append(
            Conflict(
                entity_type=entity_type.value,
                id=str(local.get("id")),
                winner=winner,
                local_updated_at=local.get("updated_at"),
                remote_updated_at=remote.get("updated_at"),
                phase=phase,
                fields=list(fields),
            )
        )

    @staticmethod
    def _collect_error(result: SyncResult, entity_type: EntityType, phase: str, exc: Exception) -> None:
        logger.warning("%s %s failed: %s", entity_type.value, phase, exc)
        result.errors.append(
            {"entity_type": entity_type.value, "phase": phase, "error": str(exc) or exc.__class__.__name__}
        )

    def _save_state(self) -> None:
        try:
            self.state_store.save(self.state)
        except OSError:
            logger.error("Could not persist sync state", exc_info=True)

    def _create_sync_log(self) -> Optional[SyncLog]:
        """Insert the running audit row. Returns None when it cannot be written."""
        if self.engine is None:
            return None
        log = SyncLog(started_at=utcnow(), status="running")
        try:
            with Session(self.engine) as s:
                s.add(log)
                s.commit()
                s.refresh(log)
        except SQLAlchemyError:
            logger.warning("Could not write sync log; continuing without audit row", exc_info=True)
            return None
        return log

    def _finish_sync_log(
        self,
        log: Optional[SyncLog],
        *,
        status: str,
        plan: Optional[SyncPlan] = None,
        result: Optional[SyncResult] = None,
        attempts: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        if log is None:
            return
        try:
            with Session(self.engine) as s:
                db_log = s.get(SyncLog, log.id)
                if db_log is None:
                    return
                db_log.status = status
                db_log.finished_at = utcnow()
                db_log.strategy = plan.type.value if plan else None
                if result is not None:
                    db_log.attempts = result.attempts
                    db_log.uploaded = result.total_uploaded
                    db_log.downloaded = result.total_downloaded
                    db_log.conflicts = len(result.conflicts)
                    if result.errors:
                        error_message = self.state.stats.last_error
                else:
                    db_log.attempts = attempts
                db_log.error_message = error_message
                s.add(db_log)
                s.commit()
        except SQLAlchemyError:
            logger.warning("Could not update sync log %s", log.id, exc_info=True)
