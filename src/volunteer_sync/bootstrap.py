"""
Composition root: builds the store, tracker, Sheets client and SyncService
and wires the tracker to the store's mutation feed.

Everything that needs "the" sync service gets it from here (or by
dependency injection in tests); there is no module-level sync manager.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from volunteer_sync.config import Settings, get_settings
from volunteer_sync.sheets.auth import SheetsAuth
from volunteer_sync.sheets.client import SheetsClient
from volunteer_sync.store.local import LocalStore
from volunteer_sync.sync.service import SyncService
from volunteer_sync.sync.state import SyncStateStore
from volunteer_sync.sync.tracker import ChangeTracker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: object
    store: LocalStore
    tracker: ChangeTracker
    client: SheetsClient
    service: SyncService
    _unsubscribers: List[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        """Detach store subscribers."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()


def build_services(
    settings: Optional[Settings] = None,
    engine=None,
    client=None,
) -> Services:
    """
    Wire up the sync stack.

    Args:
        settings: Settings; defaults to get_settings().
        engine: SQLAlchemy engine; defaults to the shared get_engine().
        client: remote store client; defaults to a SheetsClient reading the
                saved service-account key from settings.credentials_dir.
    """
    settings = settings or get_settings()
    if engine is None:
        from volunteer_sync.db.engine import get_engine
        engine = get_engine()

    store = LocalStore(engine)
    tracker = ChangeTracker(engine)
    loaded = tracker.load()
    if loaded:
        logger.info("Loaded %d tracked changes", loaded)

    if client is None:
        client = SheetsClient(
            settings.spreadsheet_id,
            auth=SheetsAuth(settings.credentials_dir),
        )

    service = SyncService(
        store,
        tracker,
        client,
        SyncStateStore.in_dir(settings.state_dir),
        engine=engine,
        thresholds=settings.thresholds(),
        retry_policy=settings.retry_policy(),
        sheet_names=settings.sheet_names(),
        enabled=settings.sync_enabled,
    )

    services = Services(
        settings=settings,
        engine=engine,
        store=store,
        tracker=tracker,
        client=client,
        service=service,
    )
    services._unsubscribers.append(store.subscribe(tracker.handle_mutation))
    return services


_services: Optional[Services] = None


def get_services() -> Services:
    """Return the process-wide Services, building them on first call."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def get_sync_service() -> SyncService:
    """FastAPI dependency."""
    return get_services().service


def get_store() -> LocalStore:
    """FastAPI dependency."""
    return get_services().store
