"""Sync lifecycle events for the UI and other observers."""
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SyncEvent(str, Enum):
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"  # {uploaded, downloaded, conflicts, errors}
    SYNC_FAILED = "sync_failed"  # {error}
    SYNC_RETRY = "sync_retry"  # {attempt, delay_ms, error}
    STATUS_UPDATE = "status_update"  # {enabled, online, syncing, last_sync, stats}


Listener = Callable[[Dict[str, Any]], Any]


class SyncEventEmitter:
    """Minimal pub/sub. Listeners may be plain functions or coroutines."""

    def __init__(self):
        self._listeners: Dict[SyncEvent, List[Listener]] = {event: [] for event in SyncEvent}

    def on(self, event, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event; returns an unsubscribe callable."""
        event = SyncEvent(event)
        self._listeners[event].append(listener)

        def off() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return off

    async def emit(self, event, payload: Optional[Dict[str, Any]] = None) -> None:
        event = SyncEvent(event)
        payload = payload or {}
        for listener in list(self._listeners[event]):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener for %s failed", event.value)
