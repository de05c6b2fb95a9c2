"""Tests for SyncEventEmitter."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from volunteer_sync.sync.events import SyncEvent, SyncEventEmitter


class TestSyncEventEmitter:
    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self):
        emitter = SyncEventEmitter()
        plain = MagicMock()
        coro = AsyncMock()
        emitter.on(SyncEvent.SYNC_STARTED, plain)
        emitter.on("sync_started", coro)

        await emitter.emit("sync_started", {"attempt": 1})

        plain.assert_called_once_with({"attempt": 1})
        coro.assert_awaited_once_with({"attempt": 1})

    @pytest.mark.asyncio
    async def test_only_matching_event(self):
        emitter = SyncEventEmitter()
        listener = MagicMock()
        emitter.on(SyncEvent.SYNC_FAILED, listener)
        await emitter.emit(SyncEvent.SYNC_COMPLETED)
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        emitter = SyncEventEmitter()
        listener = MagicMock()
        off = emitter.on(SyncEvent.STATUS_UPDATE, listener)
        off()
        off()
        await emitter.emit(SyncEvent.STATUS_UPDATE, {})
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self):
        emitter = SyncEventEmitter()
        broken = MagicMock(side_effect=RuntimeError("ui gone"))
        healthy = MagicMock()
        emitter.on(SyncEvent.SYNC_RETRY, broken)
        emitter.on(SyncEvent.SYNC_RETRY, healthy)
        await emitter.emit(SyncEvent.SYNC_RETRY, {"attempt": 2})
        healthy.assert_called_once_with({"attempt": 2})

    @pytest.mark.asyncio
    async def test_default_payload(self):
        emitter = SyncEventEmitter()
        listener = MagicMock()
        emitter.on(SyncEvent.SYNC_STARTED, listener)
        await emitter.emit(SyncEvent.SYNC_STARTED)
        listener.assert_called_once_with({})

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            SyncEventEmitter().on("sync_exploded", MagicMock())
