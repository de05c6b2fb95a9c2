"""Tests for the local record store and its mutation feed."""
from unittest.mock import MagicMock

import pytest

from volunteer_sync.entities import EntityType, Operation
from volunteer_sync.store.local import (
    ORIGIN_LOCAL,
    ORIGIN_SYNC,
    DuplicateRecordError,
    RecordNotFoundError,
)


@pytest.fixture
def volunteers(store):
    return store.collection(EntityType.VOLUNTEERS)


class TestRecordCollection:
    def test_add_stamps_timestamps(self, volunteers):
        saved = volunteers.add({"id": "V1", "name": "Ada"})
        assert saved["created_at"]
        assert saved["updated_at"] == saved["created_at"]
        assert saved["synced_at"] is None

    def test_add_keeps_supplied_timestamps(self, volunteers):
        saved = volunteers.add({"id": "V1", "name": "Ada", "updated_at": "2025-01-01T00:00:00.000Z"})
        assert saved["updated_at"] == "2025-01-01T00:00:00.000Z"

    def test_add_ignores_unknown_fields(self, volunteers):
        saved = volunteers.add({"id": "V1", "name": "Ada", "shoe_size": 42})
        assert "shoe_size" not in saved

    def test_add_requires_id(self, volunteers):
        with pytest.raises(ValueError):
            volunteers.add({"name": "Nobody"})

    def test_add_duplicate(self, volunteers):
        volunteers.add({"id": "V1", "name": "Ada"})
        with pytest.raises(DuplicateRecordError):
            volunteers.add({"id": "V1", "name": "Ada again"})

    def test_get_and_get_all(self, volunteers):
        volunteers.add({"id": "V1", "name": "Ada"})
        volunteers.add({"id": "V2", "name": "Grace"})
        assert volunteers.get("V1")["name"] == "Ada"
        assert volunteers.get("V9") is None
        assert {r["id"] for r in volunteers.get_all()} == {"V1", "V2"}

    def test_local_update_bumps_updated_at(self, volunteers):
        volunteers.add({"id": "V1", "name": "Ada", "updated_at": "2025-01-01T00:00:00.000Z"})
        saved = volunteers.update("V1", {"name": "Ada L.", "updated_at": "1999-01-01T00:00:00.000Z"})
        assert saved["name"] == "Ada L."
        assert saved["updated_at"] > "2025-01-01T00:00:00.000Z"

    def test_sync_update_keeps_remote_timestamps(self, volunteers):
        volunteers.add({"id": "V1", "name": "Ada"})
        saved = volunteers.update(
            "V1",
            {"name": "Remote", "updated_at": "2030-01-01T00:00:00.000Z", "synced_at": "2030-01-01T00:00:01.000Z"},
            origin=ORIGIN_SYNC,
        )
        assert saved["updated_at"] == "2030-01-01T00:00:00.000Z"
        assert saved["synced_at"] == "2030-01-01T00:00:01.000Z"

    def test_update_cannot_change_id(self, volunteers):
        volunteers.add({"id": "V1", "name": "Ada"})
        volunteers.update("V1", {"id": "V2"})
        assert volunteers.get("V1") is not None
        assert volunteers.get("V2") is None

    def test_update_missing(self, volunteers):
        with pytest.raises(RecordNotFoundError):
            volunteers.update("nope", {"name": "x"})

    def test_delete(self, volunteers):
        volunteers.add({"id": "V1", "name": "Ada"})
        volunteers.delete("V1")
        assert volunteers.get("V1") is None

    def test_delete_missing_is_noop(self, volunteers):
        volunteers.delete("nope")

    def test_event_defaults(self, store):
        saved = store.collection("events").add({"id": "E1", "name": "Party", "date": "2025-09-07"})
        assert saved["status"] == "Active"
        assert saved["description"] == ""

    def test_attendance_defaults(self, store):
        saved = store.collection("attendance").add(
            {"id": "A1", "volunteer_id": "V1", "event_id": "E1", "date": "2025-09-07"}
        )
        assert saved["validation_status"] == "ID Found"
        assert saved["scanner_mode"] == "strict"


class TestMutationFeed:
    def test_listener_receives_committed_mutations(self, store, volunteers):
        listener = MagicMock()
        store.subscribe(listener)
        volunteers.add({"id": "V1", "name": "Ada"})
        volunteers.update("V1", {"name": "B"})
        volunteers.delete("V1")

        ops = [c.args[0].operation for c in listener.call_args_list]
        assert ops == [Operation.CREATE, Operation.UPDATE, Operation.DELETE]
        delete = listener.call_args_list[-1].args[0]
        assert delete.entity_type is EntityType.VOLUNTEERS
        assert delete.data["name"] == "B"
        assert delete.origin == ORIGIN_LOCAL

    def test_sync_origin_is_carried(self, store, volunteers):
        listener = MagicMock()
        store.subscribe(listener)
        volunteers.add({"id": "V1", "name": "Ada"}, origin=ORIGIN_SYNC)
        assert listener.call_args.args[0].origin == ORIGIN_SYNC

    def test_deleting_absent_record_emits_nothing(self, store, volunteers):
        listener = MagicMock()
        store.subscribe(listener)
        volunteers.delete("nope")
        listener.assert_not_called()

    def test_unsubscribe(self, store, volunteers):
        listener = MagicMock()
        unsubscribe = store.subscribe(listener)
        unsubscribe()
        volunteers.add({"id": "V1", "name": "Ada"})
        listener.assert_not_called()

    def test_broken_listener_does_not_undo_write(self, store, volunteers):
        healthy = MagicMock()
        store.subscribe(MagicMock(side_effect=RuntimeError("observer crashed")))
        store.subscribe(healthy)
        volunteers.add({"id": "V1", "name": "Ada"})
        assert volunteers.get("V1") is not None
        healthy.assert_called_once()
