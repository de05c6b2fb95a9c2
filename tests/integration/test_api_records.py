"""Integration tests for /records routes."""
import asyncio

import pytest
from fastapi.testclient import TestClient

from volunteer_sync.api.main import create_app
from volunteer_sync.bootstrap import get_store


@pytest.fixture(name="client")
def client_fixture(store, tracker):
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c


class TestRecordRoutes:
    def test_create_and_get(self, client):
        resp = client.post("/records/volunteers", json={"id": "V1", "name": "Ada"})
        assert resp.status_code == 201
        assert resp.json()["created_at"]

        resp = client.get("/records/volunteers/V1")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Ada"

    def test_list(self, client):
        client.post("/records/events", json={"id": "E1", "name": "Party", "date": "2025-09-07"})
        resp = client.get("/records/events")
        assert resp.status_code == 200
        assert [e["id"] for e in resp.json()] == ["E1"]

    def test_unknown_entity_type(self, client):
        assert client.get("/records/donations").status_code == 422

    def test_get_missing(self, client):
        assert client.get("/records/volunteers/nope").status_code == 404

    def test_create_invalid(self, client):
        resp = client.post("/records/volunteers", json={"id": "V1", "email": "nope"})
        assert resp.status_code == 422
        assert len(resp.json()["detail"]) == 2

    def test_create_duplicate(self, client):
        client.post("/records/volunteers", json={"id": "V1", "name": "Ada"})
        resp = client.post("/records/volunteers", json={"id": "V1", "name": "Again"})
        assert resp.status_code == 409

    def test_create_is_tracked(self, client, tracker):
        client.post("/records/volunteers", json={"id": "V1", "name": "Ada"})
        assert tracker.pending_count("volunteers") == 1

    def test_patch(self, client):
        client.post("/records/events", json={"id": "E1", "name": "Party", "date": "2025-09-07"})
        resp = client.patch("/records/events/E1", json={"start_time": "10:00"})
        assert resp.status_code == 200
        assert resp.json()["start_time"] == "10:00"

    def test_patch_invalid(self, client):
        client.post("/records/events", json={"id": "E1", "name": "Party", "date": "2025-09-07"})
        resp = client.patch("/records/events/E1", json={"date": "next week"})
        assert resp.status_code == 422

    def test_patch_missing(self, client):
        assert client.patch("/records/events/E9", json={"name": "x"}).status_code == 404

    def test_delete(self, client, tracker):
        client.post("/records/volunteers", json={"id": "V1", "name": "Ada"})
        resp = client.delete("/records/volunteers/V1")
        assert resp.status_code == 204
        assert client.get("/records/volunteers/V1").status_code == 404
        assert tracker.get_changes_since("volunteers")[0].operation.value == "delete"

    def test_delete_missing(self, client):
        assert client.delete("/records/volunteers/nope").status_code == 404

    def test_mutations_reach_listeners_on_event_loop(self, client, store):
        # get_running_loop raises in a threadpool worker; the store logs and drops it
        seen = []

        def listener(mutation):
            asyncio.get_running_loop()
            seen.append(mutation.operation.value)

        store.subscribe(listener)
        client.post("/records/volunteers", json={"id": "V1", "name": "Ada"})
        client.patch("/records/volunteers/V1", json={"name": "Ada L."})
        client.delete("/records/volunteers/V1")
        assert seen == ["create", "update", "delete"]
