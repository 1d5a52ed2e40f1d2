"""Integration tests for /sync routes."""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from fieldsync.api.deps import get_queue, get_sync_service
from fieldsync.api.main import create_app
from fieldsync.db.engine import get_session
from fieldsync.models.sync import SyncLog
from fieldsync.sync.service import OutboxSyncService


@pytest.fixture(name="ingest")
def ingest_fixture():
    client = AsyncMock()
    client.submit = AsyncMock(return_value={"ok": True, "stage": "applied"})
    return client


@pytest.fixture(name="client")
def client_fixture(engine, queue, ingest):
    app = create_app()
    service = OutboxSyncService(queue, ingest)

    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_sync_service] = lambda: service
    with TestClient(app) as c:
        yield c


class TestSyncRoutes:
    def test_trigger_returns_200(self, client):
        # Patch _do_sync so the background task doesn't run a real pass
        with patch("fieldsync.api.routes.sync._do_sync", new=AsyncMock()) as do_sync:
            resp = client.post("/sync/trigger", json={})
        assert resp.status_code == 200
        assert "started" in resp.json()["message"].lower()
        do_sync.assert_awaited_once()

    def test_trigger_with_limit(self, client):
        with patch("fieldsync.api.routes.sync._do_sync", new=AsyncMock()) as do_sync:
            resp = client.post("/sync/trigger", json={"limit": 3})
        assert resp.status_code == 200
        assert resp.json()["limit"] == 3
        assert do_sync.await_args.args[1] == 3

    def test_trigger_default_limit_from_settings(self, client):
        with patch("fieldsync.api.routes.sync._do_sync", new=AsyncMock()), patch(
            "fieldsync.api.routes.sync.get_settings"
        ) as mock_settings:
            mock_settings.return_value.sync_batch_limit = 12
            resp = client.post("/sync/trigger", json={})
        assert resp.json()["limit"] == 12

    def test_trigger_runs_sync_in_background(self, client, queue, ingest):
        ids = [queue.append("task-update", entity_ref="T1") for _ in range(2)]

        resp = client.post("/sync/trigger", json={"limit": 10})

        assert resp.status_code == 200
        assert ingest.submit.await_count == 2
        for event_id in ids:
            assert queue.get(event_id).server_stage == "applied"

    def test_reset_failed(self, client, queue):
        failed = queue.append("task-update")
        queue.mark_failed(failed, "boom")
        queue.append("task-update")

        resp = client.post("/sync/reset-failed")

        assert resp.status_code == 200
        assert resp.json() == {"reset": 1}
        assert queue.get(failed).sync_status == "pending"

    def test_status_never_run(self, client):
        resp = client.get("/sync/status")
        assert resp.status_code == 200
        assert resp.json()["status"] == "never_run"

    def test_status_after_log_created(self, client, engine):
        with Session(engine) as s:
            s.add(SyncLog(
                started_at=datetime(2025, 1, 15, 7, 0, tzinfo=timezone.utc),
                finished_at=datetime(2025, 1, 15, 7, 1, tzinfo=timezone.utc),
                status="partial",
                events_synced=4,
                events_failed=1,
            ))
            s.commit()
        resp = client.get("/sync/status")
        assert resp.status_code == 200
        assert resp.json()["status"] == "partial"
        assert resp.json()["events_synced"] == 4
        assert resp.json()["events_failed"] == 1
        assert resp.json()["started_at"] == "2025-01-15T07:00:00Z"

    def test_status_reflects_latest_run(self, client, queue):
        queue.append("task-update")
        client.post("/sync/trigger", json={})

        body = client.get("/sync/status").json()
        assert body["status"] == "success"
        assert body["events_synced"] == 1

    def test_empty_trigger_leaves_status_unchanged(self, client, ingest):
        client.post("/sync/trigger", json={})

        ingest.submit.assert_not_awaited()
        assert client.get("/sync/status").json()["status"] == "never_run"
