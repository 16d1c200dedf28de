"""Integration tests for /sync routes."""
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from catalogsync.api.main import create_app
from catalogsync.api.routes.sync import format_sse
from catalogsync.catalog.errors import CatalogFetchError
from catalogsync.scheduler.background import BackgroundSyncConfig, BackgroundSyncScheduler
from catalogsync.sync.types import SyncConfig, SyncEvent, SyncEventType, SyncPhase, SyncProgress, SyncStatus

TENANT = "t1"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="scheduler")
def scheduler_fixture(engine, catalog, clock):
    aps = MagicMock()
    aps.running = True
    scheduler = BackgroundSyncScheduler(
        engine,
        catalog,
        scheduler=aps,
        config=BackgroundSyncConfig(enabled=False, sync_when_idle=False),
        sync_config=SyncConfig(batch_delay_ms=0),
        clock=clock,
    )
    scheduler.initialize(TENANT)
    return scheduler


@pytest.fixture(name="client")
def client_fixture(engine, scheduler):
    app = create_app(engine=engine, scheduler=scheduler)
    with TestClient(app) as c:
        yield c


class TestStart:
    def test_start_runs_sync_in_background(self, client):
        resp = client.post("/sync/start", json={})
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

        status = client.get("/sync/status").json()
        assert status["state"]["status"] == "completed"
        assert status["state"]["total_songs_indexed"] == 15
        assert status["scheduler"]["last_result"]["stats"]["songs_indexed"] == 15

    def test_start_while_running_conflicts(self, client, scheduler):
        scheduler.is_running = MagicMock(return_value=True)
        resp = client.post("/sync/start", json={"force": False})
        assert resp.status_code == 409

    def test_forced_start_accepted_while_running(self, client, scheduler):
        scheduler.is_running = MagicMock(return_value=True)
        resp = client.post("/sync/start", json={"force": True})
        assert resp.status_code == 200
        assert resp.json()["data"] == {"force": True}


class TestControl:
    def test_pause_without_sync_conflicts(self, client):
        assert client.post("/sync/pause").status_code == 409

    def test_resume_without_pause_conflicts(self, client):
        assert client.post("/sync/resume").status_code == 409

    def test_abort_without_sync(self, client):
        resp = client.post("/sync/abort")
        assert resp.status_code == 200
        assert resp.json()["ok"] is False


class TestStatus:
    def test_status_before_first_sync(self, client):
        resp = client.get("/sync/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["state"] is None
        assert data["scheduler"]["is_running"] is False
        assert data["recent_errors"] == []

    def test_errors_listed_after_failed_sync(self, client, catalog):
        catalog.artist_error = CatalogFetchError("catalog offline")
        client.post("/sync/start", json={})

        status = client.get("/sync/status").json()
        assert status["state"]["status"] == "error"
        assert status["recent_errors"][0]["error_type"] == "fetch"

        errors = client.get("/sync/errors", params={"limit": 5}).json()
        assert len(errors) == 1
        assert errors[0]["error_message"] == "catalog offline"

    def test_errors_limit_validated(self, client):
        assert client.get("/sync/errors", params={"limit": 0}).status_code == 422


class TestSettings:
    def test_get_settings(self, client):
        data = client.get("/sync/settings").json()
        assert data["sync"]["batch_size"] == 50
        assert data["background"]["enabled"] is False

    def test_update_settings(self, client):
        resp = client.post("/sync/settings", json={"batch_size": 10, "interval_minutes": 15})
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

        data = client.get("/sync/settings").json()
        assert data["sync"]["batch_size"] == 10
        assert data["sync"]["sync_frequency_minutes"] == 15
        assert data["background"]["interval_minutes"] == 15

    def test_invalid_settings_rejected(self, client):
        assert client.post("/sync/settings", json={"batch_size": 0}).status_code == 422


class TestActivity:
    def test_activity_endpoint(self, client, scheduler, clock):
        clock.now += 3600
        assert scheduler.is_idle() is True
        client.post("/sync/activity")
        assert scheduler.is_idle() is False

    def test_non_sync_requests_count_as_activity(self, client, scheduler, clock):
        clock.now += 3600
        client.get("/openapi.json")
        assert scheduler.is_idle() is False

    def test_sync_requests_do_not_count(self, client, scheduler, clock):
        clock.now += 3600
        client.get("/sync/status")
        assert scheduler.is_idle() is True


def test_format_sse():
    event = SyncEvent(
        type=SyncEventType.PHASE_COMPLETE,
        progress=SyncProgress(status=SyncStatus.RUNNING, phase=SyncPhase.ARTISTS),
    )
    message = format_sse(event)

    assert message.startswith("event: phase-complete\ndata: ")
    assert message.endswith("\n\n")
    payload = json.loads(message.split("data: ", 1)[1])
    assert payload["progress"]["phase"] == "artists"
