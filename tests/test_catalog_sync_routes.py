from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from config import CatalogSyncConfig
from routes import catalog_sync_routes as routes
from services import catalog_sync
from services.catalog_models import CatalogSourceError, CatalogStoreError
from services.catalog_store import SqliteCatalogStore
from services.catalog_sync_log import SyncLogStore


class FakeSource:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error

    def fetch_items(self):
        if self.error:
            raise self.error
        return list(self.items)


class RejectingStore(SqliteCatalogStore):
    def create_product(self, fields):
        raise CatalogStoreError("products collection rejected the write")


def _items():
    return [
        {"id": "wa-1", "retailerId": "RING-1", "name": "Ring", "price": 250, "isHidden": False},
        {"id": "wa-2", "retailerId": "RING-2", "name": "Band", "price": 300, "isHidden": False},
    ]


def _build_client(monkeypatch, tmp_path, *, source=None, store=None, secret=None) -> TestClient:
    db_path = tmp_path / "catalog.db"
    config = CatalogSyncConfig(db_path=db_path, sync_secret=secret)
    log = SyncLogStore(db_path)
    store = store or SqliteCatalogStore(db_path)
    source = source or FakeSource(_items())
    monkeypatch.setattr(routes, "get_sync_config", lambda: config)
    monkeypatch.setattr(routes, "get_sync_log", lambda: log)
    monkeypatch.setattr(routes, "build_catalog_source", lambda _cfg: source)
    monkeypatch.setattr(routes, "build_catalog_store", lambda _cfg: store)

    app = FastAPI()
    routes.register_catalog_sync_routes(app)
    return TestClient(app)


def test_post_then_get_share_result_shape(monkeypatch, tmp_path):
    client = _build_client(monkeypatch, tmp_path)

    first = client.post("/api/catalog-sync")
    second = client.get("/api/catalog-sync")

    assert first.status_code == 200
    assert second.status_code == 200
    first_body, second_body = first.json(), second.json()
    assert set(first_body) == set(second_body)
    assert first_body["success"] is True
    assert "error" not in first_body
    assert first_body["created"] == 2
    assert second_body["created"] == 0
    assert second_body["unchanged"] == 2


@pytest.mark.parametrize("method", ["get", "post"])
def test_transport_failure_maps_to_500(monkeypatch, tmp_path, method):
    client = _build_client(monkeypatch, tmp_path, source=FakeSource(error=CatalogSourceError("Sidecar unreachable")))

    resp = getattr(client, method)("/api/catalog-sync")

    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Sidecar unreachable"
    assert body["error_kind"] == "transport"


def test_store_write_failure_maps_to_500(monkeypatch, tmp_path):
    client = _build_client(monkeypatch, tmp_path, store=RejectingStore(tmp_path / "catalog.db"))

    resp = client.post("/api/catalog-sync")

    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["error_kind"] == "persistence"
    assert body["failed"] == 2
    assert "rejected" in body["error"]


def test_exception_escaping_the_job_becomes_500_envelope(monkeypatch, tmp_path):
    client = _build_client(monkeypatch, tmp_path)

    def _boom(trigger="http"):
        raise RuntimeError("boom")

    monkeypatch.setattr(routes, "run_catalog_sync", _boom)

    resp = client.get("/api/catalog-sync")

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "boom", "error_kind": "unknown"}


def test_busy_run_maps_to_409(monkeypatch, tmp_path):
    client = _build_client(monkeypatch, tmp_path)

    assert catalog_sync._SYNC_LOCK.acquire(blocking=False)
    try:
        resp = client.post("/api/catalog-sync")
    finally:
        catalog_sync._SYNC_LOCK.release()

    assert resp.status_code == 409
    body = resp.json()
    assert body["success"] is False
    assert body["error_kind"] == "busy"


def test_bearer_secret_is_enforced_when_configured(monkeypatch, tmp_path):
    client = _build_client(monkeypatch, tmp_path, secret="s3cret")

    denied = client.post("/api/catalog-sync")
    wrong = client.post("/api/catalog-sync", headers={"Authorization": "Bearer nope"})
    allowed = client.post("/api/catalog-sync", headers={"Authorization": "Bearer s3cret"})

    assert denied.status_code == 401
    assert denied.json()["success"] is False
    assert denied.json() == {"success": False, "error": "Unauthorized", "error_kind": "unknown"}
    assert wrong.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["success"] is True


def test_logs_and_status_report_recent_runs(monkeypatch, tmp_path):
    client = _build_client(monkeypatch, tmp_path)
    client.post("/api/catalog-sync")

    logs = client.get("/api/catalog-sync/logs", params={"limit": 5})
    status = client.get("/api/catalog-sync/status")

    assert logs.status_code == 200
    entries = logs.json()["logs"]
    assert len(entries) == 1
    assert entries[0]["status"] == "success"
    assert entries[0]["trigger"] == "http"
    assert entries[0]["products_added"] == 2

    data = status.json()
    assert data["ok"] is True
    assert data["running"] is False
    assert data["last_run"]["id"] == entries[0]["id"]
    assert {t["label"] for t in data["timings"]} >= {"catalog_fetch", "store_load", "catalog_reconcile"}
    assert data["scheduler"]["running"] is False
