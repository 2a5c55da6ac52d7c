from __future__ import annotations

import threading

from config import CatalogSyncConfig
from services import catalog_sync
from services.catalog_models import (
    CatalogSourceError,
    CatalogSourceTimeout,
    CatalogStoreError,
    SyncErrorKind,
)
from services.catalog_store import SqliteCatalogStore
from services.catalog_sync import sync_catalog
from services.catalog_sync_log import SyncLogStore


def _product(sku, name="Silver Ring", price=499, hidden=False, **extra):
    raw = {
        "id": f"wa-{sku}",
        "retailerId": sku,
        "name": name,
        "description": "",
        "price": price,
        "currency": "INR",
        "isHidden": hidden,
    }
    raw.update(extra)
    return raw


def _by_sku(store, sku):
    return next((p for p in store.list_products() if p["sku"] == sku), None)


class FakeSource:
    def __init__(self, items=None, error=None):
        self.items = list(items or [])
        self.error = error
        self.calls = 0

    def fetch_items(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.items)


class FailingWriteStore(SqliteCatalogStore):
    def __init__(self, db_path, fail_skus):
        super().__init__(db_path)
        self.fail_skus = set(fail_skus)

    def create_product(self, fields):
        if fields.get("sku") in self.fail_skus:
            raise CatalogStoreError(f"write rejected for {fields['sku']}")
        return super().create_product(fields)


def _config(tmp_path) -> CatalogSyncConfig:
    return CatalogSyncConfig(db_path=tmp_path / "catalog.db")


def test_empty_catalog_succeeds_with_no_changes(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")

    result = sync_catalog(_config(tmp_path), source=FakeSource([]), store=store)

    assert result.success is True
    assert result.error is None
    assert result.fetched == 0
    assert result.changed == 0
    assert len(store.list_products()) == 0


def test_new_items_are_created_once_and_rerun_is_idempotent(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")
    source = FakeSource([_product("RING-1"), _product("RING-2"), _product("NECK-1", name="Chain", price="1299.50")])

    first = sync_catalog(_config(tmp_path), source=source, store=store)
    second = sync_catalog(_config(tmp_path), source=source, store=store)

    assert first.success is True
    assert first.created == 3
    assert second.success is True
    assert second.created == 0
    assert second.updated == 0
    assert second.deactivated == 0
    assert second.unchanged == 3
    assert len(store.list_products()) == 3
    chain = _by_sku(store, "NECK-1")
    assert chain["base_price"] == 1299.5
    assert chain["whatsapp_product_id"] == "wa-NECK-1"
    assert chain["is_active"] is True


def test_changed_fields_are_updated(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")
    sync_catalog(_config(tmp_path), source=FakeSource([_product("RING-1", price=499)]), store=store)

    result = sync_catalog(
        _config(tmp_path),
        source=FakeSource([_product("RING-1", name="Silver Ring XL", price=549)]),
        store=store,
    )

    assert result.success is True
    assert result.updated == 1
    assert result.created == 0
    ring = _by_sku(store, "RING-1")
    assert ring["name"] == "Silver Ring XL"
    assert ring["base_price"] == 549.0


def test_hidden_item_deactivates_local_product(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")
    sync_catalog(_config(tmp_path), source=FakeSource([_product("RING-1")]), store=store)

    hidden = FakeSource([_product("RING-1", hidden=True), _product("RING-9", hidden=True)])
    result = sync_catalog(_config(tmp_path), source=hidden, store=store)
    again = sync_catalog(_config(tmp_path), source=hidden, store=store)

    assert result.success is True
    assert result.deactivated == 1
    assert result.skipped == 1
    assert _by_sku(store, "RING-1")["is_active"] is False
    assert _by_sku(store, "RING-9") is None
    assert again.deactivated == 0
    assert again.unchanged == 1


def test_visible_again_reactivates_product(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")
    sync_catalog(_config(tmp_path), source=FakeSource([_product("RING-1")]), store=store)
    sync_catalog(_config(tmp_path), source=FakeSource([_product("RING-1", hidden=True)]), store=store)

    result = sync_catalog(_config(tmp_path), source=FakeSource([_product("RING-1")]), store=store)

    assert result.updated == 1
    assert _by_sku(store, "RING-1")["is_active"] is True


def test_items_without_sku_and_repeated_sku_are_skipped(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")
    no_sku = _product("X")
    no_sku.pop("retailerId")
    source = FakeSource([no_sku, _product("RING-1"), _product("RING-1", name="Dupe")])

    result = sync_catalog(_config(tmp_path), source=source, store=store)

    assert result.success is True
    assert result.created == 1
    assert result.skipped == 2
    assert _by_sku(store, "RING-1")["name"] == "Silver Ring"


def test_invalid_item_is_reported_but_others_are_processed(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")
    source = FakeSource([_product("RING-1"), _product("BAD-1", price="abc"), _product("RING-2")])

    result = sync_catalog(_config(tmp_path), source=source, store=store)

    assert result.success is False
    assert result.error_kind == SyncErrorKind.VALIDATION
    assert result.created == 2
    assert result.failed == 1
    assert result.errors[0].sku == "BAD-1"
    assert "BAD-1" in result.error
    assert len(store.list_products()) == 2


def test_duplicate_sku_keeps_first_copy_even_when_it_is_invalid(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")
    source = FakeSource([_product("RING-1", price="abc"), _product("RING-1", name="Ring v2", price=10)])

    result = sync_catalog(_config(tmp_path), source=source, store=store)

    assert result.success is False
    assert result.failed == 1
    assert result.skipped == 1
    assert result.created == 0
    assert store.list_products() == []


def test_transport_failure_returns_failed_result_without_writes(tmp_path):
    store = SqliteCatalogStore(tmp_path / "catalog.db")
    source = FakeSource(error=CatalogSourceError("Catalog source unreachable: connection refused"))

    result = sync_catalog(_config(tmp_path), source=source, store=store)

    assert result.success is False
    assert result.error_kind == SyncErrorKind.TRANSPORT
    assert "unreachable" in result.error
    assert len(store.list_products()) == 0


def test_timeout_is_a_failed_result(tmp_path):
    source = FakeSource(error=CatalogSourceTimeout("Catalog source timed out after 30.0s"))

    result = sync_catalog(_config(tmp_path), source=source, store=SqliteCatalogStore(tmp_path / "catalog.db"))

    assert result.success is False
    assert result.error_kind == SyncErrorKind.TIMEOUT


def test_store_write_failure_fails_the_run_and_retry_recovers(tmp_path):
    db_path = tmp_path / "catalog.db"
    source = FakeSource([_product("RING-1"), _product("RING-2")])

    failed = sync_catalog(_config(tmp_path), source=source, store=FailingWriteStore(db_path, {"RING-2"}))
    retried = sync_catalog(_config(tmp_path), source=source, store=SqliteCatalogStore(db_path))

    assert failed.success is False
    assert failed.error_kind == SyncErrorKind.PERSISTENCE
    assert failed.error
    assert failed.created == 1
    assert retried.success is True
    assert retried.created == 1
    assert retried.unchanged == 1
    assert len(SqliteCatalogStore(db_path).list_products()) == 2


def test_unexpected_exception_never_escapes(tmp_path):
    result = sync_catalog(
        _config(tmp_path),
        source=FakeSource(error=KeyError("products")),
        store=SqliteCatalogStore(tmp_path / "catalog.db"),
    )

    assert result.success is False
    assert result.error_kind == SyncErrorKind.UNKNOWN
    assert result.error


def test_overlapping_run_is_rejected_as_busy(tmp_path):
    started = threading.Event()
    release = threading.Event()

    class BlockingSource(FakeSource):
        def fetch_items(self):
            started.set()
            release.wait(timeout=5)
            return [_product("RING-1")]

    store = SqliteCatalogStore(tmp_path / "catalog.db")
    outcome = {}

    def _first_run():
        outcome["first"] = sync_catalog(_config(tmp_path), source=BlockingSource(), store=store)

    worker = threading.Thread(target=_first_run)
    worker.start()
    try:
        assert started.wait(timeout=5)
        assert catalog_sync.is_sync_running() is True
        second_source = FakeSource([_product("RING-2")])
        busy = sync_catalog(_config(tmp_path), source=second_source, store=store)
    finally:
        release.set()
        worker.join(timeout=5)

    assert busy.success is False
    assert busy.error_kind == SyncErrorKind.BUSY
    assert second_source.calls == 0
    assert outcome["first"].success is True
    assert catalog_sync.is_sync_running() is False


def test_sync_log_records_success_and_failure(tmp_path):
    db_path = tmp_path / "catalog.db"
    log = SyncLogStore(db_path)
    store = SqliteCatalogStore(db_path)

    ok = sync_catalog(_config(tmp_path), source=FakeSource([_product("RING-1")]), store=store, sync_log=log, trigger="cli")
    bad = sync_catalog(
        _config(tmp_path),
        source=FakeSource(error=CatalogSourceError("down")),
        store=store,
        sync_log=log,
    )

    ok_row = log.get(ok.run_id)
    bad_row = log.get(bad.run_id)
    assert ok_row["status"] == "success"
    assert ok_row["products_added"] == 1
    assert ok_row["trigger"] == "cli"
    assert ok_row["completed_at"]
    assert bad_row["status"] == "failed"
    assert bad_row["errors"][0]["kind"] == "transport"
    assert bad_row["errors"][0]["message"] == "down"


def test_diff_ignores_fields_missing_from_record():
    current = {"id": "p1", "sku": "RING-1", "name": "Ring", "base_price": 10, "is_active": 1}
    wanted = {"sku": "RING-1", "name": "Ring", "base_price": 10.0, "is_active": True, "currency": "INR"}

    assert catalog_sync.diff_product_fields(current, wanted) == {}
    assert catalog_sync.diff_product_fields(current, {**wanted, "base_price": 12.0}) == {"base_price": 12.0}
