"""
Catalog sync job.

One pass pulls the WhatsApp catalog from the sidecar and reconciles it into the
local products store, keyed by SKU (the catalog's retailerId):

- missing locally            -> create
- present with other fields  -> update only the differing fields
- hidden in the catalog      -> deactivate the local product
- no SKU / repeated SKU      -> skip

Items are processed best-effort: one bad item is recorded and the pass carries on,
but the run reports success only when every item went through. Runs are
single-flight; an overlapping trigger is rejected with a "busy" result.
Nothing raised inside a pass escapes sync_catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from config import CatalogSyncConfig
from services.catalog_models import (
    CatalogItem,
    CatalogItemError,
    CatalogStoreError,
    ItemError,
    SyncErrorKind,
    SyncResult,
    classify_exception,
    normalize_sidecar_product,
)
from services.catalog_source import CatalogSource, build_catalog_source
from services.catalog_store import CatalogStore, build_catalog_store
from services.catalog_sync_log import STATUS_FAILED, STATUS_SUCCESS, SyncLogStore
from services.perf import run_timings, time_block

LOGGER = logging.getLogger(__name__)
_SYNC_LOCK = Lock()
MAX_LOGGED_ERRORS = 100

CREATED = "created"
UPDATED = "updated"
DEACTIVATED = "deactivated"
UNCHANGED = "unchanged"
SKIPPED = "skipped"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def is_sync_running() -> bool:
    return _SYNC_LOCK.locked()


@dataclass
class _Tally:
    fetched: int = 0
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: List[ItemError] = field(default_factory=list)

    def count(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)

    def fail(self, sku: Optional[str], kind: SyncErrorKind, message: str) -> None:
        self.errors.append(ItemError(sku=sku, kind=kind, message=message))

    def summary_error(self) -> Optional[str]:
        if not self.errors:
            return None
        first = self.errors[0]
        label = f" ({first.sku})" if first.sku else ""
        return (
            f"{len(self.errors)} of {self.fetched} catalog item(s) failed to sync; "
            f"first error{label}: {first.message}"
        )

    def summary_kind(self) -> Optional[SyncErrorKind]:
        kinds = {e.kind for e in self.errors}
        if not kinds:
            return None
        return kinds.pop() if len(kinds) == 1 else SyncErrorKind.UNKNOWN


def _same(current: Any, wanted: Any) -> bool:
    if isinstance(wanted, bool):
        return bool(current) == wanted
    if isinstance(wanted, float):
        try:
            return round(float(current), 2) == round(wanted, 2)
        except (TypeError, ValueError):
            return False
    return (current or None) == (wanted or None)


def diff_product_fields(current: Dict[str, Any], wanted: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fields of `wanted` that differ from the stored record.
    Keys the stored record does not carry are ignored so a store schema without
    e.g. currency does not produce an update on every pass.
    """
    return {
        key: value
        for key, value in wanted.items()
        if key != "sku" and key in current and not _same(current.get(key), value)
    }


def _raw_sku(raw: Dict[str, Any]) -> str:
    return str(raw.get("retailerId") or raw.get("sku") or "").strip()


def _index_by_sku(products: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    indexed: Dict[str, Dict[str, Any]] = {}
    for product in products:
        sku = (product.get("sku") or "").strip()
        if not sku:
            continue
        if sku in indexed:
            LOGGER.warning("[CatalogSync] Duplicate local SKU %s; keeping first record", sku)
            continue
        indexed[sku] = product
    return indexed


def _apply_item(item: CatalogItem, current: Optional[Dict[str, Any]], store: CatalogStore) -> str:
    if current is not None and not current.get("id"):
        raise CatalogStoreError(f"Stored product {item.sku} has no id")

    if item.is_hidden:
        if current is None:
            return SKIPPED
        if not current.get("is_active"):
            return UNCHANGED
        store.update_product(
            current["id"],
            diff_product_fields(current, {"is_active": False, "whatsapp_product_id": item.external_id}),
        )
        return DEACTIVATED

    wanted = item.store_fields()
    if current is None:
        store.create_product(wanted)
        return CREATED

    changes = diff_product_fields(current, wanted)
    if not changes:
        return UNCHANGED
    store.update_product(current["id"], changes)
    return UPDATED


def reconcile_items(
    raw_items: List[Any],
    existing: Dict[str, Dict[str, Any]],
    store: CatalogStore,
    *,
    default_currency: str = "INR",
) -> _Tally:
    tally = _Tally(fetched=len(raw_items))
    seen = set()
    for raw in raw_items:
        raw_sku = _raw_sku(raw) if isinstance(raw, dict) else None
        if isinstance(raw, dict) and not raw_sku:
            tally.count(SKIPPED)
            continue
        if raw_sku in seen:
            LOGGER.warning("[CatalogSync] SKU %s appears more than once in the catalog; skipping repeat", raw_sku)
            tally.count(SKIPPED)
            continue
        if raw_sku:
            seen.add(raw_sku)
        try:
            item = normalize_sidecar_product(raw, default_currency)
        except CatalogItemError as exc:
            LOGGER.warning("[CatalogSync] Rejected catalog item %s: %s", exc.sku or "?", exc)
            tally.fail(exc.sku, exc.kind, str(exc))
            continue

        try:
            outcome = _apply_item(item, existing.get(item.sku), store)
        except Exception as exc:
            kind = classify_exception(exc)
            LOGGER.error("[CatalogSync] Error processing product %s: %s", item.sku, exc)
            tally.fail(item.sku, kind, str(exc) or exc.__class__.__name__)
            continue
        tally.count(outcome)
    return tally


def _log_start(sync_log: Optional[SyncLogStore], trigger: str, started: datetime) -> Optional[str]:
    if sync_log is None:
        return None
    try:
        return sync_log.start(trigger, now=started)
    except Exception as exc:
        LOGGER.warning("[CatalogSync] Failed to create sync log: %s", exc)
        return None


def _log_finish(sync_log: Optional[SyncLogStore], log_id: Optional[str], result: SyncResult) -> None:
    if sync_log is None or not log_id:
        return
    errors = [e.model_dump(mode="json") for e in result.errors[:MAX_LOGGED_ERRORS]]
    if not result.success and not result.errors:
        errors.append({"kind": (result.error_kind or SyncErrorKind.UNKNOWN).value, "message": result.error})
    try:
        sync_log.finish(
            log_id,
            status=STATUS_SUCCESS if result.success else STATUS_FAILED,
            added=result.created,
            updated=result.updated,
            deactivated=result.deactivated,
            skipped=result.skipped,
            errors=errors,
        )
    except Exception as exc:
        LOGGER.warning("[CatalogSync] Failed to finish sync log %s: %s", log_id, exc)


def _run_pass(
    config: CatalogSyncConfig,
    source: Optional[CatalogSource],
    store: Optional[CatalogStore],
    sync_log: Optional[SyncLogStore],
    trigger: str,
) -> SyncResult:
    started = _now_utc()
    log_id = _log_start(sync_log, trigger, started)
    LOGGER.info("[CatalogSync] start (trigger=%s, run=%s)", trigger, log_id)

    with run_timings():
        try:
            source = source or build_catalog_source(config)
            store = store or build_catalog_store(config)
            with time_block("catalog_fetch"):
                raw_items = source.fetch_items()
            with time_block("store_load"):
                existing = _index_by_sku(store.list_products())
            with time_block("catalog_reconcile"):
                tally = reconcile_items(
                    raw_items,
                    existing,
                    store,
                    default_currency=config.default_currency,
                )
        except Exception as exc:
            kind = classify_exception(exc)
            LOGGER.error("[CatalogSync] failed (%s): %s", kind.value, exc, exc_info=kind == SyncErrorKind.UNKNOWN)
            result = SyncResult.failure(
                str(exc) or exc.__class__.__name__,
                kind,
                run_id=log_id,
                started_at=started.isoformat(),
                finished_at=_now_utc().isoformat(),
            )
            _log_finish(sync_log, log_id, result)
            return result

    result = SyncResult(
        success=not tally.errors,
        error=tally.summary_error(),
        error_kind=tally.summary_kind(),
        run_id=log_id,
        fetched=tally.fetched,
        created=tally.created,
        updated=tally.updated,
        deactivated=tally.deactivated,
        unchanged=tally.unchanged,
        skipped=tally.skipped,
        failed=len(tally.errors),
        errors=tally.errors,
        started_at=started.isoformat(),
        finished_at=_now_utc().isoformat(),
    )
    LOGGER.info(
        "[CatalogSync] done | success=%s fetched=%s created=%s updated=%s deactivated=%s "
        "unchanged=%s skipped=%s failed=%s",
        result.success,
        result.fetched,
        result.created,
        result.updated,
        result.deactivated,
        result.unchanged,
        result.skipped,
        result.failed,
    )
    _log_finish(sync_log, log_id, result)
    return result


def sync_catalog(
    config: CatalogSyncConfig,
    *,
    source: Optional[CatalogSource] = None,
    store: Optional[CatalogStore] = None,
    sync_log: Optional[SyncLogStore] = None,
    trigger: str = "manual",
) -> SyncResult:
    """
    Run one reconciliation pass and report its outcome.

    `source` and `store` default to the collaborators described by `config`.
    Returns a busy failure without touching the store when another pass is running.
    """
    if not _SYNC_LOCK.acquire(blocking=False):
        LOGGER.info("[CatalogSync] already running; rejecting %s trigger", trigger)
        now_iso = _now_utc().isoformat()
        return SyncResult.failure(
            "Catalog sync already in progress",
            SyncErrorKind.BUSY,
            started_at=now_iso,
            finished_at=now_iso,
        )
    try:
        return _run_pass(config, source, store, sync_log, trigger)
    except Exception as exc:
        LOGGER.error("[CatalogSync] unexpected failure: %s", exc, exc_info=True)
        return SyncResult.failure(str(exc) or exc.__class__.__name__, classify_exception(exc))
    finally:
        _SYNC_LOCK.release()
