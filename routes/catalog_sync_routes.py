"""Catalog sync trigger + history routes."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from config import CatalogSyncConfig, load_catalog_sync_config
from services.catalog_models import SyncErrorKind, SyncResult, status_code_for
from services.catalog_source import build_catalog_source
from services.catalog_store import build_catalog_store
from services.catalog_sync import is_sync_running, sync_catalog
from services.catalog_sync_log import SyncLogStore
from services.catalog_sync_scheduler import get_scheduler_state
from services.perf import get_last_run_timings

router = APIRouter()
logger = logging.getLogger(__name__)

_config: Optional[CatalogSyncConfig] = None
_sync_log: Optional[SyncLogStore] = None


def get_sync_config() -> CatalogSyncConfig:
    global _config
    if _config is None:
        _config = load_catalog_sync_config()
    return _config


def get_sync_log() -> SyncLogStore:
    global _sync_log
    if _sync_log is None:
        _sync_log = SyncLogStore(get_sync_config().db_path)
    return _sync_log


def run_catalog_sync(trigger: str = "http") -> SyncResult:
    config = get_sync_config()
    return sync_catalog(
        config,
        source=build_catalog_source(config),
        store=build_catalog_store(config),
        sync_log=get_sync_log(),
        trigger=trigger,
    )


def _error_envelope(message: str, kind: SyncErrorKind = SyncErrorKind.UNKNOWN) -> Dict[str, Any]:
    return {"success": False, "error": message, "error_kind": kind.value}


def _authorized(request: Request, secret: Optional[str]) -> bool:
    if not secret:
        return True
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip(), secret)


def _handle_catalog_sync(request: Request) -> JSONResponse:
    try:
        if not _authorized(request, get_sync_config().sync_secret):
            logger.warning("[CatalogSyncRoute] Rejected %s without valid bearer token", request.method)
            return JSONResponse(_error_envelope("Unauthorized"), status_code=401)
        result = run_catalog_sync("http")
        status_code = 200 if result.success else status_code_for(result.error_kind)
        return JSONResponse(result.to_payload(), status_code=status_code)
    except Exception as exc:
        logger.error("[CatalogSyncRoute] Sync trigger failed: %s", exc, exc_info=True)
        return JSONResponse(_error_envelope(str(exc) or exc.__class__.__name__), status_code=500)


@router.post("/api/catalog-sync")
def trigger_catalog_sync(request: Request) -> JSONResponse:
    return _handle_catalog_sync(request)


# Manual trigger from a browser; identical to POST.
@router.get("/api/catalog-sync")
def trigger_catalog_sync_get(request: Request) -> JSONResponse:
    return _handle_catalog_sync(request)


@router.get("/api/catalog-sync/logs")
def list_catalog_sync_logs(limit: int = Query(20, ge=1, le=200)) -> JSONResponse:
    try:
        logs = get_sync_log().list_recent(limit=limit)
    except Exception as exc:
        logger.warning("[CatalogSyncRoute] Failed to load sync logs: %s", exc)
        return JSONResponse({"ok": False, "error": f"Failed to load sync logs: {exc}"}, status_code=500)
    return JSONResponse({"ok": True, "logs": logs})


@router.get("/api/catalog-sync/status")
def catalog_sync_status() -> JSONResponse:
    last_run = None
    try:
        last_run = get_sync_log().last()
    except Exception as exc:  # pragma: no cover - defensive
        logger.warning("[CatalogSyncRoute] Failed to load last sync log: %s", exc)
    return JSONResponse(
        {
            "ok": True,
            "running": is_sync_running(),
            "scheduler": get_scheduler_state(),
            "last_run": last_run,
            "timings": get_last_run_timings(),
        }
    )


def register_catalog_sync_routes(app: FastAPI) -> None:
    app.include_router(router)
