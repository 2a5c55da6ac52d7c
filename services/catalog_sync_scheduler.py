import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from config import CatalogSyncConfig
from services.catalog_models import SyncErrorKind, SyncResult
from services.catalog_sync import sync_catalog
from services.catalog_sync_log import SyncLogStore

LOGGER = logging.getLogger(__name__)

_scheduler_thread: Optional[threading.Thread] = None
_scheduler_stop: Optional[threading.Event] = None
_scheduler_state: Dict[str, Any] = {
    "interval_minutes": None,
    "last_tick_at": None,
    "last_success": None,
    "next_run_at": None,
}

RunCallable = Callable[[], SyncResult]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _tick(run: RunCallable, interval_seconds: float) -> SyncResult:
    result = run()
    now = _now_utc()
    _scheduler_state["last_tick_at"] = now.isoformat()
    _scheduler_state["next_run_at"] = (now + timedelta(seconds=interval_seconds)).isoformat()
    if result.error_kind == SyncErrorKind.BUSY:
        LOGGER.debug("[CatalogSyncScheduler] Tick skipped (sync already running)")
        return result
    _scheduler_state["last_success"] = result.success
    if result.success:
        LOGGER.info(
            "[CatalogSyncScheduler] Tick completed | created=%s updated=%s deactivated=%s",
            result.created,
            result.updated,
            result.deactivated,
        )
    else:
        LOGGER.warning("[CatalogSyncScheduler] Tick failed (%s): %s", result.error_kind, result.error)
    return result


def _scheduler_loop(run: RunCallable, interval_seconds: float, stop: threading.Event) -> None:
    LOGGER.info("[CatalogSyncScheduler] started (interval=%ss)", interval_seconds)
    while not stop.is_set():
        try:
            _tick(run, interval_seconds)
        except Exception as exc:  # pragma: no cover - scheduler safety
            LOGGER.error("[CatalogSyncScheduler] Tick crashed: %s", exc, exc_info=True)
        stop.wait(interval_seconds)
    LOGGER.info("[CatalogSyncScheduler] stopped")


def start_catalog_sync_scheduler(
    config: CatalogSyncConfig,
    *,
    sync_log: Optional[SyncLogStore] = None,
    run: Optional[RunCallable] = None,
) -> bool:
    """Start the periodic sync thread. Returns False when one is already running."""
    global _scheduler_thread, _scheduler_stop

    if _scheduler_thread and _scheduler_thread.is_alive():
        LOGGER.debug("[CatalogSyncScheduler] already running; skipping start")
        return False

    interval_seconds = max(1, config.interval_minutes) * 60
    if run is None:
        run = lambda: sync_catalog(config, sync_log=sync_log, trigger="scheduler")  # noqa: E731

    # Each thread gets its own Event so a loop that outlived stop() cannot be revived.
    stop = threading.Event()
    _scheduler_state["interval_minutes"] = interval_seconds // 60
    thread = threading.Thread(
        target=_scheduler_loop,
        name="CatalogSyncScheduler",
        kwargs={"run": run, "interval_seconds": interval_seconds, "stop": stop},
        daemon=True,
    )
    thread.start()
    _scheduler_thread = thread
    _scheduler_stop = stop
    return True


def stop_catalog_sync_scheduler(timeout: float = 2.0) -> None:
    """Signal the scheduler to stop and wait briefly for shutdown."""
    global _scheduler_thread, _scheduler_stop
    if _scheduler_stop is not None:
        _scheduler_stop.set()
    thread = _scheduler_thread
    if thread and thread.is_alive():
        thread.join(timeout=timeout)
        if thread.is_alive():
            LOGGER.warning("[CatalogSyncScheduler] Tick still running; thread will exit when it finishes")
    _scheduler_thread = None
    _scheduler_stop = None


def is_scheduler_running() -> bool:
    return bool(_scheduler_thread and _scheduler_thread.is_alive())


def get_scheduler_state() -> Dict[str, Any]:
    return {"running": is_scheduler_running(), **_scheduler_state}
