import logging
from contextlib import contextmanager
from threading import Lock
from time import perf_counter
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

_last_run_timings: List[Dict[str, Any]] = []
_active_run: Optional[List[Dict[str, Any]]] = None
_lock = Lock()


def record_timing(label: str, duration_ms: float) -> None:
    entry = {"label": label, "duration_ms": round(duration_ms, 2)}
    with _lock:
        if _active_run is not None:
            _active_run.append(entry)


def get_last_run_timings() -> List[Dict[str, Any]]:
    """Stage timings of the most recently finished sync pass."""
    with _lock:
        return list(_last_run_timings)


@contextmanager
def time_block(label: str) -> Iterator[None]:
    start = perf_counter()
    try:
        yield
    finally:
        duration_ms = (perf_counter() - start) * 1000.0
        record_timing(label, duration_ms)
        logger.debug(f"[perf] {label} took {duration_ms:.2f}ms")


@contextmanager
def run_timings() -> Iterator[List[Dict[str, Any]]]:
    """
    Collect every time_block recorded while a sync pass is running.
    Only one pass runs at a time, so a single collector is enough.
    """
    global _active_run, _last_run_timings
    collected: List[Dict[str, Any]] = []
    with _lock:
        _active_run = collected
    try:
        yield collected
    finally:
        with _lock:
            _active_run = None
            _last_run_timings = list(collected)
