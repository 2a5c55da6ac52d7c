"""Run history for the catalog sync (catalog_sync_logs table)."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from services.db import ensure_sync_log_table, get_db_connection, write_transaction

LOGGER = logging.getLogger(__name__)
STALE_RUNNING_MINUTES = 60
STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _row_to_log(row) -> Dict[str, Any]:
    entry = dict(row)
    try:
        entry["errors"] = json.loads(entry.get("errors") or "[]")
    except ValueError:
        entry["errors"] = []
    return entry


class SyncLogStore:
    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if not self._schema_ready:
            ensure_sync_log_table(self.db_path)
            self._schema_ready = True

    def start(self, trigger: str, *, now: Optional[datetime] = None) -> str:
        self._ensure_schema()
        now = now or _now_utc()
        self.fail_stale_running(now=now)
        log_id = uuid.uuid4().hex
        with write_transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO catalog_sync_logs (id, started_at, status, trigger, errors)
                VALUES (?, ?, ?, ?, '[]')
                """,
                (log_id, now.isoformat(), STATUS_RUNNING, trigger),
            )
        return log_id

    def finish(
        self,
        log_id: str,
        *,
        status: str,
        added: int = 0,
        updated: int = 0,
        deactivated: int = 0,
        skipped: int = 0,
        errors: Optional[List[Dict[str, Any]]] = None,
        finished_at: Optional[datetime] = None,
    ) -> None:
        self._ensure_schema()
        finished_at = finished_at or _now_utc()
        with write_transaction(self.db_path) as conn:
            conn.execute(
                """
                UPDATE catalog_sync_logs
                SET status = ?,
                    completed_at = ?,
                    products_added = ?,
                    products_updated = ?,
                    products_deactivated = ?,
                    products_skipped = ?,
                    errors = ?
                WHERE id = ?
                """,
                (
                    status,
                    finished_at.isoformat(),
                    added,
                    updated,
                    deactivated,
                    skipped,
                    json.dumps(errors or [], ensure_ascii=False),
                    log_id,
                ),
            )

    def fail_stale_running(
        self,
        *,
        now: Optional[datetime] = None,
        ttl_minutes: int = STALE_RUNNING_MINUTES,
    ) -> int:
        """Close out 'running' rows left behind by a crashed process."""
        self._ensure_schema()
        now = now or _now_utc()
        cutoff = now - timedelta(minutes=ttl_minutes)
        stale_ids = []
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, started_at FROM catalog_sync_logs WHERE status = ?",
                (STATUS_RUNNING,),
            ).fetchall()
        for row in rows:
            started = _parse_iso(row["started_at"])
            if not started or started <= cutoff:
                stale_ids.append(row["id"])
        if not stale_ids:
            return 0
        marker = json.dumps([{"kind": "unknown", "message": "Marked stale run as failed"}])
        with write_transaction(self.db_path) as conn:
            conn.executemany(
                "UPDATE catalog_sync_logs SET status = ?, completed_at = ?, errors = ? WHERE id = ?",
                [(STATUS_FAILED, now.isoformat(), marker, log_id) for log_id in stale_ids],
            )
        LOGGER.warning("[CatalogSyncLog] Marked %s stale running log(s) as failed", len(stale_ids))
        return len(stale_ids)

    def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        self._ensure_schema()
        limit = max(1, min(int(limit), 200))
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM catalog_sync_logs ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_log(r) for r in rows]

    def get(self, log_id: str) -> Optional[Dict[str, Any]]:
        self._ensure_schema()
        with get_db_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM catalog_sync_logs WHERE id = ?", (log_id,)).fetchone()
        return _row_to_log(row) if row else None

    def last(self) -> Optional[Dict[str, Any]]:
        rows = self.list_recent(limit=1)
        return rows[0] if rows else None
