import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Iterator, Optional

from config import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)
CATALOG_DB_PATH = DEFAULT_DB_PATH

# ====================================================================
# SQLITE HARDENING: WAL MODE + TIMEOUT + WRITE LOCK
# - WAL mode allows concurrent reads while serializing writes
# - 10s timeout prevents infinite hangs on database locks
# - _db_write_lock serializes writers inside this process
# ====================================================================

_db_write_lock = Lock()
_db_timeout = 10  # seconds


def resolve_db_path(db_path: Optional[Path] = None) -> Path:
    return Path(db_path) if db_path else Path(CATALOG_DB_PATH)


@contextmanager
def get_db_connection(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    """
    Context manager for a safe SQLite connection.
    - Enforces timeout to prevent infinite waits
    - Enables WAL mode for better concurrency
    - Ensures cleanup even on exception
    """
    path = resolve_db_path(db_path)
    conn = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, timeout=_db_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        yield conn
    except sqlite3.DatabaseError as e:
        logger.error(f"[DB] Database error: {e}", exc_info=True)
        raise
    finally:
        if conn:
            try:
                conn.close()
            except Exception as e:
                logger.warning(f"[DB] Error closing connection: {e}")


@contextmanager
def write_transaction(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    """
    Serialized write scope: commits on success, rolls back on any error.
    """
    with _db_write_lock:
        with get_db_connection(db_path) as conn:
            try:
                yield conn
                conn.commit()
            except sqlite3.OperationalError as e:
                conn.rollback()
                if "database is locked" in str(e):
                    logger.error(f"[DB] Database locked after {_db_timeout}s timeout: {e}")
                raise
            except Exception:
                conn.rollback()
                raise


def ensure_products_table(db_path: Optional[Path] = None) -> None:
    """
    Create the local products table when running without PocketBase.
    Mirrors the catalog-facing columns of the PocketBase products collection.
    """
    with write_transaction(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id TEXT PRIMARY KEY,
                sku TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT DEFAULT '',
                base_price REAL NOT NULL DEFAULT 0,
                currency TEXT DEFAULT 'INR',
                image_url TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                whatsapp_product_id TEXT,
                created_at TEXT,
                updated_at TEXT
            )
            """
        )
        cols = {r[1] for r in conn.execute("PRAGMA table_info(products)").fetchall()}
        for col, ddl in (
            ("currency", "TEXT DEFAULT 'INR'"),
            ("whatsapp_product_id", "TEXT"),
        ):
            if col not in cols:
                conn.execute(f"ALTER TABLE products ADD COLUMN {col} {ddl}")
                logger.info(f"[DB] Added column {col} to products")


def ensure_sync_log_table(db_path: Optional[Path] = None) -> None:
    with write_transaction(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS catalog_sync_logs (
                id TEXT PRIMARY KEY,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                status TEXT NOT NULL CHECK (status IN ('running', 'success', 'failed')),
                trigger TEXT,
                products_added INTEGER DEFAULT 0,
                products_updated INTEGER DEFAULT 0,
                products_deactivated INTEGER DEFAULT 0,
                products_skipped INTEGER DEFAULT 0,
                errors TEXT DEFAULT '[]'
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_catalog_sync_logs_started ON catalog_sync_logs(started_at)"
        )
