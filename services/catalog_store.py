"""Local product store used as the reconciliation target of the catalog sync."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from config import CatalogSyncConfig
from services.catalog_models import CatalogStoreError
from services.db import ensure_products_table, get_db_connection, write_transaction
from services.perf import time_block

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = (
    "sku",
    "name",
    "description",
    "base_price",
    "currency",
    "image_url",
    "is_active",
    "whatsapp_product_id",
)


class CatalogStore(Protocol):
    def list_products(self) -> List[Dict[str, Any]]:
        ...

    def create_product(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def update_product(self, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_product(row: sqlite3.Row) -> Dict[str, Any]:
    product = dict(row)
    product["is_active"] = bool(product.get("is_active"))
    if product.get("base_price") is not None:
        product["base_price"] = float(product["base_price"])
    return product


def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - set(PRODUCT_FIELDS)
    if unknown:
        raise CatalogStoreError(f"Unknown product fields: {sorted(unknown)}")
    cleaned = dict(fields)
    if "is_active" in cleaned:
        cleaned["is_active"] = 1 if cleaned["is_active"] else 0
    return cleaned


class SqliteCatalogStore:
    """Products table in the app's SQLite file, keyed by SKU."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        try:
            ensure_products_table(self.db_path)
        except sqlite3.Error as exc:
            raise CatalogStoreError(f"Failed to prepare products table: {exc}") from exc
        self._schema_ready = True

    def list_products(self) -> List[Dict[str, Any]]:
        self._ensure_schema()
        try:
            with get_db_connection(self.db_path) as conn:
                with time_block("store_list_products"):
                    rows = conn.execute("SELECT * FROM products ORDER BY sku").fetchall()
        except sqlite3.Error as exc:
            raise CatalogStoreError(f"Failed to load products: {exc}") from exc
        return [_row_to_product(r) for r in rows]

    def create_product(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_schema()
        cleaned = _clean_fields(fields)
        sku = cleaned.get("sku")
        if not sku:
            raise CatalogStoreError("Cannot create a product without a SKU")
        now = _now_iso()
        cleaned.setdefault("is_active", 1)
        columns = ["id", *cleaned.keys(), "created_at", "updated_at"]
        values = [uuid.uuid4().hex, *cleaned.values(), now, now]
        updates = [f"{c} = excluded.{c}" for c in cleaned if c != "sku"]
        updates.append("updated_at = excluded.updated_at")
        sql = (
            f"INSERT INTO products ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT(sku) DO UPDATE SET {', '.join(updates)}"
        )
        try:
            with write_transaction(self.db_path) as conn:
                conn.execute(sql, values)
                row = conn.execute("SELECT * FROM products WHERE sku = ?", (sku,)).fetchone()
        except sqlite3.Error as exc:
            raise CatalogStoreError(f"Failed to create product {sku}: {exc}") from exc
        logger.debug("[CatalogStore] upserted %s", sku)
        return _row_to_product(row)

    def update_product(self, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_schema()
        cleaned = _clean_fields(fields)
        if not cleaned:
            raise CatalogStoreError("No fields to update")
        assignments = ", ".join(f"{c} = ?" for c in cleaned)
        try:
            with write_transaction(self.db_path) as conn:
                cur = conn.execute(
                    f"UPDATE products SET {assignments}, updated_at = ? WHERE id = ?",
                    (*cleaned.values(), _now_iso(), product_id),
                )
                if cur.rowcount == 0:
                    raise CatalogStoreError(f"Product {product_id} not found")
                row = conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
        except sqlite3.Error as exc:
            raise CatalogStoreError(f"Failed to update product {product_id}: {exc}") from exc
        return _row_to_product(row)


def build_catalog_store(config: CatalogSyncConfig) -> CatalogStore:
    if config.store_backend == "pocketbase":
        from services.pocketbase_store import PocketBaseCatalogStore

        return PocketBaseCatalogStore(
            config.pocketbase_url,
            collection=config.pocketbase_collection,
            admin_email=config.pocketbase_admin_email,
            admin_password=config.pocketbase_admin_password,
            timeout=config.timeout_seconds,
        )
    return SqliteCatalogStore(config.db_path)
