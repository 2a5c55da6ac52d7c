"""
Catalog source backed by the WPPConnect sidecar.

The sidecar wraps the WhatsApp Business catalog of one session and exposes it as
GET /api/{session}/catalog/products -> {"success": true, "products": [...]}.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

import requests

from config import CatalogSyncConfig
from services.catalog_models import CatalogSourceError, CatalogSourceTimeout

logger = logging.getLogger(__name__)


class CatalogSource(Protocol):
    def fetch_items(self) -> List[Any]:
        """Return the raw catalog entries currently published."""
        ...


class WppCatalogSource:
    def __init__(
        self,
        catalog_url: str,
        *,
        page_size: int = 500,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.catalog_url = catalog_url
        self.page_size = page_size
        self.timeout = timeout
        self._http = session or requests.Session()

    def fetch_items(self) -> List[Any]:
        logger.info("[CatalogSource] GET %s (count=%s)", self.catalog_url, self.page_size)
        try:
            resp = self._http.get(
                self.catalog_url,
                params={"count": self.page_size},
                headers={"accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            logger.warning("[CatalogSource] Sidecar timed out after %ss", self.timeout)
            raise CatalogSourceTimeout(
                f"Catalog source timed out after {self.timeout}s"
            ) from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("[CatalogSource] Sidecar unreachable: %s", exc)
            raise CatalogSourceError(f"Catalog source unreachable: {exc}") from exc

        if resp.status_code >= 300:
            detail = _error_detail(resp)
            logger.error("[CatalogSource] Sidecar answered %s: %s", resp.status_code, detail)
            raise CatalogSourceError(
                f"Catalog source returned HTTP {resp.status_code}: {detail}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise CatalogSourceError("Catalog source returned a non-JSON body") from exc

        if not isinstance(payload, dict) or not payload.get("success"):
            detail = payload.get("error") if isinstance(payload, dict) else None
            raise CatalogSourceError(f"Catalog source reported failure: {detail or 'unknown error'}")

        products = payload.get("products") or []
        if not isinstance(products, list):
            raise CatalogSourceError("Catalog source returned a malformed product list")
        logger.info("[CatalogSource] Fetched %s catalog products", len(products))
        return products


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or resp.reason or "").strip()[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])[:200]
    return str(body)[:200]


def build_catalog_source(config: CatalogSyncConfig) -> WppCatalogSource:
    return WppCatalogSource(
        config.catalog_url,
        page_size=config.page_size,
        timeout=config.timeout_seconds,
    )
