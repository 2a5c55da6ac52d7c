# ================================================================
#  POCKETBASE PRODUCT STORE
#  ---------------------------------------------------------------
#  - Optional superuser auth (token cached until 401)
#  - Paginated record listing
#  - Create / patch records in the products collection
# ================================================================

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from services.catalog_models import CatalogStoreError, CatalogStoreTimeout

logger = logging.getLogger("pocketbase_store")

PER_PAGE = 200
MAX_ATTEMPTS = 3


class PocketBaseCatalogStore:
    def __init__(
        self,
        base_url: str,
        *,
        collection: str = "products",
        admin_email: Optional[str] = None,
        admin_password: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        retry_backoff: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.collection = collection
        self.admin_email = admin_email
        self.admin_password = admin_password
        self.timeout = timeout
        self.retry_backoff = retry_backoff
        self._http = session or requests.Session()
        self._token: Optional[str] = None

    @property
    def records_url(self) -> str:
        return f"{self.base_url}/api/collections/{self.collection}/records"

    # ----------------------------
    # Auth
    # ----------------------------
    def _authenticate(self) -> Optional[str]:
        if not (self.admin_email and self.admin_password):
            return None
        if self._token:
            return self._token
        url = f"{self.base_url}/api/collections/_superusers/auth-with-password"
        try:
            resp = self._http.post(
                url,
                json={"identity": self.admin_email, "password": self.admin_password},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise CatalogStoreTimeout(f"PocketBase auth timed out after {self.timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise CatalogStoreError(f"PocketBase auth request failed: {exc}") from exc
        if resp.status_code != 200:
            logger.error("[PocketBase] Superuser auth failed %s: %s", resp.status_code, resp.text)
            raise CatalogStoreError(f"PocketBase auth failed with HTTP {resp.status_code}")
        self._token = (resp.json() or {}).get("token")
        if not self._token:
            raise CatalogStoreError("PocketBase auth response carried no token")
        logger.info("[PocketBase] Authenticated as %s", self.admin_email)
        return self._token

    # ----------------------------
    # HTTP
    # ----------------------------
    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        reauthed = False
        for attempt in range(1, MAX_ATTEMPTS + 1):
            headers = {"accept": "application/json"}
            token = self._authenticate()
            if token:
                headers["Authorization"] = token
            try:
                resp = self._http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.exceptions.Timeout as exc:
                raise CatalogStoreTimeout(f"PocketBase {method} timed out after {self.timeout}s") from exc
            except requests.exceptions.RequestException as exc:
                raise CatalogStoreError(f"PocketBase {method} failed: {exc}") from exc

            if resp.status_code == 401 and token and not reauthed:
                logger.info("[PocketBase] Token rejected; re-authenticating")
                self._token = None
                reauthed = True
                continue
            if resp.status_code == 429 and attempt < MAX_ATTEMPTS:
                wait_time = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "[PocketBase] Rate limited (429), waiting %ss before retry %s/%s",
                    wait_time,
                    attempt,
                    MAX_ATTEMPTS,
                )
                time.sleep(wait_time)
                continue
            if resp.status_code >= 300:
                raise CatalogStoreError(
                    f"PocketBase {method} {url} failed with HTTP {resp.status_code}: {_pb_message(resp)}"
                )
            if not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as exc:
                raise CatalogStoreError(f"PocketBase {method} returned a non-JSON body") from exc
        raise CatalogStoreError(f"PocketBase {method} {url} gave up after {MAX_ATTEMPTS} attempts")

    # ----------------------------
    # Store interface
    # ----------------------------
    def list_products(self) -> List[Dict[str, Any]]:
        products: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = self._request(
                "GET",
                self.records_url,
                params={"page": page, "perPage": PER_PAGE, "skipTotal": 0},
            )
            items = data.get("items") or []
            products.extend(items)
            total_pages = int(data.get("totalPages") or 1)
            if page >= total_pages or not items:
                break
            page += 1
        logger.info("[PocketBase] Loaded %s records from %s", len(products), self.collection)
        return products

    def create_product(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", self.records_url, json=fields)

    def update_product(self, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"{self.records_url}/{product_id}", json=fields)


def _pb_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:200]
    if isinstance(body, dict):
        message = body.get("message") or ""
        data = body.get("data") or {}
        if isinstance(data, dict) and data:
            details = ", ".join(
                f"{field}: {(info or {}).get('message', info)}" if isinstance(info, dict) else f"{field}: {info}"
                for field, info in data.items()
            )
            return f"{message} ({details})" if message else details
        return message or str(body)[:200]
    return str(body)[:200]
