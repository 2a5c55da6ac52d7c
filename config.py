import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Load .env early so os.getenv picks up local dev secrets.
try:  # pragma: no cover - environment bootstrap
    from dotenv import load_dotenv

    _DOTENV_PATHS = [Path.cwd() / ".env", Path(__file__).resolve().parent / ".env"]
    for _env_path in _DOTENV_PATHS:
        if _env_path.exists():
            load_dotenv(dotenv_path=_env_path, override=False)
except Exception as exc:
    logging.getLogger(__name__).warning("Failed to load .env: %s", exc)

logger = logging.getLogger(__name__)

APP_NAME = "Storefront Catalog Sync"
APP_VERSION = "1.0.0"

ROOT = Path(__file__).resolve().parent
DEFAULT_DB_PATH = ROOT / "catalog.db"
STORE_BACKENDS = ("sqlite", "pocketbase")


# ----------------------------
# Helpers
# ----------------------------
def _str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _optional(name: str) -> Optional[str]:
    v = (os.getenv(name) or "").strip()
    return v or None


def _int(name: str, default: int, minimum: int = 1) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r; using %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%s below minimum %s; using %s", name, value, minimum, minimum)
        return minimum
    return value


def _float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid number for %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive; using %s", name, default)
        return default
    return value


def _bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


@dataclass(frozen=True)
class CatalogSyncConfig:
    sidecar_url: str = "http://localhost:21465"
    session: str = "default"
    page_size: int = 500
    timeout_seconds: float = 30.0
    default_currency: str = "INR"
    store_backend: str = "sqlite"
    db_path: Path = DEFAULT_DB_PATH
    pocketbase_url: str = "http://127.0.0.1:8090"
    pocketbase_collection: str = "products"
    pocketbase_admin_email: Optional[str] = None
    pocketbase_admin_password: Optional[str] = None
    sync_secret: Optional[str] = None
    auto_enabled: bool = False
    interval_minutes: int = 60

    @property
    def catalog_url(self) -> str:
        return f"{self.sidecar_url.rstrip('/')}/api/{self.session}/catalog/products"


def load_catalog_sync_config() -> CatalogSyncConfig:
    """Read the process environment once and freeze it into a config object."""
    backend = _str("CATALOG_STORE_BACKEND", "sqlite").lower()
    if backend not in STORE_BACKENDS:
        logger.warning("Unknown CATALOG_STORE_BACKEND=%r; using sqlite", backend)
        backend = "sqlite"
    db_raw = _str("CATALOG_DB_PATH")
    return CatalogSyncConfig(
        sidecar_url=_str("WPP_SIDECAR_URL", "http://localhost:21465"),
        session=_str("WPP_SESSION", "default"),
        page_size=_int("CATALOG_SYNC_PAGE_SIZE", 500),
        timeout_seconds=_float("CATALOG_SYNC_TIMEOUT_SECONDS", 30.0),
        default_currency=_str("CATALOG_SYNC_DEFAULT_CURRENCY", "INR").upper(),
        store_backend=backend,
        db_path=Path(db_raw) if db_raw else DEFAULT_DB_PATH,
        pocketbase_url=_str("POCKETBASE_URL", "http://127.0.0.1:8090"),
        pocketbase_collection=_str("POCKETBASE_PRODUCTS_COLLECTION", "products"),
        pocketbase_admin_email=_optional("POCKETBASE_ADMIN_EMAIL"),
        pocketbase_admin_password=_optional("POCKETBASE_ADMIN_PASSWORD"),
        sync_secret=_optional("CATALOG_SYNC_SECRET"),
        auto_enabled=_bool("CATALOG_SYNC_AUTO_ENABLED", False),
        interval_minutes=_int("CATALOG_SYNC_INTERVAL_MINUTES", 60),
    )
