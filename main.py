# =============================================
#  STOREFRONT CATALOG SYNC - API ENTRYPOINT
# =============================================
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import APP_NAME, APP_VERSION
from routes.catalog_sync_routes import get_sync_config, get_sync_log, register_catalog_sync_routes
from services.catalog_sync_scheduler import start_catalog_sync_scheduler, stop_catalog_sync_scheduler

# --- Logging configuration ---
LOG_DIR = Path(__file__).parent / "logs"
LOG_DIR.mkdir(exist_ok=True)

LOG_FILE_PATH = LOG_DIR / "catalog_sync.log"

log_level = os.getenv("SYNC_LOG_LEVEL", "INFO").upper()

root_logger = logging.getLogger()
logger = root_logger
if not root_logger.handlers:
    root_logger.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        LOG_FILE_PATH,
        maxBytes=5_000_000,  # 5 MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

logging.getLogger("uvicorn").propagate = True
logging.getLogger("uvicorn.error").propagate = True
logging.getLogger("uvicorn.access").propagate = True
# --- End logging configuration ---

app = FastAPI(title=APP_NAME, version=APP_VERSION)

register_catalog_sync_routes(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("[API] Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        {"success": False, "error": str(exc) or exc.__class__.__name__, "error_kind": "unknown"},
        status_code=500,
    )


@app.on_event("startup")
def startup_event():
    """Start the periodic catalog sync when enabled."""
    try:
        config = get_sync_config()
        if config.auto_enabled:
            start_catalog_sync_scheduler(config, sync_log=get_sync_log())
            logger.info("[Startup] Catalog sync scheduler enabled (every %s min)", config.interval_minutes)
        else:
            logger.info("[Startup] Catalog sync scheduler disabled (CATALOG_SYNC_AUTO_ENABLED=false)")
    except Exception as e:
        logger.warning(f"[Startup] Failed to initialize background tasks: {e}")


@app.on_event("shutdown")
def shutdown_event():
    """Signal background workers to stop."""
    try:
        stop_catalog_sync_scheduler()
    except Exception as exc:
        logger.warning(f"[Shutdown] Failed to stop catalog sync scheduler cleanly: {exc}")


@app.get("/api/ping")
def ping() -> JSONResponse:
    ts = datetime.now(timezone.utc).isoformat()
    logger.info("[PING] ping called")
    return JSONResponse({"ok": True, "ts": ts})


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("SYNC_API_HOST", "127.0.0.1"),
        port=int(os.getenv("SYNC_API_PORT", "8001")),
    )
