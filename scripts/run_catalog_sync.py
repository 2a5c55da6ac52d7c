import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

# Ensure repo root is on sys.path so "services.*" imports work when running scripts directly.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from config import STORE_BACKENDS, load_catalog_sync_config  # noqa: E402
from services.catalog_sync import sync_catalog  # noqa: E402
from services.catalog_sync_log import SyncLogStore  # noqa: E402


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run one catalog sync pass (WhatsApp catalog -> local products)."
    )
    parser.add_argument(
        "--backend",
        choices=STORE_BACKENDS,
        help="Override CATALOG_STORE_BACKEND for this run.",
    )
    parser.add_argument(
        "--db",
        type=Path,
        help="SQLite file for products and sync logs (default: CATALOG_DB_PATH).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-request timeout in seconds (default: CATALOG_SYNC_TIMEOUT_SECONDS).",
    )
    parser.add_argument(
        "--no-log",
        action="store_true",
        help="Do not record the run in catalog_sync_logs.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full result as JSON.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    config = load_catalog_sync_config()
    overrides = {}
    if args.backend:
        overrides["store_backend"] = args.backend
    if args.db:
        overrides["db_path"] = args.db
    if args.timeout and args.timeout > 0:
        overrides["timeout_seconds"] = args.timeout
    if overrides:
        config = replace(config, **overrides)

    sync_log = None if args.no_log else SyncLogStore(config.db_path)
    result = sync_catalog(config, sync_log=sync_log, trigger="cli")

    if args.json:
        print(json.dumps(result.to_payload(), indent=2))
    else:
        print(
            f"success={result.success} fetched={result.fetched} created={result.created} "
            f"updated={result.updated} deactivated={result.deactivated} "
            f"unchanged={result.unchanged} skipped={result.skipped} failed={result.failed}"
        )
        if result.error:
            print(f"error ({result.error_kind.value if result.error_kind else 'unknown'}): {result.error}")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
