"""Routes package initializer."""

from .catalog_sync_routes import register_catalog_sync_routes

__all__ = [
    "register_catalog_sync_routes",
]
