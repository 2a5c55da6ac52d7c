"""Types shared by the catalog sync job, its collaborators and the HTTP layer."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class SyncErrorKind(str, Enum):
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    PERSISTENCE = "persistence"
    VALIDATION = "validation"
    BUSY = "busy"
    UNKNOWN = "unknown"


_STATUS_BY_KIND = {
    SyncErrorKind.BUSY: 409,
}


def status_code_for(kind: Optional[SyncErrorKind]) -> int:
    """HTTP status for a failed run; every kind but ``busy`` is a server error."""
    if kind is None:
        return 500
    return _STATUS_BY_KIND.get(kind, 500)


class CatalogSyncError(RuntimeError):
    """Base class for failures the sync job knows how to classify."""

    kind = SyncErrorKind.UNKNOWN


class CatalogSourceError(CatalogSyncError):
    """Raised when the catalog source is unreachable or answers badly."""

    kind = SyncErrorKind.TRANSPORT


class CatalogSourceTimeout(CatalogSourceError):
    kind = SyncErrorKind.TIMEOUT


class CatalogStoreError(CatalogSyncError):
    """Raised when the local data store rejects a read or write."""

    kind = SyncErrorKind.PERSISTENCE


class CatalogStoreTimeout(CatalogStoreError):
    kind = SyncErrorKind.TIMEOUT


class CatalogItemError(CatalogSyncError):
    kind = SyncErrorKind.VALIDATION

    def __init__(self, message: str, sku: Optional[str] = None):
        super().__init__(message)
        self.sku = sku


def classify_exception(exc: BaseException) -> SyncErrorKind:
    if isinstance(exc, CatalogSyncError):
        return exc.kind
    return SyncErrorKind.UNKNOWN


class CatalogItem(BaseModel):
    """One product as published in the external catalog."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    sku: Optional[str] = None
    name: str
    description: str = ""
    price: float
    currency: str = "INR"
    is_hidden: bool = False
    image_url: Optional[str] = None

    @field_validator("external_id", "name")
    @classmethod
    def _require_text(cls, value: str) -> str:
        text = (value or "").strip()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("sku", "image_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("price", mode="before")
    @classmethod
    def _validate_price(cls, value: Any) -> float:
        if isinstance(value, bool) or value is None:
            raise ValueError("price must be a number")
        try:
            price = float(str(value).strip())
        except ValueError:
            raise ValueError(f"price must be a number, got {value!r}")
        if not math.isfinite(price) or price < 0:
            raise ValueError("price must be a non-negative number")
        return round(price, 2)

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value: Any) -> str:
        return str(value or "INR").strip().upper() or "INR"

    def store_fields(self) -> Dict[str, Any]:
        """Catalog-derived fields as written to the local products collection."""
        return {
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "base_price": self.price,
            "currency": self.currency,
            "image_url": self.image_url,
            "whatsapp_product_id": self.external_id,
            "is_active": not self.is_hidden,
        }


def normalize_sidecar_product(raw: Any, default_currency: str = "INR") -> CatalogItem:
    """
    Map a WPPConnect product object onto a CatalogItem.

    retailerId is the SKU WhatsApp keeps for us; older payloads carry ``sku`` instead.
    """
    if not isinstance(raw, dict):
        raise CatalogItemError(f"catalog entry is not an object: {raw!r}")
    sku = raw.get("retailerId") or raw.get("sku")
    image = raw.get("image") or raw.get("imageUrl")
    if isinstance(image, str) and image.startswith("data:"):
        image = None
    try:
        return CatalogItem(
            external_id=str(raw.get("id") or ""),
            sku=sku,
            name=raw.get("name") or "",
            description=raw.get("description") or "",
            price=raw.get("price"),
            currency=raw.get("currency") or default_currency,
            is_hidden=bool(raw.get("isHidden")),
            image_url=image,
        )
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        sku_text = str(sku).strip() if sku else None
        raise CatalogItemError(f"invalid catalog item: {problems}", sku=sku_text or None) from exc


class ItemError(BaseModel):
    model_config = ConfigDict(frozen=True)

    sku: Optional[str] = None
    kind: SyncErrorKind
    message: str


class SyncResult(BaseModel):
    """Outcome of one reconciliation pass. Built once per run, never mutated."""

    model_config = ConfigDict(frozen=True)

    success: bool
    error: Optional[str] = None
    error_kind: Optional[SyncErrorKind] = None
    run_id: Optional[str] = None
    fetched: int = 0
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[ItemError] = Field(default_factory=list)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def changed(self) -> int:
        return self.created + self.updated + self.deactivated

    @classmethod
    def failure(cls, message: str, kind: SyncErrorKind, **extra: Any) -> "SyncResult":
        return cls(success=False, error=message or kind.value, error_kind=kind, **extra)

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(mode="json")
        if payload.get("error") is None:
            payload.pop("error", None)
        if payload.get("error_kind") is None:
            payload.pop("error_kind", None)
        return payload
