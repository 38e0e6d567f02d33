"""
Pydantic schemas for catalog records, policies, sync reports and API responses.
"""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


class VisibilityState(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DRAFT = "DRAFT"


class StockTier(str, enum.Enum):
    OUT_OF_STOCK = "out_of_stock"
    CRITICAL = "critical"
    LOW_STOCK = "low_stock"
    HEALTHY = "healthy"


# ── Catalog snapshot ─────────────────────────────────────────────────────────

class Product(BaseModel):
    id: str
    name: str = ""
    stock_quantity: int = Field(..., ge=0)
    visibility_state: VisibilityState
    sales_velocity: Optional[float] = Field(default=None, ge=0)

    model_config = ConfigDict(frozen=True)


class ShopInfo(BaseModel):
    name: str = ""
    email: str = ""
    domain: str = ""


class Snapshot(BaseModel):
    scope: str
    shop: ShopInfo = ShopInfo()
    products: Tuple[Product, ...] = ()
    fetched_at: datetime
    # True when at least one page query failed and the product list is incomplete
    partial: bool = False
    errors: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)


# ── Policy ───────────────────────────────────────────────────────────────────

class VisibilityPolicy(BaseModel):
    enabled: bool = False
    hide_out_of_stock: bool = True
    show_when_restocked: bool = True
    low_stock_threshold: int = Field(default=5, ge=0)

    model_config = ConfigDict(frozen=True)


# ── Classification ───────────────────────────────────────────────────────────

class StockClassification(BaseModel):
    tier: StockTier
    days_until_stockout: Optional[int] = None
    stock_tier: StockTier
    horizon_tier: Optional[StockTier] = None

    model_config = ConfigDict(frozen=True)


class ClassifiedProduct(BaseModel):
    product: Product
    classification: StockClassification


class SnapshotResponse(BaseModel):
    scope: str
    shop: ShopInfo
    fetched_at: datetime
    partial: bool
    errors: List[str] = []
    policy: VisibilityPolicy
    tier_counts: Dict[str, int]
    products: List[ClassifiedProduct]


# ── Sync report ──────────────────────────────────────────────────────────────

class SyncError(BaseModel):
    product_id: str
    message: str

    model_config = ConfigDict(frozen=True)


class SyncResult(BaseModel):
    """Outcome of one reconciliation run. Built once, never mutated."""
    scope: str = ""
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: Tuple[SyncError, ...] = ()
    hidden: int = 0      # ACTIVE -> DRAFT successes
    shown: int = 0       # DRAFT -> ACTIVE successes
    skipped: int = 0     # planned but never started (run cancelled)
    cancelled: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @computed_field  # type: ignore[misc]
    @property
    def changed(self) -> int:
        return self.hidden + self.shown


class SyncRunRow(BaseModel):
    id: int
    scope: str
    attempted: int
    succeeded: int
    failed: int
    hidden: int
    shown: int
    skipped: int
    cancelled: bool
    errors: List[SyncError]
    started_at: str
    finished_at: str

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"
    db: str = "ok"
