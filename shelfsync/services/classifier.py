"""
Stock classification: bucket a product by stock count and by projected stockout.

classify() is pure. Sales velocity comes from a VelocityProvider so the source
of sales history can be swapped without touching the classification rules.
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, List, Mapping, Protocol, Sequence

from shelfsync.schemas import ClassifiedProduct, Product, StockClassification, StockTier

CRITICAL_DAYS = 3


def _stock_tier(stock: int, threshold: int) -> StockTier:
    if stock == 0:
        return StockTier.OUT_OF_STOCK
    if stock <= threshold:
        return StockTier.LOW_STOCK
    return StockTier.HEALTHY


def classify(stock: int, daily_velocity: float, threshold: int) -> StockClassification:
    """
    Classify by two independent signals and expose both.

    stock_tier uses the stock count against *threshold*. horizon_tier uses the
    days until stockout at *daily_velocity*: critical within CRITICAL_DAYS,
    low_stock within the horizon the threshold quantity would last, else
    healthy. With no sales signal (velocity <= 0) there is no horizon and the
    stock tier is used.
    """
    if stock < 0:
        raise ValueError(f"stock must be >= 0, got {stock}")
    if threshold < 0:
        raise ValueError(f"threshold must be >= 0, got {threshold}")
    if math.isnan(daily_velocity):
        raise ValueError("daily_velocity must be a number")

    stock_tier = _stock_tier(stock, threshold)

    if stock == 0:
        return StockClassification(
            tier=StockTier.OUT_OF_STOCK,
            days_until_stockout=0,
            stock_tier=stock_tier,
            horizon_tier=StockTier.OUT_OF_STOCK,
        )

    if daily_velocity <= 0:
        return StockClassification(
            tier=stock_tier,
            days_until_stockout=None,
            stock_tier=stock_tier,
            horizon_tier=None,
        )

    days = math.ceil(stock / daily_velocity)
    low_horizon = math.ceil(threshold / daily_velocity)
    if days <= CRITICAL_DAYS:
        horizon_tier = StockTier.CRITICAL
    elif days <= low_horizon:
        horizon_tier = StockTier.LOW_STOCK
    else:
        horizon_tier = StockTier.HEALTHY

    return StockClassification(
        tier=horizon_tier,
        days_until_stockout=days,
        stock_tier=stock_tier,
        horizon_tier=horizon_tier,
    )


# ── Velocity providers ───────────────────────────────────────────────────────

class VelocityProvider(Protocol):
    async def velocities(
        self, scope: str, products: Sequence[Product]
    ) -> Dict[str, float]:
        """Units sold per day keyed by product id; missing ids mean no signal."""
        ...


class SnapshotVelocityProvider:
    """
    Reads the sales_velocity carried on the snapshot records.

    The Shopify catalog reads never populate sales_velocity, so against a
    live shop this returns {} and every product gets its stock-count tier.
    It is a placeholder until a sales feed fills the field; pass a
    StaticVelocityProvider (or another VelocityProvider) to get horizon tiers.
    """

    async def velocities(
        self, scope: str, products: Sequence[Product]
    ) -> Dict[str, float]:
        return {
            p.id: p.sales_velocity
            for p in products
            if p.sales_velocity is not None
        }


class StaticVelocityProvider:
    """Fixed velocities, e.g. imported from an external report."""

    def __init__(self, velocities: Mapping[str, float]) -> None:
        self._velocities = dict(velocities)

    async def velocities(
        self, scope: str, products: Sequence[Product]
    ) -> Dict[str, float]:
        return {p.id: self._velocities[p.id] for p in products if p.id in self._velocities}


def annotate(
    products: Iterable[Product],
    threshold: int,
    velocities: Mapping[str, float],
) -> List[ClassifiedProduct]:
    return [
        ClassifiedProduct(
            product=p,
            classification=classify(p.stock_quantity, velocities.get(p.id, 0.0), threshold),
        )
        for p in products
    ]


def summarize(classified: Iterable[ClassifiedProduct]) -> Dict[str, int]:
    """Count products per primary tier; every tier is present in the result."""
    counts = {tier.value: 0 for tier in StockTier}
    for item in classified:
        counts[item.classification.tier.value] += 1
    return counts
