"""
Shopify webhook receivers.

POST /webhooks/shopify/inventory_update
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from shelfsync.config import get_settings
from shelfsync.deps import get_snapshot_service, verify_webhook
from shelfsync.services.snapshot import SnapshotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/shopify", tags=["webhooks"])


def _normalise_domain(domain: str) -> str:
    domain = domain.strip().lower()
    if "://" in domain:
        domain = domain.split("://", 1)[1]
    return domain.rstrip("/")


@router.post("/inventory_update", status_code=status.HTTP_204_NO_CONTENT)
async def inventory_update(
    body: bytes = Depends(verify_webhook),
    x_shopify_shop_domain: str | None = Header(default=None),
    snapshots: SnapshotService = Depends(get_snapshot_service),
) -> None:
    """
    Receive an inventory_levels/update event and drop the shop's cached
    snapshot so the next dashboard read sees the new quantities.
    """
    domain = _normalise_domain(x_shopify_shop_domain or "")
    shops = [
        s for s in get_settings().shops
        if domain and _normalise_domain(s.shop_domain) == domain
    ]
    if not shops:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown shop domain {x_shopify_shop_domain!r}",
        )

    for shop in shops:
        if snapshots.invalidate(shop.shop_id):
            logger.info("Snapshot invalidated by inventory webhook shop=%s", shop.shop_id)
