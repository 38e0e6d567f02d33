"""
FastAPI dependency utilities: webhook signature verification, shop lookup,
shared service instances.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.config import ShopConfig, get_settings
from shelfsync.database import get_db
from shelfsync.schemas import VisibilityPolicy
from shelfsync.services.policy_store import SqlPolicyStore
from shelfsync.services.snapshot import SnapshotService
from shelfsync.services.sync import SyncService

logger = logging.getLogger(__name__)
settings = get_settings()


@lru_cache(maxsize=1)
def get_snapshot_service() -> SnapshotService:
    return SnapshotService()


@lru_cache(maxsize=1)
def get_sync_service() -> SyncService:
    # One instance per process so per-shop locks are shared by all requests
    return SyncService(get_snapshot_service())


def require_shop(shop_id: str) -> ShopConfig:
    shop = get_settings().shops_by_id.get(shop_id)
    if shop is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"shop_id {shop_id!r} not configured",
        )
    return shop


def get_policy_store(db: AsyncSession = Depends(get_db)) -> SqlPolicyStore:
    default = VisibilityPolicy(low_stock_threshold=get_settings().default_low_stock_threshold)
    return SqlPolicyStore(db, default=default)


async def verify_webhook(
    request: Request,
    x_shopify_hmac_sha256: str | None = Header(default=None),
) -> bytes:
    """
    Verify Shopify webhook authenticity via HMAC-SHA256 of the raw body.
    Returns the raw request body so routers don't need to re-read it.
    """
    body = await request.body()

    if not settings.webhook_shared_secret:
        logger.warning("No WEBHOOK_SHARED_SECRET configured – accepting all webhooks!")
        return body

    if not x_shopify_hmac_sha256:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Shopify-Hmac-Sha256 header",
        )

    expected = hmac.new(
        key=settings.webhook_shared_secret.encode(),
        msg=body,
        digestmod=hashlib.sha256,
    ).digest()

    try:
        provided = base64.b64decode(x_shopify_hmac_sha256, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed signature header",
        )

    if not hmac.compare_digest(expected, provided):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Webhook signature mismatch",
        )

    return body
