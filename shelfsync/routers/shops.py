"""
Per-shop dashboard endpoints.

GET  /shops/{shop_id}/snapshot
GET  /shops/{shop_id}/policy
PUT  /shops/{shop_id}/policy
GET  /shops/{shop_id}/plan            (dry run: transitions a sync would apply)
POST /shops/{shop_id}/sync
POST /shops/{shop_id}/sync/cancel
GET  /shops/{shop_id}/sync-runs
"""
from __future__ import annotations

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.config import ShopConfig
from shelfsync.database import get_db
from shelfsync.deps import get_policy_store, get_snapshot_service, get_sync_service, require_shop
from shelfsync.errors import UnknownScopeError
from shelfsync.schemas import SnapshotResponse, SyncResult, SyncRunRow, VisibilityPolicy
from shelfsync.services.classifier import SnapshotVelocityProvider, annotate, summarize
from shelfsync.services.history import list_sync_runs, record_sync_run, to_row
from shelfsync.services.policy_store import SqlPolicyStore
from shelfsync.services.reconciliation import plan_all
from shelfsync.services.snapshot import SnapshotService
from shelfsync.services.sync import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shops", tags=["shops"])

_velocity_provider = SnapshotVelocityProvider()


@router.get("/{shop_id}/snapshot", response_model=SnapshotResponse)
async def get_snapshot(
    refresh: bool = Query(default=False),
    shop: ShopConfig = Depends(require_shop),
    store: SqlPolicyStore = Depends(get_policy_store),
    snapshots: SnapshotService = Depends(get_snapshot_service),
) -> SnapshotResponse:
    policy = await store.get(shop.shop_id)
    snapshot = await snapshots.get_snapshot(shop.shop_id, refresh=refresh)
    velocities = await _velocity_provider.velocities(shop.shop_id, snapshot.products)
    classified = annotate(snapshot.products, policy.low_stock_threshold, velocities)
    return SnapshotResponse(
        scope=snapshot.scope,
        shop=snapshot.shop,
        fetched_at=snapshot.fetched_at,
        partial=snapshot.partial,
        errors=list(snapshot.errors),
        policy=policy,
        tier_counts=summarize(classified),
        products=classified,
    )


@router.get("/{shop_id}/policy", response_model=VisibilityPolicy)
async def get_policy(
    shop: ShopConfig = Depends(require_shop),
    store: SqlPolicyStore = Depends(get_policy_store),
) -> VisibilityPolicy:
    return await store.get(shop.shop_id)


@router.put("/{shop_id}/policy", response_model=VisibilityPolicy)
async def put_policy(
    policy: VisibilityPolicy,
    shop: ShopConfig = Depends(require_shop),
    store: SqlPolicyStore = Depends(get_policy_store),
) -> VisibilityPolicy:
    saved = await store.set(shop.shop_id, policy)
    await store.session.commit()
    return saved


@router.get("/{shop_id}/plan")
async def preview_plan(
    shop: ShopConfig = Depends(require_shop),
    store: SqlPolicyStore = Depends(get_policy_store),
    snapshots: SnapshotService = Depends(get_snapshot_service),
) -> List[Dict[str, str]]:
    policy = await store.get(shop.shop_id)
    snapshot = await snapshots.get_snapshot(shop.shop_id)
    return [
        {
            "product_id": plan.product_id,
            "from_state": plan.from_state.value,
            "to_state": plan.to_state.value,
            "reason": plan.reason.value,
        }
        for plan in plan_all(snapshot.products, policy)
        if plan.is_mutation
    ]


@router.post("/{shop_id}/sync", response_model=SyncResult)
async def trigger_sync(
    shop: ShopConfig = Depends(require_shop),
    store: SqlPolicyStore = Depends(get_policy_store),
    sync: SyncService = Depends(get_sync_service),
    db: AsyncSession = Depends(get_db),
) -> SyncResult:
    try:
        result = await sync.sync_scope(shop.shop_id, store)
    except UnknownScopeError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    await record_sync_run(db, result)
    await db.commit()

    if result.failed:
        logger.warning(
            "Sync for shop=%s: %d of %d products updated, %d failed",
            shop.shop_id, result.succeeded, result.attempted, result.failed,
        )
    return result


@router.post("/{shop_id}/sync/cancel")
async def cancel_sync(
    shop: ShopConfig = Depends(require_shop),
    sync: SyncService = Depends(get_sync_service),
) -> Dict[str, bool]:
    return {"cancelled": sync.cancel(shop.shop_id)}


@router.get("/{shop_id}/sync-runs", response_model=List[SyncRunRow])
async def sync_runs(
    limit: int = Query(default=20, ge=1, le=200),
    shop: ShopConfig = Depends(require_shop),
    db: AsyncSession = Depends(get_db),
) -> List[SyncRunRow]:
    runs = await list_sync_runs(db, shop.shop_id, limit=limit)
    return [to_row(r) for r in runs]
