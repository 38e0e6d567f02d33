"""
Operational endpoints.

GET  /admin/health
POST /admin/cache/sweep
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.database import get_db
from shelfsync.deps import get_snapshot_service
from shelfsync.schemas import HealthResponse
from shelfsync.services.snapshot import SnapshotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        db_status = "error"
    return HealthResponse(status="ok", db=db_status)


@router.post("/cache/sweep")
async def sweep_cache(
    snapshots: SnapshotService = Depends(get_snapshot_service),
) -> dict:
    removed = snapshots.cache.sweep()
    return {"removed": removed, "size": snapshots.cache.size()}
