"""
Sync run history: persist each SyncResult for the dashboard's activity panel.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.models import SyncRun
from shelfsync.schemas import SyncError, SyncResult, SyncRunRow

logger = logging.getLogger(__name__)


async def record_sync_run(session: AsyncSession, result: SyncResult) -> SyncRun:
    now = datetime.now(timezone.utc)
    run = SyncRun(
        scope=result.scope,
        attempted=result.attempted,
        succeeded=result.succeeded,
        failed=result.failed,
        hidden=result.hidden,
        shown=result.shown,
        skipped=result.skipped,
        cancelled=result.cancelled,
        errors=[e.model_dump() for e in result.errors],
        started_at=result.started_at or now,
        finished_at=result.finished_at or now,
    )
    session.add(run)
    await session.flush()
    logger.debug("Recorded sync run id=%s scope=%s", run.id, run.scope)
    return run


async def list_sync_runs(session: AsyncSession, scope: str, limit: int = 20) -> List[SyncRun]:
    rows = (
        await session.execute(
            select(SyncRun)
            .where(SyncRun.scope == scope)
            .order_by(SyncRun.id.desc())
            .limit(limit)
        )
    ).scalars().all()
    return list(rows)


def to_row(run: SyncRun) -> SyncRunRow:
    return SyncRunRow(
        id=run.id,
        scope=run.scope,
        attempted=run.attempted,
        succeeded=run.succeeded,
        failed=run.failed,
        hidden=run.hidden,
        shown=run.shown,
        skipped=run.skipped,
        cancelled=run.cancelled,
        errors=[SyncError(**e) for e in run.errors or []],
        started_at=run.started_at.isoformat(),
        finished_at=run.finished_at.isoformat(),
    )
