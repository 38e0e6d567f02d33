"""
Shelfsync – inventory-driven storefront visibility service, FastAPI entry point.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shelfsync.config import get_settings
from shelfsync.deps import get_snapshot_service
from shelfsync.routers import admin, shops, webhooks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s – %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title="Shelfsync",
    version="1.0.0",
    description="Cached catalog snapshots and stock-driven product visibility sync for Shopify shops.",
)

# ── Middleware ────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(admin.router)
app.include_router(shops.router)
app.include_router(webhooks.router)


# ── Startup / shutdown ────────────────────────────────────────────────────────

_SWEEP_INTERVAL_SECONDS = 300


async def _cache_sweeper() -> None:
    """Drop expired snapshots every few minutes so memory stays bounded."""
    cache = get_snapshot_service().cache
    while True:
        await asyncio.sleep(_SWEEP_INTERVAL_SECONDS)
        try:
            cache.sweep()
        except Exception as exc:
            logger.exception("Cache sweep failed: %s", exc)


_background: list[asyncio.Task] = []


@app.on_event("startup")
async def _startup() -> None:
    logger.info("Configured shops: %s", ", ".join(s.shop_id for s in settings.shops) or "none")
    _background.append(asyncio.create_task(_cache_sweeper(), name="cache-sweeper"))
    logger.info("Shelfsync service ready.")


@app.on_event("shutdown")
async def _shutdown() -> None:
    for task in _background:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    _background.clear()
