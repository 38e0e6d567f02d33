"""
Caller-facing sync entry points.

Runs for the same scope (shop) are serialised with a per-scope asyncio.Lock;
different scopes run independently. The lock covers the snapshot refresh as
well as the mutations, so a queued run always plans from post-sync state.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Sequence

from shelfsync.config import get_settings
from shelfsync.schemas import Product, SyncResult, VisibilityPolicy
from shelfsync.services.policy_store import PolicyStore
from shelfsync.services.reconciliation import ReconciliationEngine, StatusWriter
from shelfsync.services.shopify_client import client_for_scope
from shelfsync.services.snapshot import SnapshotService

logger = logging.getLogger(__name__)

WriterFactory = Callable[[str], StatusWriter]


class SyncService:
    def __init__(
        self,
        snapshots: SnapshotService,
        writer_for: WriterFactory = client_for_scope,
        batch_size: Optional[int] = None,
        wave_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        mutation_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.snapshots = snapshots
        self.writer_for = writer_for
        self.batch_size = batch_size or settings.sync_batch_size
        self.wave_delay = settings.sync_wave_delay_seconds if wave_delay is None else wave_delay
        self.max_retries = max_retries or settings.sync_max_retries
        self.retry_base_delay = (
            settings.sync_retry_base_seconds if retry_base_delay is None else retry_base_delay
        )
        self.mutation_timeout = mutation_timeout or settings.mutation_timeout_seconds
        self._sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    def lock_for(self, scope: str) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = self._locks.setdefault(scope, asyncio.Lock())
        return lock

    def is_running(self, scope: str) -> bool:
        return self.lock_for(scope).locked()

    def cancel(self, scope: str) -> bool:
        """Ask the in-flight run for *scope* to stop before its next wave."""
        event = self._cancel_events.get(scope)
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested for scope=%s", scope)
        return True

    def engine_for(self, scope: str) -> ReconciliationEngine:
        return ReconciliationEngine(
            self.writer_for(scope),
            batch_size=self.batch_size,
            wave_delay=self.wave_delay,
            max_retries=self.max_retries,
            retry_base_delay=self.retry_base_delay,
            mutation_timeout=self.mutation_timeout,
            sleep=self._sleep,
        )

    async def run_sync(
        self,
        scope: str,
        policy: VisibilityPolicy,
        products: Sequence[Product],
        cancel: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Reconcile *products* against *policy* for one scope."""
        if policy is None:
            raise ValueError("policy is required")
        async with self.lock_for(scope):
            return await self._run(scope, policy, products, cancel)

    async def sync_scope(
        self,
        scope: str,
        store: PolicyStore,
        cancel: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Read the stored policy and a fresh snapshot, then reconcile."""
        async with self.lock_for(scope):
            policy = await store.get(scope)
            if not policy.enabled:
                return await self._run(scope, policy, (), cancel)

            snapshot = await self.snapshots.get_snapshot(scope, refresh=True)
            if snapshot.errors:
                logger.warning(
                    "Syncing scope=%s from an incomplete snapshot (%d products): %s",
                    scope, len(snapshot.products), "; ".join(snapshot.errors),
                )
            return await self._run(scope, policy, snapshot.products, cancel)

    async def _run(
        self,
        scope: str,
        policy: VisibilityPolicy,
        products: Sequence[Product],
        cancel: Optional[asyncio.Event],
    ) -> SyncResult:
        event = cancel or asyncio.Event()
        self._cancel_events[scope] = event
        try:
            result = await self.engine_for(scope).run(scope, policy, products, cancel=event)
        finally:
            self._cancel_events.pop(scope, None)

        if result.succeeded:
            # Cached snapshot still shows the old statuses
            self.snapshots.invalidate(scope)
        return result
