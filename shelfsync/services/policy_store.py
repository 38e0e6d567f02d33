"""
Visibility policy storage.

The sync engine never reads a global settings object; callers fetch the policy
from a PolicyStore at the start of each run and pass it in explicitly.
"""
from __future__ import annotations

import logging
from typing import Dict, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from shelfsync.models import ShopPolicy
from shelfsync.schemas import VisibilityPolicy

logger = logging.getLogger(__name__)


class PolicyStore(Protocol):
    async def get(self, scope: str) -> VisibilityPolicy:
        ...

    async def set(self, scope: str, policy: VisibilityPolicy) -> VisibilityPolicy:
        ...


class InMemoryPolicyStore:
    """Process-local store; unknown scopes get *default*."""

    def __init__(self, default: VisibilityPolicy | None = None) -> None:
        self._default = default or VisibilityPolicy()
        self._policies: Dict[str, VisibilityPolicy] = {}

    async def get(self, scope: str) -> VisibilityPolicy:
        return self._policies.get(scope, self._default)

    async def set(self, scope: str, policy: VisibilityPolicy) -> VisibilityPolicy:
        self._policies[scope] = policy
        return policy


class SqlPolicyStore:
    """Policy rows in shop_policies, bound to the caller's session."""

    def __init__(self, session: AsyncSession, default: VisibilityPolicy | None = None) -> None:
        self.session = session
        self._default = default or VisibilityPolicy()

    async def get(self, scope: str) -> VisibilityPolicy:
        row = await self.session.get(ShopPolicy, scope)
        if row is None:
            return self._default
        return VisibilityPolicy(
            enabled=row.enabled,
            hide_out_of_stock=row.hide_out_of_stock,
            show_when_restocked=row.show_when_restocked,
            low_stock_threshold=row.low_stock_threshold,
        )

    async def set(self, scope: str, policy: VisibilityPolicy) -> VisibilityPolicy:
        row = await self.session.get(ShopPolicy, scope)
        if row is None:
            row = ShopPolicy(scope=scope)
        row.enabled = policy.enabled
        row.hide_out_of_stock = policy.hide_out_of_stock
        row.show_when_restocked = policy.show_when_restocked
        row.low_stock_threshold = policy.low_stock_threshold
        self.session.add(row)
        await self.session.flush()
        logger.info(
            "Policy updated scope=%s enabled=%s hide=%s show=%s threshold=%d",
            scope, policy.enabled, policy.hide_out_of_stock,
            policy.show_when_restocked, policy.low_stock_threshold,
        )
        return policy
