"""
Visibility reconciliation: converge product status (ACTIVE/DRAFT) on a policy.

Architecture:
  - plan_transition() decides per product, with no I/O.
  - no_change plans are dropped before any network call.
  - Mutating plans are applied in waves of at most batch_size concurrent calls,
    with a pause between waves to stay under the platform's rate limit.
  - Each item retries transient failures with exponential backoff and fails
    immediately on permanent ones. Every run ends in a SyncResult.

The engine keeps nothing between runs; callers serialise runs per scope.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Sequence, Set

from shelfsync.errors import CatalogError
from shelfsync.schemas import Product, SyncError, SyncResult, VisibilityPolicy, VisibilityState

logger = logging.getLogger(__name__)


class TransitionReason(str, enum.Enum):
    OUT_OF_STOCK = "out_of_stock"
    RESTOCKED = "restocked"
    NO_CHANGE = "no_change"


@dataclass(frozen=True)
class TransitionPlan:
    product_id: str
    from_state: VisibilityState
    to_state: VisibilityState
    reason: TransitionReason

    @property
    def is_mutation(self) -> bool:
        return self.reason is not TransitionReason.NO_CHANGE


class StatusWriter(Protocol):
    async def set_product_status(self, product_id: str, state: VisibilityState) -> None:
        ...


# ── Planning ─────────────────────────────────────────────────────────────────

def plan_transition(product: Product, policy: VisibilityPolicy) -> TransitionPlan:
    state = product.visibility_state
    stock = product.stock_quantity

    if policy.enabled:
        if policy.hide_out_of_stock and stock == 0 and state is VisibilityState.ACTIVE:
            return TransitionPlan(
                product.id, state, VisibilityState.DRAFT, TransitionReason.OUT_OF_STOCK
            )
        if policy.show_when_restocked and stock > 0 and state is VisibilityState.DRAFT:
            return TransitionPlan(
                product.id, state, VisibilityState.ACTIVE, TransitionReason.RESTOCKED
            )

    return TransitionPlan(product.id, state, state, TransitionReason.NO_CHANGE)


def plan_all(products: Iterable[Product], policy: VisibilityPolicy) -> List[TransitionPlan]:
    """One plan per product id; a repeated id keeps its first record."""
    if policy is None:
        raise ValueError("policy is required")
    seen: Set[str] = set()
    plans: List[TransitionPlan] = []
    for product in products:
        if product.id in seen:
            logger.debug("Duplicate product id=%s ignored", product.id)
            continue
        seen.add(product.id)
        plans.append(plan_transition(product, policy))
    return plans


# ── Applying ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class _Outcome:
    plan: TransitionPlan
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReconciliationEngine:
    def __init__(
        self,
        writer: StatusWriter,
        batch_size: int = 10,
        wave_delay: float = 0.5,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        mutation_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if mutation_timeout <= 0:
            raise ValueError("mutation_timeout must be positive")
        self.writer = writer
        self.batch_size = batch_size
        self.wave_delay = wave_delay
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.mutation_timeout = mutation_timeout
        self._sleep = sleep

    async def run(
        self,
        scope: str,
        policy: VisibilityPolicy,
        products: Sequence[Product],
        cancel: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        if policy is None:
            raise ValueError("policy is required")

        started_at = datetime.now(timezone.utc)

        if not policy.enabled:
            logger.info("Visibility sync disabled for scope=%s – nothing to do", scope)
            return SyncResult(scope=scope, started_at=started_at, finished_at=started_at)

        pending = [plan for plan in plan_all(products, policy) if plan.is_mutation]
        logger.info(
            "Visibility sync scope=%s: %d products, %d transitions planned",
            scope, len(products), len(pending),
        )

        outcomes: List[_Outcome] = []
        cancelled = False
        waves = [
            pending[i : i + self.batch_size]
            for i in range(0, len(pending), self.batch_size)
        ]

        for index, wave in enumerate(waves):
            if index > 0 and self.wave_delay > 0:
                await self._sleep(self.wave_delay)
            if cancel is not None and cancel.is_set():
                cancelled = True
                logger.warning(
                    "Visibility sync scope=%s cancelled before wave %d/%d",
                    scope, index + 1, len(waves),
                )
                break
            outcomes.extend(
                await asyncio.gather(*(self._apply(scope, plan) for plan in wave))
            )

        return self._summarize(scope, pending, outcomes, cancelled, started_at)

    async def _apply(self, scope: str, plan: TransitionPlan) -> _Outcome:
        """Apply one plan with bounded retries. Never raises."""
        last_error = ""
        for attempt in range(1, self.max_retries + 1):
            try:
                await asyncio.wait_for(
                    self.writer.set_product_status(plan.product_id, plan.to_state),
                    self.mutation_timeout,
                )
                logger.debug(
                    "Applied scope=%s product=%s %s -> %s (attempt %d)",
                    scope, plan.product_id, plan.from_state.value,
                    plan.to_state.value, attempt,
                )
                return _Outcome(plan)
            except asyncio.TimeoutError:
                last_error = f"timed out after {self.mutation_timeout}s"
            except CatalogError as exc:
                last_error = str(exc) or type(exc).__name__
                if not exc.transient:
                    logger.error(
                        "Permanent failure scope=%s product=%s: %s",
                        scope, plan.product_id, last_error,
                    )
                    return _Outcome(plan, last_error)
            except Exception as exc:
                logger.exception(
                    "Unexpected error scope=%s product=%s", scope, plan.product_id
                )
                return _Outcome(plan, str(exc) or type(exc).__name__)

            logger.warning(
                "Transient failure scope=%s product=%s attempt=%d/%d: %s",
                scope, plan.product_id, attempt, self.max_retries, last_error,
            )
            if attempt < self.max_retries:
                await self._sleep(self.retry_base_delay * (2 ** (attempt - 1)))

        logger.error(
            "Giving up after %d attempts scope=%s product=%s",
            self.max_retries, scope, plan.product_id,
        )
        return _Outcome(plan, last_error)

    def _summarize(
        self,
        scope: str,
        pending: Sequence[TransitionPlan],
        outcomes: Sequence[_Outcome],
        cancelled: bool,
        started_at: datetime,
    ) -> SyncResult:
        succeeded = [o for o in outcomes if o.ok]
        errors = tuple(
            SyncError(product_id=o.plan.product_id, message=o.error)
            for o in outcomes
            if not o.ok
        )
        result = SyncResult(
            scope=scope,
            attempted=len(outcomes),
            succeeded=len(succeeded),
            failed=len(errors),
            errors=errors,
            hidden=sum(1 for o in succeeded if o.plan.to_state is VisibilityState.DRAFT),
            shown=sum(1 for o in succeeded if o.plan.to_state is VisibilityState.ACTIVE),
            skipped=len(pending) - len(outcomes),
            cancelled=cancelled,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Visibility sync complete scope=%s attempted=%d succeeded=%d failed=%d "
            "hidden=%d shown=%d skipped=%d",
            scope, result.attempted, result.succeeded, result.failed,
            result.hidden, result.shown, result.skipped,
        )
        return result
