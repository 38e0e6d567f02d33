"""
Batch query executor: run independent catalog reads as one concurrent wave.

Results come back in request order, one slot per query. A query that fails or
times out fills its own slot with an error; siblings are never aborted.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryDescriptor:
    name: str
    query: str
    variables: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QueryResult:
    name: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


QueryRunner = Callable[[QueryDescriptor], Awaitable[Any]]


class BatchQueryExecutor:
    """
    Stateless fan-out over a query runner (normally ShopifyClient.run_query).

    timeout applies to each query individually; max_concurrency, when set,
    bounds how many queries are in flight at once.
    """

    def __init__(
        self,
        runner: QueryRunner,
        timeout: float = 15.0,
        max_concurrency: Optional[int] = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._runner = runner
        self._timeout = timeout
        self._max_concurrency = max_concurrency

    async def execute(self, queries: Sequence[QueryDescriptor]) -> List[QueryResult]:
        if not queries:
            return []

        # A fresh semaphore per wave keeps the executor free of shared state
        gate = (
            asyncio.Semaphore(self._max_concurrency)
            if self._max_concurrency
            else None
        )
        started = time.perf_counter()
        results = await asyncio.gather(*(self._run_one(q, gate) for q in queries))

        failed = sum(1 for r in results if not r.ok)
        logger.info(
            "Batch wave: %d queries, %d failed, took %.1fms",
            len(queries), failed, (time.perf_counter() - started) * 1000,
        )
        return list(results)

    async def _run_one(
        self, query: QueryDescriptor, gate: Optional[asyncio.Semaphore]
    ) -> QueryResult:
        try:
            if gate is None:
                value = await asyncio.wait_for(self._runner(query), self._timeout)
            else:
                async with gate:
                    value = await asyncio.wait_for(self._runner(query), self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Query %s timed out after %.1fs", query.name, self._timeout)
            return QueryResult(name=query.name, error=f"timed out after {self._timeout}s")
        except Exception as exc:
            logger.warning("Query %s failed: %s", query.name, exc)
            return QueryResult(name=query.name, error=str(exc) or type(exc).__name__)
        return QueryResult(name=query.name, value=value)
