"""
Cache-backed catalog snapshots.

A miss runs one batch wave for shop info plus the first product page, then one
wave per further page while the cursor says there is more. A complete snapshot
replaces the cached entry in a single set(); a snapshot that hit query errors
is returned to the caller but not cached, so the next request tries again.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from shelfsync.config import get_settings
from shelfsync.errors import CatalogError
from shelfsync.schemas import Product, ShopInfo, Snapshot
from shelfsync.services.batch import BatchQueryExecutor, QueryResult
from shelfsync.services.cache import TTLCache, snapshot_cache
from shelfsync.services.shopify_client import (
    ShopifyClient,
    client_for_scope,
    parse_products_page,
    parse_shop,
    products_query,
    shop_query,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], ShopifyClient]


def cache_key(scope: str) -> str:
    return f"snapshot:{scope}"


class SnapshotService:
    def __init__(
        self,
        client_for: ClientFactory = client_for_scope,
        cache: TTLCache = snapshot_cache,
        ttl_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        query_timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.client_for = client_for
        self.cache = cache
        self.ttl_seconds = settings.snapshot_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.page_size = page_size or settings.product_page_size
        self.max_pages = max_pages if max_pages is not None else settings.max_product_pages
        self.query_timeout = query_timeout or settings.query_timeout_seconds
        self.max_concurrency = max_concurrency or settings.query_max_concurrency

    async def get_snapshot(self, scope: str, refresh: bool = False) -> Snapshot:
        key = cache_key(scope)
        if not refresh:
            cached = self.cache.get(key)
            if cached.hit:
                logger.debug("Snapshot cache hit scope=%s", scope)
                return cached.value

        logger.info("Snapshot cache miss scope=%s – fetching", scope)
        snapshot = await self.fetch_snapshot(scope)
        if snapshot.errors:
            logger.warning(
                "Snapshot for scope=%s incomplete (%d errors) – not cached",
                scope, len(snapshot.errors),
            )
        else:
            self.cache.set(key, snapshot, self.ttl_seconds * 1000)
        return snapshot

    async def get_products(self, scope: str) -> List[Product]:
        return list((await self.get_snapshot(scope)).products)

    def invalidate(self, scope: str) -> bool:
        return self.cache.invalidate(cache_key(scope))

    async def fetch_snapshot(self, scope: str) -> Snapshot:
        client = self.client_for(scope)
        executor = BatchQueryExecutor(
            client.run_query,
            timeout=self.query_timeout,
            max_concurrency=self.max_concurrency,
        )

        errors: List[str] = []
        shop_result, first_page = await executor.execute(
            [shop_query(), products_query(self.page_size)]
        )

        shop = ShopInfo()
        if shop_result.ok:
            shop = parse_shop(shop_result.value)
        else:
            errors.append(f"shop: {shop_result.error}")

        products: List[Product] = []
        page_result: QueryResult = first_page
        pages = 0
        partial = False
        while True:
            pages += 1
            parsed, page_error = self._parse_page(page_result)
            if page_error:
                errors.append(f"products page {pages}: {page_error}")
                partial = True
                break
            page_products, cursor = parsed
            products.extend(page_products)
            if cursor is None:
                break
            if self.max_pages is not None and pages >= self.max_pages:
                logger.warning(
                    "Stopping pagination for scope=%s after %d pages", scope, pages
                )
                partial = True
                break
            (page_result,) = await executor.execute(
                [products_query(self.page_size, cursor)]
            )

        return Snapshot(
            scope=scope,
            shop=shop,
            products=tuple(products),
            fetched_at=datetime.now(timezone.utc),
            partial=partial,
            errors=tuple(errors),
        )

    @staticmethod
    def _parse_page(
        result: QueryResult,
    ) -> Tuple[Tuple[List[Product], Optional[str]], Optional[str]]:
        if not result.ok:
            return ([], None), result.error
        try:
            return parse_products_page(result.value), None
        except (CatalogError, KeyError, TypeError, ValueError) as exc:
            return ([], None), str(exc) or type(exc).__name__
