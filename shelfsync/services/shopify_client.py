"""
Thin Shopify Admin GraphQL client (no SDK dependency).
Uses the X-Shopify-Access-Token header with a per-shop Admin API token.

Every failure is raised as a TransientCatalogError (worth retrying) or a
PermanentCatalogError (not worth retrying).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from shelfsync.config import ShopConfig, get_settings
from shelfsync.errors import PermanentCatalogError, TransientCatalogError, UnknownScopeError
from shelfsync.schemas import Product, ShopInfo, VisibilityState
from shelfsync.services.batch import QueryDescriptor

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(30.0)

SHOP_QUERY = """
query getShop {
  shop {
    name
    email
    myshopifyDomain
  }
}
"""

PRODUCTS_QUERY = """
query getProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    edges {
      node {
        id
        title
        status
        totalInventory
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""

PRODUCT_STATUS_MUTATION = """
mutation setProductStatus($input: ProductInput!) {
  productUpdate(input: $input) {
    product {
      id
      status
    }
    userErrors {
      field
      message
    }
  }
}
"""


def shop_query() -> QueryDescriptor:
    return QueryDescriptor(name="shop", query=SHOP_QUERY)


def products_query(page_size: int, cursor: Optional[str] = None) -> QueryDescriptor:
    variables: Dict[str, Any] = {"first": page_size}
    if cursor:
        variables["after"] = cursor
    return QueryDescriptor(name="products", query=PRODUCTS_QUERY, variables=variables)


def parse_shop(data: Dict[str, Any]) -> ShopInfo:
    shop = (data or {}).get("shop") or {}
    return ShopInfo(
        name=shop.get("name") or "",
        email=shop.get("email") or "",
        domain=shop.get("myshopifyDomain") or "",
    )


def parse_products_page(
    data: Dict[str, Any],
) -> Tuple[List[Product], Optional[str]]:
    """
    Turn a products connection into Product records and the next cursor.
    Returns (products, next_cursor); next_cursor is None on the last page.
    Products in a status other than ACTIVE/DRAFT are left out.
    """
    try:
        connection = data["products"]
        edges = connection["edges"]
    except (KeyError, TypeError) as exc:
        raise PermanentCatalogError(f"malformed products response: missing {exc}") from exc

    products: List[Product] = []
    if not isinstance(edges, list):
        raise PermanentCatalogError("malformed products response: edges is not a list")
    for edge in edges:
        node = edge.get("node") if isinstance(edge, dict) else None
        if not isinstance(node, dict) or not node.get("id"):
            raise PermanentCatalogError(f"malformed product edge: {edge!r}")
        status = str(node.get("status", "")).upper()
        if status not in (VisibilityState.ACTIVE.value, VisibilityState.DRAFT.value):
            continue
        quantity = node.get("totalInventory") or 0
        if quantity < 0:
            # Oversold items report negative inventory; treat as out of stock
            quantity = 0
        products.append(
            Product(
                id=node["id"],
                name=node.get("title") or "",
                stock_quantity=int(quantity),
                visibility_state=VisibilityState(status),
            )
        )

    page_info = connection.get("pageInfo") or {}
    next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
    return products, next_cursor


def _raise_for_graphql_errors(errors: List[Dict[str, Any]]) -> None:
    messages = "; ".join(str(e.get("message", e)) for e in errors)
    codes = {(e.get("extensions") or {}).get("code") for e in errors}
    if "THROTTLED" in codes:
        raise TransientCatalogError(f"throttled: {messages}")
    if "INTERNAL_SERVER_ERROR" in codes:
        raise TransientCatalogError(messages)
    raise PermanentCatalogError(messages)


class ShopifyClient:
    """GraphQL access to one shop. transport is injectable for tests."""

    def __init__(
        self,
        shop: ShopConfig,
        timeout: httpx.Timeout = _TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.shop = shop
        self._timeout = timeout
        self._transport = transport

    @property
    def endpoint(self) -> str:
        domain = self.shop.shop_domain.rstrip("/")
        if not domain.startswith("http"):
            domain = f"https://{domain}"
        return f"{domain}/admin/api/{self.shop.api_version}/graphql.json"

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.shop.access_token,
            "Content-Type": "application/json",
        }

    async def execute(
        self, query: str, variables: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """POST a GraphQL document and return its `data` object."""
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(self.endpoint, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise TransientCatalogError(f"timeout talking to {self.shop.shop_id}") from exc
        except httpx.TransportError as exc:
            raise TransientCatalogError(f"transport error: {exc}") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            logger.warning(
                "Shopify API transient error shop=%s status=%d",
                self.shop.shop_id, resp.status_code,
            )
            raise TransientCatalogError(f"HTTP {resp.status_code}")
        if not resp.is_success:
            logger.error(
                "Shopify API error shop=%s status=%d body=%s",
                self.shop.shop_id, resp.status_code, resp.text[:300],
            )
            raise PermanentCatalogError(f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise PermanentCatalogError("malformed response: body is not JSON") from exc

        if body.get("errors"):
            _raise_for_graphql_errors(body["errors"])
        data = body.get("data")
        if data is None:
            raise PermanentCatalogError("malformed response: no data")
        return data

    async def run_query(self, descriptor: QueryDescriptor) -> Dict[str, Any]:
        """Query runner for BatchQueryExecutor."""
        return await self.execute(descriptor.query, descriptor.variables)

    async def set_product_status(self, product_id: str, state: VisibilityState) -> None:
        """Change a product's status; returns only on confirmed success."""
        data = await self.execute(
            PRODUCT_STATUS_MUTATION,
            {"input": {"id": product_id, "status": state.value}},
        )
        result = data.get("productUpdate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            messages = "; ".join(e.get("message", "") for e in user_errors)
            raise PermanentCatalogError(messages or "productUpdate rejected")
        if not result.get("product"):
            raise PermanentCatalogError(f"product {product_id} does not exist")
        logger.debug(
            "Set status shop=%s product=%s status=%s",
            self.shop.shop_id, product_id, state.value,
        )


def client_for_scope(scope: str) -> ShopifyClient:
    """Build a client for a shop_id from the SHOPS configuration."""
    shop = get_settings().shops_by_id.get(scope)
    if shop is None:
        raise UnknownScopeError(scope)
    return ShopifyClient(shop)
