"""
Tests for the Shopify GraphQL client using httpx.MockTransport (no network).
"""
from __future__ import annotations

import json

import httpx
import pytest

from shelfsync.config import ShopConfig
from shelfsync.errors import PermanentCatalogError, TransientCatalogError, UnknownScopeError
from shelfsync.schemas import VisibilityState
from shelfsync.services.shopify_client import (
    ShopifyClient,
    client_for_scope,
    parse_products_page,
    products_query,
)

SHOP = ShopConfig(shop_id="shop1", shop_domain="shop1.myshopify.com", access_token="tok1")


def _client(handler) -> ShopifyClient:
    return ShopifyClient(SHOP, transport=httpx.MockTransport(handler))


def _page(nodes, has_next=False, cursor=None) -> dict:
    return {
        "products": {
            "edges": [{"node": n} for n in nodes],
            "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
        }
    }


def test_parse_products_page_filters_and_clamps():
    products, cursor = parse_products_page(
        _page(
            [
                {"id": "gid://1", "title": "One", "status": "ACTIVE", "totalInventory": 4},
                {"id": "gid://2", "title": "Two", "status": "DRAFT", "totalInventory": -3},
                {"id": "gid://3", "title": "Old", "status": "ARCHIVED", "totalInventory": 9},
                {"id": "gid://4", "title": "None", "status": "ACTIVE", "totalInventory": None},
            ],
            has_next=True,
            cursor="abc",
        )
    )

    assert [p.id for p in products] == ["gid://1", "gid://2", "gid://4"]
    assert products[1].stock_quantity == 0
    assert products[1].visibility_state is VisibilityState.DRAFT
    assert products[2].stock_quantity == 0
    assert cursor == "abc"


def test_parse_last_page_has_no_cursor():
    _, cursor = parse_products_page(_page([], has_next=False, cursor="zzz"))
    assert cursor is None


def test_parse_malformed_page():
    with pytest.raises(PermanentCatalogError):
        parse_products_page({"shop": {}})


@pytest.mark.asyncio
async def test_run_query_sends_token_and_variables():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["token"] = request.headers["X-Shopify-Access-Token"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": _page([])})

    data = await _client(handler).run_query(products_query(25, "cur"))

    assert seen["url"] == "https://shop1.myshopify.com/admin/api/2024-10/graphql.json"
    assert seen["token"] == "tok1"
    assert seen["body"]["variables"] == {"first": 25, "after": "cur"}
    assert "products" in data


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [429, 500, 503])
async def test_rate_limit_and_server_errors_are_transient(status_code):
    client = _client(lambda request: httpx.Response(status_code, text="nope"))
    with pytest.raises(TransientCatalogError):
        await client.execute("{ shop { name } }")


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 403, 404])
async def test_client_errors_are_permanent(status_code):
    client = _client(lambda request: httpx.Response(status_code, text="nope"))
    with pytest.raises(PermanentCatalogError):
        await client.execute("{ shop { name } }")


@pytest.mark.asyncio
async def test_graphql_throttle_is_transient():
    body = {"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}
    client = _client(lambda request: httpx.Response(200, json=body))
    with pytest.raises(TransientCatalogError):
        await client.execute("{ shop { name } }")


@pytest.mark.asyncio
async def test_graphql_field_error_is_permanent():
    body = {"errors": [{"message": "Field 'x' doesn't exist"}]}
    client = _client(lambda request: httpx.Response(200, json=body))
    with pytest.raises(PermanentCatalogError):
        await client.execute("{ x }")


@pytest.mark.asyncio
async def test_non_json_body_is_permanent():
    client = _client(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(PermanentCatalogError):
        await client.execute("{ shop { name } }")


@pytest.mark.asyncio
async def test_transport_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientCatalogError):
        await _client(handler).execute("{ shop { name } }")


@pytest.mark.asyncio
async def test_set_product_status_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["variables"] = json.loads(request.content)["variables"]
        return httpx.Response(
            200,
            json={
                "data": {
                    "productUpdate": {
                        "product": {"id": "gid://1", "status": "DRAFT"},
                        "userErrors": [],
                    }
                }
            },
        )

    await _client(handler).set_product_status("gid://1", VisibilityState.DRAFT)
    assert seen["variables"] == {"input": {"id": "gid://1", "status": "DRAFT"}}


@pytest.mark.asyncio
async def test_set_product_status_user_error_is_permanent():
    body = {
        "data": {
            "productUpdate": {
                "product": None,
                "userErrors": [{"field": ["id"], "message": "Product does not exist"}],
            }
        }
    }
    client = _client(lambda request: httpx.Response(200, json=body))

    with pytest.raises(PermanentCatalogError, match="does not exist"):
        await client.set_product_status("gid://404", VisibilityState.ACTIVE)


def test_client_for_scope():
    assert client_for_scope("shop1").shop.access_token == "tok1"
    with pytest.raises(UnknownScopeError):
        client_for_scope("missing")


@pytest.mark.parametrize("edge", [None, "gid://1", {"node": None}, {"node": {"title": "No id"}}])
def test_parse_rejects_broken_edges(edge):
    with pytest.raises(PermanentCatalogError, match="malformed product edge"):
        parse_products_page({"products": {"edges": [edge], "pageInfo": {}}})
