"""
Shared pytest fixtures – in-memory SQLite and a fake Shopify catalog
(no real Postgres or network needed).
"""
from __future__ import annotations

import asyncio
import json
import os
from typing import AsyncGenerator, Dict, Iterable, List, Optional

# Configure test env before any shelfsync import reads settings
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
TEST_SECRET = "testsecret"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["WEBHOOK_SHARED_SECRET"] = TEST_SECRET
os.environ["SHOPS"] = json.dumps(
    [
        {"shop_id": "shop1", "shop_domain": "shop1.myshopify.com", "access_token": "tok1"},
        {"shop_id": "shop2", "shop_domain": "shop2.myshopify.com", "access_token": "tok2"},
    ]
)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shelfsync.errors import PermanentCatalogError  # noqa: E402
from shelfsync.models import Base  # noqa: E402
from shelfsync.schemas import Product, VisibilityState  # noqa: E402
from shelfsync.services.batch import QueryDescriptor  # noqa: E402


class FakeCatalog:
    """
    In-memory stand-in for one shop's catalog read + mutation API.

    failures[product_id] is a list of exceptions raised by successive
    set_product_status calls; once exhausted the call succeeds.
    always_fail[product_id] is raised on every call.
    """

    def __init__(self, products: Iterable[Product] = (), shop_name: str = "Test Shop") -> None:
        self.products: Dict[str, Product] = {p.id: p for p in products}
        self.shop_name = shop_name
        self.calls: List[tuple] = []
        self.queries: List[QueryDescriptor] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.always_fail: Dict[str, Exception] = {}
        self.query_errors: Dict[str, Exception] = {}
        self.mutation_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def current_products(self) -> List[Product]:
        return list(self.products.values())

    async def run_query(self, descriptor: QueryDescriptor) -> dict:
        self.queries.append(descriptor)
        await asyncio.sleep(0)
        if descriptor.name in self.query_errors:
            raise self.query_errors[descriptor.name]
        if descriptor.name == "shop":
            return {
                "shop": {
                    "name": self.shop_name,
                    "email": "owner@example.com",
                    "myshopifyDomain": "shop1.myshopify.com",
                }
            }

        first = descriptor.variables["first"]
        start = int(descriptor.variables.get("after") or 0)
        items = self.current_products()
        page = items[start : start + first]
        end = start + len(page)
        return {
            "products": {
                "edges": [
                    {
                        "node": {
                            "id": p.id,
                            "title": p.name,
                            "status": p.visibility_state.value,
                            "totalInventory": p.stock_quantity,
                        }
                    }
                    for p in page
                ],
                "pageInfo": {"hasNextPage": end < len(items), "endCursor": str(end)},
            }
        }

    async def set_product_status(self, product_id: str, state: VisibilityState) -> None:
        self.calls.append((product_id, state))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.mutation_delay)
            if product_id in self.always_fail:
                raise self.always_fail[product_id]
            pending = self.failures.get(product_id)
            if pending:
                raise pending.pop(0)
            if product_id not in self.products:
                raise PermanentCatalogError(f"Product {product_id} does not exist")
            self.products[product_id] = self.products[product_id].model_copy(
                update={"visibility_state": state}
            )
        finally:
            self.in_flight -= 1

    def attempts_for(self, product_id: str) -> int:
        return sum(1 for pid, _ in self.calls if pid == product_id)


def make_product(
    product_id: str,
    stock: int,
    state: str = "ACTIVE",
    velocity: Optional[float] = None,
) -> Product:
    return Product(
        id=product_id,
        name=f"Product {product_id}",
        stock_quantity=stock,
        visibility_state=VisibilityState(state),
        sales_velocity=velocity,
    )


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog(
        [
            make_product("A", 0, "ACTIVE"),
            make_product("B", 5, "DRAFT"),
            make_product("C", 0, "DRAFT"),
        ]
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()
