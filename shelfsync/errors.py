"""
Exception types shared by the catalog client, the sync engine and the routers.
"""
from __future__ import annotations


class CatalogError(Exception):
    """Base class for errors reported by the external catalog API."""

    transient = False


class TransientCatalogError(CatalogError):
    """Rate limit, throttle, timeout or 5xx – safe to retry with backoff."""

    transient = True


class PermanentCatalogError(CatalogError):
    """Not found, invalid state, rejected input – retrying will not help."""


class UnknownScopeError(LookupError):
    """Raised when a shop_id is not present in the SHOPS configuration."""

    def __init__(self, scope: str) -> None:
        super().__init__(f"shop_id {scope!r} not configured")
        self.scope = scope
