"""Catalog store backends."""

from mosaicidx.stores.base import CatalogStore, EqualsFilter, StoreSpec, Transaction
from mosaicidx.stores.registry import get_store_factory, list_stores, open_store, refresh_stores
from mosaicidx.stores.sqlite import SqliteCatalogStore

__all__ = [
    "CatalogStore",
    "EqualsFilter",
    "SqliteCatalogStore",
    "StoreSpec",
    "Transaction",
    "get_store_factory",
    "list_stores",
    "open_store",
    "refresh_stores",
]
