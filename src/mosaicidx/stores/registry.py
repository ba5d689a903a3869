"""Store registry for named catalog drivers."""

from __future__ import annotations

import importlib
import logging
from functools import lru_cache
from importlib import metadata
from typing import Mapping, cast

from mosaicidx.errors import StoreBackendError
from mosaicidx.stores.base import CatalogStore, StoreFactory
from mosaicidx.stores.sqlite import SqliteCatalogStore

STORE_ENTRYPOINT_GROUP = "mosaicidx.stores"

LOGGER = logging.getLogger(__name__)

_BUILTIN_STORES: dict[str, StoreFactory] = {
    "sqlite": SqliteCatalogStore.from_params,
}


def _load_store_entrypoints() -> dict[str, StoreFactory]:
    """Load store factories from package entrypoints."""
    factories: dict[str, StoreFactory] = {}
    try:
        entry_points = metadata.entry_points(group=STORE_ENTRYPOINT_GROUP)
    except Exception as exc:  # pragma: no cover - entrypoint discovery failures are rare
        LOGGER.warning("Failed to read store entrypoints: %s", exc)
        return factories
    for entry_point in entry_points:
        try:
            candidate = entry_point.load()
        except Exception as exc:
            LOGGER.warning("Failed to load store entrypoint '%s': %s", entry_point.name, exc)
            continue
        if not callable(candidate):
            LOGGER.warning("Store entrypoint '%s' is not callable.", entry_point.name)
            continue
        factories[entry_point.name.lower()] = cast(StoreFactory, candidate)
    return factories


@lru_cache(maxsize=1)
def _store_factories() -> dict[str, StoreFactory]:
    """Return merged store factories from built-ins and entrypoints."""
    factories = dict(_BUILTIN_STORES)
    for name, factory in _load_store_entrypoints().items():
        if name in factories:
            LOGGER.warning("Store '%s' already registered; skipping entrypoint.", name)
            continue
        factories[name] = factory
    return factories


def refresh_stores() -> None:
    """Clear cached store factories and reload on demand."""
    _store_factories.cache_clear()


def list_stores() -> tuple[str, ...]:
    return tuple(sorted(_store_factories()))


def _import_factory(reference: str) -> StoreFactory:
    module_name, _, attribute = reference.partition(":")
    try:
        target = importlib.import_module(module_name)
        for part in attribute.split("."):
            target = getattr(target, part)
    except (ImportError, AttributeError) as exc:
        raise StoreBackendError(f"Unable to import catalog driver {reference}: {exc}") from exc
    if not callable(target):
        raise StoreBackendError(f"Catalog driver {reference} is not callable.")
    return cast(StoreFactory, target)


def get_store_factory(name: str) -> StoreFactory:
    """Resolve a driver name or a ``module:factory`` reference."""
    key = name.strip()
    if ":" in key:
        return _import_factory(key)
    try:
        return _store_factories()[key.lower()]
    except KeyError as exc:
        raise StoreBackendError(f"Unknown catalog driver: {name}") from exc


def open_store(name: str, params: Mapping[str, str], create: bool) -> CatalogStore:
    """Instantiate the named driver with its connection parameters."""
    factory = get_store_factory(name)
    try:
        return factory(params, create)
    except StoreBackendError:
        raise
    except Exception as exc:
        raise StoreBackendError(f"Failed to initialize catalog driver {name}: {exc}") from exc
