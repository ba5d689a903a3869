"""Catalog handle over a pluggable store with per-coverage sources and sinks."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from mosaicidx.config import Prop, RunConfiguration
from mosaicidx.errors import ReconcileError, StoreBackendError
from mosaicidx.footprints import FootprintProvider
from mosaicidx.models import Envelope, FeatureSchema, GranuleRecord
from mosaicidx.properties import load_properties
from mosaicidx.stores.base import CatalogStore, EqualsFilter, Transaction
from mosaicidx.stores.registry import open_store

LOGGER = logging.getLogger(__name__)

DATASTORE_PROPERTIES = "datastore.properties"
DRIVER_KEY = "SPI"
PARENT_LOCATION = "ParentLocation"
DEFAULT_DRIVER = "sqlite"
DEFAULT_SUFFIX = ".sqlite"


class RecordSource:
    """Read access to the records of one coverage."""

    def __init__(self, store: CatalogStore, type_name: str) -> None:
        self.store = store
        self.type_name = type_name

    def records(self, record_filter: EqualsFilter | None = None) -> list[GranuleRecord]:
        return self.store.query(self.type_name, record_filter)

    def count(self, record_filter: EqualsFilter | None = None) -> int:
        return self.store.count(self.type_name, record_filter)

    def bounds(self) -> Envelope | None:
        return self.store.bounds(self.type_name)


class RecordSink:
    """Transactional write access to the records of one coverage."""

    def __init__(self, store: CatalogStore, type_name: str, footprints: FootprintProvider) -> None:
        self.store = store
        self.type_name = type_name
        self.footprints = footprints
        self._transaction: Transaction | None = None

    def set_transaction(self, transaction: Transaction | None) -> None:
        self._transaction = transaction

    def remove(self, record_filter: EqualsFilter) -> int:
        return self.store.remove_records(self.type_name, record_filter, self._transaction)

    def add(self, records: Sequence[GranuleRecord], granule: Path | None = None) -> int:
        """Insert records, replacing their geometry with the granule footprint if any."""
        if granule is not None:
            footprint = self.footprints.footprint(granule)
            if footprint is not None:
                LOGGER.debug("Applying footprint override to %s", granule)
                for record in records:
                    if record.schema.geometry_name is not None:
                        record.geometry = footprint
        return self.store.add_records(self.type_name, records, self._transaction)


class CatalogHandle:
    """Uniform catalog facade used by the reconciler and the finalizer."""

    def __init__(self, store: CatalogStore, footprints: FootprintProvider) -> None:
        self.store = store
        self.footprints = footprints

    def create_coverage(self, schema: FeatureSchema) -> None:
        self.store.create_schema(schema)

    def schema(self, type_name: str) -> FeatureSchema | None:
        return self.store.get_schema(type_name)

    def coverage_names(self) -> tuple[str, ...]:
        return self.store.type_names()

    def source(self, type_name: str) -> RecordSource:
        if self.schema(type_name) is None:
            raise ReconcileError(f"No catalog coverage named {type_name}")
        return RecordSource(self.store, type_name)

    def sink(self, type_name: str) -> RecordSink:
        if self.schema(type_name) is None:
            raise ReconcileError(f"Unable to find a sink for coverage {type_name}")
        return RecordSink(self.store, type_name, self.footprints)

    def transaction(self) -> Transaction:
        return self.store.begin()

    def bounds(self, type_name: str) -> Envelope | None:
        return self.store.bounds(type_name)

    def close(self) -> None:
        self.store.close()


def _datastore_params(configuration: RunConfiguration, path: Path) -> tuple[str, dict[str, str]]:
    try:
        params = load_properties(path)
    except OSError as exc:
        raise StoreBackendError(f"Unable to read {path}: {exc}") from exc
    driver = params.pop(DRIVER_KEY, "").strip()
    if not driver:
        raise StoreBackendError(f"{path.name} does not declare a {DRIVER_KEY} driver.")
    type_name = configuration.parameter(Prop.TYPENAME)
    if type_name and Prop.TYPENAME not in params:
        params[Prop.TYPENAME] = type_name
    return driver, params


def open_catalog(configuration: RunConfiguration, create: bool) -> CatalogHandle:
    """Open the catalog described by the root directory.

    A ``datastore.properties`` file selects a driver by name; without it the
    catalog is a SQLite database named after the index.
    """
    root = configuration.root
    properties_path = root / DATASTORE_PROPERTIES
    if properties_path.is_file():
        driver, params = _datastore_params(configuration, properties_path)
    else:
        driver = DEFAULT_DRIVER
        params = {
            "database": configuration.index_name + DEFAULT_SUFFIX,
            "spatial_index": "true",
        }
    params[PARENT_LOCATION] = root.as_uri()
    if configuration.flag(Prop.WRAP_STORE):
        params[Prop.WRAP_STORE] = "true"
    LOGGER.debug("Opening %s catalog in %s (create=%s)", driver, root, create)
    store = open_store(driver, params, create)
    return CatalogHandle(store, FootprintProvider(root))
