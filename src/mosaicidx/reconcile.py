"""Granule reconciliation: coverage bookkeeping and catalog updates per file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

import numpy as np
from pyproj import CRS
from shapely.geometry import box

from mosaicidx.catalog import CatalogHandle, open_catalog
from mosaicidx.collectors import PropertiesCollector, apply_collectors, build_collectors
from mosaicidx.config import (
    ADDITIONAL_DOMAIN,
    ELEVATION_DOMAIN,
    TIME_DOMAIN,
    Hint,
    Prop,
    RunConfiguration,
)
from mosaicidx.errors import ReconcileError, SkipGranule
from mosaicidx.events import EventDispatcher
from mosaicidx.models import (
    CatalogConfigurationBean,
    ColorModel,
    Envelope,
    GranuleRecord,
    MosaicConfiguration,
    Palette,
    ResolutionLevel,
)
from mosaicidx.paths import granule_location, is_case_insensitive
from mosaicidx.readers import EnvelopeOnly, GranuleReader, StructuredSource, describe_source
from mosaicidx.schema import schema_for
from mosaicidx.stores.base import EqualsFilter, Transaction

LOGGER = logging.getLogger(__name__)

# Relative tolerance when comparing resolution levels of two granules.
LEVEL_TOLERANCE = 1e-2


def parse_envelope(text: str) -> Envelope:
    """Parse ``"minx,miny maxx,maxy"`` into an envelope tuple."""
    corners = text.split()
    if len(corners) != 2:
        raise ValueError(f"Envelope must have two corners: {text!r}")
    lower = [float(value) for value in corners[0].split(",")]
    upper = [float(value) for value in corners[1].split(",")]
    if len(lower) != 2 or len(upper) != 2:
        raise ValueError(f"Envelope corners must have two ordinates: {text!r}")
    return (lower[0], lower[1], upper[0], upper[1])


def format_envelope(envelope: Envelope) -> str:
    minx, miny, maxx, maxy = envelope
    return f"{minx!r},{miny!r} {maxx!r},{maxy!r}"


def levels_match(count: int, levels: Sequence[ResolutionLevel], stored: Sequence[ResolutionLevel]) -> bool:
    """Compare the first ``count`` levels of two pyramids within tolerance."""
    if count <= 0:
        return True
    actual = np.asarray(levels[:count], dtype=float)
    expected = np.asarray(stored[:count], dtype=float)
    if actual.shape != expected.shape:
        return False
    return bool(np.allclose(actual, expected, rtol=LEVEL_TOLERANCE, atol=0.0))


def is_higher_resolution(levels: Sequence[ResolutionLevel], stored: Sequence[ResolutionLevel]) -> bool:
    """Return True when ``levels`` is finer at the first differing cell."""
    for row, stored_row in zip(levels, stored):
        for value, stored_value in zip(row, stored_row):
            if value < stored_value:
                return True
            if value > stored_value:
                return False
    return False


def color_models_differ(
    expected: ColorModel | None,
    palette: Palette | None,
    actual: ColorModel | None,
) -> bool:
    """Indexed models compare by palette, others by color interpretation."""
    if expected is None or actual is None:
        return expected is not actual
    if expected.is_indexed or actual.is_indexed:
        return palette != actual.palette
    return expected.color_interp != actual.color_interp


def crs_equal(expected: CRS | None, actual: CRS | None) -> bool:
    if expected is None or actual is None:
        return expected is None and actual is None
    return expected.equals(actual, ignore_axis_order=False)


@dataclass
class IndexingSession:
    """Mutable state of one harvest run.

    Owns the cancellation flag, the coverage configurations, the catalog
    handle and the collectors shared by every reconcile call.
    """

    configuration: RunConfiguration
    dispatcher: EventDispatcher = field(default_factory=EventDispatcher)
    configurations: dict[str, MosaicConfiguration] = field(default_factory=dict)
    catalog: CatalogHandle | None = None
    collectors: list[PropertiesCollector] = field(default_factory=list)
    imposed_envelope: Envelope | None = None
    suggested_driver: str | None = None
    _stopped: bool = False

    @property
    def use_existing_schema(self) -> bool:
        return self.configuration.use_existing_schema

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Request cancellation before the next file."""
        self._stopped = True

    def start(self) -> None:
        """Open the catalog, read the imposed envelope and load the collectors."""
        self.catalog = open_catalog(self.configuration, create=not self.use_existing_schema)
        envelope = self.configuration.parameter(Prop.ENVELOPE2D)
        if envelope:
            try:
                self.imposed_envelope = parse_envelope(envelope)
            except ValueError as exc:
                LOGGER.warning("Ignoring imposed envelope %r: %s", envelope, exc)
                self.imposed_envelope = None
        self.collectors = build_collectors(self.configuration.document)

    def coverage_name(self, reader: GranuleReader, input_name: str) -> str:
        """Structured readers name their coverages; others use the index name."""
        if isinstance(describe_source(reader, input_name), StructuredSource):
            return input_name
        return self.configuration.index_name

    def reset(self) -> None:
        self.dispatcher.remove_all_listeners()
        self._stopped = False

    def dispose(self) -> None:
        self.reset()
        self.configurations.clear()
        if self.catalog is not None:
            self.catalog.close()
            self.catalog = None


class GranuleReconciler:
    """Merge one granule at a time into its coverage and the catalog."""

    def __init__(self, session: IndexingSession) -> None:
        self.session = session

    @property
    def catalog(self) -> CatalogHandle:
        if self.session.catalog is None:
            raise ReconcileError("Catalog is not open; start the session first.")
        return self.session.catalog

    def prepare(self, reader: GranuleReader, input_name: str, path: Path) -> MosaicConfiguration:
        """Establish or check the coverage of one granule without writing records.

        A new coverage gets its catalog type here, outside any file transaction.
        Raises SkipGranule when the granule is incompatible with its coverage.
        """
        coverage_name = self.session.coverage_name(reader, input_name)
        mosaic = self.session.configurations.get(coverage_name)
        if mosaic is None:
            return self._establish(reader, input_name, coverage_name)
        self._check(mosaic, reader, input_name, path)
        return mosaic

    def write(
        self,
        mosaic: MosaicConfiguration,
        reader: GranuleReader,
        input_name: str,
        path: Path,
        transaction: Transaction,
    ) -> int:
        """Replace the catalog records of a prepared granule; returns the count written.

        The coverage granule count is left to the caller, once the transaction commits.
        """
        if self.session.use_existing_schema:
            return 0
        return self._update_catalog(mosaic, reader, input_name, path, transaction)

    def reconcile(
        self,
        reader: GranuleReader,
        input_name: str,
        path: Path,
        transaction: Transaction,
    ) -> int:
        """Prepare and write one granule coverage."""
        mosaic = self.prepare(reader, input_name, path)
        written = self.write(mosaic, reader, input_name, path, transaction)
        mosaic.granule_count += written
        return written

    def _establish(
        self,
        reader: GranuleReader,
        input_name: str,
        coverage_name: str,
    ) -> MosaicConfiguration:
        configuration = self.session.configuration
        document = configuration.document
        layout = reader.layout(input_name)
        levels = list(reader.resolution_levels(input_name))
        crs = reader.crs(input_name)
        color_model = layout.color_model
        hints = configuration.hints

        bean = CatalogConfigurationBean(
            type_name=configuration.parameter(Prop.TYPENAME) or coverage_name,
            location_attribute=configuration.location_attribute,
            absolute_path=configuration.absolute_path,
            caching=configuration.flag(Prop.CACHING),
            wrap_store=configuration.flag(Prop.WRAP_STORE),
        )
        mosaic = MosaicConfiguration(
            name=coverage_name,
            crs=crs,
            levels=[],
            levels_num=0,
            catalog=bean,
            sample_model=layout.sample_model,
            color_model=color_model,
            palette=color_model.palette if color_model is not None and color_model.is_indexed else None,
            time_attribute=document.attribute(coverage_name, TIME_DOMAIN),
            elevation_attribute=document.attribute(coverage_name, ELEVATION_DOMAIN),
            additional_domain_attributes=document.attribute(coverage_name, ADDITIONAL_DOMAIN),
            auxiliary_file_path=_hint(hints, Hint.AUXILIARY_FILE),
            auxiliary_datastore_path=_hint(hints, Hint.AUXILIARY_DATASTORE),
            check_auxiliary_metadata=configuration.flag(Prop.CHECK_AUXILIARY_METADATA),
            envelope=self.session.imposed_envelope,
        )
        mosaic.promote_levels(levels)

        if not self.session.use_existing_schema:
            schema = schema_for(configuration, coverage_name, crs).with_name(bean.type_name)
            self.catalog.create_coverage(schema)
        self.session.configurations[coverage_name] = mosaic
        LOGGER.info(
            "Established coverage %s with %d resolution level(s)",
            coverage_name,
            mosaic.levels_num,
            extra={"coverage": coverage_name},
        )
        return mosaic

    def _check(
        self,
        mosaic: MosaicConfiguration,
        reader: GranuleReader,
        input_name: str,
        path: Path,
    ) -> None:
        levels = list(reader.resolution_levels(input_name))
        count = len(levels)
        stored_count = mosaic.levels_num
        promote = False
        if levels_match(min(count, stored_count), levels, mosaic.levels):
            if count != stored_count:
                mosaic.catalog.heterogeneous = True
                promote = count > stored_count
        else:
            mosaic.catalog.heterogeneous = True
            promote = is_higher_resolution(levels, mosaic.levels)
        if promote:
            LOGGER.debug(
                "Promoting %s to the pyramid of %s",
                mosaic.name,
                path.name,
                extra={"coverage": mosaic.name},
            )
            mosaic.promote_levels(levels)

        if not crs_equal(mosaic.crs, reader.crs(input_name)):
            raise SkipGranule(path, "CRSs do not match")

        actual = reader.layout(input_name).color_model
        palette = mosaic.palette
        if palette is None and mosaic.color_model is not None:
            palette = mosaic.color_model.palette
        if color_models_differ(mosaic.color_model, palette, actual):
            raise SkipGranule(path, "color models do not match")

    def _records(
        self,
        mosaic: MosaicConfiguration,
        reader: GranuleReader,
        input_name: str,
        path: Path,
        location: str,
    ) -> list[GranuleRecord]:
        schema = self.catalog.schema(mosaic.catalog.type_name or mosaic.name)
        if schema is None:
            raise ReconcileError(f"No valid granule store has been found for: {mosaic.name}")
        location_attribute = mosaic.catalog.location_attribute
        metadata = reader.metadata()
        origin = describe_source(reader, input_name)
        records: list[GranuleRecord] = []
        if isinstance(origin, StructuredSource):
            for granule in origin.source.granules():
                record = GranuleRecord.template(schema)
                for name, value in granule.items():
                    if record.has_attribute(name):
                        record.set(name, value)
                record.set(location_attribute, location)
                apply_collectors(self.session.collectors, path, metadata, record)
                records.append(record)
        elif isinstance(origin, EnvelopeOnly):
            record = GranuleRecord.template(schema)
            if schema.geometry_name is not None:
                record.geometry = box(*origin.envelope)
            record.set(location_attribute, location)
            apply_collectors(self.session.collectors, path, metadata, record)
            records.append(record)
        return records

    def _update_catalog(
        self,
        mosaic: MosaicConfiguration,
        reader: GranuleReader,
        input_name: str,
        path: Path,
        transaction: Transaction,
    ) -> int:
        location = granule_location(
            path,
            self.session.configuration.root,
            absolute=mosaic.catalog.absolute_path,
        )
        try:
            records = self._records(mosaic, reader, input_name, path, location)
        except KeyError as exc:
            raise ReconcileError(f"Location attribute missing from the schema of {mosaic.name}: {exc}") from exc
        sink = self.catalog.sink(mosaic.catalog.type_name or mosaic.name)
        sink.set_transaction(transaction)
        try:
            removed = sink.remove(
                EqualsFilter(
                    mosaic.catalog.location_attribute,
                    location,
                    match_case=not is_case_insensitive(path),
                )
            )
            if removed:
                LOGGER.debug("Replacing %d record(s) for %s", removed, location)
            return sink.add(records, granule=path)
        finally:
            sink.set_transaction(None)


def _hint(hints: Mapping[str, Any], key: str) -> str | None:
    value = hints.get(key)
    if value is None or not str(value).strip():
        return None
    return str(value)
