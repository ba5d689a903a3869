"""Run postamble: sample rasters, summary descriptors and the root descriptor."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

import rasterio
from rasterio.enums import ColorInterp
from rasterio.errors import RasterioError

from mosaicidx.config import INDEXER_DOCUMENT, Prop
from mosaicidx.errors import ReconcileError
from mosaicidx.events import CANCELED, DONE, NOTHING_TO_PROCESS
from mosaicidx.models import MosaicConfiguration, ResolutionLevel
from mosaicidx.properties import load_properties, write_properties
from mosaicidx.reconcile import IndexingSession, format_envelope

LOGGER = logging.getLogger(__name__)

SAMPLE_IMAGE_NAME = "sample_image.tif"
DESCRIPTOR_COMMENT = "-Automagically created by mosaicidx-"
DESCRIPTOR_PERCENTAGE = 99.9


def format_levels(levels: list[ResolutionLevel], count: int) -> str:
    return " ".join(f"{float(x)!r},{float(y)!r}" for x, y in levels[:count])


def parse_levels(text: str) -> list[ResolutionLevel]:
    levels = []
    for pair in text.split():
        x, _, y = pair.partition(",")
        levels.append((float(x), float(y)))
    return levels


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def summary_properties(mosaic: MosaicConfiguration, suggested_driver: str | None = None) -> dict[str, str]:
    """Flatten a coverage configuration into descriptor entries."""
    bean = mosaic.catalog
    values = {
        Prop.ABSOLUTE_PATH: _bool_text(bean.absolute_path),
        Prop.LOCATION_ATTRIBUTE: bean.location_attribute,
        Prop.LEVELS_NUM: str(mosaic.levels_num),
        Prop.LEVELS: format_levels(mosaic.levels, mosaic.levels_num),
        Prop.NAME: mosaic.name,
        Prop.TYPENAME: bean.type_name or mosaic.name,
        Prop.EXP_RGB: _bool_text(mosaic.expand_to_rgb),
        Prop.CHECK_AUXILIARY_METADATA: _bool_text(mosaic.check_auxiliary_metadata),
        Prop.HETEROGENEOUS: _bool_text(bean.heterogeneous),
        Prop.CACHING: _bool_text(bean.caching),
    }
    optional = {
        Prop.TIME_ATTRIBUTE: mosaic.time_attribute,
        Prop.ELEVATION_ATTRIBUTE: mosaic.elevation_attribute,
        Prop.ADDITIONAL_DOMAIN_ATTRIBUTES: mosaic.additional_domain_attributes,
        Prop.SUGGESTED_SPI: suggested_driver,
        Prop.ENVELOPE2D: format_envelope(mosaic.envelope) if mosaic.envelope is not None else None,
        Prop.AUXILIARY_FILE: mosaic.auxiliary_file_path,
        Prop.AUXILIARY_DATASTORE_FILE: mosaic.auxiliary_datastore_path,
    }
    values.update({key: value for key, value in optional.items() if value is not None})
    # False is the default, so only a wrapped store is recorded.
    if bean.wrap_store:
        values[Prop.WRAP_STORE] = "true"
    return values


def write_summary_descriptor(
    root: Path,
    mosaic: MosaicConfiguration,
    suggested_driver: str | None = None,
) -> Path:
    path = root / f"{mosaic.name}.properties"
    try:
        write_properties(path, summary_properties(mosaic, suggested_driver), comment=DESCRIPTOR_COMMENT)
    except OSError as exc:
        raise ReconcileError(f"Unable to write summary descriptor {path}: {exc}") from exc
    return path


def read_summary_descriptor(path: Path) -> dict[str, str]:
    return load_properties(path)


def write_sample_image(path: Path, mosaic: MosaicConfiguration) -> Path | None:
    """Write a 1x1 GeoTIFF carrying only the sample and color model."""
    sample_model = mosaic.sample_model
    color_model = mosaic.color_model
    if sample_model is None or color_model is None:
        return None
    profile = {
        "driver": "GTiff",
        "width": 1,
        "height": 1,
        "count": sample_model.band_count,
        "dtype": sample_model.dtype,
    }
    palette = mosaic.palette or color_model.palette
    with rasterio.open(path, "w", **profile) as dataset:
        if palette is not None:
            dataset.write_colormap(1, {index: tuple(entry) for index, entry in enumerate(palette)})
        elif len(color_model.color_interp) == sample_model.band_count:
            dataset.colorinterp = [ColorInterp[name] for name in color_model.color_interp]
    return path


def _sample_image(session: IndexingSession, mosaic: MosaicConfiguration, use_name: bool) -> None:
    root = session.configuration.root
    path = root / ((mosaic.name if use_name else "") + SAMPLE_IMAGE_NAME)
    try:
        written = write_sample_image(path, mosaic)
    except (OSError, ValueError, KeyError, RasterioError) as exc:
        session.dispatcher.fire_event(
            f"Unable to write sample image {path}: {exc}", DESCRIPTOR_PERCENTAGE, logging.ERROR
        )
        return
    if written is not None:
        LOGGER.debug("Wrote sample image %s", written, extra={"coverage": mosaic.name})


def _root_descriptor(session: IndexingSession) -> None:
    """Copy the primary configuration next to the root, named after it."""
    configuration = session.configuration
    root = configuration.root
    base = root.name
    indexer_file = configuration.indexer_file
    if indexer_file is not None and indexer_file.name == INDEXER_DOCUMENT:
        origin = indexer_file
        target = root / f"{base}.json"
    elif indexer_file is not None:
        origin = indexer_file
        target = root / f"{base}.properties"
    else:
        if not session.configurations:
            LOGGER.debug("No coverage descriptor available to copy as the root descriptor")
            return
        first = next(iter(session.configurations.values()))
        origin = root / f"{first.name}.properties"
        target = root / f"{base}.properties"
    if target.exists() or origin == target:
        return
    try:
        shutil.copyfile(origin, target)
    except OSError as exc:
        raise ReconcileError(f"Unable to write root descriptor {target}: {exc}") from exc
    LOGGER.info("Wrote root descriptor %s", target.name)


def _initialize(session: IndexingSession, mosaic: MosaicConfiguration) -> None:
    """Refresh the granule count from the catalog."""
    catalog = session.catalog
    type_name = mosaic.catalog.type_name or mosaic.name
    if catalog is None or catalog.schema(type_name) is None:
        return
    mosaic.granule_count = catalog.source(type_name).count()


def finalize(session: IndexingSession, success: bool) -> list[Path]:
    """Persist the artifacts of a run; returns the summary descriptors written."""
    dispatcher = session.dispatcher
    if not success:
        dispatcher.fire_event(CANCELED, 100.0)
        return []
    configuration = session.configuration
    supports_empty = configuration.can_be_empty
    configurations = session.configurations
    if not configurations and not supports_empty:
        dispatcher.fire_event(NOTHING_TO_PROCESS, 100.0)
        return []

    written: list[Path] = []
    use_name = len(configurations) > 1
    for mosaic in configurations.values():
        _initialize(session, mosaic)
        _sample_image(session, mosaic, use_name)
        dispatcher.fire_event("Creating final properties file", DESCRIPTOR_PERCENTAGE)
        written.append(write_summary_descriptor(configuration.root, mosaic, session.suggested_driver))

    names = list(configurations)
    if supports_empty or len(names) > 1 or (names and names[0] != configuration.root.name):
        _root_descriptor(session)
    dispatcher.fire_event(DONE, 100.0)
    return written
