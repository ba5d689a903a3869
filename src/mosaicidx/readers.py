"""Raster reader protocol and the rasterio-backed default reader."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Union

import rasterio
from pyproj import CRS
from rasterio.enums import ColorInterp

from mosaicidx.models import (
    ColorModel,
    Envelope,
    Palette,
    RasterLayout,
    ResolutionLevel,
    SampleModel,
)


class GranuleSource(Protocol):
    """Native listing of the granules held by a structured reader."""

    def granules(self) -> Iterable[Mapping[str, Any]]:
        ...


class GranuleReader(Protocol):
    """Metadata view of one raster input."""

    def coverage_names(self) -> tuple[str, ...]:
        ...

    def crs(self, coverage_name: str) -> CRS | None:
        ...

    def envelope(self, coverage_name: str) -> Envelope:
        ...

    def resolution_levels(self, coverage_name: str) -> list[ResolutionLevel]:
        ...

    def layout(self, coverage_name: str) -> RasterLayout:
        ...

    def metadata(self) -> Mapping[str, str]:
        ...

    def granule_source(self, coverage_name: str) -> GranuleSource | None:
        ...


@dataclass(frozen=True)
class StructuredSource:
    """Reader able to enumerate its own granules."""

    source: GranuleSource


@dataclass(frozen=True)
class EnvelopeOnly:
    """Reader described by its footprint envelope alone."""

    envelope: Envelope


GranuleOrigin = Union[StructuredSource, EnvelopeOnly]


def describe_source(reader: GranuleReader, coverage_name: str) -> GranuleOrigin:
    """Classify a reader by its granule listing capability."""
    source = reader.granule_source(coverage_name)
    if source is not None:
        return StructuredSource(source)
    return EnvelopeOnly(reader.envelope(coverage_name))


def _palette(dataset: Any) -> Palette | None:
    if not dataset.count or dataset.colorinterp[0] != ColorInterp.palette:
        return None
    try:
        colormap = dataset.colormap(1)
    except ValueError:
        return None
    return tuple(tuple(int(channel) for channel in colormap[index]) for index in sorted(colormap))


class RasterioGranuleReader:
    """GranuleReader over a single file opened with rasterio."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._dataset = rasterio.open(self.path)

    def __enter__(self) -> "RasterioGranuleReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._dataset.close()

    @property
    def driver(self) -> str:
        return self._dataset.driver

    def coverage_names(self) -> tuple[str, ...]:
        return (self.path.stem,)

    def crs(self, coverage_name: str) -> CRS | None:
        if self._dataset.crs is None:
            return None
        return CRS.from_wkt(self._dataset.crs.to_wkt())

    def envelope(self, coverage_name: str) -> Envelope:
        bounds = self._dataset.bounds
        return (bounds.left, bounds.bottom, bounds.right, bounds.top)

    def _overview_factors(self) -> list[int]:
        if not self._dataset.count:
            return []
        return list(self._dataset.overviews(1))

    def resolution_levels(self, coverage_name: str) -> list[ResolutionLevel]:
        """Native resolution first, then one row per overview."""
        dataset = self._dataset
        res_x, res_y = abs(dataset.res[0]), abs(dataset.res[1])
        levels = [(res_x, res_y)]
        for factor in self._overview_factors():
            overview_width = max(1, math.ceil(dataset.width / factor))
            overview_height = max(1, math.ceil(dataset.height / factor))
            levels.append(
                (
                    res_x * dataset.width / overview_width,
                    res_y * dataset.height / overview_height,
                )
            )
        return levels

    def layout(self, coverage_name: str) -> RasterLayout:
        dataset = self._dataset
        if not dataset.count:
            return RasterLayout(sample_model=None, color_model=None)
        sample_model = SampleModel(
            dtype=dataset.dtypes[0],
            band_count=dataset.count,
            block_shape=tuple(dataset.block_shapes[0]),
        )
        color_model = ColorModel(
            color_interp=tuple(interp.name for interp in dataset.colorinterp),
            palette=_palette(dataset),
        )
        return RasterLayout(sample_model=sample_model, color_model=color_model)

    def metadata(self) -> Mapping[str, str]:
        return dict(self._dataset.tags())

    def granule_source(self, coverage_name: str) -> GranuleSource | None:
        return None
