from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Tuple

import numpy as np
import rasterio
from pyproj import CRS
from rasterio.enums import Resampling
from rasterio.transform import from_bounds

from mosaicidx.models import ColorModel, Envelope, RasterLayout, ResolutionLevel, SampleModel


def write_raster(
    path: Path,
    data: np.ndarray,
    *,
    bounds: Tuple[float, float, float, float],
    crs: str = "EPSG:4326",
    nodata: float | None = None,
    overviews: Iterable[int] = (),
    colormap: Mapping[int, Tuple[int, int, int, int]] | None = None,
) -> Path:
    height, width = data.shape
    transform = from_bounds(*bounds, width=width, height=height)
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dataset:
        dataset.write(data, 1)
        if colormap is not None:
            dataset.write_colormap(1, colormap)
        factors = list(overviews)
        if factors:
            dataset.build_overviews(factors, Resampling.nearest)
    return path


class FakeReader:
    """In-memory GranuleReader for reconciler tests."""

    def __init__(
        self,
        *,
        name: str = "tile",
        crs: str | None = "EPSG:4326",
        envelope: Envelope = (0.0, 0.0, 1.0, 1.0),
        levels: list[ResolutionLevel] | None = None,
        dtype: str = "uint8",
        color_interp: tuple[str, ...] = ("gray",),
        palette: Any = None,
        metadata: Mapping[str, str] | None = None,
        granules: list[dict[str, Any]] | None = None,
    ) -> None:
        self.name = name
        self._crs = CRS.from_user_input(crs) if crs else None
        self._envelope = envelope
        self._levels = levels if levels is not None else [(1.0, 1.0)]
        self._layout = RasterLayout(
            sample_model=SampleModel(dtype=dtype, band_count=len(color_interp), block_shape=(1, 1)),
            color_model=ColorModel(color_interp=color_interp, palette=palette),
        )
        self._metadata = dict(metadata or {})
        self._granules = granules
        self.driver = "Fake"

    def __enter__(self) -> "FakeReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def coverage_names(self) -> tuple[str, ...]:
        return (self.name,)

    def crs(self, coverage_name: str) -> CRS | None:
        return self._crs

    def envelope(self, coverage_name: str) -> Envelope:
        return self._envelope

    def resolution_levels(self, coverage_name: str) -> list[ResolutionLevel]:
        return list(self._levels)

    def layout(self, coverage_name: str) -> RasterLayout:
        return self._layout

    def metadata(self) -> Mapping[str, str]:
        return self._metadata

    def granule_source(self, coverage_name: str):
        if self._granules is None:
            return None
        return FakeSource(self._granules)


class FakeSource:
    def __init__(self, granules: list[dict[str, Any]]) -> None:
        self._granules = granules

    def granules(self) -> list[dict[str, Any]]:
        return [dict(granule) for granule in self._granules]


class MultiCoverageReader:
    """GranuleReader exposing several structured coverages, one FakeReader each."""

    def __init__(self, coverages: Mapping[str, FakeReader]) -> None:
        self._coverages = dict(coverages)
        self.driver = "Fake"

    def __enter__(self) -> "MultiCoverageReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def coverage_names(self) -> tuple[str, ...]:
        return tuple(self._coverages)

    def crs(self, coverage_name: str) -> CRS | None:
        return self._coverages[coverage_name].crs(coverage_name)

    def envelope(self, coverage_name: str) -> Envelope:
        return self._coverages[coverage_name].envelope(coverage_name)

    def resolution_levels(self, coverage_name: str) -> list[ResolutionLevel]:
        return self._coverages[coverage_name].resolution_levels(coverage_name)

    def layout(self, coverage_name: str) -> RasterLayout:
        return self._coverages[coverage_name].layout(coverage_name)

    def metadata(self) -> Mapping[str, str]:
        return {}

    def granule_source(self, coverage_name: str):
        return self._coverages[coverage_name].granule_source(coverage_name)
