"""Sidecar footprint lookup for granules."""

from __future__ import annotations

import logging
from pathlib import Path

from shapely import wkb, wkt
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

LOGGER = logging.getLogger(__name__)

SIDECAR_SUFFIXES = (".wkt", ".wkb")


class FootprintProvider:
    """Read per-granule footprint overrides stored next to the raster.

    A granule ``tiles/a.tif`` may carry ``tiles/a.wkt`` or ``tiles/a.wkb``;
    without a sidecar the granule keeps its envelope footprint.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: Path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.root / path

    def sidecar(self, path: Path) -> Path | None:
        granule = self._resolve(path)
        for suffix in SIDECAR_SUFFIXES:
            candidate = granule.with_suffix(suffix)
            if candidate.is_file():
                return candidate
        return None

    def footprint(self, path: Path) -> BaseGeometry | None:
        sidecar = self.sidecar(path)
        if sidecar is None:
            return None
        try:
            if sidecar.suffix == ".wkb":
                geometry = wkb.loads(sidecar.read_bytes())
            else:
                geometry = wkt.loads(sidecar.read_text(encoding="utf-8").strip())
        except (OSError, ShapelyError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable footprint %s: %s", sidecar, exc)
            return None
        if geometry.is_empty:
            LOGGER.warning("Ignoring empty footprint %s", sidecar)
            return None
        return geometry
