"""Granule discovery under the mosaic root."""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path
from typing import Iterator

from mosaicidx.config import RunConfiguration
from mosaicidx.finalize import SAMPLE_IMAGE_NAME
from mosaicidx.footprints import SIDECAR_SUFFIXES

LOGGER = logging.getLogger(__name__)

# Files the harvest itself reads or writes.
ARTIFACT_SUFFIXES = frozenset(
    {".properties", ".json", ".sqlite", ".sqlite-journal", ".sqlite-wal", ".aux.xml", ".ovr", *SIDECAR_SUFFIXES}
)


def is_artifact(path: Path) -> bool:
    name = path.name.lower()
    if name.endswith(SAMPLE_IMAGE_NAME):
        return True
    return any(name.endswith(suffix) for suffix in ARTIFACT_SUFFIXES)


def _candidates(directory: Path, recursive: bool) -> Iterator[Path]:
    iterator = directory.rglob("*") if recursive else directory.iterdir()
    for path in iterator:
        if path.is_file():
            yield path


def walk_granules(configuration: RunConfiguration) -> list[Path]:
    """Return the files to harvest, sorted, without duplicates."""
    wildcard = configuration.wildcard
    recursive = configuration.recursive
    seen: set[Path] = set()
    files: list[Path] = []
    for directory in configuration.indexing_directories():
        if not directory.is_dir():
            LOGGER.warning("Skipping missing indexing directory %s", directory)
            continue
        for path in sorted(_candidates(directory, recursive)):
            if path in seen or is_artifact(path):
                continue
            if not fnmatch.fnmatch(path.name, wildcard):
                continue
            seen.add(path)
            files.append(path)
    return files
