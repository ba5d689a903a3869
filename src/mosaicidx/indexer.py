"""Harvest driver: resolve, reconcile every granule, finalize."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ContextManager, Iterable, Mapping, Sequence

from rasterio.errors import RasterioError

from mosaicidx.config import RunConfiguration, resolve_configuration
from mosaicidx.errors import NoCommonPathError, SkipGranule
from mosaicidx.events import Listener, file_percentage
from mosaicidx.finalize import finalize
from mosaicidx.readers import GranuleReader, RasterioGranuleReader
from mosaicidx.reconcile import GranuleReconciler, IndexingSession
from mosaicidx.walker import walk_granules

LOGGER = logging.getLogger(__name__)

ReaderFactory = Callable[[Path], ContextManager[GranuleReader]]


@dataclass(frozen=True)
class IndexResult:
    """Summary of a harvest run."""

    root: Path
    coverages: dict[str, int] = field(default_factory=dict)
    heterogeneous: dict[str, bool] = field(default_factory=dict)
    processed: tuple[Path, ...] = ()
    skipped: tuple[Path, ...] = ()
    descriptors: tuple[Path, ...] = ()
    canceled: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "coverages": dict(self.coverages),
            "heterogeneous": dict(self.heterogeneous),
            "processed": [str(path) for path in self.processed],
            "skipped": [str(path) for path in self.skipped],
            "descriptors": [str(path) for path in self.descriptors],
            "canceled": self.canceled,
        }


class Harvester:
    """Drive one indexing session over a list of files."""

    def __init__(
        self,
        configuration: RunConfiguration,
        *,
        listeners: Iterable[Listener] = (),
        reader_factory: ReaderFactory = RasterioGranuleReader,
    ) -> None:
        self.session = IndexingSession(configuration)
        for listener in listeners:
            self.session.dispatcher.add_listener(listener)
        self.reader_factory = reader_factory

    def stop(self) -> None:
        self.session.stop()

    def _process(self, reconciler: GranuleReconciler, path: Path, percentage: float) -> bool:
        """Harvest one file inside its own transaction; False when skipped."""
        session = self.session
        dispatcher = session.dispatcher
        try:
            opened = self.reader_factory(path)
        except (RasterioError, OSError) as exc:
            dispatcher.fire_file_event(path, False, f"Skipped unreadable file {path}: {exc}", percentage)
            return False
        with opened as reader:
            if session.suggested_driver is None:
                session.suggested_driver = getattr(reader, "driver", None)
            names = reader.coverage_names()
            if not names:
                dispatcher.fire_file_event(
                    path, False, f"Skipping image {path} because it holds no coverage.", percentage
                )
                return False
            # Coverages are prepared before any record write so new catalog
            # types commit on their own; a skip only drops that coverage.
            accepted = []
            for name in names:
                try:
                    accepted.append((name, reconciler.prepare(reader, name, path)))
                except SkipGranule as exc:
                    dispatcher.fire_file_event(path, False, str(exc), percentage)
            if not accepted:
                return False
            transaction = reconciler.catalog.transaction()
            counts = []
            try:
                for name, mosaic in accepted:
                    counts.append((mosaic, reconciler.write(mosaic, reader, name, path, transaction)))
            except NoCommonPathError as exc:
                transaction.rollback()
                dispatcher.fire_file_event(
                    path, False, f"Skipping image {path}: {exc}", percentage, logging.WARNING
                )
                return False
            except BaseException:
                transaction.rollback()
                raise
            transaction.commit()
            for mosaic, written in counts:
                mosaic.granule_count += written
        dispatcher.fire_file_event(path, True, f"Done with file {path}", percentage)
        return True

    def run(self, files: Sequence[Path] | None = None) -> IndexResult:
        session = self.session
        configuration = session.configuration
        processed: list[Path] = []
        skipped: list[Path] = []
        percentage = 0.0
        canceled = False
        try:
            session.start()
            reconciler = GranuleReconciler(session)
            targets = list(files) if files is not None else walk_granules(configuration)
            LOGGER.info("Harvesting %d file(s) under %s", len(targets), configuration.root)
            for index, path in enumerate(targets):
                if session.stopped:
                    canceled = True
                    break
                percentage = file_percentage(index, len(targets))
                if self._process(reconciler, Path(path), percentage):
                    processed.append(Path(path))
                else:
                    skipped.append(Path(path))
            canceled = canceled or session.stopped
            descriptors = finalize(session, not canceled)
            return IndexResult(
                root=configuration.root,
                coverages={name: mosaic.granule_count for name, mosaic in session.configurations.items()},
                heterogeneous={
                    name: mosaic.catalog.heterogeneous for name, mosaic in session.configurations.items()
                },
                processed=tuple(processed),
                skipped=tuple(skipped),
                descriptors=tuple(descriptors),
                canceled=canceled,
            )
        except Exception as exc:
            session.dispatcher.fire_exception(exc, percentage)
            finalize(session, False)
            raise
        finally:
            session.dispose()


def run_index(
    root: Path | str,
    hints: Mapping[str, Any] | None = None,
    *,
    defaults: Mapping[str, str] | None = None,
    schemas: Mapping[str, str] | None = None,
    files: Sequence[Path] | None = None,
    listeners: Iterable[Listener] = (),
    reader_factory: ReaderFactory = RasterioGranuleReader,
) -> IndexResult:
    """Index the granules under ``root`` into its catalog."""
    configuration = resolve_configuration(root, hints, defaults=defaults, schemas=schemas)
    harvester = Harvester(configuration, listeners=listeners, reader_factory=reader_factory)
    return harvester.run(files)
