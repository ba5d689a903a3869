"""Progress events delivered to harvest listeners."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

LOGGER = logging.getLogger(__name__)

DONE = "Done"
NOTHING_TO_PROCESS = "Nothing to process"
CANCELED = "Canceled"


@dataclass(frozen=True)
class ProcessingEvent:
    """Run-level progress notification."""

    message: str
    level: int = logging.INFO
    percentage: float = 0.0


@dataclass(frozen=True)
class FileProcessingEvent:
    """Outcome of processing a single granule."""

    path: Path
    ok: bool
    message: str
    level: int = logging.INFO
    percentage: float = 0.0


@dataclass(frozen=True)
class ExceptionEvent:
    """Fatal failure that terminates the run."""

    exception: BaseException
    message: str
    level: int = logging.ERROR
    percentage: float = 0.0


Event = Union[ProcessingEvent, FileProcessingEvent, ExceptionEvent]
Listener = Callable[[Event], None]


def file_percentage(index: int, total: int) -> float:
    """Progress for the ``index``-th of ``total`` files, capped below 100."""
    if total <= 0:
        return 0.0
    return (index + 1) * 99.0 / total


class EventDispatcher:
    """Fan events out to registered listeners."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @property
    def listeners(self) -> tuple[Listener, ...]:
        return tuple(self._listeners)

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def _dispatch(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                LOGGER.warning("Event listener %r failed: %s", listener, exc, exc_info=True)

    def fire_event(self, message: str, percentage: float, level: int = logging.INFO) -> None:
        LOGGER.log(level, "%s (%.1f%%)", message, percentage)
        self._dispatch(ProcessingEvent(message=message, level=level, percentage=percentage))

    def fire_file_event(
        self,
        path: Path,
        ok: bool,
        message: str,
        percentage: float,
        level: int = logging.INFO,
    ) -> None:
        LOGGER.log(level, "%s", message, extra={"granule": Path(path).name})
        self._dispatch(
            FileProcessingEvent(path=Path(path), ok=ok, message=message, level=level, percentage=percentage)
        )

    def fire_exception(self, exception: BaseException, percentage: float) -> None:
        message = str(exception) or type(exception).__name__
        LOGGER.error("Indexing failed: %s", message)
        self._dispatch(ExceptionEvent(exception=exception, message=message, percentage=percentage))
