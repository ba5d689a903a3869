from __future__ import annotations

import logging
from pathlib import Path

from mosaicidx.events import (
    EventDispatcher,
    ExceptionEvent,
    FileProcessingEvent,
    ProcessingEvent,
    file_percentage,
)


def test_file_percentage() -> None:
    assert file_percentage(0, 4) == 24.75
    assert file_percentage(3, 4) == 99.0
    assert file_percentage(0, 0) == 0.0


def test_dispatch_to_listeners() -> None:
    dispatcher = EventDispatcher()
    events: list = []
    dispatcher.add_listener(events.append)
    dispatcher.add_listener(events.append)

    dispatcher.fire_event("Working", 10.0)
    dispatcher.fire_file_event(Path("a.tif"), False, "Skipping", 20.0, logging.WARNING)
    dispatcher.fire_exception(ValueError("boom"), 30.0)

    assert events == [
        ProcessingEvent(message="Working", level=logging.INFO, percentage=10.0),
        FileProcessingEvent(path=Path("a.tif"), ok=False, message="Skipping", level=logging.WARNING, percentage=20.0),
        events[2],
    ]
    assert isinstance(events[2], ExceptionEvent)
    assert events[2].message == "boom"
    assert events[2].level == logging.ERROR


def test_failing_listener_does_not_stop_dispatch(caplog) -> None:
    dispatcher = EventDispatcher()
    events: list = []

    def broken(event) -> None:
        raise RuntimeError("listener bug")

    dispatcher.add_listener(broken)
    dispatcher.add_listener(events.append)
    dispatcher.fire_event("Done", 100.0)

    assert len(events) == 1
    assert "listener bug" in caplog.text


def test_remove_listeners() -> None:
    dispatcher = EventDispatcher()
    events: list = []
    dispatcher.add_listener(events.append)
    dispatcher.remove_listener(events.append)
    dispatcher.fire_event("ignored", 0.0)

    dispatcher.add_listener(events.append)
    dispatcher.remove_all_listeners()
    dispatcher.fire_event("ignored", 0.0)

    assert events == []
    assert dispatcher.listeners == ()


def test_exception_without_message_uses_type_name() -> None:
    dispatcher = EventDispatcher()
    events: list = []
    dispatcher.add_listener(events.append)

    dispatcher.fire_exception(KeyError(), 5.0)

    assert events[0].message == "KeyError"
