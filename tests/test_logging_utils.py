from __future__ import annotations

import json
import logging
from pathlib import Path

from mosaicidx.logging_utils import HumanFormatter, JsonFormatter, LogOptions, configure_logging


def _record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("mosaicidx.test", logging.WARNING, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_configure_logging_writes_json(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "mosaicidx.jsonl"
    configure_logging(LogOptions(log_file=log_path))
    logger = logging.getLogger("mosaicidx.test")
    logger.info("hello", extra={"coverage": "dem", "granule": "a.tif"})
    logging.shutdown()

    lines = log_path.read_text(encoding="utf-8").strip().splitlines()
    assert lines
    payload = json.loads(lines[-1])
    assert payload["message"] == "hello"
    assert payload["level"] == "info"
    assert (payload["coverage"], payload["granule"]) == ("dem", "a.tif")
    assert "extra" not in payload


def test_console_levels() -> None:
    root = configure_logging(LogOptions(quiet=True))
    assert root.handlers[0].level == logging.WARNING
    assert logging.getLogger("rasterio").level == logging.WARNING

    root = configure_logging(LogOptions(verbose=2))
    assert len(root.handlers) == 1
    assert root.handlers[0].level == logging.DEBUG
    assert logging.getLogger("rasterio").level == logging.DEBUG
    logging.getLogger("rasterio").setLevel(logging.NOTSET)


def test_human_formatter_prefixes_context() -> None:
    formatter = HumanFormatter("%(levelname)s: %(message)s")

    assert formatter.format(_record("skipped", coverage="dem", granule="a.tif")) == "[dem a.tif] WARNING: skipped"
    assert formatter.format(_record("plain")) == "WARNING: plain"


def test_json_formatter_stringifies_extras() -> None:
    payload = json.loads(JsonFormatter().format(_record("done", path=Path("a.tif"))))

    assert payload["logger"] == "mosaicidx.test"
    assert payload["extra"] == {"path": "a.tif"}
