"""Logging setup for the mosaicidx CLI and harvest runs."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_RESERVED_FIELDS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}

# Extras promoted to top-level JSON keys.
CONTEXT_FIELDS = ("coverage", "granule")


@dataclass(frozen=True)
class LogOptions:
    """Console and file logging switches."""

    verbose: int = 0
    quiet: bool = False
    log_file: Path | None = None
    json_console: bool = False


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Return the fields passed through ``extra=`` on a log call."""
    return {
        key: value if isinstance(value, (str, int, float, bool)) or value is None else str(value)
        for key, value in record.__dict__.items()
        if key not in _RESERVED_FIELDS
    }


class JsonFormatter(logging.Formatter):
    """Render one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _timestamp(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = _extra_fields(record)
        for key in CONTEXT_FIELDS:
            if key in extra:
                payload[key] = extra.pop(key)
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class HumanFormatter(logging.Formatter):
    """Prefix records with the coverage and granule they concern."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = [
            value
            for value in (getattr(record, key, None) for key in CONTEXT_FIELDS)
            if value
        ]
        if context:
            return f"[{' '.join(str(value) for value in context)}] {message}"
        return message


# GDAL bindings log every driver call at DEBUG.
_NOISY_LOGGERS = ("rasterio", "fiona", "urllib3")


def _console_level(options: LogOptions) -> int:
    if options.quiet:
        return logging.WARNING
    return logging.DEBUG if options.verbose > 0 else logging.INFO


def _console_handler(options: LogOptions) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(_console_level(options))
    if options.json_console:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(HumanFormatter("%(levelname)s: %(message)s"))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(JsonFormatter())
    return handler


def configure_logging(options: LogOptions) -> logging.Logger:
    """Install console and optional JSON file handlers on the root logger.

    Third-party GDAL loggers stay at WARNING unless ``-vv`` is given.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)
    root.addHandler(_console_handler(options))
    if options.log_file:
        root.addHandler(_file_handler(options.log_file))
    library_level = logging.DEBUG if options.verbose > 1 else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
    return root
