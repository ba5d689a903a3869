"""Pattern-driven attribute extractors and their registry."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from mosaicidx.config import REGEX_PREFIX, CollectorSpec, IndexerDocument
from mosaicidx.models import GranuleRecord

LOGGER = logging.getLogger(__name__)

_OPTION = re.compile(r",(format|fullPath)=([^,]*)$")

# Java style date tokens accepted in ``format=`` options, longest first.
_DATE_TOKENS = (
    ("yyyy", "%Y"),
    ("SSS", "%f"),
    ("MM", "%m"),
    ("dd", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
    ("yy", "%y"),
)

_DEFAULT_DATE_FORMATS = (
    "%Y%m%dT%H%M%S%f",
    "%Y%m%dT%H%M%S",
    "%Y%m%dT%H%M",
    "%Y%m%dT%H",
    "%Y%m%d%H%M%S",
    "%Y%m%d%H%M",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d",
    "%Y%m%d",
    "%Y%m",
    "%Y",
)


def java_date_format(pattern: str) -> str:
    """Translate a ``yyyyMMdd'T'HHmmss`` style pattern to strftime syntax."""
    out: list[str] = []
    index = 0
    while index < len(pattern):
        if pattern[index] == "'":
            end = pattern.find("'", index + 1)
            end = len(pattern) if end < 0 else end
            out.append(pattern[index + 1 : end].replace("%", "%%"))
            index = end + 1
            continue
        for token, directive in _DATE_TOKENS:
            if pattern.startswith(token, index):
                out.append(directive)
                index += len(token)
                break
        else:
            out.append(pattern[index].replace("%", "%%"))
            index += 1
    return "".join(out)


def parse_timestamp(value: str, date_format: str | None = None) -> datetime:
    """Parse a timestamp string as UTC."""
    formats = (java_date_format(date_format),) if date_format else _DEFAULT_DATE_FORMATS
    for candidate in formats:
        try:
            parsed = datetime.strptime(value, candidate)
        except ValueError:
            continue
        return parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unable to parse timestamp: {value}")


@dataclass(frozen=True)
class MatchSet:
    """Raw strings matched for one file."""

    values: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.values)


@dataclass(frozen=True)
class CollectorConfig:
    """Parsed collector pattern configuration."""

    pattern: str
    date_format: str | None = None
    full_path: bool = False


def parse_collector_config(value: str) -> CollectorConfig:
    """Split ``regex=<pattern>[,format=..][,fullPath=..]`` into its parts."""
    text = value if value.startswith(REGEX_PREFIX) else REGEX_PREFIX + value
    text = text[len(REGEX_PREFIX) :]
    options: dict[str, str] = {}
    while True:
        match = _OPTION.search(text)
        if match is None:
            break
        options[match.group(1)] = match.group(2)
        text = text[: match.start()]
    return CollectorConfig(
        pattern=text,
        date_format=options.get("format") or None,
        full_path=options.get("fullPath", "").lower() == "true",
    )


class PropertiesCollector:
    """Extract values from a file path and write them into record attributes.

    ``collect`` is pure; ``apply`` keeps the applied matches until ``reset``.
    """

    kind = "String"

    def __init__(self, config: CollectorConfig, targets: Sequence[str]) -> None:
        self.config = config
        self.targets = tuple(targets)
        self.pattern = re.compile(config.pattern) if config.pattern else None
        self._applied: MatchSet | None = None

    @property
    def applied(self) -> MatchSet | None:
        return self._applied

    def _find(self, text: str) -> list[str]:
        if self.pattern is None:
            return []
        values = []
        for match in self.pattern.finditer(text):
            values.append(match.group(1) if self.pattern.groups else match.group(0))
        return values

    def collect_path(self, path: Path) -> list[str]:
        return self._find(str(path) if self.config.full_path else path.name)

    def collect_metadata(self, metadata: Mapping[str, str]) -> list[str]:
        return []

    def collect(self, path: Path, metadata: Mapping[str, str] | None = None) -> MatchSet:
        values = self.collect_path(path)
        values.extend(self.collect_metadata(metadata or {}))
        return MatchSet(tuple(values))

    def convert(self, value: str) -> Any:
        return value

    def apply(self, matches: MatchSet, record: GranuleRecord) -> None:
        """Write converted matches positionally; one value fills every target."""
        if self._applied is not None:
            raise RuntimeError(f"{type(self).__name__} must be reset before reuse")
        self._applied = matches
        if not matches:
            return
        converted = [self.convert(value) for value in matches.values]
        for index, target in enumerate(self.targets):
            if not record.has_attribute(target):
                LOGGER.debug("Record has no attribute %s; skipping collected value", target)
                continue
            record.set(target, converted[min(index, len(converted) - 1)])

    def reset(self) -> None:
        self._applied = None


class StringCollector(PropertiesCollector):
    kind = "String"


class DoubleCollector(PropertiesCollector):
    kind = "Double"

    def convert(self, value: str) -> float:
        return float(value)


class IntegerCollector(PropertiesCollector):
    kind = "Integer"

    def convert(self, value: str) -> int:
        return int(value)


class TimestampCollector(PropertiesCollector):
    kind = "Timestamp"

    def convert(self, value: str) -> datetime:
        return parse_timestamp(value, self.config.date_format)


class CurrentDateCollector(PropertiesCollector):
    """Stamp the harvest time regardless of the file."""

    kind = "CurrentDate"

    def collect_path(self, path: Path) -> list[str]:
        return [datetime.now(timezone.utc).isoformat()]

    def convert(self, value: str) -> datetime:
        return datetime.fromisoformat(value)


class FileSystemDateCollector(PropertiesCollector):
    """Use the file's modification time."""

    kind = "FSDate"

    def collect_path(self, path: Path) -> list[str]:
        try:
            mtime = path.stat().st_mtime
        except OSError as exc:
            LOGGER.warning("Unable to stat %s: %s", path, exc)
            return []
        return [datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()]

    def convert(self, value: str) -> datetime:
        return datetime.fromisoformat(value)


class MetadataTagCollector(PropertiesCollector):
    """Match the pattern against reader metadata rendered as ``KEY=VALUE``."""

    kind = "MetadataTag"

    def collect_path(self, path: Path) -> list[str]:
        return []

    def collect_metadata(self, metadata: Mapping[str, str]) -> list[str]:
        values: list[str] = []
        for key in sorted(metadata):
            values.extend(self._find(f"{key}={metadata[key]}"))
        return values


CollectorFactory = Callable[[CollectorConfig, Sequence[str]], PropertiesCollector]


@dataclass(frozen=True)
class ExtractorKind:
    """Registry entry for an extractor kind."""

    name: str
    factory: CollectorFactory
    available: Callable[[], bool] = lambda: True


_REGISTRY: dict[str, ExtractorKind] = {}


def register_extractor(
    name: str,
    factory: CollectorFactory,
    *,
    available: Callable[[], bool] | None = None,
) -> None:
    """Register an extractor kind; names are matched case-insensitively."""
    key = name.lower()
    if key in _REGISTRY:
        LOGGER.warning("Extractor '%s' already registered; replacing it.", name)
    _REGISTRY[key] = ExtractorKind(
        name=name,
        factory=factory,
        available=available or (lambda: True),
    )


def unregister_extractor(name: str) -> None:
    _REGISTRY.pop(name.lower(), None)


def list_extractors() -> tuple[str, ...]:
    return tuple(kind.name for kind in _REGISTRY.values() if kind.available())


def find_extractor(name: str) -> ExtractorKind | None:
    kind = _REGISTRY.get(name.strip().lower())
    if kind is None or not kind.available():
        return None
    return kind


_BUILTIN_EXTRACTORS: dict[str, CollectorFactory] = {
    "TimestampFileNameExtractorSPI": TimestampCollector,
    "DoubleFileNameExtractorSPI": DoubleCollector,
    "IntegerFileNameExtractorSPI": IntegerCollector,
    "LongFileNameExtractorSPI": IntegerCollector,
    "StringFileNameExtractorSPI": StringCollector,
    "CurrentDateExtractorSPI": CurrentDateCollector,
    "FSDateExtractorSPI": FileSystemDateCollector,
    "MetadataTagExtractorSPI": MetadataTagCollector,
}


def _register_builtins() -> None:
    for name, factory in _BUILTIN_EXTRACTORS.items():
        register_extractor(name, factory)


_register_builtins()


def create_collector(spec: CollectorSpec) -> PropertiesCollector | None:
    """Build one collector, or None when its kind is unknown or invalid."""
    kind = find_extractor(spec.spi)
    if kind is None:
        LOGGER.warning("Unable to find a properties collector for this definition: %s", spec.spi)
        return None
    try:
        return kind.factory(parse_collector_config(spec.value), spec.mapped)
    except (re.error, ValueError) as exc:
        LOGGER.warning("Unable to create properties collector %s: %s", spec.spi, exc)
        return None


def build_collectors(document: IndexerDocument | None) -> list[PropertiesCollector]:
    """Instantiate the collectors declared in a document."""
    if document is None or not document.collectors:
        LOGGER.debug("No properties collector have been found")
        return []
    collectors = []
    for spec in document.collectors:
        collector = create_collector(spec)
        if collector is not None:
            collectors.append(collector)
    return collectors


def apply_collectors(
    collectors: Iterable[PropertiesCollector],
    path: Path,
    metadata: Mapping[str, str],
    record: GranuleRecord,
) -> None:
    """Run every collector against one file, resetting each afterwards."""
    for collector in collectors:
        matches = collector.collect(path, metadata)
        try:
            collector.apply(matches, record)
        except ValueError as exc:
            LOGGER.warning(
                "Collector %s could not convert %s for %s: %s",
                collector.kind,
                matches.values,
                path.name,
                exc,
            )
        finally:
            collector.reset()
