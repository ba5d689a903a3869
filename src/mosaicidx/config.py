"""Run configuration resolution from indexer documents and caller defaults."""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import jsonschema

from mosaicidx.contracts import validate_indexer_document
from mosaicidx.errors import ConfigurationError
from mosaicidx.properties import load_properties

LOGGER = logging.getLogger(__name__)

INDEXER_DOCUMENT = "indexer.json"
INDEXER_PROPERTIES = "indexer.properties"

TIME_DOMAIN = "time"
ELEVATION_DOMAIN = "elevation"
ADDITIONAL_DOMAIN = "additional"

RANGE_SPLITTER = ";"
REGEX_PREFIX = "regex="

_TRUE_VALUES = {"true", "yes", "1", "on"}


class Prop:
    """Canonical parameter names."""

    ROOT_MOSAIC_DIR = "MosaicDirectory"
    INDEX_NAME = "IndexName"
    NAME = "Name"
    TYPENAME = "TypeName"
    LOCATION_ATTRIBUTE = "LocationAttribute"
    ABSOLUTE_PATH = "AbsolutePath"
    RECURSIVE = "Recursive"
    WILDCARD = "Wildcard"
    SCHEMA = "Schema"
    TIME_ATTRIBUTE = "TimeAttribute"
    ELEVATION_ATTRIBUTE = "ElevationAttribute"
    ADDITIONAL_DOMAIN_ATTRIBUTES = "AdditionalDomainAttributes"
    PROPERTY_COLLECTORS = "PropertyCollectors"
    CACHING = "Caching"
    RESOLUTION_LEVELS = "ResolutionLevels"
    ENVELOPE2D = "Envelope2D"
    INDEXING_DIRECTORIES = "IndexingDirectories"
    AUXILIARY_FILE = "AuxiliaryFile"
    AUXILIARY_DATASTORE_FILE = "AuxiliaryDatastoreFile"
    CAN_BE_EMPTY = "CanBeEmpty"
    WRAP_STORE = "WrapStore"
    USE_EXISTING_SCHEMA = "UseExistingSchema"
    CHECK_AUXILIARY_METADATA = "CheckAuxiliaryMetadata"
    LEVELS = "Levels"
    LEVELS_NUM = "LevelsNum"
    EXP_RGB = "ExpandToRGB"
    HETEROGENEOUS = "Heterogeneous"
    SUGGESTED_SPI = "SuggestedSPI"


_ALIASES = {
    "rootmosaicdirectory": Prop.ROOT_MOSAIC_DIR,
    "mosaicdirectory": Prop.ROOT_MOSAIC_DIR,
}

# Simple parameters copied verbatim from a legacy properties file.
_LEGACY_PARAMETERS = (
    Prop.NAME,
    Prop.TYPENAME,
    Prop.INDEX_NAME,
    Prop.LOCATION_ATTRIBUTE,
    Prop.ABSOLUTE_PATH,
    Prop.RECURSIVE,
    Prop.WILDCARD,
    Prop.ENVELOPE2D,
    Prop.RESOLUTION_LEVELS,
    Prop.CACHING,
    Prop.ROOT_MOSAIC_DIR,
    Prop.INDEXING_DIRECTORIES,
    Prop.AUXILIARY_FILE,
    Prop.AUXILIARY_DATASTORE_FILE,
    Prop.CAN_BE_EMPTY,
    Prop.WRAP_STORE,
    Prop.USE_EXISTING_SCHEMA,
    Prop.CHECK_AUXILIARY_METADATA,
)

_LEGACY_COLLECTOR = re.compile(r"\s*([^\[\];]+)\[([^\]]*)\]\(([^)]*)\)\s*")


class Hint:
    """Keys of the run hint mapping."""

    AUXILIARY_FILE = "auxiliary_file"
    AUXILIARY_DATASTORE = "auxiliary_datastore"
    PARENT_DIR = "parent_dir"
    CACHING = "caching"


def canonical_parameter(name: str) -> str:
    """Return the canonical spelling of a parameter name."""
    lowered = name.strip().lower()
    if lowered in _ALIASES:
        return _ALIASES[lowered]
    for value in vars(Prop).values():
        if isinstance(value, str) and value.lower() == lowered:
            return value
    return name.strip()


def as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class DomainSpec:
    """Named dimension of a coverage and the attribute(s) backing it."""

    name: str
    attribute: str | None = None

    @property
    def attribute_name(self) -> str:
        return self.attribute or self.name


@dataclass
class CoverageSpec:
    """Coverage entry of an indexer document."""

    name: str | None = None
    schema: str | None = None
    domains: list[DomainSpec] = field(default_factory=list)

    def domain(self, name: str) -> DomainSpec | None:
        for domain in self.domains:
            if domain.name.lower() == name.lower():
                return domain
        return None


@dataclass
class SchemaSpec:
    """Named attribute-string schema."""

    attributes: str
    name: str | None = None


@dataclass
class CollectorSpec:
    """Collector definition: extractor kind, pattern config and target attributes."""

    spi: str
    value: str
    mapped: tuple[str, ...] = ()


@dataclass
class IndexerDocument:
    """In-memory model of the declarative indexer configuration."""

    parameters: dict[str, str] = field(default_factory=dict)
    coverages: list[CoverageSpec] = field(default_factory=list)
    schemas: list[SchemaSpec] = field(default_factory=list)
    collectors: list[CollectorSpec] = field(default_factory=list)
    source: Path | None = None

    def get_parameter(self, name: str) -> str | None:
        canonical = canonical_parameter(name)
        for key, value in self.parameters.items():
            if canonical_parameter(key) == canonical:
                return value
        return None

    def get_flag(self, name: str) -> bool:
        return as_bool(self.get_parameter(name))

    def set_parameter(self, name: str, value: object) -> None:
        canonical = canonical_parameter(name)
        for key in list(self.parameters):
            if canonical_parameter(key) == canonical:
                del self.parameters[key]
        self.parameters[canonical] = value if isinstance(value, str) else _stringify(value)

    def coverage(self, name: str | None) -> CoverageSpec | None:
        """Return the coverage entry for ``name``, or an unnamed entry."""
        unnamed = None
        for coverage in self.coverages:
            if coverage.name is not None and coverage.name == name:
                return coverage
            if coverage.name is None and unnamed is None:
                unnamed = coverage
        return unnamed

    def schema(self, name: str | None) -> SchemaSpec | None:
        if name is None:
            return None
        for schema in self.schemas:
            if schema.name == name:
                return schema
        return None

    def schema_for(self, coverage: CoverageSpec) -> SchemaSpec | None:
        return self.schema(coverage.schema)

    def attribute(self, coverage_name: str | None, domain: str) -> str | None:
        """Return the attribute spec backing a domain of a coverage.

        The additional domain resolves to every non time/elevation domain,
        rendered as ``name(attribute)`` entries joined with commas.
        """
        coverage = self.coverage(coverage_name)
        if coverage is None:
            return None
        if domain == ADDITIONAL_DOMAIN:
            entries = []
            for entry in coverage.domains:
                if entry.name.lower() in (TIME_DOMAIN, ELEVATION_DOMAIN):
                    continue
                if entry.attribute and entry.attribute != entry.name:
                    entries.append(f"{entry.name}({entry.attribute})")
                else:
                    entries.append(entry.name)
            return ",".join(entries) if entries else None
        found = coverage.domain(domain)
        return found.attribute_name if found is not None else None

    def copy(self) -> "IndexerDocument":
        return copy.deepcopy(self)

    def as_dict(self) -> dict[str, Any]:
        return {
            "parameters": dict(self.parameters),
            "coverages": [
                {
                    key: value
                    for key, value in (
                        ("name", coverage.name),
                        ("schema", coverage.schema),
                        (
                            "domains",
                            [
                                {"name": domain.name, "attribute": domain.attribute}
                                if domain.attribute
                                else {"name": domain.name}
                                for domain in coverage.domains
                            ],
                        ),
                    )
                    if value is not None
                }
                for coverage in self.coverages
            ],
            "schemas": [
                {"name": schema.name, "attributes": schema.attributes}
                if schema.name
                else {"attributes": schema.attributes}
                for schema in self.schemas
            ],
            "collectors": [
                {"spi": collector.spi, "value": collector.value, "mapped": list(collector.mapped)}
                for collector in self.collectors
            ],
        }


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _mapped_names(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    return tuple(str(item).strip() for item in value if str(item).strip())


def document_from_dict(payload: Mapping[str, Any], *, source: Path | None = None) -> IndexerDocument:
    """Validate a raw JSON payload and build an IndexerDocument."""
    try:
        validate_indexer_document(payload)
    except jsonschema.ValidationError as exc:
        raise ConfigurationError(f"Invalid indexer document {source or ''}: {exc.message}") from exc
    document = IndexerDocument(source=source)
    for key, value in (payload.get("parameters") or {}).items():
        document.set_parameter(key, value)
    for raw in payload.get("coverages") or []:
        document.coverages.append(
            CoverageSpec(
                name=raw.get("name"),
                schema=raw.get("schema"),
                domains=[
                    DomainSpec(name=domain["name"], attribute=domain.get("attribute"))
                    for domain in raw.get("domains") or []
                ],
            )
        )
    for raw in payload.get("schemas") or []:
        document.schemas.append(SchemaSpec(attributes=raw["attributes"], name=raw.get("name")))
    for raw in payload.get("collectors") or []:
        document.collectors.append(
            CollectorSpec(spi=raw["spi"], value=raw["value"], mapped=_mapped_names(raw.get("mapped")))
        )
    return document


def load_indexer_document(path: Path) -> IndexerDocument:
    """Load a JSON indexer document from disk."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Unable to read indexer document {path}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"Indexer document must be a JSON object: {path}")
    return document_from_dict(payload, source=path)


def parse_additional_domains(value: str) -> list[DomainSpec]:
    """Parse ``name(attribute),other`` into domain entries."""
    domains: list[DomainSpec] = []
    for token in re.split(r",(?![^(]*\))", value):
        token = token.strip()
        if not token:
            continue
        match = re.fullmatch(r"([^()]+)\(([^()]*)\)", token)
        if match:
            domains.append(DomainSpec(name=match.group(1).strip(), attribute=match.group(2).strip()))
        else:
            domains.append(DomainSpec(name=token, attribute=token))
    return domains


def _legacy_collector_value(root: Path, config: str) -> str:
    """Resolve the bracketed part of a legacy collector definition.

    The bracket names a ``<name>.properties`` file in the root holding the
    ``regex`` (and optional ``format``/``fullPath``) keys; otherwise it is
    taken as the pattern itself.
    """
    candidate = root / f"{config}.properties"
    if candidate.is_file():
        props = load_properties(candidate)
        value = REGEX_PREFIX + props.get("regex", "")
        for option in ("format", "fullPath"):
            if option in props:
                value += f",{option}={props[option]}"
        return value
    return config


def parse_legacy_collectors(root: Path, value: str) -> list[CollectorSpec]:
    collectors: list[CollectorSpec] = []
    for chunk in value.split(";"):
        if not chunk.strip():
            continue
        match = _LEGACY_COLLECTOR.fullmatch(chunk)
        if match is None:
            LOGGER.warning("Ignoring malformed collector definition: %s", chunk.strip())
            continue
        spi, config, mapped = match.groups()
        collectors.append(
            CollectorSpec(
                spi=spi.strip(),
                value=_legacy_collector_value(root, config.strip()),
                mapped=_mapped_names(mapped),
            )
        )
    return collectors


def document_from_properties(
    props: Mapping[str, str],
    defaults: Mapping[str, str] | None = None,
    *,
    root: Path,
    source: Path | None = None,
) -> IndexerDocument:
    """Translate a legacy flat configuration into an IndexerDocument."""
    document = IndexerDocument(source=source)
    for key, value in (defaults or {}).items():
        document.set_parameter(key, value)
    normalized = {canonical_parameter(key): value for key, value in props.items()}
    coverage = CoverageSpec()
    document.coverages.append(coverage)

    for key in _LEGACY_PARAMETERS:
        if key in normalized:
            document.set_parameter(key, normalized[key])
    if Prop.NAME in normalized:
        coverage.name = normalized[Prop.NAME]
    if Prop.TYPENAME in normalized:
        coverage.name = normalized[Prop.TYPENAME]

    if Prop.SCHEMA in normalized:
        document.schemas.append(
            SchemaSpec(
                attributes=normalized[Prop.SCHEMA],
                name=document.get_parameter(Prop.INDEX_NAME),
            )
        )
    if Prop.TIME_ATTRIBUTE in normalized:
        coverage.domains.append(DomainSpec(name=TIME_DOMAIN, attribute=normalized[Prop.TIME_ATTRIBUTE]))
    if Prop.ELEVATION_ATTRIBUTE in normalized:
        coverage.domains.append(
            DomainSpec(name=ELEVATION_DOMAIN, attribute=normalized[Prop.ELEVATION_ATTRIBUTE])
        )
    if Prop.ADDITIONAL_DOMAIN_ATTRIBUTES in normalized:
        coverage.domains.extend(parse_additional_domains(normalized[Prop.ADDITIONAL_DOMAIN_ATTRIBUTES]))
    if Prop.PROPERTY_COLLECTORS in normalized:
        document.collectors.extend(parse_legacy_collectors(root, normalized[Prop.PROPERTY_COLLECTORS]))
    return document


def copy_default_params(defaults: Mapping[str, str], document: IndexerDocument) -> None:
    """Fill parameters the document omits from caller defaults, never overwriting."""
    for name, value in defaults.items():
        if document.get_parameter(name) is None:
            document.set_parameter(name, value)


@dataclass(frozen=True)
class RunConfiguration:
    """Canonical configuration for one harvest run."""

    root: Path
    index_name: str
    location_attribute: str
    absolute_path: bool
    document: IndexerDocument
    hints: Mapping[str, Any] = field(default_factory=dict)
    indexer_file: Path | None = None
    schemas: Mapping[str, str] = field(default_factory=dict)

    def parameter(self, name: str) -> str | None:
        if canonical_parameter(name) == Prop.ROOT_MOSAIC_DIR:
            return str(self.root)
        return self.document.get_parameter(name)

    def flag(self, name: str) -> bool:
        return self.document.get_flag(name)

    @property
    def use_existing_schema(self) -> bool:
        return self.flag(Prop.USE_EXISTING_SCHEMA)

    @property
    def can_be_empty(self) -> bool:
        return self.flag(Prop.CAN_BE_EMPTY)

    @property
    def recursive(self) -> bool:
        value = self.parameter(Prop.RECURSIVE)
        return True if value is None else as_bool(value)

    @property
    def wildcard(self) -> str:
        return self.parameter(Prop.WILDCARD) or "*.*"

    def schema_text(self, coverage_name: str) -> str | None:
        """Return a caller-supplied schema string for a coverage."""
        return self.schemas.get(coverage_name)

    def indexing_directories(self) -> list[Path]:
        value = self.parameter(Prop.INDEXING_DIRECTORIES)
        if not value:
            return [self.root]
        directories = []
        for token in value.split(","):
            token = token.strip()
            if not token:
                continue
            path = Path(token)
            directories.append(path if path.is_absolute() else self.root / path)
        return directories

    def check(self) -> None:
        """Validate mandatory fields."""
        if not self.index_name or not self.index_name.strip():
            raise ConfigurationError("Index name is required.")
        if not self.location_attribute or not self.location_attribute.strip():
            raise ConfigurationError("Location attribute is required.")
        if not self.root.is_dir():
            raise ConfigurationError(f"Root directory is not a directory: {self.root}")


def _resolve_auxiliary(
    value: str,
    *,
    root: Path,
    absolute_path: bool,
) -> str:
    """Resolve an auxiliary path against the root directory."""
    root_text = str(root)
    if absolute_path:
        if value.startswith(root_text):
            return value
        return root_text + os.sep + value
    candidate = Path(value)
    if candidate.is_absolute():
        return str(candidate)
    return str(root / candidate)


def _update_hints(
    hints: dict[str, Any],
    document: IndexerDocument,
    *,
    root: Path,
    absolute_path: bool,
) -> None:
    for parameter, key in (
        (Prop.AUXILIARY_FILE, Hint.AUXILIARY_FILE),
        (Prop.AUXILIARY_DATASTORE_FILE, Hint.AUXILIARY_DATASTORE),
    ):
        value = document.get_parameter(parameter)
        if not value:
            continue
        hints[key] = _resolve_auxiliary(value, root=root, absolute_path=absolute_path)
        if not absolute_path:
            hints[Hint.PARENT_DIR] = str(root)


def _root_from(root_dir: Path | str | None, defaults: Mapping[str, str]) -> Path:
    value: Path | str | None = root_dir
    if value is None:
        for key, candidate in defaults.items():
            if canonical_parameter(key) == Prop.ROOT_MOSAIC_DIR:
                value = candidate
                break
    if value is None or not str(value).strip():
        raise ConfigurationError("Root mosaic directory is required.")
    root = Path(value).expanduser()
    if not root.is_dir() or not os.access(root, os.R_OK):
        raise ConfigurationError(f"Root mosaic directory is not readable: {root}")
    return root.resolve()


def resolve_configuration(
    root_dir: Path | str | None,
    hints: Mapping[str, Any] | None = None,
    *,
    defaults: Mapping[str, str] | None = None,
    schemas: Mapping[str, str] | None = None,
) -> RunConfiguration:
    """Merge the root's indexer configuration with caller defaults."""
    defaults = {canonical_parameter(key): _stringify(value) for key, value in (defaults or {}).items()}
    root = _root_from(root_dir, defaults)
    defaults[Prop.ROOT_MOSAIC_DIR] = str(root)

    document_path = root / INDEXER_DOCUMENT
    legacy_path = root / INDEXER_PROPERTIES
    indexer_file: Path | None = None
    if document_path.is_file():
        document = load_indexer_document(document_path)
        copy_default_params(defaults, document)
        indexer_file = document_path
    elif legacy_path.is_file():
        try:
            props = load_properties(legacy_path)
        except OSError as exc:
            raise ConfigurationError(f"Unable to read {legacy_path}: {exc}") from exc
        document = document_from_properties(props, defaults, root=root, source=legacy_path)
        indexer_file = legacy_path
    else:
        document = IndexerDocument()
        copy_default_params(defaults, document)
    # The document may relocate the root; the resolved location always wins.
    document.set_parameter(Prop.ROOT_MOSAIC_DIR, str(root))

    absolute_path = document.get_flag(Prop.ABSOLUTE_PATH)
    run_hints: dict[str, Any] = dict(hints or {})
    _update_hints(run_hints, document, root=root, absolute_path=absolute_path)
    if document.get_parameter(Prop.CACHING) is not None:
        run_hints.setdefault(Hint.CACHING, document.get_flag(Prop.CACHING))

    configuration = RunConfiguration(
        root=root,
        index_name=document.get_parameter(Prop.INDEX_NAME) or root.name,
        location_attribute=(document.get_parameter(Prop.LOCATION_ATTRIBUTE) or "location").strip(),
        absolute_path=absolute_path,
        document=document,
        hints=run_hints,
        indexer_file=indexer_file,
        schemas=dict(schemas or {}),
    )
    configuration.check()
    return configuration
