"""Feature schema derivation for coverage catalogs."""

from __future__ import annotations

import logging

from pyproj import CRS
from pyproj.exceptions import CRSError

from mosaicidx.config import RANGE_SPLITTER, TIME_DOMAIN, RunConfiguration
from mosaicidx.errors import SchemaDefinitionError
from mosaicidx.models import AttributeDescriptor, FeatureSchema, known_type_names

LOGGER = logging.getLogger(__name__)

DEFAULT_GEOMETRY = "the_geom"
NATIVE_SRID = "native_srid"

_TYPE_ALIASES = {
    "text": "String",
    "str": "String",
    "int": "Integer",
    "short": "Short",
    "long": "Long",
    "float": "Float",
    "double": "Double",
    "real": "Double",
    "bool": "Boolean",
    "datetime": "Timestamp",
}


def _type_name(raw: str) -> str:
    """Resolve a type token such as ``Double`` or ``java.lang.Double``."""
    simple = raw.strip().rsplit(".", 1)[-1]
    for name in known_type_names():
        if name.lower() == simple.lower():
            return name
    alias = _TYPE_ALIASES.get(simple.lower())
    if alias is None:
        raise SchemaDefinitionError(f"Unknown attribute type: {raw}")
    return alias


def split_range(attribute: str) -> list[str]:
    """Split a ``low;high`` range attribute into its two names."""
    if RANGE_SPLITTER not in attribute:
        return [attribute]
    parts = attribute.split(RANGE_SPLITTER)
    if len(parts) != 2 or not all(part.strip() for part in parts):
        raise SchemaDefinitionError(
            "All ranges attribute need to be composed of a maximum of 2 elements, "
            "as an instance (min;max) or (low;high) or (begin;end)"
        )
    return [part.strip() for part in parts]


def _parse_token(token: str) -> tuple[list[AttributeDescriptor], bool]:
    default_geometry = token.startswith("*")
    if default_geometry:
        token = token[1:]
    pieces = token.split(":")
    if len(pieces) < 2 or not pieces[0].strip():
        raise SchemaDefinitionError(f"Malformed attribute definition: {token}")
    names = split_range(pieces[0].strip())
    type_name = _type_name(pieces[1])
    crs: CRS | None = None
    for hint in pieces[2:]:
        key, _, value = hint.partition("=")
        if key.strip().lower() == "srid":
            try:
                crs = CRS.from_epsg(int(value))
            except (ValueError, CRSError) as exc:
                raise SchemaDefinitionError(f"Invalid srid in {token}") from exc
    return [AttributeDescriptor(name=name, type_name=type_name, crs=crs) for name in names], default_geometry


def parse_schema(name: str, spec: str) -> FeatureSchema:
    """Parse a ``name:Type,...`` attribute string into a FeatureSchema."""
    spec = spec.strip()
    if not spec:
        raise SchemaDefinitionError("Empty schema definition.")
    attributes: list[AttributeDescriptor] = []
    geometry_name: str | None = None
    for token in spec.split(","):
        token = token.strip()
        if not token:
            continue
        parsed, is_default = _parse_token(token)
        for attribute in parsed:
            if attribute.name in {existing.name for existing in attributes}:
                raise SchemaDefinitionError(f"Duplicate attribute: {attribute.name}")
            attributes.append(attribute)
            if attribute.is_geometry and (is_default or geometry_name is None):
                geometry_name = attribute.name
    return FeatureSchema(name=name, attributes=tuple(attributes), geometry_name=geometry_name)


def _declares_authority(crs: CRS) -> bool:
    """Return True when the CRS definition carries its own identifier."""
    try:
        return bool(crs.to_json_dict().get("id"))
    except CRSError:
        return False


def lookup_epsg(crs: CRS) -> int:
    """Search the EPSG database for ``crs``; 0 when nothing matches."""
    try:
        code = crs.to_epsg(min_confidence=20)
    except CRSError:
        code = None
    return code if code is not None else 0


def _attach_native_srid(schema: FeatureSchema, crs: CRS | None) -> FeatureSchema:
    if crs is None or _declares_authority(crs) or schema.geometry_name is None:
        return schema
    srid = lookup_epsg(crs)
    attributes = tuple(
        AttributeDescriptor(
            name=attribute.name,
            type_name=attribute.type_name,
            crs=attribute.crs,
            user_data={**attribute.user_data, NATIVE_SRID: srid},
        )
        if attribute.name == schema.geometry_name
        else attribute
        for attribute in schema.attributes
    )
    return FeatureSchema(name=schema.name, attributes=attributes, geometry_name=schema.geometry_name)


def _explicit_attributes(configuration: RunConfiguration, coverage_name: str) -> str | None:
    document = configuration.document
    coverage = document.coverage(coverage_name)
    if coverage is not None:
        schema = document.schema_for(coverage)
        if schema is not None:
            return schema.attributes
    if document.schemas:
        return document.schemas[0].attributes
    return configuration.schema_text(coverage_name)


def default_schema(
    configuration: RunConfiguration,
    coverage_name: str,
    crs: CRS | None,
) -> FeatureSchema:
    """Location, footprint and optional time attributes."""
    attributes = [
        AttributeDescriptor(name=configuration.location_attribute, type_name="String"),
        AttributeDescriptor(name=DEFAULT_GEOMETRY, type_name="Polygon", crs=crs),
    ]
    time_attribute = configuration.document.attribute(coverage_name, TIME_DOMAIN)
    if time_attribute:
        try:
            names = split_range(time_attribute)
        except SchemaDefinitionError as exc:
            LOGGER.warning("Ignoring time attribute '%s': %s", time_attribute, exc)
            names = []
        attributes.extend(AttributeDescriptor(name=name, type_name="Timestamp") for name in names)
    return FeatureSchema(
        name=configuration.index_name,
        attributes=tuple(attributes),
        geometry_name=DEFAULT_GEOMETRY,
    )


def schema_for(
    configuration: RunConfiguration,
    coverage_name: str,
    crs: CRS | None,
) -> FeatureSchema:
    """Derive the catalog schema of a coverage.

    Explicit attribute strings win over the generated default; a string that
    cannot be parsed falls back to the default instead of failing the run.
    """
    attributes = _explicit_attributes(configuration, coverage_name)
    if attributes is not None:
        try:
            schema = parse_schema(coverage_name, attributes).with_crs(crs)
            return _attach_native_srid(schema, crs)
        except SchemaDefinitionError as exc:
            LOGGER.debug(
                "Falling back to the default schema for %s: %s",
                coverage_name,
                exc,
                exc_info=True,
            )
    return default_schema(configuration, coverage_name, crs)
