"""Data models shared by the catalog builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Tuple

from pyproj import CRS
from shapely.geometry.base import BaseGeometry

Envelope = Tuple[float, float, float, float]
ResolutionLevel = Tuple[float, float]
Palette = Tuple[Tuple[int, int, int, int], ...]

GEOMETRY_TYPES = frozenset(
    {
        "Geometry",
        "Point",
        "MultiPoint",
        "LineString",
        "MultiLineString",
        "Polygon",
        "MultiPolygon",
    }
)

_BINDINGS: dict[str, type] = {
    "String": str,
    "Integer": int,
    "Short": int,
    "Long": int,
    "Float": float,
    "Double": float,
    "Boolean": bool,
    "Date": datetime,
    "Timestamp": datetime,
}


def binding_for(type_name: str) -> type | None:
    """Return the Python type bound to an attribute type name."""
    if type_name in GEOMETRY_TYPES:
        return BaseGeometry
    return _BINDINGS.get(type_name)


def known_type_names() -> tuple[str, ...]:
    return tuple(sorted(set(_BINDINGS) | GEOMETRY_TYPES))


@dataclass(frozen=True)
class SampleModel:
    """Pixel layout of a raster: data type, band count and block shape."""

    dtype: str
    band_count: int
    block_shape: tuple[int, int] = (1, 1)


@dataclass(frozen=True)
class ColorModel:
    """Color interpretation of a raster, with its palette when indexed."""

    color_interp: tuple[str, ...]
    palette: Palette | None = None

    @property
    def is_indexed(self) -> bool:
        return self.palette is not None


@dataclass(frozen=True)
class RasterLayout:
    """Sample and color model exposed by a reader for one coverage."""

    sample_model: SampleModel | None
    color_model: ColorModel | None


@dataclass(frozen=True)
class AttributeDescriptor:
    """Single attribute of a feature schema."""

    name: str
    type_name: str
    crs: CRS | None = None
    user_data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_geometry(self) -> bool:
        return self.type_name in GEOMETRY_TYPES

    @property
    def binding(self) -> type | None:
        return binding_for(self.type_name)


@dataclass(frozen=True)
class FeatureSchema:
    """Ordered attributes plus the designated geometry attribute."""

    name: str
    attributes: tuple[AttributeDescriptor, ...]
    geometry_name: str | None = None

    def attribute_names(self) -> tuple[str, ...]:
        return tuple(attribute.name for attribute in self.attributes)

    def attribute(self, name: str) -> AttributeDescriptor | None:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    @property
    def geometry(self) -> AttributeDescriptor | None:
        if self.geometry_name is None:
            return None
        return self.attribute(self.geometry_name)

    @property
    def crs(self) -> CRS | None:
        geometry = self.geometry
        return geometry.crs if geometry is not None else None

    def with_crs(self, crs: CRS | None) -> "FeatureSchema":
        """Return a copy whose geometry attribute uses ``crs``."""
        attributes = tuple(
            AttributeDescriptor(
                name=attribute.name,
                type_name=attribute.type_name,
                crs=crs,
                user_data=dict(attribute.user_data),
            )
            if attribute.name == self.geometry_name
            else attribute
            for attribute in self.attributes
        )
        return FeatureSchema(name=self.name, attributes=attributes, geometry_name=self.geometry_name)

    def with_name(self, name: str) -> "FeatureSchema":
        return FeatureSchema(name=name, attributes=self.attributes, geometry_name=self.geometry_name)


@dataclass
class GranuleRecord:
    """One catalog row for a granule; attribute keys follow the schema."""

    schema: FeatureSchema
    values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def template(cls, schema: FeatureSchema) -> "GranuleRecord":
        """Return an empty record with every schema attribute present."""
        return cls(schema=schema, values={name: None for name in schema.attribute_names()})

    def has_attribute(self, name: str) -> bool:
        return name in self.values

    def set(self, name: str, value: Any) -> None:
        if name not in self.values:
            raise KeyError(f"Unknown attribute for {self.schema.name}: {name}")
        self.values[name] = value

    def get(self, name: str) -> Any:
        return self.values.get(name)

    @property
    def geometry(self) -> BaseGeometry | None:
        if self.schema.geometry_name is None:
            return None
        return self.values.get(self.schema.geometry_name)

    @geometry.setter
    def geometry(self, value: BaseGeometry | None) -> None:
        if self.schema.geometry_name is None:
            raise KeyError(f"Schema {self.schema.name} has no geometry attribute")
        self.values[self.schema.geometry_name] = value


@dataclass
class CatalogConfigurationBean:
    """Per-coverage catalog settings persisted in the summary descriptor."""

    type_name: str | None = None
    location_attribute: str = "location"
    absolute_path: bool = False
    caching: bool = False
    heterogeneous: bool = False
    wrap_store: bool = False


@dataclass
class MosaicConfiguration:
    """In-memory aggregate describing one coverage of the mosaic."""

    name: str
    crs: CRS | None
    levels: list[ResolutionLevel]
    levels_num: int
    catalog: CatalogConfigurationBean
    sample_model: SampleModel | None = None
    color_model: ColorModel | None = None
    palette: Palette | None = None
    time_attribute: str | None = None
    elevation_attribute: str | None = None
    additional_domain_attributes: str | None = None
    auxiliary_file_path: str | None = None
    auxiliary_datastore_path: str | None = None
    check_auxiliary_metadata: bool = False
    expand_to_rgb: bool = False
    envelope: Envelope | None = None
    granule_count: int = 0

    def promote_levels(self, levels: Iterable[ResolutionLevel]) -> None:
        """Adopt a new resolution pyramid, keeping the count in step."""
        self.levels = [(float(x), float(y)) for x, y in levels]
        self.levels_num = len(self.levels)


def as_datetime(value: Any) -> datetime | None:
    """Coerce a date-like value into a datetime, or return None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    raise TypeError(f"Cannot interpret {value!r} as a timestamp")
