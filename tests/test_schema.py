from __future__ import annotations

import json
from pathlib import Path

import pytest
from pyproj import CRS

from mosaicidx.config import resolve_configuration
from mosaicidx.errors import SchemaDefinitionError
from mosaicidx.schema import NATIVE_SRID, lookup_epsg, parse_schema, schema_for, split_range


def _config(root: Path, payload: dict | None = None, **kwargs):
    if payload is not None:
        (root / "indexer.json").write_text(json.dumps(payload), encoding="utf-8")
    return resolve_configuration(root, **kwargs)


def test_range_attribute_splits_into_two() -> None:
    schema = parse_schema("cov", "id:String,the_geom:Polygon,min;max:Double")

    assert schema.attribute_names() == ("id", "the_geom", "min", "max")
    assert schema.geometry_name == "the_geom"
    assert schema.attribute("min").type_name == "Double"
    assert schema.attribute("max").type_name == "Double"


@pytest.mark.parametrize("spec", ["id:String,a;b;c:Double", "id:String,low;:Double"])
def test_range_attribute_must_have_two_parts(spec: str) -> None:
    with pytest.raises(SchemaDefinitionError):
        parse_schema("cov", spec)


def test_split_range_plain_name() -> None:
    assert split_range("time") == ["time"]
    assert split_range(" begin ; end ") == ["begin", "end"]


def test_parse_schema_type_tokens_and_default_geometry() -> None:
    schema = parse_schema(
        "cov",
        "a:Point,*b:MultiPolygon:srid=3857,when:java.util.Date,n:java.lang.Integer,flag:bool",
    )

    assert schema.geometry_name == "b"
    assert schema.attribute("b").crs.to_epsg() == 3857
    assert schema.attribute("when").type_name == "Date"
    assert schema.attribute("n").type_name == "Integer"
    assert schema.attribute("flag").type_name == "Boolean"


@pytest.mark.parametrize("spec", ["", "location", "x:Unknown", "x:String,x:Double"])
def test_parse_schema_rejects_malformed(spec: str) -> None:
    with pytest.raises(SchemaDefinitionError):
        parse_schema("cov", spec)


def test_default_schema_with_time_range(tmp_path: Path) -> None:
    root = tmp_path / "sst"
    root.mkdir()
    config = _config(
        root,
        {"coverages": [{"name": "sst", "domains": [{"name": "time", "attribute": "start;end"}]}]},
    )

    schema = schema_for(config, "sst", CRS.from_epsg(4326))

    assert schema.name == "sst"
    assert schema.attribute_names() == ("location", "the_geom", "start", "end")
    assert schema.attribute("start").type_name == "Timestamp"
    assert schema.crs == CRS.from_epsg(4326)


def test_schema_precedence(tmp_path: Path) -> None:
    config = _config(
        tmp_path,
        {
            "coverages": [
                {"name": "with_schema", "schema": "custom"},
                {"name": "without_schema"},
            ],
            "schemas": [
                {"name": "first", "attributes": "the_geom:Polygon,location:String,first:String"},
                {"name": "custom", "attributes": "the_geom:Polygon,location:String,custom:String"},
            ],
        },
    )
    crs = CRS.from_epsg(4326)

    assert "custom" in schema_for(config, "with_schema", crs).attribute_names()
    assert "first" in schema_for(config, "without_schema", crs).attribute_names()


def test_caller_schema_used_without_document_schemas(tmp_path: Path) -> None:
    config = _config(tmp_path, schemas={"cov": "the_geom:Polygon,location:String,caller:Double"})

    schema = schema_for(config, "cov", CRS.from_epsg(4326))

    assert schema.attribute_names() == ("the_geom", "location", "caller")


def test_unparseable_schema_falls_back_to_default(tmp_path: Path, caplog) -> None:
    config = _config(tmp_path, {"schemas": [{"attributes": "id:String,a;b;c:Double"}]})

    with caplog.at_level("DEBUG", logger="mosaicidx.schema"):
        schema = schema_for(config, "cov", CRS.from_epsg(4326))

    assert schema.attribute_names() == ("location", "the_geom")
    assert "Falling back to the default schema" in caplog.text


def test_native_srid_attached_when_crs_has_no_authority(tmp_path: Path) -> None:
    config = _config(tmp_path, {"schemas": [{"attributes": "the_geom:Polygon,location:String"}]})
    crs = CRS.from_proj4("+proj=longlat +datum=WGS84 +no_defs")

    schema = schema_for(config, "cov", crs)

    assert schema.geometry.user_data[NATIVE_SRID] == 4326


def test_native_srid_not_attached_for_identified_crs(tmp_path: Path) -> None:
    config = _config(tmp_path, {"schemas": [{"attributes": "the_geom:Polygon,location:String"}]})

    schema = schema_for(config, "cov", CRS.from_epsg(32633))

    assert NATIVE_SRID not in schema.geometry.user_data


def test_lookup_epsg_falls_back_to_zero() -> None:
    crs = CRS.from_proj4("+proj=tmerc +lat_0=12.3 +lon_0=45.6 +k=0.9871 +x_0=1234 +y_0=0 +ellps=GRS80")
    assert lookup_epsg(crs) == 0
