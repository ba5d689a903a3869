from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
from shapely.geometry import box

from mosaicidx.errors import ReconcileError, StoreBackendError
from mosaicidx.models import GranuleRecord
from mosaicidx.schema import parse_schema
from mosaicidx.stores.base import EqualsFilter
from mosaicidx.stores.sqlite import MEMORY, SqliteCatalogStore

SPEC = "the_geom:Polygon,location:String,time:Timestamp,elevation:Double,valid:Boolean"


def _record(schema, location: str, bounds=(0, 0, 1, 1), **values) -> GranuleRecord:
    record = GranuleRecord.template(schema)
    record.set("location", location)
    record.geometry = box(*bounds)
    for name, value in values.items():
        record.set(name, value)
    return record


@pytest.fixture()
def store(tmp_path: Path):
    store = SqliteCatalogStore(tmp_path / "cov.sqlite")
    yield store
    store.close()


def test_create_schema_and_round_trip_values(store: SqliteCatalogStore) -> None:
    schema = parse_schema("cov", SPEC)
    store.create_schema(schema)
    stamp = datetime(2024, 1, 2, 3, 4, 5)

    store.add_records("cov", [_record(schema, "a.tif", time=stamp, elevation=12.5, valid=True)])

    (record,) = store.query("cov")
    assert record.get("location") == "a.tif"
    assert record.get("time") == stamp
    assert record.get("elevation") == 12.5
    assert record.get("valid") is True
    assert record.geometry.equals(box(0, 0, 1, 1))
    assert store.type_names() == ("cov",)
    assert store.spec().spatial_index is True


def test_create_schema_keeps_existing_type(store: SqliteCatalogStore) -> None:
    schema = parse_schema("cov", SPEC)
    store.create_schema(schema)
    store.add_records("cov", [_record(schema, "a.tif")])

    store.create_schema(parse_schema("cov", "the_geom:Polygon,location:String"))

    assert store.get_schema("cov").attribute_names() == schema.attribute_names()
    assert store.count("cov") == 1


def test_types_survive_reopen(tmp_path: Path) -> None:
    database = tmp_path / "cov.sqlite"
    first = SqliteCatalogStore(database)
    schema = parse_schema("cov", SPEC)
    first.create_schema(schema)
    first.add_records("cov", [_record(schema, "a.tif", bounds=(2, 3, 4, 5))])
    first.close()

    reopened = SqliteCatalogStore(database, create=False)
    try:
        assert reopened.type_names() == ("cov",)
        assert reopened.get_schema("cov").geometry_name == "the_geom"
        assert reopened.bounds("cov") == (2.0, 3.0, 4.0, 5.0)
    finally:
        reopened.close()


def test_open_missing_database_without_create(tmp_path: Path) -> None:
    with pytest.raises(StoreBackendError):
        SqliteCatalogStore(tmp_path / "missing.sqlite", create=False)


def test_remove_records_case_insensitive(store: SqliteCatalogStore) -> None:
    schema = parse_schema("cov", SPEC)
    store.create_schema(schema)
    store.add_records("cov", [_record(schema, "Tile.TIF"), _record(schema, "other.tif")])

    assert store.remove_records("cov", EqualsFilter("location", "tile.tif")) == 0
    assert store.remove_records("cov", EqualsFilter("location", "tile.tif", match_case=False)) == 1
    assert [record.get("location") for record in store.query("cov")] == ["other.tif"]


def test_transaction_rollback_discards_writes(store: SqliteCatalogStore) -> None:
    schema = parse_schema("cov", SPEC)
    store.create_schema(schema)
    transaction = store.begin()

    store.add_records("cov", [_record(schema, "a.tif")], transaction)
    transaction.rollback()

    assert store.count("cov") == 0
    assert store.bounds("cov") is None
    with pytest.raises(ReconcileError):
        store.add_records("cov", [_record(schema, "b.tif")], transaction)


def test_rolled_back_schema_is_forgotten(store: SqliteCatalogStore) -> None:
    schema = parse_schema("cov", SPEC)
    store.create_schema(schema)
    transaction = store.begin()
    store.add_records("cov", [_record(schema, "a.tif")], transaction)

    store.create_schema(parse_schema("late", SPEC))
    assert store.type_names() == ("cov", "late")
    transaction.rollback()

    assert store.type_names() == ("cov",)
    assert store.get_schema("late") is None
    late = parse_schema("late", SPEC)
    store.create_schema(late)
    store.add_records("late", [_record(late, "b.tif")])
    assert store.count("late") == 1


def test_transaction_commit_spans_calls(store: SqliteCatalogStore) -> None:
    schema = parse_schema("cov", SPEC)
    store.create_schema(schema)

    with store.begin() as transaction:
        store.add_records("cov", [_record(schema, "a.tif")], transaction)
        store.remove_records("cov", EqualsFilter("location", "a.tif"), transaction)
        store.add_records("cov", [_record(schema, "a.tif", bounds=(0, 0, 2, 2))], transaction)

    assert store.count("cov") == 1
    assert store.bounds("cov") == (0.0, 0.0, 2.0, 2.0)


def test_foreign_transaction_rejected(tmp_path: Path, store: SqliteCatalogStore) -> None:
    other = SqliteCatalogStore(tmp_path / "other.sqlite")
    schema = parse_schema("cov", SPEC)
    store.create_schema(schema)
    try:
        with pytest.raises(ReconcileError, match="does not belong"):
            store.add_records("cov", [_record(schema, "a.tif")], other.begin())
    finally:
        other.close()


def test_bounds_without_spatial_index() -> None:
    store = SqliteCatalogStore(MEMORY)
    try:
        schema = parse_schema("cov", SPEC)
        store.create_schema(schema)
        store.add_records(
            "cov",
            [_record(schema, "a.tif", bounds=(0, 0, 1, 1)), _record(schema, "b.tif", bounds=(-1, 0.5, 0.5, 3))],
        )
        assert store.spec().spatial_index is False
        assert store.bounds("cov") == (-1.0, 0.0, 1.0, 3.0)
    finally:
        store.close()


def test_wrap_store_sanitizes_table_names(tmp_path: Path) -> None:
    store = SqliteCatalogStore(tmp_path / "cov.sqlite", wrap_store=True)
    try:
        schema = parse_schema("My-Coverage", SPEC)
        store.create_schema(schema)
        store.add_records("My-Coverage", [_record(schema, "a.tif")])
        tables = {
            row[0]
            for row in store._connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert "my_coverage" in tables
        assert store.count("My-Coverage") == 1
    finally:
        store.close()


def test_remove_schema_and_unknown_type(store: SqliteCatalogStore) -> None:
    schema = parse_schema("cov", SPEC)
    store.create_schema(schema)
    store.remove_schema("cov")

    assert store.type_names() == ()
    with pytest.raises(ReconcileError):
        store.count("cov")


def test_from_params_resolves_parent_location(tmp_path: Path) -> None:
    store = SqliteCatalogStore.from_params(
        {"database": "nested/cat.sqlite", "ParentLocation": tmp_path.as_uri(), "spatial_index": "false"},
        True,
    )
    try:
        assert Path(store.database) == tmp_path / "nested" / "cat.sqlite"
        assert store.spec().spatial_index is False
    finally:
        store.close()
    with pytest.raises(StoreBackendError):
        SqliteCatalogStore.from_params({}, True)
