"""SQLite catalog store with an optional R*Tree footprint index."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Sequence
from urllib.parse import urlparse
from urllib.request import url2pathname

from pyproj import CRS
from shapely import wkb
from shapely.geometry.base import BaseGeometry

from mosaicidx.errors import ReconcileError, StoreBackendError
from mosaicidx.models import (
    AttributeDescriptor,
    Envelope,
    FeatureSchema,
    GranuleRecord,
    as_datetime,
)
from mosaicidx.stores.base import EqualsFilter, StoreSpec

LOGGER = logging.getLogger(__name__)

META_TABLE = "mosaicidx_types"
MEMORY = ":memory:"

_COLUMN_TYPES = {
    "String": "TEXT",
    "Integer": "INTEGER",
    "Short": "INTEGER",
    "Long": "INTEGER",
    "Boolean": "INTEGER",
    "Float": "REAL",
    "Double": "REAL",
    "Date": "TEXT",
    "Timestamp": "TEXT",
}


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _truthy(value: object) -> bool:
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _location_path(value: str) -> Path:
    """Accept either a filesystem path or a ``file:`` URL."""
    parsed = urlparse(value)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    return Path(value)


def _encode(attribute: AttributeDescriptor, value: Any) -> Any:
    if value is None:
        return None
    if attribute.is_geometry:
        if not isinstance(value, BaseGeometry):
            raise ReconcileError(f"Attribute {attribute.name} expects a geometry, got {value!r}")
        return wkb.dumps(value)
    if attribute.type_name in ("Date", "Timestamp"):
        return as_datetime(value).isoformat()
    if attribute.type_name == "Boolean":
        return int(bool(value))
    return value


def _decode(attribute: AttributeDescriptor, value: Any) -> Any:
    if value is None:
        return None
    if attribute.is_geometry:
        return wkb.loads(bytes(value))
    if attribute.type_name in ("Date", "Timestamp"):
        return datetime.fromisoformat(value)
    if attribute.type_name == "Boolean":
        return bool(value)
    return value


def _schema_to_json(schema: FeatureSchema) -> str:
    return json.dumps(
        {
            "geometry": schema.geometry_name,
            "attributes": [
                {
                    "name": attribute.name,
                    "type": attribute.type_name,
                    "crs": attribute.crs.to_wkt() if attribute.crs is not None else None,
                    "user_data": dict(attribute.user_data),
                }
                for attribute in schema.attributes
            ],
        }
    )


def _schema_from_json(type_name: str, payload: str) -> FeatureSchema:
    data = json.loads(payload)
    attributes = tuple(
        AttributeDescriptor(
            name=item["name"],
            type_name=item["type"],
            crs=CRS.from_wkt(item["crs"]) if item.get("crs") else None,
            user_data=item.get("user_data") or {},
        )
        for item in data["attributes"]
    )
    return FeatureSchema(name=type_name, attributes=attributes, geometry_name=data.get("geometry"))


class SqliteTransaction:
    """BEGIN/COMMIT/ROLLBACK scope on a store connection.

    BEGIN is deferred until the first statement run through the transaction,
    so schema changes made before any record write commit on their own.
    """

    def __init__(
        self, connection: sqlite3.Connection, on_rollback: Callable[[], None] | None = None
    ) -> None:
        self._connection = connection
        self._on_rollback = on_rollback
        self._active = True
        self._started = False

    @property
    def active(self) -> bool:
        return self._active

    def owns(self, connection: sqlite3.Connection) -> bool:
        return connection is self._connection

    def ensure_started(self) -> None:
        if not self._active:
            raise ReconcileError("Transaction is no longer active.")
        if self._started:
            return
        try:
            self._connection.execute("BEGIN")
        except sqlite3.Error as exc:
            raise ReconcileError(f"Unable to begin transaction: {exc}") from exc
        self._started = True

    def commit(self) -> None:
        if not self._active:
            raise ReconcileError("Transaction is no longer active.")
        if self._started:
            try:
                self._connection.execute("COMMIT")
            except sqlite3.Error as exc:
                self.rollback()
                raise ReconcileError(f"Unable to commit transaction: {exc}") from exc
        self._active = False

    def rollback(self) -> None:
        if not self._active:
            return
        self._active = False
        if not self._started:
            return
        try:
            self._connection.execute("ROLLBACK")
        except sqlite3.Error as exc:
            raise ReconcileError(f"Unable to roll back transaction: {exc}") from exc
        if self._on_rollback is not None:
            self._on_rollback()

    def close(self) -> None:
        self.rollback()

    def __enter__(self) -> "SqliteTransaction":
        self.ensure_started()
        return self

    def __exit__(self, exc_type: object, *_exc: object) -> None:
        if exc_type is None and self._active:
            self.commit()
        else:
            self.rollback()


class SqliteCatalogStore:
    """Catalog store keeping one table per coverage type name."""

    def __init__(
        self,
        database: Path | str,
        *,
        create: bool = True,
        spatial_index: bool | None = None,
        wrap_store: bool = False,
    ) -> None:
        self.database = str(database)
        self.file_resident = self.database != MEMORY
        if self.file_resident:
            path = Path(self.database)
            if not create and not path.exists():
                raise StoreBackendError(f"Catalog database not found: {path}")
            path.parent.mkdir(parents=True, exist_ok=True)
        self.spatial_index = self.file_resident if spatial_index is None else spatial_index
        self.wrap_store = wrap_store
        try:
            self._connection = sqlite3.connect(self.database, isolation_level=None)
            self._connection.execute(
                f"CREATE TABLE IF NOT EXISTS {META_TABLE} ("
                "type_name TEXT PRIMARY KEY, table_name TEXT NOT NULL, "
                "schema TEXT NOT NULL, indexed INTEGER NOT NULL)"
            )
        except sqlite3.Error as exc:
            raise StoreBackendError(f"Unable to open catalog database {self.database}: {exc}") from exc
        self._types: dict[str, tuple[str, FeatureSchema, bool]] = {}
        self._load_types()

    @classmethod
    def from_params(cls, params: Mapping[str, str], create: bool) -> "SqliteCatalogStore":
        """Build a store from connection properties."""
        database = params.get("database") or params.get("Database")
        if not database:
            raise StoreBackendError("SQLite catalog requires a 'database' parameter.")
        if database != MEMORY:
            path = _location_path(database)
            parent = params.get("ParentLocation")
            if not path.is_absolute() and parent:
                path = _location_path(parent) / path
            database = str(path)
        spatial_index = params.get("spatial_index")
        return cls(
            database,
            create=create,
            spatial_index=_truthy(spatial_index) if spatial_index is not None else None,
            wrap_store=_truthy(params.get("WrapStore", "false")),
        )

    def spec(self) -> StoreSpec:
        return StoreSpec(name="sqlite", file_resident=self.file_resident, spatial_index=self.spatial_index)

    def _load_types(self) -> None:
        self._types.clear()
        rows = self._connection.execute(
            f"SELECT type_name, table_name, schema, indexed FROM {META_TABLE}"
        ).fetchall()
        for type_name, table_name, payload, indexed in rows:
            self._types[type_name] = (table_name, _schema_from_json(type_name, payload), bool(indexed))

    def _table_name(self, type_name: str) -> str:
        if not self.wrap_store:
            return type_name
        return re.sub(r"[^0-9a-z_]", "_", type_name.lower())

    def _lookup(self, type_name: str) -> tuple[str, FeatureSchema, bool]:
        try:
            return self._types[type_name]
        except KeyError as exc:
            raise ReconcileError(f"No catalog type named {type_name}") from exc

    @contextmanager
    def _scope(self, transaction: Any | None) -> Iterator[None]:
        """Run inside the caller's transaction, or a private one."""
        if transaction is not None:
            if not transaction.active:
                raise ReconcileError("Transaction is no longer active.")
            if not isinstance(transaction, SqliteTransaction) or not transaction.owns(self._connection):
                raise ReconcileError("Transaction does not belong to this catalog.")
            transaction.ensure_started()
            yield
            return
        with self.begin():
            yield

    @contextmanager
    def _schema_scope(self) -> Iterator[None]:
        """Schema changes join an open transaction or commit on their own."""
        if self._connection.in_transaction:
            yield
            return
        with self.begin():
            yield

    def type_names(self) -> tuple[str, ...]:
        return tuple(sorted(self._types))

    def begin(self) -> SqliteTransaction:
        # A rolled back schema change must not linger in the type cache.
        return SqliteTransaction(self._connection, on_rollback=self._load_types)

    def create_schema(self, schema: FeatureSchema) -> None:
        """Create the table for a type; an existing type is kept as is."""
        if schema.name in self._types:
            LOGGER.debug("Catalog type %s already exists; keeping it", schema.name)
            return
        table = self._table_name(schema.name)
        columns = ["fid INTEGER PRIMARY KEY AUTOINCREMENT"]
        for attribute in schema.attributes:
            column_type = "BLOB" if attribute.is_geometry else _COLUMN_TYPES.get(attribute.type_name, "TEXT")
            columns.append(f"{_quote(attribute.name)} {column_type}")
        indexed = self.spatial_index and schema.geometry_name is not None
        try:
            with self._schema_scope():
                self._connection.execute(f"CREATE TABLE {_quote(table)} ({', '.join(columns)})")
                if indexed:
                    indexed = self._create_rtree(table)
                self._connection.execute(
                    f"INSERT INTO {META_TABLE} (type_name, table_name, schema, indexed) VALUES (?, ?, ?, ?)",
                    (schema.name, table, _schema_to_json(schema), int(indexed)),
                )
        except sqlite3.Error as exc:
            raise ReconcileError(f"Unable to create catalog type {schema.name}: {exc}") from exc
        self._types[schema.name] = (table, schema, indexed)

    def _create_rtree(self, table: str) -> bool:
        try:
            self._connection.execute(
                f"CREATE VIRTUAL TABLE {_quote('rtree_' + table)} USING rtree(id, minx, maxx, miny, maxy)"
            )
        except sqlite3.OperationalError as exc:
            LOGGER.warning("Spatial index unavailable for %s: %s", table, exc)
            return False
        return True

    def get_schema(self, type_name: str) -> FeatureSchema | None:
        entry = self._types.get(type_name)
        return entry[1] if entry is not None else None

    def remove_schema(self, type_name: str) -> None:
        table, _schema, indexed = self._lookup(type_name)
        try:
            with self._schema_scope():
                self._connection.execute(f"DROP TABLE IF EXISTS {_quote(table)}")
                if indexed:
                    self._connection.execute(f"DROP TABLE IF EXISTS {_quote('rtree_' + table)}")
                self._connection.execute(f"DELETE FROM {META_TABLE} WHERE type_name = ?", (type_name,))
        except sqlite3.Error as exc:
            raise ReconcileError(f"Unable to remove catalog type {type_name}: {exc}") from exc
        del self._types[type_name]

    def _where(self, schema: FeatureSchema, record_filter: EqualsFilter | None) -> tuple[str, tuple[Any, ...]]:
        if record_filter is None:
            return "", ()
        attribute = schema.attribute(record_filter.attribute)
        if attribute is None:
            raise ReconcileError(f"Unknown attribute {record_filter.attribute} in {schema.name}")
        collate = "" if record_filter.match_case else " COLLATE NOCASE"
        return (
            f" WHERE {_quote(attribute.name)} = ?{collate}",
            (_encode(attribute, record_filter.value),),
        )

    def add_records(
        self,
        type_name: str,
        records: Sequence[GranuleRecord],
        transaction: SqliteTransaction | None = None,
    ) -> int:
        table, schema, indexed = self._lookup(type_name)
        names = schema.attribute_names()
        statement = (
            f"INSERT INTO {_quote(table)} ({', '.join(_quote(name) for name in names)}) "
            f"VALUES ({', '.join('?' for _ in names)})"
        )
        rtree = f"INSERT INTO {_quote('rtree_' + table)} (id, minx, maxx, miny, maxy) VALUES (?, ?, ?, ?, ?)"
        try:
            with self._scope(transaction):
                for record in records:
                    values = tuple(
                        _encode(attribute, record.get(attribute.name)) for attribute in schema.attributes
                    )
                    cursor = self._connection.execute(statement, values)
                    geometry = record.geometry
                    if indexed and geometry is not None and not geometry.is_empty:
                        minx, miny, maxx, maxy = geometry.bounds
                        self._connection.execute(rtree, (cursor.lastrowid, minx, maxx, miny, maxy))
        except sqlite3.Error as exc:
            raise ReconcileError(f"Unable to add granules to {type_name}: {exc}") from exc
        return len(records)

    def remove_records(
        self,
        type_name: str,
        record_filter: EqualsFilter,
        transaction: SqliteTransaction | None = None,
    ) -> int:
        table, schema, indexed = self._lookup(type_name)
        where, params = self._where(schema, record_filter)
        try:
            with self._scope(transaction):
                if indexed:
                    self._connection.execute(
                        f"DELETE FROM {_quote('rtree_' + table)} WHERE id IN "
                        f"(SELECT fid FROM {_quote(table)}{where})",
                        params,
                    )
                cursor = self._connection.execute(f"DELETE FROM {_quote(table)}{where}", params)
        except sqlite3.Error as exc:
            raise ReconcileError(f"Unable to remove granules from {type_name}: {exc}") from exc
        return cursor.rowcount

    def query(self, type_name: str, record_filter: EqualsFilter | None = None) -> list[GranuleRecord]:
        table, schema, _indexed = self._lookup(type_name)
        where, params = self._where(schema, record_filter)
        columns = ", ".join(_quote(name) for name in schema.attribute_names())
        try:
            rows = self._connection.execute(
                f"SELECT {columns} FROM {_quote(table)}{where} ORDER BY fid", params
            ).fetchall()
        except sqlite3.Error as exc:
            raise ReconcileError(f"Unable to query {type_name}: {exc}") from exc
        return [
            GranuleRecord(
                schema=schema,
                values={
                    attribute.name: _decode(attribute, value)
                    for attribute, value in zip(schema.attributes, row)
                },
            )
            for row in rows
        ]

    def count(self, type_name: str, record_filter: EqualsFilter | None = None) -> int:
        table, schema, _indexed = self._lookup(type_name)
        where, params = self._where(schema, record_filter)
        try:
            row = self._connection.execute(f"SELECT COUNT(*) FROM {_quote(table)}{where}", params).fetchone()
        except sqlite3.Error as exc:
            raise ReconcileError(f"Unable to count granules in {type_name}: {exc}") from exc
        return int(row[0])

    def bounds(self, type_name: str) -> Envelope | None:
        table, _schema, indexed = self._lookup(type_name)
        if indexed:
            try:
                row = self._connection.execute(
                    f"SELECT MIN(minx), MIN(miny), MAX(maxx), MAX(maxy) FROM {_quote('rtree_' + table)}"
                ).fetchone()
            except sqlite3.Error as exc:
                raise ReconcileError(f"Unable to compute bounds of {type_name}: {exc}") from exc
            return None if row is None or row[0] is None else tuple(float(value) for value in row)
        envelope: Envelope | None = None
        for record in self.query(type_name):
            geometry = record.geometry
            if geometry is None or geometry.is_empty:
                continue
            minx, miny, maxx, maxy = geometry.bounds
            if envelope is None:
                envelope = (minx, miny, maxx, maxy)
            else:
                envelope = (
                    min(envelope[0], minx),
                    min(envelope[1], miny),
                    max(envelope[2], maxx),
                    max(envelope[3], maxy),
                )
        return envelope

    def close(self) -> None:
        self._connection.close()
