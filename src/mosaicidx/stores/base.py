"""Shared catalog store types and protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, Sequence

from mosaicidx.models import Envelope, FeatureSchema, GranuleRecord


@dataclass(frozen=True)
class StoreSpec:
    """Describe a store backend's capabilities."""

    name: str
    file_resident: bool
    spatial_index: bool


@dataclass(frozen=True)
class EqualsFilter:
    """Attribute equality predicate used to select catalog records."""

    attribute: str
    value: Any
    match_case: bool = True

    def matches(self, record: GranuleRecord) -> bool:
        current = record.get(self.attribute)
        if self.match_case or not isinstance(current, str) or not isinstance(self.value, str):
            return current == self.value
        return current.lower() == self.value.lower()


class Transaction(Protocol):
    """Unit of atomicity for catalog mutations."""

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...

    def close(self) -> None:
        ...

    @property
    def active(self) -> bool:
        ...


class CatalogStore(Protocol):
    """Protocol implemented by catalog store backends."""

    def spec(self) -> StoreSpec:
        ...

    def type_names(self) -> tuple[str, ...]:
        ...

    def create_schema(self, schema: FeatureSchema) -> None:
        ...

    def get_schema(self, type_name: str) -> FeatureSchema | None:
        ...

    def remove_schema(self, type_name: str) -> None:
        ...

    def begin(self) -> Transaction:
        ...

    def add_records(
        self,
        type_name: str,
        records: Sequence[GranuleRecord],
        transaction: Transaction | None = None,
    ) -> int:
        ...

    def remove_records(
        self,
        type_name: str,
        record_filter: EqualsFilter,
        transaction: Transaction | None = None,
    ) -> int:
        ...

    def query(self, type_name: str, record_filter: EqualsFilter | None = None) -> list[GranuleRecord]:
        ...

    def count(self, type_name: str, record_filter: EqualsFilter | None = None) -> int:
        ...

    def bounds(self, type_name: str) -> Envelope | None:
        ...

    def close(self) -> None:
        ...


StoreFactory = Callable[[Mapping[str, str], bool], CatalogStore]
