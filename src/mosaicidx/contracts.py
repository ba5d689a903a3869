"""Schema validation for declarative indexer documents."""

from __future__ import annotations

import json
from importlib import resources
from typing import Any, Mapping

import jsonschema

INDEXER_SCHEMA_NAME = "indexer.schema.json"


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema bundled in the package."""
    with resources.files("mosaicidx.schemas").joinpath(name).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_indexer_document(payload: Mapping[str, Any]) -> None:
    """Validate an indexer document against the bundled schema."""
    jsonschema.validate(dict(payload), _load_schema(INDEXER_SCHEMA_NAME))
