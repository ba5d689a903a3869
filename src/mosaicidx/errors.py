"""Exception taxonomy raised while indexing a mosaic."""

from __future__ import annotations


class MosaicIndexError(RuntimeError):
    """Base class for indexing failures."""

    pass


class ConfigurationError(MosaicIndexError):
    """Raised when the run configuration is missing, unreadable or malformed."""

    pass


class StoreBackendError(MosaicIndexError):
    """Raised when a catalog store driver cannot be resolved or opened."""

    pass


class SchemaDefinitionError(MosaicIndexError, ValueError):
    """Raised when an explicit schema attribute string cannot be parsed."""

    pass


class ReconcileError(MosaicIndexError):
    """Raised when a catalog read, write or transaction fails."""

    pass


class NoCommonPathError(MosaicIndexError):
    """Raised when two paths share no common ancestor."""

    pass


class SkipGranule(MosaicIndexError):
    """Raised when a granule is incompatible with its coverage."""

    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"Skipping image {path} because {reason}.")
        self.path = path
        self.reason = reason
