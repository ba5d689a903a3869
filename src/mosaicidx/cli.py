"""Command-line interface for mosaicidx."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from mosaicidx import __version__
from mosaicidx.catalog import open_catalog
from mosaicidx.config import Prop, resolve_configuration
from mosaicidx.errors import MosaicIndexError
from mosaicidx.finalize import read_summary_descriptor
from mosaicidx.indexer import run_index
from mosaicidx.logging_utils import LogOptions, configure_logging

LOGGER = logging.getLogger("mosaicidx.cli")


def _add_index_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the harvest subcommand."""
    index = subparsers.add_parser("index", help="Index the rasters under a mosaic directory.")
    index.add_argument("root", help="Mosaic root directory.")
    index.add_argument("--index-name", help="Catalog index name (defaults to the directory name).")
    index.add_argument("--location-attribute", help="Name of the location attribute.")
    index.add_argument(
        "--absolute",
        action="store_true",
        help="Store absolute granule paths instead of root-relative ones.",
    )
    index.add_argument("--wildcard", help="File name pattern of the granules (default *.*).")
    index.add_argument(
        "--no-recursive",
        action="store_true",
        help="Only index files directly under the indexing directories.",
    )
    index.add_argument(
        "--schema",
        help="Attribute string used when the configuration declares no schema.",
    )
    index.add_argument(
        "--output",
        help="Optional path to write the run summary JSON.",
    )


def _add_show_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the catalog inspection subcommand."""
    show = subparsers.add_parser("show", help="Show the coverages held by a mosaic catalog.")
    show.add_argument("root", help="Mosaic root directory.")


def _index_defaults(args: argparse.Namespace) -> dict[str, str]:
    defaults: dict[str, str] = {}
    if args.index_name:
        defaults[Prop.INDEX_NAME] = args.index_name
    if args.location_attribute:
        defaults[Prop.LOCATION_ATTRIBUTE] = args.location_attribute
    if args.absolute:
        defaults[Prop.ABSOLUTE_PATH] = "true"
    if args.wildcard:
        defaults[Prop.WILDCARD] = args.wildcard
    if args.no_recursive:
        defaults[Prop.RECURSIVE] = "false"
    return defaults


def show_catalog(root: Path) -> dict[str, Any]:
    """Describe the coverages of an existing catalog."""
    configuration = resolve_configuration(root)
    catalog = open_catalog(configuration, create=False)
    try:
        coverages = []
        for type_name in catalog.coverage_names():
            source = catalog.source(type_name)
            entry: dict[str, Any] = {
                "type_name": type_name,
                "granules": source.count(),
                "bounds": list(source.bounds() or ()) or None,
            }
            descriptor = configuration.root / f"{type_name}.properties"
            if descriptor.is_file():
                entry["descriptor"] = read_summary_descriptor(descriptor)
            coverages.append(entry)
    finally:
        catalog.close()
    return {"root": str(configuration.root), "coverages": coverages}


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="mosaicidx",
        description="Incremental raster mosaic catalog builder",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_index_parser(subparsers)
    _add_show_parser(subparsers)
    subparsers.add_parser("version", help="Print the current version.")

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    configure_logging(
        LogOptions(
            verbose=getattr(args, "verbose", 0) or 0,
            quiet=bool(getattr(args, "quiet", False)),
            log_file=Path(log_file_value) if log_file_value else None,
            json_console=bool(getattr(args, "log_json", False)),
        )
    )

    if args.command == "version":
        print(__version__)
        return 0
    if args.command == "index":
        root = Path(args.root)
        schemas = {}
        if args.schema:
            schemas[args.index_name or root.expanduser().resolve().name] = args.schema
        try:
            result = run_index(root, defaults=_index_defaults(args), schemas=schemas)
        except MosaicIndexError as exc:
            LOGGER.error("Indexing failed: %s", exc)
            return 1
        payload = result.as_dict()
        if args.output:
            Path(args.output).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        for name, count in result.coverages.items():
            LOGGER.info("Coverage %s: %d granule(s)", name, count)
        if result.skipped:
            LOGGER.warning("Skipped %d file(s).", len(result.skipped))
        return 1 if result.canceled else 0
    if args.command == "show":
        try:
            payload = show_catalog(Path(args.root))
        except MosaicIndexError as exc:
            LOGGER.error("Unable to read catalog: %s", exc)
            return 1
        print(json.dumps(payload, indent=2, default=str))
        return 0
    parser.error(f"Unknown command: {args.command}")
    return 2
