"""Location attribute helpers: relative paths and case sensitivity probing."""

from __future__ import annotations

import ntpath
import os
import posixpath
from pathlib import Path

from mosaicidx.errors import NoCommonPathError


def _normalize(path: str, separator: str) -> str:
    """Collapse dot segments and duplicate separators, dropping a trailing one."""
    if separator == "/":
        normalized = posixpath.normpath(path.replace("\\", "/"))
    elif separator == "\\":
        normalized = ntpath.normpath(path.replace("/", "\\"))
    else:
        raise ValueError(f"Unrecognised dir separator '{separator}'")
    if len(normalized) > 1 and normalized.endswith(separator):
        normalized = normalized.rstrip(separator) or separator
    return normalized


def _base_is_file(base_path: str, normalized_base: str, separator: str) -> bool:
    """Guess whether the base refers to a file.

    An existing resource answers for itself; a missing one is a directory only
    when it is spelled with a trailing separator.
    """
    resource = Path(normalized_base)
    if resource.exists():
        return resource.is_file()
    return not base_path.endswith(separator)


def relative_path(target_path: str, base_path: str, separator: str = os.sep) -> str:
    """Return the path of ``target_path`` relative to ``base_path``."""
    normalized_target = _normalize(target_path, separator)
    normalized_base = _normalize(base_path, separator)

    base = normalized_base.split(separator)
    target = normalized_target.split(separator)

    common = 0
    while common < len(target) and common < len(base) and target[common] == base[common]:
        common += 1

    if common == 0:
        # Typically differing drive letters, which cannot be relativized.
        raise NoCommonPathError(
            f"No common path element found for '{normalized_target}' and '{normalized_base}'"
        )

    steps = 0
    if len(base) != common:
        steps = len(base) - common
        if _base_is_file(base_path, normalized_base, separator):
            steps -= 1
    return separator.join([".."] * steps + target[common:])


def is_case_insensitive(path: Path) -> bool:
    """Probe whether the file system holding ``path`` ignores case.

    Both the lower- and upper-cased spellings of the file name must resolve.
    """
    lower = path.with_name(path.name.lower())
    upper = path.with_name(path.name.upper())
    return lower.exists() and upper.exists()


def granule_location(path: Path, root: Path, *, absolute: bool) -> str:
    """Return the location attribute value stored for a granule."""
    if absolute:
        return str(path.resolve())
    return relative_path(str(path.resolve()), str(root) + os.sep, os.sep)
