"""Read and write flat ``key=value`` properties files."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping

_SEPARATOR = re.compile(r"(?<!\\)[=:]|(?<!\\)\s")
_UNESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def _logical_lines(lines: Iterable[str]) -> Iterable[str]:
    """Join backslash-continued lines and drop comments and blanks."""
    pending = ""
    for raw in lines:
        line = raw.lstrip()
        if not pending and (not line or line[0] in "#!"):
            continue
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending += line[:-1]
            continue
        yield pending + line
        pending = ""
    if pending:
        yield pending


def _unescape(value: str) -> str:
    out: list[str] = []
    index = 0
    while index < len(value):
        char = value[index]
        if char == "\\" and index + 1 < len(value):
            nxt = value[index + 1]
            out.append(_UNESCAPES.get(nxt, nxt))
            index += 2
            continue
        out.append(char)
        index += 1
    return "".join(out)


def parse_properties(text: str) -> dict[str, str]:
    """Parse properties text into an ordered mapping."""
    result: dict[str, str] = {}
    for line in _logical_lines(text.splitlines()):
        stripped = line.strip()
        if not stripped:
            continue
        match = _SEPARATOR.search(stripped)
        if match is None:
            result[_unescape(stripped)] = ""
            continue
        key = stripped[: match.start()]
        rest = stripped[match.end() :].lstrip()
        if match.group().isspace() and rest[:1] in ("=", ":"):
            rest = rest[1:].lstrip()
        result[_unescape(key)] = _unescape(rest)
    return result


def load_properties(path: Path) -> dict[str, str]:
    """Load a properties file from disk."""
    return parse_properties(path.read_text(encoding="utf-8"))


def _escape(value: str, *, is_key: bool) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\t", "\\t")
        .replace("\r", "\\r")
    )
    if is_key:
        escaped = escaped.replace("=", "\\=").replace(":", "\\:").replace(" ", "\\ ")
    elif escaped.startswith(" "):
        escaped = "\\" + escaped
    return escaped


def format_properties(values: Mapping[str, str], *, comment: str | None = None) -> str:
    """Render a mapping as properties text, keys sorted."""
    lines: list[str] = []
    if comment:
        lines.append(f"#{comment}")
    lines.append(f"#{datetime.now(timezone.utc).strftime('%a %b %d %H:%M:%S UTC %Y')}")
    for key in sorted(values):
        lines.append(f"{_escape(key, is_key=True)}={_escape(str(values[key]), is_key=False)}")
    return "\n".join(lines) + "\n"


def write_properties(
    path: Path,
    values: Mapping[str, str],
    *,
    comment: str | None = None,
) -> Path:
    """Write a properties file and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_properties(values, comment=comment), encoding="utf-8")
    return path
