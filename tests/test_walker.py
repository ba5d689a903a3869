from __future__ import annotations

from pathlib import Path

from mosaicidx.config import resolve_configuration
from mosaicidx.walker import is_artifact, walk_granules


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    return path


def test_walk_is_recursive_sorted_and_skips_artifacts(tmp_path: Path) -> None:
    b = _touch(tmp_path / "b.tif")
    a = _touch(tmp_path / "nested" / "a.tif")
    for name in ("mosaic.properties", "notes.json", "mosaic.sqlite", "sample_image.tif", "b.wkt", "b.tif.aux.xml"):
        _touch(tmp_path / name)

    files = walk_granules(resolve_configuration(tmp_path))

    assert files == sorted([b, a])


def test_walk_honours_wildcard_and_recursion(tmp_path: Path) -> None:
    top = _touch(tmp_path / "top.tif")
    _touch(tmp_path / "top.png")
    _touch(tmp_path / "nested" / "deep.tif")

    configuration = resolve_configuration(tmp_path, defaults={"Wildcard": "*.tif", "Recursive": "false"})

    assert walk_granules(configuration) == [top]


def test_walk_indexing_directories(tmp_path: Path, caplog) -> None:
    inside = _touch(tmp_path / "in" / "x.tif")
    _touch(tmp_path / "out" / "y.tif")

    configuration = resolve_configuration(tmp_path, defaults={"IndexingDirectories": "in, missing"})

    assert walk_granules(configuration) == [inside]
    assert "missing" in caplog.text


def test_is_artifact() -> None:
    assert is_artifact(Path("sstsample_image.tif"))
    assert is_artifact(Path("x.SQLITE"))
    assert is_artifact(Path("tile.ovr"))
    assert not is_artifact(Path("tile.tif"))
