from __future__ import annotations

import json
import runpy
import sys
from pathlib import Path

import numpy as np
import pytest

from mosaicidx import __version__, cli
from mosaicidx.finalize import read_summary_descriptor
from tests.utils import write_raster


def _mosaic(root: Path) -> Path:
    data = np.ones((4, 4), dtype=np.uint8)
    for index in range(2):
        write_raster(root / f"tile_{index}.tif", data, bounds=(index, 0.0, index + 1.0, 1.0))
    return root


def test_cli_version(capsys) -> None:
    assert cli.main(["version"]) == 0
    assert capsys.readouterr().out.strip() == __version__


def test_cli_requires_command() -> None:
    with pytest.raises(SystemExit):
        cli.main([])


def test_cli_index_and_show(tmp_path: Path, capsys) -> None:
    root = _mosaic(tmp_path / "dem")
    summary = tmp_path / "summary.json"

    assert cli.main(["--quiet", "index", str(root), "--output", str(summary)]) == 0

    payload = json.loads(summary.read_text(encoding="utf-8"))
    assert payload["coverages"] == {"dem": 2}
    assert payload["heterogeneous"] == {"dem": False}
    assert payload["canceled"] is False

    capsys.readouterr()
    assert cli.main(["--quiet", "show", str(root)]) == 0
    shown = json.loads(capsys.readouterr().out)
    (coverage,) = shown["coverages"]
    assert coverage["type_name"] == "dem"
    assert coverage["granules"] == 2
    assert coverage["bounds"] == [0.0, 0.0, 2.0, 1.0]
    assert coverage["descriptor"]["LevelsNum"] == "1"


def test_cli_index_options(tmp_path: Path) -> None:
    root = _mosaic(tmp_path / "dem")
    (root / "skip.png").write_bytes(b"")
    summary = tmp_path / "summary.json"

    code = cli.main(
        [
            "--quiet",
            "index",
            str(root),
            "--index-name",
            "elevation",
            "--location-attribute",
            "path",
            "--absolute",
            "--wildcard",
            "*.tif",
            "--schema",
            "*footprint:Polygon,path:String,label:String",
            "--output",
            str(summary),
        ]
    )

    assert code == 0
    payload = json.loads(summary.read_text(encoding="utf-8"))
    assert payload["coverages"] == {"elevation": 2}
    assert payload["skipped"] == []
    assert (root / "elevation.sqlite").is_file()
    descriptor = read_summary_descriptor(root / "elevation.properties")
    assert descriptor["AbsolutePath"] == "true"
    assert descriptor["LocationAttribute"] == "path"


def test_cli_index_missing_root(tmp_path: Path) -> None:
    assert cli.main(["--quiet", "index", str(tmp_path / "missing")]) == 1


def test_cli_show_without_catalog(tmp_path: Path) -> None:
    assert cli.main(["--quiet", "show", str(tmp_path)]) == 1


def test_cli_log_file(tmp_path: Path) -> None:
    root = _mosaic(tmp_path / "dem")
    log_path = tmp_path / "logs" / "run.jsonl"

    assert cli.main(["--quiet", "--log-file", str(log_path), "index", str(root)]) == 0

    lines = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert any(line["message"].startswith("Harvesting 2 file(s)") for line in lines)


def test_module_entrypoint(monkeypatch, capsys) -> None:
    monkeypatch.setattr(sys, "argv", ["mosaicidx", "version"])

    with pytest.raises(SystemExit) as excinfo:
        runpy.run_module("mosaicidx", run_name="__main__")

    assert excinfo.value.code == 0
    assert capsys.readouterr().out.strip() == __version__
