from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = ROOT / "src"
for path in (SRC_ROOT, ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

import pytest  # noqa: E402

from mosaicidx import collectors  # noqa: E402
from mosaicidx.stores.registry import refresh_stores  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_registries() -> None:
    """Keep plugin registrations from leaking between tests."""
    saved = dict(collectors._REGISTRY)
    refresh_stores()
    yield
    refresh_stores()
    collectors._REGISTRY.clear()
    collectors._REGISTRY.update(saved)


@pytest.fixture(autouse=True)
def _reset_logging() -> None:
    """Undo handlers installed by configure_logging."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
