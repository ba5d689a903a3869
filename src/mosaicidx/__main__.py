"""Module entrypoint for `python -m mosaicidx`."""

from __future__ import annotations

from mosaicidx.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
