#!/usr/bin/env python3
"""Command-line entrypoint for running an edge address scan."""

from edgescan.cli import main

if __name__ == "__main__":  # pragma: no cover - script entrypoint
    raise SystemExit(main())
