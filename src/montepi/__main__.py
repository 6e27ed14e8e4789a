"""Allow ``python -m montepi``."""

from __future__ import annotations

from montepi.cli.app import app

if __name__ == "__main__":
    app()
