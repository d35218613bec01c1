"""
Single source of truth for the service version.

Reads from pyproject.toml at import time so the boot banner, the health
endpoint and the tracing resource all agree.
"""

from __future__ import annotations

from pathlib import Path

__all__ = ["VERSION", "APP_NAME"]

APP_NAME = "signal-trader"

_FALLBACK_VERSION = "1.0.0"


def _read_version() -> str:
    """Read ``version = "..."`` from the project table of pyproject.toml."""
    toml_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
    if not toml_path.exists():
        return _FALLBACK_VERSION
    for line in toml_path.read_text().splitlines():
        if line.strip().startswith("version"):
            return line.split("=", 1)[1].strip().strip('"').strip("'")
    return _FALLBACK_VERSION


VERSION = _read_version()
