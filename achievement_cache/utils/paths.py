"""Path resolution for bundled resources and the default data directory.

The resources directory ships inside the package (message catalogs), so it
is found relative to this file whether running from a checkout or from an
installed wheel.
"""

from __future__ import annotations

import sys
from pathlib import Path

__all__ = ["get_resources_dir", "get_default_data_dir"]

_resources_dir: Path | None = None


def get_resources_dir() -> Path:
    """Get the path to the resources directory.

    Checks the package directory first, then sys.prefix for bundled installs.

    Returns:
        Path to the resources directory.

    Raises:
        FileNotFoundError: If resources directory cannot be found.
    """
    global _resources_dir
    if _resources_dir is not None:
        return _resources_dir

    # paths.py is at achievement_cache/utils/paths.py -> parent.parent = achievement_cache/
    candidate = Path(__file__).resolve().parent.parent / "resources"
    if candidate.is_dir():
        _resources_dir = candidate
        return _resources_dir

    candidate = Path(sys.prefix) / "resources"
    if candidate.is_dir():
        _resources_dir = candidate
        return _resources_dir

    raise FileNotFoundError(
        "Could not locate resources directory. Searched: achievement_cache/resources/, sys.prefix/resources/"
    )


def get_default_data_dir() -> Path:
    """Default plugin data directory: ``<project root>/data``."""
    return Path(__file__).resolve().parent.parent.parent / "data"
