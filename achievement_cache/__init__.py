"""Achievement Cache - local SQLite store for game achievement progress."""

from __future__ import annotations

from achievement_cache.version import __app_name__, __version__

__all__ = ["__app_name__", "__version__"]
