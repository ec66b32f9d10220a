"""
Message catalog for log and error texts.

Loads catalog files dynamically:
1. Shared files from resources/i18n/*.json (language-agnostic log messages)
2. Locale-specific overrides from resources/i18n/{locale}/*.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

__all__ = ["MessageCatalog", "get_language", "init_i18n", "t"]

logger = logging.getLogger("achievecache.i18n")


class MessageCatalog:
    """Dot-notation lookup over merged JSON catalogs.

    Shared files in resources/i18n/ are the fallback; a locale directory
    (resources/i18n/{locale}/) may override any subset of keys.
    """

    def __init__(self, locale: str = "en", root: Path | None = None) -> None:
        """Initialize the catalog for a locale.

        Args:
            locale: Locale code naming an optional override directory.
            root: Catalog root; defaults to the bundled resources/i18n.
        """
        self.locale = locale
        if root is None:
            from achievement_cache.utils.paths import get_resources_dir

            root = get_resources_dir() / "i18n"
        self.root = root
        self.messages: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Merge shared files, then the locale directory on top."""
        shared = self._load_json_directory(self.root)
        if self.locale and self.locale != "en":
            self.messages = self._deep_merge(shared, self._load_json_directory(self.root / self.locale))
        else:
            self.messages = shared

    def _load_json_directory(self, directory: Path) -> dict[str, Any]:
        """Load and deep-merge every ``*.json`` file of a directory.

        Args:
            directory: Directory to scan (non-recursive).

        Returns:
            Merged dictionary; empty when the directory is missing.
        """
        merged: dict[str, Any] = {}
        if not directory.is_dir():
            return merged
        for file_path in sorted(directory.glob("*.json")):
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    merged = self._deep_merge(merged, json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.error("Error loading message catalog %s: %s", file_path.name, e)
        return merged

    def _deep_merge(self, base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
        result = base.copy()
        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def t(self, key: str, /, **kwargs: Any) -> str:
        """Retrieve a message by dot-notation key.

        Args:
            key: Dot-separated key path (e.g. 'logs.db.schema_ready').
            **kwargs: Format arguments for string interpolation.

        Returns:
            Formatted message, or '[key]' if not found.
        """
        value: Any = self.messages
        for part in key.split("."):
            if not isinstance(value, dict):
                return f"[{key}]"
            value = value.get(part)

        if not isinstance(value, str):
            return f"[{key}]"

        if kwargs:
            try:
                return value.format(**kwargs)
            except (ValueError, KeyError, IndexError):
                return value
        return value


_catalog: MessageCatalog | None = None


def init_i18n(locale: str = "en") -> MessageCatalog:
    """Initialize the global catalog.

    Args:
        locale: The locale code to use.

    Returns:
        The initialized catalog.
    """
    global _catalog
    _catalog = MessageCatalog(locale)
    return _catalog


def get_language() -> str:
    """Return the locale code of the global catalog."""
    if _catalog is None:
        init_i18n()
    return _catalog.locale


def t(key: str, /, **kwargs: Any) -> str:
    """Retrieve a message using the global catalog.

    Args:
        key: Dot-separated key path.
        **kwargs: Format arguments for string interpolation.

    Returns:
        Formatted message, or '[key]' if not found.
    """
    if _catalog is None:
        init_i18n()
    return _catalog.t(key, **kwargs)
