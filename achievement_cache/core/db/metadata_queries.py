"""Opaque key/value metadata access (schema version, importer counters)."""

from __future__ import annotations

import logging

logger = logging.getLogger("achievecache.database")

__all__ = ["MetadataQueryMixin"]


class MetadataQueryMixin:
    """Mixin providing metadata get/set.

    Requires ConnectionBase attributes: conn, _lock, transaction().
    Keys are trimmed and case-sensitive; blank keys are ignored.
    """

    def get_metadata(self, key: str | None) -> str | None:
        """Read a metadata value.

        Args:
            key: Metadata key.

        Returns:
            The stored value, or None if the key is blank or absent.
        """
        normalized = (key or "").strip()
        if not normalized:
            return None

        with self._lock:
            row = self.conn.execute("SELECT Value FROM CacheMetadata WHERE Key = ?", (normalized,)).fetchone()
        return row["Value"] if row else None

    def set_metadata(self, key: str | None, value: str | None) -> None:
        """Insert or overwrite a metadata value (None is stored as an empty string)."""
        normalized = (key or "").strip()
        if not normalized:
            return

        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO CacheMetadata (Key, Value) VALUES (?, ?)",
                (normalized, "" if value is None else str(value)),
            )
        logger.debug("Metadata %s set", normalized)
