"""Bulk deletion operations: clear everything, remove one game."""

from __future__ import annotations

import logging
import sqlite3
import uuid

from achievement_cache.core.achievement_data import parse_library_id
from achievement_cache.utils.i18n import t

logger = logging.getLogger("achievecache.database")

__all__ = ["ModificationMixin"]

# Children first; the cascade would cover it but keeps the counts honest
_CLEARED_TABLES = ("UserAchievements", "UserGameProgress", "AchievementDefinitions", "Games")


class ModificationMixin:
    """Mixin providing clear and remove operations.

    Requires ConnectionBase attributes: _lock, transaction().
    Requires UserQueryMixin attribute: _current_users.
    """

    def clear_all(self) -> None:
        """Delete every cached game while keeping users and metadata.

        Space is reclaimed with VACUUM afterwards; a failing VACUUM is
        logged and ignored.
        """
        with self._lock:
            with self.transaction() as conn:
                for table in _CLEARED_TABLES:
                    conn.execute(f"DELETE FROM {table}")

            self._current_users.clear()
            logger.info(t("logs.db.cleared"))

            try:
                conn.execute("VACUUM")
            except sqlite3.Error as e:
                logger.warning(t("logs.db.vacuum_failed", error=str(e)))

    def remove_game(self, external_library_id: str | uuid.UUID | None) -> int:
        """Delete all cached data of one library game.

        Removes progress rows saved under the id as cache key and game rows
        carrying it as external library id.

        Args:
            external_library_id: Library game GUID.

        Returns:
            Number of deleted progress and game rows.
        """
        text = parse_library_id(external_library_id)
        if text is None and external_library_id is not None:
            text = str(external_library_id).strip() or None
        if text is None or text == str(uuid.UUID(int=0)):
            return 0

        with self.transaction() as conn:
            progress_deleted = conn.execute("DELETE FROM UserGameProgress WHERE CacheKey = ?", (text,)).rowcount
            games_deleted = conn.execute(
                "DELETE FROM Games WHERE ExternalLibraryId = ? COLLATE NOCASE", (text,)
            ).rowcount

        logger.debug("Removed %s: %d progress row(s), %d game row(s)", text, progress_deleted, games_deleted)
        return progress_deleted + games_deleted
