"""Game and per-user progress upserts."""

from __future__ import annotations

import logging
import sqlite3

from achievement_cache.core.achievement_data import GameAchievementData
from achievement_cache.core.cache_behavior import should_fallback_to_provider_game_id_lookup
from achievement_cache.core.db.models import GameRow, UserGameProgressRow, clamp_playtime, normalize_db_text

logger = logging.getLogger("achievecache.database")

__all__ = ["GameQueryMixin"]


class GameQueryMixin:
    """Mixin providing the Games and UserGameProgress write paths.

    Both upserts compare the stored row with the incoming values and skip
    the UPDATE when nothing changed, so re-saving an unchanged record leaves
    every timestamp untouched.
    """

    def _find_game(
        self,
        conn: sqlite3.Connection,
        provider_name: str,
        library_id: str | None,
        provider_game_id: int | None,
    ) -> GameRow | None:
        """Look a game up by library id, then (when allowed) by provider game id."""
        if library_id:
            row = conn.execute(
                "SELECT * FROM Games WHERE ProviderName = ? AND ExternalLibraryId = ? COLLATE NOCASE "
                "ORDER BY Id LIMIT 1",
                (provider_name, library_id),
            ).fetchone()
            if row is not None:
                return GameRow.from_row(row)

        if should_fallback_to_provider_game_id_lookup(provider_name, library_id, provider_game_id):
            row = conn.execute(
                "SELECT * FROM Games WHERE ProviderName = ? AND ProviderGameId = ? ORDER BY Id LIMIT 1",
                (provider_name, provider_game_id),
            ).fetchone()
            if row is not None:
                return GameRow.from_row(row)
        return None

    def _upsert_game(
        self,
        conn: sqlite3.Connection,
        provider_name: str,
        library_id: str | None,
        data: GameAchievementData,
        now_iso: str,
        updated_iso: str,
    ) -> int:
        """Insert the game or update its mutable fields in place.

        Absent incoming ids never erase stored ones.

        Returns:
            The Games.Id of the row.
        """
        provider_game_id = data.app_id if data.app_id and data.app_id > 0 else None
        game_name = normalize_db_text(data.game_name)
        library_source = normalize_db_text(data.library_source_name)

        game = self._find_game(conn, provider_name, library_id, provider_game_id)
        if game is None:
            cursor = conn.execute(
                """
                INSERT INTO Games
                    (ProviderName, ProviderGameId, ExternalLibraryId, GameName, LibrarySourceName,
                     FirstSeenUtc, LastUpdatedUtc)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (provider_name, provider_game_id, library_id, game_name, library_source, now_iso, updated_iso),
            )
            return cursor.lastrowid

        wanted = (
            provider_game_id if provider_game_id is not None else game.provider_game_id,
            library_id if library_id is not None else game.external_library_id,
            game_name if game_name is not None else game.game_name,
            library_source if library_source is not None else game.library_source_name,
            updated_iso,
        )
        stored = (
            game.provider_game_id,
            game.external_library_id,
            game.game_name,
            game.library_source_name,
            game.last_updated_utc,
        )
        if wanted != stored:
            conn.execute(
                """
                UPDATE Games
                SET ProviderGameId = ?, ExternalLibraryId = ?, GameName = ?, LibrarySourceName = ?,
                    LastUpdatedUtc = ?
                WHERE Id = ?
                """,
                (*wanted, game.id),
            )
        return game.id

    def _upsert_progress(
        self,
        conn: sqlite3.Connection,
        user_id: int,
        game_id: int,
        cache_key: str,
        data: GameAchievementData,
        now_iso: str,
        updated_iso: str,
    ) -> int:
        """Insert or update the user's summary row for a game.

        Looked up by ``(user, cache key)`` first, then ``(user, game)``, so a
        record survives a change of cache key for the same title.

        Returns:
            The UserGameProgress.Id of the row.
        """
        row = conn.execute(
            "SELECT * FROM UserGameProgress WHERE UserId = ? AND CacheKey = ? LIMIT 1",
            (user_id, cache_key),
        ).fetchone()
        if row is None:
            row = conn.execute(
                "SELECT * FROM UserGameProgress WHERE UserId = ? AND GameId = ? LIMIT 1",
                (user_id, game_id),
            ).fetchone()
        existing = UserGameProgressRow.from_row(row) if row is not None else None

        wanted = (
            game_id,
            cache_key,
            clamp_playtime(data.playtime_seconds),
            int(bool(data.has_achievements)),
            int(bool(data.excluded_by_user)),
            data.unlocked_count,
            data.total_count,
            int(data.is_completed),
            int(bool(data.provider_is_completed)),
            normalize_db_text(data.completion_marker_api_name),
            updated_iso,
        )

        if existing is None:
            cursor = conn.execute(
                """
                INSERT INTO UserGameProgress
                    (UserId, GameId, CacheKey, PlaytimeSeconds, HasAchievements, ExcludedByUser,
                     AchievementsUnlocked, TotalAchievements, IsCompleted, ProviderIsCompleted,
                     CompletedMarkerApiName, LastUpdatedUtc, CreatedUtc, UpdatedUtc)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, *wanted, now_iso, now_iso),
            )
            return cursor.lastrowid

        if existing.game_id != game_id:
            # The key now points at another game the user already has a row for
            conn.execute(
                "DELETE FROM UserGameProgress WHERE UserId = ? AND GameId = ? AND Id <> ?",
                (user_id, game_id, existing.id),
            )

        stored = (
            existing.game_id,
            existing.cache_key,
            existing.playtime_seconds,
            int(existing.has_achievements),
            int(existing.excluded_by_user),
            existing.achievements_unlocked,
            existing.total_achievements,
            int(existing.is_completed),
            int(existing.provider_is_completed),
            existing.completed_marker_api_name,
            existing.last_updated_utc,
        )
        if wanted != stored:
            conn.execute(
                """
                UPDATE UserGameProgress
                SET GameId = ?, CacheKey = ?, PlaytimeSeconds = ?, HasAchievements = ?, ExcludedByUser = ?,
                    AchievementsUnlocked = ?, TotalAchievements = ?, IsCompleted = ?, ProviderIsCompleted = ?,
                    CompletedMarkerApiName = ?, LastUpdatedUtc = ?, UpdatedUtc = ?
                WHERE Id = ?
                """,
                (*wanted, now_iso, existing.id),
            )
        return existing.id
