"""Loading and saving whole achievement records for the current users."""

from __future__ import annotations

import logging
import sqlite3

from achievement_cache.core.achievement_data import GameAchievementData, parse_library_id
from achievement_cache.core.db.models import (
    AchievementJoinRow,
    ProgressGameJoinRow,
    achievement_from_join,
    backfill_library_id,
    record_from_progress,
)
from achievement_cache.core.exceptions import CachePersistenceError
from achievement_cache.core.identity import CurrentUserResolver, normalize_provider_name
from achievement_cache.utils.date_utils import to_iso, utc_now
from achievement_cache.utils.i18n import t

logger = logging.getLogger("achievecache.database")

__all__ = ["RecordQueryMixin"]

_PROGRESS_COLUMNS = """
    ugp.Id AS UserGameProgressId,
    ugp.GameId AS GameId,
    TRIM(ugp.CacheKey) AS CacheKey,
    ugp.PlaytimeSeconds AS PlaytimeSeconds,
    ugp.HasAchievements AS HasAchievements,
    ugp.ExcludedByUser AS ExcludedByUser,
    ugp.ProviderIsCompleted AS ProviderIsCompleted,
    ugp.CompletedMarkerApiName AS CompletedMarkerApiName,
    ugp.LastUpdatedUtc AS LastUpdatedUtc,
    g.ProviderName AS ProviderName,
    g.ProviderGameId AS ProviderGameId,
    g.ExternalLibraryId AS ExternalLibraryId,
    g.GameName AS GameName,
    g.LibrarySourceName AS LibrarySourceName
"""

_ACHIEVEMENT_COLUMNS = """
    ad.ApiName AS ApiName,
    ad.DisplayName AS DisplayName,
    ad.Description AS Description,
    ad.UnlockedIconPath AS UnlockedIconPath,
    ad.LockedIconPath AS LockedIconPath,
    ad.Points AS Points,
    ad.Category AS Category,
    ad.TrophyType AS TrophyType,
    ad.Hidden AS Hidden,
    ad.IsCapstone AS IsCapstone,
    ad.GlobalPercentUnlocked AS GlobalPercentUnlocked,
    ua.UnlockTimeUtc AS UnlockTimeUtc,
    ua.ProgressNum AS ProgressNum,
    ua.ProgressDenom AS ProgressDenom
"""

# Both bulk queries rank progress rows with this window, so the detail join
# always follows the row chosen for the summary.
_LATEST_PROGRESS_CTE = """
    WITH LatestProgress AS (
        SELECT
            ugp.Id AS ProgressId,
            ROW_NUMBER() OVER (
                PARTITION BY ugp.CacheKey
                ORDER BY ugp.LastUpdatedUtc DESC, ugp.Id DESC
            ) AS RowNum
        FROM UserGameProgress ugp
        INNER JOIN Users u ON u.Id = ugp.UserId
        WHERE u.IsCurrentUser = 1
          AND ugp.CacheKey IS NOT NULL
          AND TRIM(ugp.CacheKey) <> ''
    )
"""


class RecordQueryMixin:
    """Mixin providing the record-level contract of the store.

    Requires ConnectionBase attributes: conn, _lock, transaction(),
    ensure_initialized(). Requires UserQueryMixin, GameQueryMixin and
    AchievementQueryMixin, plus a ``resolver`` attribute.
    """

    resolver: CurrentUserResolver

    def has_any_current_user_rows(self) -> bool:
        """True if any current user has at least one cached game."""
        with self._lock:
            row = self.conn.execute(
                """
                SELECT EXISTS(
                    SELECT 1
                    FROM UserGameProgress ugp
                    INNER JOIN Users u ON u.Id = ugp.UserId
                    WHERE u.IsCurrentUser = 1
                )
                """
            ).fetchone()
        return bool(row[0])

    def list_cached_keys_for_current_users(self) -> set[str]:
        """Distinct cache keys of all current users, deduplicated case-insensitively."""
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT DISTINCT TRIM(ugp.CacheKey) AS CacheKey
                FROM UserGameProgress ugp
                INNER JOIN Users u ON u.Id = ugp.UserId
                WHERE u.IsCurrentUser = 1
                ORDER BY CacheKey
                """
            ).fetchall()

        keys: dict[str, str] = {}
        for row in rows:
            key = row["CacheKey"]
            if key and key.casefold() not in keys:
                keys[key.casefold()] = key
        return set(keys.values())

    def load_record(self, cache_key: str | None) -> GameAchievementData | None:
        """Rebuild one record from the most recently updated current-user row.

        Args:
            cache_key: Game identifier the record was saved under.

        Returns:
            The record, or None when the key is blank or nothing is stored.
        """
        key = (cache_key or "").strip()
        if not key:
            return None

        with self._lock:
            conn = self.conn
            row = conn.execute(
                f"""
                SELECT {_PROGRESS_COLUMNS}
                FROM UserGameProgress ugp
                INNER JOIN Users u ON u.Id = ugp.UserId
                INNER JOIN Games g ON g.Id = ugp.GameId
                WHERE u.IsCurrentUser = 1
                  AND ugp.CacheKey = ?
                ORDER BY ugp.LastUpdatedUtc DESC, ugp.Id DESC
                LIMIT 1
                """,
                (key,),
            ).fetchone()
            if row is None:
                return None

            progress = ProgressGameJoinRow.from_row(row)
            detail_rows = conn.execute(
                f"""
                SELECT {_ACHIEVEMENT_COLUMNS}
                FROM AchievementDefinitions ad
                LEFT JOIN UserAchievements ua
                  ON ua.AchievementDefinitionId = ad.Id
                 AND ua.UserGameProgressId = ?
                WHERE ad.GameId = ?
                ORDER BY ad.Id
                """,
                (progress.user_game_progress_id, progress.game_id),
            ).fetchall()

        record = record_from_progress(progress)
        for detail_row in detail_rows:
            detail = AchievementJoinRow.from_row(detail_row)
            if detail.api_name and detail.api_name.strip():
                record.achievements.append(achievement_from_join(detail))
        backfill_library_id(record, key)
        return record

    def load_all_records(self) -> dict[str, GameAchievementData]:
        """Rebuild every current-user record in two queries.

        Per cache key only the most recently updated progress row is used
        (ties go to the highest id).

        Returns:
            Cache key -> record, ordered by key case-insensitively.
        """
        with self._lock:
            conn = self.conn
            progress_rows = conn.execute(
                f"""
                {_LATEST_PROGRESS_CTE}
                SELECT {_PROGRESS_COLUMNS}
                FROM LatestProgress lp
                INNER JOIN UserGameProgress ugp ON ugp.Id = lp.ProgressId
                INNER JOIN Games g ON g.Id = ugp.GameId
                WHERE lp.RowNum = 1
                ORDER BY ugp.LastUpdatedUtc DESC, ugp.Id DESC
                """
            ).fetchall()
            if not progress_rows:
                return {}

            detail_rows = conn.execute(
                f"""
                {_LATEST_PROGRESS_CTE}
                SELECT ugp.Id AS UserGameProgressId, {_ACHIEVEMENT_COLUMNS}
                FROM LatestProgress lp
                INNER JOIN UserGameProgress ugp ON ugp.Id = lp.ProgressId
                INNER JOIN AchievementDefinitions ad ON ad.GameId = ugp.GameId
                LEFT JOIN UserAchievements ua
                  ON ua.AchievementDefinitionId = ad.Id
                 AND ua.UserGameProgressId = ugp.Id
                WHERE lp.RowNum = 1
                ORDER BY ugp.Id, ad.Id
                """
            ).fetchall()

        records_by_progress_id: dict[int, GameAchievementData] = {}
        keys_by_progress_id: dict[int, str] = {}
        for row in progress_rows:
            progress = ProgressGameJoinRow.from_row(row)
            if not progress.cache_key:
                continue
            record = record_from_progress(progress)
            backfill_library_id(record, progress.cache_key)
            records_by_progress_id[progress.user_game_progress_id] = record
            keys_by_progress_id[progress.user_game_progress_id] = progress.cache_key

        for row in detail_rows:
            detail = AchievementJoinRow.from_row(row)
            record = records_by_progress_id.get(detail.user_game_progress_id)
            if record is None or not (detail.api_name and detail.api_name.strip()):
                continue
            record.achievements.append(achievement_from_join(detail))

        ordered = sorted(records_by_progress_id, key=lambda pid: keys_by_progress_id[pid].casefold())
        return {keys_by_progress_id[pid]: records_by_progress_id[pid] for pid in ordered}

    def save_record(self, cache_key: str | None, data: GameAchievementData | None) -> None:
        """Persist one record for the acting user of its provider.

        Everything (user, game, progress, definitions, unlock rows) is
        written in one transaction. A blank cache key is a no-op.

        Args:
            cache_key: Game identifier to save under.
            data: The record; None saves an empty shell.

        Raises:
            CachePersistenceError: If any statement failed; nothing was written.
        """
        key = (cache_key or "").strip()
        if not key:
            return

        payload = data if data is not None else GameAchievementData()
        provider_name = normalize_provider_name(payload.provider_name)
        library_id = parse_library_id(payload.external_library_id) or parse_library_id(key)
        achievements = list(payload.achievements or [])

        with self._lock:
            self.ensure_initialized()
            user = self.resolver.resolve(provider_name)
            now_iso = to_iso(utc_now())
            updated_iso = to_iso(payload.last_updated_utc or utc_now())

            try:
                with self.transaction() as conn:
                    user_id = self._upsert_current_user(conn, user, now_iso)
                    game_id = self._upsert_game(conn, provider_name, library_id, payload, now_iso, updated_iso)
                    progress_id = self._upsert_progress(conn, user_id, game_id, key, payload, now_iso, updated_iso)
                    definition_ids = self._upsert_definitions(conn, game_id, achievements, now_iso)
                    self._delete_stale_definitions(conn, game_id, achievements)
                    self._reconcile_user_achievements(
                        conn, progress_id, definition_ids, achievements, now_iso, updated_iso
                    )
            except (sqlite3.Error, OverflowError) as e:
                # sqlite3 raises OverflowError for ints outside 64 bits.
                # The rollback may have undone the user row the cache points at
                self._current_users.pop(provider_name, None)
                error_code = getattr(e, "sqlite_errorname", None) or type(e).__name__
                logger.error(t("logs.db.save_failed", key=key, provider=provider_name, error=str(e)))
                raise CachePersistenceError(key, provider_name, error_code, str(e)) from e

        logger.debug("Saved %s (%s, %d achievement(s))", key, provider_name, len(achievements))
