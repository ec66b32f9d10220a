"""Achievement definition diffing and per-user unlock reconciliation."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence

from achievement_cache.core.achievement_data import AchievementDetail
from achievement_cache.core.cache_behavior import compute_stale_definition_ids
from achievement_cache.core.db.models import AchievementDefinitionRow, UserAchievementRow, normalize_db_text
from achievement_cache.utils.date_utils import normalize_stored_iso, normalize_unlock_time, to_iso

logger = logging.getLogger("achievecache.database")

__all__ = ["AchievementQueryMixin"]


def _definition_values(achievement: AchievementDetail) -> tuple:
    """Incoming mutable definition fields, in AchievementDefinitionRow.mutable_fields order."""
    return (
        normalize_db_text(achievement.display_name),
        normalize_db_text(achievement.description),
        normalize_db_text(achievement.unlocked_icon_path),
        normalize_db_text(achievement.locked_icon_path),
        achievement.points,
        normalize_db_text(achievement.category),
        normalize_db_text(achievement.trophy_type),
        bool(achievement.hidden),
        bool(achievement.is_capstone),
        achievement.global_percent_unlocked,
        achievement.progress_denom,
    )


class AchievementQueryMixin:
    """Mixin providing the AchievementDefinitions and UserAchievements write paths.

    Rows whose fields did not change are never rewritten; this is the hot
    path of every unchanged re-scan.
    """

    def _upsert_definitions(
        self,
        conn: sqlite3.Connection,
        game_id: int,
        achievements: Sequence[AchievementDetail | None],
        now_iso: str,
    ) -> dict[str, int]:
        """Insert new definitions and update changed ones for a game.

        Args:
            conn: Connection inside an open transaction.
            game_id: Owning Games.Id.
            achievements: Incoming achievements; entries without an API name are skipped.
            now_iso: Timestamp for created/updated columns.

        Returns:
            Casefolded API name -> definition id, for every incoming achievement.
        """
        existing: dict[str, AchievementDefinitionRow] = {}
        for row in conn.execute("SELECT * FROM AchievementDefinitions WHERE GameId = ?", (game_id,)):
            definition = AchievementDefinitionRow.from_row(row)
            name = (definition.api_name or "").strip()
            if name:
                existing[name.casefold()] = definition

        ids: dict[str, int] = {}
        for achievement in achievements:
            if achievement is None or not (achievement.api_name or "").strip():
                continue

            api_name = achievement.api_name.strip()
            folded = api_name.casefold()
            values = _definition_values(achievement)
            current = existing.get(folded)

            if current is None:
                cursor = conn.execute(
                    """
                    INSERT INTO AchievementDefinitions
                        (GameId, ApiName, DisplayName, Description, UnlockedIconPath, LockedIconPath, Points,
                         Category, TrophyType, Hidden, IsCapstone, GlobalPercentUnlocked, ProgressMax,
                         CreatedUtc, UpdatedUtc)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (game_id, api_name, *values, now_iso, now_iso),
                )
                existing[folded] = AchievementDefinitionRow(cursor.lastrowid, game_id, api_name, *values)
                ids[folded] = cursor.lastrowid
                continue

            ids[folded] = current.id
            if current.mutable_fields() == values:
                continue

            conn.execute(
                """
                UPDATE AchievementDefinitions
                SET DisplayName = ?, Description = ?, UnlockedIconPath = ?, LockedIconPath = ?, Points = ?,
                    Category = ?, TrophyType = ?, Hidden = ?, IsCapstone = ?, GlobalPercentUnlocked = ?,
                    ProgressMax = ?, UpdatedUtc = ?
                WHERE Id = ?
                """,
                (*values, now_iso, current.id),
            )
            existing[folded] = AchievementDefinitionRow(current.id, game_id, current.api_name, *values)

        return ids

    def _delete_stale_definitions(
        self,
        conn: sqlite3.Connection,
        game_id: int,
        achievements: Sequence[AchievementDetail | None],
    ) -> int:
        """Delete definitions of a game that the payload no longer lists.

        Their UserAchievements rows go with them through ON DELETE CASCADE.

        Returns:
            Number of deleted definitions.
        """
        existing_ids = {
            row["ApiName"]: row["Id"]
            for row in conn.execute("SELECT Id, ApiName FROM AchievementDefinitions WHERE GameId = ?", (game_id,))
        }
        stale_ids = compute_stale_definition_ids(existing_ids, (a.api_name for a in achievements if a is not None))
        for definition_id in stale_ids:
            conn.execute("DELETE FROM AchievementDefinitions WHERE Id = ?", (definition_id,))
        if stale_ids:
            logger.debug("Removed %d stale definition(s) of game %d", len(stale_ids), game_id)
        return len(stale_ids)

    def _reconcile_user_achievements(
        self,
        conn: sqlite3.Connection,
        progress_id: int,
        definition_ids: dict[str, int],
        achievements: Sequence[AchievementDetail | None],
        now_iso: str,
        updated_iso: str,
    ) -> None:
        """Make the unlock rows of a progress row match the payload exactly.

        Inserts missing rows, updates rows whose unlock flag, unlock time or
        progress fraction differ, and deletes rows nothing in the payload
        refers to.
        """
        existing: dict[int, UserAchievementRow] = {}
        for row in conn.execute("SELECT * FROM UserAchievements WHERE UserGameProgressId = ?", (progress_id,)):
            unlock_row = UserAchievementRow.from_row(row)
            existing[unlock_row.achievement_definition_id] = unlock_row

        desired: dict[int, AchievementDetail] = {}
        for achievement in achievements:
            if achievement is None or not (achievement.api_name or "").strip():
                continue
            definition_id = definition_ids.get(achievement.api_name.strip().casefold())
            if definition_id is not None:
                desired[definition_id] = achievement

        for definition_id, achievement in desired.items():
            unlock_time = normalize_unlock_time(achievement.unlock_time_utc)
            unlocked = unlock_time is not None
            unlock_iso = to_iso(unlock_time) if unlock_time is not None else None

            current = existing.pop(definition_id, None)
            if current is None:
                conn.execute(
                    """
                    INSERT INTO UserAchievements
                        (UserGameProgressId, AchievementDefinitionId, Unlocked, UnlockTimeUtc,
                         ProgressNum, ProgressDenom, LastUpdatedUtc, CreatedUtc)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        progress_id,
                        definition_id,
                        int(unlocked),
                        unlock_iso,
                        achievement.progress_num,
                        achievement.progress_denom,
                        updated_iso,
                        now_iso,
                    ),
                )
                continue

            changed = (
                current.unlocked != unlocked
                or normalize_stored_iso(current.unlock_time_utc) != unlock_iso
                or current.progress_num != achievement.progress_num
                or current.progress_denom != achievement.progress_denom
            )
            if not changed:
                continue

            conn.execute(
                """
                UPDATE UserAchievements
                SET Unlocked = ?, UnlockTimeUtc = ?, ProgressNum = ?, ProgressDenom = ?, LastUpdatedUtc = ?
                WHERE Id = ?
                """,
                (int(unlocked), unlock_iso, achievement.progress_num, achievement.progress_denom, updated_iso, current.id),
            )

        for leftover in existing.values():
            conn.execute("DELETE FROM UserAchievements WHERE Id = ?", (leftover.id,))
