"""Database row models and conversion functions.

Contains one plain dataclass per query shape and the helpers that turn
joined rows back into :class:`GameAchievementData` records.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from achievement_cache.core.achievement_data import AchievementDetail, GameAchievementData, parse_library_id
from achievement_cache.utils.date_utils import parse_utc, utc_now

__all__ = [
    "MAX_PLAYTIME_SECONDS",
    "AchievementDefinitionRow",
    "AchievementJoinRow",
    "GameRow",
    "ProgressGameJoinRow",
    "UserAchievementRow",
    "UserGameProgressRow",
    "UserRow",
    "achievement_from_join",
    "backfill_library_id",
    "clamp_playtime",
    "normalize_db_text",
    "record_from_progress",
]

# SQLite INTEGER is a signed 64-bit value
MAX_PLAYTIME_SECONDS = 2**63 - 1


def normalize_db_text(value: str | None) -> str | None:
    """Blank text is stored and compared as NULL."""
    if value is None or not str(value).strip():
        return None
    return str(value)


def clamp_playtime(seconds: int | None) -> int:
    if not seconds or seconds < 0:
        return 0
    return min(int(seconds), MAX_PLAYTIME_SECONDS)


@dataclass(frozen=True)
class UserRow:
    id: int
    provider_name: str
    external_user_id: str
    display_name: str | None
    is_current_user: bool
    friend_source: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> UserRow:
        return cls(
            id=row["Id"],
            provider_name=row["ProviderName"],
            external_user_id=row["ExternalUserId"],
            display_name=row["DisplayName"],
            is_current_user=bool(row["IsCurrentUser"]),
            friend_source=row["FriendSource"],
        )


@dataclass(frozen=True)
class GameRow:
    id: int
    provider_name: str
    provider_game_id: int | None
    external_library_id: str | None
    game_name: str | None
    library_source_name: str | None
    first_seen_utc: str
    last_updated_utc: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> GameRow:
        return cls(
            id=row["Id"],
            provider_name=row["ProviderName"],
            provider_game_id=row["ProviderGameId"],
            external_library_id=row["ExternalLibraryId"],
            game_name=row["GameName"],
            library_source_name=row["LibrarySourceName"],
            first_seen_utc=row["FirstSeenUtc"],
            last_updated_utc=row["LastUpdatedUtc"],
        )


@dataclass(frozen=True)
class UserGameProgressRow:
    id: int
    user_id: int
    game_id: int
    cache_key: str
    playtime_seconds: int
    has_achievements: bool
    excluded_by_user: bool
    achievements_unlocked: int
    total_achievements: int
    is_completed: bool
    provider_is_completed: bool
    completed_marker_api_name: str | None
    last_updated_utc: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> UserGameProgressRow:
        return cls(
            id=row["Id"],
            user_id=row["UserId"],
            game_id=row["GameId"],
            cache_key=row["CacheKey"],
            playtime_seconds=row["PlaytimeSeconds"],
            has_achievements=bool(row["HasAchievements"]),
            excluded_by_user=bool(row["ExcludedByUser"]),
            achievements_unlocked=row["AchievementsUnlocked"],
            total_achievements=row["TotalAchievements"],
            is_completed=bool(row["IsCompleted"]),
            provider_is_completed=bool(row["ProviderIsCompleted"]),
            completed_marker_api_name=row["CompletedMarkerApiName"],
            last_updated_utc=row["LastUpdatedUtc"],
        )


@dataclass(frozen=True)
class AchievementDefinitionRow:
    """Stored definition; the mutable fields drive change detection."""

    id: int
    game_id: int
    api_name: str
    display_name: str | None
    description: str | None
    unlocked_icon_path: str | None
    locked_icon_path: str | None
    points: int | None
    category: str | None
    trophy_type: str | None
    hidden: bool
    is_capstone: bool
    global_percent_unlocked: float | None
    progress_max: int | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AchievementDefinitionRow:
        return cls(
            id=row["Id"],
            game_id=row["GameId"],
            api_name=row["ApiName"],
            display_name=row["DisplayName"],
            description=row["Description"],
            unlocked_icon_path=row["UnlockedIconPath"],
            locked_icon_path=row["LockedIconPath"],
            points=row["Points"],
            category=row["Category"],
            trophy_type=row["TrophyType"],
            hidden=bool(row["Hidden"]),
            is_capstone=bool(row["IsCapstone"]),
            global_percent_unlocked=row["GlobalPercentUnlocked"],
            progress_max=row["ProgressMax"],
        )

    def mutable_fields(self) -> tuple:
        return (
            normalize_db_text(self.display_name),
            normalize_db_text(self.description),
            normalize_db_text(self.unlocked_icon_path),
            normalize_db_text(self.locked_icon_path),
            self.points,
            normalize_db_text(self.category),
            normalize_db_text(self.trophy_type),
            self.hidden,
            self.is_capstone,
            self.global_percent_unlocked,
            self.progress_max,
        )


@dataclass(frozen=True)
class UserAchievementRow:
    id: int
    user_game_progress_id: int
    achievement_definition_id: int
    unlocked: bool
    unlock_time_utc: str | None
    progress_num: int | None
    progress_denom: int | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> UserAchievementRow:
        return cls(
            id=row["Id"],
            user_game_progress_id=row["UserGameProgressId"],
            achievement_definition_id=row["AchievementDefinitionId"],
            unlocked=bool(row["Unlocked"]),
            unlock_time_utc=row["UnlockTimeUtc"],
            progress_num=row["ProgressNum"],
            progress_denom=row["ProgressDenom"],
        )


@dataclass(frozen=True)
class ProgressGameJoinRow:
    """A progress row joined with its game, as selected by the load queries."""

    user_game_progress_id: int
    game_id: int
    cache_key: str
    playtime_seconds: int
    has_achievements: bool
    excluded_by_user: bool
    provider_is_completed: bool
    completed_marker_api_name: str | None
    last_updated_utc: str | None
    provider_name: str | None
    provider_game_id: int | None
    external_library_id: str | None
    game_name: str | None
    library_source_name: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ProgressGameJoinRow:
        return cls(
            user_game_progress_id=row["UserGameProgressId"],
            game_id=row["GameId"],
            cache_key=(row["CacheKey"] or "").strip(),
            playtime_seconds=row["PlaytimeSeconds"] or 0,
            has_achievements=bool(row["HasAchievements"]),
            excluded_by_user=bool(row["ExcludedByUser"]),
            provider_is_completed=bool(row["ProviderIsCompleted"]),
            completed_marker_api_name=row["CompletedMarkerApiName"],
            last_updated_utc=row["LastUpdatedUtc"],
            provider_name=row["ProviderName"],
            provider_game_id=row["ProviderGameId"],
            external_library_id=row["ExternalLibraryId"],
            game_name=row["GameName"],
            library_source_name=row["LibrarySourceName"],
        )


@dataclass(frozen=True)
class AchievementJoinRow:
    """A definition left-joined with the user's unlock state."""

    user_game_progress_id: int | None
    api_name: str | None
    display_name: str | None
    description: str | None
    unlocked_icon_path: str | None
    locked_icon_path: str | None
    points: int | None
    category: str | None
    trophy_type: str | None
    hidden: bool
    is_capstone: bool
    global_percent_unlocked: float | None
    unlock_time_utc: str | None
    progress_num: int | None
    progress_denom: int | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AchievementJoinRow:
        keys = row.keys()
        return cls(
            user_game_progress_id=row["UserGameProgressId"] if "UserGameProgressId" in keys else None,
            api_name=row["ApiName"],
            display_name=row["DisplayName"],
            description=row["Description"],
            unlocked_icon_path=row["UnlockedIconPath"],
            locked_icon_path=row["LockedIconPath"],
            points=row["Points"],
            category=row["Category"],
            trophy_type=row["TrophyType"],
            hidden=bool(row["Hidden"]),
            is_capstone=bool(row["IsCapstone"]),
            global_percent_unlocked=row["GlobalPercentUnlocked"],
            unlock_time_utc=row["UnlockTimeUtc"],
            progress_num=row["ProgressNum"],
            progress_denom=row["ProgressDenom"],
        )


def record_from_progress(row: ProgressGameJoinRow) -> GameAchievementData:
    """Build an empty-achievement record from a selected progress row."""
    return GameAchievementData(
        provider_name=row.provider_name,
        library_source_name=row.library_source_name,
        game_name=row.game_name,
        app_id=max(0, row.provider_game_id or 0),
        external_library_id=parse_library_id(row.external_library_id),
        playtime_seconds=max(0, row.playtime_seconds),
        has_achievements=row.has_achievements,
        excluded_by_user=row.excluded_by_user,
        provider_is_completed=row.provider_is_completed,
        completion_marker_api_name=row.completed_marker_api_name,
        last_updated_utc=parse_utc(row.last_updated_utc) or utc_now(),
        achievements=[],
    )


def achievement_from_join(row: AchievementJoinRow) -> AchievementDetail:
    return AchievementDetail(
        api_name=row.api_name,
        display_name=row.display_name,
        description=row.description,
        unlocked_icon_path=row.unlocked_icon_path,
        locked_icon_path=row.locked_icon_path,
        points=row.points,
        category=row.category,
        trophy_type=row.trophy_type,
        hidden=row.hidden,
        is_capstone=row.is_capstone,
        global_percent_unlocked=row.global_percent_unlocked,
        unlock_time_utc=parse_utc(row.unlock_time_utc),
        progress_num=row.progress_num,
        progress_denom=row.progress_denom,
    )


def backfill_library_id(record: GameAchievementData, cache_key: str) -> None:
    """Take the library id from a GUID-shaped cache key when the game has none."""
    if record.external_library_id is None:
        record.external_library_id = parse_library_id(cache_key)
