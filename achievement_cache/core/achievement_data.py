# achievement_cache/core/achievement_data.py

"""Normalized achievement record passed between providers, the UI and the store.

A :class:`GameAchievementData` is everything known about one game for the
current user on one provider: identity, playtime, flags and the full list of
:class:`AchievementDetail` entries with unlock state. Providers build these,
the cache store persists them, and the legacy importer reads them back from
the old per-game JSON files via :meth:`GameAchievementData.from_dict`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from achievement_cache.core.cache_behavior import compute_is_completed
from achievement_cache.utils.date_utils import normalize_unlock_time, parse_utc, to_iso

__all__ = [
    "AchievementDetail",
    "GameAchievementData",
    "parse_library_id",
]


def parse_library_id(value: Any) -> str | None:
    """Return the canonical GUID text for a library game id, or None.

    Args:
        value: Candidate id (GUID string in any common notation, UUID, or junk).

    Returns:
        Lowercase hyphenated GUID, or None if the value is not GUID-shaped.
    """
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return str(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return str(uuid.UUID(text))
    except ValueError:
        return None


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins; legacy JSON used PascalCase, newer dumps snake_case."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _int64(value: Any) -> int:
    """Parse an integer that must fit an SQLite INTEGER column."""
    number = int(value)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ValueError(f"Integer out of 64-bit range: {number}")
    return number


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return _int64(value)


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class AchievementDetail:
    """One achievement with schema metadata and the user's unlock progress."""

    api_name: str
    display_name: str | None = None
    description: str | None = None
    unlocked_icon_path: str | None = None
    locked_icon_path: str | None = None
    points: int | None = None
    category: str | None = None
    trophy_type: str | None = None  # PSN-style tier: bronze/silver/gold/platinum
    hidden: bool = False
    is_capstone: bool = False
    global_percent_unlocked: float | None = None
    unlock_time_utc: datetime | None = None
    progress_num: int | None = None
    progress_denom: int | None = None

    @property
    def unlocked(self) -> bool:
        """True when a real unlock time is present (zero dates mean locked)."""
        return normalize_unlock_time(self.unlock_time_utc) is not None

    @property
    def percent(self) -> float:
        """Global rarity on a 0-100 scale (providers report 0-1 or 0-100)."""
        value = self.global_percent_unlocked
        if value is None:
            return 0.0
        if 0 < value <= 1:
            return value * 100.0
        return value

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AchievementDetail:
        """Build an achievement from a legacy JSON object.

        Raises:
            KeyError: If the object has no API name.
            ValueError, TypeError: If a numeric field is malformed or out of range.
            OverflowError: If a numeric field is an infinite float.
        """
        api_name = _pick(data, "ApiName", "api_name")
        if api_name is None:
            raise KeyError("ApiName")

        raw_time = _pick(data, "UnlockTimeUtc", "unlock_time_utc")
        return cls(
            api_name=str(api_name),
            display_name=_pick(data, "DisplayName", "display_name"),
            description=_pick(data, "Description", "description"),
            unlocked_icon_path=_pick(data, "UnlockedIconPath", "IconPath", "unlocked_icon_path"),
            locked_icon_path=_pick(data, "LockedIconPath", "locked_icon_path"),
            points=_optional_int(_pick(data, "Points", "points")),
            category=_pick(data, "Category", "category"),
            trophy_type=_pick(data, "TrophyType", "trophy_type"),
            hidden=bool(_pick(data, "Hidden", "hidden", default=False)),
            is_capstone=bool(_pick(data, "IsCapstone", "is_capstone", default=False)),
            global_percent_unlocked=_optional_float(_pick(data, "GlobalPercentUnlocked", "global_percent_unlocked")),
            unlock_time_utc=parse_utc(raw_time) if isinstance(raw_time, str) else None,
            progress_num=_optional_int(_pick(data, "ProgressNum", "progress_num")),
            progress_denom=_optional_int(_pick(data, "ProgressDenom", "progress_denom")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the legacy JSON shape."""
        unlock = normalize_unlock_time(self.unlock_time_utc)
        return {
            "ApiName": self.api_name,
            "DisplayName": self.display_name,
            "Description": self.description,
            "UnlockedIconPath": self.unlocked_icon_path,
            "LockedIconPath": self.locked_icon_path,
            "Points": self.points,
            "Category": self.category,
            "TrophyType": self.trophy_type,
            "Hidden": self.hidden,
            "IsCapstone": self.is_capstone,
            "GlobalPercentUnlocked": self.global_percent_unlocked,
            "UnlockTimeUtc": to_iso(unlock) if unlock else None,
            "ProgressNum": self.progress_num,
            "ProgressDenom": self.progress_denom,
        }


@dataclass
class GameAchievementData:
    """Achievement data for a single game, combining schema metadata with user progress."""

    provider_name: str | None = None
    library_source_name: str | None = None
    game_name: str | None = None
    app_id: int = 0  # provider-native game id, 0 = unknown
    external_library_id: str | None = None  # library game GUID
    playtime_seconds: int = 0
    # Default True so new stubs are not skipped during bulk scans
    has_achievements: bool = True
    excluded_by_user: bool = False
    provider_is_completed: bool = False
    completion_marker_api_name: str | None = None
    last_updated_utc: datetime | None = None
    achievements: list[AchievementDetail] = field(default_factory=list)

    @property
    def unlocked_count(self) -> int:
        return sum(1 for a in self.achievements if a is not None and a.unlocked)

    @property
    def total_count(self) -> int:
        return len(self.achievements)

    def completion_marker(self) -> AchievementDetail | None:
        """The achievement acting as completion marker, if any.

        The user-chosen marker wins; otherwise the first capstone achievement.
        """
        wanted = (self.completion_marker_api_name or "").strip().casefold()
        if wanted:
            for achievement in self.achievements:
                if achievement is not None and achievement.api_name.strip().casefold() == wanted:
                    return achievement
            return None
        for achievement in self.achievements:
            if achievement is not None and achievement.is_capstone:
                return achievement
        return None

    @property
    def is_completed(self) -> bool:
        marker = self.completion_marker()
        return compute_is_completed(
            provider_is_completed=self.provider_is_completed,
            unlocked_count=self.unlocked_count,
            total_count=self.total_count,
            marker_unlocked=marker is not None and marker.unlocked,
            has_marker=marker is not None,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GameAchievementData:
        """Build a record from a legacy per-game JSON document.

        Raises:
            TypeError: If the document is not an object.
            KeyError, ValueError: If an achievement entry is malformed.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected JSON object, got {type(data).__name__}")

        raw_achievements = _pick(data, "Achievements", "achievements", default=[])
        if not isinstance(raw_achievements, list):
            raise TypeError("Achievements must be a list")

        has_achievements = _pick(data, "HasAchievements", "has_achievements")
        if has_achievements is None:
            no_achievements = _pick(data, "NoAchievements", "no_achievements")
            has_achievements = not bool(no_achievements) if no_achievements is not None else True

        raw_updated = _pick(data, "LastUpdatedUtc", "last_updated_utc")
        return cls(
            provider_name=_pick(data, "ProviderName", "provider_name"),
            library_source_name=_pick(data, "LibrarySourceName", "library_source_name"),
            game_name=_pick(data, "GameName", "game_name"),
            app_id=_int64(_pick(data, "AppId", "app_id", default=0)),
            external_library_id=parse_library_id(
                _pick(data, "PlayniteGameId", "ExternalLibraryId", "external_library_id")
            ),
            playtime_seconds=_int64(_pick(data, "PlaytimeSeconds", "playtime_seconds", default=0)),
            has_achievements=bool(has_achievements),
            excluded_by_user=bool(_pick(data, "ExcludedByUser", "excluded_by_user", default=False)),
            provider_is_completed=bool(_pick(data, "ProviderIsCompleted", "provider_is_completed", default=False)),
            completion_marker_api_name=_pick(data, "CompletedMarkerApiName", "completion_marker_api_name"),
            last_updated_utc=parse_utc(raw_updated) if isinstance(raw_updated, str) else None,
            achievements=[AchievementDetail.from_dict(item) for item in raw_achievements if item is not None],
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the legacy JSON shape."""
        return {
            "ProviderName": self.provider_name,
            "LibrarySourceName": self.library_source_name,
            "GameName": self.game_name,
            "AppId": self.app_id,
            "PlayniteGameId": self.external_library_id,
            "PlaytimeSeconds": self.playtime_seconds,
            "HasAchievements": self.has_achievements,
            "ExcludedByUser": self.excluded_by_user,
            "ProviderIsCompleted": self.provider_is_completed,
            "CompletedMarkerApiName": self.completion_marker_api_name,
            "LastUpdatedUtc": to_iso(self.last_updated_utc) if self.last_updated_utc else None,
            "Achievements": [a.to_dict() for a in self.achievements],
        }
