"""Unit tests for the achievement record model."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from achievement_cache.core.achievement_data import AchievementDetail, GameAchievementData, parse_library_id

UNLOCK = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestParseLibraryId:
    """Tests for parse_library_id()."""

    def test_canonical_lowercase(self) -> None:
        assert parse_library_id("3F2504E0-4F89-11D3-9A0C-0305E82C3301") == "3f2504e0-4f89-11d3-9a0c-0305e82c3301"

    def test_braced_form(self) -> None:
        assert parse_library_id("{3f2504e0-4f89-11d3-9a0c-0305e82c3301}") == "3f2504e0-4f89-11d3-9a0c-0305e82c3301"

    @pytest.mark.parametrize("value", [None, "", "  ", "620", "not-a-guid"])
    def test_non_guid_returns_none(self, value: str | None) -> None:
        assert parse_library_id(value) is None


class TestAchievementDetail:
    """Tests for AchievementDetail."""

    def test_unlocked_requires_real_time(self) -> None:
        assert AchievementDetail(api_name="a", unlock_time_utc=UNLOCK).unlocked is True
        assert AchievementDetail(api_name="a").unlocked is False

    @pytest.mark.parametrize(
        "sentinel",
        [datetime(1970, 1, 1, tzinfo=timezone.utc), datetime.min, datetime(1960, 5, 5)],
    )
    def test_zero_dates_mean_locked(self, sentinel: datetime) -> None:
        assert AchievementDetail(api_name="a", unlock_time_utc=sentinel).unlocked is False

    def test_percent_scales_fraction(self) -> None:
        assert AchievementDetail(api_name="a", global_percent_unlocked=0.25).percent == pytest.approx(25.0)
        assert AchievementDetail(api_name="a", global_percent_unlocked=42.0).percent == pytest.approx(42.0)
        assert AchievementDetail(api_name="a").percent == 0.0

    def test_from_dict_requires_api_name(self) -> None:
        with pytest.raises(KeyError):
            AchievementDetail.from_dict({"DisplayName": "No name"})

    @pytest.mark.parametrize("field", ["Points", "ProgressNum", "ProgressDenom"])
    def test_from_dict_rejects_integers_beyond_64_bits(self, field: str) -> None:
        with pytest.raises(ValueError):
            AchievementDetail.from_dict({"ApiName": "a", field: 2**63})

    def test_from_dict_reads_legacy_icon_path(self) -> None:
        detail = AchievementDetail.from_dict({"ApiName": "a", "IconPath": "icons/a.png"})
        assert detail.unlocked_icon_path == "icons/a.png"


class TestGameAchievementData:
    """Tests for GameAchievementData."""

    def test_counts(self) -> None:
        data = GameAchievementData(
            achievements=[
                AchievementDetail(api_name="a", unlock_time_utc=UNLOCK),
                AchievementDetail(api_name="b"),
            ]
        )
        assert data.unlocked_count == 1
        assert data.total_count == 2
        assert data.is_completed is False

    def test_capstone_marker_drives_completion(self) -> None:
        data = GameAchievementData(
            achievements=[
                AchievementDetail(api_name="boss", is_capstone=True, unlock_time_utc=UNLOCK),
                AchievementDetail(api_name="collect_all"),
            ]
        )
        assert data.completion_marker().api_name == "boss"
        assert data.is_completed is True

    def test_chosen_marker_wins_over_capstone(self) -> None:
        data = GameAchievementData(
            completion_marker_api_name="COLLECT_ALL",
            provider_is_completed=True,
            achievements=[
                AchievementDetail(api_name="boss", is_capstone=True, unlock_time_utc=UNLOCK),
                AchievementDetail(api_name="collect_all"),
            ],
        )
        assert data.completion_marker().api_name == "collect_all"
        assert data.is_completed is False

    def test_from_dict_legacy_document(self) -> None:
        data = GameAchievementData.from_dict(
            {
                "ProviderName": "Steam",
                "GameName": "Portal 2",
                "AppId": 620,
                "PlayniteGameId": "3F2504E0-4F89-11D3-9A0C-0305E82C3301",
                "PlaytimeSeconds": 120,
                "NoAchievements": True,
                "LastUpdatedUtc": "2024-05-01T08:00:00.0000000Z",
                "Achievements": [{"ApiName": "a", "UnlockTimeUtc": "2024-03-01T12:00:00Z"}],
            }
        )
        assert data.app_id == 620
        assert data.external_library_id == "3f2504e0-4f89-11d3-9a0c-0305e82c3301"
        assert data.has_achievements is False
        assert data.last_updated_utc == datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc)
        assert data.achievements[0].unlock_time_utc == UNLOCK

    def test_from_dict_rejects_non_object(self) -> None:
        with pytest.raises(TypeError):
            GameAchievementData.from_dict(["not", "an", "object"])

    def test_from_dict_rejects_huge_app_id(self) -> None:
        with pytest.raises(ValueError):
            GameAchievementData.from_dict({"AppId": -(2**63) - 1})

    def test_to_dict_round_trip(self) -> None:
        original = GameAchievementData(
            provider_name="PSN",
            game_name="Astro Bot",
            playtime_seconds=60,
            achievements=[AchievementDetail(api_name="t1", trophy_type="gold", points=90, unlock_time_utc=UNLOCK)],
        )
        restored = GameAchievementData.from_dict(original.to_dict())
        assert restored.game_name == "Astro Bot"
        assert restored.achievements[0].trophy_type == "gold"
        assert restored.achievements[0].points == 90
        assert restored.achievements[0].unlock_time_utc == UNLOCK
