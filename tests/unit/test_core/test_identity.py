"""Unit tests for provider normalization and current-user resolution."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from achievement_cache.core.identity import (
    LEGACY_USER_ID,
    UNKNOWN_PROVIDER,
    CurrentUserResolver,
    normalize_provider_name,
)
from achievement_cache.core.steam_session import SteamLoginUser


class TestNormalizeProviderName:
    """Tests for normalize_provider_name()."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Steam", "Steam"),
            ("steam", "Steam"),
            ("  RETROACHIEVEMENTS ", "RetroAchievements"),
            ("rpcs3", "RPCS3"),
            ("Steam Web API", "Steam"),
            ("RetroAchievements.org", "RetroAchievements"),
            ("PlayStation Network", "PSN"),
        ],
    )
    def test_known_and_guessed_names(self, raw: str, expected: str) -> None:
        assert normalize_provider_name(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "Itch"])
    def test_unknown_names(self, raw: str | None) -> None:
        assert normalize_provider_name(raw) == UNKNOWN_PROVIDER


class TestCurrentUserResolver:
    """Tests for CurrentUserResolver.resolve()."""

    def test_steam_prefers_live_session(self) -> None:
        session = MagicMock()
        session.get_current_user.return_value = SteamLoginUser(
            steam_id_64="76561198000000099",
            account_name="acct",
            persona_name="Live Persona",
            most_recent=True,
            timestamp=1,
        )
        resolver = CurrentUserResolver(SimpleNamespace(STEAM_USER_ID="76561198000000001"), steam_session=session)

        user = resolver.resolve("Steam")

        assert user.external_user_id == "76561198000000099"
        assert user.display_name == "Live Persona"

    def test_steam_falls_back_to_settings(self) -> None:
        session = MagicMock()
        session.get_current_user.return_value = None
        resolver = CurrentUserResolver(SimpleNamespace(STEAM_USER_ID="76561198000000001"), steam_session=session)

        assert resolver.resolve("Steam").external_user_id == "76561198000000001"

    def test_retro_achievements_uses_username(self) -> None:
        resolver = CurrentUserResolver(SimpleNamespace(RA_USERNAME="ra_tester"))
        assert resolver.resolve("RetroAchievements").external_user_id == "ra_tester"

    @pytest.mark.parametrize("provider", ["Steam", "RetroAchievements", "RPCS3", UNKNOWN_PROVIDER])
    def test_missing_identity_is_legacy(self, provider: str) -> None:
        resolver = CurrentUserResolver(SimpleNamespace(STEAM_USER_ID="  ", RA_USERNAME=None))

        user = resolver.resolve(provider)

        assert user.external_user_id == LEGACY_USER_ID
        assert user.provider_name == provider

    def test_default_session_reads_steam_install(self, tmp_path: Path) -> None:
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "loginusers.vdf").write_text(
            '"users"\n{\n    "76561198000000009"\n    {\n'
            '        "AccountName"   "live_account"\n'
            '        "PersonaName"   "Live"\n'
            '        "MostRecent"    "1"\n'
            '        "Timestamp"     "1700000100"\n'
            "    }\n}\n",
            encoding="utf-8",
        )
        resolver = CurrentUserResolver(SimpleNamespace(STEAM_PATH=tmp_path, STEAM_USER_ID="76561198000000001"))

        user = resolver.resolve("Steam")

        assert user.external_user_id == "76561198000000009"
        assert user.display_name == "Live"
