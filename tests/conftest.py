# tests/conftest.py
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Generator

import pytest

from achievement_cache.core.achievement_data import AchievementDetail, GameAchievementData
from achievement_cache.core.db import CacheStore
from achievement_cache.core.identity import CurrentUserResolver

STEAM_ID = "76561198000000001"
RA_USER = "ra_tester"
LIBRARY_ID = "3f2504e0-4f89-11d3-9a0c-0305e82c3301"

T1 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 4, 2, 18, 30, 0, tzinfo=timezone.utc)
SAVED_AT = datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_settings() -> SimpleNamespace:
    """Saved identities without touching the user's settings.json."""
    return SimpleNamespace(STEAM_USER_ID=STEAM_ID, RA_USERNAME=RA_USER)


@pytest.fixture
def resolver(fixed_settings) -> CurrentUserResolver:
    """Deterministic acting-user resolver (no live Steam session)."""
    return CurrentUserResolver(settings=fixed_settings)


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Database file path inside a per-test data directory."""
    return tmp_path / "data" / "achievement_cache.db"


@pytest.fixture
def store(db_path, resolver) -> Generator[CacheStore, None, None]:
    """Initialized cache store backed by a temporary file."""
    cache_store = CacheStore(db_path=db_path, resolver=resolver, max_backups=5)
    cache_store.ensure_initialized()
    yield cache_store
    cache_store.close()


def make_record(
    achievements: list[AchievementDetail] | None = None,
    provider_name: str = "Steam",
    app_id: int = 620,
    game_name: str = "Portal 2",
    external_library_id: str | None = None,
    last_updated_utc: datetime | None = SAVED_AT,
    **kwargs,
) -> GameAchievementData:
    """Build a record with sensible defaults."""
    return GameAchievementData(
        provider_name=provider_name,
        library_source_name="Steam",
        game_name=game_name,
        app_id=app_id,
        external_library_id=external_library_id,
        playtime_seconds=kwargs.pop("playtime_seconds", 3600),
        last_updated_utc=last_updated_utc,
        achievements=achievements if achievements is not None else [],
        **kwargs,
    )


@pytest.fixture
def sample_record() -> GameAchievementData:
    """Two achievements: ach1 unlocked at T1, ach2 locked."""
    return make_record(
        [
            AchievementDetail(api_name="ach1", display_name="First", unlock_time_utc=T1, global_percent_unlocked=42.5),
            AchievementDetail(api_name="ach2", display_name="Second", hidden=True),
        ]
    )


@pytest.fixture
def record_factory():
    """The make_record builder, for tests needing several variants."""
    return make_record
