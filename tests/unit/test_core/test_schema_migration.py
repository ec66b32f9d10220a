"""Unit tests for schema creation, reconciliation, snapshots and verification.

Tests cover:
- Fresh database creation (no snapshot)
- Upgrade of a version 1 database (renames, added columns, backfill, indexes)
- Exactly one snapshot per reconciliation pass, none on a clean re-run
- Verification failure on an unrepairable database
"""

from __future__ import annotations

import sqlite3
from collections.abc import Generator
from pathlib import Path

import pytest

from achievement_cache.core.backup_manager import BackupManager
from achievement_cache.core.db import CacheStore
from achievement_cache.core.db.schema import SCHEMA_VERSION, SchemaManager
from achievement_cache.core.exceptions import SchemaVerificationError

V1_SCHEMA = """
CREATE TABLE Users (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    ProviderName TEXT NOT NULL COLLATE NOCASE,
    ExternalUserId TEXT NOT NULL COLLATE NOCASE,
    DisplayName TEXT NULL,
    IsCurrentUser INTEGER NOT NULL DEFAULT 0,
    FriendSource TEXT NULL,
    CreatedUtc TEXT NOT NULL,
    UpdatedUtc TEXT NOT NULL,
    UNIQUE (ProviderName, ExternalUserId)
);
CREATE TABLE Games (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    ProviderName TEXT NOT NULL COLLATE NOCASE,
    ProviderGameId INTEGER NULL,
    PlayniteGameId TEXT NULL,
    GameName TEXT NULL,
    LibrarySourceName TEXT NULL,
    FirstSeenUtc TEXT NOT NULL,
    LastUpdatedUtc TEXT NOT NULL
);
CREATE UNIQUE INDEX UX_Games_Provider_Playnite ON Games (ProviderName, PlayniteGameId) WHERE PlayniteGameId IS NOT NULL;
CREATE UNIQUE INDEX UX_Games_Provider_GameId ON Games (ProviderName, ProviderGameId) WHERE ProviderGameId IS NOT NULL;
CREATE INDEX IX_Games_PlayniteGameId ON Games (PlayniteGameId);
CREATE TABLE AchievementDefinitions (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    GameId INTEGER NOT NULL,
    ApiName TEXT NOT NULL COLLATE NOCASE,
    DisplayName TEXT NULL,
    Description TEXT NULL,
    IconPath TEXT NULL,
    Hidden INTEGER NOT NULL DEFAULT 0,
    GlobalPercentUnlocked REAL NULL,
    ProgressMax INTEGER NULL,
    CreatedUtc TEXT NOT NULL,
    UpdatedUtc TEXT NOT NULL,
    FOREIGN KEY (GameId) REFERENCES Games(Id) ON DELETE CASCADE,
    UNIQUE (GameId, ApiName)
);
CREATE TABLE UserGameProgress (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    UserId INTEGER NOT NULL,
    GameId INTEGER NOT NULL,
    CacheKey TEXT NOT NULL COLLATE NOCASE,
    PlaytimeSeconds INTEGER NOT NULL DEFAULT 0,
    NoAchievements INTEGER NOT NULL DEFAULT 0,
    AchievementsUnlocked INTEGER NOT NULL DEFAULT 0,
    TotalAchievements INTEGER NOT NULL DEFAULT 0,
    LastUpdatedUtc TEXT NOT NULL,
    CreatedUtc TEXT NOT NULL,
    UpdatedUtc TEXT NOT NULL,
    FOREIGN KEY (UserId) REFERENCES Users(Id) ON DELETE CASCADE,
    FOREIGN KEY (GameId) REFERENCES Games(Id) ON DELETE CASCADE,
    UNIQUE (UserId, GameId),
    UNIQUE (UserId, CacheKey)
);
CREATE TABLE UserAchievements (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    UserGameProgressId INTEGER NOT NULL,
    AchievementDefinitionId INTEGER NOT NULL,
    Unlocked INTEGER NOT NULL DEFAULT 0,
    UnlockTimeUtc TEXT NULL,
    ProgressNum INTEGER NULL,
    ProgressDenom INTEGER NULL,
    LastUpdatedUtc TEXT NOT NULL,
    CreatedUtc TEXT NOT NULL,
    FOREIGN KEY (UserGameProgressId) REFERENCES UserGameProgress(Id) ON DELETE CASCADE,
    FOREIGN KEY (AchievementDefinitionId) REFERENCES AchievementDefinitions(Id) ON DELETE CASCADE,
    UNIQUE (UserGameProgressId, AchievementDefinitionId)
);
"""

LIBRARY_ID = "3f2504e0-4f89-11d3-9a0c-0305e82c3301"
STAMP = "2024-01-01T00:00:00.000000Z"
LATER = "2024-02-01T00:00:00.000000Z"


def _create_v1_database(path: Path) -> None:
    """A version 1 cache with one Steam user, two games and one unlock."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.executescript(V1_SCHEMA)
    conn.executescript(
        f"""
        INSERT INTO Users VALUES (1, 'Steam', '76561198000000001', 'Tester', 1, NULL, '{STAMP}', '{STAMP}');
        INSERT INTO Games VALUES (1, 'Steam', 620, '{LIBRARY_ID}', 'Portal 2', 'Steam', '{STAMP}', '{STAMP}');
        INSERT INTO Games VALUES (2, 'Steam', 400, NULL, 'Portal', 'Steam', '{STAMP}', '{STAMP}');
        INSERT INTO AchievementDefinitions VALUES
            (1, 1, 'ach1', 'First', 'Desc', 'icons/ach1.png', 0, 12.5, NULL, '{STAMP}', '{STAMP}');
        INSERT INTO UserGameProgress VALUES (1, 1, 1, '{LIBRARY_ID}', 3600, 0, 1, 1, '{LATER}', '{STAMP}', '{STAMP}');
        INSERT INTO UserGameProgress VALUES (2, 1, 2, 'portal', 60, 1, 0, 0, '{STAMP}', '{STAMP}', '{STAMP}');
        INSERT INTO UserAchievements VALUES (1, 1, 1, 1, '2023-12-24T10:00:00.000000Z', NULL, NULL, '{STAMP}', '{STAMP}');
        """
    )
    conn.commit()
    conn.close()


def _uppercase_library_id(path: Path) -> None:
    conn = sqlite3.connect(str(path))
    conn.execute("UPDATE Games SET PlayniteGameId = upper(PlayniteGameId) WHERE Id = 1")
    conn.commit()
    conn.close()


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def _indexes(conn: sqlite3.Connection) -> set[str]:
    return {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index' AND name IS NOT NULL")}


@pytest.fixture
def db_file(tmp_path: Path) -> Path:
    return tmp_path / "data" / "achievement_cache.db"


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "data" / "migration_backups"


@pytest.fixture
def manager(db_file: Path, backup_dir: Path) -> SchemaManager:
    return SchemaManager(db_file, BackupManager(backup_dir, max_backups=5))


@pytest.fixture
def open_conn(db_file: Path) -> Generator:
    """Opens autocommit connections to the test database and closes them afterwards."""
    connections: list[sqlite3.Connection] = []

    def _open() -> sqlite3.Connection:
        db_file.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_file), isolation_level=None)
        connections.append(conn)
        return conn

    yield _open
    for conn in connections:
        conn.close()


def _snapshots(backup_dir: Path) -> list[Path]:
    if not backup_dir.is_dir():
        return []
    return [p for p in backup_dir.iterdir() if p.is_dir()]


class TestFreshDatabase:
    """Schema creation on an empty file."""

    def test_creates_current_schema_without_snapshot(self, manager, open_conn, backup_dir) -> None:
        conn = open_conn()
        state = manager.ensure_schema(conn)

        assert state.is_new_database is True
        assert state.snapshot_path is None
        assert _snapshots(backup_dir) == []
        assert manager.find_problems(conn) == []
        assert manager.get_stored_version(conn) == SCHEMA_VERSION

    def test_pragmas_applied(self, manager, open_conn) -> None:
        conn = open_conn()
        manager.ensure_schema(conn)

        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_second_run_changes_nothing(self, manager, open_conn) -> None:
        conn = open_conn()
        manager.ensure_schema(conn)

        state = manager.ensure_schema(conn)

        assert state.applied == []
        assert not manager.plan_drift(conn)


class TestLegacyUpgrade:
    """Reconciliation of a version 1 database."""

    def test_plan_lists_every_drift(self, manager, open_conn, db_file) -> None:
        _create_v1_database(db_file)
        conn = open_conn()

        plan = manager.plan_drift(conn)
        kinds = [change.kind for change in plan.changes]

        assert kinds.count("rename_column") == 2
        assert kinds.count("drop_index") == 3
        assert kinds.count("create_index") == 3
        assert "UserGameProgress.HasAchievements" in [c.description for c in plan.changes]

    def test_upgrade_renames_adds_and_backfills(self, manager, open_conn, db_file) -> None:
        _create_v1_database(db_file)
        conn = open_conn()

        manager.ensure_schema(conn)

        games = _columns(conn, "Games")
        assert "ExternalLibraryId" in games
        assert "PlayniteGameId" not in games
        definitions = _columns(conn, "AchievementDefinitions")
        assert {"UnlockedIconPath", "LockedIconPath", "Points", "Category", "TrophyType", "IsCapstone"} <= definitions
        assert "IconPath" not in definitions

        assert conn.execute("SELECT ExternalLibraryId FROM Games WHERE Id = 1").fetchone()[0] == LIBRARY_ID
        assert conn.execute("SELECT UnlockedIconPath FROM AchievementDefinitions").fetchone()[0] == "icons/ach1.png"

        flags = dict(conn.execute("SELECT Id, HasAchievements FROM UserGameProgress").fetchall())
        assert flags == {1: 1, 2: 0}
        completed = dict(conn.execute("SELECT Id, IsCompleted FROM UserGameProgress").fetchall())
        assert completed == {1: 1, 2: 0}

    def test_upgrade_swaps_superseded_indexes(self, manager, open_conn, db_file) -> None:
        _create_v1_database(db_file)
        conn = open_conn()

        manager.ensure_schema(conn)
        indexes = _indexes(conn)

        assert {"UX_Games_Provider_Playnite", "UX_Games_Provider_GameId", "IX_Games_PlayniteGameId"}.isdisjoint(indexes)
        assert {
            "UX_Games_Provider_ExternalLibraryId",
            "UX_Games_Provider_GameId_NonRA",
            "IX_Games_ExternalLibraryId",
        } <= indexes

    def test_exactly_one_snapshot_then_none(self, manager, open_conn, db_file, backup_dir) -> None:
        _create_v1_database(db_file)
        conn = open_conn()

        state = manager.ensure_schema(conn)

        snapshots = _snapshots(backup_dir)
        assert len(snapshots) == 1
        assert state.snapshot_path == snapshots[0]
        assert (snapshots[0] / db_file.name).is_file()
        assert state.from_version == 0

        second = manager.ensure_schema(conn)

        assert second.snapshot_path is None
        assert second.applied == []
        assert len(_snapshots(backup_dir)) == 1

    def test_partial_upgrade_is_completed(self, manager, open_conn, db_file, backup_dir) -> None:
        conn = open_conn()
        manager.ensure_schema(conn)
        conn.execute("DROP INDEX IX_Games_ExternalLibraryId")

        plan = manager.plan_drift(conn)
        assert [c.description for c in plan.changes] == ["IX_Games_ExternalLibraryId"]

        state = manager.ensure_schema(conn)

        assert state.applied == ["IX_Games_ExternalLibraryId"]
        assert len(_snapshots(backup_dir)) == 1

    def test_store_reads_upgraded_data(self, db_file, resolver) -> None:
        _create_v1_database(db_file)

        with CacheStore(db_path=db_file, resolver=resolver, max_backups=5) as store:
            record = store.load_record(LIBRARY_ID)

        assert record is not None
        assert record.game_name == "Portal 2"
        assert record.external_library_id == LIBRARY_ID
        assert [a.api_name for a in record.achievements] == ["ach1"]
        assert record.achievements[0].unlocked is True
        assert record.achievements[0].unlocked_icon_path == "icons/ach1.png"


    def test_uppercase_library_id_still_matches(self, db_file, resolver, record_factory) -> None:
        _create_v1_database(db_file)
        _uppercase_library_id(db_file)

        with CacheStore(db_path=db_file, resolver=resolver, max_backups=5) as store:
            store.save_record(
                LIBRARY_ID, record_factory(app_id=0, game_name="Portal 2 GOTY", external_library_id=LIBRARY_ID)
            )
            games = store.conn.execute("SELECT Id, GameName FROM Games ORDER BY Id").fetchall()

        assert [tuple(row) for row in games] == [(1, "Portal 2 GOTY"), (2, "Portal")]

    def test_remove_game_matches_uppercase_library_id(self, db_file, resolver) -> None:
        _create_v1_database(db_file)
        _uppercase_library_id(db_file)

        with CacheStore(db_path=db_file, resolver=resolver, max_backups=5) as store:
            removed = store.remove_game(LIBRARY_ID)
            remaining = [row[0] for row in store.conn.execute("SELECT Id FROM Games")]

        assert removed == 2
        assert remaining == [2]

class TestVerification:
    """Verification failures are fatal."""

    def test_missing_baseline_column_fails(self, manager, open_conn) -> None:
        conn = open_conn()
        conn.execute(
            "CREATE TABLE Users (Id INTEGER PRIMARY KEY, ProviderName TEXT NOT NULL, "
            "IsCurrentUser INTEGER NOT NULL DEFAULT 0, DisplayName TEXT)"
        )

        with pytest.raises(SchemaVerificationError) as exc_info:
            manager.ensure_schema(conn)

        assert "missing column Users.ExternalUserId" in exc_info.value.problems

    def test_store_refuses_to_open(self, db_file, resolver) -> None:
        db_file.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_file))
        conn.execute("CREATE TABLE Games (Id INTEGER PRIMARY KEY, ProviderName TEXT NOT NULL, LastUpdatedUtc TEXT)")
        conn.commit()
        conn.close()

        store = CacheStore(db_path=db_file, resolver=resolver, max_backups=5)
        with pytest.raises(SchemaVerificationError):
            store.ensure_initialized()
        assert store.is_initialized is False
