"""Database schema creation and reconciliation.

Structural drift is detected from the columns and indexes actually present,
not from the stored version number: users roll plugin versions back, delete
side files or hand-edit the database, so only the live shape is trusted.

Reconciliation runs as an explicit pipeline::

    plan drift -> snapshot once -> apply (one transaction) -> verify

A failed verification raises :class:`SchemaVerificationError` and the store
refuses to open.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from achievement_cache.core.backup_manager import BackupManager
from achievement_cache.core.exceptions import SchemaVerificationError
from achievement_cache.utils.i18n import t

logger = logging.getLogger("achievecache.schema")

__all__ = [
    "SCHEMA_VERSION",
    "MigrationPlan",
    "MigrationState",
    "SchemaChange",
    "SchemaManager",
]

SCHEMA_VERSION = 3

SCHEMA_VERSION_KEY = "schema_version"

PRAGMAS: tuple[str, ...] = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA temp_store = MEMORY",
    "PRAGMA foreign_keys = ON",
)

# Current shape of every table. CREATE TABLE IF NOT EXISTS leaves older
# tables untouched; their drift is handled by reconciliation.
TABLES: dict[str, str] = {
    "CacheMetadata": """
        CREATE TABLE IF NOT EXISTS CacheMetadata (
            Key TEXT PRIMARY KEY NOT NULL,
            Value TEXT NOT NULL
        )""",
    "Users": """
        CREATE TABLE IF NOT EXISTS Users (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            ProviderName TEXT NOT NULL COLLATE NOCASE,
            ExternalUserId TEXT NOT NULL COLLATE NOCASE,
            DisplayName TEXT NULL,
            IsCurrentUser INTEGER NOT NULL DEFAULT 0,
            FriendSource TEXT NULL,
            CreatedUtc TEXT NOT NULL,
            UpdatedUtc TEXT NOT NULL,
            UNIQUE (ProviderName, ExternalUserId)
        )""",
    "Games": """
        CREATE TABLE IF NOT EXISTS Games (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            ProviderName TEXT NOT NULL COLLATE NOCASE,
            ProviderGameId INTEGER NULL,
            ExternalLibraryId TEXT NULL COLLATE NOCASE,
            GameName TEXT NULL,
            LibrarySourceName TEXT NULL,
            FirstSeenUtc TEXT NOT NULL,
            LastUpdatedUtc TEXT NOT NULL
        )""",
    "AchievementDefinitions": """
        CREATE TABLE IF NOT EXISTS AchievementDefinitions (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            GameId INTEGER NOT NULL,
            ApiName TEXT NOT NULL COLLATE NOCASE,
            DisplayName TEXT NULL,
            Description TEXT NULL,
            UnlockedIconPath TEXT NULL,
            LockedIconPath TEXT NULL,
            Points INTEGER NULL,
            Category TEXT NULL,
            TrophyType TEXT NULL,
            Hidden INTEGER NOT NULL DEFAULT 0,
            IsCapstone INTEGER NOT NULL DEFAULT 0,
            GlobalPercentUnlocked REAL NULL,
            ProgressMax INTEGER NULL,
            CreatedUtc TEXT NOT NULL,
            UpdatedUtc TEXT NOT NULL,
            FOREIGN KEY (GameId) REFERENCES Games(Id) ON DELETE CASCADE,
            UNIQUE (GameId, ApiName)
        )""",
    "UserGameProgress": """
        CREATE TABLE IF NOT EXISTS UserGameProgress (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            UserId INTEGER NOT NULL,
            GameId INTEGER NOT NULL,
            CacheKey TEXT NOT NULL COLLATE NOCASE,
            PlaytimeSeconds INTEGER NOT NULL DEFAULT 0,
            HasAchievements INTEGER NOT NULL DEFAULT 1,
            ExcludedByUser INTEGER NOT NULL DEFAULT 0,
            AchievementsUnlocked INTEGER NOT NULL DEFAULT 0,
            TotalAchievements INTEGER NOT NULL DEFAULT 0,
            IsCompleted INTEGER NOT NULL DEFAULT 0,
            ProviderIsCompleted INTEGER NOT NULL DEFAULT 0,
            CompletedMarkerApiName TEXT NULL,
            LastUpdatedUtc TEXT NOT NULL,
            CreatedUtc TEXT NOT NULL,
            UpdatedUtc TEXT NOT NULL,
            FOREIGN KEY (UserId) REFERENCES Users(Id) ON DELETE CASCADE,
            FOREIGN KEY (GameId) REFERENCES Games(Id) ON DELETE CASCADE,
            UNIQUE (UserId, GameId),
            UNIQUE (UserId, CacheKey)
        )""",
    "UserAchievements": """
        CREATE TABLE IF NOT EXISTS UserAchievements (
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
        )""",
}

REQUIRED_COLUMNS: dict[str, tuple[str, ...]] = {
    "CacheMetadata": ("Key", "Value"),
    "Users": (
        "Id", "ProviderName", "ExternalUserId", "DisplayName",
        "IsCurrentUser", "FriendSource", "CreatedUtc", "UpdatedUtc",
    ),
    "Games": (
        "Id", "ProviderName", "ProviderGameId", "ExternalLibraryId",
        "GameName", "LibrarySourceName", "FirstSeenUtc", "LastUpdatedUtc",
    ),
    "AchievementDefinitions": (
        "Id", "GameId", "ApiName", "DisplayName", "Description",
        "UnlockedIconPath", "LockedIconPath", "Points", "Category", "TrophyType",
        "Hidden", "IsCapstone", "GlobalPercentUnlocked", "ProgressMax",
        "CreatedUtc", "UpdatedUtc",
    ),
    "UserGameProgress": (
        "Id", "UserId", "GameId", "CacheKey", "PlaytimeSeconds",
        "HasAchievements", "ExcludedByUser", "AchievementsUnlocked", "TotalAchievements",
        "IsCompleted", "ProviderIsCompleted", "CompletedMarkerApiName",
        "LastUpdatedUtc", "CreatedUtc", "UpdatedUtc",
    ),
    "UserAchievements": (
        "Id", "UserGameProgressId", "AchievementDefinitionId", "Unlocked",
        "UnlockTimeUtc", "ProgressNum", "ProgressDenom", "LastUpdatedUtc", "CreatedUtc",
    ),
}


@dataclass(frozen=True)
class ColumnRename:
    table: str
    old_name: str
    new_name: str
    # Used when neither the old nor the new column exists
    definition: str


@dataclass(frozen=True)
class ColumnAddition:
    table: str
    name: str
    definition: str
    backfill_sql: str | None = None
    # Backfill only runs when this legacy column is present
    backfill_requires: str | None = None


@dataclass(frozen=True)
class IndexSpec:
    name: str
    sql: str
    supersedes: tuple[str, ...] = ()
    # Creation is skipped while one of these columns is missing
    table: str | None = None
    columns: tuple[str, ...] = ()


COLUMN_RENAMES: tuple[ColumnRename, ...] = (
    ColumnRename("Games", "PlayniteGameId", "ExternalLibraryId", "TEXT NULL COLLATE NOCASE"),
    ColumnRename("AchievementDefinitions", "IconPath", "UnlockedIconPath", "TEXT NULL"),
)

COLUMN_ADDITIONS: tuple[ColumnAddition, ...] = (
    # v2
    ColumnAddition("AchievementDefinitions", "LockedIconPath", "TEXT NULL"),
    ColumnAddition("AchievementDefinitions", "Points", "INTEGER NULL"),
    ColumnAddition("AchievementDefinitions", "Category", "TEXT NULL"),
    ColumnAddition("AchievementDefinitions", "TrophyType", "TEXT NULL"),
    # v3
    ColumnAddition("AchievementDefinitions", "IsCapstone", "INTEGER NOT NULL DEFAULT 0"),
    ColumnAddition(
        "UserGameProgress",
        "HasAchievements",
        "INTEGER NOT NULL DEFAULT 1",
        backfill_sql="UPDATE UserGameProgress SET HasAchievements = CASE WHEN NoAchievements = 0 THEN 1 ELSE 0 END",
        backfill_requires="NoAchievements",
    ),
    ColumnAddition("UserGameProgress", "ExcludedByUser", "INTEGER NOT NULL DEFAULT 0"),
    ColumnAddition(
        "UserGameProgress",
        "IsCompleted",
        "INTEGER NOT NULL DEFAULT 0",
        backfill_sql=(
            "UPDATE UserGameProgress SET IsCompleted = CASE "
            "WHEN TotalAchievements > 0 AND AchievementsUnlocked = TotalAchievements THEN 1 ELSE 0 END"
        ),
    ),
    ColumnAddition("UserGameProgress", "ProviderIsCompleted", "INTEGER NOT NULL DEFAULT 0"),
    ColumnAddition("UserGameProgress", "CompletedMarkerApiName", "TEXT NULL"),
)

# Indexes over columns that exist since v1; created with the tables.
BASELINE_INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec(
        "UX_Users_CurrentPerProvider",
        "CREATE UNIQUE INDEX IF NOT EXISTS UX_Users_CurrentPerProvider ON Users (ProviderName) WHERE IsCurrentUser = 1",
    ),
    IndexSpec(
        "IX_Users_CurrentUser_Id",
        "CREATE INDEX IF NOT EXISTS IX_Users_CurrentUser_Id ON Users (IsCurrentUser, Id)",
    ),
    IndexSpec(
        "IX_Games_LastUpdatedUtc",
        "CREATE INDEX IF NOT EXISTS IX_Games_LastUpdatedUtc ON Games (LastUpdatedUtc)",
    ),
    IndexSpec(
        "IX_AchievementDefinitions_GameId",
        "CREATE INDEX IF NOT EXISTS IX_AchievementDefinitions_GameId ON AchievementDefinitions (GameId)",
    ),
    IndexSpec(
        "IX_UserGameProgress_CacheKey",
        "CREATE INDEX IF NOT EXISTS IX_UserGameProgress_CacheKey ON UserGameProgress (CacheKey)",
    ),
    IndexSpec(
        "IX_UserGameProgress_LastUpdatedUtc",
        "CREATE INDEX IF NOT EXISTS IX_UserGameProgress_LastUpdatedUtc ON UserGameProgress (LastUpdatedUtc)",
    ),
    IndexSpec(
        "IX_UserGameProgress_User_LastUpdated",
        "CREATE INDEX IF NOT EXISTS IX_UserGameProgress_User_LastUpdated ON UserGameProgress (UserId, LastUpdatedUtc)",
    ),
    IndexSpec(
        "IX_UserAchievements_UnlockTimeUtc",
        "CREATE INDEX IF NOT EXISTS IX_UserAchievements_UnlockTimeUtc ON UserAchievements (UnlockTimeUtc)",
    ),
    IndexSpec(
        "IX_UserAchievements_Definition",
        "CREATE INDEX IF NOT EXISTS IX_UserAchievements_Definition ON UserAchievements (AchievementDefinitionId)",
    ),
)

# Indexes over reconciled columns; created by the reconciliation pass.
RECONCILED_INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec(
        "UX_Games_Provider_ExternalLibraryId",
        "CREATE UNIQUE INDEX IF NOT EXISTS UX_Games_Provider_ExternalLibraryId "
        "ON Games (ProviderName, ExternalLibraryId) WHERE ExternalLibraryId IS NOT NULL",
        supersedes=("UX_Games_Provider_Playnite",),
        table="Games",
        columns=("ProviderName", "ExternalLibraryId"),
    ),
    IndexSpec(
        "UX_Games_Provider_GameId_NonRA",
        "CREATE UNIQUE INDEX IF NOT EXISTS UX_Games_Provider_GameId_NonRA "
        "ON Games (ProviderName, ProviderGameId) "
        "WHERE ProviderGameId IS NOT NULL AND ProviderGameId > 0 AND ProviderName <> 'RetroAchievements'",
        supersedes=("UX_Games_Provider_GameId",),
        table="Games",
        columns=("ProviderName", "ProviderGameId"),
    ),
    IndexSpec(
        "IX_Games_ExternalLibraryId",
        "CREATE INDEX IF NOT EXISTS IX_Games_ExternalLibraryId ON Games (ExternalLibraryId)",
        supersedes=("IX_Games_PlayniteGameId",),
        table="Games",
        columns=("ExternalLibraryId",),
    ),
)


@dataclass(frozen=True)
class SchemaChange:
    """One corrective step: a description and the statements that apply it."""

    kind: str  # rename_column, add_column, drop_index, create_index
    description: str
    statements: tuple[str, ...]


@dataclass
class MigrationPlan:
    """Ordered corrective steps found by inspecting the live database."""

    changes: list[SchemaChange] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __len__(self) -> int:
        return len(self.changes)


@dataclass
class MigrationState:
    """Outcome of one reconciliation pass.

    ``snapshot_path`` is set at most once per pass; the apply phase checks
    it instead of re-deciding whether a backup was already taken.
    """

    from_version: int = 0
    is_new_database: bool = False
    snapshot_path: Path | None = None
    applied: list[str] = field(default_factory=list)

    @property
    def snapshotted(self) -> bool:
        return self.snapshot_path is not None


class SchemaManager:
    """Creates, reconciles and verifies the cache schema.

    Stateless across calls; every :meth:`ensure_schema` inspects the live
    database again, so it is safe on every process start.
    """

    SCHEMA_VERSION = SCHEMA_VERSION

    def __init__(self, db_path: Path | None = None, backup_manager: BackupManager | None = None) -> None:
        """Initialize the manager.

        Args:
            db_path: Path of the database file (needed for snapshots).
            backup_manager: Snapshot writer; without one, structural changes
                to an existing database are applied without a snapshot.
        """
        self.db_path = db_path
        self.backup_manager = backup_manager

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def ensure_schema(self, conn: sqlite3.Connection) -> MigrationState:
        """Create or reconcile the schema, verify it and stamp the version.

        Args:
            conn: Open connection in autocommit mode (``isolation_level=None``).

        Returns:
            The reconciliation outcome (snapshot path, applied changes).

        Raises:
            SchemaVerificationError: If the schema is still wrong afterwards.
            OSError: If the pre-migration snapshot could not be written.
            sqlite3.Error: If a statement fails (the apply phase rolls back).
        """
        self._apply_pragmas(conn)

        state = MigrationState(is_new_database=not self._has_user_tables(conn))
        self._create_baseline(conn)
        state.from_version = self.get_stored_version(conn)

        plan = self.plan_drift(conn)
        if plan:
            logger.info(
                t(
                    "logs.schema.reconciling",
                    count=len(plan),
                    from_version=state.from_version,
                    to_version=self.SCHEMA_VERSION,
                )
            )
            self.snapshot_once(state)
            self.apply_plan(conn, plan, state)

        self.verify(conn)
        self._set_stored_version(conn, self.SCHEMA_VERSION)
        logger.debug("Schema ready at version %d (%d change(s))", self.SCHEMA_VERSION, len(state.applied))
        return state

    # ------------------------------------------------------------------
    # Baseline
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_pragmas(conn: sqlite3.Connection) -> None:
        for pragma in PRAGMAS:
            conn.execute(pragma)

    @staticmethod
    def _has_user_tables(conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchone()
        return bool(row[0])

    @staticmethod
    def _create_baseline(conn: sqlite3.Connection) -> None:
        """Create absent tables (current shape) and baseline indexes."""
        for table, ddl in TABLES.items():
            try:
                conn.execute(ddl)
            except sqlite3.Error as e:
                logger.error(t("logs.schema.statement_failed", target=table, error=str(e)))
                raise
        for index in BASELINE_INDEXES:
            try:
                conn.execute(index.sql)
            except sqlite3.Error as e:
                logger.error(t("logs.schema.statement_failed", target=index.name, error=str(e)))
                raise

    # ------------------------------------------------------------------
    # Version stamp
    # ------------------------------------------------------------------

    @staticmethod
    def get_stored_version(conn: sqlite3.Connection) -> int:
        """Stored schema version, 0 when absent or unreadable."""
        try:
            row = conn.execute("SELECT Value FROM CacheMetadata WHERE Key = ?", (SCHEMA_VERSION_KEY,)).fetchone()
        except sqlite3.Error:
            return 0
        if row is None:
            return 0
        try:
            return int(str(row[0]).strip())
        except ValueError:
            return 0

    @staticmethod
    def _set_stored_version(conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO CacheMetadata (Key, Value) VALUES (?, ?)",
            (SCHEMA_VERSION_KEY, str(version)),
        )

    # ------------------------------------------------------------------
    # Phase 1: plan
    # ------------------------------------------------------------------

    @staticmethod
    def get_columns(conn: sqlite3.Connection, table: str) -> set[str]:
        """Casefolded column names of a table (empty if the table is missing)."""
        return {str(row[1]).casefold() for row in conn.execute(f'PRAGMA table_info("{table}")').fetchall()}

    @staticmethod
    def get_indexes(conn: sqlite3.Connection) -> set[str]:
        """Casefolded names of every named index in the database."""
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'index' AND name IS NOT NULL").fetchall()
        return {str(row[0]).casefold() for row in rows}

    def plan_drift(self, conn: sqlite3.Connection) -> MigrationPlan:
        """Compare the live shape with the current schema.

        Order: renames, added columns (with backfill), superseded index drops,
        missing index creation. Later steps rely on earlier ones, e.g. the
        library-id index needs the renamed column.
        """
        plan = MigrationPlan()
        columns = {table: self.get_columns(conn, table) for table in TABLES}
        indexes = self.get_indexes(conn)

        for rename in COLUMN_RENAMES:
            present = columns[rename.table]
            if rename.new_name.casefold() in present:
                continue
            if rename.old_name.casefold() in present:
                plan.changes.append(
                    SchemaChange(
                        kind="rename_column",
                        description=f"{rename.table}.{rename.old_name} -> {rename.new_name}",
                        statements=(
                            f"ALTER TABLE {rename.table} RENAME COLUMN {rename.old_name} TO {rename.new_name}",
                        ),
                    )
                )
            else:
                plan.changes.append(
                    SchemaChange(
                        kind="add_column",
                        description=f"{rename.table}.{rename.new_name}",
                        statements=(f"ALTER TABLE {rename.table} ADD COLUMN {rename.new_name} {rename.definition}",),
                    )
                )
            present.add(rename.new_name.casefold())

        for addition in COLUMN_ADDITIONS:
            present = columns[addition.table]
            if addition.name.casefold() in present:
                continue
            statements = [f"ALTER TABLE {addition.table} ADD COLUMN {addition.name} {addition.definition}"]
            if addition.backfill_sql and (
                addition.backfill_requires is None or addition.backfill_requires.casefold() in present
            ):
                statements.append(addition.backfill_sql)
            plan.changes.append(
                SchemaChange(
                    kind="add_column",
                    description=f"{addition.table}.{addition.name}",
                    statements=tuple(statements),
                )
            )
            present.add(addition.name.casefold())

        for index in RECONCILED_INDEXES:
            for old_name in index.supersedes:
                if old_name.casefold() in indexes:
                    plan.changes.append(
                        SchemaChange(
                            kind="drop_index",
                            description=f"{old_name} (superseded by {index.name})",
                            statements=(f"DROP INDEX IF EXISTS {old_name}",),
                        )
                    )

        for index in RECONCILED_INDEXES:
            if index.table and not all(c.casefold() in columns[index.table] for c in index.columns):
                continue
            if index.name.casefold() not in indexes:
                plan.changes.append(SchemaChange(kind="create_index", description=index.name, statements=(index.sql,)))

        return plan

    # ------------------------------------------------------------------
    # Phase 2: snapshot
    # ------------------------------------------------------------------

    def snapshot_once(self, state: MigrationState) -> None:
        """Take the pre-migration snapshot unless this pass already has one.

        New databases (no tables before this start) have nothing to protect.
        """
        if state.snapshotted or state.is_new_database:
            return
        if self.backup_manager is None or self.db_path is None or not self.db_path.exists():
            logger.warning(t("logs.schema.snapshot_skipped"))
            return
        state.snapshot_path = self.backup_manager.create_snapshot(self.db_path)

    # ------------------------------------------------------------------
    # Phase 3: apply
    # ------------------------------------------------------------------

    def apply_plan(self, conn: sqlite3.Connection, plan: MigrationPlan, state: MigrationState) -> None:
        """Run every planned statement in one transaction."""
        if not state.snapshotted and not state.is_new_database:
            self.snapshot_once(state)

        conn.execute("BEGIN IMMEDIATE")
        try:
            for change in plan.changes:
                for statement in change.statements:
                    conn.execute(statement)
                state.applied.append(change.description)
                logger.info(t("logs.schema.change_applied", kind=change.kind, description=change.description))
        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            logger.error(t("logs.schema.apply_failed", error=str(e)))
            raise
        conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Phase 4: verify
    # ------------------------------------------------------------------

    def find_problems(self, conn: sqlite3.Connection) -> list[str]:
        """List every deviation from the current schema (empty = healthy)."""
        problems: list[str] = []
        for table, required in REQUIRED_COLUMNS.items():
            present = self.get_columns(conn, table)
            if not present:
                problems.append(f"missing table {table}")
                continue
            for column in required:
                if column.casefold() not in present:
                    problems.append(f"missing column {table}.{column}")

        indexes = self.get_indexes(conn)
        for index in BASELINE_INDEXES + RECONCILED_INDEXES:
            if index.name.casefold() not in indexes:
                problems.append(f"missing index {index.name}")
            for old_name in index.supersedes:
                if old_name.casefold() in indexes:
                    problems.append(f"superseded index still present {old_name}")
        return problems

    def verify(self, conn: sqlite3.Connection) -> None:
        """Raise if the database does not have the current schema.

        Raises:
            SchemaVerificationError: Listing every problem found.
        """
        problems = self.find_problems(conn)
        if problems:
            logger.error(t("logs.schema.verify_failed", problems="; ".join(problems)))
            raise SchemaVerificationError(problems)
