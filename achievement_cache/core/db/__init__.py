"""Achievement cache store.

All mixins compose into the CacheStore class via multiple inheritance.
ConnectionBase owns the connection and the lock; the query mixins only
ever touch the database through it.
"""

from __future__ import annotations

from pathlib import Path

from achievement_cache.core.db.achievement_queries import AchievementQueryMixin
from achievement_cache.core.db.connection import ConnectionBase
from achievement_cache.core.db.game_queries import GameQueryMixin
from achievement_cache.core.db.metadata_queries import MetadataQueryMixin
from achievement_cache.core.db.models import UserRow
from achievement_cache.core.db.modification_queries import ModificationMixin
from achievement_cache.core.db.record_queries import RecordQueryMixin
from achievement_cache.core.db.schema import SCHEMA_VERSION, MigrationPlan, MigrationState, SchemaManager
from achievement_cache.core.db.user_queries import CachedCurrentUser, UserQueryMixin
from achievement_cache.core.identity import CurrentUserResolver

__all__ = [
    "SCHEMA_VERSION",
    "CacheStore",
    "MigrationPlan",
    "MigrationState",
    "SchemaManager",
    "UserRow",
]


class CacheStore(
    RecordQueryMixin,
    MetadataQueryMixin,
    UserQueryMixin,
    GameQueryMixin,
    AchievementQueryMixin,
    ModificationMixin,
    ConnectionBase,
):
    """Persistent cache of per-user achievement progress.

    Inherits connection management from ConnectionBase and all query
    methods from the mixins. Safe to share between threads; every public
    method is serialized on one lock.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        backup_dir: Path | None = None,
        resolver: CurrentUserResolver | None = None,
        max_backups: int | None = None,
    ) -> None:
        """Create a store; the database is opened lazily on first use.

        Args:
            db_path: Database file; the configured path when None.
            backup_dir: Snapshot directory; ``migration_backups`` next to the
                database when None.
            resolver: Acting-user resolver; one over the global config when None.
            max_backups: Snapshot retention; the configured value when None.
        """
        if db_path is None:
            from achievement_cache.config import config

            db_path = config.database_path
        db_path = Path(db_path)
        if backup_dir is None:
            from achievement_cache.config import config

            backup_dir = db_path.parent / config.BACKUP_DIR_NAME

        super().__init__(db_path, backup_dir, max_backups)
        self.resolver = resolver if resolver is not None else CurrentUserResolver()
        self._current_users: dict[str, CachedCurrentUser] = {}

    def export_to_csv(self, directory: Path) -> Path:
        """Dump every table plus a summary view to CSV files.

        Args:
            directory: Parent directory of the export folder.

        Returns:
            The created ``achievement_export_<timestamp>`` folder.

        Raises:
            CacheNotInitializedError: If the store was never opened.
        """
        from achievement_cache.utils.csv_exporter import CsvDatabaseExporter

        with self._lock:
            return CsvDatabaseExporter().export(self._require_connection(), Path(directory))
