"""Database connection management.

Handles lazy SQLite connection setup, the per-store lock, explicit
transactions and the context manager protocol.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from achievement_cache.core.backup_manager import BackupManager
from achievement_cache.core.db.schema import SchemaManager
from achievement_cache.core.exceptions import CacheNotInitializedError
from achievement_cache.utils.i18n import t

logger = logging.getLogger("achievecache.database")

__all__ = ["ConnectionBase"]


class ConnectionBase:
    """Base class providing SQLite connection setup and lifecycle.

    The database is opened on first use. Every public operation of the
    composed store takes ``_lock`` (reentrant), including the lazy
    initialization itself, so two threads never interleave statements on
    the shared connection.
    """

    SCHEMA_VERSION = SchemaManager.SCHEMA_VERSION

    _conn: sqlite3.Connection | None
    db_path: Path

    def __init__(self, db_path: Path, backup_dir: Path, max_backups: int | None = None) -> None:
        """Prepare (but do not open) the database.

        Args:
            db_path: Path to SQLite database file.
            backup_dir: Directory receiving pre-migration snapshots.
            max_backups: Snapshot retention; the configured value when None.
        """
        self.db_path = Path(db_path)
        self.backup_manager = BackupManager(Path(backup_dir), max_backups)
        self.schema_manager = SchemaManager(self.db_path, self.backup_manager)
        self._lock = threading.RLock()
        self._conn = None

    @property
    def database_path(self) -> Path:
        return self.db_path

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    def ensure_initialized(self) -> None:
        """Open the database and bring its schema up to date, once.

        Raises:
            SchemaVerificationError: If the schema could not be reconciled;
                the connection is closed again.
            sqlite3.Error, OSError: If the file cannot be opened or migrated.
        """
        with self._lock:
            if self._conn is not None:
                return

            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False, isolation_level=None)
            conn.row_factory = sqlite3.Row
            try:
                state = self.schema_manager.ensure_schema(conn)
            except Exception:
                conn.close()
                logger.error(t("logs.db.init_failed", path=self.db_path))
                raise

            self._conn = conn
            if state.snapshot_path is not None:
                logger.info(t("logs.db.migrated", path=self.db_path, snapshot=state.snapshot_path.name))
            logger.info(t("logs.db.opened", path=self.db_path, version=self.SCHEMA_VERSION))

    @property
    def conn(self) -> sqlite3.Connection:
        """The open connection, opening it on first access."""
        self.ensure_initialized()
        return self._conn

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise CacheNotInitializedError(f"Database {self.db_path} is not initialized")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one all-or-nothing transaction under the store lock.

        Yields:
            The open connection.
        """
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def close(self) -> None:
        """Close database connection (a later call reopens lazily)."""
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            self._on_closed()

    def _on_closed(self) -> None:
        """Hook for mixins holding per-connection caches."""

    def __enter__(self) -> ConnectionBase:
        """Context manager entry."""
        self.ensure_initialized()
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()
