# achievement_cache/core/backup_manager.py

"""
Manages database snapshots with automatic rotation.

A snapshot is a timestamped directory holding a copy of the SQLite file and
its write-ahead/shared-memory side files, taken right before the schema
manager changes the structure of an existing database.
"""
from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from achievement_cache.utils.i18n import t

logger = logging.getLogger("achievecache.backup_manager")

__all__ = ["BackupManager", "SIDE_FILE_SUFFIXES"]

SIDE_FILE_SUFFIXES: tuple[str, ...] = ("", "-wal", "-shm")


class BackupManager:
    """
    Creates and rotates database snapshots.

    Each snapshot lives in ``<backup_dir>/<stem>_<UTC timestamp>/``. After a
    snapshot is written, the oldest ones beyond ``max_backups`` are removed.
    """

    def __init__(self, backup_dir: Path, max_backups: int | None = None):
        """
        Initializes the BackupManager.

        Args:
            backup_dir: Directory receiving snapshot directories.
            max_backups: Number of snapshots to keep per database; the
                configured ``MAX_BACKUPS`` when None. Values below 1 keep all.
        """
        self.backup_dir = backup_dir
        if max_backups is None:
            from achievement_cache.config import config

            max_backups = config.MAX_BACKUPS
        self.max_backups = max_backups

    def create_snapshot(self, db_path: Path) -> Path:
        """
        Copies the database file and its side files into a new snapshot directory.

        Missing side files are skipped (a database without WAL activity has none).

        Args:
            db_path: Path to the live database file.

        Returns:
            Path to the created snapshot directory.

        Raises:
            OSError: If a file cannot be copied. A migration must not proceed
                without its snapshot.
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
        target_dir = self.backup_dir / f"{db_path.stem}_{timestamp}"
        target_dir.mkdir(parents=True, exist_ok=False)

        copied = 0
        for suffix in SIDE_FILE_SUFFIXES:
            source = db_path.with_name(db_path.name + suffix)
            if not source.exists():
                continue
            shutil.copy2(source, target_dir / source.name)
            copied += 1

        logger.info(t("logs.backup.created", name=target_dir.name, count=copied))
        self._rotate_snapshots(db_path)
        return target_dir

    def list_snapshots(self, db_path: Path) -> list[Path]:
        """
        Lists snapshot directories of a database, newest first.

        Args:
            db_path: The live database path (used to match snapshot names).

        Returns:
            Snapshot directories sorted by name, newest first. Names embed a
            fixed-width UTC timestamp so lexical order is chronological.
        """
        if not self.backup_dir.is_dir():
            return []
        prefix = f"{db_path.stem}_"
        snapshots = [p for p in self.backup_dir.iterdir() if p.is_dir() and p.name.startswith(prefix)]
        return sorted(snapshots, key=lambda p: p.name, reverse=True)

    def _rotate_snapshots(self, db_path: Path) -> None:
        """
        Removes snapshots exceeding the retention limit. Failures are logged only.
        """
        if self.max_backups < 1:
            return
        for old in self.list_snapshots(db_path)[self.max_backups :]:
            try:
                shutil.rmtree(old)
                logger.info(t("logs.backup.rotated", name=old.name))
            except OSError as delete_error:
                logger.error(t("logs.backup.delete_error", name=old.name, error=str(delete_error)))
