# achievement_cache/core/legacy_importer.py

"""
One-shot import of the legacy per-game JSON cache into the database.

Older releases kept one ``<cache key>.json`` file per game in the
``achievement_cache`` folder. On startup every remaining file is saved
through the store and then deleted; unreadable files are moved to
``quarantine/`` so they never block the import again. Progress counters are
recorded in the store's metadata table.
"""
from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from achievement_cache.core.achievement_data import GameAchievementData
from achievement_cache.core.cache_behavior import should_mark_legacy_import_done
from achievement_cache.core.exceptions import CacheError
from achievement_cache.utils.date_utils import to_iso, utc_now
from achievement_cache.utils.i18n import t

if TYPE_CHECKING:
    from achievement_cache.core.db import CacheStore

logger = logging.getLogger("achievecache.legacy_import")

__all__ = ["LegacyImportStats", "LegacyJsonCacheImporter", "QUARANTINE_DIR_NAME"]

QUARANTINE_DIR_NAME = "quarantine"

META_DONE = "legacy_import_done"
META_IMPORTED = "legacy_import_imported"
META_PARSE_FAILED = "legacy_import_parse_failed"
META_DB_WRITE_FAILED = "legacy_import_db_write_failed"
META_DELETED = "legacy_import_deleted"
META_DELETE_FAILED = "legacy_import_delete_failed"
META_QUARANTINED = "legacy_import_quarantined"
META_REMAINING = "legacy_import_remaining"
META_UTC = "legacy_import_utc"


@dataclass
class LegacyImportStats:
    """Counters of one import pass."""

    imported: int = 0
    parse_failed: int = 0
    db_write_failed: int = 0
    deleted: int = 0
    delete_failed: int = 0
    quarantined: int = 0
    remaining: int = 0
    done: bool = False
    skipped: bool = False


class LegacyJsonCacheImporter:
    """
    Moves legacy JSON cache files into the cache store.

    Safe to call on every start: once the import is recorded as done and no
    legacy file is left, it returns immediately.
    """

    def __init__(self, store: CacheStore, legacy_dir: Path | None = None, quarantine_dir: Path | None = None):
        """
        Initializes the importer.

        Args:
            store: The cache store receiving the records.
            legacy_dir: Folder of ``*.json`` files; the configured legacy folder when None.
            quarantine_dir: Destination for unreadable files; ``<legacy_dir>/quarantine`` when None.
        """
        if legacy_dir is None:
            from achievement_cache.config import config

            legacy_dir = config.legacy_cache_dir
        self.store = store
        self.legacy_dir = Path(legacy_dir)
        self.quarantine_dir = Path(quarantine_dir) if quarantine_dir else self.legacy_dir / QUARANTINE_DIR_NAME

    def find_legacy_files(self) -> list[Path]:
        """Legacy files waiting for import, sorted by name."""
        if not self.legacy_dir.is_dir():
            return []
        return sorted(p for p in self.legacy_dir.glob("*.json") if p.is_file())

    def import_if_needed(self) -> LegacyImportStats:
        """
        Runs the import unless it already completed.

        A stored "done" flag is not trusted while legacy files still exist:
        the flag is reset and the import runs again.

        Returns:
            Counters of this pass (``skipped`` when nothing had to be done).
        """
        self.store.ensure_initialized()
        files = self.find_legacy_files()

        if self.store.get_metadata(META_DONE) == "1":
            if not files:
                return LegacyImportStats(done=True, skipped=True)
            logger.warning(t("logs.legacy_import.flag_reset", count=len(files)))
            self.store.set_metadata(META_DONE, "0")

        stats = LegacyImportStats()
        for file_path in files:
            self._import_file(file_path, stats)

        stats.remaining = len(self.find_legacy_files())
        stats.done = should_mark_legacy_import_done(stats.parse_failed, stats.db_write_failed, stats.remaining)
        self._record_stats(stats)

        if stats.done:
            self._remove_empty_legacy_dir()

        logger.info(
            t(
                "logs.legacy_import.finished",
                imported=stats.imported,
                parse_failed=stats.parse_failed,
                db_write_failed=stats.db_write_failed,
                remaining=stats.remaining,
            )
        )
        return stats

    def _import_file(self, file_path: Path, stats: LegacyImportStats) -> None:
        key = file_path.stem.strip()
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = GameAchievementData.from_dict(json.load(f))
        except (
            OSError,
            UnicodeDecodeError,
            json.JSONDecodeError,
            KeyError,
            TypeError,
            ValueError,
            OverflowError,
        ) as e:
            stats.parse_failed += 1
            logger.warning(t("logs.legacy_import.parse_failed", file=file_path.name, error=str(e)))
            self._quarantine(file_path, stats)
            return

        try:
            self.store.save_record(key, data)
        except CacheError as e:
            stats.db_write_failed += 1
            logger.error(t("logs.legacy_import.write_failed", file=file_path.name, error=str(e)))
            return
        stats.imported += 1

        try:
            file_path.unlink()
            stats.deleted += 1
        except OSError as e:
            stats.delete_failed += 1
            logger.warning(t("logs.legacy_import.delete_failed", file=file_path.name, error=str(e)))

    def _quarantine(self, file_path: Path, stats: LegacyImportStats) -> None:
        """Moves an unreadable file aside; it stays in place if the move fails."""
        target = self.quarantine_dir / file_path.name
        if target.exists():
            stamp = utc_now().strftime("%Y%m%d_%H%M%S_%f")
            target = self.quarantine_dir / f"{file_path.stem}_{stamp}{file_path.suffix}"
        try:
            self.quarantine_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(file_path), str(target))
            stats.quarantined += 1
        except OSError as e:
            logger.error(t("logs.legacy_import.quarantine_failed", file=file_path.name, error=str(e)))

    def _record_stats(self, stats: LegacyImportStats) -> None:
        self.store.set_metadata(META_IMPORTED, str(stats.imported))
        self.store.set_metadata(META_PARSE_FAILED, str(stats.parse_failed))
        self.store.set_metadata(META_DB_WRITE_FAILED, str(stats.db_write_failed))
        self.store.set_metadata(META_DELETED, str(stats.deleted))
        self.store.set_metadata(META_DELETE_FAILED, str(stats.delete_failed))
        self.store.set_metadata(META_QUARANTINED, str(stats.quarantined))
        self.store.set_metadata(META_REMAINING, str(stats.remaining))
        self.store.set_metadata(META_UTC, to_iso(utc_now()))
        self.store.set_metadata(META_DONE, "1" if stats.done else "0")

    def _remove_empty_legacy_dir(self) -> None:
        """Deletes the legacy folder once nothing is left in it. Failures are logged only."""
        if not self.legacy_dir.is_dir():
            return
        try:
            if any(self.legacy_dir.iterdir()):
                return
            self.legacy_dir.rmdir()
            logger.info(t("logs.legacy_import.dir_removed", path=self.legacy_dir))
        except OSError as e:
            logger.warning(t("logs.legacy_import.dir_remove_failed", path=self.legacy_dir, error=str(e)))
