"""
Configuration - data locations, backup policy and saved account identities.

Settings persist to ``settings.json`` inside the data directory; the data
directory itself can be redirected with ``ACHIEVEMENT_CACHE_DATA_DIR`` (also
read from a ``.env`` file).
"""

from __future__ import annotations

import json
import logging
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from achievement_cache.utils.paths import get_default_data_dir

logger = logging.getLogger("achievecache.config")


__all__ = ["Config", "config"]


@dataclass
class Config:
    """
    Central configuration for the achievement cache.
    Manages file locations, backup rotation and the saved provider identities
    used when no live session is available.
    """

    DATA_DIR: Path = field(default_factory=get_default_data_dir)

    DATABASE_FILE: str = "achievement_cache.db"
    BACKUP_DIR_NAME: str = "migration_backups"
    LEGACY_CACHE_DIR_NAME: str = "achievement_cache"
    SETTINGS_FILE_NAME: str = "settings.json"

    MAX_BACKUPS: int = 5
    UI_LANGUAGE: str = "en"

    # Saved identities (fallback when no live session is known)
    STEAM_PATH: Path | None = None
    STEAM_USER_ID: str | None = None
    RA_USERNAME: str | None = None

    def __post_init__(self):
        """Apply environment overrides and load saved settings."""
        load_dotenv()
        env_dir = os.getenv("ACHIEVEMENT_CACHE_DATA_DIR")
        if env_dir:
            self.DATA_DIR = Path(env_dir)

        env_steam_id = os.getenv("STEAM_USER_ID")
        if env_steam_id:
            self.STEAM_USER_ID = env_steam_id

        self._load_settings()

        if not self.STEAM_PATH:
            self.STEAM_PATH = self._find_steam_path()

    @property
    def settings_file(self) -> Path:
        return self.DATA_DIR / self.SETTINGS_FILE_NAME

    @property
    def database_path(self) -> Path:
        return self.DATA_DIR / self.DATABASE_FILE

    @property
    def backup_dir(self) -> Path:
        return self.DATA_DIR / self.BACKUP_DIR_NAME

    @property
    def legacy_cache_dir(self) -> Path:
        return self.DATA_DIR / self.LEGACY_CACHE_DIR_NAME

    def _load_settings(self) -> None:
        """Load settings from JSON file."""
        # Local import to avoid circular dependency
        from achievement_cache.utils.i18n import t

        if not self.settings_file.exists():
            return

        try:
            with open(self.settings_file, "r", encoding="utf-8") as f:
                data = json.load(f)

            self.UI_LANGUAGE = data.get("ui_language", self.UI_LANGUAGE)
            self.MAX_BACKUPS = data.get("max_backups", self.MAX_BACKUPS)
            self.STEAM_USER_ID = data.get("steam_user_id") or self.STEAM_USER_ID
            self.RA_USERNAME = data.get("ra_username") or self.RA_USERNAME

            steam_path = data.get("steam_path")
            if steam_path:
                self.STEAM_PATH = Path(steam_path)

        except (OSError, json.JSONDecodeError) as e:
            logger.error(t("logs.config.load_error", error=e))

    def save(self) -> None:
        """Save current configuration to JSON file."""
        from achievement_cache.utils.i18n import t

        data = {
            "ui_language": self.UI_LANGUAGE,
            "max_backups": self.MAX_BACKUPS,
            "steam_path": str(self.STEAM_PATH) if self.STEAM_PATH else "",
            "steam_user_id": self.STEAM_USER_ID,
            "ra_username": self.RA_USERNAME,
        }

        try:
            self.DATA_DIR.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error(t("logs.config.save_error", error=e))

    @staticmethod
    def _find_steam_path() -> Path | None:
        """Auto-detect the Steam installation on Linux and Windows."""
        if platform.system() == "Windows":
            candidates = [Path(r"C:\Program Files (x86)\Steam"), Path(r"C:\Program Files\Steam")]
        else:
            candidates = [
                Path.home() / ".steam" / "steam",
                Path.home() / ".local" / "share" / "Steam",
            ]

        for path in candidates:
            if path.exists():
                return path.resolve() if path.is_symlink() else path
        return None


# Global instance
config = Config()
