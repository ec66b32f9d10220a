# achievement_cache/core/steam_session.py

"""
Steam login session reader.

Reads ``<steam>/config/loginusers.vdf`` to find the account that last signed
in to the local Steam client. Used as the live-session source of the Steam
identity before falling back to the saved settings value.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import vdf

from achievement_cache.utils.i18n import t

logger = logging.getLogger("achievecache.steam_session")

__all__ = ["SteamLoginUser", "SteamSessionReader", "STEAM_ID_BASE"]

# Steam ID conversion constant
STEAM_ID_BASE = 76561197960265728


@dataclass(frozen=True)
class SteamLoginUser:
    """One entry of loginusers.vdf."""

    steam_id_64: str
    account_name: str
    persona_name: str
    most_recent: bool
    timestamp: int

    @property
    def account_id(self) -> int:
        """The short 32-bit account id (userdata folder name)."""
        return int(self.steam_id_64) - STEAM_ID_BASE


class SteamSessionReader:
    """Resolves the most recent local Steam login.

    The parsed result is cached per reader; call :meth:`refresh` after the
    user switches accounts.
    """

    def __init__(self, steam_path: Path | None):
        """Initialize the reader.

        Args:
            steam_path: Steam installation root, or None when Steam is not installed.
        """
        self.steam_path = steam_path
        self._users: list[SteamLoginUser] | None = None

    @property
    def loginusers_path(self) -> Path | None:
        if not self.steam_path:
            return None
        return Path(self.steam_path) / "config" / "loginusers.vdf"

    def refresh(self) -> None:
        self._users = None

    def load_users(self) -> list[SteamLoginUser]:
        """Parse loginusers.vdf.

        Returns:
            All well-formed entries; empty when the file is missing or unreadable.
        """
        if self._users is not None:
            return self._users

        path = self.loginusers_path
        users: list[SteamLoginUser] = []
        if path is None or not path.exists():
            self._users = users
            return users

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = vdf.load(f)
        except (OSError, SyntaxError) as e:
            logger.warning(t("logs.steam_session.read_error", path=path, error=e))
            self._users = users
            return users

        section = data.get("users") or data.get("Users") or {}
        for steam_id, entry in section.items():
            if not str(steam_id).isdigit() or not isinstance(entry, dict):
                continue
            lowered = {str(k).lower(): v for k, v in entry.items()}
            try:
                timestamp = int(lowered.get("timestamp", 0) or 0)
            except ValueError:
                timestamp = 0
            users.append(
                SteamLoginUser(
                    steam_id_64=str(steam_id),
                    account_name=str(lowered.get("accountname", "")),
                    persona_name=str(lowered.get("personaname", "")),
                    most_recent=str(lowered.get("mostrecent", "0")) == "1",
                    timestamp=timestamp,
                )
            )

        self._users = users
        return users

    def get_current_user(self) -> SteamLoginUser | None:
        """The MostRecent login, else the newest by timestamp."""
        users = self.load_users()
        if not users:
            return None
        for user in users:
            if user.most_recent:
                return user
        return max(users, key=lambda u: u.timestamp)

    def get_cached_steam_id64(self) -> str | None:
        user = self.get_current_user()
        return user.steam_id_64 if user else None
