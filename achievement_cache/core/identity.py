# achievement_cache/core/identity.py

"""Provider name normalization and current-user resolution.

Every save is attributed to the account the plugin is tracking on that
provider. The external id comes from the live session when one is known,
then from saved settings, and finally from the ``legacy`` sentinel so a
record is never dropped for lack of an identity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from achievement_cache.core.steam_session import SteamSessionReader

if TYPE_CHECKING:
    from achievement_cache.config import Config

logger = logging.getLogger("achievecache.identity")

__all__ = [
    "KNOWN_PROVIDERS",
    "LEGACY_USER_ID",
    "UNKNOWN_PROVIDER",
    "CurrentUserResolver",
    "ResolvedUser",
    "normalize_provider_name",
]

KNOWN_PROVIDERS: tuple[str, ...] = (
    "Steam",
    "RetroAchievements",
    "RPCS3",
    "ShadPS4",
    "PSN",
    "Xbox",
    "GOG",
    "Epic",
    "Manual",
)

# Substring hints, checked in order; first match wins
_PROVIDER_HINTS: tuple[tuple[str, str], ...] = (
    ("retro", "RetroAchievements"),
    ("steam", "Steam"),
    ("rpcs3", "RPCS3"),
    ("shadps4", "ShadPS4"),
    ("playstation", "PSN"),
    ("psn", "PSN"),
    ("xbox", "Xbox"),
    ("gog", "GOG"),
    ("epic", "Epic"),
    ("manual", "Manual"),
)

UNKNOWN_PROVIDER = "Unknown"
LEGACY_USER_ID = "legacy"


def normalize_provider_name(provider_name: str | None) -> str:
    """Map a free-form provider label to its canonical name.

    Exact (case-insensitive) match on a known provider first, then a
    substring guess ("Steam Web API" -> "Steam"), else ``"Unknown"``.
    """
    if not provider_name or not provider_name.strip():
        return UNKNOWN_PROVIDER

    value = provider_name.strip()
    folded = value.casefold()
    for known in KNOWN_PROVIDERS:
        if known.casefold() == folded:
            return known

    for hint, canonical in _PROVIDER_HINTS:
        if hint in folded:
            return canonical

    return UNKNOWN_PROVIDER


@dataclass(frozen=True)
class ResolvedUser:
    """The account a save is attributed to."""

    provider_name: str
    external_user_id: str
    display_name: str | None = None
    friend_source: str | None = None


class CurrentUserResolver:
    """Resolves the acting account for a provider.

    Steam: live login session, then ``STEAM_USER_ID``.
    RetroAchievements: ``RA_USERNAME``.
    Everything else (emulators, manual data): the ``legacy`` sentinel.
    """

    def __init__(
        self,
        settings: Config | None = None,
        steam_session: SteamSessionReader | None = None,
    ):
        """Initialize the resolver.

        Args:
            settings: Saved configuration; the global config when None.
            steam_session: Live Steam session reader; reads
                ``loginusers.vdf`` under ``settings.STEAM_PATH`` when None.
        """
        if settings is None:
            from achievement_cache.config import config as settings
        if steam_session is None:
            steam_session = SteamSessionReader(getattr(settings, "STEAM_PATH", None))
        self.settings = settings
        self.steam_session = steam_session

    def resolve(self, provider_name: str) -> ResolvedUser:
        """Resolve the acting user for an already-normalized provider name."""
        external_id: str | None = None
        display_name: str | None = None

        if provider_name == "Steam":
            if self.steam_session is not None:
                session_user = self.steam_session.get_current_user()
                if session_user is not None:
                    external_id = session_user.steam_id_64
                    display_name = session_user.persona_name or None
            if not external_id:
                external_id = getattr(self.settings, "STEAM_USER_ID", None)
        elif provider_name == "RetroAchievements":
            external_id = getattr(self.settings, "RA_USERNAME", None)

        external_id = (external_id or "").strip()
        if not external_id:
            logger.debug("No identity for provider %s, using '%s'", provider_name, LEGACY_USER_ID)
            external_id = LEGACY_USER_ID

        return ResolvedUser(
            provider_name=provider_name,
            external_user_id=external_id,
            display_name=display_name or external_id,
        )
