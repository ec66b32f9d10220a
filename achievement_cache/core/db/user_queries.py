"""Current-user rows and the in-memory provider -> user id cache."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from achievement_cache.core.db.models import UserRow, normalize_db_text
from achievement_cache.core.identity import ResolvedUser

logger = logging.getLogger("achievecache.database")

__all__ = ["CachedCurrentUser", "UserQueryMixin"]


@dataclass(frozen=True)
class CachedCurrentUser:
    external_user_id: str
    user_id: int


class UserQueryMixin:
    """Mixin providing current-user upsert and lookup.

    Requires ConnectionBase attributes: conn, _lock.
    Requires attribute ``_current_users: dict[str, CachedCurrentUser]``.
    """

    _current_users: dict[str, CachedCurrentUser]

    def get_current_users(self) -> list[UserRow]:
        """All rows flagged as current user, one per provider at most."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM Users WHERE IsCurrentUser = 1 ORDER BY ProviderName, Id"
            ).fetchall()
        return [UserRow.from_row(row) for row in rows]

    def _on_closed(self) -> None:
        self._current_users.clear()

    def _upsert_current_user(self, conn: sqlite3.Connection, user: ResolvedUser, now_iso: str) -> int:
        """Make ``user`` the provider's current user and return its row id.

        A cached id is only trusted after checking the row still exists and
        still carries the current flag; the table may have been cleared or
        the enclosing transaction rolled back since it was cached.

        Args:
            conn: Connection inside an open transaction.
            user: The resolved acting user.
            now_iso: Timestamp for created/updated columns.

        Returns:
            The Users.Id of the current user.
        """
        cached = self._current_users.get(user.provider_name)
        if cached is not None and cached.external_user_id.casefold() == user.external_user_id.casefold():
            row = conn.execute("SELECT IsCurrentUser FROM Users WHERE Id = ?", (cached.user_id,)).fetchone()
            if row is not None and row["IsCurrentUser"]:
                return cached.user_id
            self._current_users.pop(user.provider_name, None)

        display_name = normalize_db_text(user.display_name)
        friend_source = normalize_db_text(user.friend_source)

        existing = conn.execute(
            "SELECT * FROM Users WHERE ProviderName = ? AND ExternalUserId = ? LIMIT 1",
            (user.provider_name, user.external_user_id),
        ).fetchone()

        if existing is not None and existing["IsCurrentUser"]:
            user_id = existing["Id"]
            if (existing["DisplayName"], existing["FriendSource"]) != (display_name, friend_source):
                conn.execute(
                    "UPDATE Users SET DisplayName = ?, FriendSource = ?, UpdatedUtc = ? WHERE Id = ?",
                    (display_name, friend_source, now_iso, user_id),
                )
        else:
            # Move the flag: clear it first so the partial unique index never sees two
            conn.execute(
                "UPDATE Users SET IsCurrentUser = 0, UpdatedUtc = ? WHERE ProviderName = ? AND IsCurrentUser = 1",
                (now_iso, user.provider_name),
            )
            conn.execute(
                """
                INSERT OR IGNORE INTO Users
                    (ProviderName, ExternalUserId, DisplayName, IsCurrentUser, FriendSource, CreatedUtc, UpdatedUtc)
                VALUES (?, ?, ?, 0, ?, ?, ?)
                """,
                (user.provider_name, user.external_user_id, display_name, friend_source, now_iso, now_iso),
            )
            user_id = conn.execute(
                "SELECT Id FROM Users WHERE ProviderName = ? AND ExternalUserId = ? LIMIT 1",
                (user.provider_name, user.external_user_id),
            ).fetchone()["Id"]
            conn.execute(
                "UPDATE Users SET DisplayName = ?, FriendSource = ?, IsCurrentUser = 1, UpdatedUtc = ? WHERE Id = ?",
                (display_name, friend_source, now_iso, user_id),
            )
            logger.debug("Current %s user is now %s (id %d)", user.provider_name, user.external_user_id, user_id)

        self._current_users[user.provider_name] = CachedCurrentUser(user.external_user_id, user_id)
        return user_id
