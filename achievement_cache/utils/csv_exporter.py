# achievement_cache/utils/csv_exporter.py

"""CSV export of the achievement cache database.

Writes one file per table plus a denormalized ``AchievementSummary.csv``
joining users, games, definitions and unlock state. Read-only: the export
never modifies the database.
"""

from __future__ import annotations

import csv
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger("achievecache.csv_exporter")

__all__ = ["CsvDatabaseExporter", "EXPORTED_TABLES", "SUMMARY_FILE_NAME"]

EXPORTED_TABLES: tuple[str, ...] = (
    "Users",
    "Games",
    "AchievementDefinitions",
    "UserGameProgress",
    "UserAchievements",
)

SUMMARY_FILE_NAME = "AchievementSummary.csv"

_SUMMARY_QUERY = """
    SELECT
        u.ProviderName AS Provider,
        u.ExternalUserId AS UserId,
        u.DisplayName AS UserName,
        u.IsCurrentUser AS IsCurrentUser,
        g.GameName AS GameName,
        g.ProviderGameId AS ProviderGameId,
        g.ExternalLibraryId AS ExternalLibraryId,
        ugp.CacheKey AS CacheKey,
        ugp.PlaytimeSeconds AS PlaytimeSeconds,
        ugp.AchievementsUnlocked AS AchievementsUnlocked,
        ugp.TotalAchievements AS TotalAchievements,
        ugp.IsCompleted AS IsCompleted,
        ad.ApiName AS ApiName,
        ad.DisplayName AS AchievementName,
        ad.TrophyType AS TrophyType,
        ad.Points AS Points,
        ad.GlobalPercentUnlocked AS GlobalPercentUnlocked,
        COALESCE(ua.Unlocked, 0) AS Unlocked,
        ua.UnlockTimeUtc AS UnlockTimeUtc
    FROM UserGameProgress ugp
    INNER JOIN Users u ON u.Id = ugp.UserId
    INNER JOIN Games g ON g.Id = ugp.GameId
    LEFT JOIN AchievementDefinitions ad ON ad.GameId = g.Id
    LEFT JOIN UserAchievements ua
      ON ua.AchievementDefinitionId = ad.Id
     AND ua.UserGameProgressId = ugp.Id
    ORDER BY u.ProviderName, g.GameName COLLATE NOCASE, ugp.Id, ad.Id
"""


def _flatten_value(value: Any) -> Any:
    """None becomes an empty cell."""
    return "" if value is None else value


class CsvDatabaseExporter:
    """Exports the cache tables as CSV files into a timestamped folder."""

    @staticmethod
    def _write_query(conn: sqlite3.Connection, query: str, output_path: Path) -> int:
        """Write one query result with a header row.

        Args:
            conn: Open connection.
            query: SELECT statement to dump.
            output_path: Target CSV file.

        Returns:
            Number of data rows written.
        """
        cursor = conn.execute(query)
        headers = [column[0] for column in cursor.description]
        count = 0
        with open(output_path, "w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            writer.writerow(headers)
            for row in cursor:
                writer.writerow([_flatten_value(value) for value in row])
                count += 1
        return count

    def export(self, conn: sqlite3.Connection, directory: Path) -> Path:
        """Export every table and the summary view.

        Args:
            conn: Open connection to the cache database.
            directory: Parent directory; created if missing.

        Returns:
            Path of the created ``achievement_export_<YYYYMMDD_HHMMSS>`` folder.

        Raises:
            OSError: If the folder or a file cannot be written.
        """
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        target = Path(directory) / f"achievement_export_{stamp}"
        target.mkdir(parents=True, exist_ok=True)

        total = 0
        for table in EXPORTED_TABLES:
            total += self._write_query(conn, f"SELECT * FROM {table} ORDER BY Id", target / f"{table}.csv")
        summary_rows = self._write_query(conn, _SUMMARY_QUERY, target / SUMMARY_FILE_NAME)

        logger.info("Exported %d rows (%d summary rows) to %s", total, summary_rows, target)
        return target
