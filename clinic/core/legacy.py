"""Legacy backup import — JSON table exports written by older clinic versions.

A legacy backup is a single JSON document::

    {
      "metadata": {"created_at": "...", "version": "1.0.0", "platform": "win32"},
      "patients": [...],
      "appointments": [...],
      "payments": [...],        # optional
      "treatments": [...],      # optional
      "settings": {...}         # optional
    }

Restoring one replaces the rows of each table present in the document.
Only columns the live table still has are written, so exports from older
schemas import into newer ones.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from loguru import logger

from clinic.core.database import SqliteDatabase
from clinic.exceptions import BackupCorruptError, BackupIOError

LEGACY_TABLES = ("patients", "appointments", "payments", "treatments")
SETTINGS_TABLE = "settings"
_REQUIRED_SECTIONS = ("metadata", "patients", "appointments")


def _sql_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


class LegacyBackupImporter:
    """Reads legacy JSON backups and writes their rows into the live database."""

    def __init__(self, database: SqliteDatabase) -> None:
        self._database = database

    def load(self, path: Path) -> dict[str, Any]:
        """Read and validate a legacy backup file."""
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BackupCorruptError(f"Legacy backup {path.name} is not valid JSON: {e}") from e
        except OSError as e:
            raise BackupIOError(f"Failed to read legacy backup {path.name}: {e}") from e

        if not isinstance(data, dict):
            raise BackupCorruptError(f"Legacy backup {path.name} is not a JSON object")
        missing = [key for key in _REQUIRED_SECTIONS if data.get(key) is None]
        if missing:
            raise BackupCorruptError(
                f"Legacy backup {path.name} is missing required sections: {', '.join(missing)}"
            )

        meta = data["metadata"] if isinstance(data["metadata"], dict) else {}
        logger.info(
            f"Legacy backup {path.name}: created {meta.get('created_at', '?')}, "
            f"version {meta.get('version', '?')}, platform {meta.get('platform', '?')}"
        )
        return data

    def apply(self, data: dict[str, Any]) -> dict[str, int]:
        """Replace table contents with the backup's rows in one transaction.

        Returns the number of rows written per table.
        """
        conn = self._database.connection
        counts: dict[str, int] = {}
        with conn:
            for table in LEGACY_TABLES:
                rows = data.get(table)
                if not isinstance(rows, list):
                    continue
                columns = self._database.table_columns(table)
                if not columns:
                    logger.warning(f"Table '{table}' not in live database, skipping legacy rows")
                    continue
                conn.execute(f'DELETE FROM "{table}"')
                counts[table] = self._insert_rows(conn, table, columns, rows)

            settings = data.get(SETTINGS_TABLE)
            if isinstance(settings, dict):
                columns = self._database.table_columns(SETTINGS_TABLE)
                if columns:
                    conn.execute(f'DELETE FROM "{SETTINGS_TABLE}"')
                    counts[SETTINGS_TABLE] = self._insert_rows(conn, SETTINGS_TABLE, columns, [settings])

        logger.info(
            "Legacy rows restored: " + ", ".join(f"{t}={n}" for t, n in counts.items())
        )
        return counts

    @staticmethod
    def _insert_rows(
        conn: sqlite3.Connection,
        table: str,
        columns: list[str],
        rows: list[Any],
    ) -> int:
        written = 0
        for row in rows:
            if not isinstance(row, dict):
                continue
            keys = [key for key in row if key in columns]
            if not keys:
                continue
            column_sql = ", ".join(f'"{key}"' for key in keys)
            placeholders = ", ".join("?" for _ in keys)
            conn.execute(
                f'INSERT INTO "{table}" ({column_sql}) VALUES ({placeholders})',
                [_sql_value(row[key]) for key in keys],
            )
            written += 1
        return written
