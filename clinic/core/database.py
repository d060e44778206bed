"""Live database handle — the one SQLite connection the application keeps open."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import ContextManager, Iterator, Protocol

from loguru import logger


class DatabaseHandle(Protocol):
    """What the backup services need from the application's database connection."""

    @property
    def path(self) -> Path: ...

    def close(self) -> None: ...

    def reopen(self) -> None: ...

    def quiesce(self) -> ContextManager[None]: ...


class SqliteDatabase:
    """Lazily opened sqlite3 connection to the live database file."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug(f"Closed database connection: {self._path.name}")

    def reopen(self) -> None:
        """Drop the current connection and reconnect if the database file exists."""
        self.close()
        if not self._path.exists():
            return
        _ = self.connection
        logger.debug(f"Reopened database connection: {self._path.name}")

    @contextmanager
    def quiesce(self) -> Iterator[None]:
        """Hold the database write lock so the file can be copied consistently.

        Flushes the WAL into the main file first. Does nothing if the
        connection was never opened and the file does not exist.
        """
        if self._conn is None and not self._path.exists():
            yield
            return
        conn = self.connection
        if conn.in_transaction:
            conn.commit()
        conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        finally:
            conn.rollback()

    def table_columns(self, table: str) -> list[str]:
        rows = self.connection.execute(f'PRAGMA table_info("{table}")').fetchall()
        return [row[1] for row in rows]


@dataclass
class IntegrityReport:
    """Result of checking a database file."""

    path: str
    ok: bool
    message: str = ""
    tables: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "ok": self.ok,
            "message": self.message,
            "tables": list(self.tables),
            "tableCount": len(self.tables),
        }


def verify_database_file(path: Path) -> IntegrityReport:
    """Open a database file read-only and run SQLite's integrity check."""
    if not path.is_file():
        return IntegrityReport(path=str(path), ok=False, message="file not found")
    if path.stat().st_size == 0:
        return IntegrityReport(path=str(path), ok=False, message="file is empty")

    conn = None
    try:
        conn = sqlite3.connect(f"{path.absolute().as_uri()}?mode=ro", uri=True)
        tables = [
            row[0]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
        ]
        result = conn.execute("PRAGMA integrity_check").fetchone()
    except sqlite3.DatabaseError as e:
        return IntegrityReport(path=str(path), ok=False, message=str(e))
    finally:
        if conn is not None:
            conn.close()

    if result is None or result[0] != "ok":
        detail = result[0] if result else "no result"
        return IntegrityReport(path=str(path), ok=False, message=detail, tables=tables)
    if not tables:
        return IntegrityReport(path=str(path), ok=False, message="database contains no tables")
    return IntegrityReport(path=str(path), ok=True, message="ok", tables=tables)
