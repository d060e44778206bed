"""Shared fixtures for backup service tests."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from clinic.data.backup_registry import MemoryBackupRegistry

T0 = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)


class RecordingEventLog:
    """EventLog that keeps every event for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def log(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def fields_of(self, event: str) -> list[dict[str, Any]]:
        return [fields for name, fields in self.events if name == event]


class MinuteClock:
    """Returns T0, T0+1min, T0+2min, ... on successive calls."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start - timedelta(minutes=1)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


def make_sqlite_db(path: Path, patients: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    with conn:
        conn.execute("CREATE TABLE IF NOT EXISTS patients (id INTEGER PRIMARY KEY, full_name TEXT)")
        conn.execute("DELETE FROM patients")
        conn.executemany("INSERT INTO patients (full_name) VALUES (?)", [(p,) for p in patients])
    conn.close()


@pytest.fixture
def events() -> RecordingEventLog:
    return RecordingEventLog()


@pytest.fixture
def registry() -> MemoryBackupRegistry:
    return MemoryBackupRegistry()


@pytest.fixture
def tmp_config(tmp_path: Path):
    """Create a mock Config pointing to a temp directory."""
    config = MagicMock()
    config.data_dir = tmp_path
    config.database_path = tmp_path / "dental_clinic.db"
    config.backup_path = tmp_path / "backups"
    config.images_dir = None
    config.verify_before_restore = False
    return config


@pytest.fixture
def live_db(tmp_config) -> Path:
    """A live database file with arbitrary content."""
    path: Path = tmp_config.database_path
    path.write_bytes(b"SQLite format 3\x00" + bytes(range(256)) * 8)
    return path
