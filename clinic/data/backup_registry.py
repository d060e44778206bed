"""Backup registry — JSON array of BackupRecord entries, most recent first."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from clinic.exceptions import BackupIOError
from clinic.models.backup_record import BackupRecord

REGISTRY_LIMIT = 50


class BackupRegistry(Protocol):
    """Whole-list read/replace store. Holds no dedup or validity policy."""

    def load(self) -> list[BackupRecord]: ...

    def save(self, records: list[BackupRecord]) -> None: ...


def _records_from_json(data: Any, source: Path) -> list[BackupRecord]:
    if not isinstance(data, list):
        logger.warning(f"Backup registry {source} is not a JSON array, ignoring it")
        return []
    records: list[BackupRecord] = []
    for item in data:
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed registry entry: {item!r}")
            continue
        try:
            records.append(BackupRecord.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed registry entry: {e}")
    return records


class JsonBackupRegistry:
    """Registry persisted as backup_registry.json, created empty on first use."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[BackupRecord]:
        if not self._path.exists():
            try:
                self.save([])
            except BackupIOError:
                pass  # Already logged; an absent registry still reads as empty
            return []
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read backup registry, treating as empty: {e}")
            return []
        return _records_from_json(data, self._path)

    def save(self, records: list[BackupRecord]) -> None:
        tmp = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in records], f, ensure_ascii=False, indent=2)
            tmp.replace(self._path)
        except OSError as e:
            logger.error(f"Failed to save backup registry: {e}")
            tmp.unlink(missing_ok=True)
            raise BackupIOError(f"Failed to save backup registry: {e}") from e


class MemoryBackupRegistry:
    """In-process registry with no backing file."""

    def __init__(self, records: list[BackupRecord] | None = None) -> None:
        self._data: list[dict[str, Any]] = [r.to_dict() for r in records or []]
        self.save_count = 0

    def load(self) -> list[BackupRecord]:
        return [BackupRecord.from_dict(dict(d)) for d in self._data]

    def save(self, records: list[BackupRecord]) -> None:
        self._data = [r.to_dict() for r in records]
        self.save_count += 1
