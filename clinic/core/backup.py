"""Backup manager — database file snapshots tracked in a JSON registry."""

from __future__ import annotations

import shutil
import sqlite3
import sys
import threading
import zipfile
from contextlib import nullcontext, suppress
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from loguru import logger

from clinic.data.backup_registry import REGISTRY_LIMIT, BackupRegistry
from clinic.exceptions import BackupError, BackupIOError, BackupNotFoundError, SourceMissingError
from clinic.logger import EventLog, LoguruEventLog
from clinic.models.backup_record import (
    BACKUP_FORMAT_VERSION,
    DATABASE_TYPE_SQLITE,
    BackupFormat,
    BackupRecord,
    BackupRecordView,
)
from clinic.utils import format_size, iso_timestamp, parse_timestamp, sanitize_timestamp, utc_now

if TYPE_CHECKING:
    from clinic.config import Config
    from clinic.core.database import DatabaseHandle

DEFAULT_KEEP_COUNT = 10

# Layout of archive (with images) backups
ARCHIVE_DATABASE_NAME = "dental_clinic.db"
ARCHIVE_IMAGES_DIR = "dental_images"

_BACKUP_SUFFIXES = (".db", ".zip")


def backup_name_for(path: Path) -> str:
    """Registry name of a backup file: its file name without .db / .zip."""
    if path.suffix in _BACKUP_SUFFIXES:
        return path.stem
    return path.name


def _is_file(path: str) -> bool:
    try:
        return Path(path).is_file()
    except (OSError, ValueError):
        return False


class BackupManager:
    """Creates, lists, deletes and prunes backups of the live database file.

    Every public operation holds ``lock`` for its whole duration. The same
    lock is shared with RestoreManager so only one backup operation runs at
    a time, whichever thread it comes from.
    """

    def __init__(
        self,
        config: Config,
        registry: BackupRegistry,
        database: DatabaseHandle | None = None,
        event_log: EventLog | None = None,
        lock: threading.RLock | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._registry = registry
        self._database = database
        self._events = event_log or LoguruEventLog()
        self._lock = lock or threading.RLock()
        self._clock = clock

    @property
    def backup_root(self) -> Path:
        return self._config.backup_path

    def _ensure_backup_root(self) -> Path:
        root = self.backup_root
        root.mkdir(parents=True, exist_ok=True)
        return root

    # ── Writer ──

    def create_backup(
        self,
        custom_path: str | Path | None = None,
        include_images: bool = False,
    ) -> Path:
        """Copy the live database to a new backup and register it.

        Returns the absolute path of the backup file.
        """
        with self._lock:
            source = Path(self._config.database_path)
            if not source.is_file():
                self._events.log("backup_failed", reason="source_missing", database=str(source))
                raise SourceMissingError(source)

            created_at = iso_timestamp(self._clock())
            if custom_path:
                dest = Path(custom_path).absolute()
                if include_images and dest.suffix != ".zip":
                    dest = dest.with_suffix(".zip")
            else:
                suffix = ".zip" if include_images else ".db"
                dest = self._ensure_backup_root() / f"backup_{sanitize_timestamp(created_at)}{suffix}"
                dest = dest.absolute()

            if dest.exists() and dest.samefile(source):
                self._events.log("backup_failed", reason="destination_is_live", path=str(dest))
                raise BackupIOError(f"Backup destination {dest} is the live database")

            # Written beside the destination, moved into place only once complete
            partial = dest.with_name(f"{dest.name}.partial")
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                if include_images:
                    self._write_archive(source, partial)
                else:
                    self._copy_database(source, partial)
                partial.replace(dest)
                size = dest.stat().st_size
            except (OSError, sqlite3.Error) as e:
                with suppress(OSError):
                    partial.unlink(missing_ok=True)
                self._events.log("backup_failed", reason="io_error", path=str(dest), error=str(e))
                raise BackupIOError(f"Failed to create backup {dest.name}: {e}") from e

            record = BackupRecord(
                name=backup_name_for(dest),
                path=str(dest),
                size_bytes=size,
                created_at=created_at,
                version=BACKUP_FORMAT_VERSION,
                platform=sys.platform,
                database_type=DATABASE_TYPE_SQLITE,
                backup_format=(
                    BackupFormat.SQLITE_WITH_IMAGES if include_images else BackupFormat.SQLITE_ONLY
                ),
                includes_images=include_images,
            )
            self._upsert(record)

            self._events.log(
                "backup_created",
                name=record.name,
                path=record.path,
                size=format_size(size),
                includes_images=include_images,
            )
            return dest

    def _copy_database(self, source: Path, dest: Path) -> None:
        quiet = self._database.quiesce() if self._database is not None else nullcontext()
        with quiet:
            shutil.copyfile(source, dest)

    def _write_archive(self, source: Path, dest: Path) -> None:
        """Write the database and the clinic images folder into a ZIP archive."""
        quiet = self._database.quiesce() if self._database is not None else nullcontext()
        images_dir = self._config.images_dir
        with zipfile.ZipFile(dest, "w", zipfile.ZIP_DEFLATED) as zf:
            with quiet:
                zf.write(source, ARCHIVE_DATABASE_NAME)
            if images_dir and Path(images_dir).is_dir():
                images_dir = Path(images_dir)
                for child in sorted(images_dir.rglob("*")):
                    if child.is_file():
                        zf.write(child, f"{ARCHIVE_IMAGES_DIR}/{child.relative_to(images_dir).as_posix()}")

    def _upsert(self, record: BackupRecord) -> None:
        """Replace the entry with the same name in place, else insert at the head."""
        records = self._registry.load()
        for i, existing in enumerate(records):
            if existing.name == record.name:
                records[i] = record
                self._events.log("registry_entry_updated", name=record.name)
                break
        else:
            records.insert(0, record)
        del records[REGISTRY_LIMIT:]
        self._registry.save(records)

    # ── Lister ──

    def list_backups(self) -> list[BackupRecordView]:
        """List registered backups, newest first, repairing the registry on the way."""
        with self._lock:
            records = self._registry.load()
            valid: list[BackupRecord] = []
            seen: set[str] = set()
            stale = duplicates = 0
            for record in records:
                if not _is_file(record.path):
                    stale += 1
                    continue
                if record.name in seen:
                    duplicates += 1
                    continue
                seen.add(record.name)
                valid.append(record)

            if len(valid) != len(records):
                self._registry.save(valid)
                self._events.log(
                    "registry_cleaned",
                    before=len(records),
                    after=len(valid),
                    stale=stale,
                    duplicates=duplicates,
                )

            return [BackupRecordView(record) for record in valid]

    def find_record(self, name: str) -> BackupRecord | None:
        with self._lock:
            for record in self._registry.load():
                if record.name == name:
                    return record
        return None

    # ── Delete / retention ──

    def delete_backup(self, name: str) -> None:
        """Delete a backup file and its registry entry."""
        with self._lock:
            records = self._registry.load()
            for i, record in enumerate(records):
                if record.name == name:
                    break
            else:
                raise BackupNotFoundError(name)

            try:
                Path(record.path).unlink(missing_ok=True)
            except OSError as e:
                raise BackupIOError(f"Failed to delete backup {name}: {e}") from e

            del records[i]
            self._registry.save(records)
            self._events.log("backup_deleted", name=name, path=record.path)

    def prune(self, keep_count: int = DEFAULT_KEEP_COUNT) -> list[str]:
        """Delete all but the ``keep_count`` newest backups. Returns deleted names."""
        if keep_count < 0:
            raise ValueError(f"keep_count must be >= 0, got {keep_count}")

        with self._lock:
            views = self.list_backups()
            ordered = sorted(views, key=lambda v: parse_timestamp(v.created_at), reverse=True)

            deleted: list[str] = []
            for view in ordered[keep_count:]:
                try:
                    self.delete_backup(view.name)
                    deleted.append(view.name)
                except BackupError as e:
                    self._events.log("prune_delete_failed", name=view.name, error=str(e))

            if deleted:
                logger.debug(f"Pruned backups: {', '.join(deleted)}")
            self._events.log("prune_completed", kept=len(ordered) - len(deleted), deleted=len(deleted))
            return deleted
