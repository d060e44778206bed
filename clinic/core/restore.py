"""Restore manager — swap a backup into the live database with snapshot and rollback."""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from clinic.core.backup import ARCHIVE_DATABASE_NAME, ARCHIVE_IMAGES_DIR
from clinic.core.database import verify_database_file
from clinic.exceptions import (
    BackupCorruptError,
    BackupError,
    BackupIOError,
    BackupNotFoundError,
    RestoreFailedError,
    RollbackFailedError,
)
from clinic.logger import EventLog, LoguruEventLog

if TYPE_CHECKING:
    from clinic.config import Config
    from clinic.core.database import DatabaseHandle
    from clinic.core.legacy import LegacyBackupImporter
    from clinic.data.backup_registry import BackupRegistry


class BackupKind:
    DATABASE = "database"
    ARCHIVE = "archive"  # ZIP with database + images
    LEGACY = "legacy"  # JSON table export


@dataclass
class ResolvedBackup:
    """A restore target resolved to a concrete file."""

    path: Path
    kind: str


def _kind_for(path: Path) -> str:
    if path.suffix == ".zip":
        return BackupKind.ARCHIVE
    if path.suffix == ".json":
        return BackupKind.LEGACY
    return BackupKind.DATABASE


def _probe(base: Path) -> ResolvedBackup | None:
    """Find the backup file behind ``base``: itself, then .zip, .db, legacy .json."""
    if not base.name:
        return None
    if base.is_file():
        return ResolvedBackup(base, _kind_for(base))
    for suffix, kind in ((".zip", BackupKind.ARCHIVE), (".db", BackupKind.DATABASE)):
        candidate = base.with_name(base.name + suffix)
        if candidate.is_file():
            return ResolvedBackup(candidate, kind)
    if base.suffix in (".db", ".zip"):
        legacy = base.with_suffix(".json")
    else:
        legacy = base.with_name(base.name + ".json")
    if legacy.is_file():
        return ResolvedBackup(legacy, BackupKind.LEGACY)
    return None


class _SafetySnapshot:
    """Copy of the live database (and images folder) taken before a restore mutates them."""

    def __init__(self, live_path: Path, images_dir: Path | None) -> None:
        self.live_path = live_path
        self.images_dir = images_dir
        self.path: Path | None = None
        self.images_aside: Path | None = None
        self._live_existed = False
        self._images_replaced = False

    def take(self) -> None:
        self._live_existed = self.live_path.exists()
        if not self._live_existed:
            return
        fd, name = tempfile.mkstemp(
            prefix=f"{self.live_path.stem}.pre-restore-",
            suffix=self.live_path.suffix or ".db",
            dir=self.live_path.parent,
        )
        os.close(fd)
        self.path = Path(name)
        try:
            shutil.copyfile(self.live_path, self.path)
        except OSError:
            self.path.unlink(missing_ok=True)
            self.path = None
            raise

    def set_images_aside(self) -> None:
        """Move the current images folder out of the way before archived images land."""
        if self.images_dir is None:
            raise BackupError("No images folder configured to replace")
        self._images_replaced = True
        if not self.images_dir.exists():
            return
        aside = self.images_dir.with_name(f"{self.images_dir.name}.pre-restore")
        if aside.exists():
            shutil.rmtree(aside)
        self.images_dir.rename(aside)
        self.images_aside = aside

    def roll_back(self) -> None:
        if self.path is not None:
            shutil.copyfile(self.path, self.live_path)
        elif not self._live_existed:
            self.live_path.unlink(missing_ok=True)

        if self._images_replaced and self.images_dir is not None:
            if self.images_dir.exists():
                shutil.rmtree(self.images_dir)
            if self.images_aside is not None:
                self.images_aside.rename(self.images_dir)
                self.images_aside = None
        self.discard()

    def discard(self) -> None:
        if self.path is not None:
            self.path.unlink(missing_ok=True)
            self.path = None
        if self.images_aside is not None:
            shutil.rmtree(self.images_aside, ignore_errors=True)
            self.images_aside = None


class RestoreManager:
    """Restores backups into the live database file.

    Steps: resolve the target, close the live connection (which folds any
    WAL content into the main file), snapshot the live file, swap in the
    backup, then drop the snapshot. If the swap fails the snapshot is copied
    back and RestoreFailedError is raised.
    Reopening the connection afterwards is the caller's job.
    """

    def __init__(
        self,
        config: Config,
        registry: BackupRegistry,
        database: DatabaseHandle | None = None,
        importer: LegacyBackupImporter | None = None,
        event_log: EventLog | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._database = database
        self._importer = importer
        self._events = event_log or LoguruEventLog()
        self._lock = lock or threading.RLock()

    def resolve(self, path_or_name: str | Path) -> ResolvedBackup:
        """Turn a registry name or a path (with or without extension) into a backup file.

        Lookup order: registry name, the backup directory (relative targets),
        then the target as given.
        """
        target = str(path_or_name).strip()
        if not target:
            raise BackupNotFoundError(target)

        candidates: list[Path] = []
        for record in self._registry.load():
            if record.name == target:
                candidates.append(Path(record.path))
                break
        if not Path(target).is_absolute():
            candidates.append(Path(self._config.backup_path) / target)
        candidates.append(Path(target))

        for base in candidates:
            found = _probe(base)
            if found is not None:
                return found
        raise BackupNotFoundError(target)

    def restore_backup(self, path_or_name: str | Path) -> bool:
        """Replace the live database with a backup. Returns True or raises."""
        with self._lock:
            backup = self.resolve(path_or_name)
            self._events.log("restore_started", backup=str(backup.path), kind=backup.kind)

            legacy_data = None
            if backup.kind == BackupKind.LEGACY:
                if self._importer is None:
                    raise BackupError(f"Cannot restore legacy backup {backup.path.name}: no database importer")
                legacy_data = self._importer.load(backup.path)
            elif backup.kind == BackupKind.DATABASE and self._config.verify_before_restore:
                report = verify_database_file(backup.path)
                if not report.ok:
                    raise BackupCorruptError(f"Backup {backup.path.name} failed integrity check: {report.message}")

            live_path = Path(self._config.database_path)
            snapshot = _SafetySnapshot(live_path, self._config.images_dir)
            self._close_database()
            try:
                snapshot.take()
            except OSError as e:
                raise BackupIOError(f"Could not snapshot live database before restore: {e}") from e
            if snapshot.path is not None:
                self._events.log("restore_snapshot_taken", snapshot=str(snapshot.path))

            try:
                if backup.kind == BackupKind.DATABASE:
                    self._swap_database(backup.path)
                elif backup.kind == BackupKind.ARCHIVE:
                    self._restore_archive(backup.path, snapshot)
                else:
                    self._events.log("legacy_restore", backup=str(backup.path))
                    self._importer.apply(legacy_data)
            except Exception as e:
                self._roll_back(backup.path, snapshot, e)

            snapshot.discard()
            self._events.log("restore_completed", backup=str(backup.path), kind=backup.kind)
            return True

    def _close_database(self) -> None:
        if self._database is not None:
            self._database.close()

    def _swap_database(self, source: Path) -> None:
        live_path = Path(self._config.database_path)
        live_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, live_path)
        logger.debug(f"Live database replaced from {source.name}")

    def _restore_archive(self, archive: Path, snapshot: _SafetySnapshot) -> None:
        with tempfile.TemporaryDirectory(prefix="clinic_restore_") as tmp_dir:
            tmp = Path(tmp_dir)
            with zipfile.ZipFile(archive, "r") as zf:
                zf.extractall(tmp)

            extracted_db = tmp / ARCHIVE_DATABASE_NAME
            if not extracted_db.is_file():
                found = sorted(tmp.glob("*.db"))
                if not found:
                    raise BackupCorruptError(f"Archive {archive.name} contains no database file")
                extracted_db = found[0]
            self._swap_database(extracted_db)

            extracted_images = tmp / ARCHIVE_IMAGES_DIR
            images_dir = self._config.images_dir
            if images_dir is not None and extracted_images.is_dir():
                snapshot.set_images_aside()
                shutil.copytree(extracted_images, Path(images_dir))

    def _roll_back(self, backup_path: Path, snapshot: _SafetySnapshot, error: Exception) -> None:
        """Put the pre-restore state back and raise; never returns."""
        try:
            self._close_database()
            snapshot.roll_back()
        except OSError as rollback_error:
            self._events.log(
                "restore_rollback_failed",
                backup=str(backup_path),
                error=str(error),
                rollback_error=str(rollback_error),
                snapshot=str(snapshot.path),
            )
            raise RollbackFailedError(
                backup_path,
                f"{error}; rollback also failed: {rollback_error}",
                snapshot.path,
            ) from error

        self._events.log("restore_rolled_back", backup=str(backup_path), error=str(error))
        raise RestoreFailedError(backup_path, str(error)) from error
