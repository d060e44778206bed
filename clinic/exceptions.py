"""Backup subsystem exceptions."""

from __future__ import annotations

from pathlib import Path


class BackupError(Exception):
    """Base exception for all backup/restore failures."""


class SourceMissingError(BackupError):
    """The live database file does not exist, so there is nothing to back up."""

    def __init__(self, database_path: Path) -> None:
        self.database_path = database_path
        super().__init__(f"Source database missing: {database_path}")


class BackupNotFoundError(BackupError):
    """A restore target or registry name does not resolve to a backup."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f"Backup not found: {target}")


class BackupCorruptError(BackupError):
    """A backup file exists but failed validation."""


class BackupIOError(BackupError):
    """A copy, delete or write step failed."""


class RestoreFailedError(BackupIOError):
    """The swap phase of a restore failed and the live database was rolled back."""

    def __init__(self, backup_path: Path, reason: str, rolled_back: bool = True) -> None:
        self.backup_path = backup_path
        self.rolled_back = rolled_back
        state = "live database preserved" if rolled_back else "live database NOT restored"
        super().__init__(f"Restore from {backup_path.name} failed ({state}): {reason}")


class RollbackFailedError(RestoreFailedError):
    """The rollback after a failed restore also failed.

    The live database may be damaged. The safety snapshot is kept on disk at
    ``snapshot_path`` so an operator can put it back by hand.
    """

    def __init__(self, backup_path: Path, reason: str, snapshot_path: Path | None) -> None:
        self.snapshot_path = snapshot_path
        super().__init__(backup_path, reason, rolled_back=False)
        if snapshot_path is not None:
            self.args = (f"{self.args[0]}; safety snapshot kept at {snapshot_path}",)
