"""Application context — service container for dependency injection."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clinic.config import Config
    from clinic.core.backup import BackupManager
    from clinic.core.database import SqliteDatabase
    from clinic.core.restore import RestoreManager
    from clinic.core.scheduler import BackupScheduler
    from clinic.data.backup_registry import BackupRegistry
    from clinic.logger import EventLog


@dataclass
class AppContext:
    """
    Central service container.

    Owns the shared operation lock and the scheduler, so the host can stop
    scheduled work on shutdown through ``close()``.
    """

    config: Config
    database: SqliteDatabase
    registry: BackupRegistry
    event_log: EventLog

    backup_manager: BackupManager
    restore_manager: RestoreManager
    scheduler: BackupScheduler

    lock: threading.RLock = field(default_factory=threading.RLock)

    def close(self) -> None:
        self.scheduler.stop()
        self.database.close()
