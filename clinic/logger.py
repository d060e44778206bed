"""Loguru-based logging setup and the structured event log used by backup services."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

# Events not listed here are logged at INFO
_EVENT_LEVELS: dict[str, str] = {
    "backup_failed": "ERROR",
    "prune_delete_failed": "WARNING",
    "scheduled_backup_failed": "ERROR",
    "restore_rolled_back": "ERROR",
    "restore_rollback_failed": "CRITICAL",
    "registry_entry_updated": "DEBUG",
    "restore_snapshot_taken": "DEBUG",
}


def setup_logger(log_dir: Path | None = None) -> None:
    """Configure loguru with console + rotating file output."""
    logger.remove()

    # Console
    logger.add(
        sys.stderr,
        level="INFO",
        format="<green>{time:HH:mm:ss}</green> | <level>{level:<8}</level> | {message}",
        colorize=True,
    )

    # File
    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_dir / "clinic-backup.log"),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name}:{line} | {message} | {extra}",
            rotation="5 MB",
            retention="7 days",
            encoding="utf-8",
        )


class EventLog(Protocol):
    """Structured observability sink: one named event plus keyword fields."""

    def log(self, event: str, **fields: Any) -> None: ...


class LoguruEventLog:
    """EventLog that forwards to loguru with the fields bound as extras."""

    def log(self, event: str, **fields: Any) -> None:
        level = _EVENT_LEVELS.get(event, "INFO")
        summary = " ".join(f"{k}={v}" for k, v in fields.items())
        logger.bind(event=event, **fields).log(level, f"{event} {summary}".rstrip())
