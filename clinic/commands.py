"""Backup commands — the request/response surface the UI layer calls into."""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from clinic.core.database import verify_database_file

if TYPE_CHECKING:
    from clinic.context import AppContext

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


class BackupCommands:
    """Maps ``backup.*`` commands onto the backup services.

    Payload keys may be camelCase (``customPath``) as sent by the UI or
    snake_case.
    """

    def __init__(self, ctx: AppContext) -> None:
        self._ctx = ctx
        self._handlers: dict[str, Callable[..., Any]] = {
            "backup.create": self.create,
            "backup.restore": self.restore,
            "backup.list": self.list_backups,
            "backup.delete": self.delete,
            "backup.scheduleAutomatic": self.schedule_automatic,
            "backup.verify": self.verify,
        }

    @property
    def commands(self) -> list[str]:
        return list(self._handlers)

    def dispatch(self, command: str, **payload: Any) -> Any:
        handler = self._handlers.get(command)
        if handler is None:
            raise ValueError(f"Unknown command: {command}")
        return handler(**{_snake_case(k): v for k, v in payload.items()})

    def create(self, custom_path: str | None = None, include_images: bool = False) -> str:
        path = self._ctx.backup_manager.create_backup(custom_path, include_images=include_images)
        return str(path)

    def restore(self, path_or_name: str) -> bool:
        """Restore, then reopen the live connection whatever the outcome."""
        try:
            return self._ctx.restore_manager.restore_backup(path_or_name)
        finally:
            self._ctx.database.reopen()

    def list_backups(self) -> list[dict[str, Any]]:
        return [view.to_dict() for view in self._ctx.backup_manager.list_backups()]

    def delete(self, name: str) -> None:
        self._ctx.backup_manager.delete_backup(name)

    def schedule_automatic(self, frequency: str) -> None:
        self._ctx.scheduler.start(frequency)
        self._ctx.config.auto_backup_frequency = frequency

    def verify(self, path: str) -> dict[str, Any]:
        return verify_database_file(Path(path)).to_dict()
