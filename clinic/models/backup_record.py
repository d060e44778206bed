"""Backup record models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from clinic.utils import format_size

BACKUP_FORMAT_VERSION = "4.0.0"
DATABASE_TYPE_SQLITE = "sqlite"


class BackupFormat:
    SQLITE_ONLY = "sqlite_only"
    SQLITE_WITH_IMAGES = "sqlite_with_images"
    HYBRID = "hybrid"  # Legacy multi-table JSON export

    CURRENT = (SQLITE_ONLY, SQLITE_WITH_IMAGES)


_KNOWN_KEYS = {
    "name",
    "path",
    "size",
    "size_bytes",
    "created_at",
    "version",
    "platform",
    "database_type",
    "backup_format",
    "includes_images",
}


@dataclass
class BackupRecord:
    """One registry entry (written as an element of backup_registry.json)."""

    name: str
    path: str
    size_bytes: int = 0
    created_at: str = ""  # ISO datetime
    version: str = ""
    platform: str = ""
    database_type: str = ""
    backup_format: str = ""  # Empty for entries written by old producers
    includes_images: bool = False
    extra: dict[str, Any] = field(default_factory=dict)  # Unknown keys, kept on rewrite

    @property
    def is_current_format(self) -> bool:
        return self.backup_format in BackupFormat.CURRENT

    @property
    def is_legacy_format(self) -> bool:
        return self.backup_format in ("", BackupFormat.HYBRID) or self.path.endswith(".json")

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "name": self.name,
                "path": self.path,
                "size": self.size_bytes,
                "created_at": self.created_at,
                "version": self.version,
                "platform": self.platform,
                "database_type": self.database_type,
                "backup_format": self.backup_format,
                "includes_images": self.includes_images,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupRecord:
        """Build a record from JSON, tolerating missing fields from older entries."""
        if "name" not in data or "path" not in data:
            raise KeyError("registry entry needs 'name' and 'path'")
        size = data.get("size", data.get("size_bytes", 0))
        return cls(
            name=str(data["name"]),
            path=str(data["path"]),
            size_bytes=int(size or 0),
            created_at=str(data.get("created_at") or ""),
            version=str(data.get("version") or ""),
            platform=str(data.get("platform") or ""),
            database_type=str(data.get("database_type") or ""),
            backup_format=str(data.get("backup_format") or ""),
            includes_images=bool(
                data.get("includes_images")
                or data.get("backup_format") == BackupFormat.SQLITE_WITH_IMAGES
            ),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )


@dataclass
class BackupRecordView:
    """A listed backup, enriched for display."""

    record: BackupRecord
    formatted_size: str = ""

    def __post_init__(self) -> None:
        if not self.formatted_size:
            self.formatted_size = format_size(self.record.size_bytes)

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def path(self) -> str:
        return self.record.path

    @property
    def created_at(self) -> str:
        return self.record.created_at

    @property
    def is_current_format(self) -> bool:
        return self.record.is_current_format

    @property
    def is_legacy_format(self) -> bool:
        return self.record.is_legacy_format

    @property
    def includes_images(self) -> bool:
        return self.record.includes_images

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_dict()
        data.update(
            {
                "formattedSize": self.formatted_size,
                "isCurrentFormat": self.is_current_format,
                "isLegacyFormat": self.is_legacy_format,
                "includesImages": self.includes_images,
            }
        )
        return data
