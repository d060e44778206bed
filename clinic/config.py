"""Clinic configuration — config.json in the data directory, merged over defaults."""

from __future__ import annotations

import copy
import json
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

_instance: "Config | None" = None

_DEFAULT_DATA_DIR = Path.home() / "Documents" / "ClinicBackup"

CONFIG_FILENAME = "config.json"
DATABASE_FILENAME = "dental_clinic.db"
REGISTRY_FILENAME = "backup_registry.json"
FREQUENCIES = ("hourly", "daily", "weekly")


def get_config() -> Config:
    """Process-wide Config for the default data directory."""
    global _instance
    if _instance is None:
        _instance = Config()
    return _instance


def reset_config() -> None:
    """Forget the process-wide Config (tests)."""
    global _instance
    _instance = None


def _merge_into(target: dict, overrides: dict) -> None:
    for key, value in overrides.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[key] = value


class Config:
    """Settings of the backup subsystem, persisted as JSON.

    Values are addressed by dot paths (``backup.keep_count``). Every ``set``
    writes the file unless it happens inside ``batch_update()``.
    """

    _DEFAULTS: dict[str, Any] = {
        "database_path": "",
        "backup_path": "",
        "images_dir": "",
        "backup": {
            "auto_frequency": "",
            "keep_count": 10,
            "verify_before_restore": False,
        },
    }

    def __init__(self, config_dir: Path | None = None) -> None:
        self._dir = config_dir or _DEFAULT_DATA_DIR
        self._file = self._dir / CONFIG_FILENAME
        self._write_lock = threading.Lock()
        self._batch_depth = 0
        self._data: dict[str, Any] = self._read()

    def _read(self) -> dict[str, Any]:
        data = copy.deepcopy(self._DEFAULTS)
        if not self._file.exists():
            return data
        try:
            with open(self._file, encoding="utf-8") as f:
                stored = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable {self._file.name}, defaults in effect: {e}")
            return data
        if isinstance(stored, dict):
            _merge_into(data, stored)
        else:
            logger.warning(f"Ignoring {self._file.name}: top level is not an object")
        return data

    def reload(self) -> None:
        self._data = self._read()

    def _write(self) -> None:
        if self._batch_depth:
            return
        with self._write_lock:
            tmp = self._file.with_suffix(".tmp")
            try:
                self._dir.mkdir(parents=True, exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(self._data, f, ensure_ascii=False, indent=2)
                tmp.replace(self._file)
            except OSError as e:
                logger.error(f"Could not write {self._file}: {e}")
                if tmp.exists():
                    tmp.unlink(missing_ok=True)

    @contextmanager
    def batch_update(self) -> Iterator[None]:
        """Collect several ``set`` calls into one write. Nests."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            self._write()

    # ── Dot-path access ──

    def _parent_of(self, key: str, create: bool) -> tuple[dict[str, Any] | None, str]:
        *parents, leaf = key.split(".")
        node: Any = self._data
        for part in parents:
            child = node.get(part) if isinstance(node, dict) else None
            if not isinstance(child, dict):
                if not create:
                    return None, leaf
                child = node[part] = {}
            node = child
        return node, leaf

    def get(self, key: str, default: Any = None) -> Any:
        node, leaf = self._parent_of(key, create=False)
        if node is None or leaf not in node:
            return default
        return node[leaf]

    def set(self, key: str, value: Any) -> None:
        node, leaf = self._parent_of(key, create=True)
        node[leaf] = value
        self._write()

    def _path_setting(self, key: str) -> Path | None:
        raw = self.get(key, "")
        return Path(raw) if raw else None

    # ── Locations ──

    @property
    def data_dir(self) -> Path:
        return self._dir

    @property
    def database_path(self) -> Path:
        """The live database file."""
        return self._path_setting("database_path") or self._dir / DATABASE_FILENAME

    @database_path.setter
    def database_path(self, value: Path | None) -> None:
        self.set("database_path", str(value) if value else "")

    @property
    def backup_path(self) -> Path:
        """Directory that receives backups created without a custom destination."""
        return self._path_setting("backup_path") or self._dir / "backups"

    @backup_path.setter
    def backup_path(self, value: Path | None) -> None:
        self.set("backup_path", str(value) if value else "")

    @property
    def registry_path(self) -> Path:
        return self._dir / REGISTRY_FILENAME

    @property
    def images_dir(self) -> Path | None:
        """Clinic images folder bundled into archive backups, if configured."""
        return self._path_setting("images_dir")

    @images_dir.setter
    def images_dir(self, value: Path | None) -> None:
        self.set("images_dir", str(value) if value else "")

    # ── Backup policy ──

    @property
    def auto_backup_frequency(self) -> str:
        value = self.get("backup.auto_frequency", "")
        return value if value in FREQUENCIES else ""

    @auto_backup_frequency.setter
    def auto_backup_frequency(self, value: str) -> None:
        if value and value not in FREQUENCIES:
            raise ValueError(f"Unknown backup frequency: {value!r}")
        self.set("backup.auto_frequency", value)

    @property
    def backup_keep_count(self) -> int:
        return int(self.get("backup.keep_count", 10))

    @backup_keep_count.setter
    def backup_keep_count(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"keep_count must be >= 0, got {value}")
        self.set("backup.keep_count", value)

    @property
    def verify_before_restore(self) -> bool:
        return bool(self.get("backup.verify_before_restore", False))

    @verify_before_restore.setter
    def verify_before_restore(self, value: bool) -> None:
        self.set("backup.verify_before_restore", value)
