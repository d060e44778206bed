"""Tests for the RestoreManager."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from conftest import MinuteClock, RecordingEventLog, make_sqlite_db
from clinic.core.backup import BackupManager
from clinic.core.database import SqliteDatabase
from clinic.core.legacy import LegacyBackupImporter
from clinic.core.restore import BackupKind, RestoreManager, _SafetySnapshot
from clinic.exceptions import (
    BackupCorruptError,
    BackupError,
    BackupNotFoundError,
    RestoreFailedError,
    RollbackFailedError,
)


@pytest.fixture
def backups(tmp_config, registry, events) -> BackupManager:
    return BackupManager(tmp_config, registry, event_log=events, clock=MinuteClock())


@pytest.fixture
def restorer(tmp_config, registry, events) -> RestoreManager:
    return RestoreManager(tmp_config, registry, event_log=events)


def _leftover_snapshots(live: Path) -> list[Path]:
    return list(live.parent.glob(f"{live.stem}.pre-restore-*"))


class TestResolve:
    def test_by_registry_name(self, backups: BackupManager, restorer: RestoreManager, registry, live_db: Path) -> None:
        path = backups.create_backup()
        resolved = restorer.resolve(registry.load()[0].name)
        assert resolved.path == path
        assert resolved.kind == BackupKind.DATABASE

    def test_path_without_extension(self, backups: BackupManager, restorer: RestoreManager, live_db: Path) -> None:
        path = backups.create_backup()
        resolved = restorer.resolve(str(path.with_suffix("")))
        assert resolved.path == path

    def test_zip_preferred_over_db(self, restorer: RestoreManager, tmp_path: Path) -> None:
        (tmp_path / "b.zip").write_bytes(b"zip")
        (tmp_path / "b.db").write_bytes(b"db")
        assert restorer.resolve(str(tmp_path / "b")).kind == BackupKind.ARCHIVE

    def test_legacy_json_fallback(self, restorer: RestoreManager, tmp_path: Path) -> None:
        legacy = tmp_path / "backup_old.json"
        legacy.write_text("{}", encoding="utf-8")
        resolved = restorer.resolve(str(tmp_path / "backup_old.db"))
        assert resolved.path == legacy
        assert resolved.kind == BackupKind.LEGACY

    def test_relative_name_in_backup_dir(self, restorer: RestoreManager, tmp_config) -> None:
        tmp_config.backup_path.mkdir(parents=True)
        target = tmp_config.backup_path / "manual.db"
        target.write_bytes(b"x")
        assert restorer.resolve("manual").path == target

    def test_backup_dir_wins_over_working_dir(
        self, restorer: RestoreManager, tmp_config, tmp_path: Path, monkeypatch
    ) -> None:
        tmp_config.backup_path.mkdir(parents=True)
        in_backups = tmp_config.backup_path / "manual.db"
        in_backups.write_bytes(b"backup")
        workdir = tmp_path / "workdir"
        workdir.mkdir()
        (workdir / "manual.db").write_bytes(b"stray file")
        monkeypatch.chdir(workdir)

        assert restorer.resolve("manual").path == in_backups
        assert restorer.resolve("manual.db").path == in_backups

    def test_not_found(self, restorer: RestoreManager) -> None:
        with pytest.raises(BackupNotFoundError):
            restorer.resolve("nonexistent")


class TestRestore:
    def test_round_trip(self, backups: BackupManager, restorer: RestoreManager, live_db: Path) -> None:
        original = live_db.read_bytes()
        path = backups.create_backup()
        live_db.write_bytes(b"edited after backup")

        assert restorer.restore_backup(str(path)) is True

        assert live_db.read_bytes() == original
        assert _leftover_snapshots(live_db) == []

    def test_restore_when_live_missing(self, backups: BackupManager, restorer: RestoreManager, live_db: Path) -> None:
        original = live_db.read_bytes()
        path = backups.create_backup()
        live_db.unlink()

        restorer.restore_backup(str(path))

        assert live_db.read_bytes() == original

    def test_nonexistent_leaves_live_untouched(self, restorer: RestoreManager, live_db: Path) -> None:
        before = live_db.stat()
        content = live_db.read_bytes()

        with pytest.raises(BackupNotFoundError):
            restorer.restore_backup("nonexistent")

        after = live_db.stat()
        assert live_db.read_bytes() == content
        assert after.st_size == before.st_size
        assert after.st_mtime_ns == before.st_mtime_ns
        assert _leftover_snapshots(live_db) == []

    def test_events(self, backups: BackupManager, restorer: RestoreManager, live_db: Path, events: RecordingEventLog) -> None:
        path = backups.create_backup()
        restorer.restore_backup(str(path))
        names = events.names()
        assert names.index("restore_started") < names.index("restore_snapshot_taken") < names.index("restore_completed")

    def test_closes_database_before_snapshot(
        self, tmp_config, registry, events, backups: BackupManager, live_db: Path, monkeypatch
    ) -> None:
        database = SqliteDatabase(live_db)
        calls: list[str] = []
        database.close = lambda: calls.append("close")  # type: ignore[method-assign]
        real_take = _SafetySnapshot.take

        def recording_take(self) -> None:
            calls.append("snapshot")
            real_take(self)

        monkeypatch.setattr(_SafetySnapshot, "take", recording_take)
        restorer = RestoreManager(tmp_config, registry, database=database, event_log=events)

        restorer.restore_backup(str(backups.create_backup()))

        assert calls == ["close", "snapshot"]


class TestRollback:
    def test_swap_failure_restores_live(
        self, backups: BackupManager, restorer: RestoreManager, live_db: Path, events: RecordingEventLog, monkeypatch
    ) -> None:
        path = backups.create_backup()
        live_db.write_bytes(b"current data that must survive")

        def broken_swap(source: Path) -> None:
            live_db.write_bytes(b"half-written")
            raise OSError("write blocked")

        monkeypatch.setattr(restorer, "_swap_database", broken_swap)

        with pytest.raises(RestoreFailedError) as exc_info:
            restorer.restore_backup(str(path))

        assert live_db.read_bytes() == b"current data that must survive"
        assert exc_info.value.rolled_back
        assert isinstance(exc_info.value.__cause__, OSError)
        assert "preserved" in str(exc_info.value)
        assert "restore_rolled_back" in events.names()
        assert _leftover_snapshots(live_db) == []

    def test_swap_failure_without_live_file(self, backups: BackupManager, restorer: RestoreManager, live_db: Path, monkeypatch) -> None:
        path = backups.create_backup()
        live_db.unlink()

        def broken_swap(source: Path) -> None:
            live_db.write_bytes(b"half")
            raise OSError("write blocked")

        monkeypatch.setattr(restorer, "_swap_database", broken_swap)

        with pytest.raises(RestoreFailedError):
            restorer.restore_backup(str(path))
        assert not live_db.exists()

    def test_rollback_failure_is_distinct(
        self, backups: BackupManager, restorer: RestoreManager, live_db: Path, events: RecordingEventLog, monkeypatch
    ) -> None:
        path = backups.create_backup()

        def broken_swap(source: Path) -> None:
            raise OSError("write blocked")

        def broken_rollback(self) -> None:
            raise OSError("disk gone")

        monkeypatch.setattr(restorer, "_swap_database", broken_swap)
        monkeypatch.setattr(_SafetySnapshot, "roll_back", broken_rollback)

        with pytest.raises(RollbackFailedError) as exc_info:
            restorer.restore_backup(str(path))

        error = exc_info.value
        assert not error.rolled_back
        assert error.snapshot_path is not None and error.snapshot_path.exists()
        assert "restore_rollback_failed" in events.names()

    def test_rollback_keeps_commits_still_in_wal(
        self, tmp_config, registry, events, tmp_path: Path, monkeypatch
    ) -> None:
        live = tmp_config.database_path
        database = SqliteDatabase(live)
        conn = database.connection
        conn.execute("PRAGMA journal_mode=WAL")
        with conn:
            conn.execute("CREATE TABLE patients (id INTEGER PRIMARY KEY, full_name TEXT)")
            conn.execute("INSERT INTO patients (full_name) VALUES ('Alice')")
        conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        with conn:
            conn.execute("INSERT INTO patients (full_name) VALUES ('Bob')")
        assert live.with_name(f"{live.name}-wal").stat().st_size > 0  # Bob only in the WAL

        backup = tmp_path / "other.db"
        make_sqlite_db(backup, ["Zed"])
        restorer = RestoreManager(tmp_config, registry, database=database, event_log=events)

        def broken_swap(source: Path) -> None:
            raise OSError("write blocked")

        monkeypatch.setattr(restorer, "_swap_database", broken_swap)

        with pytest.raises(RestoreFailedError):
            restorer.restore_backup(str(backup))

        check = sqlite3.connect(str(live))
        try:
            names = [row[0] for row in check.execute("SELECT full_name FROM patients ORDER BY id")]
        finally:
            check.close()
        assert names == ["Alice", "Bob"]

    def test_snapshot_failure_aborts_before_swap(self, backups: BackupManager, restorer: RestoreManager, live_db: Path, monkeypatch) -> None:
        path = backups.create_backup()
        live_db.write_bytes(b"keep me")
        swapped: list[Path] = []
        monkeypatch.setattr(restorer, "_swap_database", swapped.append)

        def broken_take(self) -> None:
            raise OSError("no space for snapshot")

        monkeypatch.setattr(_SafetySnapshot, "take", broken_take)

        with pytest.raises(BackupError):
            restorer.restore_backup(str(path))
        assert swapped == []
        assert live_db.read_bytes() == b"keep me"


class TestVerifyBeforeRestore:
    def test_corrupt_backup_rejected(self, tmp_config, registry, events, live_db: Path, tmp_path: Path) -> None:
        tmp_config.verify_before_restore = True
        bogus = tmp_path / "bogus.db"
        bogus.write_bytes(b"not a database at all" * 10)
        restorer = RestoreManager(tmp_config, registry, event_log=events)
        content = live_db.read_bytes()

        with pytest.raises(BackupCorruptError):
            restorer.restore_backup(str(bogus))
        assert live_db.read_bytes() == content

    def test_valid_backup_restored(self, tmp_config, registry, events, tmp_path: Path) -> None:
        tmp_config.verify_before_restore = True
        backup = tmp_path / "good.db"
        make_sqlite_db(backup, ["Alice"])
        make_sqlite_db(tmp_config.database_path, ["Bob"])
        restorer = RestoreManager(tmp_config, registry, event_log=events)

        restorer.restore_backup(str(backup))

        conn = sqlite3.connect(str(tmp_config.database_path))
        names = [row[0] for row in conn.execute("SELECT full_name FROM patients")]
        conn.close()
        assert names == ["Alice"]


class TestArchiveRestore:
    def test_restores_database_and_images(self, tmp_config, registry, events, live_db: Path, tmp_path: Path) -> None:
        images = tmp_path / "dental_images"
        images.mkdir()
        (images / "scan.png").write_bytes(b"original scan")
        tmp_config.images_dir = images
        backups = BackupManager(tmp_config, registry, event_log=events, clock=MinuteClock())
        original = live_db.read_bytes()
        path = backups.create_backup(include_images=True)

        live_db.write_bytes(b"newer db")
        (images / "scan.png").write_bytes(b"newer scan")
        (images / "extra.png").write_bytes(b"added later")

        RestoreManager(tmp_config, registry, event_log=events).restore_backup(str(path))

        assert live_db.read_bytes() == original
        assert (images / "scan.png").read_bytes() == b"original scan"
        assert not (images / "extra.png").exists()
        assert not (tmp_path / "dental_images.pre-restore").exists()

    def test_images_aside_requires_images_dir(self, live_db: Path) -> None:
        snapshot = _SafetySnapshot(live_db, None)
        with pytest.raises(BackupError):
            snapshot.set_images_aside()

    def test_bad_archive_rolls_back(self, tmp_config, registry, events, live_db: Path, tmp_path: Path) -> None:
        broken = tmp_path / "broken.zip"
        broken.write_bytes(b"PK not really a zip")
        content = live_db.read_bytes()

        with pytest.raises(RestoreFailedError):
            RestoreManager(tmp_config, registry, event_log=events).restore_backup(str(broken))
        assert live_db.read_bytes() == content


class TestLegacyRestore:
    def _write_legacy(self, path: Path, patients: list[dict]) -> None:
        path.write_text(
            json.dumps(
                {
                    "metadata": {"created_at": "2024-01-01T00:00:00.000Z", "version": "1.0.0", "platform": "win32"},
                    "patients": patients,
                    "appointments": [],
                }
            ),
            encoding="utf-8",
        )

    def test_imports_rows(self, tmp_config, registry, events, tmp_path: Path) -> None:
        make_sqlite_db(tmp_config.database_path, ["Current Patient"])
        legacy = tmp_path / "backup_2024.json"
        self._write_legacy(legacy, [{"id": 7, "full_name": "Legacy Patient", "dropped_column": "x"}])
        database = SqliteDatabase(tmp_config.database_path)
        restorer = RestoreManager(
            tmp_config, registry, database=database, importer=LegacyBackupImporter(database), event_log=events
        )

        restorer.restore_backup(str(tmp_path / "backup_2024.db"))

        rows = database.connection.execute("SELECT id, full_name FROM patients").fetchall()
        database.close()
        assert [tuple(r) for r in rows] == [(7, "Legacy Patient")]
        assert "legacy_restore" in events.names()

    def test_invalid_legacy_rejected(self, tmp_config, registry, events, tmp_path: Path) -> None:
        make_sqlite_db(tmp_config.database_path, ["Current Patient"])
        legacy = tmp_path / "broken.json"
        legacy.write_text(json.dumps({"metadata": {}}), encoding="utf-8")
        database = SqliteDatabase(tmp_config.database_path)
        restorer = RestoreManager(
            tmp_config, registry, database=database, importer=LegacyBackupImporter(database), event_log=events
        )

        with pytest.raises(BackupCorruptError):
            restorer.restore_backup(str(legacy))

    def test_legacy_without_importer(self, restorer: RestoreManager, live_db: Path, tmp_path: Path) -> None:
        legacy = tmp_path / "old.json"
        self._write_legacy(legacy, [])
        with pytest.raises(BackupError):
            restorer.restore_backup(str(legacy))
