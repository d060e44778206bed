"""Application entry point — wires backup services and runs a command.

Usage:
    python main.py [--data-dir DIR] create [--path PATH] [--images]
    python main.py restore <path-or-name>
    python main.py list
    python main.py delete <name>
    python main.py verify <path>
    python main.py schedule [hourly|daily|weekly]
"""

from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path

from loguru import logger

from clinic.commands import BackupCommands
from clinic.config import FREQUENCIES, Config, get_config
from clinic.context import AppContext
from clinic.core.backup import BackupManager
from clinic.core.database import SqliteDatabase
from clinic.core.legacy import LegacyBackupImporter
from clinic.core.restore import RestoreManager
from clinic.core.scheduler import BackupScheduler
from clinic.data.backup_registry import BackupRegistry, JsonBackupRegistry
from clinic.exceptions import BackupError
from clinic.logger import EventLog, LoguruEventLog, setup_logger


def create_context(
    config: Config | None = None,
    registry: BackupRegistry | None = None,
    event_log: EventLog | None = None,
) -> AppContext:
    """Wire all services and return an AppContext."""
    config = config or get_config()
    if registry is None:
        registry = JsonBackupRegistry(config.registry_path)
    event_log = event_log or LoguruEventLog()
    lock = threading.RLock()

    database = SqliteDatabase(config.database_path)
    backup_manager = BackupManager(config, registry, database=database, event_log=event_log, lock=lock)
    restore_manager = RestoreManager(
        config,
        registry,
        database=database,
        importer=LegacyBackupImporter(database),
        event_log=event_log,
        lock=lock,
    )
    scheduler = BackupScheduler(backup_manager, keep_count=config.backup_keep_count, event_log=event_log)

    return AppContext(
        config=config,
        database=database,
        registry=registry,
        event_log=event_log,
        backup_manager=backup_manager,
        restore_manager=restore_manager,
        scheduler=scheduler,
        lock=lock,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clinic-backup", description="Clinic database backups")
    parser.add_argument("--data-dir", type=Path, help="Application data directory")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Back up the live database")
    create.add_argument("--path", help="Custom destination file")
    create.add_argument("--images", action="store_true", help="Include the images folder (ZIP)")

    restore = sub.add_parser("restore", help="Restore a backup by path or name")
    restore.add_argument("target")

    sub.add_parser("list", help="List known backups")

    delete = sub.add_parser("delete", help="Delete a backup by name")
    delete.add_argument("name")

    verify = sub.add_parser("verify", help="Run an integrity check on a backup file")
    verify.add_argument("path")

    schedule = sub.add_parser("schedule", help="Run automatic backups until interrupted")
    schedule.add_argument(
        "frequency", nargs="?", choices=FREQUENCIES, help="Defaults to the configured frequency"
    )
    return parser


def run(args: argparse.Namespace, ctx: AppContext) -> int:
    commands = BackupCommands(ctx)

    if args.command == "create":
        print(commands.create(args.path, include_images=args.images))
    elif args.command == "restore":
        commands.restore(args.target)
        print(f"Restored {args.target}")
    elif args.command == "list":
        for view in commands.list_backups():
            kind = "legacy" if view["isLegacyFormat"] else view["backup_format"]
            print(f"{view['created_at']}  {view['formattedSize']:>10}  {kind:<18}  {view['name']}")
    elif args.command == "delete":
        commands.delete(args.name)
    elif args.command == "verify":
        report = commands.verify(args.path)
        print(json.dumps(report, ensure_ascii=False, indent=2))
        return 0 if report["ok"] else 1
    elif args.command == "schedule":
        if args.frequency:
            commands.schedule_automatic(args.frequency)
        elif ctx.config.auto_backup_frequency:
            # Re-arm the schedule saved by a previous run
            ctx.scheduler.start(ctx.config.auto_backup_frequency)
        else:
            logger.error("No backup frequency given or configured")
            return 2
        logger.info(f"Automatic {ctx.scheduler.frequency} backups armed, Ctrl+C to stop")
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            pass
    return 0


def main(argv: list[str] | None = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    config = Config(args.data_dir) if args.data_dir else get_config()

    setup_logger(config.data_dir / "logs")
    ctx = create_context(config)

    try:
        return run(args, ctx)
    except BackupError as e:
        logger.error(str(e))
        return 2
    finally:
        ctx.close()


if __name__ == "__main__":
    sys.exit(main())
