"""
main.py
────────────────────────────────────────────────────────
CLI для схемы GroupGuard.

    python main.py upgrade [--target V]
    python main.py downgrade --target V [--accept-lossy]
    python main.py status
    python main.py verify
    python main.py export-training [--output PATH]

Код выхода 0 при успехе, 1 при ошибке GroupGuardError (она же пишется в лог).
"""

from __future__ import annotations

import argparse
import sqlite3
import sys
import warnings
from pathlib import Path
from typing import Sequence

from config.config import settings
from core.actors import discover_exclusive_arcs
from core.errors import GroupGuardError, LossyDowngradeWarning, MigrationError
from services.dataset import TrainingExporter
from storage import close_storage, init_storage
from storage.evolution.ddl import table_exists
from storage.evolution.invariants import count_violations, has_constraint
from storage.migrations.v20250611_detection_check_codes import DERIVED_PREDICATE, DERIVED_VERDICT
from storage.runner import MigrationRunner
from storage.sqlite import Storage
from utils.logger import get_logger

LOGGER = get_logger(__name__)


def collect_violations(conn: sqlite3.Connection) -> list[tuple[str, str, int]]:
    """(table, constraint, violating rows) for every invariant present in the schema."""
    report = []
    for arc in discover_exclusive_arcs(conn):
        report.append((arc.table, arc.name, count_violations(conn, arc.table, arc.predicate())))

    if table_exists(conn, "detection_results") and has_constraint(conn, "detection_results", DERIVED_VERDICT):
        report.append(
            ("detection_results", DERIVED_VERDICT, count_violations(conn, "detection_results", DERIVED_PREDICATE))
        )
    return report


# ───────────────────────────────
#  Команды
# ───────────────────────────────
def _cmd_upgrade(storage: Storage, runner: MigrationRunner, args: argparse.Namespace) -> int:
    applied = runner.upgrade(args.target)
    LOGGER.info("Применено миграций: %s, версия схемы %s", len(applied), runner.current_version())
    return 0


def _cmd_downgrade(storage: Storage, runner: MigrationRunner, args: argparse.Namespace) -> int:
    with warnings.catch_warnings():
        # о потерях уже написано в лог, повторно в stderr не выводим
        warnings.simplefilter("ignore", LossyDowngradeWarning)
        reverted = runner.downgrade(args.target, accept_lossy=args.accept_lossy)
    LOGGER.info("Откачено миграций: %s, версия схемы %s", len(reverted), runner.current_version())
    return 0


def _cmd_status(storage: Storage, runner: MigrationRunner, args: argparse.Namespace) -> int:
    print(f"current version: {runner.current_version()}")
    for item in runner.status():
        flags = []
        if not item.reversible:
            flags.append("irreversible")
        elif item.lossy:
            flags.append("lossy down")
        state = f"applied {item.applied_at}" if item.applied else "pending"
        suffix = f" ({', '.join(flags)})" if flags else ""
        print(f"{item.version}  {item.name:<32} {state}{suffix}")
    return 0


def _cmd_verify(storage: Storage, runner: MigrationRunner, args: argparse.Namespace) -> int:
    report = collect_violations(runner.connection)
    broken = 0
    for table, constraint, violations in report:
        print(f"{constraint:<48} {table:<20} {violations}")
        broken += violations
    if broken:
        LOGGER.error("Найдено строк с нарушениями инвариантов: %s", broken)
        return 1
    LOGGER.info("Проверено ограничений: %s, нарушений нет", len(report))
    return 0


def _cmd_export_training(storage: Storage, runner: MigrationRunner, args: argparse.Namespace) -> int:
    pending = runner.pending()
    if pending:
        raise MigrationError(f"schema is behind by {len(pending)} migration(s); run upgrade first")
    exporter = TrainingExporter(args.output or settings.TRAINING_EXPORT_PATH)
    exporter.export(storage.training)
    return 0


COMMANDS = {
    "upgrade": _cmd_upgrade,
    "downgrade": _cmd_downgrade,
    "status": _cmd_status,
    "verify": _cmd_verify,
    "export-training": _cmd_export_training,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="groupguard", description="GroupGuard schema and data tooling")
    parser.add_argument("--database", default=None, help="SQLite file (default: DATABASE_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    upgrade = sub.add_parser("upgrade", help="apply pending migrations")
    upgrade.add_argument("--target", type=int, default=None, help="stop at this version")

    downgrade = sub.add_parser("downgrade", help="revert migrations down to a version")
    downgrade.add_argument("--target", type=int, required=True, help="version to end at (0 = empty schema)")
    downgrade.add_argument("--accept-lossy", action="store_true", help="allow downgrades that lose data")

    sub.add_parser("status", help="list applied and pending migrations")
    sub.add_parser("verify", help="count rows violating exclusive-arc and derived-verdict invariants")

    export = sub.add_parser("export-training", help="write training labels as message,label CSV")
    export.add_argument("--output", type=Path, default=None, help="CSV path (default: TRAINING_EXPORT_PATH)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        # the runner is driven explicitly, so open without auto-upgrade;
        # the singleton lets WARNING+ records land in log_events
        storage = init_storage(db_path=args.database or settings.DATABASE_PATH, migrate=False)
    except sqlite3.Error as exc:
        LOGGER.error("Не удалось открыть базу: %s", exc)
        return 1

    try:
        with storage.lock:
            runner = MigrationRunner(storage.connection)
            return COMMANDS[args.command](storage, runner, args)
    except GroupGuardError as exc:
        LOGGER.error("%s: %s", type(exc).__name__, exc)
        return 1
    finally:
        close_storage()


if __name__ == "__main__":
    sys.exit(main())
