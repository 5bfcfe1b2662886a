"""
storage/runner.py
────────────────────────────────────────────────────────
Migration runner.

• Applies pending migrations strictly in version order, one transaction each.
• Records applied state in schema_migrations (version, name, applied_at).
• Downgrades walk the version graph backwards; irreversible edges stop the
  walk and lossy edges need an explicit `accept_lossy=True`.
"""

from __future__ import annotations

import sqlite3
import warnings
from dataclasses import dataclass
from typing import Iterable, Sequence

from core.errors import (
    ConstraintViolation,
    IrreversibleMigrationError,
    LossyDowngradeRefused,
    LossyDowngradeWarning,
    MigrationError,
    MigrationOrderError,
)
from utils.logger import get_logger

from .migrations import MIGRATIONS, Migration

LOGGER = get_logger(__name__)

BASELINE = 0

_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP)
)
"""


@dataclass(frozen=True, slots=True)
class Edge:
    source: int
    target: int
    migration: Migration
    direction: str

    @property
    def lossy(self) -> bool:
        return self.direction == "down" and self.migration.is_lossy


class VersionGraph:
    """
    Schema versions as nodes; every migration contributes an up edge and,
    when it has a down step, a down edge. Down edges are not assumed to be
    inverses: each carries the lossy notes of its migration.
    """

    def __init__(self, migrations: Iterable[Migration]):
        self.migrations: tuple[Migration, ...] = tuple(sorted(migrations, key=lambda m: m.version))
        self.versions: tuple[int, ...] = (BASELINE, *(m.version for m in self.migrations))

    def edges(self) -> list[Edge]:
        result: list[Edge] = []
        for previous, migration in zip(self.versions, self.migrations):
            result.append(Edge(previous, migration.version, migration, "up"))
            if migration.reversible:
                result.append(Edge(migration.version, previous, migration, "down"))
        return result

    def index(self, version: int) -> int:
        try:
            return self.versions.index(version)
        except ValueError:
            raise MigrationError(f"unknown schema version {version}") from None

    def upgrade_path(self, current: int, target: int) -> list[Migration]:
        start, end = self.index(current), self.index(target)
        if end < start:
            raise MigrationError(f"target {target} is older than current version {current}")
        return list(self.migrations[start:end])

    def downgrade_path(self, current: int, target: int) -> list[Migration]:
        start, end = self.index(current), self.index(target)
        if end > start:
            raise MigrationError(f"target {target} is newer than current version {current}")
        path = list(reversed(self.migrations[end:start]))
        blocked = [m.label for m in path if not m.reversible]
        if blocked:
            raise IrreversibleMigrationError(f"cannot downgrade past irreversible migration(s): {', '.join(blocked)}")
        return path


@dataclass(frozen=True, slots=True)
class MigrationStatus:
    version: int
    name: str
    applied_at: str | None
    reversible: bool
    lossy: bool

    @property
    def applied(self) -> bool:
        return self.applied_at is not None


class MigrationRunner:
    def __init__(self, conn: sqlite3.Connection, migrations: Sequence[Migration] = MIGRATIONS):
        self._conn = conn
        self.graph = VersionGraph(migrations)
        self._conn.execute(_HISTORY_DDL)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    # ───────────────────────────────
    #  History
    # ───────────────────────────────
    def _history(self) -> dict[int, str]:
        rows = self._conn.execute("SELECT version, applied_at FROM schema_migrations ORDER BY version").fetchall()
        return {int(row[0]): str(row[1]) for row in rows}

    def applied_versions(self) -> list[int]:
        applied = sorted(self._history())
        known = list(self.graph.versions[1:])
        unknown = [version for version in applied if version not in known]
        if unknown:
            raise MigrationOrderError(f"database has migrations this code does not know: {unknown}")
        if applied != known[: len(applied)]:
            missing = [version for version in known[: len(applied)] if version not in applied]
            raise MigrationOrderError(f"applied history has gaps, missing: {missing}")
        return applied

    def current_version(self) -> int:
        applied = self.applied_versions()
        return applied[-1] if applied else BASELINE

    def pending(self) -> list[Migration]:
        return self.graph.upgrade_path(self.current_version(), self.graph.versions[-1])

    def status(self) -> list[MigrationStatus]:
        self.applied_versions()
        history = self._history()
        return [
            MigrationStatus(
                version=m.version,
                name=m.name,
                applied_at=history.get(m.version),
                reversible=m.reversible,
                lossy=m.is_lossy,
            )
            for m in self.graph.migrations
        ]

    # ───────────────────────────────
    #  Upgrade / downgrade
    # ───────────────────────────────
    def upgrade(self, target: int | None = None) -> list[Migration]:
        current = self.current_version()
        target = self.graph.versions[-1] if target is None else target
        path = self.graph.upgrade_path(current, target)
        for migration in path:
            self._run_step(migration, "up")
        if not path:
            LOGGER.debug("Schema already at version %s", current)
        return path

    def downgrade(self, target: int, *, accept_lossy: bool = False) -> list[Migration]:
        current = self.current_version()
        path = self.graph.downgrade_path(current, target)

        notes = [note for migration in path for note in migration.lossy]
        if notes and not accept_lossy:
            raise LossyDowngradeRefused(
                f"downgrade to {target} loses data; pass accept_lossy=True to proceed",
                notes=notes,
            )
        for note in notes:
            LOGGER.warning("Lossy downgrade: %s", note)
        if notes:
            warnings.warn(
                LossyDowngradeWarning(f"downgrade to {target} is lossy: " + "; ".join(notes)),
                stacklevel=2,
            )

        for migration in path:
            self._run_step(migration, "down")
        return path

    def _run_step(self, migration: Migration, direction: str) -> None:
        conn = self._conn
        if conn.in_transaction:
            raise MigrationError("migrations need a connection without an open transaction")

        foreign_keys = conn.execute("PRAGMA foreign_keys").fetchone()[0]
        # table rebuilds would otherwise cascade deletes into child tables
        conn.execute("PRAGMA foreign_keys=OFF")
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if direction == "up":
                    migration.run_up(conn)
                    conn.execute(
                        "INSERT INTO schema_migrations(version, name) VALUES (?, ?)",
                        (migration.version, migration.name),
                    )
                else:
                    migration.run_down(conn)
                    conn.execute("DELETE FROM schema_migrations WHERE version = ?", (migration.version,))

                problems = conn.execute("PRAGMA foreign_key_check").fetchall()
                if problems:
                    raise ConstraintViolation(
                        f"{migration.label} left {len(problems)} dangling foreign key(s), first: {tuple(problems[0])}",
                        constraint="FOREIGN KEY",
                        rows=len(problems),
                    )
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as exc:
                self._rollback()
                raise ConstraintViolation(f"{migration.label}: {exc}") from exc
            except Exception:
                self._rollback()
                raise
        finally:
            conn.execute(f"PRAGMA foreign_keys={'ON' if foreign_keys else 'OFF'}")

        LOGGER.info("Migration %s %s applied", migration.label, direction)

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")


__all__ = ["BASELINE", "Edge", "MigrationRunner", "MigrationStatus", "VersionGraph"]
