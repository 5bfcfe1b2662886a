from __future__ import annotations

import sqlite3

from core.errors import ConstraintViolation
from utils.logger import get_logger

from .ddl import ident, rebuild_table, table_sql

LOGGER = get_logger(__name__)


def count_violations(conn: sqlite3.Connection, table: str, predicate: str) -> int:
    row = conn.execute(f"SELECT COUNT(*) FROM {ident(table)} WHERE NOT ({predicate})").fetchone()
    return int(row[0])


def has_constraint(conn: sqlite3.Connection, table: str, name: str) -> bool:
    return f"CONSTRAINT {name} " in table_sql(conn, table)


def require_backfilled(conn: sqlite3.Connection, table: str, name: str, predicate: str) -> None:
    violations = count_violations(conn, table, predicate)
    if violations:
        raise ConstraintViolation(
            f"{violations} row(s) in {table} violate {name}; backfill before adding the constraint",
            constraint=name,
            rows=violations,
        )


def add_check_after_backfill(
    conn: sqlite3.Connection,
    table: str,
    name: str,
    predicate: str,
    *,
    create_sql: str | None = None,
) -> None:
    """
    Attach `CONSTRAINT name CHECK (predicate)` to an already backfilled table.

    Refuses while any row still violates the predicate, so a missed backfill
    fails here with the row count instead of halfway through the rebuild.
    When `create_sql` is given it is the full target shape (it must declare
    the constraint) and columns it no longer has are dropped on the way.
    """
    if has_constraint(conn, table, name):
        LOGGER.debug("Constraint %s already present on %s", name, table)
        return

    require_backfilled(conn, table, name, predicate)

    if create_sql is None:
        create_sql = _with_constraint(table_sql(conn, table), name, predicate)
    elif f"CONSTRAINT {name} " not in create_sql:
        raise ValueError(f"target shape of {table} does not declare {name}")
    rebuild_table(conn, table, create_sql)
    LOGGER.info("Added constraint %s to %s", name, table)


def drop_check(conn: sqlite3.Connection, table: str, name: str, predicate: str) -> None:
    """Rebuild `table` without a constraint previously added by `add_check_after_backfill`."""
    if not has_constraint(conn, table, name):
        return
    clause = f",\n    CONSTRAINT {name} CHECK ({predicate})"
    create_sql = table_sql(conn, table)
    if clause not in create_sql:
        raise ValueError(f"constraint {name} on {table} does not match the expected predicate")
    rebuild_table(conn, table, create_sql.replace(clause, "", 1))
    LOGGER.info("Dropped constraint %s from %s", name, table)


def _with_constraint(create_sql: str, name: str, predicate: str) -> str:
    create_sql = create_sql.rstrip()
    closing = create_sql.rfind(")")
    if closing == -1:
        raise ValueError("cannot parse CREATE TABLE statement")
    return (
        f"{create_sql[:closing].rstrip()},\n"
        f"    CONSTRAINT {name} CHECK ({predicate})\n"
        f"{create_sql[closing:]}"
    )


__all__ = ["add_check_after_backfill", "count_violations", "drop_check", "has_constraint", "require_backfilled"]
