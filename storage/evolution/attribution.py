from __future__ import annotations

import sqlite3
from typing import Collection

from core.actors import ActorColumns, classify_legacy_actor, constraint_name, encode, exclusive_arc_predicate

from .consolidation import apply_to_rows
from .ddl import add_column_if_missing, ident, table_columns
from .invariants import add_check_after_backfill, drop_check


def known_web_user_ids(conn: sqlite3.Connection) -> set[str]:
    return {row[0] for row in conn.execute("SELECT id FROM users")}


def add_actor_columns(conn: sqlite3.Connection, table: str, columns: ActorColumns) -> None:
    add_column_if_missing(conn, table, columns.web, "TEXT")
    add_column_if_missing(conn, table, columns.telegram, "INTEGER")
    add_column_if_missing(conn, table, columns.system, "TEXT")


def backfill_actor(
    conn: sqlite3.Connection,
    table: str,
    legacy_column: str,
    columns: ActorColumns,
    known_web_ids: Collection[str],
    *,
    optional: bool = False,
) -> int:
    """
    Classify the free-text `legacy_column` of every row whose actor columns
    are still empty. Optional arcs leave empty legacy values without an actor.
    """

    def classify(row: dict) -> dict:
        raw = row[legacy_column]
        if optional and (raw is None or not str(raw).strip()):
            return {}
        encoded = encode(classify_legacy_actor(raw, known_web_ids))
        return dict(zip(columns.names, encoded))

    pending = " AND ".join(f"{ident(name)} IS NULL" for name in columns.names)
    return apply_to_rows(conn, table, "id", (legacy_column,), classify, where=pending)


def attribute_table(
    conn: sqlite3.Connection,
    table: str,
    legacy_column: str,
    columns: ActorColumns,
    known_web_ids: Collection[str],
    *,
    kind: str = "actor",
    optional: bool = False,
) -> None:
    """Add, backfill and constrain one exclusive arc; the legacy column stays."""
    add_actor_columns(conn, table, columns)
    backfill_actor(conn, table, legacy_column, columns, known_web_ids, optional=optional)
    add_check_after_backfill(
        conn,
        table,
        constraint_name(table, kind),
        exclusive_arc_predicate(columns, optional=optional),
    )


def flatten_attribution(
    conn: sqlite3.Connection,
    table: str,
    legacy_column: str,
    columns: ActorColumns,
    *,
    kind: str = "actor",
    optional: bool = False,
) -> None:
    """Down step: write the arc back into one free-text column and drop the arc."""
    drop_check(conn, table, constraint_name(table, kind), exclusive_arc_predicate(columns, optional=optional))
    add_column_if_missing(conn, table, legacy_column, "TEXT")
    conn.execute(
        f"UPDATE {ident(table)} SET {ident(legacy_column)} = "
        f"COALESCE({ident(columns.web)}, CAST({ident(columns.telegram)} AS TEXT), {ident(columns.system)})"
    )
    existing = table_columns(conn, table)
    for name in columns.names:
        if name in existing:
            conn.execute(f"ALTER TABLE {ident(table)} DROP COLUMN {ident(name)}")


def drop_legacy_column(conn: sqlite3.Connection, table: str, column: str) -> None:
    if column in table_columns(conn, table):
        conn.execute(f"ALTER TABLE {ident(table)} DROP COLUMN {ident(column)}")


__all__ = [
    "add_actor_columns",
    "attribute_table",
    "backfill_actor",
    "drop_legacy_column",
    "flatten_attribution",
    "known_web_user_ids",
]
