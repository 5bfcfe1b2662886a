"""
Merge a retired table into a surviving polymorphic one.

The steps are strictly ordered: the discriminator and context columns are
added first, the rows are copied (each insert guarded by NOT EXISTS on the
legacy id kept inside the context document, so a re-run inserts nothing
twice), and only then is the retired table dropped.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from utils.logger import get_logger

from .ddl import add_column_if_missing, execute_script, ident, table_exists

LOGGER = get_logger(__name__)

Row = Mapping[str, Any]


@dataclass(frozen=True)
class UnificationPlan:
    retired_table: str
    surviving_table: str
    discriminator_value: int
    shared_columns: Callable[[Row], Mapping[str, Any]]
    context: Callable[[Row], dict[str, Any]]
    legacy_key: str = "id"
    legacy_key_field: str = "legacyId"
    discriminator_column: str = "type"
    context_column: str = "context"
    discriminator_definition: str = "INTEGER NOT NULL DEFAULT 0"
    context_definition: str = "TEXT"


def fetch_dicts(conn: sqlite3.Connection, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
    cursor = conn.execute(sql, params)
    names = [column[0] for column in cursor.description]
    return [dict(zip(names, row)) for row in cursor.fetchall()]


def ensure_discriminator(conn: sqlite3.Connection, plan: UnificationPlan) -> None:
    add_column_if_missing(conn, plan.surviving_table, plan.discriminator_column, plan.discriminator_definition)
    add_column_if_missing(conn, plan.surviving_table, plan.context_column, plan.context_definition)


def _guard(plan: UnificationPlan) -> str:
    return (
        f"NOT EXISTS (SELECT 1 FROM {ident(plan.surviving_table)} "
        f"WHERE {ident(plan.discriminator_column)} = ? "
        f"AND json_extract({ident(plan.context_column)}, '$.{plan.legacy_key_field}') = ?)"
    )


def copy_rows(conn: sqlite3.Connection, plan: UnificationPlan) -> int:
    rows = fetch_dicts(
        conn,
        f"SELECT * FROM {ident(plan.retired_table)} ORDER BY {ident(plan.legacy_key)}",
    )
    inserted = 0
    for row in rows:
        legacy_id = row[plan.legacy_key]
        shared = dict(plan.shared_columns(row))
        context = dict(plan.context(row))
        context[plan.legacy_key_field] = legacy_id

        columns = [plan.discriminator_column, plan.context_column, *shared]
        values = [plan.discriminator_value, json.dumps(context, ensure_ascii=False), *shared.values()]
        select_list = ", ".join("?" for _ in columns)
        cursor = conn.execute(
            f"INSERT INTO {ident(plan.surviving_table)} ({', '.join(ident(c) for c in columns)}) "
            f"SELECT {select_list} WHERE {_guard(plan)}",
            (*values, plan.discriminator_value, legacy_id),
        )
        inserted += cursor.rowcount
    return inserted


def unify_tables(conn: sqlite3.Connection, plan: UnificationPlan) -> int:
    """Run all three steps; returns how many retired rows were copied."""
    ensure_discriminator(conn, plan)

    if not table_exists(conn, plan.retired_table):
        LOGGER.info("Table %s already retired", plan.retired_table)
        return 0

    inserted = copy_rows(conn, plan)
    conn.execute(f"DROP TABLE {ident(plan.retired_table)}")
    LOGGER.info(
        "Unified %s into %s as %s=%s (%s row(s))",
        plan.retired_table,
        plan.surviving_table,
        plan.discriminator_column,
        plan.discriminator_value,
        inserted,
    )
    return inserted


def split_tables(
    conn: sqlite3.Connection,
    plan: UnificationPlan,
    create_retired_sql: str,
    restore: Callable[[Row, dict[str, Any]], Mapping[str, Any]],
) -> int:
    """Reverse of `unify_tables`: recreate the retired table and move its rows back."""
    execute_script(conn, create_retired_sql)
    rows = fetch_dicts(
        conn,
        f"SELECT * FROM {ident(plan.surviving_table)} WHERE {ident(plan.discriminator_column)} = ? ORDER BY id",
        (plan.discriminator_value,),
    )
    for row in rows:
        context = json.loads(row[plan.context_column] or "{}")
        legacy = dict(restore(row, context))
        columns = ", ".join(ident(column) for column in legacy)
        marks = ", ".join("?" for _ in legacy)
        conn.execute(
            f"INSERT INTO {ident(plan.retired_table)} ({columns}) VALUES ({marks})",
            tuple(legacy.values()),
        )

    conn.execute(
        f"DELETE FROM {ident(plan.surviving_table)} WHERE {ident(plan.discriminator_column)} = ?",
        (plan.discriminator_value,),
    )
    return len(rows)


__all__ = ["UnificationPlan", "copy_rows", "ensure_discriminator", "fetch_dicts", "split_tables", "unify_tables"]
