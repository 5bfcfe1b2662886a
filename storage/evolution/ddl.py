"""
SQLite DDL helpers shared by migrations.

SQLite cannot add a CHECK constraint or drop a constrained column in place,
so table shape changes go through the create / copy / drop / rename procedure
in `rebuild_table`. All helpers run inside the caller's transaction; none of
them commits.
"""

from __future__ import annotations

import re
import sqlite3
from typing import Mapping, Sequence

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_CREATE_RE = re.compile(
    r'^\s*CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?(?:"[^"]+"|\w+)',
    re.IGNORECASE,
)


def ident(name: str) -> str:
    """Validate and quote a table or column identifier."""
    if not _IDENT_RE.match(name):
        raise ValueError(f"invalid SQL identifier: {name!r}")
    return f'"{name}"'


def execute_script(conn: sqlite3.Connection, script: str) -> None:
    """
    Run a multi-statement script one statement at a time.

    `Connection.executescript` commits any open transaction first, which would
    split a migration step in two.
    """
    buffer = ""
    for line in script.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            statement = buffer.strip()
            buffer = ""
            if statement.rstrip(";").strip():
                conn.execute(statement)
    if any(line.strip() and not line.strip().startswith("--") for line in buffer.splitlines()):
        raise ValueError(f"incomplete SQL statement at end of script: {buffer.strip()[:80]!r}")


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({ident(table)})")]


def table_sql(conn: sqlite3.Connection, table: str) -> str:
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    if row is None:
        raise LookupError(f"table {table} does not exist")
    return row[0]


def add_column_if_missing(conn: sqlite3.Connection, table: str, column: str, definition: str) -> bool:
    if column in table_columns(conn, table):
        return False
    conn.execute(f"ALTER TABLE {ident(table)} ADD COLUMN {ident(column)} {definition}")
    return True


def _index_definitions(conn: sqlite3.Connection, table: str) -> list[tuple[str, list[str]]]:
    definitions: list[tuple[str, list[str]]] = []
    for index in conn.execute(f"PRAGMA index_list({ident(table)})").fetchall():
        name, origin = index[1], index[3]
        if origin != "c":
            # implicit indexes for UNIQUE / PRIMARY KEY come back with the table
            continue
        sql_row = conn.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'index' AND name = ?",
            (name,),
        ).fetchone()
        if sql_row is None or sql_row[0] is None:
            continue
        columns = [info[2] for info in conn.execute(f"PRAGMA index_info({ident(name)})") if info[2]]
        definitions.append((sql_row[0], columns))
    return definitions


def rebuild_table(
    conn: sqlite3.Connection,
    table: str,
    create_sql: str,
    copy: Sequence[str] | None = None,
    computed: Mapping[str, str] | None = None,
) -> None:
    """
    Replace `table` with the shape described by `create_sql`.

    `copy` lists the columns carried over; by default every column present
    in both shapes is copied. `computed` maps further target columns to SQL
    expressions over the old row. Indexes whose columns survive are recreated.
    Foreign key enforcement must be off, which the migration runner ensures.
    """
    if not _CREATE_RE.match(create_sql):
        raise ValueError("create_sql must start with CREATE TABLE")

    temp = f"_{table}_rebuild"
    old_columns = table_columns(conn, table)
    indexes = _index_definitions(conn, table)

    conn.execute(f"DROP TABLE IF EXISTS {ident(temp)}")
    conn.execute(_CREATE_RE.sub(f"CREATE TABLE {ident(temp)}", create_sql, count=1))
    new_columns = table_columns(conn, temp)

    computed = dict(computed or {})
    if copy is None:
        copy = [column for column in new_columns if column in old_columns]
    pairs = [(column, ident(column)) for column in copy if column not in computed]
    pairs.extend(computed.items())

    if pairs:
        targets = ", ".join(ident(target) for target, _ in pairs)
        sources = ", ".join(source for _, source in pairs)
        conn.execute(f"INSERT INTO {ident(temp)} ({targets}) SELECT {sources} FROM {ident(table)}")

    conn.execute(f"DROP TABLE {ident(table)}")
    conn.execute(f"ALTER TABLE {ident(temp)} RENAME TO {ident(table)}")

    surviving = set(new_columns)
    for sql, columns in indexes:
        if set(columns) <= surviving:
            conn.execute(sql)


__all__ = [
    "add_column_if_missing",
    "execute_script",
    "ident",
    "rebuild_table",
    "table_columns",
    "table_exists",
    "table_sql",
]
