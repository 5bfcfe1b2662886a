"""
Replace free-text "who did this" columns with exclusive-arc actor columns.

Legacy values are classified once (known web user, numeric Telegram id,
anything else a system identifier), and the CK_<table>_exclusive_actor
constraint is added only after every row has been backfilled.
"""

from __future__ import annotations

import sqlite3

from core.actors import ACTOR, PLAIN
from storage.evolution.attribution import (
    attribute_table,
    drop_legacy_column,
    flatten_attribution,
    known_web_user_ids,
)

from .base import Migration

# table, legacy free-text column, actor columns
ATTRIBUTED_TABLES = (
    ("detection_results", "added_by", PLAIN),
    ("stop_words", "added_by", PLAIN),
    # admin_notes already has telegram_user_id for the note subject
    ("admin_notes", "created_by", ACTOR),
    ("user_actions", "issued_by", PLAIN),
)


def up(conn: sqlite3.Connection) -> None:
    known = known_web_user_ids(conn)
    for table, legacy_column, columns in ATTRIBUTED_TABLES:
        attribute_table(conn, table, legacy_column, columns, known)
        drop_legacy_column(conn, table, legacy_column)


def down(conn: sqlite3.Connection) -> None:
    for table, legacy_column, columns in reversed(ATTRIBUTED_TABLES):
        flatten_attribution(conn, table, legacy_column, columns)


MIGRATION = Migration(
    version=20250302141500,
    name="actor_attribution",
    up=up,
    down=down,
    lossy=(
        "actor_attribution: web, telegram and system actors collapse back into one text column",
        "actor_attribution: rows that had no actor come back as 'SYSTEM' instead of NULL",
    ),
)
