"""
Audit log actor and target become exclusive arcs.

A missing legacy actor means the event was raised by the platform itself and
is attributed to System('SYSTEM'); a missing target stays empty, since the
target arc is optional.
"""

from __future__ import annotations

import sqlite3

from core.actors import ACTOR, TARGET
from storage.evolution.attribution import (
    attribute_table,
    drop_legacy_column,
    flatten_attribution,
    known_web_user_ids,
)

from .base import Migration

TABLE = "audit_log"


def up(conn: sqlite3.Connection) -> None:
    known = known_web_user_ids(conn)
    attribute_table(conn, TABLE, "actor_user_id", ACTOR, known, kind="actor")
    attribute_table(conn, TABLE, "target_user_id", TARGET, known, kind="target", optional=True)
    drop_legacy_column(conn, TABLE, "actor_user_id")
    drop_legacy_column(conn, TABLE, "target_user_id")


def down(conn: sqlite3.Connection) -> None:
    flatten_attribution(conn, TABLE, "target_user_id", TARGET, kind="target", optional=True)
    flatten_attribution(conn, TABLE, "actor_user_id", ACTOR, kind="actor")


MIGRATION = Migration(
    version=20250302142000,
    name="audit_log_exclusive_arc",
    up=up,
    down=down,
    lossy=(
        "audit_log_exclusive_arc: actor and target identity kinds collapse into text ids",
        "audit_log_exclusive_arc: events that had no actor come back attributed to 'SYSTEM'",
    ),
)
