from __future__ import annotations

import json
import sqlite3

import pandas as pd

from services.dataset import consolidate_training_samples
from storage.evolution.unification import fetch_dicts
from utils.logger import get_logger

from .base import Migration

LOGGER = get_logger(__name__)


def load_samples(conn: sqlite3.Connection) -> pd.DataFrame:
    rows = fetch_dicts(
        conn,
        """
        SELECT id, message_text, is_spam, added_date, detection_count,
               last_detected_date, chat_ids
        FROM training_samples
        ORDER BY id
        """,
    )
    for row in rows:
        row["chat_ids"] = json.loads(row["chat_ids"] or "[]")
        row["is_spam"] = bool(row["is_spam"])
    return pd.DataFrame(rows, columns=[
        "id", "message_text", "is_spam", "added_date",
        "detection_count", "last_detected_date", "chat_ids",
    ])


def up(conn: sqlite3.Connection) -> None:
    consolidated = consolidate_training_samples(load_samples(conn))

    removed = 0
    for record in consolidated.to_dict("records"):
        merged = [int(sample_id) for sample_id in record["merged_ids"]]
        if len(merged) < 2:
            continue
        survivor, duplicates = merged[0], merged[1:]
        conn.execute(
            """
            UPDATE training_samples
            SET detection_count = ?, chat_ids = ?, added_date = ?, last_detected_date = ?
            WHERE id = ?
            """,
            (
                int(record["detection_count"]),
                json.dumps(record["chat_ids"]),
                record["added_date"],
                record["last_detected_date"],
                survivor,
            ),
        )
        conn.execute(
            f"DELETE FROM training_samples WHERE id IN ({', '.join('?' for _ in duplicates)})",
            duplicates,
        )
        removed += len(duplicates)

    LOGGER.info("Merged %s duplicate training sample(s)", removed)


def down(conn: sqlite3.Connection) -> None:
    LOGGER.warning("Merged training samples stay merged after downgrade")


MIGRATION = Migration(
    version=20250519080000,
    name="deduplicate_training_samples",
    up=up,
    down=down,
    lossy=(
        "deduplicate_training_samples: merged duplicates are not split again; "
        "per-chat counts and the discarded rows' sources are gone",
    ),
)
