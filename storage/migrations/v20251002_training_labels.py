"""
Training samples move onto messages.

Every (already de-duplicated) sample becomes a synthetic message with the
negative id -sample_id, which cannot collide with Telegram message ids, plus
one training_labels row. The labels table then replaces training_samples.
"""

from __future__ import annotations

import json
import sqlite3

from core.actors import PLAIN, constraint_name, encode_optional, exclusive_arc_predicate
from core.actors import classify_legacy_actor
from core.types import TrainingLabelValue
from storage.evolution.attribution import known_web_user_ids
from storage.evolution.ddl import execute_script, table_exists
from storage.evolution.unification import fetch_dicts
from utils.logger import get_logger

from .base import Migration
from .v20250114_initial_schema import SCHEMA as _INITIAL_SCHEMA

LOGGER = get_logger(__name__)

TRAINING_LABELS = f"""
CREATE TABLE IF NOT EXISTS training_labels (
    message_id INTEGER PRIMARY KEY,
    label INTEGER NOT NULL CHECK (label IN (0, 1)),
    labeled_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    reason TEXT,
    web_user_id TEXT,
    telegram_user_id INTEGER,
    system_identifier TEXT,
    audit_log_id INTEGER,
    FOREIGN KEY(message_id) REFERENCES messages(message_id) ON DELETE CASCADE,
    FOREIGN KEY(web_user_id) REFERENCES users(id) ON DELETE SET NULL,
    FOREIGN KEY(audit_log_id) REFERENCES audit_log(id) ON DELETE RESTRICT,
    CONSTRAINT {constraint_name("training_labels")} CHECK ({exclusive_arc_predicate(PLAIN, optional=True)})
);
CREATE INDEX IF NOT EXISTS idx_training_labels_label ON training_labels(label);
"""


def _training_samples_ddl() -> str:
    start = _INITIAL_SCHEMA.index("CREATE TABLE IF NOT EXISTS training_samples")
    return _INITIAL_SCHEMA[start:_INITIAL_SCHEMA.index(";", start) + 1]


def up(conn: sqlite3.Connection) -> None:
    execute_script(conn, TRAINING_LABELS)
    if not table_exists(conn, "training_samples"):
        return

    known = known_web_user_ids(conn)
    samples = fetch_dicts(conn, "SELECT * FROM training_samples ORDER BY id")
    for sample in samples:
        message_id = -int(sample["id"])
        chat_ids = json.loads(sample["chat_ids"] or "[]")
        conn.execute(
            """
            INSERT INTO messages(message_id, chat_id, user_id, timestamp, message_text)
            SELECT ?, ?, 0, ?, ?
            WHERE NOT EXISTS (SELECT 1 FROM messages WHERE message_id = ?)
            """,
            (message_id, min(chat_ids) if chat_ids else 0, sample["added_date"], sample["message_text"], message_id),
        )

        actor = None
        if sample["added_by"] is not None and str(sample["added_by"]).strip():
            actor = classify_legacy_actor(sample["added_by"], known)
        label = TrainingLabelValue.SPAM if sample["is_spam"] else TrainingLabelValue.HAM
        conn.execute(
            """
            INSERT INTO training_labels(
                message_id, label, labeled_at, reason,
                web_user_id, telegram_user_id, system_identifier
            )
            SELECT ?, ?, ?, ?, ?, ?, ?
            WHERE NOT EXISTS (SELECT 1 FROM training_labels WHERE message_id = ?)
            """,
            (
                message_id,
                int(label),
                sample["added_date"],
                f"migrated training sample ({sample['source']})",
                *encode_optional(actor),
                message_id,
            ),
        )

    conn.execute("DROP TABLE training_samples")
    LOGGER.info("Moved %s training sample(s) into training_labels", len(samples))


def down(conn: sqlite3.Connection) -> None:
    execute_script(conn, _training_samples_ddl())
    labels = fetch_dicts(
        conn,
        """
        SELECT l.message_id, l.label, l.labeled_at,
               COALESCE(l.web_user_id, CAST(l.telegram_user_id AS TEXT), l.system_identifier) AS added_by,
               m.chat_id, m.message_text
        FROM training_labels l
        JOIN messages m ON m.message_id = l.message_id
        ORDER BY l.message_id
        """,
    )
    for label in labels:
        if not label["message_text"]:
            continue
        conn.execute(
            """
            INSERT INTO training_samples(id, message_text, is_spam, added_date, source, added_by, chat_ids)
            VALUES (?, ?, ?, ?, 'migrated', ?, ?)
            """,
            (
                -label["message_id"] if label["message_id"] < 0 else None,
                label["message_text"],
                int(label["label"] == TrainingLabelValue.SPAM),
                label["labeled_at"],
                label["added_by"],
                json.dumps([label["chat_id"]] if label["chat_id"] else []),
            ),
        )

    conn.execute("DROP TABLE training_labels")
    # foreign keys are off during migrations, so remove the synthetic rows explicitly
    conn.execute("DELETE FROM messages WHERE message_id < 0")


MIGRATION = Migration(
    version=20251002090000,
    name="training_labels",
    up=up,
    down=down,
    lossy=(
        "training_labels: detection counts, confidence and last detection dates are reset",
        "training_labels: only the first chat of each sample survives, and sources come back as 'migrated'",
    ),
)
