from __future__ import annotations

import sqlite3
from typing import Any

from core.types import ReviewStatus, ReviewType
from storage.evolution.ddl import ident
from storage.evolution.unification import (
    UnificationPlan,
    ensure_discriminator,
    split_tables,
    unify_tables,
)
from utils.logger import get_logger

from .base import Migration
from .v20250114_initial_schema import SCHEMA as _INITIAL_SCHEMA

LOGGER = get_logger(__name__)

# impersonation alerts are not tied to a message
NO_MESSAGE = 0

RISK_LEVELS = {"low": 0, "medium": 1, "high": 2, "critical": 3}
VERDICTS = {"false_positive": 0, "confirmed_scam": 1, "whitelisted": 2}

PENDING_INDEX_UP = """
CREATE UNIQUE INDEX IX_reports_unique_pending_per_message
    ON reports(message_id, chat_id) WHERE status = 0 AND type = 0
"""
PENDING_INDEX_DOWN = """
CREATE UNIQUE INDEX IX_reports_unique_pending_per_message
    ON reports(message_id, chat_id) WHERE status = 0
"""


def _alert_shared(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "message_id": NO_MESSAGE,
        "chat_id": row["chat_id"],
        "reported_at": row["detected_at"],
        "status": int(ReviewStatus.PENDING if row["reviewed_at"] is None else ReviewStatus.REVIEWED),
        "reviewed_by": row["reviewed_by_user_id"],
        "reviewed_at": row["reviewed_at"],
        "web_user_id": row["reviewed_by_user_id"],
    }


def _alert_context(row: dict[str, Any]) -> dict[str, Any]:
    verdict = (row["verdict"] or "").strip().lower()
    return {
        "suspectedUserId": row["suspected_user_id"],
        "targetUserId": row["target_user_id"],
        "totalScore": row["total_score"],
        "riskLevel": RISK_LEVELS.get((row["risk_level"] or "").strip().lower(), RISK_LEVELS["medium"]),
        "nameMatch": bool(row["name_match"]),
        "photoMatch": bool(row["photo_match"]),
        "photoSimilarity": row["photo_similarity_score"],
        "autoBanned": bool(row["auto_banned"]),
        "verdict": VERDICTS.get(verdict),
    }


def _alert_restore(row: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    risk_names = {code: name for name, code in RISK_LEVELS.items()}
    verdict_names = {code: name for name, code in VERDICTS.items()}
    return {
        "id": context.get("legacyAlertId"),
        "suspected_user_id": context["suspectedUserId"],
        "target_user_id": context["targetUserId"],
        "chat_id": row["chat_id"],
        "total_score": context.get("totalScore") or 0,
        "risk_level": risk_names.get(context.get("riskLevel"), "medium"),
        "name_match": int(bool(context.get("nameMatch"))),
        "photo_match": int(bool(context.get("photoMatch"))),
        "photo_similarity_score": context.get("photoSimilarity"),
        "auto_banned": int(bool(context.get("autoBanned"))),
        "detected_at": row["reported_at"],
        "reviewed_by_user_id": row["web_user_id"],
        "reviewed_at": row["reviewed_at"],
        "verdict": verdict_names.get(context.get("verdict")),
    }


IMPERSONATION_INTO_REVIEWS = UnificationPlan(
    retired_table="impersonation_alerts",
    surviving_table="reports",
    discriminator_value=int(ReviewType.IMPERSONATION_ALERT),
    shared_columns=_alert_shared,
    context=_alert_context,
    legacy_key_field="legacyAlertId",
)


def _impersonation_ddl() -> str:
    start = _INITIAL_SCHEMA.index("CREATE TABLE IF NOT EXISTS impersonation_alerts")
    return _INITIAL_SCHEMA[start:_INITIAL_SCHEMA.index(";", start) + 1]


def up(conn: sqlite3.Connection) -> None:
    ensure_discriminator(conn, IMPERSONATION_INTO_REVIEWS)
    # message-less alerts share message_id 0, so the pending rule only covers reports
    conn.execute("DROP INDEX IF EXISTS IX_reports_unique_pending_per_message")
    conn.execute(PENDING_INDEX_UP)
    conn.execute("CREATE INDEX IF NOT EXISTS IX_reports_type ON reports(type)")
    unify_tables(conn, IMPERSONATION_INTO_REVIEWS)


def down(conn: sqlite3.Connection) -> None:
    split_tables(conn, IMPERSONATION_INTO_REVIEWS, _impersonation_ddl(), _alert_restore)

    dropped = conn.execute(
        "DELETE FROM reports WHERE type <> ?", (int(ReviewType.REPORT),)
    ).rowcount
    if dropped:
        LOGGER.warning("Deleted %s review(s) with no legacy table", dropped)

    conn.execute("DROP INDEX IF EXISTS IX_reports_type")
    conn.execute("DROP INDEX IF EXISTS IX_reports_unique_pending_per_message")
    conn.execute(PENDING_INDEX_DOWN)
    for column in ("context", "type"):
        conn.execute(f"ALTER TABLE reports DROP COLUMN {ident(column)}")


MIGRATION = Migration(
    version=20251201150000,
    name="unified_reviews",
    up=up,
    down=down,
    lossy=(
        "unified_reviews: exam failure reviews have no legacy table and are deleted",
        "unified_reviews: context documents of plain reports are dropped",
    ),
)
