"""
Detection results switch from one unsigned confidence plus a legacy check
document keyed by check *names* to a signed net confidence and an ordered list
of integer-coded check results. `is_spam` becomes a derived column guarded by
CK_detection_results_is_spam_derived.
"""

from __future__ import annotations

import json
import sqlite3

from config.config import settings
from core.aggregator import (
    aggregate,
    check_results_from_json,
    check_results_to_json,
    legacy_check_results,
)
from core.types import CheckCode, CheckOutcome
from storage.evolution.attribution import drop_legacy_column
from storage.evolution.consolidation import apply_to_rows
from storage.evolution.ddl import add_column_if_missing
from storage.evolution.invariants import add_check_after_backfill, drop_check
from utils.logger import get_logger

from .base import Migration

LOGGER = get_logger(__name__)

TABLE = "detection_results"
DERIVED_VERDICT = "CK_detection_results_is_spam_derived"
DERIVED_PREDICATE = "net_confidence IS NOT NULL AND is_spam = (net_confidence > 0)"

_NEW_COLUMNS = (
    ("net_confidence", "INTEGER"),
    ("check_results", "TEXT NOT NULL DEFAULT '[]'"),
    ("edit_version", "INTEGER NOT NULL DEFAULT 0"),
    ("used_for_training", "BOOLEAN NOT NULL DEFAULT 1"),
)
_LEGACY_COLUMNS = ("confidence", "check_results_json", "detection_method")

_CANONICAL_NAMES = {
    CheckCode.STOP_WORDS: "StopWords",
    CheckCode.CAS: "CAS",
    CheckCode.SIMILARITY: "Similarity",
    CheckCode.BAYES: "Bayes",
    CheckCode.SPACING: "Spacing",
    CheckCode.INVISIBLE_CHARS: "InvisibleChars",
    CheckCode.OPENAI: "OpenAI",
    CheckCode.THREAT_INTEL: "ThreatIntel",
    CheckCode.URL_BLOCKLIST: "UrlBlocklist",
    CheckCode.IMAGE_SPAM: "ImageSpam",
    CheckCode.VIDEO_SPAM: "VideoSpam",
    CheckCode.FILE_SCANNING: "FileScanning",
    CheckCode.UNKNOWN: "Unknown",
}


def legacy_net_confidence(is_spam: bool, confidence: int | None) -> int:
    """Sign the legacy unsigned confidence by the stored verdict; a spam row never lands on 0."""
    magnitude = abs(int(confidence or 0))
    return max(magnitude, 1) if is_spam else -magnitude


def up(conn: sqlite3.Connection) -> None:
    for column, definition in _NEW_COLUMNS:
        add_column_if_missing(conn, TABLE, column, definition)

    flipped = 0

    def convert(row: dict) -> dict:
        nonlocal flipped
        checks = legacy_check_results(row["check_results_json"], settings.UNKNOWN_CHECK_POLICY)
        legacy_verdict = bool(row["is_spam"])
        if checks:
            net = aggregate(checks).net_confidence
            if (net > 0) != legacy_verdict:
                flipped += 1
        else:
            net = legacy_net_confidence(legacy_verdict, row["confidence"])
        return {
            "net_confidence": net,
            "is_spam": int(net > 0),
            "check_results": check_results_to_json(checks),
        }

    apply_to_rows(
        conn,
        TABLE,
        "id",
        ("is_spam", "confidence", "check_results_json"),
        convert,
        where="net_confidence IS NULL",
    )
    if flipped:
        LOGGER.warning("%s detection result(s) changed verdict when recomputed from their checks", flipped)

    add_check_after_backfill(conn, TABLE, DERIVED_VERDICT, DERIVED_PREDICATE)
    for column in _LEGACY_COLUMNS:
        drop_legacy_column(conn, TABLE, column)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_detection_results_message_edit ON detection_results(message_id, edit_version)"
    )


def _legacy_document(check_results: str | None) -> str | None:
    checks = check_results_from_json(check_results, "tag")
    if not checks:
        return None
    outcome_names = {CheckOutcome.CLEAN: "Clean", CheckOutcome.SPAM: "Spam", CheckOutcome.REVIEW: "Review"}
    return json.dumps({
        "Checks": [
            {
                "CheckName": _CANONICAL_NAMES[check.code],
                "Result": outcome_names[check.outcome],
                "Confidence": abs(check.confidence),
                "Details": check.reason,
                "ProcessingTimeMs": check.processing_time_ms,
            }
            for check in checks
        ]
    })


def down(conn: sqlite3.Connection) -> None:
    drop_check(conn, TABLE, DERIVED_VERDICT, DERIVED_PREDICATE)
    for column in _LEGACY_COLUMNS:
        add_column_if_missing(conn, TABLE, column, "INTEGER" if column == "confidence" else "TEXT")

    apply_to_rows(
        conn,
        TABLE,
        "id",
        ("net_confidence", "check_results"),
        lambda row: {
            "confidence": abs(row["net_confidence"] or 0),
            "check_results_json": _legacy_document(row["check_results"]),
        },
    )

    conn.execute("DROP INDEX IF EXISTS idx_detection_results_message_edit")
    for column, _ in reversed(_NEW_COLUMNS):
        drop_legacy_column(conn, TABLE, column)


MIGRATION = Migration(
    version=20250611120000,
    name="detection_check_codes",
    up=up,
    down=down,
    lossy=(
        "detection_check_codes: confidence becomes |net_confidence|, not the original detector score",
        "detection_check_codes: check aliases come back under one canonical name; UNKNOWN stays 'Unknown'",
        "detection_check_codes: edit_version, used_for_training and detection_method are dropped",
    ),
)
