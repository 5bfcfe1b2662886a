"""
Background job schedules become cron-only.

Interval schedules ("30m", "6h", "1d", "1w") are rewritten as Quartz cron
expressions, legacy job keys are renamed to their job class names and jobs
that no longer exist are dropped from the document.
"""

from __future__ import annotations

import re
import sqlite3
from typing import Any

from storage.evolution.consolidation import Consolidation, apply_to_rows, dump_json, load_json
from utils.logger import get_logger

from .base import Migration

LOGGER = get_logger(__name__)

DEFAULT_CRON = "0 0 2 * * ?"

JOB_KEY_RENAMES = {
    "BlocklistSync": "BlocklistSyncJob",
    "message_cleanup": "DatabaseMaintenanceJob",
    "database_maintenance": "DatabaseMaintenanceJob",
    "scheduled_backup": "ScheduledBackupJob",
    "chat_health_check": "ChatHealthCheckJob",
    "refresh_user_photos": "RefreshUserPhotosJob",
}

VALID_JOBS = frozenset({
    "BlocklistSyncJob",
    "ChatHealthCheckJob",
    "DatabaseMaintenanceJob",
    "DeleteMessageJob",
    "DeleteUserMessagesJob",
    "FetchUserPhotoJob",
    "FileScanJob",
    "RefreshUserPhotosJob",
    "RotateBackupPassphraseJob",
    "ScheduledBackupJob",
    "TempbanExpiryJob",
    "WelcomeTimeoutJob",
})

_INTERVAL_RE = re.compile(r"^\s*(\d+)\s*(m|min|h|d|w)\s*$", re.IGNORECASE)


def interval_to_cron(interval: str | None) -> str:
    match = _INTERVAL_RE.match(interval or "")
    if not match:
        return DEFAULT_CRON
    amount, unit = int(match.group(1)), match.group(2).lower()
    if unit in {"m", "min"}:
        return "0 0 * * * ?"
    if unit == "h":
        return f"0 0 */{amount} * * ?"
    if unit == "d":
        return DEFAULT_CRON
    return "0 0 2 ? * SUN"


def job_forward(job: dict[str, Any]) -> dict[str, Any]:
    """One legacy job entry (its key under "key") -> cron-only entry."""
    converted = {k: v for k, v in job.items() if k not in {"ScheduleType", "IntervalDuration"}}
    if (
        job.get("ScheduleType") == "interval"
        and job.get("IntervalDuration")
        and not job.get("CronExpression")
    ):
        converted["CronExpression"] = interval_to_cron(job["IntervalDuration"])
    if not converted.get("CronExpression"):
        converted["CronExpression"] = DEFAULT_CRON
    converted["key"] = JOB_KEY_RENAMES.get(job["key"], job["key"])
    return converted


def job_inverse(job: dict[str, Any]) -> dict[str, Any]:
    restored = dict(job)
    restored["ScheduleType"] = "cron"
    return restored


JOB_SCHEDULES = Consolidation(
    name="job_schedules_to_cron",
    forward=job_forward,
    inverse=job_inverse,
    round_trip_fields=("Enabled", "Settings"),
    lossy_fields={
        "key": "legacy job keys come back under their renamed job class name",
        "ScheduleType": "always restored as 'cron'",
        "IntervalDuration": "intervals come back as their cron equivalent; 1d and 3d share one expression",
        "CronExpression": "jobs without a schedule gain the 02:00 default",
    },
)


def convert_document(document: dict[str, Any] | None) -> dict[str, Any] | None:
    if not document:
        return document
    jobs = document.get("Jobs") or {}
    # entries already under their final name win a rename collision
    order = sorted(jobs, key=lambda key: (JOB_KEY_RENAMES.get(key, key) != key, key))

    converted: dict[str, Any] = {}
    for key in order:
        job = JOB_SCHEDULES.forward({**jobs[key], "key": key})
        new_key = job.pop("key")
        if new_key not in VALID_JOBS:
            LOGGER.warning("Dropping unknown background job %s", key)
            continue
        if new_key in converted:
            LOGGER.warning("Background job %s collides with %s, keeping the first", key, new_key)
            continue
        converted[new_key] = job
    return {**document, "Jobs": converted}


def restore_document(document: dict[str, Any] | None) -> dict[str, Any] | None:
    if not document:
        return document
    jobs = document.get("Jobs") or {}
    restored = {}
    for key, job in jobs.items():
        legacy = JOB_SCHEDULES.inverse({**job, "key": key})
        restored[legacy.pop("key")] = legacy
    return {**document, "Jobs": restored}


def _rewrite(conn: sqlite3.Connection, transform) -> None:
    apply_to_rows(
        conn,
        "configs",
        "id",
        ("background_jobs_config",),
        lambda row: {
            "background_jobs_config": dump_json(transform(load_json(row["background_jobs_config"])))
        },
        where="background_jobs_config IS NOT NULL",
    )


def up(conn: sqlite3.Connection) -> None:
    _rewrite(conn, convert_document)


def down(conn: sqlite3.Connection) -> None:
    _rewrite(conn, restore_document)


MIGRATION = Migration(
    version=20250820101500,
    name="job_schedules_to_cron",
    up=up,
    down=down,
    lossy=tuple(JOB_SCHEDULES.lossy_notes()) + ("job_schedules_to_cron: dropped unknown jobs are not restored",),
)
