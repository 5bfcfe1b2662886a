from __future__ import annotations

import json
import sqlite3

from storage.evolution.ddl import execute_script

from .base import Migration

SCHEMA = """
-- accounts
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    created_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP)
);

CREATE TABLE IF NOT EXISTS telegram_users (
    telegram_user_id INTEGER PRIMARY KEY,
    username TEXT,
    first_seen_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    last_seen_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP)
);

-- messages and everything owned by them
CREATE TABLE IF NOT EXISTS messages (
    message_id INTEGER PRIMARY KEY,
    chat_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    user_name TEXT,
    timestamp DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    message_text TEXT,
    content_hash TEXT
);
CREATE INDEX IF NOT EXISTS idx_messages_chat_time ON messages(chat_id, timestamp);

CREATE TABLE IF NOT EXISTS message_edits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL,
    edit_version INTEGER NOT NULL,
    old_text TEXT,
    new_text TEXT,
    edited_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    UNIQUE (message_id, edit_version),
    FOREIGN KEY(message_id) REFERENCES messages(message_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS message_translations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL,
    translated_text TEXT NOT NULL,
    detected_language TEXT,
    translated_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    FOREIGN KEY(message_id) REFERENCES messages(message_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS detection_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL,
    detected_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    detection_source TEXT NOT NULL DEFAULT 'auto',
    detection_method TEXT,
    is_spam BOOLEAN NOT NULL,
    confidence INTEGER,
    reason TEXT,
    check_results_json TEXT,
    added_by TEXT,
    FOREIGN KEY(message_id) REFERENCES messages(message_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_detection_results_message ON detection_results(message_id, detected_at);

-- moderation
CREATE TABLE IF NOT EXISTS stop_words (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    word TEXT NOT NULL UNIQUE,
    is_active BOOLEAN NOT NULL DEFAULT 1,
    added_date DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    notes TEXT,
    added_by TEXT
);

CREATE TABLE IF NOT EXISTS admin_notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    telegram_user_id INTEGER NOT NULL,
    note_text TEXT NOT NULL,
    created_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    created_by TEXT,
    FOREIGN KEY(telegram_user_id) REFERENCES telegram_users(telegram_user_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS user_actions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    action_type TEXT NOT NULL,
    message_id INTEGER,
    issued_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    expires_at DATETIME,
    reason TEXT,
    issued_by TEXT,
    FOREIGN KEY(message_id) REFERENCES messages(message_id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_user_actions_user ON user_actions(user_id, issued_at);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type INTEGER NOT NULL,
    timestamp DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    actor_user_id TEXT,
    target_user_id TEXT,
    value TEXT
);
CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log(timestamp);

-- per-chat configuration, chat_id 0 is the global row
CREATE TABLE IF NOT EXISTS configs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id INTEGER NOT NULL,
    moderation_config TEXT,
    spam_detection_config TEXT,
    welcome_config TEXT,
    notification_config TEXT,
    background_jobs_config TEXT,
    log_config TEXT,
    url_filter_config TEXT,
    service_message_deletion_config TEXT,
    created_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    updated_at DATETIME
);
CREATE UNIQUE INDEX IF NOT EXISTS IX_configs_chat_id ON configs(chat_id) WHERE chat_id <> 0;
CREATE UNIQUE INDEX IF NOT EXISTS IX_configs_global ON configs(chat_id) WHERE chat_id = 0;

CREATE TABLE IF NOT EXISTS notification_preferences (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL UNIQUE,
    telegram_dm_enabled BOOLEAN NOT NULL DEFAULT 1,
    email_enabled BOOLEAN NOT NULL DEFAULT 0,
    channel_configs TEXT,
    event_filters TEXT,
    protected_secrets TEXT,
    created_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    updated_at DATETIME,
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

-- review queues
CREATE TABLE IF NOT EXISTS reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL,
    chat_id INTEGER NOT NULL,
    reported_by_user_id INTEGER,
    reported_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    status INTEGER NOT NULL DEFAULT 0,
    reviewed_by TEXT,
    reviewed_at DATETIME,
    action_taken TEXT,
    admin_notes TEXT,
    web_user_id TEXT,
    FOREIGN KEY(web_user_id) REFERENCES users(id) ON DELETE SET NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS IX_reports_unique_pending_per_message
    ON reports(message_id, chat_id) WHERE status = 0;

CREATE TABLE IF NOT EXISTS impersonation_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    suspected_user_id INTEGER NOT NULL,
    target_user_id INTEGER NOT NULL,
    chat_id INTEGER NOT NULL,
    total_score INTEGER NOT NULL,
    risk_level TEXT NOT NULL,
    name_match BOOLEAN NOT NULL DEFAULT 0,
    photo_match BOOLEAN NOT NULL DEFAULT 0,
    photo_similarity_score REAL,
    auto_banned BOOLEAN NOT NULL DEFAULT 0,
    detected_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    reviewed_by_user_id TEXT,
    reviewed_at DATETIME,
    verdict TEXT,
    FOREIGN KEY(reviewed_by_user_id) REFERENCES users(id) ON DELETE SET NULL
);

-- classifier training data
CREATE TABLE IF NOT EXISTS training_samples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_text TEXT NOT NULL,
    is_spam BOOLEAN NOT NULL,
    added_date DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    source TEXT NOT NULL DEFAULT 'manual',
    confidence_when_added INTEGER,
    added_by TEXT,
    detection_count INTEGER NOT NULL DEFAULT 0,
    last_detected_date DATETIME,
    chat_ids TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS log_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at DATETIME NOT NULL DEFAULT (CURRENT_TIMESTAMP),
    level TEXT NOT NULL,
    logger TEXT NOT NULL,
    message TEXT NOT NULL,
    context TEXT
);
CREATE INDEX IF NOT EXISTS idx_log_events_level_time ON log_events(level, created_at);
"""

DROP = """
DROP TABLE IF EXISTS log_events;
DROP TABLE IF EXISTS training_samples;
DROP TABLE IF EXISTS impersonation_alerts;
DROP TABLE IF EXISTS reports;
DROP TABLE IF EXISTS notification_preferences;
DROP TABLE IF EXISTS configs;
DROP TABLE IF EXISTS audit_log;
DROP TABLE IF EXISTS user_actions;
DROP TABLE IF EXISTS admin_notes;
DROP TABLE IF EXISTS stop_words;
DROP TABLE IF EXISTS detection_results;
DROP TABLE IF EXISTS message_translations;
DROP TABLE IF EXISTS message_edits;
DROP TABLE IF EXISTS messages;
DROP TABLE IF EXISTS telegram_users;
DROP TABLE IF EXISTS users;
"""

DEFAULT_GLOBAL_CONFIG = {
    "moderation_config": {
        "warnThreshold": 3,
        "defaultBanDurationHours": 24,
        "deleteSpamMessages": True,
    },
    "spam_detection_config": {
        "autoBanThreshold": 80,
        "reviewQueueThreshold": 50,
        "checks": {
            "StopWords": {"enabled": True, "alwaysRun": False},
            "Cas": {"enabled": True, "alwaysRun": False},
            "Similarity": {"enabled": True, "alwaysRun": False},
            "Bayes": {"enabled": True, "alwaysRun": False},
            "UrlFiltering": {"enabled": True, "alwaysRun": True},
        },
    },
    "welcome_config": {
        "enabled": False,
        "timeoutSeconds": 60,
        "mode": "button",
    },
    "background_jobs_config": {
        "Jobs": {
            "message_cleanup": {
                "Enabled": True,
                "ScheduleType": "interval",
                "IntervalDuration": "1d",
            },
            "scheduled_backup": {
                "Enabled": False,
                "ScheduleType": "cron",
                "CronExpression": "0 0 3 * * ?",
            },
        },
    },
}


def _seed_global_row(conn: sqlite3.Connection) -> None:
    exists = conn.execute("SELECT 1 FROM configs WHERE chat_id = 0").fetchone()
    if exists:
        return
    columns = list(DEFAULT_GLOBAL_CONFIG)
    conn.execute(
        f"INSERT INTO configs(chat_id, {', '.join(columns)}) VALUES (0, {', '.join('?' for _ in columns)})",
        [json.dumps(DEFAULT_GLOBAL_CONFIG[column], sort_keys=True) for column in columns],
    )


def up(conn: sqlite3.Connection) -> None:
    execute_script(conn, SCHEMA)
    _seed_global_row(conn)


MIGRATION = Migration(
    version=20250114093000,
    name="initial_schema",
    up=up,
    down=DROP,
    lossy=("initial_schema: every table and its data is dropped",),
)
