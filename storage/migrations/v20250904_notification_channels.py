from __future__ import annotations

import sqlite3
from typing import Any

from core.types import NotificationChannel, NotificationEvent
from storage.evolution.attribution import drop_legacy_column
from storage.evolution.consolidation import Consolidation, apply_to_rows, dump_json, load_json
from storage.evolution.ddl import add_column_if_missing

from .base import Migration

TABLE = "notification_preferences"

EVENT_NAMES = {
    "spam_detected": NotificationEvent.SPAM_DETECTED,
    "spam_auto_deleted": NotificationEvent.SPAM_AUTO_DELETED,
    "user_banned": NotificationEvent.USER_BANNED,
    "message_reported": NotificationEvent.MESSAGE_REPORTED,
    "malware_detected": NotificationEvent.MALWARE_DETECTED,
    "chat_admin_changed": NotificationEvent.CHAT_ADMIN_CHANGED,
    "chat_health_warning": NotificationEvent.CHAT_HEALTH_WARNING,
    "backup_failed": NotificationEvent.BACKUP_FAILED,
}

_LEGACY_COLUMNS = (
    ("telegram_dm_enabled", "BOOLEAN NOT NULL DEFAULT 1"),
    ("email_enabled", "BOOLEAN NOT NULL DEFAULT 0"),
    ("channel_configs", "TEXT"),
    ("event_filters", "TEXT"),
    ("protected_secrets", "TEXT"),
)


def channels_forward(legacy: dict[str, Any]) -> dict[str, Any]:
    filters = legacy.get("event_filters") or {}
    enabled_events = sorted(int(code) for name, code in EVENT_NAMES.items() if filters.get(name) is True)
    email_settings = (legacy.get("channel_configs") or {}).get("email") or {}

    return {
        "channels": [
            {
                "channel": int(NotificationChannel.TELEGRAM_DM),
                "enabled": bool(legacy.get("telegram_dm_enabled")),
                "enabledEvents": enabled_events,
                "digestMinutes": 0,
            },
            {
                "channel": int(NotificationChannel.EMAIL),
                "enabled": bool(legacy.get("email_enabled")),
                "enabledEvents": enabled_events,
                "digestMinutes": int(email_settings.get("digestMinutes") or 0),
            },
            {
                "channel": int(NotificationChannel.WEB_PUSH),
                "enabled": False,
                "enabledEvents": [],
                "digestMinutes": 0,
            },
        ]
    }


def channels_inverse(document: dict[str, Any]) -> dict[str, Any]:
    channels = {entry["channel"]: entry for entry in document.get("channels") or []}
    dm = channels.get(NotificationChannel.TELEGRAM_DM, {})
    email = channels.get(NotificationChannel.EMAIL, {})

    events: set[int] = set()
    for entry in channels.values():
        events.update(entry.get("enabledEvents") or [])

    digest = int(email.get("digestMinutes") or 0)
    return {
        "telegram_dm_enabled": bool(dm.get("enabled")),
        "email_enabled": bool(email.get("enabled")),
        "event_filters": {name: True for name, code in EVENT_NAMES.items() if code in events},
        "channel_configs": {"email": {"digestMinutes": digest}} if digest else None,
        "protected_secrets": None,
    }


NOTIFICATION_CHANNELS = Consolidation(
    name="notification_channels",
    forward=channels_forward,
    inverse=channels_inverse,
    round_trip_fields=("telegram_dm_enabled", "email_enabled"),
    lossy_fields={
        "event_filters": "only events set to true survive; false and unknown names are dropped",
        "channel_configs": "only the email digest interval survives",
        "protected_secrets": "not carried into the channel document",
    },
)


def up(conn: sqlite3.Connection) -> None:
    add_column_if_missing(conn, TABLE, "config", "TEXT NOT NULL DEFAULT '{\"channels\":[]}'")

    def convert(row: dict) -> dict:
        legacy = {
            "telegram_dm_enabled": bool(row["telegram_dm_enabled"]),
            "email_enabled": bool(row["email_enabled"]),
            "channel_configs": load_json(row["channel_configs"], {}),
            "event_filters": load_json(row["event_filters"], {}),
            "protected_secrets": row["protected_secrets"],
        }
        return {"config": dump_json(NOTIFICATION_CHANNELS.forward(legacy))}

    apply_to_rows(conn, TABLE, "id", tuple(name for name, _ in _LEGACY_COLUMNS), convert)
    for name, _ in _LEGACY_COLUMNS:
        drop_legacy_column(conn, TABLE, name)


def down(conn: sqlite3.Connection) -> None:
    for name, definition in _LEGACY_COLUMNS:
        add_column_if_missing(conn, TABLE, name, definition)

    def restore(row: dict) -> dict:
        legacy = NOTIFICATION_CHANNELS.inverse(load_json(row["config"], {}))
        return {
            "telegram_dm_enabled": int(legacy["telegram_dm_enabled"]),
            "email_enabled": int(legacy["email_enabled"]),
            "channel_configs": dump_json(legacy["channel_configs"]),
            "event_filters": dump_json(legacy["event_filters"]),
            "protected_secrets": None,
        }

    apply_to_rows(conn, TABLE, "id", ("config",), restore)
    drop_legacy_column(conn, TABLE, "config")


MIGRATION = Migration(
    version=20250904173000,
    name="notification_channels",
    up=up,
    down=down,
    lossy=tuple(NOTIFICATION_CHANNELS.lossy_notes()),
)
