"""
Audit event codes are regrouped by domain (data, system, user lifecycle).

Several legacy codes collapse into one (invite created/revoked and the
permission events were recorded under more than one code), and the old and
new ranges overlap, so the update goes through the two-phase remap.
"""

from __future__ import annotations

import sqlite3

from core.types import AuditEventType as E
from storage.evolution.remap import RemapPlan

from .base import Migration

LEGACY_AUDIT_EVENT_MAPPING: dict[int, int] = {
    0: E.USER_LOGIN,
    1: E.USER_LOGOUT,
    2: E.USER_PASSWORD_CHANGED,
    3: E.USER_TOTP_ENABLED,
    4: E.USER_TOTP_RESET,
    5: E.USER_REGISTERED,
    6: E.USER_STATUS_CHANGED,
    7: E.USER_DELETED,
    8: E.USER_INVITE_CREATED,
    9: E.USER_INVITE_CREATED,
    10: E.USER_INVITE_REVOKED,
    11: E.USER_PERMISSION_CHANGED,
    12: E.USER_LOGIN_FAILED,
    13: E.USER_PASSWORD_RESET,
    14: E.USER_INVITE_CREATED,
    15: E.USER_INVITE_REVOKED,
    16: E.USER_PERMISSION_CHANGED,
    17: E.USER_STATUS_CHANGED,
    18: E.USER_TOTP_RESET,
    19: E.DATA_EXPORTED,
    20: E.USER_TOTP_ENABLED,
    21: E.USER_EMAIL_CHANGED,
    22: E.USER_PASSWORD_CHANGED,
    23: E.USER_LOGIN_FAILED,
    24: E.USER_LOGOUT,
    25: E.MESSAGE_EXPORTED,
    26: E.USER_LOGIN,
    27: E.USER_REGISTERED,
    28: E.USER_PASSWORD_RESET,
    29: E.USER_PASSWORD_RESET_REQUESTED,
    30: E.USER_EMAIL_VERIFICATION_SENT,
    31: E.SYSTEM_CONFIG_CHANGED,
    32: E.USER_EMAIL_VERIFIED,
}

AUDIT_EVENT_REMAP = RemapPlan(
    name="audit_event_types_v2",
    mapping={old: int(new) for old, new in LEGACY_AUDIT_EVENT_MAPPING.items()},
    description="regroup audit event codes by domain",
)


def up(conn: sqlite3.Connection) -> None:
    AUDIT_EVENT_REMAP.apply(conn, "audit_log", "event_type")


MIGRATION = Migration(
    version=20251103110000,
    name="audit_event_renumbering",
    up=up,
    down=None,
    lossy=("audit_event_renumbering: several legacy codes share one new code, the old code cannot be recovered",),
)
