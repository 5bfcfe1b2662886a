"""
core/actors.py
────────────────────────────────────────────────────────
Actor identity codec.

• `encode` / `decode` translate an ActorRef to and from the three backing
  columns (web user id, telegram user id, system identifier).
• `encode_optional` / `decode_optional` do the same for targets, where all
  three columns null means "no target".
• `classify_legacy_actor` maps free-text actor values from old rows onto a
  variant. Only migrations call it.
• SQL helpers render and discover the CK_<table>_exclusive_* constraints.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from typing import Collection, NamedTuple

from core.errors import MalformedActorError
from core.types import ActorRef, System, TelegramUser, WebUser

LEGACY_SYSTEM_IDENTIFIER = "SYSTEM"
AUTO_DETECTION = "auto_detection"

INT64_MAX = 2**63 - 1
_NUMERIC_RE = re.compile(r"^[0-9]+$")
_CONSTRAINT_RE = re.compile(
    r'CONSTRAINT\s+"?CK_(?P<table>\w+?)_exclusive_(?P<kind>actor|target)"?\s+CHECK',
    re.IGNORECASE,
)
_BOUND_RE = re.compile(r"\)\s*(<=|=)\s*1\b")


class EncodedActor(NamedTuple):
    web_user_id: str | None
    telegram_user_id: int | None
    system_identifier: str | None


NO_ACTOR = EncodedActor(None, None, None)


def encode(actor: ActorRef) -> EncodedActor:
    if isinstance(actor, WebUser):
        if not isinstance(actor.id, str) or not actor.id:
            raise MalformedActorError(f"web user id must be a non-empty string, got {actor.id!r}")
        return EncodedActor(actor.id, None, None)
    if isinstance(actor, TelegramUser):
        if isinstance(actor.id, bool) or not isinstance(actor.id, int):
            raise MalformedActorError(f"telegram user id must be int, got {actor.id!r}")
        return EncodedActor(None, actor.id, None)
    if isinstance(actor, System):
        if not isinstance(actor.identifier, str) or not actor.identifier:
            raise MalformedActorError(f"system identifier must be a non-empty string, got {actor.identifier!r}")
        return EncodedActor(None, None, actor.identifier)
    raise MalformedActorError(f"not an actor: {actor!r}")


def decode(
    web_user_id: str | None,
    telegram_user_id: int | None,
    system_identifier: str | None,
) -> ActorRef:
    populated = _count_populated(web_user_id, telegram_user_id, system_identifier)
    if populated != 1:
        raise MalformedActorError(
            f"expected exactly one actor field, got {populated}: "
            f"web={web_user_id!r} telegram={telegram_user_id!r} system={system_identifier!r}"
        )
    if web_user_id is not None:
        return WebUser(web_user_id)
    if telegram_user_id is not None:
        return TelegramUser(int(telegram_user_id))
    return System(system_identifier)


def encode_optional(actor: ActorRef | None) -> EncodedActor:
    if actor is None:
        return NO_ACTOR
    return encode(actor)


def decode_optional(
    web_user_id: str | None,
    telegram_user_id: int | None,
    system_identifier: str | None,
) -> ActorRef | None:
    if _count_populated(web_user_id, telegram_user_id, system_identifier) == 0:
        return None
    return decode(web_user_id, telegram_user_id, system_identifier)


def _count_populated(*fields: object) -> int:
    return sum(1 for field in fields if field is not None)


# ───────────────────────────────
#  Legacy classification
# ───────────────────────────────
def classify_legacy_actor(raw: str | int | None, known_web_user_ids: Collection[str]) -> ActorRef:
    """
    Decide which identity a free-text legacy actor value refers to.

    Order matters: a known web-user id wins even if it happens to be numeric,
    then purely numeric values that fit int64 become Telegram users, and every
    other value is kept verbatim as a system identifier. Empty input maps to
    the legacy SYSTEM identifier.
    """
    if raw is None:
        return System(LEGACY_SYSTEM_IDENTIFIER)

    value = str(raw).strip()
    if not value:
        return System(LEGACY_SYSTEM_IDENTIFIER)
    if value in known_web_user_ids:
        return WebUser(value)
    if _NUMERIC_RE.match(value) and int(value) <= INT64_MAX:
        return TelegramUser(int(value))
    return System(value)


# ───────────────────────────────
#  SQL boundary helpers
# ───────────────────────────────
@dataclass(frozen=True, slots=True)
class ActorColumns:
    prefix: str = ""

    @property
    def web(self) -> str:
        return f"{self.prefix}web_user_id"

    @property
    def telegram(self) -> str:
        return f"{self.prefix}telegram_user_id"

    @property
    def system(self) -> str:
        return f"{self.prefix}system_identifier"

    @property
    def names(self) -> tuple[str, str, str]:
        return (self.web, self.telegram, self.system)


ACTOR = ActorColumns("actor_")
TARGET = ActorColumns("target_")
PLAIN = ActorColumns()


def exclusive_arc_predicate(columns: ActorColumns, *, optional: bool = False) -> str:
    total = " + ".join(f"({name} IS NOT NULL)" for name in columns.names)
    return f"({total}) <= 1" if optional else f"({total}) = 1"


def constraint_name(table: str, kind: str = "actor") -> str:
    if kind not in {"actor", "target"}:
        raise ValueError(f"unknown exclusive arc kind: {kind}")
    return f"CK_{table}_exclusive_{kind}"


@dataclass(frozen=True, slots=True)
class ExclusiveArc:
    table: str
    kind: str
    name: str
    columns: ActorColumns
    optional: bool

    def predicate(self) -> str:
        return exclusive_arc_predicate(self.columns, optional=self.optional)


def discover_exclusive_arcs(conn: sqlite3.Connection) -> list[ExclusiveArc]:
    """Find every exclusive-arc CHECK by its conventional name."""
    rows = conn.execute(
        "SELECT name, sql FROM sqlite_master WHERE type = 'table' AND sql IS NOT NULL ORDER BY name"
    ).fetchall()

    arcs: list[ExclusiveArc] = []
    for table_name, sql in rows:
        for match in _CONSTRAINT_RE.finditer(sql):
            table, kind = match.group("table"), match.group("kind").lower()
            if table != table_name:
                continue
            bound = _BOUND_RE.search(sql, match.end())
            arcs.append(
                ExclusiveArc(
                    table=table,
                    kind=kind,
                    name=constraint_name(table, kind),
                    columns=_arc_columns(conn, table, kind),
                    optional=bool(bound and bound.group(1) == "<="),
                )
            )
    return arcs


def _arc_columns(conn: sqlite3.Connection, table: str, kind: str) -> ActorColumns:
    if kind == "target":
        return TARGET
    existing = {row[1] for row in conn.execute(f'PRAGMA table_info("{table}")')}
    return ACTOR if ACTOR.web in existing else PLAIN


__all__ = [
    "ACTOR",
    "AUTO_DETECTION",
    "ActorColumns",
    "EncodedActor",
    "ExclusiveArc",
    "LEGACY_SYSTEM_IDENTIFIER",
    "NO_ACTOR",
    "PLAIN",
    "TARGET",
    "classify_legacy_actor",
    "constraint_name",
    "decode",
    "decode_optional",
    "discover_exclusive_arcs",
    "encode",
    "encode_optional",
    "exclusive_arc_predicate",
]
