"""
storage/evolution/remap.py
────────────────────────────────────────────────────────
Collision-free renumbering of small integer domains.

An in-place `UPDATE ... WHERE c = old` sequence corrupts data as soon as the
old and new ranges overlap ({0→5, 1→0, 5→1} rewrites a row twice). The
remap therefore runs in two passes:

• phase one moves every mapped value into the disjoint negative range
  -(old + 1); values already negative are left alone, so the pass can be
  re-run after an interruption;
• phase two maps each temporary value to its final code.

The pure functions operate on plain lists and define the semantics;
`RemapPlan.apply` runs the same protocol as two SQL statements.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping

from config.config import settings
from core.errors import AmbiguousLegacyValueError
from utils.logger import get_logger

from .ddl import ident

LOGGER = get_logger(__name__)

REJECT = "reject"
KEEP = "keep"


def to_temporary(value: int) -> int:
    if value < 0:
        raise ValueError(f"value {value} is already in the temporary range")
    return -(value + 1)


def from_temporary(value: int) -> int:
    if value >= 0:
        raise ValueError(f"value {value} is not in the temporary range")
    return -value - 1


def is_temporary(value: int) -> bool:
    return value < 0


def validate_mapping(mapping: Mapping[int, int]) -> dict[int, int]:
    checked: dict[int, int] = {}
    for old, new in mapping.items():
        for value in (old, new):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"remap codes must be non-negative integers, got {value!r}")
        checked[old] = new
    return checked


def _check_unmapped(values: Iterable[int], mapping: Mapping[int, int], policy: str) -> None:
    unmapped = {value for value in values if value >= 0 and value not in mapping}
    if unmapped and policy == REJECT:
        raise AmbiguousLegacyValueError(
            f"values without a mapping: {sorted(unmapped)}",
            values=unmapped,
        )


def phase_one(values: Iterable[int], mapping: Mapping[int, int], *, unmapped: str = REJECT) -> list[int]:
    mapping = validate_mapping(mapping)
    values = list(values)
    _check_unmapped(values, mapping, unmapped)
    return [to_temporary(value) if value >= 0 and value in mapping else value for value in values]


def phase_two(values: Iterable[int], mapping: Mapping[int, int]) -> list[int]:
    mapping = validate_mapping(mapping)
    result: list[int] = []
    for value in values:
        if not is_temporary(value):
            result.append(value)
            continue
        old = from_temporary(value)
        if old not in mapping:
            raise AmbiguousLegacyValueError(
                f"temporary value {value} does not come from a mapped code",
                values=[value],
            )
        result.append(mapping[old])
    return result


def two_phase_remap(values: Iterable[int], mapping: Mapping[int, int], *, unmapped: str = REJECT) -> list[int]:
    return phase_two(phase_one(values, mapping, unmapped=unmapped), mapping)


def simultaneous_remap(values: Iterable[int], mapping: Mapping[int, int], *, unmapped: str = REJECT) -> list[int]:
    """Reference semantics: every value is looked up in the original mapping exactly once."""
    mapping = validate_mapping(mapping)
    values = list(values)
    _check_unmapped(values, mapping, unmapped)
    return [mapping.get(value, value) for value in values]


# ───────────────────────────────
#  SQL execution
# ───────────────────────────────
_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_remaps (
    name TEXT PRIMARY KEY,
    table_name TEXT NOT NULL,
    column_name TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""


@dataclass(frozen=True, slots=True)
class RemapPlan:
    name: str
    mapping: Mapping[int, int]
    unmapped: str | None = None
    description: str = field(default="", compare=False)

    @property
    def policy(self) -> str:
        return self.unmapped or settings.UNMAPPED_VALUE_POLICY

    def is_injective(self) -> bool:
        return len(set(self.mapping.values())) == len(self.mapping)

    def apply(self, conn: sqlite3.Connection, table: str, column: str) -> int:
        """Remap `table.column` in place; returns the number of rows rewritten."""
        mapping = validate_mapping(self.mapping)
        tbl, col = ident(table), ident(column)

        conn.execute(_LEDGER_DDL)
        done = conn.execute("SELECT 1 FROM schema_remaps WHERE name = ?", (self.name,)).fetchone()
        if done:
            LOGGER.info("Remap %s already applied, skipping", self.name)
            return 0

        present = [row[0] for row in conn.execute(f"SELECT DISTINCT {col} FROM {tbl} WHERE {col} IS NOT NULL")]
        stray = [value for value in present if value < 0 and from_temporary(value) not in mapping]
        if stray:
            raise AmbiguousLegacyValueError(
                f"{table}.{column} holds negative values outside the remap: {sorted(stray)}",
                values=stray,
            )
        _check_unmapped(present, mapping, self.policy)

        keys = sorted(mapping)
        marks = ", ".join("?" for _ in keys)
        conn.execute(
            f"UPDATE {tbl} SET {col} = -({col} + 1) WHERE {col} >= 0 AND {col} IN ({marks})",
            keys,
        )

        whens = " ".join("WHEN ? THEN ?" for _ in keys)
        params: list[int] = []
        for old in keys:
            params.extend((to_temporary(old), mapping[old]))
        cursor = conn.execute(
            f"UPDATE {tbl} SET {col} = CASE {col} {whens} ELSE {col} END WHERE {col} < 0",
            params,
        )
        rewritten = cursor.rowcount

        conn.execute(
            "INSERT INTO schema_remaps(name, table_name, column_name, applied_at) VALUES (?, ?, ?, ?)",
            (self.name, table, column, datetime.now(timezone.utc).isoformat(timespec="seconds")),
        )
        LOGGER.info("Remap %s rewrote %s row(s) in %s.%s", self.name, rewritten, table, column)
        return rewritten


__all__ = [
    "KEEP",
    "REJECT",
    "RemapPlan",
    "from_temporary",
    "is_temporary",
    "phase_one",
    "phase_two",
    "simultaneous_remap",
    "to_temporary",
    "two_phase_remap",
    "validate_mapping",
]
