from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from utils.logger import get_logger

from .ddl import ident

LOGGER = get_logger(__name__)

Legacy = dict[str, Any]
Consolidated = dict[str, Any]


@dataclass(frozen=True)
class Consolidation:
    """
    A forward transform from a legacy shape into one consolidated document,
    paired with a best-effort inverse.

    `round_trip_fields` are the legacy fields that `inverse(forward(x))`
    reproduces exactly; `lossy_fields` maps every other field to a short
    explanation shown to operators when a downgrade runs.
    """

    name: str
    forward: Callable[[Legacy], Consolidated]
    inverse: Callable[[Consolidated], Legacy]
    round_trip_fields: tuple[str, ...]
    lossy_fields: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        overlap = set(self.round_trip_fields) & set(self.lossy_fields)
        if overlap:
            raise ValueError(f"{self.name}: fields both round-trippable and lossy: {sorted(overlap)}")

    @property
    def is_lossy(self) -> bool:
        return bool(self.lossy_fields)

    def round_trip(self, legacy: Legacy) -> Legacy:
        return self.inverse(self.forward(legacy))

    def lossy_notes(self) -> list[str]:
        return [f"{self.name}: {field_name} - {reason}" for field_name, reason in self.lossy_fields.items()]

    def preserved(self, legacy: Legacy) -> dict[str, Any]:
        """The subset of `legacy` that must survive a round trip."""
        return {key: legacy.get(key) for key in self.round_trip_fields}


def load_json(raw: str | bytes | None, default: Any = None) -> Any:
    if raw is None or raw == "":
        return default
    return json.loads(raw)


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def apply_to_rows(
    conn: sqlite3.Connection,
    table: str,
    key: str,
    read_columns: tuple[str, ...],
    transform: Callable[[Mapping[str, Any]], Mapping[str, Any]],
    *,
    where: str | None = None,
) -> int:
    """
    Rewrite rows one at a time: `transform` receives the selected columns and
    returns the column values to write back. Returns the number of rows written.
    """
    selected = ", ".join(ident(column) for column in (key, *read_columns))
    sql = f"SELECT {selected} FROM {ident(table)}"
    if where:
        sql += f" WHERE {where}"

    rows = conn.execute(sql).fetchall()
    written = 0
    for row in rows:
        values = dict(zip((key, *read_columns), row))
        update = transform(values)
        if not update:
            continue
        assignments = ", ".join(f"{ident(column)} = ?" for column in update)
        conn.execute(
            f"UPDATE {ident(table)} SET {assignments} WHERE {ident(key)} = ?",
            (*update.values(), values[key]),
        )
        written += 1

    LOGGER.info("Consolidation rewrote %s row(s) in %s", written, table)
    return written


__all__ = ["Consolidation", "apply_to_rows", "dump_json", "load_json"]
