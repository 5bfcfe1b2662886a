from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Callable, Union

from storage.evolution.ddl import execute_script

Step = Union[str, Callable[[sqlite3.Connection], None]]


@dataclass(frozen=True)
class Migration:
    """
    One schema step. `version` is a timestamp-prefixed integer and fixes the
    order; `lossy` lists what `down` cannot bring back. A migration without
    `down` is irreversible.
    """

    version: int
    name: str
    up: Step
    down: Step | None = None
    lossy: tuple[str, ...] = field(default_factory=tuple)

    @property
    def reversible(self) -> bool:
        return self.down is not None

    @property
    def is_lossy(self) -> bool:
        return bool(self.lossy)

    @property
    def label(self) -> str:
        return f"{self.version}_{self.name}"

    def run_up(self, conn: sqlite3.Connection) -> None:
        _run(self.up, conn)

    def run_down(self, conn: sqlite3.Connection) -> None:
        if self.down is None:
            raise ValueError(f"migration {self.label} has no down step")
        _run(self.down, conn)


def _run(step: Step, conn: sqlite3.Connection) -> None:
    if isinstance(step, str):
        execute_script(conn, step)
    else:
        step(conn)


__all__ = ["Migration", "Step"]
