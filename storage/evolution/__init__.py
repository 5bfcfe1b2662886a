from __future__ import annotations

from .consolidation import Consolidation, apply_to_rows
from .ddl import add_column_if_missing, execute_script, rebuild_table, table_columns, table_exists
from .invariants import add_check_after_backfill, count_violations
from .remap import RemapPlan, simultaneous_remap, two_phase_remap
from .unification import UnificationPlan, split_tables, unify_tables

__all__ = [
    "Consolidation",
    "RemapPlan",
    "UnificationPlan",
    "add_check_after_backfill",
    "add_column_if_missing",
    "apply_to_rows",
    "count_violations",
    "execute_script",
    "rebuild_table",
    "simultaneous_remap",
    "split_tables",
    "table_columns",
    "table_exists",
    "two_phase_remap",
    "unify_tables",
]
