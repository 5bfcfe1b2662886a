import random
import sqlite3
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.errors import AmbiguousLegacyValueError
from core.types import AuditEventType
from storage.evolution.remap import (
    KEEP,
    REJECT,
    RemapPlan,
    from_temporary,
    phase_one,
    phase_two,
    simultaneous_remap,
    to_temporary,
    two_phase_remap,
)
from storage.migrations.v20251103_audit_event_renumbering import AUDIT_EVENT_REMAP, LEGACY_AUDIT_EVENT_MAPPING

ROTATION = {0: 5, 1: 0, 5: 1}


class TwoPhaseRemapTest(unittest.TestCase):
    def test_rotation_maps_every_row_once(self) -> None:
        self.assertEqual(two_phase_remap([0, 1, 5], ROTATION), [5, 0, 1])

    def test_naive_sequential_update_corrupts(self) -> None:
        naive = [0, 1, 5]
        for old, new in ROTATION.items():
            naive = [new if value == old else value for value in naive]
        self.assertNotEqual(naive, [5, 0, 1])

    def test_matches_simultaneous_semantics(self) -> None:
        rng = random.Random(1103)
        for _ in range(200):
            domain = rng.sample(range(12), rng.randint(1, 8))
            targets = [rng.randrange(12) for _ in domain]
            mapping = dict(zip(domain, targets))
            values = [rng.choice(domain) for _ in range(rng.randint(0, 20))]
            self.assertEqual(two_phase_remap(values, mapping), simultaneous_remap(values, mapping))

    def test_phase_one_is_idempotent(self) -> None:
        once = phase_one([0, 1, 5], ROTATION)
        self.assertEqual(once, [-1, -2, -6])
        self.assertEqual(phase_one(once, ROTATION), once)
        self.assertEqual(phase_two(phase_one(once, ROTATION), ROTATION), [5, 0, 1])

    def test_temporary_range(self) -> None:
        self.assertEqual(to_temporary(0), -1)
        self.assertEqual(from_temporary(-1), 0)
        with self.assertRaises(ValueError):
            to_temporary(-3)
        with self.assertRaises(ValueError):
            from_temporary(0)

    def test_unmapped_values(self) -> None:
        with self.assertRaises(AmbiguousLegacyValueError) as ctx:
            two_phase_remap([0, 7], ROTATION, unmapped=REJECT)
        self.assertEqual(ctx.exception.values, [7])
        self.assertEqual(two_phase_remap([0, 7], ROTATION, unmapped=KEEP), [5, 7])

    def test_negative_codes_are_refused_in_mapping(self) -> None:
        with self.assertRaises(ValueError):
            two_phase_remap([0], {0: -1})


class RemapPlanSqlTest(unittest.TestCase):
    def setUp(self) -> None:
        self.conn = sqlite3.connect(":memory:", isolation_level=None)
        self.conn.execute("CREATE TABLE events (id INTEGER PRIMARY KEY, code INTEGER)")
        self.conn.executemany("INSERT INTO events(code) VALUES (?)", [(0,), (1,), (5,), (None,)])

    def tearDown(self) -> None:
        self.conn.close()

    def codes(self) -> list:
        return [row[0] for row in self.conn.execute("SELECT code FROM events ORDER BY id")]

    def test_rotation_in_sql(self) -> None:
        plan = RemapPlan("rotation", ROTATION, unmapped=REJECT)
        self.assertEqual(plan.apply(self.conn, "events", "code"), 3)
        self.assertEqual(self.codes(), [5, 0, 1, None])

    def test_rerun_is_a_no_op(self) -> None:
        plan = RemapPlan("rotation", ROTATION, unmapped=REJECT)
        plan.apply(self.conn, "events", "code")
        self.assertEqual(plan.apply(self.conn, "events", "code"), 0)
        self.assertEqual(self.codes(), [5, 0, 1, None])

    def test_resumes_after_interrupted_first_phase(self) -> None:
        # phase one already moved one row before the interruption
        self.conn.execute("UPDATE events SET code = -1 WHERE code = 0")
        RemapPlan("rotation", ROTATION, unmapped=REJECT).apply(self.conn, "events", "code")
        self.assertEqual(self.codes(), [5, 0, 1, None])

    def test_stray_negative_values_refused(self) -> None:
        self.conn.execute("INSERT INTO events(code) VALUES (-40)")
        with self.assertRaises(AmbiguousLegacyValueError):
            RemapPlan("rotation", ROTATION, unmapped=KEEP).apply(self.conn, "events", "code")
        self.assertEqual(self.codes(), [0, 1, 5, None, -40])

    def test_unmapped_policy(self) -> None:
        self.conn.execute("INSERT INTO events(code) VALUES (9)")
        with self.assertRaises(AmbiguousLegacyValueError):
            RemapPlan("rotation", ROTATION, unmapped=REJECT).apply(self.conn, "events", "code")
        self.assertEqual(self.codes(), [0, 1, 5, None, 9])

        RemapPlan("rotation", ROTATION, unmapped=KEEP).apply(self.conn, "events", "code")
        self.assertEqual(self.codes(), [5, 0, 1, None, 9])

    def test_policy_defaults_to_settings(self) -> None:
        self.assertIn(RemapPlan("rotation", ROTATION).policy, {REJECT, KEEP})
        self.assertEqual(RemapPlan("rotation", ROTATION, unmapped=KEEP).policy, KEEP)


class AuditEventMappingTest(unittest.TestCase):
    def test_every_legacy_code_is_mapped(self) -> None:
        self.assertEqual(sorted(LEGACY_AUDIT_EVENT_MAPPING), list(range(33)))
        for new in AUDIT_EVENT_REMAP.mapping.values():
            AuditEventType(new)

    def test_mapping_collapses_codes(self) -> None:
        self.assertFalse(AUDIT_EVENT_REMAP.is_injective())
        self.assertEqual(AUDIT_EVENT_REMAP.mapping[8], AUDIT_EVENT_REMAP.mapping[9])


if __name__ == "__main__":
    unittest.main()
