import sqlite3
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storage.evolution.consolidation import Consolidation, apply_to_rows, dump_json, load_json
from storage.migrations.v20250820_job_schedules_to_cron import (
    DEFAULT_CRON,
    JOB_SCHEDULES,
    convert_document,
    interval_to_cron,
    restore_document,
)
from storage.migrations.v20250904_notification_channels import NOTIFICATION_CHANNELS


class JobScheduleConsolidationTest(unittest.TestCase):
    def test_interval_to_cron(self) -> None:
        self.assertEqual(interval_to_cron("30m"), "0 0 * * * ?")
        self.assertEqual(interval_to_cron("6h"), "0 0 */6 * * ?")
        self.assertEqual(interval_to_cron("1d"), DEFAULT_CRON)
        self.assertEqual(interval_to_cron("1w"), "0 0 2 ? * SUN")
        self.assertEqual(interval_to_cron("soon"), DEFAULT_CRON)
        self.assertEqual(interval_to_cron(None), DEFAULT_CRON)

    def test_round_trip_keeps_enabled_and_settings(self) -> None:
        legacy = {
            "key": "scheduled_backup",
            "Enabled": True,
            "ScheduleType": "interval",
            "IntervalDuration": "1d",
            "Settings": {"retention": 7},
        }
        converted = JOB_SCHEDULES.forward(legacy)
        self.assertEqual(converted["key"], "ScheduledBackupJob")
        self.assertEqual(converted["CronExpression"], DEFAULT_CRON)
        self.assertNotIn("IntervalDuration", converted)

        restored = JOB_SCHEDULES.round_trip(legacy)
        self.assertEqual(JOB_SCHEDULES.preserved(restored), JOB_SCHEDULES.preserved(legacy))
        self.assertEqual(restored["ScheduleType"], "cron")

    def test_distinct_intervals_can_become_indistinguishable(self) -> None:
        daily = {"key": "ChatHealthCheckJob", "Enabled": True, "ScheduleType": "interval", "IntervalDuration": "1d"}
        every_third = {**daily, "IntervalDuration": "3d"}
        self.assertNotEqual(daily, every_third)
        self.assertEqual(JOB_SCHEDULES.round_trip(daily), JOB_SCHEDULES.round_trip(every_third))
        self.assertIn("IntervalDuration", JOB_SCHEDULES.lossy_fields)

    def test_document_rename_collision_keeps_canonical_entry(self) -> None:
        with self.assertLogs("storage.migrations.v20250820_job_schedules_to_cron", level="WARNING"):
            converted = convert_document({
                "Jobs": {
                    "BlocklistSync": {"Enabled": True, "ScheduleType": "interval", "IntervalDuration": "6h"},
                    "BlocklistSyncJob": {"Enabled": False, "CronExpression": "0 30 1 * * ?"},
                    "legacy_thing": {"Enabled": True},
                },
                "MaxConcurrent": 2,
            })
        self.assertEqual(
            converted,
            {
                "Jobs": {"BlocklistSyncJob": {"Enabled": False, "CronExpression": "0 30 1 * * ?"}},
                "MaxConcurrent": 2,
            },
        )

    def test_document_restore(self) -> None:
        restored = restore_document({"Jobs": {"TempbanExpiryJob": {"Enabled": True, "CronExpression": "0 * * * * ?"}}})
        self.assertEqual(
            restored,
            {"Jobs": {"TempbanExpiryJob": {"Enabled": True, "CronExpression": "0 * * * * ?", "ScheduleType": "cron"}}},
        )
        self.assertIsNone(convert_document(None))
        self.assertIsNone(restore_document(None))

    def test_lossy_notes(self) -> None:
        notes = JOB_SCHEDULES.lossy_notes()
        self.assertTrue(JOB_SCHEDULES.is_lossy)
        self.assertIn("job_schedules_to_cron: ScheduleType - always restored as 'cron'", notes)


class NotificationChannelConsolidationTest(unittest.TestCase):
    LEGACY = {
        "telegram_dm_enabled": True,
        "email_enabled": False,
        "event_filters": {"spam_detected": True, "user_banned": False, "backup_failed": True},
        "channel_configs": {"email": {"digestMinutes": 15}},
        "protected_secrets": None,
    }

    def test_forward_builds_one_entry_per_channel(self) -> None:
        channels = NOTIFICATION_CHANNELS.forward(self.LEGACY)["channels"]
        self.assertEqual([entry["channel"] for entry in channels], [0, 1, 2])
        self.assertTrue(channels[0]["enabled"])
        self.assertFalse(channels[1]["enabled"])
        self.assertEqual(channels[0]["enabledEvents"], [0, 7])
        self.assertEqual(channels[1]["digestMinutes"], 15)
        self.assertEqual(channels[2]["enabledEvents"], [])

    def test_round_trip_keeps_channel_switches(self) -> None:
        restored = NOTIFICATION_CHANNELS.round_trip(self.LEGACY)
        self.assertEqual(NOTIFICATION_CHANNELS.preserved(restored), NOTIFICATION_CHANNELS.preserved(self.LEGACY))
        self.assertEqual(restored["event_filters"], {"spam_detected": True, "backup_failed": True})

    def test_false_filters_are_lost(self) -> None:
        without_false = {**self.LEGACY, "event_filters": {"spam_detected": True, "backup_failed": True}}
        self.assertEqual(
            NOTIFICATION_CHANNELS.round_trip(self.LEGACY),
            NOTIFICATION_CHANNELS.round_trip(without_false),
        )


class ConsolidationContractTest(unittest.TestCase):
    def test_field_cannot_be_both_preserved_and_lossy(self) -> None:
        with self.assertRaises(ValueError):
            Consolidation(
                name="broken",
                forward=dict,
                inverse=dict,
                round_trip_fields=("a",),
                lossy_fields={"a": "dropped"},
            )

    def test_lossless_consolidation(self) -> None:
        identity = Consolidation(name="identity", forward=dict, inverse=dict, round_trip_fields=("a",))
        self.assertFalse(identity.is_lossy)
        self.assertEqual(identity.lossy_notes(), [])

    def test_json_helpers(self) -> None:
        self.assertIsNone(load_json(None))
        self.assertEqual(load_json("", {}), {})
        self.assertEqual(load_json('{"b": 1}'), {"b": 1})
        self.assertIsNone(dump_json(None))
        self.assertEqual(dump_json({"b": 1, "a": "é"}), '{"a": "é", "b": 1}')

    def test_apply_to_rows(self) -> None:
        conn = sqlite3.connect(":memory:", isolation_level=None)
        self.addCleanup(conn.close)
        conn.execute("CREATE TABLE docs (id INTEGER PRIMARY KEY, body TEXT)")
        conn.executemany("INSERT INTO docs(body) VALUES (?)", [('{"n": 1}',), (None,), ('{"n": 3}',)])

        written = apply_to_rows(
            conn,
            "docs",
            "id",
            ("body",),
            lambda row: {"body": dump_json({"n": load_json(row["body"])["n"] * 10})},
            where="body IS NOT NULL",
        )
        self.assertEqual(written, 2)
        self.assertEqual(
            [row[0] for row in conn.execute("SELECT body FROM docs ORDER BY id")],
            ['{"n": 10}', None, '{"n": 30}'],
        )


if __name__ == "__main__":
    unittest.main()
