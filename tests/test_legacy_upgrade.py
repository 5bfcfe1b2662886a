import json
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.errors import AmbiguousLegacyValueError
from core.types import (
    AuditEventType,
    CheckCode,
    ReviewStatus,
    ReviewType,
    System,
    TelegramUser,
    TrainingLabelValue,
    WebUser,
)
from main import collect_violations
from storage import open_storage
from storage.evolution.ddl import table_columns, table_exists
from storage.migrations import LATEST_VERSION
from storage.migrations.v20250820_job_schedules_to_cron import DEFAULT_CRON
from storage.runner import MigrationRunner

INITIAL = 20250114093000
AUDIT_ARC = 20250302142000
DEDUPLICATE = 20250519080000

LEGACY_CHECKS_SPAM = json.dumps({
    "Checks": [
        {"CheckName": "StopWords", "Result": "Spam", "Confidence": 70},
        {"CheckName": "Cas", "Result": "Clean", "Confidence": 20},
    ]
})
LEGACY_CHECKS_FLIPPED = json.dumps({
    "Checks": [{"CheckName": "Bayes", "Result": "Clean", "Confidence": 30}]
})


class LegacyUpgradeTest(unittest.TestCase):
    """Seed rows in the oldest schema and upgrade them to the current one."""

    def setUp(self) -> None:
        self.storage = open_storage(":memory:", migrate=False)
        self.conn = self.storage.connection
        self.runner = MigrationRunner(self.conn)
        self.runner.upgrade(target=INITIAL)

    def tearDown(self) -> None:
        self.storage.close()

    def seed(self) -> None:
        execute = self.conn.execute
        execute("INSERT INTO users(id, email) VALUES ('a1b2', 'admin@example.com')")
        execute("INSERT INTO telegram_users(telegram_user_id, username) VALUES (777, 'spammer')")
        execute("INSERT INTO messages(message_id, chat_id, user_id, message_text) VALUES (100, -1001, 777, 'hi')")

        execute(
            """
            INSERT INTO detection_results(id, message_id, detected_at, is_spam, confidence, check_results_json, added_by)
            VALUES (1, 100, '2025-01-20 10:00:01', 1, 80, ?, 'a1b2'),
                   (2, 100, '2025-01-20 10:00:02', 0, 40, NULL, '123456'),
                   (3, 100, '2025-01-20 10:00:03', 1, 0, NULL, NULL),
                   (4, 100, '2025-01-20 10:00:04', 1, 10, ?, 'auto_detection')
            """,
            (LEGACY_CHECKS_SPAM, LEGACY_CHECKS_FLIPPED),
        )
        execute("INSERT INTO stop_words(word, added_by) VALUES ('crypto', 'a1b2')")
        execute("INSERT INTO admin_notes(telegram_user_id, note_text, created_by) VALUES (777, 'watch', '555')")
        execute("INSERT INTO user_actions(user_id, action_type, message_id) VALUES (777, 'ban', 100)")

        execute(
            """
            INSERT INTO audit_log(id, event_type, actor_user_id, target_user_id)
            VALUES (1, 0, 'a1b2', NULL),
                   (2, 5, NULL, 'a1b2'),
                   (3, 19, 'a1b2', NULL),
                   (4, 31, 'backup_job', '42')
            """
        )

        execute(
            """
            INSERT INTO training_samples(id, message_text, is_spam, added_date, detection_count, chat_ids, added_by)
            VALUES (1, 'buy crypto now', 1, '2025-01-01 10:00:00', 3, '[1]', NULL),
                   (2, 'buy crypto now', 1, '2025-02-01 10:00:00', 5, '[2]', NULL),
                   (3, 'good morning', 0, '2025-01-05 10:00:00', 1, '[1]', 'a1b2')
            """
        )

        execute(
            "INSERT INTO configs(chat_id, background_jobs_config) VALUES (-1001, ?)",
            (json.dumps({
                "Jobs": {
                    "BlocklistSync": {"Enabled": True, "ScheduleType": "interval", "IntervalDuration": "6h"},
                    "BlocklistSyncJob": {"Enabled": False, "CronExpression": "0 30 1 * * ?"},
                    "legacy_thing": {"Enabled": True},
                }
            }),),
        )
        execute(
            """
            INSERT INTO notification_preferences(user_id, telegram_dm_enabled, email_enabled, event_filters, channel_configs)
            VALUES ('a1b2', 1, 1, '{"spam_detected": true, "user_banned": false}', '{"email": {"digestMinutes": 15}}')
            """
        )

        execute("INSERT INTO reports(id, message_id, chat_id, status) VALUES (1, 100, -1001, 0)")
        execute(
            """
            INSERT INTO impersonation_alerts(
                id, suspected_user_id, target_user_id, chat_id, total_score, risk_level,
                name_match, photo_match, detected_at, reviewed_by_user_id, reviewed_at, verdict
            ) VALUES (7, 555, 777, -1001, 90, 'High', 1, 0, '2025-06-01 12:00:00',
                      'a1b2', '2025-06-02 12:00:00', 'confirmed_scam')
            """
        )

    def test_training_samples_deduplicated(self) -> None:
        self.seed()
        self.runner.upgrade(target=DEDUPLICATE)

        rows = self.conn.execute(
            "SELECT id, detection_count, chat_ids, added_date FROM training_samples ORDER BY id"
        ).fetchall()
        self.assertEqual([row[0] for row in rows], [1, 3])
        self.assertEqual(rows[0][1], 8)
        self.assertEqual(json.loads(rows[0][2]), [1, 2])
        self.assertEqual(rows[0][3], "2025-01-01 10:00:00")

    def test_conflicting_training_labels_abort(self) -> None:
        self.conn.execute(
            """
            INSERT INTO training_samples(message_text, is_spam) VALUES ('free money', 1), ('free money', 0)
            """
        )
        with self.assertRaises(AmbiguousLegacyValueError) as ctx:
            self.runner.upgrade()
        self.assertEqual(ctx.exception.values, ["free money"])
        self.assertEqual(self.runner.current_version(), AUDIT_ARC)
        self.assertEqual(self.conn.execute("SELECT COUNT(*) FROM training_samples").fetchone()[0], 2)

    def test_full_upgrade(self) -> None:
        self.seed()
        with self.assertLogs("storage.migrations.v20250611_detection_check_codes", level="WARNING"):
            self.runner.upgrade()
        self.assertEqual(self.runner.current_version(), LATEST_VERSION)

        with self.subTest("detection results"):
            results = self.storage.detections.fetch_for_message(100)
            self.assertEqual([r.net_confidence for r in results], [50, -40, 1, -30])
            self.assertEqual([r.is_spam for r in results], [True, False, True, False])
            self.assertEqual(
                [r.actor for r in results],
                [WebUser("a1b2"), TelegramUser(123456), System("SYSTEM"), System("auto_detection")],
            )
            self.assertEqual([c.code for c in results[0].check_results], [CheckCode.STOP_WORDS, CheckCode.CAS])
            self.assertEqual([c.confidence for c in results[0].check_results], [70, -20])
            self.assertNotIn("confidence", table_columns(self.conn, "detection_results"))
            self.assertNotIn("added_by", table_columns(self.conn, "detection_results"))

        with self.subTest("plain actors"):
            self.assertEqual(self.storage.stop_words.fetch_active()[0].actor, WebUser("a1b2"))
            note = self.conn.execute(
                "SELECT actor_web_user_id, actor_telegram_user_id, actor_system_identifier FROM admin_notes"
            ).fetchone()
            self.assertEqual(tuple(note), (None, 555, None))
            action = self.conn.execute(
                "SELECT web_user_id, telegram_user_id, system_identifier FROM user_actions"
            ).fetchone()
            self.assertEqual(tuple(action), (None, None, "SYSTEM"))

        with self.subTest("audit log"):
            events = sorted(self.storage.audit.fetch_recent(), key=lambda event: event.id)
            self.assertEqual(
                [event.event_type for event in events],
                [
                    AuditEventType.USER_LOGIN,
                    AuditEventType.USER_REGISTERED,
                    AuditEventType.DATA_EXPORTED,
                    AuditEventType.SYSTEM_CONFIG_CHANGED,
                ],
            )
            self.assertEqual(
                [event.actor for event in events],
                [WebUser("a1b2"), System("SYSTEM"), WebUser("a1b2"), System("backup_job")],
            )
            self.assertEqual([event.target for event in events], [None, WebUser("a1b2"), None, TelegramUser(42)])

        with self.subTest("training labels"):
            self.assertFalse(table_exists(self.conn, "training_samples"))
            spam = self.storage.training.fetch(-1)
            self.assertEqual(spam.label, TrainingLabelValue.SPAM)
            self.assertIsNone(spam.actor)
            ham = self.storage.training.fetch(-3)
            self.assertEqual(ham.label, TrainingLabelValue.HAM)
            self.assertEqual(ham.actor, WebUser("a1b2"))
            self.assertIsNone(self.storage.training.fetch(-2))
            self.assertEqual(self.storage.messages.fetch(-1).chat_id, 1)
            self.assertEqual(
                list(self.storage.training.export_rows()),
                [("good morning", TrainingLabelValue.HAM), ("buy crypto now", TrainingLabelValue.SPAM)],
            )

        with self.subTest("background jobs"):
            resolver = self.storage.config_resolver
            self.assertEqual(
                resolver.resolve("backgroundJobs", -1001),
                {"Jobs": {"BlocklistSyncJob": {"Enabled": False, "CronExpression": "0 30 1 * * ?"}}},
            )
            self.assertEqual(
                resolver.resolve("backgroundJobs", -2002),
                {
                    "Jobs": {
                        "DatabaseMaintenanceJob": {"Enabled": True, "CronExpression": DEFAULT_CRON},
                        "ScheduledBackupJob": {"Enabled": False, "CronExpression": "0 0 3 * * ?"},
                    }
                },
            )

        with self.subTest("notification channels"):
            self.assertNotIn("event_filters", table_columns(self.conn, "notification_preferences"))
            config = json.loads(
                self.conn.execute("SELECT config FROM notification_preferences WHERE user_id = 'a1b2'").fetchone()[0]
            )
            channels = config["channels"]
            self.assertEqual([entry["enabledEvents"] for entry in channels], [[0], [0], []])
            self.assertEqual(channels[1]["digestMinutes"], 15)
            self.assertTrue(channels[1]["enabled"])

        with self.subTest("reviews"):
            self.assertFalse(table_exists(self.conn, "impersonation_alerts"))
            report = self.storage.reviews.fetch(1)
            self.assertEqual(report.type, ReviewType.REPORT)
            self.assertEqual(report.context, {})
            alert_id = self.conn.execute("SELECT id FROM reports WHERE type = 1").fetchone()[0]
            alert = self.storage.reviews.fetch(alert_id)
            self.assertEqual(alert.status, ReviewStatus.REVIEWED)
            self.assertEqual(alert.message_id, 0)
            self.assertEqual(alert.reviewer, WebUser("a1b2"))
            self.assertEqual(alert.context["legacyAlertId"], 7)
            self.assertEqual(alert.context["riskLevel"], 2)
            self.assertEqual(alert.context["verdict"], 1)
            self.assertEqual(alert.context["suspectedUserId"], 555)

        with self.subTest("invariants"):
            report = collect_violations(self.conn)
            self.assertEqual(len(report), 8)
            self.assertTrue(all(count == 0 for _, _, count in report))


if __name__ == "__main__":
    unittest.main()
