import contextlib
import csv
import io
import logging
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.types import TrainingLabelValue
from main import build_parser, main
from storage import open_storage, peek_storage
from storage.interfaces import MessageInput
from storage.migrations import LATEST_VERSION
from utils.logger import SQLiteLogHandler

AUDIT_RENUMBERING = 20251103110000


class CliTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.database = Path(self.tmp.name) / "groupguard.sqlite"
        self.output = Path(self.tmp.name) / "export" / "messages.csv"

    def run_cli(self, *argv: str) -> tuple[int, str]:
        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            code = main(["--database", str(self.database), *argv])
        return code, buffer.getvalue()

    def test_parser_requires_a_command(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args([])
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["downgrade"])

    def test_upgrade_status_verify(self) -> None:
        code, output = self.run_cli("status")
        self.assertEqual(code, 0)
        self.assertIn("current version: 0", output)
        self.assertIn("pending", output)

        self.assertEqual(self.run_cli("upgrade", "--target", "20250302142000")[0], 0)
        self.assertEqual(self.run_cli("upgrade")[0], 0)

        code, output = self.run_cli("status")
        self.assertIn(f"current version: {LATEST_VERSION}", output)
        self.assertIn("irreversible", output)
        self.assertNotIn("pending", output)

        code, output = self.run_cli("verify")
        self.assertEqual(code, 0)
        self.assertIn("CK_audit_log_exclusive_actor", output)
        self.assertIn("CK_detection_results_is_spam_derived", output)

    def test_verify_reports_violations(self) -> None:
        self.run_cli("upgrade")
        storage = open_storage(self.database)
        try:
            # bypass the constraint the way a hand-edited database would
            storage.connection.execute("PRAGMA ignore_check_constraints=ON")
            storage.connection.execute("INSERT INTO stop_words(word) VALUES ('orphan')")
        finally:
            storage.close()

        code, output = self.run_cli("verify")
        self.assertEqual(code, 1)
        self.assertIn("CK_stop_words_exclusive_actor", output)

    def test_downgrade_flow(self) -> None:
        self.run_cli("upgrade")
        self.assertEqual(self.run_cli("downgrade", "--target", str(AUDIT_RENUMBERING))[0], 1)
        self.assertEqual(self.run_cli("downgrade", "--target", "0", "--accept-lossy")[0], 1)
        self.assertEqual(
            self.run_cli("downgrade", "--target", str(AUDIT_RENUMBERING), "--accept-lossy")[0], 0
        )

        code, output = self.run_cli("status")
        self.assertIn(f"current version: {AUDIT_RENUMBERING}", output)

        # stale schema: export refuses
        self.assertEqual(self.run_cli("export-training", "--output", str(self.output))[0], 1)
        self.assertFalse(self.output.exists())

    def test_lossy_downgrade_warnings_land_in_log_events(self) -> None:
        self.run_cli("upgrade")
        runner_logger = logging.getLogger("storage.runner")
        handler = SQLiteLogHandler()
        runner_logger.addHandler(handler)
        self.addCleanup(runner_logger.removeHandler, handler)

        self.assertEqual(
            self.run_cli("downgrade", "--target", str(AUDIT_RENUMBERING), "--accept-lossy")[0], 0
        )
        self.assertIsNone(peek_storage())

        storage = open_storage(self.database, migrate=False)
        try:
            rows = storage.connection.execute(
                "SELECT level, message FROM log_events WHERE logger = 'storage.runner'"
            ).fetchall()
        finally:
            storage.close()
        lossy = [row["message"] for row in rows if row["message"].startswith("Lossy downgrade: unified_reviews:")]
        self.assertTrue(lossy)
        self.assertTrue(all(row["level"] == "WARNING" for row in rows))

    def test_export_training(self) -> None:
        self.run_cli("upgrade")
        storage = open_storage(self.database)
        try:
            storage.messages.record(MessageInput(10, -1001, 7, "free airdrop"))
            storage.training.upsert(10, TrainingLabelValue.SPAM)
        finally:
            storage.close()

        self.assertEqual(self.run_cli("export-training", "--output", str(self.output))[0], 0)
        with self.output.open("r", encoding="utf-8", newline="") as dataset_file:
            rows = list(csv.DictReader(dataset_file))
        self.assertEqual(rows, [{"message": "free airdrop", "label": "1"}])

    def test_unopenable_database(self) -> None:
        code = main(["--database", self.tmp.name, "status"])
        self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main()
