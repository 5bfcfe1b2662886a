import contextlib
import io
import json
import logging
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from storage import close_storage, get_storage, init_storage, peek_storage
from utils.logger import SQLiteLogHandler

LOGGER_NAME = "tests.sqlite_log"


class SQLiteLogHandlerTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.database = Path(self.tmp.name) / "groupguard.sqlite"

        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self.handler = SQLiteLogHandler()
        self.logger.addHandler(self.handler)
        self.addCleanup(self.logger.removeHandler, self.handler)
        self.addCleanup(close_storage)

    def rows(self, storage):
        return storage.connection.execute(
            "SELECT level, message, context FROM log_events WHERE logger = ? ORDER BY id",
            (LOGGER_NAME,),
        ).fetchall()

    def test_warnings_persisted_info_skipped(self) -> None:
        storage = init_storage(db_path=self.database)
        self.logger.debug("noise")
        self.logger.info("routine")
        self.logger.warning("lossy %s", "step")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            self.logger.exception("failed")

        rows = self.rows(storage)
        self.assertEqual(
            [(row["level"], row["message"]) for row in rows],
            [("WARNING", "lossy step"), ("ERROR", "failed")],
        )
        self.assertIsNone(rows[0]["context"])
        self.assertIn("RuntimeError: boom", json.loads(rows[1]["context"])["exc_info"])

    def test_nothing_persisted_without_singleton(self) -> None:
        self.assertIsNone(peek_storage())
        self.logger.warning("nowhere to go")
        self.assertEqual(self.rows(init_storage(db_path=self.database)), [])

    def test_skipped_before_schema_exists(self) -> None:
        storage = init_storage(db_path=self.database, migrate=False)
        self.assertFalse(storage.logs.ready())
        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr):
            self.logger.warning("too early")
        self.assertEqual(stderr.getvalue(), "")


class StorageSingletonTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.addCleanup(close_storage)
        self.database = Path(self.tmp.name) / "groupguard.sqlite"

    def test_init_is_idempotent(self) -> None:
        storage = init_storage(db_path=self.database)
        self.assertIs(init_storage(db_path=self.database), storage)
        self.assertIs(get_storage(), storage)
        self.assertIs(peek_storage(), storage)

    def test_close_forgets_the_instance(self) -> None:
        init_storage(db_path=self.database)
        close_storage()
        self.assertIsNone(peek_storage())
        with self.assertRaises(RuntimeError):
            get_storage()
        close_storage()


if __name__ == "__main__":
    unittest.main()
