import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.errors import MissingGlobalDefaultError, UnknownCategoryError
from core.resolver import ConfigResolver, as_scope, parse_category
from core.types import GLOBAL_DEFAULT, ChatScope, ConfigCategory
from storage import open_storage


class _DictSource:
    """In-memory ConfigSource keyed by scope."""

    def __init__(self, rows):
        self.rows = rows
        self.loads = []

    def load(self, scope):
        self.loads.append(scope)
        return self.rows.get(scope)


def _row(**documents):
    row = {category: None for category in ConfigCategory}
    for name, document in documents.items():
        row[ConfigCategory[name]] = document
    return row


class ConfigResolverUnitTest(unittest.TestCase):
    def setUp(self) -> None:
        self.global_spam = {"checks": {"UrlFiltering": {"enabled": True, "alwaysRun": True}}}
        self.chat_spam = {"checks": {"UrlFiltering": {"enabled": False, "alwaysRun": False}}}
        self.source = _DictSource({
            GLOBAL_DEFAULT: _row(SPAM_DETECTION=self.global_spam, MODERATION={"warnThreshold": 3}),
            ChatScope(-1001): _row(SPAM_DETECTION=self.chat_spam),
        })
        self.resolver = ConfigResolver(self.source)

    def test_chat_document_replaces_global_whole(self) -> None:
        resolved = self.resolver.resolve("spamDetection", -1001)
        self.assertEqual(resolved, self.chat_spam)
        self.assertFalse(resolved["checks"]["UrlFiltering"]["alwaysRun"])

    def test_each_category_falls_back_on_its_own(self) -> None:
        self.assertEqual(self.resolver.resolve(ConfigCategory.MODERATION, -1001), {"warnThreshold": 3})
        self.assertEqual(self.resolver.resolve(ConfigCategory.SPAM_DETECTION, -1001), self.chat_spam)

    def test_chat_without_row_uses_global(self) -> None:
        self.assertEqual(self.resolver.resolve("spamDetection", ChatScope(-2002)), self.global_spam)

    def test_null_global_category_is_disabled(self) -> None:
        self.assertIsNone(self.resolver.resolve("welcome", -1001))
        self.assertIsNone(self.resolver.resolve("welcome", GLOBAL_DEFAULT))

    def test_global_scope_never_reads_a_chat_row(self) -> None:
        self.resolver.resolve("spamDetection", GLOBAL_DEFAULT)
        self.assertEqual(self.source.loads, [GLOBAL_DEFAULT])

    def test_missing_global_row(self) -> None:
        resolver = ConfigResolver(_DictSource({ChatScope(-1001): _row(MODERATION={"warnThreshold": 1})}))
        self.assertEqual(resolver.resolve("moderation", -1001), {"warnThreshold": 1})
        with self.assertRaises(MissingGlobalDefaultError):
            resolver.resolve("welcome", -1001)
        with self.assertRaises(MissingGlobalDefaultError):
            resolver.resolve("welcome", -3003)

    def test_unknown_category(self) -> None:
        with self.assertRaises(UnknownCategoryError) as ctx:
            self.resolver.resolve("antiRaid", -1001)
        self.assertEqual(ctx.exception.category, "antiRaid")
        self.assertIsInstance(ctx.exception, KeyError)

    def test_chat_zero_is_not_a_chat(self) -> None:
        with self.assertRaises(ValueError):
            self.resolver.resolve("moderation", 0)
        with self.assertRaises(ValueError):
            ChatScope(0)
        with self.assertRaises(TypeError):
            as_scope(True)

    def test_parse_category(self) -> None:
        self.assertIs(parse_category("backgroundJobs"), ConfigCategory.BACKGROUND_JOBS)
        self.assertIs(parse_category(ConfigCategory.LOG), ConfigCategory.LOG)

    def test_resolve_all(self) -> None:
        resolved = self.resolver.resolve_all(-1001)
        self.assertEqual(set(resolved), set(ConfigCategory))
        self.assertEqual(resolved[ConfigCategory.SPAM_DETECTION], self.chat_spam)
        self.assertIsNone(resolved[ConfigCategory.URL_FILTER])


class ConfigStoreResolutionTest(unittest.TestCase):
    def setUp(self) -> None:
        self.storage = open_storage(":memory:")
        self.configs = self.storage.configs
        self.resolver = self.storage.config_resolver

    def tearDown(self) -> None:
        self.storage.close()

    def test_seeded_global_row(self) -> None:
        spam = self.resolver.resolve("spamDetection", -1001)
        self.assertTrue(spam["checks"]["UrlFiltering"]["alwaysRun"])
        self.assertIsNone(self.resolver.resolve("log", -1001))
        self.assertEqual(self.configs.scopes(), [GLOBAL_DEFAULT])

    def test_chat_override_and_clear(self) -> None:
        override = {"checks": {"UrlFiltering": {"enabled": False, "alwaysRun": False}}}
        self.configs.save(ChatScope(-1001), ConfigCategory.SPAM_DETECTION, override)
        self.configs.save(ChatScope(-1001), "moderation", {"warnThreshold": 5})

        self.assertEqual(self.resolver.resolve("spamDetection", -1001), override)
        self.assertEqual(self.resolver.resolve("welcome", -1001)["mode"], "button")
        self.assertEqual(self.configs.scopes(), [ChatScope(-1001), GLOBAL_DEFAULT])

        self.configs.clear(ChatScope(-1001), "spamDetection")
        self.assertTrue(self.resolver.resolve("spamDetection", -1001)["checks"]["UrlFiltering"]["alwaysRun"])
        self.assertEqual(self.resolver.resolve("moderation", -1001), {"warnThreshold": 5})

        # last override gone: the chat row goes too
        self.configs.clear(ChatScope(-1001), "moderation")
        self.assertIsNone(self.configs.load(ChatScope(-1001)))
        self.assertEqual(self.configs.scopes(), [GLOBAL_DEFAULT])

    def test_clearing_global_disables_category(self) -> None:
        self.configs.clear(GLOBAL_DEFAULT, "welcome")
        self.configs.clear(GLOBAL_DEFAULT, "moderation")
        self.assertIsNone(self.resolver.resolve("welcome", -1001))
        self.assertIsNotNone(self.configs.load(GLOBAL_DEFAULT))

    def test_save_rejects_non_objects(self) -> None:
        with self.assertRaises(TypeError):
            self.configs.save(ChatScope(-1001), "welcome", None)
        with self.assertRaises(TypeError):
            self.configs.save(0, "welcome", {"enabled": True})
        with self.assertRaises(UnknownCategoryError):
            self.configs.save(ChatScope(-1001), "antiRaid", {})


if __name__ == "__main__":
    unittest.main()
