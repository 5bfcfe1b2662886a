from __future__ import annotations

from typing import Any, Mapping, Protocol

from core.errors import MissingGlobalDefaultError, UnknownCategoryError
from core.types import GLOBAL_DEFAULT, ChatScope, ConfigCategory, ConfigScope, GlobalDefault
from utils.logger import get_logger

LOGGER = get_logger(__name__)

Document = dict[str, Any]


class ConfigSource(Protocol):
    def load(self, scope: ConfigScope) -> Mapping[ConfigCategory, Document | None] | None: ...


def parse_category(category: str | ConfigCategory) -> ConfigCategory:
    if isinstance(category, ConfigCategory):
        return category
    try:
        return ConfigCategory(category)
    except ValueError:
        raise UnknownCategoryError(category) from None


def as_scope(chat: ConfigScope | int) -> ConfigScope:
    if isinstance(chat, (GlobalDefault, ChatScope)):
        return chat
    return ChatScope(chat)


class ConfigResolver:
    """
    Resolve the effective document of one category for a chat.

    Each category falls back on its own: a chat row that holds a document for
    the category wins, otherwise the global row's document applies. A null
    global document means the category is disabled and resolves to None.
    Documents are replaced whole, never merged key by key.
    """

    def __init__(self, source: ConfigSource):
        self._source = source

    def resolve(self, category: str | ConfigCategory, chat: ConfigScope | int) -> Document | None:
        category = parse_category(category)
        scope = as_scope(chat)

        if isinstance(scope, ChatScope):
            chat_row = self._source.load(scope)
            if chat_row is not None and chat_row.get(category) is not None:
                return chat_row[category]
        else:
            chat_row = None

        global_row = self._source.load(GLOBAL_DEFAULT)
        if global_row is None:
            if isinstance(scope, ChatScope) and chat_row is not None:
                # chat row exists but leaves this category empty
                raise MissingGlobalDefaultError(
                    f"chat {scope.chat_id} has no {category.value} document and no global row exists"
                )
            raise MissingGlobalDefaultError(f"no config row for {scope!r} and no global row exists")

        document = global_row.get(category)
        if document is None:
            LOGGER.debug("Category %s disabled for %r", category.value, scope)
        return document

    def resolve_all(self, chat: ConfigScope | int) -> dict[ConfigCategory, Document | None]:
        return {category: self.resolve(category, chat) for category in ConfigCategory}


__all__ = ["ConfigResolver", "ConfigSource", "as_scope", "parse_category"]
