"""
utils/logger.py
────────────────────────────────────────────────────────
Централизованная конфигурация logging.

• Настраивает root-логгер ровно один раз.
• Выводит логи в консоль и во вращающийся файл logs/groupguard.log.
• Уровень берётся из settings.LOG_LEVEL (INFO по умолчанию).
• WARNING+ дублируются в таблицу log_events, если хранилище уже открыто.
• Экспортирует функцию `get_logger(name)` для получения
  именованных логгеров в других модулях.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from config.config import settings

LOG_FMT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FMT = "%Y-%m-%d %H:%M:%S"
LOG_LEVEL = getattr(logging, settings.LOG_LEVEL, logging.INFO)
_ROOT_LOGGER_INITIALIZED = False


def _init_root_logger() -> None:
    """Настроить root-логгер ровно один раз."""
    global _ROOT_LOGGER_INITIALIZED
    if _ROOT_LOGGER_INITIALIZED:
        return

    root = logging.getLogger()
    if not root.handlers:
        root.setLevel(LOG_LEVEL)

        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter(LOG_FMT, DATE_FMT))
        root.addHandler(console)

        settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.LOG_DIR / "groupguard.log",
            maxBytes=2_000_000,       # ~2 MB
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FMT, DATE_FMT))
        root.addHandler(file_handler)

        if settings.LOG_TO_DB:
            sqlite_handler = SQLiteLogHandler()
            sqlite_handler.setLevel(logging.WARNING)
            root.addHandler(sqlite_handler)

    _ROOT_LOGGER_INITIALIZED = True


class SQLiteLogHandler(logging.Handler):
    """Persist warnings/errors into SQLite once the storage singleton is up."""

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno < logging.WARNING:
            return

        # storage imports this module, so resolve it lazily
        from storage.bootstrap import peek_storage

        storage = peek_storage()
        if storage is None:
            return

        try:
            if not storage.logs.ready():
                return

            context: dict[str, str] | None = None
            if record.exc_info:
                context = {"exc_info": self.formatException(record.exc_info)}
            elif record.stack_info:
                context = {"stack": self.formatStack(record.stack_info)}

            storage.logs.write(
                level=record.levelname,
                logger=record.name,
                message=record.getMessage(),
                context=context,
            )
        except Exception:
            self.handleError(record)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Возвратить именованный логгер (или root, если name не указан).
    Использование:
        logger = get_logger(__name__)
        logger.info("Hello!")
    """
    _init_root_logger()
    return logging.getLogger(name or "root")


__all__ = ["SQLiteLogHandler", "get_logger"]
