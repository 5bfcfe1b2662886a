# groupguard/config/config.py
"""
Модуль конфигурации проекта «GroupGuard».

▪️ Загружает переменные окружения из файла .env (в корне репозитория).
▪️ Собирает типизированный контейнер Settings, доступный как singleton `settings`.
▪️ Все ключи необязательны: слой данных должен подниматься без .env.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# ───────────────────────────────
#  Загрузка .env
# ───────────────────────────────
ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")           # .env должен лежать в корне проекта

UNKNOWN_CHECK_POLICIES = {"reject", "tag"}
UNMAPPED_VALUE_POLICIES = {"reject", "keep"}


# ───────────────────────────────
#  Типизированный контейнер
# ───────────────────────────────
@dataclass(frozen=True, slots=True)
class Settings:
    DATABASE_PATH: Path
    LOG_DIR: Path
    TRAINING_EXPORT_PATH: Path

    # Политика для нераспознанных имён проверок: reject | tag
    UNKNOWN_CHECK_POLICY: str
    # Политика для значений, отсутствующих в таблице перенумерации: reject | keep
    UNMAPPED_VALUE_POLICY: str

    LOG_LEVEL: str = "INFO"
    LOG_TO_DB: bool = True


# ───────────────────────────────
#  Парс вспомогательных полей
# ───────────────────────────────
def _str_to_bool(raw: str | None, *, default: bool = True) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _resolve_path(raw: str | None, default: str) -> Path:
    path = Path(raw or default)
    if not path.is_absolute():
        path = ROOT_DIR / path
    return path


def _choice(name: str, default: str, allowed: set[str]) -> str:
    value = os.environ.get(name, default).strip().lower()
    if value not in allowed:
        raise ValueError(f"{name} должен быть {' | '.join(sorted(allowed))}")
    return value


# ───────────────────────────────
#  Сборка Settings
# ───────────────────────────────
def _build_settings() -> Settings:
    database_path = os.environ.get("DATABASE_PATH")
    # ":memory:" оставляем как есть, это не путь на диске
    if database_path == ":memory:":
        db_path = Path(database_path)
    else:
        db_path = _resolve_path(database_path, "data/storage.sqlite")

    return Settings(
        DATABASE_PATH=db_path,
        LOG_DIR=_resolve_path(os.environ.get("LOG_DIR"), "logs"),
        TRAINING_EXPORT_PATH=_resolve_path(os.environ.get("TRAINING_EXPORT_PATH"), "data/messages.csv"),
        UNKNOWN_CHECK_POLICY=_choice("UNKNOWN_CHECK_POLICY", "reject", UNKNOWN_CHECK_POLICIES),
        UNMAPPED_VALUE_POLICY=_choice("UNMAPPED_VALUE_POLICY", "reject", UNMAPPED_VALUE_POLICIES),
        LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO").upper(),
        LOG_TO_DB=_str_to_bool(os.environ.get("LOG_TO_DB"), default=True),
    )


# singleton
settings: Settings = _build_settings()

__all__ = ["settings", "Settings"]
