from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import RLock
from typing import Optional

from config.config import settings
from utils.logger import get_logger

from .runner import MigrationRunner
from .sqlite import Storage

LOGGER = get_logger(__name__)

DEFAULT_DB_PATH = settings.DATABASE_PATH
MEMORY = ":memory:"

_storage_instance: Optional[Storage] = None
_storage_lock = RLock()


def _connect(path: Path | str) -> sqlite3.Connection:
    in_memory = str(path) == MEMORY
    if not in_memory:
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    # autocommit: repositories and migration steps issue BEGIN/COMMIT themselves
    conn = sqlite3.connect(
        MEMORY if in_memory else path,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row

    if not in_memory:
        conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def open_storage(path: Path | str = MEMORY, *, migrate: bool = True) -> Storage:
    """
    Open a standalone Storage (no singleton) and bring its schema up to date.
    Tests use this with ":memory:"; `migrate=False` leaves an empty database
    for callers that drive the MigrationRunner themselves.
    """
    conn = _connect(path)
    if migrate:
        applied = MigrationRunner(conn).upgrade()
        if applied:
            LOGGER.info("Applied %s migration(s) to %s", len(applied), path)
    return Storage(conn=conn)


def init_storage(*, db_path: Optional[Path | str] = None, migrate: bool = True) -> Storage:
    """
    Initialise storage singleton. Ensures migrations are applied (unless
    `migrate=False`, for the CLI that drives the runner itself) and the connection
    is configured with sane defaults for concurrent access.
    """
    global _storage_instance

    if _storage_instance is not None:
        return _storage_instance

    with _storage_lock:
        if _storage_instance is not None:
            return _storage_instance

        _storage_instance = open_storage(db_path or DEFAULT_DB_PATH, migrate=migrate)
        return _storage_instance


def get_storage() -> Storage:
    if _storage_instance is None:
        raise RuntimeError("Storage was not initialised. Call init_storage() first.")
    return _storage_instance


def peek_storage() -> Optional[Storage]:
    """The singleton if it is already open; never opens it."""
    return _storage_instance


def close_storage() -> None:
    """Close the singleton and forget it, so the next init_storage() opens afresh."""
    global _storage_instance

    with _storage_lock:
        storage, _storage_instance = _storage_instance, None
    if storage is not None:
        storage.close()
