from __future__ import annotations

from .bootstrap import close_storage, get_storage, init_storage, open_storage, peek_storage

__all__ = ["init_storage", "get_storage", "open_storage", "peek_storage", "close_storage"]
