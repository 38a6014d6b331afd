"""memokit: one memo storage contract over cloud, key-value and SQLite engines.

Typical startup:

    storage = build_storage(load_config(), auth=session, document_store=store)
    await storage.initialize()      # select engine, fall back, migrate legacy data
    memo_id = await storage.create({"title": "Fix login", "category": "bug"})
"""

from memokit.config import MemokitConfig, load_config
from memokit.errors import (
    NotFound,
    StorageError,
    StorageUnavailable,
    Unauthenticated,
    ValidationRejected,
)
from memokit.models import CATEGORIES, PRIORITIES, Memo, MemoInput, MemoStats
from memokit.storage import MemoStorage, Platform, StorageState, build_storage, detect_platform

__all__ = [
    "CATEGORIES",
    "PRIORITIES",
    "Memo",
    "MemoInput",
    "MemoStats",
    "MemoStorage",
    "MemokitConfig",
    "NotFound",
    "Platform",
    "StorageError",
    "StorageState",
    "StorageUnavailable",
    "Unauthenticated",
    "ValidationRejected",
    "build_storage",
    "detect_platform",
    "load_config",
]
