"""Storage engines. Each implements the ``StorageEngine`` protocol.

- ``cloud``:  per-user collections in a document store, with live sync
- ``kv``:     local key-value record files with secondary indexes
- ``sqlite``: local relational table with enum constraints
"""

from memokit.engines.base import StorageEngine, Subscription, SupportsSync
from memokit.engines.cloud import CloudEngine
from memokit.engines.kv import KeyValueEngine
from memokit.engines.sqlite import SQLiteEngine

__all__ = [
    "CloudEngine",
    "KeyValueEngine",
    "SQLiteEngine",
    "StorageEngine",
    "Subscription",
    "SupportsSync",
]
