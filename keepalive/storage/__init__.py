"""Storage contract and the SQLite backend."""

from keepalive.storage.base import Storage, StoreResult, TaskFilter
from keepalive.storage.sqlite import SQLiteStorage

__all__ = ["SQLiteStorage", "Storage", "StoreResult", "TaskFilter"]
