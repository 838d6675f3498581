"""Persistence interface and the in-memory adapter."""

from src.storage.base import Store
from src.storage.exceptions import AlertWriteError, SnapshotWriteError, StoreError
from src.storage.memory import InMemoryStore

__all__ = [
    "AlertWriteError",
    "InMemoryStore",
    "SnapshotWriteError",
    "Store",
    "StoreError",
]
