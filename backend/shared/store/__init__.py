"""Record store: abstract interface plus in-memory, SQLite and resilient implementations."""

from shared.store.base import (
    MISSING,
    ConditionFailedError,
    Record,
    Store,
    StoreError,
    StoreUnavailableError,
)
from shared.store.memory import InMemoryStore
from shared.store.resilient import ResilientStore
from shared.store.sqlite import SqliteStore

__all__ = [
    "MISSING",
    "ConditionFailedError",
    "InMemoryStore",
    "Record",
    "ResilientStore",
    "SqliteStore",
    "Store",
    "StoreError",
    "StoreUnavailableError",
]
