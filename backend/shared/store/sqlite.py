"""SQLite-backed record store."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from shared.store.base import (
    ConditionFailedError,
    Record,
    Store,
    StoreUnavailableError,
    failed_condition,
    merge_changes,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600
_MEMORY_PATH = ":memory:"

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS records (
    pk TEXT NOT NULL,
    sk TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (pk, sk)
);
"""

# Substrings of sqlite3.OperationalError messages that indicate contention
# rather than a programming error.
_TRANSIENT_MARKERS = ("locked", "busy")


class SqliteStore(Store):
    """Store records as JSON documents in a single ``records`` table.

    Conditional writes run inside ``BEGIN IMMEDIATE`` transactions so that
    several processes sharing the database file still see compare-and-set
    semantics. Lock contention surfaces as StoreUnavailableError.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the active connection or raise if disconnected."""
        if self._conn is None:
            raise RuntimeError("Store is not connected")
        return self._conn

    def connect(self) -> None:
        """Open the database, apply pragmas, create schema, and harden file permissions."""
        if self._path != _MEMORY_PATH:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._path, check_same_thread=False, isolation_level=None)
        if self._path != _MEMORY_PATH:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_SCHEMA_SQL)

        self._harden_permissions()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _harden_permissions(self) -> None:
        if self._path == _MEMORY_PATH:
            return
        path = Path(self._path)
        if path.exists():
            os.chmod(path, _DB_FILE_PERMISSIONS)

    async def get(self, pk: str, sk: str) -> Record | None:
        async with self._lock:
            with _translate_errors():
                return self._select(pk, sk)

    async def put(self, record: Mapping[str, Any]) -> None:
        async with self._lock:
            with _translate_errors():
                self.connection.execute(
                    "INSERT OR REPLACE INTO records (pk, sk, data) VALUES (?, ?, ?)",
                    (record["pk"], record["sk"], json.dumps(dict(record))),
                )

    async def conditional_update(
        self,
        pk: str,
        sk: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> Record:
        async with self._lock:
            with _translate_errors(), _transaction(self.connection):
                current = self._select(pk, sk)
                field = failed_condition(current, expected)
                if field is not None:
                    raise ConditionFailedError(pk, sk, field)
                merged = merge_changes(pk, sk, current, changes)
                self.connection.execute(
                    "INSERT OR REPLACE INTO records (pk, sk, data) VALUES (?, ?, ?)",
                    (pk, sk, json.dumps(merged)),
                )
                return merged

    async def delete(self, pk: str, sk: str, expected: Mapping[str, Any] | None = None) -> None:
        async with self._lock:
            with _translate_errors(), _transaction(self.connection):
                if expected:
                    current = self._select(pk, sk)
                    if current is None:
                        raise ConditionFailedError(pk, sk)
                    field = failed_condition(current, expected)
                    if field is not None:
                        raise ConditionFailedError(pk, sk, field)
                self.connection.execute("DELETE FROM records WHERE pk = ? AND sk = ?", (pk, sk))

    async def range_query(self, pk: str, sk_prefix: str = "") -> list[Record]:
        async with self._lock:
            with _translate_errors():
                rows = self.connection.execute(
                    "SELECT data FROM records WHERE pk = ? AND substr(sk, 1, ?) = ? ORDER BY sk",
                    (pk, len(sk_prefix), sk_prefix),
                ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def _select(self, pk: str, sk: str) -> Record | None:
        row = self.connection.execute("SELECT data FROM records WHERE pk = ? AND sk = ?", (pk, sk)).fetchone()
        return json.loads(row[0]) if row is not None else None


@contextlib.contextmanager
def _transaction(conn: sqlite3.Connection) -> Iterator[None]:
    """Run the block inside ``BEGIN IMMEDIATE``, rolling back on any exception."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


@contextlib.contextmanager
def _translate_errors() -> Iterator[None]:
    """Map sqlite lock contention onto StoreUnavailableError."""
    try:
        yield
    except sqlite3.OperationalError as exc:
        if not any(marker in str(exc).lower() for marker in _TRANSIENT_MARKERS):
            raise
        logger.warning("sqlite store contention", error=str(exc))
        raise StoreUnavailableError(str(exc)) from exc
