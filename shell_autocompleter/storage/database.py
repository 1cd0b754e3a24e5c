# shell_autocompleter/storage/database.py
"""
Database - SQLite connection management for the completion store.

Every operation opens a short-lived connection through connection(): WAL journal, foreign keys,
busy timeout, sqlite3.Row rows, commit on success and rollback on error. Callers that need several
statements in one transaction pass the yielded connection down (connection(conn) re-yields it).

":memory:" is supported through a named shared-cache in-memory database kept alive by a keeper
connection, so tests can run without touching disk.
"""

from __future__ import annotations

import itertools
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional, Sequence

logger = logging.getLogger(__name__)

_memory_ids = itertools.count(1)


def to_ts(dt: Optional[datetime] = None) -> str:
    return (dt or datetime.now()).isoformat(timespec="microseconds")


def from_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.fromtimestamp(0)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return datetime.fromtimestamp(0)


class Database:
    def __init__(self, path: str = ":memory:", busy_timeout_ms: int = 5000):
        self.path = path
        self.busy_timeout_ms = int(busy_timeout_ms)
        self._keeper: Optional[sqlite3.Connection] = None
        if path == ":memory:":
            self._target = f"file:shell_autocompleter_mem_{os.getpid()}_{next(_memory_ids)}?mode=memory&cache=shared"
            self._uri = True
            self._keeper = sqlite3.connect(self._target, uri=True, check_same_thread=False)
        else:
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
            self._target = path
            self._uri = False

    @property
    def in_memory(self) -> bool:
        return self._keeper is not None

    @contextmanager
    def connection(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Yield a configured connection; when `conn` is given it is re-used as-is."""
        if conn is not None:
            yield conn
            return
        conn = sqlite3.connect(self._target, timeout=self.busy_timeout_ms / 1000.0,
                               uri=self._uri, check_same_thread=False)
        try:
            if not self.in_memory:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
            conn.row_factory = sqlite3.Row
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self.connection() as conn:
            return conn.execute(sql, tuple(params)).fetchall()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run one write statement; returns the affected row count."""
        with self.connection() as conn:
            return conn.execute(sql, tuple(params)).rowcount

    def table_names(self) -> List[str]:
        rows = self.query("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        return [r["name"] for r in rows]

    def close(self) -> None:
        if self._keeper is not None:
            self._keeper.close()
            self._keeper = None
