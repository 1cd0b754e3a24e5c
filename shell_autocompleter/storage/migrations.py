# shell_autocompleter/storage/migrations.py
"""
Ordered, idempotent schema migrations.

Each Migration has a version, a name and an apply(conn) function. Applied versions are recorded in
schema_migrations; run() applies the missing ones in order, each in its own transaction. Every step
also guards itself (IF NOT EXISTS, column checks) so a half-recorded upgrade can be re-run safely.

  1 core_history       command_history + command_relations
  2 history_outputs    outputs column on command_history
  3 learning_usage     command_usage + completion_usage
  4 rule_store         completion_rules, rule_versions, rule_performance, analysis_state
  5 pattern_state      persisted analyzer / user-pattern state
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from shell_autocompleter.storage.database import Database, to_ts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    apply: Callable[[sqlite3.Connection], None]


def _columns(conn: sqlite3.Connection, table: str) -> Set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _run_all(conn: sqlite3.Connection, statements: List[str]) -> None:
    for stmt in statements:
        conn.execute(stmt)


# Migration steps ----------------------------------------------------------

def _m001_core_history(conn: sqlite3.Connection) -> None:
    _run_all(conn, [
        """
        CREATE TABLE IF NOT EXISTS command_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            command TEXT NOT NULL UNIQUE,
            context TEXT NOT NULL DEFAULT '',
            frequency INTEGER NOT NULL DEFAULT 1,
            last_used TEXT NOT NULL,
            success INTEGER NOT NULL DEFAULT 1
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_command_history_last_used ON command_history(last_used)",
        "CREATE INDEX IF NOT EXISTS idx_command_history_frequency ON command_history(frequency)",
        """
        CREATE TABLE IF NOT EXISTS command_relations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            command1_id INTEGER NOT NULL REFERENCES command_history(id) ON DELETE CASCADE,
            command2_id INTEGER NOT NULL REFERENCES command_history(id) ON DELETE CASCADE,
            relation_type TEXT NOT NULL CHECK (relation_type IN ('sequence', 'similar', 'variant')),
            frequency INTEGER NOT NULL DEFAULT 1,
            last_used TEXT NOT NULL,
            success_rate REAL NOT NULL DEFAULT 1.0,
            avg_time_gap REAL NOT NULL DEFAULT 0.0,
            UNIQUE(command1_id, command2_id)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_command_relations_from ON command_relations(command1_id)",
    ])


def _m002_history_outputs(conn: sqlite3.Connection) -> None:
    if "outputs" not in _columns(conn, "command_history"):
        conn.execute("ALTER TABLE command_history ADD COLUMN outputs TEXT NOT NULL DEFAULT '[]'")


def _m003_learning_usage(conn: sqlite3.Connection) -> None:
    _run_all(conn, [
        """
        CREATE TABLE IF NOT EXISTS command_usage (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            command TEXT NOT NULL UNIQUE,
            context TEXT NOT NULL DEFAULT '',
            frequency INTEGER NOT NULL DEFAULT 1,
            success_count INTEGER NOT NULL DEFAULT 0,
            fail_count INTEGER NOT NULL DEFAULT 0,
            last_used TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_command_usage_last_used ON command_usage(last_used)",
        """
        CREATE TABLE IF NOT EXISTS completion_usage (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            input TEXT NOT NULL,
            suggestion TEXT NOT NULL,
            is_selected INTEGER NOT NULL DEFAULT 0,
            context TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_completion_usage_created ON completion_usage(created_at)",
    ])


def _m004_rule_store(conn: sqlite3.Connection) -> None:
    _run_all(conn, [
        """
        CREATE TABLE IF NOT EXISTS completion_rules (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL CHECK (type IN ('parameter', 'context', 'sequence')),
            pattern TEXT NOT NULL,
            weight REAL NOT NULL CHECK (weight >= 0 AND weight <= 1),
            confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
            version INTEGER NOT NULL,
            metadata TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_completion_rules_type ON completion_rules(type)",
        """
        CREATE TABLE IF NOT EXISTS rule_versions (
            version INTEGER PRIMARY KEY,
            changes TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL CHECK (status IN ('active', 'rollback', 'deprecated')),
            created_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS rule_performance (
            rule_id TEXT PRIMARY KEY REFERENCES completion_rules(id) ON DELETE CASCADE,
            usage_count INTEGER NOT NULL DEFAULT 0,
            success_count INTEGER NOT NULL DEFAULT 0,
            adoption_count INTEGER NOT NULL DEFAULT 0,
            total_latency REAL NOT NULL DEFAULT 0,
            last_used_at TEXT
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS analysis_state (
            component TEXT PRIMARY KEY,
            last_processed_id INTEGER NOT NULL DEFAULT 0,
            last_analysis_time TEXT,
            processed_count INTEGER NOT NULL DEFAULT 0,
            analysis_metrics TEXT NOT NULL DEFAULT '{}',
            updated_at TEXT
        )
        """,
    ])


def _m005_pattern_state(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS pattern_state (
            kind TEXT NOT NULL,
            key TEXT NOT NULL,
            payload TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (kind, key)
        )
        """
    )


MIGRATIONS: List[Migration] = [
    Migration(1, "core_history", _m001_core_history),
    Migration(2, "history_outputs", _m002_history_outputs),
    Migration(3, "learning_usage", _m003_learning_usage),
    Migration(4, "rule_store", _m004_rule_store),
    Migration(5, "pattern_state", _m005_pattern_state),
]

SCHEMA_VERSION = MIGRATIONS[-1].version


class MigrationRunner:
    def __init__(self, db: Database, migrations: Optional[List[Migration]] = None):
        self.db = db
        self.migrations = sorted(MIGRATIONS if migrations is None else migrations, key=lambda m: m.version)

    def _ensure_table(self) -> None:
        with self.db.connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
                """
            )

    def applied_versions(self) -> Set[int]:
        self._ensure_table()
        rows = self.db.query("SELECT version FROM schema_migrations")
        return {r["version"] for r in rows}

    def current_version(self) -> int:
        applied = self.applied_versions()
        return max(applied) if applied else 0

    def pending(self) -> List[Migration]:
        applied = self.applied_versions()
        return [m for m in self.migrations if m.version not in applied]

    def run(self) -> List[int]:
        """Apply pending migrations in order. Returns the versions applied by this call."""
        done: List[int] = []
        for m in self.pending():
            with self.db.connection() as conn:
                m.apply(conn)
                conn.execute(
                    "INSERT OR IGNORE INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                    (m.version, m.name, to_ts()),
                )
            logger.info("applied migration %03d %s", m.version, m.name)
            done.append(m.version)
        return done
