# shell_autocompleter/storage/history_store.py
"""
HistoryStore - executed commands, pairwise relations and raw usage events.

Tables: command_history (deduplicated by command), command_relations (unique per ordered pair),
command_usage (per-command counters), completion_usage (shown/accepted suggestions and executions),
pattern_state (JSON payloads of the in-memory learners).

Methods accept an optional `conn` so several writes can share one transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from shell_autocompleter.core.types import CommandRelation, HistoryRecord, RelationType
from shell_autocompleter.storage.database import Database, from_ts, to_ts

logger = logging.getLogger(__name__)

MAX_STORED_OUTPUTS = 5


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_record(row: sqlite3.Row) -> HistoryRecord:
    try:
        outputs = json.loads(row["outputs"] or "[]")
    except ValueError:
        outputs = []
    return HistoryRecord(
        id=row["id"],
        command=row["command"],
        context=row["context"] or "",
        frequency=int(row["frequency"]),
        last_used=from_ts(row["last_used"]),
        success=bool(row["success"]),
        outputs=list(outputs),
    )


class HistoryStore:
    def __init__(self, db: Database):
        self.db = db

    # History -----------------------------------------------------------------
    def add_or_update(self,
                      command: str,
                      context: str = "",
                      success: bool = True,
                      outputs: Optional[List[str]] = None,
                      when: Optional[datetime] = None,
                      conn: Optional[sqlite3.Connection] = None) -> int:
        """Insert a command or bump its frequency. Returns the row id."""
        command = command.strip()
        if not command:
            raise ValueError("empty command")
        payload = json.dumps(list(outputs or [])[-MAX_STORED_OUTPUTS:])
        with self.db.connection(conn) as c:
            c.execute(
                """
                INSERT INTO command_history (command, context, frequency, last_used, success, outputs)
                VALUES (?, ?, 1, ?, ?, ?)
                ON CONFLICT(command) DO UPDATE SET
                    frequency = frequency + 1,
                    context = excluded.context,
                    last_used = excluded.last_used,
                    success = excluded.success,
                    outputs = excluded.outputs
                """,
                (command, context or "", to_ts(when), 1 if success else 0, payload),
            )
            row = c.execute("SELECT id FROM command_history WHERE command = ?", (command,)).fetchone()
            return int(row["id"])

    def id_of(self, command: str, conn: Optional[sqlite3.Connection] = None) -> Optional[int]:
        with self.db.connection(conn) as c:
            row = c.execute("SELECT id FROM command_history WHERE command = ?", (command.strip(),)).fetchone()
        return int(row["id"]) if row else None

    def get(self, command: str) -> Optional[HistoryRecord]:
        rows = self.db.query("SELECT * FROM command_history WHERE command = ?", (command.strip(),))
        return _row_to_record(rows[0]) if rows else None

    def get_by_id(self, record_id: int) -> Optional[HistoryRecord]:
        rows = self.db.query("SELECT * FROM command_history WHERE id = ?", (record_id,))
        return _row_to_record(rows[0]) if rows else None

    def get_many(self, commands: List[str]) -> Dict[str, HistoryRecord]:
        if not commands:
            return {}
        unique = sorted(set(commands))
        marks = ",".join("?" for _ in unique)
        rows = self.db.query(f"SELECT * FROM command_history WHERE command IN ({marks})", unique)
        return {r["command"]: _row_to_record(r) for r in rows}

    def search_prefix(self, prefix: str, limit: int = 20) -> List[HistoryRecord]:
        """Case-insensitive prefix search, most frequent then most recent first."""
        rows = self.db.query(
            """
            SELECT * FROM command_history
            WHERE command LIKE ? ESCAPE '\\'
            ORDER BY frequency DESC, last_used DESC, command ASC
            LIMIT ?
            """,
            (_escape_like(prefix) + "%", int(limit)),
        )
        return [_row_to_record(r) for r in rows]

    def recent(self, limit: int = 20) -> List[HistoryRecord]:
        rows = self.db.query(
            "SELECT * FROM command_history ORDER BY last_used DESC, id DESC LIMIT ?", (int(limit),)
        )
        return [_row_to_record(r) for r in rows]

    def count(self) -> int:
        return int(self.db.query("SELECT COUNT(*) AS n FROM command_history")[0]["n"])

    # Relations ---------------------------------------------------------------
    def add_relation(self,
                     from_id: int,
                     to_id: int,
                     relation_type: RelationType = RelationType.SEQUENCE,
                     success: bool = True,
                     time_gap: float = 0.0,
                     when: Optional[datetime] = None,
                     conn: Optional[sqlite3.Connection] = None) -> None:
        """Upsert the (from, to) relation with running success rate and mean time gap."""
        s = 1.0 if success else 0.0
        with self.db.connection(conn) as c:
            c.execute(
                """
                INSERT INTO command_relations
                    (command1_id, command2_id, relation_type, frequency, last_used, success_rate, avg_time_gap)
                VALUES (?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(command1_id, command2_id) DO UPDATE SET
                    success_rate = (success_rate * frequency + excluded.success_rate) / (frequency + 1),
                    avg_time_gap = (avg_time_gap * frequency + excluded.avg_time_gap) / (frequency + 1),
                    frequency = frequency + 1,
                    last_used = excluded.last_used
                """,
                (from_id, to_id, relation_type.value, to_ts(when), s, max(0.0, float(time_gap))),
            )

    def relations_from(self, command_id: int) -> List[CommandRelation]:
        rows = self.db.query(
            "SELECT * FROM command_relations WHERE command1_id = ? ORDER BY frequency DESC", (command_id,)
        )
        return [
            CommandRelation(
                id=r["id"],
                from_id=r["command1_id"],
                to_id=r["command2_id"],
                relation_type=RelationType(r["relation_type"]),
                frequency=int(r["frequency"]),
                success_rate=float(r["success_rate"]),
                avg_time_gap=float(r["avg_time_gap"]),
                last_used=from_ts(r["last_used"]),
            )
            for r in rows
        ]

    def chain_rows(self, limit: int = 5000) -> List[Dict[str, Any]]:
        """Sequence relations joined to command text, for rebuilding command chains."""
        rows = self.db.query(
            """
            SELECT a.command AS prev, b.command AS next, r.frequency AS frequency, r.last_used AS last_used
            FROM command_relations r
            JOIN command_history a ON a.id = r.command1_id
            JOIN command_history b ON b.id = r.command2_id
            WHERE r.relation_type = 'sequence'
            ORDER BY r.last_used DESC
            LIMIT ?
            """,
            (int(limit),),
        )
        return [{"prev": r["prev"], "next": r["next"], "frequency": int(r["frequency"]),
                 "last_used": from_ts(r["last_used"])} for r in rows]

    def chain_counts(self, limit: int = 5000) -> Dict[str, Dict[str, int]]:
        out: Dict[str, Dict[str, int]] = {}
        for r in self.chain_rows(limit):
            out.setdefault(r["prev"], {})[r["next"]] = r["frequency"]
        return out

    # Usage events ------------------------------------------------------------
    def record_usage(self, command: str, context: str = "", success: bool = True,
                     when: Optional[datetime] = None, conn: Optional[sqlite3.Connection] = None) -> None:
        ts = to_ts(when)
        with self.db.connection(conn) as c:
            c.execute(
                """
                INSERT INTO command_usage (command, context, frequency, success_count, fail_count, last_used, created_at)
                VALUES (?, ?, 1, ?, ?, ?, ?)
                ON CONFLICT(command) DO UPDATE SET
                    frequency = frequency + 1,
                    context = excluded.context,
                    success_count = success_count + excluded.success_count,
                    fail_count = fail_count + excluded.fail_count,
                    last_used = excluded.last_used
                """,
                (command, context or "", 1 if success else 0, 0 if success else 1, ts, ts),
            )

    def record_completion(self, input_text: str, suggestion: str, selected: bool,
                          context: Optional[Dict[str, Any]] = None, when: Optional[datetime] = None,
                          conn: Optional[sqlite3.Connection] = None) -> int:
        with self.db.connection(conn) as c:
            cur = c.execute(
                "INSERT INTO completion_usage (input, suggestion, is_selected, context, created_at) VALUES (?, ?, ?, ?, ?)",
                (input_text, suggestion, 1 if selected else 0, json.dumps(context or {}, sort_keys=True), to_ts(when)),
            )
            return int(cur.lastrowid)

    def completion_events_after(self, last_id: int, limit: int = 500) -> List[Dict[str, Any]]:
        rows = self.db.query(
            "SELECT * FROM completion_usage WHERE id > ? ORDER BY id ASC LIMIT ?", (int(last_id), int(limit))
        )
        out = []
        for r in rows:
            try:
                ctx = json.loads(r["context"] or "{}")
            except ValueError:
                ctx = {}
            out.append({
                "id": int(r["id"]),
                "input": r["input"],
                "suggestion": r["suggestion"],
                "is_selected": bool(r["is_selected"]),
                "context": ctx,
                "created_at": from_ts(r["created_at"]),
            })
        return out

    def usage_success(self, commands: List[str]) -> Dict[str, bool]:
        """Whether each command's most recent execution succeeded (missing -> absent)."""
        if not commands:
            return {}
        marks = ",".join("?" for _ in commands)
        rows = self.db.query(f"SELECT command, success FROM command_history WHERE command IN ({marks})", commands)
        return {r["command"]: bool(r["success"]) for r in rows}

    # Pattern state -----------------------------------------------------------
    def save_pattern_state(self, kind: str, key: str, payload: Dict[str, Any],
                           conn: Optional[sqlite3.Connection] = None) -> None:
        with self.db.connection(conn) as c:
            c.execute(
                """
                INSERT INTO pattern_state (kind, key, payload, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(kind, key) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
                """,
                (kind, key, json.dumps(payload, sort_keys=True, default=str), to_ts()),
            )

    def load_pattern_state(self, kind: str) -> Dict[str, Dict[str, Any]]:
        rows = self.db.query("SELECT key, payload FROM pattern_state WHERE kind = ?", (kind,))
        out: Dict[str, Dict[str, Any]] = {}
        for r in rows:
            try:
                out[r["key"]] = json.loads(r["payload"])
            except ValueError:
                logger.warning("dropping unreadable %s state for %r", kind, r["key"])
        return out

    def delete_pattern_state(self, kind: str, key: str) -> None:
        self.db.execute("DELETE FROM pattern_state WHERE kind = ? AND key = ?", (kind, key))
