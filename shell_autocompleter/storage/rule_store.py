# shell_autocompleter/storage/rule_store.py
"""
RuleStore - persistence for mined rules, their version lineage and live performance counters,
plus the per-component analysis checkpoint (analysis_state).
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from shell_autocompleter.core.types import (
    Rule,
    RulePerformance,
    RuleType,
    RuleVersion,
    VersionStatus,
)
from shell_autocompleter.storage.database import Database, from_ts, to_ts


def _loads(text: Optional[str], default):
    try:
        return json.loads(text) if text else default
    except ValueError:
        return default


def rule_to_state(rule: Rule) -> Dict[str, Any]:
    """Serializable parameters of a rule (what a version change records)."""
    return {
        "id": rule.id,
        "type": rule.type.value,
        "pattern": rule.pattern,
        "weight": rule.weight,
        "confidence": rule.confidence,
        "metadata": rule.metadata,
    }


def rule_from_state(state: Dict[str, Any], version: int) -> Rule:
    return Rule(
        id=state["id"],
        type=RuleType(state["type"]),
        pattern=state["pattern"],
        weight=float(state["weight"]),
        confidence=float(state["confidence"]),
        version=version,
        metadata=dict(state.get("metadata") or {}),
    )


class RuleStore:
    def __init__(self, db: Database):
        self.db = db

    # Rules -------------------------------------------------------------------
    def get_rules(self, conn: Optional[sqlite3.Connection] = None) -> List[Rule]:
        with self.db.connection(conn) as c:
            rows = c.execute(
                """
                SELECT r.*, p.usage_count, p.success_count, p.adoption_count, p.total_latency
                FROM completion_rules r
                LEFT JOIN rule_performance p ON p.rule_id = r.id
                ORDER BY r.id
                """
            ).fetchall()
        return [self._row_to_rule(r) for r in rows]

    def get_rule(self, rule_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Rule]:
        with self.db.connection(conn) as c:
            row = c.execute(
                """
                SELECT r.*, p.usage_count, p.success_count, p.adoption_count, p.total_latency
                FROM completion_rules r
                LEFT JOIN rule_performance p ON p.rule_id = r.id
                WHERE r.id = ?
                """,
                (rule_id,),
            ).fetchone()
        return self._row_to_rule(row) if row else None

    @staticmethod
    def _row_to_rule(r: sqlite3.Row) -> Rule:
        return Rule(
            id=r["id"],
            type=RuleType(r["type"]),
            pattern=r["pattern"],
            weight=float(r["weight"]),
            confidence=float(r["confidence"]),
            version=int(r["version"]),
            metadata=_loads(r["metadata"], {}),
            performance=RulePerformance(
                usage_count=int(r["usage_count"] or 0),
                success_count=int(r["success_count"] or 0),
                adoption_count=int(r["adoption_count"] or 0),
                total_latency=float(r["total_latency"] or 0.0),
            ),
        )

    def upsert_rule(self, rule: Rule, conn: Optional[sqlite3.Connection] = None) -> None:
        ts = to_ts()
        with self.db.connection(conn) as c:
            c.execute(
                """
                INSERT INTO completion_rules (id, type, pattern, weight, confidence, version, metadata, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    pattern = excluded.pattern,
                    weight = excluded.weight,
                    confidence = excluded.confidence,
                    version = excluded.version,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at
                """,
                (rule.id, rule.type.value, rule.pattern, _clip(rule.weight), _clip(rule.confidence),
                 int(rule.version), json.dumps(rule.metadata, sort_keys=True, default=str), ts, ts),
            )
            c.execute("INSERT OR IGNORE INTO rule_performance (rule_id) VALUES (?)", (rule.id,))

    def delete_rule(self, rule_id: str, conn: Optional[sqlite3.Connection] = None) -> None:
        with self.db.connection(conn) as c:
            c.execute("DELETE FROM completion_rules WHERE id = ?", (rule_id,))

    def record_performance(self, rule_id: str, used: int = 1, succeeded: int = 0, adopted: int = 0,
                           latency: float = 0.0, conn: Optional[sqlite3.Connection] = None) -> None:
        with self.db.connection(conn) as c:
            c.execute(
                """
                UPDATE rule_performance SET
                    usage_count = usage_count + ?,
                    success_count = success_count + ?,
                    adoption_count = adoption_count + ?,
                    total_latency = total_latency + ?,
                    last_used_at = ?
                WHERE rule_id = ?
                """,
                (int(used), int(succeeded), int(adopted), float(latency), to_ts(), rule_id),
            )

    def reset_performance(self, rule_id: str, conn: Optional[sqlite3.Connection] = None) -> None:
        with self.db.connection(conn) as c:
            c.execute(
                "UPDATE rule_performance SET usage_count = 0, success_count = 0, adoption_count = 0, "
                "total_latency = 0 WHERE rule_id = ?",
                (rule_id,),
            )

    # Versions ----------------------------------------------------------------
    def max_version(self, conn: Optional[sqlite3.Connection] = None) -> int:
        with self.db.connection(conn) as c:
            row = c.execute("SELECT MAX(version) AS v FROM rule_versions").fetchone()
        return int(row["v"] or 0)

    def active_version(self, conn: Optional[sqlite3.Connection] = None) -> Optional[int]:
        with self.db.connection(conn) as c:
            row = c.execute("SELECT MAX(version) AS v FROM rule_versions WHERE status = 'active'").fetchone()
        return int(row["v"]) if row and row["v"] is not None else None

    def insert_version(self, version: int, changes: List[Dict[str, Any]], status: VersionStatus,
                       conn: Optional[sqlite3.Connection] = None) -> None:
        with self.db.connection(conn) as c:
            c.execute(
                "INSERT INTO rule_versions (version, changes, status, created_at) VALUES (?, ?, ?, ?)",
                (int(version), json.dumps(changes, sort_keys=True, default=str), status.value, to_ts()),
            )

    def set_version_status(self, version: int, status: VersionStatus,
                           conn: Optional[sqlite3.Connection] = None) -> None:
        with self.db.connection(conn) as c:
            c.execute("UPDATE rule_versions SET status = ? WHERE version = ?", (status.value, int(version)))

    def get_version(self, version: int, conn: Optional[sqlite3.Connection] = None) -> Optional[RuleVersion]:
        with self.db.connection(conn) as c:
            row = c.execute("SELECT * FROM rule_versions WHERE version = ?", (int(version),)).fetchone()
        return self._row_to_version(row) if row else None

    def versions(self, limit: int = 50, after: int = 0,
                 conn: Optional[sqlite3.Connection] = None) -> List[RuleVersion]:
        with self.db.connection(conn) as c:
            rows = c.execute(
                "SELECT * FROM rule_versions WHERE version > ? ORDER BY version DESC LIMIT ?",
                (int(after), int(limit)),
            ).fetchall()
        return [self._row_to_version(r) for r in rows]

    @staticmethod
    def _row_to_version(r: sqlite3.Row) -> RuleVersion:
        return RuleVersion(
            version=int(r["version"]),
            changes=_loads(r["changes"], []),
            status=VersionStatus(r["status"]),
            created_at=from_ts(r["created_at"]),
        )

    # Analysis checkpoint -----------------------------------------------------
    def get_state(self, component: str) -> Optional[Dict[str, Any]]:
        rows = self.db.query("SELECT * FROM analysis_state WHERE component = ?", (component,))
        if not rows:
            return None
        r = rows[0]
        return {
            "last_processed_id": int(r["last_processed_id"]),
            "last_analysis_time": from_ts(r["last_analysis_time"]) if r["last_analysis_time"] else None,
            "processed_count": int(r["processed_count"]),
            "metrics": _loads(r["analysis_metrics"], {}),
        }

    def update_state(self, component: str, last_processed_id: int, processed_count: int,
                     metrics: Dict[str, Any], when: Optional[datetime] = None,
                     conn: Optional[sqlite3.Connection] = None) -> None:
        ts = to_ts(when)
        with self.db.connection(conn) as c:
            c.execute(
                """
                INSERT INTO analysis_state
                    (component, last_processed_id, last_analysis_time, processed_count, analysis_metrics, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(component) DO UPDATE SET
                    last_processed_id = excluded.last_processed_id,
                    last_analysis_time = excluded.last_analysis_time,
                    processed_count = excluded.processed_count,
                    analysis_metrics = excluded.analysis_metrics,
                    updated_at = excluded.updated_at
                """,
                (component, int(last_processed_id), ts, int(processed_count),
                 json.dumps(metrics, sort_keys=True, default=str), ts),
            )


def _clip(v: float) -> float:
    return max(0.0, min(1.0, float(v)))
