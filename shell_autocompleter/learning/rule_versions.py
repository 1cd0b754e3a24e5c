# shell_autocompleter/learning/rule_versions.py
"""
RuleVersionManager - lineage of rule-set changes.

Every change to completion_rules goes through create_version(): the changes are applied and a
new rule_versions row is written in the same transaction. Version numbers only increase, so a
rollback is itself a new version whose changes undo the later ones.

Status transitions (terminal once left):
    active -> deprecated   superseded by a normal new version
    active -> rollback     superseded because of a regression or an explicit rollback

Change entry: {"rule_id", "action": add|update|remove|restore, "before", "after", "reason"}
where before/after are rule_to_state() dicts or None.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from shell_autocompleter.core.types import Rule, RuleVersion, VersionStatus
from shell_autocompleter.storage.rule_store import RuleStore, rule_from_state, rule_to_state

logger = logging.getLogger(__name__)

REGRESSION = "regression"


def _is_revert(change: Dict[str, Any]) -> bool:
    reason = change.get("reason") or ""
    return change.get("action") in ("restore", "remove") and (
        reason == REGRESSION or reason.startswith("rollback"))


def _state_key(state: Dict[str, Any]) -> Tuple[str, str, float, float]:
    # parameters only; the version stamp differs between otherwise equal states
    return (state["type"], state["pattern"], round(float(state["weight"]), 6),
            round(float(state["confidence"]), 6))


def make_change(rule_id: str, action: str, before: Optional[Rule], after: Optional[Rule],
                reason: str = "") -> Dict[str, Any]:
    return {
        "rule_id": rule_id,
        "action": action,
        "before": rule_to_state(before) if before is not None else None,
        "after": rule_to_state(after) if after is not None else None,
        "reason": reason,
    }


class RuleVersionManager:
    def __init__(self, store: RuleStore):
        self.store = store
        self._lock = threading.Lock()

    def current_version(self) -> Optional[int]:
        return self.store.active_version()

    def history(self, limit: int = 20) -> List[RuleVersion]:
        return self.store.versions(limit=limit)

    def create_version(self, changes: List[Dict[str, Any]],
                       supersede_as: VersionStatus = VersionStatus.DEPRECATED) -> RuleVersion:
        """Apply `changes` and record them as the new active version."""
        if not changes:
            raise ValueError("a version needs at least one change")
        with self._lock, self.store.db.connection() as conn:
            version = self.store.max_version(conn) + 1
            previous = self.store.active_version(conn)
            for change in changes:
                self._apply(change, version, conn)
            if previous is not None:
                self.store.set_version_status(previous, supersede_as, conn)
            self.store.insert_version(version, changes, VersionStatus.ACTIVE, conn)
        logger.info("rule version %d created with %d change(s), v%s marked %s",
                    version, len(changes), previous, supersede_as.value)
        return RuleVersion(version=version, changes=changes, status=VersionStatus.ACTIVE)

    def _apply(self, change: Dict[str, Any], version: int, conn) -> None:
        after = change.get("after")
        if after is None:
            self.store.delete_rule(change["rule_id"], conn)
            return
        self.store.upsert_rule(rule_from_state(after, version), conn)
        if change.get("action") == "restore":
            self.store.reset_performance(change["rule_id"], conn)

    def previous_state(self, rule_id: str, scan: int = 200,
                       current: Optional[Rule] = None) -> Tuple[bool, Optional[Dict[str, Any]]]:
        """
        The last good parameters `rule_id` had, walking back through its changes.
        Returns (found, state); state is None when the walk reaches the change that created the rule.

        Revert entries (regression restores, rollbacks) are stepped over, and so is every state
        they undid: a state that was rolled back once is never offered again. `current`, when
        given, is skipped as well.
        """
        bad = set()
        if current is not None:
            bad.add(_state_key(rule_to_state(current)))
        mine = [change for v in self.store.versions(limit=scan) for change in reversed(v.changes)
                if change.get("rule_id") == rule_id]
        for change in mine:
            if _is_revert(change) and change.get("before") is not None:
                bad.add(_state_key(change["before"]))
        for change in mine:
            if _is_revert(change):
                continue
            before = change.get("before")
            if before is None:
                return True, None
            if _state_key(before) not in bad:
                return True, before
        return bool(mine), None

    def revert_rules(self, rule_ids: List[str], reason: str = REGRESSION) -> Optional[RuleVersion]:
        """Put each rule back to its last good state (removing rules that never had one)."""
        changes = []
        for rid in rule_ids:
            current = self.store.get_rule(rid)
            if current is None:
                continue
            found, before = self.previous_state(rid, current=current)
            if found and before is not None:
                prior = rule_from_state(before, current.version)
                changes.append(make_change(rid, "restore", current, prior, reason))
            else:
                changes.append(make_change(rid, "remove", current, None, reason))
        if not changes:
            return None
        return self.create_version(changes, supersede_as=VersionStatus.ROLLBACK)

    def rollback(self, target_version: int) -> RuleVersion:
        """Undo every version after `target_version`; the result is a new, higher version."""
        target = self.store.get_version(target_version)
        if target is None:
            raise ValueError(f"unknown rule version {target_version}")
        later = sorted(self.store.versions(limit=10_000, after=target_version), key=lambda v: v.version,
                       reverse=True)
        if not later:
            raise ValueError(f"version {target_version} is already the latest")

        # the oldest "before" seen for each rule is its state as of target_version
        restore: Dict[str, Optional[Dict[str, Any]]] = {}
        for v in later:
            for change in reversed(v.changes):
                restore[change["rule_id"]] = change.get("before")

        changes = []
        reason = f"rollback to v{target_version}"
        for rid in sorted(restore):
            current = self.store.get_rule(rid)
            state = restore[rid]
            if state is None:
                if current is not None:
                    changes.append(make_change(rid, "remove", current, None, reason))
            else:
                prior = rule_from_state(state, current.version if current else target_version)
                changes.append(make_change(rid, "restore", current, prior, reason))
        if not changes:
            # rules already match the target; record the rollback without touching them
            changes = [{"rule_id": "*", "action": "restore", "before": None, "after": None, "reason": reason}]
        return self._create_rollback(changes)

    def _create_rollback(self, changes: List[Dict[str, Any]]) -> RuleVersion:
        real = [c for c in changes if c["rule_id"] != "*"]
        if real:
            return self.create_version(real, supersede_as=VersionStatus.ROLLBACK)
        with self._lock, self.store.db.connection() as conn:
            version = self.store.max_version(conn) + 1
            previous = self.store.active_version(conn)
            if previous is not None:
                self.store.set_version_status(previous, VersionStatus.ROLLBACK, conn)
            self.store.insert_version(version, changes, VersionStatus.ACTIVE, conn)
        return RuleVersion(version=version, changes=changes, status=VersionStatus.ACTIVE)
