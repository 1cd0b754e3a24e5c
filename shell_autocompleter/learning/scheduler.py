# shell_autocompleter/learning/scheduler.py
"""
AnalysisScheduler - the background rule-mining loop.

Each cycle:
 1. read completion_usage rows after the checkpoint in bounded batches (one short read each)
 2. feed them to the RuleMiner and tally live performance of the current rules
 3. merge mined candidates into the rule set (weight averaged, confidence max)
 4. revert rules whose adoption rate fell below the threshold
 5. record the changes as a new RuleVersion and save the checkpoint

A cycle that starts while another is running is skipped. A failing cycle is retried a few times
with a short backoff and then left for the next interval. The interactive path only ever reads
rule_boost(), which is served from memory.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from shell_autocompleter.core.errors import AnalysisCycleFailure
from shell_autocompleter.core.parser import CommandParser
from shell_autocompleter.core.types import CompletionContext, Rule, RulePerformance, RuleType
from shell_autocompleter.learning.data_cleaner import DataCleaner
from shell_autocompleter.learning.rule_miner import RuleMiner, match_patterns, rule_matches
from shell_autocompleter.learning.rule_versions import RuleVersionManager, make_change
from shell_autocompleter.storage.history_store import HistoryStore
from shell_autocompleter.storage.rule_store import RuleStore
from shell_autocompleter.utils.logger_utils import Log

logger = logging.getLogger(__name__)

COMPONENT = "rule_miner"
SIGNIFICANT_DELTA = 0.01


class AnalysisScheduler:
    def __init__(self,
                 history: HistoryStore,
                 rules: RuleStore,
                 versions: Optional[RuleVersionManager] = None,
                 miner: Optional[RuleMiner] = None,
                 cleaner: Optional[DataCleaner] = None,
                 interval: float = 300.0,
                 batch_size: int = 500,
                 max_batches: int = 20,
                 min_usage: int = 10,
                 regression_threshold: float = 0.2,
                 max_retries: int = 3,
                 retry_backoff: float = 0.5,
                 cleanup_every: float = 86400.0):
        self.history = history
        self.rules = rules
        self.versions = versions or RuleVersionManager(rules)
        self.miner = miner or RuleMiner()
        self.cleaner = cleaner
        self.interval = float(interval)
        self.batch_size = int(batch_size)
        self.max_batches = int(max_batches)
        self.min_usage = int(min_usage)
        self.regression_threshold = float(regression_threshold)
        self.max_retries = int(max_retries)
        self.retry_backoff = float(retry_backoff)
        self.cleanup_every = float(cleanup_every)

        self.parser = CommandParser()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._active: List[Rule] = []
        # best weight*confidence per pattern, one table per rule kind
        self._index: Dict[RuleType, Dict[str, float]] = {}
        self._active_lock = threading.Lock()
        self._state_loaded = False
        self._last_cleanup = time.monotonic()
        self.cycles = 0
        self.skipped = 0
        self.failures = 0

    # -------------------------
    # Lifecycle
    # -------------------------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            logger.warning("analysis scheduler already started")
            return
        self.refresh_rules()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="analysis-scheduler", daemon=True)
        self._thread.start()
        logger.info("analysis scheduler started (interval=%.0fs)", self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
            logger.info("analysis scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.trigger_analysis()
            if self.cleaner is not None and time.monotonic() - self._last_cleanup >= self.cleanup_every:
                self._last_cleanup = time.monotonic()
                try:
                    self.cleaner.cleanup()
                except Exception as e:
                    logger.error("scheduled cleanup failed: %s", e)

    # -------------------------
    # Cycles
    # -------------------------
    def trigger_analysis(self) -> Optional[Dict[str, Any]]:
        """Run one cycle now. Returns its summary, or None when skipped or failed."""
        if not self._cycle_lock.acquire(blocking=False):
            self.skipped += 1
            logger.debug("analysis cycle already running, skipping")
            return None
        try:
            for attempt in range(self.max_retries):
                try:
                    with Log.time_block("scheduler.cycle"):
                        summary = self._cycle()
                    self.cycles += 1
                    return summary
                except Exception as e:
                    self.failures += 1
                    # counts observed by the failed attempt are re-read from the checkpoint
                    self._state_loaded = False
                    logger.warning("analysis cycle attempt %d/%d failed: %s", attempt + 1, self.max_retries, e)
                    if self._stop_event.wait(self.retry_backoff * (2 ** attempt)):
                        break
            err = AnalysisCycleFailure(f"analysis cycle failed after {self.max_retries} attempts")
            logger.error("%s; waiting for the next interval", err)
            return None
        finally:
            self._cycle_lock.release()

    def _load_state(self) -> Tuple[int, int]:
        state = self.rules.get_state(COMPONENT) or {}
        if not self._state_loaded:
            self.miner.load_state(state.get("metrics", {}).get("miner"))
            self._state_loaded = True
        return int(state.get("last_processed_id", 0)), int(state.get("processed_count", 0))

    def _cycle(self) -> Dict[str, Any]:
        last_id, processed = self._load_state()
        current = {r.id: r for r in self.rules.get_rules()}
        perf: Dict[str, RulePerformance] = {}
        read = 0

        for _ in range(self.max_batches):
            events = self.history.completion_events_after(last_id, self.batch_size)
            if not events:
                break
            outcomes = self.history.usage_success([ev["suggestion"] for ev in events])
            for ev in events:
                self.miner.observe(ev)
                self._tally(ev, current, outcomes, perf)
                last_id = ev["id"]
            read += len(events)
            if len(events) < self.batch_size:
                break

        if perf:
            with self.rules.db.connection() as conn:
                for rid, p in perf.items():
                    self.rules.record_performance(rid, p.usage_count, p.success_count, p.adoption_count,
                                                  p.total_latency, conn=conn)

        changes = self._merge(current)
        regressed = self._regressions()
        version = None
        if changes:
            version = self.versions.create_version(changes).version
        if regressed:
            for rid in regressed:
                self.miner.block(rid)
            reverted = self.versions.revert_rules(regressed)
            version = reverted.version if reverted else version

        self.rules.update_state(COMPONENT, last_id, processed + read, {"miner": self.miner.to_state()})
        self.refresh_rules()
        summary = {"events": read, "changes": len(changes), "regressions": len(regressed),
                   "version": version, "last_processed_id": last_id}
        Log.metric("scheduler.events", read)
        logger.info("analysis cycle: %s", summary)
        return summary

    def _tally(self, ev: Dict[str, Any], current: Dict[str, Rule], outcomes: Dict[str, bool],
               perf: Dict[str, RulePerformance]) -> None:
        ctx = ev.get("context") or {}
        if ctx.get("event") != "completion":
            return
        command = ev["suggestion"]
        for rule in current.values():
            if not rule_matches(rule, command, ctx.get("cwd"), ctx.get("previous"), self.parser):
                continue
            p = perf.setdefault(rule.id, RulePerformance())
            p.usage_count += 1
            if ev.get("is_selected"):
                p.adoption_count += 1
                if outcomes.get(command):
                    p.success_count += 1
            p.total_latency += float(ctx.get("latency_ms", 0.0) or 0.0)

    def _merge(self, current: Dict[str, Rule]) -> List[Dict[str, Any]]:
        changes = []
        for cand in self.miner.candidates():
            old = current.get(cand.id)
            if old is None:
                changes.append(make_change(cand.id, "add", None, cand, "mined"))
                continue
            merged = Rule(
                id=old.id,
                type=old.type,
                pattern=old.pattern,
                weight=round((old.weight + cand.weight) / 2.0, 4),
                confidence=max(old.confidence, cand.confidence),
                version=old.version,
                metadata=dict(cand.metadata),
            )
            if (abs(merged.weight - old.weight) > SIGNIFICANT_DELTA
                    or abs(merged.confidence - old.confidence) > SIGNIFICANT_DELTA):
                changes.append(make_change(old.id, "update", old, merged, "merged"))
        return changes

    def _regressions(self) -> List[str]:
        out = []
        for rule in self.rules.get_rules():
            p = rule.performance
            if p.usage_count >= self.min_usage and p.adoption_rate < self.regression_threshold:
                logger.info("rule %s regressed (adoption %.2f over %d uses)", rule.id, p.adoption_rate, p.usage_count)
                out.append(rule.id)
        return out

    # -------------------------
    # Interactive side
    # -------------------------
    def refresh_rules(self) -> None:
        try:
            rules = self.rules.get_rules()
        except Exception as e:
            logger.warning("could not load rules: %s", e)
            return
        index: Dict[RuleType, Dict[str, float]] = {t: {} for t in RuleType}
        for rule in rules:
            table = index[rule.type]
            table[rule.pattern] = max(table.get(rule.pattern, 0.0), rule.weight * rule.confidence)
        with self._active_lock:
            self._active = rules
            self._index = index

    def active_rules(self) -> List[Rule]:
        with self._active_lock:
            return list(self._active)

    def rule_boost(self, full_command: str, context: Optional[CompletionContext] = None) -> float:
        cwd = context.environment.cwd if context is not None else None
        previous = context.last_command if context is not None else None
        with self._active_lock:
            index = self._index
        if not any(index.values()):
            return 0.0
        best = 0.0
        for rule_type, pattern in match_patterns(full_command, cwd, previous, self.parser).items():
            best = max(best, index.get(rule_type, {}).get(pattern, 0.0))
        return best

    def rollback(self, version: int) -> int:
        """Explicit operator rollback to `version`; returns the new version number."""
        with self._cycle_lock:
            v = self.versions.rollback(version)
        self.refresh_rules()
        return v.version

    def status(self) -> Dict[str, Any]:
        state = self.rules.get_state(COMPONENT) or {}
        return {
            "running": self.running,
            "cycles": self.cycles,
            "skipped": self.skipped,
            "failures": self.failures,
            "active_version": self.versions.current_version(),
            "rules": len(self.active_rules()),
            "last_processed_id": state.get("last_processed_id", 0),
            "last_analysis_time": state.get("last_analysis_time") or datetime.fromtimestamp(0),
        }
