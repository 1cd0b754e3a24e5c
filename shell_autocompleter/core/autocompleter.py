# shell_autocompleter/core/autocompleter.py
"""
ShellAutocompleter - application facade.

Purpose:
 - own every engine component (constructed here, no module-level instances)
 - asynchronous start: open the store, migrate, load learned state; `ready` is a one-shot Future
 - public API for the UI / CLI / tests:
     get_suggestions(input, cursor_position, session_state) -> List[CompletionSuggestion]
     record_command_execution(command, outputs, exit_code, cwd=None)
     accept_suggestion(index) -> Optional[str]
     clear_suggestions(), select_next(), select_previous()
     wait_ready(timeout), shutdown(), stats()

get_suggestions never raises once ready (EngineNotReady before that). Store writes go through a
background writer with bounded retries and never reach the caller.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from shell_autocompleter.context.analyzers import default_analyzers, normalize_cwd
from shell_autocompleter.context.context_builder import ContextBuilder
from shell_autocompleter.context.environment import EnvironmentProbe
from shell_autocompleter.context.user_patterns import CONTEXT_KIND, TIME_KIND, UserPatterns, context_key
from shell_autocompleter.core.errors import EngineNotReady, StoreWriteFailure
from shell_autocompleter.core.fusion_ranker import FusionRanker
from shell_autocompleter.core.generators import HeuristicGenerator, HistoryGenerator, RemoteProbeGenerator
from shell_autocompleter.core.parser import CommandParser
from shell_autocompleter.core.probe_executor import ProbeExecutor
from shell_autocompleter.core.protocols import RemoteSession
from shell_autocompleter.core.suggestion_cache import SuggestionCache, fingerprint
from shell_autocompleter.core.types import (
    CompletionSuggestion,
    EnvironmentState,
    ExecutionResult,
    HistoryRecord,
    SessionState,
)
from shell_autocompleter.learning.data_cleaner import DataCleaner
from shell_autocompleter.learning.scheduler import AnalysisScheduler
from shell_autocompleter.storage.database import Database
from shell_autocompleter.storage.history_store import HistoryStore
from shell_autocompleter.storage.migrations import MigrationRunner
from shell_autocompleter.storage.rule_store import RuleStore
from shell_autocompleter.utils.logger_utils import Log
from shell_autocompleter.utils.metrics_tracker import Metrics
from shell_autocompleter.utils.threaded_runner import run_parallel

logger = logging.getLogger(__name__)


class _BackgroundWriter:
    """Single daemon thread draining store-write jobs; each job gets `retries` attempts."""

    def __init__(self, retries: int = 3, backoff: float = 0.05):
        self.retries = max(1, int(retries))
        self.backoff = float(backoff)
        self._queue: "queue.Queue[Optional[Tuple[str, Callable[[], None]]]]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="store-writer", daemon=True)
        self.failed = 0
        self._thread.start()

    def submit(self, label: str, job: Callable[[], None]) -> None:
        self._queue.put((label, job))

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                self._execute(*item)
            finally:
                self._queue.task_done()

    def _execute(self, label: str, job: Callable[[], None]) -> None:
        for attempt in range(self.retries):
            try:
                job()
                return
            except Exception as e:
                logger.debug("store write %s attempt %d failed: %s", label, attempt + 1, e)
                time.sleep(self.backoff * (2 ** attempt))
        self.failed += 1
        logger.warning("%s", StoreWriteFailure(f"giving up on store write {label!r} after {self.retries} attempts"))

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until queued jobs are done. Returns False on timeout."""
        if timeout is None:
            self._queue.join()
            return True
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self._queue.put(None)
        self._thread.join(timeout=timeout)


class ShellAutocompleter:
    def __init__(self,
                 session: Optional[RemoteSession] = None,
                 db_path: str = ":memory:",
                 max_suggestions: int = 8,
                 cache_ttl: float = 2.0,
                 environment_ttl: float = 5.0,
                 latency_budget: float = 0.15,
                 probe_timeout: float = 0.5,
                 ranker_preset: str = "balanced",
                 weights: Optional[Dict[str, float]] = None,
                 analysis_interval: float = 300.0,
                 history_window: int = 20,
                 workers: int = 8,
                 start_scheduler: bool = True):
        self.db_path = db_path
        self.max_suggestions = int(max_suggestions)
        self.latency_budget = float(latency_budget)
        self.history_window = int(history_window)
        self.analysis_interval = float(analysis_interval)
        self.start_scheduler = start_scheduler

        self.parser = CommandParser()
        self.analyzers = default_analyzers(self.parser)
        self.user_patterns = UserPatterns()
        self.cache = SuggestionCache(ttl=cache_ttl)
        self.metrics = Metrics()
        self.pool = ThreadPoolExecutor(max_workers=max(4, int(workers)), thread_name_prefix="completion")
        self.probes = ProbeExecutor(session, default_timeout=probe_timeout) if session is not None else None
        self.environment = EnvironmentProbe(self.probes, ttl=environment_ttl, probe_timeout=probe_timeout)
        self.ranker = FusionRanker(preset=ranker_preset, weights=weights, history_lookup=self._history_lookup,
                                   topn=self.max_suggestions)
        self.heuristic_generator = HeuristicGenerator()
        self.remote_generator = RemoteProbeGenerator(self.probes, timeout=probe_timeout)

        # wired by start()
        self.db: Optional[Database] = None
        self.history: Optional[HistoryStore] = None
        self.rules: Optional[RuleStore] = None
        self.scheduler: Optional[AnalysisScheduler] = None
        self.builder: Optional[ContextBuilder] = None
        self.history_generator: Optional[HistoryGenerator] = None
        self._writer: Optional[_BackgroundWriter] = None

        self.ready: "Future[bool]" = Future()
        self._start_lock = threading.Lock()
        self._started = False
        self._closed = False

        # request / selection state
        self._state_lock = threading.Lock()
        self._seq = itertools.count(1)
        self._issued: Dict[str, int] = {}
        self._delivered: Dict[str, Tuple[int, List[CompletionSuggestion]]] = {}
        self._current: List[CompletionSuggestion] = []
        self._current_input = ""
        self._current_session = SessionState()
        self._selected = 0
        self._shown_at = 0.0

        # execution state
        self._record_lock = threading.Lock()
        self._last_command: Optional[str] = None
        self._last_executed_at: Optional[datetime] = None
        self._last_cwd: Optional[str] = None
        self._last_env: Dict[str, EnvironmentState] = {}

    # -------------------------
    # Lifecycle
    # -------------------------
    def start(self) -> "Future[bool]":
        """Begin initialization on a background thread; returns the readiness future."""
        with self._start_lock:
            if not self._started:
                self._started = True
                threading.Thread(target=self._initialize, name="engine-init", daemon=True).start()
        return self.ready

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until ready. False on timeout; EngineNotReady if initialization failed."""
        self.start()
        try:
            self.ready.result(timeout=timeout)
            return True
        except FutureTimeout:
            return False
        except Exception as e:
            raise EngineNotReady(f"engine failed to start: {e}") from e

    @property
    def is_ready(self) -> bool:
        return self.ready.done() and self.ready.exception() is None

    def _initialize(self) -> None:
        try:
            with Log.time_block("engine.start"):
                self.db = Database(self.db_path)
                applied = MigrationRunner(self.db).run()
                self.history = HistoryStore(self.db)
                self.rules = RuleStore(self.db)
                self._load_state()

                self.builder = ContextBuilder(self.parser, self.history, self.analyzers, self.user_patterns,
                                              self.environment, self.pool, self.history_window,
                                              budget=self.latency_budget * 0.5)
                self.history_generator = HistoryGenerator(self.history)
                cleaner = DataCleaner(self.db, self.history, self.analyzers.values())
                self.scheduler = AnalysisScheduler(self.history, self.rules, cleaner=cleaner,
                                                   interval=self.analysis_interval)
                self.ranker.rule_provider = self.scheduler
                self._writer = _BackgroundWriter()
                if self.start_scheduler:
                    self.scheduler.start()
                else:
                    self.scheduler.refresh_rules()
            logger.info("engine ready (db=%s, migrations applied=%s)", self.db_path, applied or "none")
            self.ready.set_result(True)
        except Exception as e:
            logger.exception("engine initialization failed")
            self.ready.set_exception(e)

    def _load_state(self) -> None:
        for kind, analyzer in self.analyzers.items():
            for key, payload in self.history.load_pattern_state(kind).items():
                analyzer.load(key, payload)
        chains = self.user_patterns.load_chains(self.history.chain_rows())
        for kind in (TIME_KIND, CONTEXT_KIND):
            for key, payload in self.history.load_pattern_state(kind).items():
                self.user_patterns.load(kind, key, payload)
        recent = self.history.recent(1)
        if recent:
            self._last_command = recent[0].command
            self._last_executed_at = recent[0].last_used
        logger.debug("loaded %d chain relations, last command %r", chains, self._last_command)

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise EngineNotReady("engine is not ready; call start() and wait_ready() first")

    def shutdown(self, timeout: float = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        if self.scheduler is not None:
            self.scheduler.stop(timeout)
        if self._writer is not None:
            self._writer.flush(timeout)
            self._writer.stop(timeout)
        if self.probes is not None:
            self.probes.close()
        self.pool.shutdown(wait=False, cancel_futures=True)
        if self.db is not None:
            self.db.close()
        logger.info("engine shut down")

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued store writes (tests and shutdown)."""
        return self._writer.flush(timeout) if self._writer is not None else True

    # -------------------------
    # Suggestions
    # -------------------------
    def get_suggestions(self,
                        input: str,
                        cursor_position: Optional[int] = None,
                        session_state: Optional[SessionState] = None) -> List[CompletionSuggestion]:
        self._require_ready()
        text = input or ""
        cursor = len(text) if cursor_position is None else max(0, min(int(cursor_position), len(text)))
        session = session_state or SessionState()
        field_id = session.field_id

        with self._state_lock:
            seq = next(self._seq)
            self._issued[field_id] = seq

        try:
            result = self._compute(text, cursor, session)
        except Exception as e:
            logger.warning("suggestion request failed: %s", e)
            result = []

        with self._state_lock:
            if seq >= self._issued.get(field_id, 0):
                self._delivered[field_id] = (seq, result)
                self._current = result
                self._current_input = text[:cursor]
                self._current_session = session
                self._selected = 0
                self._shown_at = time.monotonic()
                return list(result)
            Log.metric("engine.stale_dropped", seq)
            delivered = self._delivered.get(field_id)
            return list(delivered[1]) if delivered else []

    def _compute(self, text: str, cursor: int, session: SessionState) -> List[CompletionSuggestion]:
        started = time.monotonic()
        name = self.parser.command_name(text[:cursor])
        key = fingerprint(text, cursor, name, session)
        cached = self.cache.get(key)
        if cached is not None:
            self.metrics.incr("cache.hit")
            return cached
        self.metrics.incr("cache.miss")

        with self._record_lock:
            last_command = self._last_command
        context = self.builder.build(text, cursor, session, last_command=last_command)
        self._last_cwd = context.environment.cwd
        if len(self._last_env) >= 256:
            self._last_env.clear()
        self._last_env[normalize_cwd(context.environment.cwd) or "~"] = context.environment

        remaining = max(0.01, self.latency_budget - (time.monotonic() - started))
        generators = [g for g in (self.history_generator, self.heuristic_generator, self.remote_generator)
                      if g is not None]
        produced = run_parallel(self.pool, {g.name: (lambda g=g: g.generate(context)) for g in generators},
                                timeout=remaining)
        candidates = []
        for g in generators:
            candidates.extend(produced.get(g.name, []))
        missing = [g.name for g in generators if g.name not in produced]
        if missing:
            logger.debug("sources without results for %r: %s", text[:cursor], ", ".join(missing))

        ranked = self.ranker.rank(candidates, context, self.max_suggestions)
        self.cache.put(key, ranked)
        elapsed = time.monotonic() - started
        self.metrics.record("suggest.latency", elapsed)
        Log.metric("engine.suggest_latency", round(elapsed, 4), "s")
        return ranked

    def _history_lookup(self, commands: List[str]) -> Dict[str, HistoryRecord]:
        return self.history.get_many(commands) if self.history is not None else {}

    # -------------------------
    # Selection
    # -------------------------
    @property
    def current_suggestions(self) -> List[CompletionSuggestion]:
        with self._state_lock:
            return list(self._current)

    @property
    def selected_index(self) -> int:
        with self._state_lock:
            return self._selected

    def select_next(self) -> int:
        with self._state_lock:
            if self._current:
                self._selected = (self._selected + 1) % len(self._current)
            return self._selected

    def select_previous(self) -> int:
        with self._state_lock:
            if self._current:
                self._selected = (self._selected - 1) % len(self._current)
            return self._selected

    def clear_suggestions(self) -> None:
        with self._state_lock:
            self._current = []
            self._current_input = ""
            self._selected = 0

    def accept_suggestion(self, index: Optional[int] = None) -> Optional[str]:
        """Full command of the suggestion at `index` (default: the selected one), then clear the list."""
        self._require_ready()
        with self._state_lock:
            shown = list(self._current)
            if not shown:
                return None
            idx = self._selected if index is None else int(index)
            if idx < 0 or idx >= len(shown):
                idx = 0
            typed = self._current_input
            session = self._current_session
            latency_ms = (time.monotonic() - self._shown_at) * 1000.0
            self._current = []
            self._current_input = ""
            self._selected = 0

        chosen = shown[idx]
        with self._record_lock:
            previous = self._last_command
        cwd = self._last_cwd or session.cwd

        def job() -> None:
            with self.db.connection() as conn:
                for rank, s in enumerate(shown):
                    self.history.record_completion(typed, s.full_command, rank == idx, {
                        "event": "completion",
                        "cwd": cwd,
                        "previous": previous,
                        "source": s.source.value,
                        "rank": rank,
                        "latency_ms": round(latency_ms, 3),
                    }, conn=conn)

        self._writer.submit("accept", job)
        self.metrics.incr("suggestion.accepted")
        return chosen.full_command

    # -------------------------
    # Learning
    # -------------------------
    def record_command_execution(self,
                                 command: str,
                                 outputs: Optional[List[str]] = None,
                                 exit_code: int = 0,
                                 cwd: Optional[str] = None) -> None:
        self._require_ready()
        command = (command or "").strip()
        if not command:
            return
        cwd = cwd or self._last_cwd
        now = datetime.now()
        result = ExecutionResult(command, list(outputs or []), int(exit_code), now, cwd)

        with self._record_lock:
            previous = self._last_command
            previous_at = self._last_executed_at
            self._last_command = command
            self._last_executed_at = now

        touched: List[Tuple[str, str]] = []
        for kind, analyzer in self.analyzers.items():
            try:
                touched.extend((kind, key) for key in analyzer.update_pattern(result))
            except Exception as e:
                logger.warning("%s analyzer failed on %r: %s", kind, command, e)
        env = self._last_env.get(normalize_cwd(cwd) or "~")
        touched.extend(self.user_patterns.observe(command, previous, now,
                                                  context_key(cwd, env.is_git_repo if env else False)))
        self.cache.clear()
        self.environment.forget_directories()

        gap = (now - previous_at).total_seconds() if previous_at else 0.0
        self._writer.submit("execution", lambda: self._persist_execution(result, previous, gap, touched))
        self.metrics.incr("command.recorded")

    def _persist_execution(self, result: ExecutionResult, previous: Optional[str], gap: float,
                           touched: List[Tuple[str, str]]) -> None:
        h = self.history
        with self.db.connection() as conn:
            cmd_id = h.add_or_update(result.command, result.cwd or "", result.success, result.outputs,
                                     result.timestamp, conn=conn)
            if previous and previous != result.command:
                prev_id = h.id_of(previous, conn=conn)
                if prev_id is not None:
                    h.add_relation(prev_id, cmd_id, success=result.success, time_gap=gap,
                                   when=result.timestamp, conn=conn)
            h.record_usage(result.command, result.cwd or "", result.success, result.timestamp, conn=conn)
            h.record_completion(result.command, result.command, False, {
                "event": "execution",
                "cwd": result.cwd,
                "previous": previous,
                "exit_code": result.exit_code,
            }, when=result.timestamp, conn=conn)
            for kind, key in touched:
                payload = self._snapshot(kind, key)
                if payload is not None:
                    h.save_pattern_state(kind, key, payload, conn=conn)

    def _snapshot(self, kind: str, key: str) -> Optional[Dict[str, Any]]:
        if kind in (TIME_KIND, CONTEXT_KIND):
            return self.user_patterns.snapshot(kind, key)
        return self.analyzers[kind].snapshot(key)

    # -------------------------
    # Introspection
    # -------------------------
    def stats(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ready": self.is_ready,
            "metrics": self.metrics.summary(),
            "cache": {"entries": len(self.cache), "hits": self.cache.hits, "misses": self.cache.misses},
            "ranker": {"preset": self.ranker.preset, "weights": dict(self.ranker.weights)},
        }
        if self.is_ready:
            out["history_size"] = self.history.count()
            out["scheduler"] = self.scheduler.status()
            out["write_failures"] = self._writer.failed
        return out
