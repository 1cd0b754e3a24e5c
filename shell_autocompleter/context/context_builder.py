# shell_autocompleter/context/context_builder.py
"""
ContextBuilder - assembles one CompletionContext per request.

Steps:
 1. parse the text before the cursor
 2. fan out on the shared pool: recent history, environment probes, analyzer lookups
    (anything slow or failing is dropped and its field keeps the empty default)
 3. attach the user-pattern snapshot for (previous command, hour, directory context)
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from datetime import datetime
from typing import Dict, List, Optional

from shell_autocompleter.context.analyzers import normalize_cwd
from shell_autocompleter.context.environment import EnvironmentProbe
from shell_autocompleter.context.user_patterns import UserPatterns, context_key
from shell_autocompleter.core import heuristics
from shell_autocompleter.core.parser import CommandParser, unquote
from shell_autocompleter.core.types import (
    CompletionContext,
    EnvironmentState,
    ParsedCommand,
    PatternBundle,
    SessionState,
)
from shell_autocompleter.storage.history_store import HistoryStore
from shell_autocompleter.utils.threaded_runner import run_parallel

logger = logging.getLogger(__name__)


class ContextBuilder:
    def __init__(self,
                 parser: CommandParser,
                 history: HistoryStore,
                 analyzers: Dict[str, object],
                 user_patterns: UserPatterns,
                 environment: EnvironmentProbe,
                 pool: Executor,
                 history_window: int = 20,
                 budget: float = 0.1):
        self.parser = parser
        self.history = history
        self.analyzers = analyzers
        self.user_patterns = user_patterns
        self.environment = environment
        self.pool = pool
        self.history_window = int(history_window)
        self.budget = float(budget)

    def build(self,
              text: str,
              cursor_position: Optional[int],
              session: SessionState,
              last_command: Optional[str] = None,
              now: Optional[datetime] = None) -> CompletionContext:
        text = text or ""
        cursor = len(text) if cursor_position is None else max(0, min(int(cursor_position), len(text)))
        now = now or datetime.now()
        parsed = self.parser.parse(text[:cursor])

        results = run_parallel(self.pool, {
            "history": lambda: self.history.recent(self.history_window),
            "environment": lambda: self.environment.state(session),
            "patterns": lambda: self.lookup_patterns(parsed, text[:cursor], session.cwd),
        }, timeout=self.budget)

        env: EnvironmentState = results.get("environment") or EnvironmentState(cwd=session.cwd)
        patterns: PatternBundle = results.get("patterns") or PatternBundle()
        if normalize_cwd(env.cwd) != normalize_cwd(session.cwd):
            patterns.directory_commands = self._analyzer("directory", env.cwd)
        self._add_recent_file_types(patterns, env.recent_files)

        snapshot = self.user_patterns.snapshot_for(last_command, now.hour, context_key(env.cwd, env.is_git_repo))
        missing = {"history", "environment", "patterns"} - set(results)
        if missing:
            logger.debug("context built without %s", ", ".join(sorted(missing)))

        return CompletionContext(
            input=text,
            cursor_position=cursor,
            parsed=parsed,
            session=session,
            recent_history=results.get("history") or [],
            environment=env,
            user_patterns=snapshot,
            patterns=patterns,
            last_command=last_command,
            now=now,
        )

    def _analyzer(self, kind: str, key: Optional[str]) -> List:
        analyzer = self.analyzers.get(kind)
        if analyzer is None or not key:
            return []
        return analyzer.get_patterns(key)

    def lookup_patterns(self, parsed: ParsedCommand, typed: str, cwd: Optional[str]) -> PatternBundle:
        bundle = PatternBundle()
        if parsed.name:
            bundle.arguments = self._analyzer("argument", parsed.name)
        bundle.directory_commands = self._analyzer("directory", cwd)
        for arg in parsed.args:
            ext = heuristics.extension_of(unquote(arg))
            if ext and ext not in bundle.file_type_commands:
                bundle.file_type_commands[ext] = self._analyzer("file_type", ext)
        if typed.strip():
            bundle.corrections = self._analyzer("error_correction", typed.strip())
        return bundle

    def _add_recent_file_types(self, bundle: PatternBundle, files: List[str]) -> None:
        for f in files:
            ext = heuristics.extension_of(f)
            if ext and ext not in bundle.file_type_commands:
                bundle.file_type_commands[ext] = self._analyzer("file_type", ext)
