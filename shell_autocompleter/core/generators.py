# shell_autocompleter/core/generators.py
"""
Suggestion generators - each turns a CompletionContext into raw candidates.

 - HistoryGenerator: prefix search over executed commands
 - HeuristicGenerator: static rule tables plus learned patterns (arguments, directories,
   file types, corrections)
 - RemoteProbeGenerator: live listings from the remote session (paths, variables, commands)

A candidate carries the whole command line (full_command) and the text to insert (suggestion,
the part after what was typed). Scores here are the generator's own confidence in [0,1]; the
ranker blends them with the context factors.
"""

from __future__ import annotations

import logging
import shlex
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from shell_autocompleter.core import heuristics
from shell_autocompleter.core.parser import unquote
from shell_autocompleter.core.probe_executor import ProbeExecutor
from shell_autocompleter.core.types import (
    CompletionContext,
    CompletionSuggestion,
    HistoryRecord,
    SuggestionSource,
)
from shell_autocompleter.storage.history_store import HistoryStore

logger = logging.getLogger(__name__)

RECENCY_HORIZON_DAYS = 30.0


def history_score(frequency: int, last_used: datetime, now: Optional[datetime] = None) -> float:
    now = now or datetime.now()
    days = max(0.0, (now - last_used).total_seconds() / 86400.0)
    return 0.7 * min(frequency / 10.0, 1.0) + 0.3 * max(0.0, 1.0 - days / RECENCY_HORIZON_DAYS)


def make_suggestion(typed: str, full_command: str, source: SuggestionSource,
                    score: float) -> Optional[CompletionSuggestion]:
    """Build a candidate; None when it would insert nothing."""
    if not full_command or full_command == typed:
        return None
    if full_command.lower().startswith(typed.lower()):
        tail = full_command[len(typed):]
    else:
        tail = full_command
    if not tail.strip():
        return None
    return CompletionSuggestion(full_command, tail, source, max(0.0, min(1.0, float(score))))


def replace_last_word(typed: str, last_word: str, completion: str) -> str:
    if last_word and typed.endswith(last_word):
        return typed[: len(typed) - len(last_word)] + completion
    return typed + completion


class HistoryGenerator:
    name = "history"

    def __init__(self, store: HistoryStore, limit: int = 20):
        self.store = store
        self.limit = int(limit)

    def generate(self, context: CompletionContext) -> List[CompletionSuggestion]:
        typed = context.typed.lstrip()
        records: Iterable[HistoryRecord] = self.store.search_prefix(typed, self.limit)
        out = []
        for r in records:
            s = make_suggestion(typed, r.command, SuggestionSource.HISTORY,
                                history_score(r.frequency, r.last_used, context.now))
            if s is not None:
                out.append(s)
        return out


class HeuristicGenerator:
    name = "heuristic"

    def generate(self, context: CompletionContext) -> List[CompletionSuggestion]:
        typed = context.typed
        p = context.parsed
        out: List[CompletionSuggestion] = []

        def add(full: str, score: float) -> None:
            s = make_suggestion(typed, full, SuggestionSource.HEURISTIC, score)
            if s is not None:
                out.append(s)

        self._corrections(context, add)
        self._directory_patterns(context, add)
        if not typed.strip() or not p.ok:
            return out

        word = p.last_word
        if p.at_command_position:
            for cmd in heuristics.KNOWN_COMMANDS:
                if cmd.startswith(p.name) and cmd != p.name:
                    add(replace_last_word(typed, word, cmd), 0.6)
            return out

        if p.redirect_pending:
            self._redirect_targets(context, word, add)
        elif p.open_quote or word[:1] in ("'", '"'):
            self._quoted_files(context, word, add)
        elif word.startswith("$"):
            self._variables(typed, word, add)
        elif word.startswith("-"):
            self._flags(typed, p.name, word, add)
        else:
            self._arguments(context, word, add)
        return out

    # corrections / learned directory habits --------------------------------------
    @staticmethod
    def _corrections(context: CompletionContext, add) -> None:
        typed = context.typed.strip()
        if not typed:
            return
        fix = heuristics.fix_typo(typed)
        if fix is not None:
            add(fix, 0.85)
        for pat in context.patterns.corrections:
            if pat.original_command == typed:
                add(pat.corrected_command, 0.6 + 0.3 * pat.success_rate)

    @staticmethod
    def _directory_patterns(context: CompletionContext, add) -> None:
        typed = context.typed.lstrip()
        for command, count in context.patterns.directory_commands:
            if command.startswith(typed) and command != typed:
                add(command, 0.6 + 0.3 * min(count / 10.0, 1.0))

    # word completions ---------------------------------------------------------
    @staticmethod
    def _redirect_targets(context: CompletionContext, word: str, add) -> None:
        typed = context.typed
        for d in heuristics.COMMON_DIRECTORIES:
            if d.startswith(word):
                add(replace_last_word(typed, word, d), 0.45)
        for f in context.environment.recent_files:
            if f.startswith(word):
                add(replace_last_word(typed, word, f), 0.5)

    @staticmethod
    def _quoted_files(context: CompletionContext, word: str, add) -> None:
        quote = context.parsed.open_quote or word[:1]
        prefix = unquote(word)
        for f in context.environment.recent_files:
            if f.startswith(prefix):
                add(replace_last_word(context.typed, word, f"{quote}{f}{quote}"), 0.6)

    @staticmethod
    def _variables(typed: str, word: str, add) -> None:
        braced = word.startswith("${")
        prefix = word[2:] if braced else word[1:]
        for var in heuristics.COMMON_VARIABLES:
            if var.startswith(prefix):
                add(replace_last_word(typed, word, "${" + var + "}" if braced else "$" + var), 0.6)

    @staticmethod
    def _flags(typed: str, name: str, word: str, add) -> None:
        if name == "ls":
            for opt in heuristics.LS_OPTIONS:
                if opt.startswith(word):
                    add(replace_last_word(typed, word, opt), 0.8)
        for flag in heuristics.GENERIC_FLAGS:
            if flag.startswith(word):
                add(replace_last_word(typed, word, flag), heuristics.GENERIC_FLAG_SCORE)

    def _arguments(self, context: CompletionContext, word: str, add) -> None:
        p = context.parsed
        typed = context.typed
        name = p.name
        completing_first = (not p.words and p.has_trailing_space) or (len(p.words) == 1 and not p.has_trailing_space)

        if completing_first and name in heuristics.SUBCOMMANDS:
            preferred = heuristics.PREFERRED_SUBCOMMANDS.get(name, ())
            for sub in heuristics.SUBCOMMANDS[name]:
                if sub.startswith(word):
                    add(replace_last_word(typed, word, sub), 0.8 if sub in preferred else 0.75)

        if name in heuristics.DIRECTORY_COMMANDS:
            for d in heuristics.COMMON_DIRECTORIES:
                if d.startswith(word):
                    add(replace_last_word(typed, word, d), 0.5)

        for pat in context.patterns.arguments:
            if pat.value.startswith(word):
                score = 0.5 + 0.3 * min(pat.frequency / 10.0, 1.0) + 0.1 * pat.success_rate
                add(replace_last_word(typed, word, shlex.quote(pat.value)), score)

        self._file_types(context, word, add)

    @staticmethod
    def _file_types(context: CompletionContext, word: str, add) -> None:
        name = context.parsed.name
        associated = set(heuristics.FILE_ASSOCIATIONS.get(name, ()))
        learned = {ext for ext, ranked in context.patterns.file_type_commands.items()
                   if any(cmd == name for cmd, _ in ranked)}
        if not associated and not learned and name not in heuristics.FILE_COMMANDS:
            return
        for f in context.environment.recent_files:
            if not f.startswith(word):
                continue
            ext = heuristics.extension_of(f)
            if ext in learned:
                add(replace_last_word(context.typed, word, f), 0.8)
            elif ext in associated:
                add(replace_last_word(context.typed, word, f), 0.7)
            elif name in heuristics.FILE_COMMANDS:
                add(replace_last_word(context.typed, word, f), 0.55)


class RemoteProbeGenerator:
    name = "remote-probe"

    def __init__(self, executor: Optional[ProbeExecutor], timeout: float = 0.5, max_items: int = 50):
        self.executor = executor
        self.timeout = float(timeout)
        self.max_items = int(max_items)

    def generate(self, context: CompletionContext) -> List[CompletionSuggestion]:
        if self.executor is None or not context.session.has_session or not context.typed.strip():
            return []
        try:
            return self._generate(context)
        except Exception as e:
            logger.debug("remote probe generator failed: %s", e)
            return []

    def _generate(self, context: CompletionContext) -> List[CompletionSuggestion]:
        p = context.parsed
        if not p.ok:
            return []
        sid = context.session.session_id
        typed = context.typed
        word = p.last_word
        out: List[CompletionSuggestion] = []

        def add(full: str, score: float) -> None:
            s = make_suggestion(typed, full, SuggestionSource.REMOTE_PROBE, score)
            if s is not None:
                out.append(s)

        if p.at_command_position:
            cmd = f"compgen -c -- {shlex.quote(p.name)} | sort -u | head -n {self.max_items}"
            for name in self.executor.lines(sid, cmd, self.timeout):
                if name.startswith(p.name) and name != p.name:
                    add(replace_last_word(typed, word, name), 0.55)
            return out

        if word.startswith("$"):
            braced = word.startswith("${")
            prefix = word[2:] if braced else word[1:]
            names = sorted(self._variable_names(sid))
            for var in names[: self.max_items * 4]:
                if var.startswith(prefix):
                    add(replace_last_word(typed, word, "${" + var + "}" if braced else "$" + var), 0.65)
            return out

        if word.startswith("-"):
            return out

        path = unquote(word)
        directory, _, base = path.rpartition("/")
        directory = directory + "/" if "/" in path else ""
        listing = self.executor.lines(sid, f"ls -1Ap {shlex.quote(directory or '.')}", self.timeout)
        for entry in listing[: self.max_items * 4]:
            if not entry.startswith(base):
                continue
            score = 0.95 if entry.endswith("/") else 0.9
            add(replace_last_word(typed, word, directory + entry), score)
        return out

    def _variable_names(self, sid: str) -> Dict[str, str]:
        env = self.executor.environment_variables(sid, self.timeout)
        if env:
            return env
        names = {}
        for line in self.executor.lines(sid, "env", self.timeout):
            key, sep, value = line.partition("=")
            if sep and key:
                names[key] = value
        return names
