# shell_autocompleter/context/user_patterns.py
# Habit tracker for the completion engine.
# Learns three kinds of habits from executed commands:
#   - command chains: which command tends to follow which
#   - time patterns: what is run in each hour of the day
#   - context patterns: what is run per (directory, git / non-git) context
# Chains are rebuilt from command_relations on startup; time and context maps
# are persisted through pattern_state.
# ----------------------------------------------------------------------

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shell_autocompleter.core.types import ChainEntry, UserPatternsSnapshot

TIME_KIND = "time"
CONTEXT_KIND = "context"


def context_key(cwd: Optional[str], is_git: bool) -> str:
    return f"{cwd or '~'}:{'git' if is_git else 'non-git'}"


def share(counts: Dict[str, int], command: str) -> float:
    """
    Fraction of `counts` taken by `command`. A partial candidate such as "git"
    also collects the counts of the full commands it starts ("git push").
    """
    total = sum(counts.values())
    if not total or not command:
        return 0.0
    hit = sum(n for c, n in counts.items() if c == command or c.startswith(command + " "))
    return min(1.0, hit / total)


class UserPatterns:
    def __init__(self):
        self.command_chains: Dict[str, ChainEntry] = {}
        self.time_patterns: Dict[int, Dict[str, int]] = {}
        self.context_patterns: Dict[str, Dict[str, int]] = {}
        self._lock = threading.Lock()

    # learning -------------------------------------------------------------------
    def observe(self,
                command: str,
                previous: Optional[str] = None,
                when: Optional[datetime] = None,
                ctx_key: Optional[str] = None) -> List[Tuple[str, str]]:
        """Record one executed command. Returns the (kind, key) pairs whose state changed."""
        command = command.strip()
        if not command:
            return []
        when = when or datetime.now()
        changed: List[Tuple[str, str]] = []
        with self._lock:
            if previous:
                entry = self.command_chains.setdefault(previous, ChainEntry())
                entry.next_commands[command] = entry.next_commands.get(command, 0) + 1
                entry.frequency += 1
                entry.last_used = when

            hour = self.time_patterns.setdefault(when.hour, {})
            hour[command] = hour.get(command, 0) + 1
            changed.append((TIME_KIND, str(when.hour)))

            if ctx_key:
                ctx = self.context_patterns.setdefault(ctx_key, {})
                ctx[command] = ctx.get(command, 0) + 1
                changed.append((CONTEXT_KIND, ctx_key))
        return changed

    # queries -----------------------------------------------------------------
    def chain_probability(self, previous: Optional[str], command: str) -> float:
        if not previous:
            return 0.0
        with self._lock:
            entry = self.command_chains.get(previous)
            return share(entry.next_commands, command) if entry else 0.0

    def time_share(self, hour: int, command: str) -> float:
        with self._lock:
            return share(self.time_patterns.get(hour, {}), command)

    def context_share(self, ctx_key: str, command: str) -> float:
        with self._lock:
            return share(self.context_patterns.get(ctx_key, {}), command)

    def next_commands(self, previous: Optional[str]) -> List[Tuple[str, int]]:
        if not previous:
            return []
        with self._lock:
            entry = self.command_chains.get(previous)
            items = list(entry.next_commands.items()) if entry else []
        return sorted(items, key=lambda kv: (-kv[1], kv[0]))

    def snapshot_for(self, previous: Optional[str], hour: int, ctx_key: Optional[str]) -> UserPatternsSnapshot:
        """Copy of the parts relevant to one request (safe to read without the lock)."""
        snap = UserPatternsSnapshot()
        with self._lock:
            if previous and previous in self.command_chains:
                e = self.command_chains[previous]
                snap.command_chains[previous] = ChainEntry(dict(e.next_commands), e.frequency, e.last_used)
            if hour in self.time_patterns:
                snap.time_patterns[hour] = dict(self.time_patterns[hour])
            if ctx_key and ctx_key in self.context_patterns:
                snap.context_patterns[ctx_key] = dict(self.context_patterns[ctx_key])
        return snap

    # persistence ---------------------------------------------------------------
    def load_chains(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Rebuild command chains from relation rows ({prev, next, frequency, last_used})."""
        n = 0
        with self._lock:
            for r in rows:
                used = r.get("last_used") or datetime.now()
                entry = self.command_chains.get(r["prev"])
                if entry is None:
                    entry = self.command_chains[r["prev"]] = ChainEntry(last_used=used)
                entry.next_commands[r["next"]] = entry.next_commands.get(r["next"], 0) + int(r["frequency"])
                entry.frequency += int(r["frequency"])
                entry.last_used = max(entry.last_used, used)
                n += 1
        return n

    def snapshot(self, kind: str, key: str) -> Optional[Dict[str, int]]:
        with self._lock:
            if kind == TIME_KIND:
                data = self.time_patterns.get(int(key))
            else:
                data = self.context_patterns.get(key)
            return dict(data) if data else None

    def load(self, kind: str, key: str, payload: Dict[str, Any]) -> None:
        counts = {c: int(n) for c, n in payload.items()}
        with self._lock:
            if kind == TIME_KIND:
                self.time_patterns[int(key)] = counts
            else:
                self.context_patterns[key] = counts
