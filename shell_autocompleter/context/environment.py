# shell_autocompleter/context/environment.py
"""
EnvironmentProbe - what the remote shell looks like right now.

Collects cwd, git-repo membership, recently modified files and running process names through the
ProbeExecutor. Each probe fails on its own (its field keeps the empty default). The cwd is cached
per session and the other fields per (session, cwd), both for `ttl` seconds, so a burst of
keystrokes costs one round of probes.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple

from shell_autocompleter.core.probe_executor import ProbeExecutor
from shell_autocompleter.core.types import EnvironmentState, SessionState

logger = logging.getLogger(__name__)

GIT_PROBE = "git rev-parse --is-inside-work-tree"
RECENT_FILES_PROBE = "find . -maxdepth 2 -type f -mmin -1440 | head -n 20"
PROCESSES_PROBE = "ps -eo comm= | head -n 50"


class EnvironmentProbe:
    def __init__(self,
                 executor: Optional[ProbeExecutor],
                 ttl: float = 5.0,
                 probe_timeout: float = 0.5,
                 clock: Callable[[], float] = time.monotonic):
        self.executor = executor
        self.ttl = float(ttl)
        self.probe_timeout = float(probe_timeout)
        self._clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[float, EnvironmentState]] = {}
        self._cwd_cache: Dict[str, Tuple[float, Optional[str], str]] = {}
        self._lock = threading.Lock()

    def state(self, session: SessionState) -> EnvironmentState:
        if not session.has_session or self.executor is None:
            return EnvironmentState(cwd=session.cwd)
        sid = session.session_id
        cwd = self.current_directory(session)

        cached = self.cached(sid, cwd)
        if cached is not None:
            return cached

        env = EnvironmentState(cwd=cwd)
        git = self.executor.execute(sid, GIT_PROBE, self.probe_timeout)
        env.is_git_repo = git.ok and git.stdout.strip() == "true"
        env.recent_files = [f[2:] if f.startswith("./") else f
                            for f in self.executor.lines(sid, RECENT_FILES_PROBE, self.probe_timeout)]
        env.running_processes = sorted(set(self.executor.lines(sid, PROCESSES_PROBE, self.probe_timeout)))

        with self._lock:
            self._cache[(sid, cwd)] = (self._clock(), env)
        logger.debug("environment for %s:%s git=%s files=%d procs=%d", sid, cwd, env.is_git_repo,
                     len(env.recent_files), len(env.running_processes))
        return replace(env, recent_files=list(env.recent_files), running_processes=list(env.running_processes))

    def current_directory(self, session: SessionState) -> Optional[str]:
        """
        The session's cwd as the remote shell reports it, re-probed at most once per `ttl`.
        A change in the caller-reported cwd re-probes at once; a failed probe falls back to it
        and is not cached.
        """
        sid = session.session_id
        with self._lock:
            hit = self._cwd_cache.get(sid)
            if hit is not None:
                stamp, reported, probed = hit
                if self._clock() - stamp <= self.ttl and reported == session.cwd:
                    return probed
                del self._cwd_cache[sid]
        probed = self.executor.current_directory(sid, self.probe_timeout)
        if not probed:
            return session.cwd
        with self._lock:
            self._cwd_cache[sid] = (self._clock(), session.cwd, probed)
        return probed

    def forget_directories(self, session_id: Optional[str] = None) -> None:
        """Drop cached cwds (a command just ran and may have changed directory)."""
        with self._lock:
            if session_id is None:
                self._cwd_cache.clear()
            else:
                self._cwd_cache.pop(session_id, None)

    def cached(self, session_id: Optional[str], cwd: Optional[str]) -> Optional[EnvironmentState]:
        """Fresh cached state for (session, cwd) or None. Never probes."""
        if not session_id or not cwd:
            return None
        with self._lock:
            hit = self._cache.get((session_id, cwd))
            if hit is None:
                return None
            stamp, env = hit
            if self._clock() - stamp > self.ttl:
                del self._cache[(session_id, cwd)]
                return None
            return replace(env, recent_files=list(env.recent_files), running_processes=list(env.running_processes))

    def invalidate(self, session_id: Optional[str] = None) -> None:
        self.forget_directories(session_id)
        with self._lock:
            if session_id is None:
                self._cache.clear()
            else:
                for key in [k for k in self._cache if k[0] == session_id]:
                    del self._cache[key]
