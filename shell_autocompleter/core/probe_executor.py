# shell_autocompleter/core/probe_executor.py
"""
ProbeExecutor - runs introspection commands (pwd, ls, env ...) against a remote session.

 - one logical channel per session; probes on a session that cannot run commands concurrently
   go through that session's single-worker queue, other sessions are unaffected
 - every call is bounded by its timeout; a timeout or an unreachable session yields
   ProbeResult.unavailable(...) which callers treat as "no data"
 - ConnectionError from the transport marks the channel lost; the next probe reconnects first,
   with exponential backoff between failed reconnects
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Tuple

from shell_autocompleter.core.protocols import RemoteSession
from shell_autocompleter.core.types import ProbeResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1.0
BACKOFF_BASE = 0.5
BACKOFF_CAP = 30.0


class _Channel:
    def __init__(self, session_id: str, workers: int):
        self.session_id = session_id
        self.pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"probe-{session_id}")
        self.connected = True
        self.failures = 0
        self.retry_at = 0.0
        self.lock = threading.Lock()


class ProbeExecutor:
    """
    Public API:
      - execute(session_id, command, timeout=None) -> ProbeResult
      - current_directory(session_id, timeout=None) -> Optional[str]
      - environment_variables(session_id, timeout=None) -> Dict[str, str]
      - lines(session_id, command, timeout=None) -> List[str]
      - close()
    """

    def __init__(self,
                 session: RemoteSession,
                 default_timeout: float = DEFAULT_TIMEOUT,
                 retries: int = 1,
                 backoff_base: float = BACKOFF_BASE,
                 backoff_cap: float = BACKOFF_CAP,
                 clock: Callable[[], float] = time.monotonic):
        self.session = session
        self.default_timeout = float(default_timeout)
        self.retries = max(0, int(retries))
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._clock = clock
        self._channels: Dict[str, _Channel] = {}
        self._lock = threading.Lock()
        self._closed = False

    # -------------------------
    # Channels
    # -------------------------
    def _channel(self, session_id: str) -> _Channel:
        with self._lock:
            ch = self._channels.get(session_id)
            if ch is None:
                concurrent = bool(getattr(self.session, "supports_concurrent", False))
                ch = _Channel(session_id, workers=4 if concurrent else 1)
                self._channels[session_id] = ch
            return ch

    def _mark_lost(self, ch: _Channel, err: BaseException) -> None:
        with ch.lock:
            ch.connected = False
            ch.failures += 1
            # first loss reconnects right away, repeated failures back off
            delay = 0.0 if ch.failures == 1 else min(self.backoff_cap, self.backoff_base * 2 ** (ch.failures - 2))
            ch.retry_at = self._clock() + delay
        logger.warning("probe session %s lost connection (%s), retry in %.1fs", ch.session_id, err, delay)

    def _reconnect(self, ch: _Channel) -> bool:
        with ch.lock:
            if ch.connected:
                return True
            if self._clock() < ch.retry_at:
                return False
        reconnect = getattr(self.session, "reconnect", None)
        if callable(reconnect):
            try:
                reconnect(ch.session_id)
            except Exception as e:
                self._mark_lost(ch, e)
                return False
        with ch.lock:
            ch.connected = True
        logger.info("probe session %s reconnected", ch.session_id)
        return True

    def is_connected(self, session_id: str) -> bool:
        ch = self._channels.get(session_id)
        return ch.connected if ch else True

    # -------------------------
    # Core call path
    # -------------------------
    def _run(self, ch: _Channel, fn: Callable[[], Any]) -> Tuple[Optional[str], Any]:
        """Runs on the channel worker. Returns (failure_reason, value)."""
        for _ in range(self.retries + 1):
            if not ch.connected and not self._reconnect(ch):
                return "reconnecting", None
            try:
                value = fn()
            except TimeoutError:
                return "timeout", None
            except ConnectionError as e:
                self._mark_lost(ch, e)
                continue
            except Exception as e:
                logger.debug("probe on %s failed: %s", ch.session_id, e)
                return "error", None
            with ch.lock:
                ch.failures = 0
            return None, value
        return "connection-lost", None

    def _call(self, session_id: Optional[str], fn: Callable[[], Any],
              timeout: Optional[float]) -> Tuple[Optional[str], Any]:
        if not session_id:
            return "no-session", None
        if self._closed:
            return "closed", None
        timeout = self.default_timeout if timeout is None else float(timeout)
        ch = self._channel(session_id)
        try:
            fut = ch.pool.submit(self._run, ch, fn)
        except RuntimeError:
            return "closed", None
        try:
            return fut.result(timeout=timeout)
        except FutureTimeout:
            fut.cancel()
            logger.debug("probe on %s timed out after %.3fs", session_id, timeout)
            return "timeout", None

    # -------------------------
    # Public probes
    # -------------------------
    def execute(self, session_id: Optional[str], command: str, timeout: Optional[float] = None) -> ProbeResult:
        t = self.default_timeout if timeout is None else float(timeout)
        reason, out = self._call(session_id, lambda: self.session.execute(session_id, command, t), t)
        if reason is not None:
            return ProbeResult.unavailable(reason)
        return ProbeResult(
            stdout=getattr(out, "stdout", "") or "",
            stderr=getattr(out, "stderr", "") or "",
            exit_code=int(getattr(out, "exit_code", 0) or 0),
        )

    def current_directory(self, session_id: Optional[str], timeout: Optional[float] = None) -> Optional[str]:
        reason, cwd = self._call(session_id, lambda: self.session.current_working_directory(session_id), timeout)
        if reason is not None or not cwd:
            return None
        return str(cwd).strip() or None

    def environment_variables(self, session_id: Optional[str], timeout: Optional[float] = None) -> Dict[str, str]:
        reason, env = self._call(session_id, lambda: self.session.environment_variables(session_id), timeout)
        if reason is not None or not env:
            return {}
        return dict(env)

    def lines(self, session_id: Optional[str], command: str, timeout: Optional[float] = None) -> List[str]:
        res = self.execute(session_id, command, timeout)
        if not res.ok:
            return []
        return [ln.strip() for ln in res.stdout.splitlines() if ln.strip()]

    def close(self) -> None:
        self._closed = True
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for ch in channels:
            ch.pool.shutdown(wait=False, cancel_futures=True)
