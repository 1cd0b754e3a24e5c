# shell_autocompleter/core/suggestion_cache.py
"""
SuggestionCache - short-lived memo of ranked lists.

Key: SHA-1 of (normalized input, cursor position, command name, has-session flag, session id, cwd).
Entries expire strictly after `ttl` seconds; at most `max_entries` are kept (OrderedDict used
as a simple LRU). A hit returns the stored list unchanged. Failures never propagate: a broken
cache only means every request recomputes.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional, Tuple

from shell_autocompleter.core.types import CompletionSuggestion, SessionState

logger = logging.getLogger(__name__)


def fingerprint(text: str, cursor_position: int, command_name: str, session: SessionState) -> str:
    normalized = (text or "")[: max(0, cursor_position)].lstrip()
    raw = "\x1f".join([
        normalized,
        str(cursor_position),
        command_name or "",
        "1" if session.has_session else "0",
        session.session_id or "",
        session.cwd or "",
    ])
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class SuggestionCache:
    def __init__(self, ttl: float = 2.0, max_entries: int = 256,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = float(ttl)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, List[CompletionSuggestion]]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[List[CompletionSuggestion]]:
        try:
            with self._lock:
                hit = self._entries.get(key)
                if hit is None:
                    self.misses += 1
                    return None
                stored_at, value = hit
                if self._clock() - stored_at > self.ttl:
                    del self._entries[key]
                    self.misses += 1
                    return None
                # move to end -> mark as recently used
                self._entries.move_to_end(key)
                self.hits += 1
                return value
        except Exception as e:
            logger.warning("suggestion cache lookup failed: %s", e)
            return None

    def put(self, key: str, value: List[CompletionSuggestion]) -> None:
        try:
            with self._lock:
                self._entries[key] = (self._clock(), list(value))
                self._entries.move_to_end(key)
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
        except Exception as e:
            logger.warning("suggestion cache store failed: %s", e)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
