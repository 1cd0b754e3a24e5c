# tests/test_suggestion_cache.py
# fingerprinting, TTL expiry and LRU bound

from unittest import mock

from shell_autocompleter.core.suggestion_cache import SuggestionCache, fingerprint
from shell_autocompleter.core.types import CompletionSuggestion, SessionState, SuggestionSource

S = [CompletionSuggestion("git status", "tatus", SuggestionSource.HISTORY, 0.9)]


def test_fingerprint_depends_on_request_shape():
    base = fingerprint("git s", 5, "git", SessionState())
    assert base == fingerprint("git s", 5, "git", SessionState())
    assert base != fingerprint("git s", 4, "git", SessionState())
    assert base != fingerprint("git s", 5, "git", SessionState(session_id="s1"))
    assert base != fingerprint("git s", 5, "git", SessionState(cwd="/proj"))
    assert fingerprint("git sx", 5, "git", SessionState()) == base


def test_fingerprint_separates_sessions_sharing_a_directory():
    a = fingerprint("cat ", 4, "cat", SessionState(session_id="hostA", cwd="/srv"))
    b = fingerprint("cat ", 4, "cat", SessionState(session_id="hostB", cwd="/srv"))
    assert a != b


def test_hit_within_ttl_and_expiry_after():
    now = {"t": 0.0}
    cache = SuggestionCache(ttl=2.0, clock=lambda: now["t"])
    cache.put("k", S)
    now["t"] = 2.0
    assert cache.get("k") == S
    now["t"] = 2.001
    assert cache.get("k") is None
    assert (cache.hits, cache.misses) == (1, 1)
    assert len(cache) == 0


def test_lru_bound_evicts_oldest():
    cache = SuggestionCache(max_entries=2)
    cache.put("a", S)
    cache.put("b", S)
    cache.get("a")
    cache.put("c", S)
    assert cache.get("b") is None
    assert cache.get("a") == S
    assert cache.get("c") == S


def test_clear():
    cache = SuggestionCache()
    cache.put("a", S)
    cache.clear()
    assert cache.get("a") is None


def test_broken_clock_never_raises():
    cache = SuggestionCache(clock=mock.Mock(side_effect=OSError("clock")))
    cache.put("a", S)
    assert cache.get("a") is None
