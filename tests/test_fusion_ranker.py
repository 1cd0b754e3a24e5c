# tests/test_fusion_ranker.py
# weighted factor fusion, presets, tie-breaking and dedupe

from datetime import datetime, timedelta
from unittest import mock

import pytest

from shell_autocompleter.core.fusion_ranker import (
    FACTORS,
    FusionRanker,
    _safe_normalize_weights,
    frequency_factor,
    preset_names,
    prefix_factor,
    recency_factor,
)
from shell_autocompleter.core.parser import CommandParser
from shell_autocompleter.core.types import (
    ChainEntry,
    CompletionContext,
    CompletionSuggestion,
    EnvironmentState,
    HistoryRecord,
    PatternBundle,
    SessionState,
    SuggestionSource,
    UserPatternsSnapshot,
)

NOW = datetime(2024, 3, 1, 12, 0)


def ctx(typed, **kw):
    return CompletionContext(input=typed, cursor_position=len(typed), parsed=CommandParser().parse(typed),
                             session=SessionState(), now=NOW, **kw)


def cand(full, typed="", score=0.5, source=SuggestionSource.HEURISTIC):
    return CompletionSuggestion(full, full[len(typed):], source, score)


def test_presets_normalize_to_one():
    assert preset_names() == ["balanced", "contextual", "history"]
    for name in preset_names():
        w = _safe_normalize_weights(None, name)
        assert set(w) == set(FACTORS)
        assert sum(w.values()) == pytest.approx(1.0)


def test_weight_overrides_ignore_unknown_and_negative():
    w = _safe_normalize_weights({"base": 1.0, "bogus": 5.0, "chain": -1.0}, "balanced")
    assert "bogus" not in w
    assert w["chain"] == 0.0
    assert sum(w.values()) == pytest.approx(1.0)


def test_factor_functions():
    rec = HistoryRecord(1, "ls", frequency=50, last_used=NOW - timedelta(days=15))
    assert frequency_factor(rec) == pytest.approx(0.5)
    assert frequency_factor(None) == 0.0
    assert recency_factor(rec, NOW) == pytest.approx(0.5)
    assert prefix_factor("", "ls") == 1.0
    assert prefix_factor("git", "git status") == pytest.approx(0.86)
    assert prefix_factor("status", "git status") == pytest.approx(0.52)
    assert prefix_factor("xyz", "git status") == 0.0


def test_rank_orders_by_score_then_text():
    r = FusionRanker(weights={f: 0.0 for f in FACTORS if f != "base"})
    out = r.rank([cand("git status", "git ", 0.5), cand("git stash", "git ", 0.5), cand("git add", "git ", 0.9)],
                 ctx("git "))
    assert [s.full_command for s in out] == ["git add", "git stash", "git status"]
    assert out[0].score == pytest.approx(0.9)


def test_rank_dedupes_suggestion_text_keeping_best():
    r = FusionRanker(weights={f: 0.0 for f in FACTORS if f != "base"})
    out = r.rank([cand("git status", "git s", 0.4, SuggestionSource.HISTORY),
                  cand("git status", "git s", 0.8, SuggestionSource.HEURISTIC)], ctx("git s"))
    assert len(out) == 1
    assert out[0].source == SuggestionSource.HEURISTIC
    assert out[0].score == pytest.approx(0.8)


def test_rank_truncates_and_handles_empty():
    r = FusionRanker(topn=2)
    assert r.rank([], ctx("")) == []
    many = [cand(f"cmd{i:02d}", "", i / 40.0) for i in range(30)]
    out = r.rank(many, ctx(""))
    assert len(out) == 2
    assert out[0].full_command == "cmd29"


def test_numpy_and_plain_paths_agree():
    r = FusionRanker()
    history = [HistoryRecord(i, f"make t{i}", frequency=i * 3, last_used=NOW - timedelta(days=i)) for i in range(20)]
    c = ctx("make ", recent_history=history)
    cands = [cand(f"make t{i}", "make ", 0.3 + i / 50.0) for i in range(20)]
    big = {s.full_command: s.score for s in r.rank(cands, c, topn=20)}
    small = {}
    for i in range(0, 20, 5):
        small.update({s.full_command: s.score for s in r.rank(cands[i:i + 5], c, topn=5)})
    assert big == small


def test_context_factors_raise_scores():
    up = UserPatternsSnapshot(command_chains={"git add .": ChainEntry({"git commit -m 'x'": 3})},
                              time_patterns={12: {"git commit -m 'x'": 1}})
    c = ctx("git ", last_command="git add .", user_patterns=up,
            patterns=PatternBundle(directory_commands=[("git commit -m 'x'", 2)]),
            environment=EnvironmentState(is_git_repo=True))
    r = FusionRanker()
    f = r.factors(cand("git commit -m 'x'", "git "), c)
    assert f["chain"] == 1.0
    assert f["time"] == 1.0
    assert f["directory"] == 1.0
    assert f["environment"] == pytest.approx(1 / 3)
    out = r.rank([cand("git commit -m 'x'", "git "), cand("git checkout", "git ")], c)
    assert out[0].full_command == "git commit -m 'x'"


def test_environment_factor_for_files_and_processes():
    env = EnvironmentState(recent_files=["notes.md"], running_processes=["python"])
    c = ctx("", environment=env)
    r = FusionRanker()
    assert r.factors(cand("vim notes.md"), c)["environment"] == pytest.approx(1 / 3)
    assert r.factors(cand("pkill python"), c)["environment"] == pytest.approx(1 / 3)
    assert r.factors(cand("ls"), c)["environment"] == 0.0


def test_history_lookup_and_rule_provider():
    rec = HistoryRecord(7, "make test", frequency=100, last_used=NOW)
    lookup = mock.Mock(return_value={"make test": rec})
    rules = mock.Mock()
    rules.rule_boost.return_value = 0.6
    r = FusionRanker(history_lookup=lookup, rule_provider=rules)
    f = r.factors(cand("make test", "make "), ctx("make "))
    lookup.assert_called_once_with(["make test"])
    assert f["frequency"] == 1.0
    assert f["recency"] == 1.0
    assert f["rule"] == pytest.approx(0.6)


def test_failing_collaborators_do_not_break_ranking():
    rules = mock.Mock()
    rules.rule_boost.side_effect = RuntimeError("boom")
    r = FusionRanker(history_lookup=mock.Mock(side_effect=RuntimeError("db")), rule_provider=rules)
    out = r.rank([cand("ls -la", "ls")], ctx("ls"))
    assert [s.full_command for s in out] == ["ls -la"]


def test_set_weights_switches_preset():
    r = FusionRanker()
    r.set_weights({"chain": 1.0}, preset="contextual")
    assert r.preset == "contextual"
    assert r.weights["chain"] > _safe_normalize_weights(None, "contextual")["chain"]
    r.set_weights(preset="nope")
    assert r.preset == "balanced"


def test_debug_contributions_sum_to_score():
    r = FusionRanker()
    c = ctx("git s")
    s = cand("git status", "git s", 0.8)
    contrib = r.debug_contributions(s, c)
    assert contrib["final"] == pytest.approx(r.rank([s], c)[0].score, abs=1e-5)
