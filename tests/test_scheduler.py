# tests/test_scheduler.py
# background rule mining: cycles, checkpoint, regressions, retries, lifecycle

import time
from unittest import mock

import pytest

from shell_autocompleter.core.types import (CompletionContext, EnvironmentState, Rule, RuleType, SessionState,
                                            VersionStatus)
from shell_autocompleter.core.parser import CommandParser
from shell_autocompleter.learning.rule_miner import (RuleMiner, context_pattern, parameter_pattern, rule_id,
                                                      rule_matches, sequence_pattern)
from shell_autocompleter.learning.scheduler import COMPONENT, AnalysisScheduler


def executions(history, command, n, cwd="/proj", previous=None):
    for _ in range(n):
        history.add_or_update(command, cwd)
        history.record_completion(command, command, False,
                                  {"event": "execution", "cwd": cwd, "previous": previous, "exit_code": 0})


def shown(history, command, n, selected=False, cwd="/proj"):
    for _ in range(n):
        history.record_completion(command[:3], command, selected,
                                  {"event": "completion", "cwd": cwd, "previous": None, "latency_ms": 20.0})


@pytest.fixture
def scheduler(history, rules):
    return AnalysisScheduler(history, rules, miner=RuleMiner(min_frequency=3, min_confidence=0.6),
                             retry_backoff=0.01, min_usage=10, regression_threshold=0.2)


def request_context(cwd):
    return CompletionContext(input="", cursor_position=0, parsed=CommandParser().parse(""),
                             session=SessionState(cwd=cwd), environment=EnvironmentState(cwd=cwd))


def test_cycle_mines_rules_and_checkpoints(scheduler, history, rules):
    executions(history, "make test", 3)
    summary = scheduler.trigger_analysis()
    assert summary["events"] == 3
    assert summary["changes"] == 2
    assert summary["version"] == 1
    assert {r.type.value for r in scheduler.active_rules()} == {"parameter", "context"}
    state = rules.get_state(COMPONENT)
    assert state["last_processed_id"] == summary["last_processed_id"]
    assert state["processed_count"] == 3

    again = scheduler.trigger_analysis()
    assert again["events"] == 0
    assert again["changes"] == 0
    assert again["version"] is None


def test_rule_boost_reads_active_rules(scheduler, history):
    executions(history, "make test", 3)
    scheduler.trigger_analysis()
    assert scheduler.rule_boost("make test", request_context("/proj")) > 0.0
    assert scheduler.rule_boost("make build", request_context("/other")) == 0.0
    assert scheduler.rule_boost("make test") > 0.0


def test_rule_boost_uses_pattern_tables(scheduler, rules):
    stored = []
    for i in range(300):
        pattern = parameter_pattern("tool", f"sub{i}")
        stored.append(Rule(rule_id(RuleType.PARAMETER, pattern), RuleType.PARAMETER, pattern,
                           weight=0.5, confidence=0.5 + i / 1000))
    for rtype, pattern in ((RuleType.CONTEXT, context_pattern("tool sub7", "/proj")),
                           (RuleType.SEQUENCE, sequence_pattern("make", "tool sub7"))):
        stored.append(Rule(rule_id(rtype, pattern), rtype, pattern, weight=0.9, confidence=0.9))
    for r in stored:
        rules.upsert_rule(r)
    scheduler.refresh_rules()

    ctx = request_context("/proj")
    ctx.last_command = "make"
    candidates = [f"tool sub{i}" for i in range(0, 600, 10)] + ["tool", "ls -la"]
    with mock.patch.object(scheduler.parser, "parse", wraps=scheduler.parser.parse) as parse:
        boosts = {c: scheduler.rule_boost(c, ctx) for c in candidates}
    assert parse.call_count == len(candidates)

    parser = CommandParser()
    for c in candidates:
        expected = max([r.weight * r.confidence for r in stored
                        if rule_matches(r, c, "/proj", "make", parser)] or [0.0])
        assert boosts[c] == pytest.approx(expected)
    assert boosts["tool sub7"] == pytest.approx(0.81)
    assert boosts["tool sub10"] == pytest.approx(0.5 * 0.51)
    assert boosts["tool sub500"] == 0.0


def test_performance_is_tallied_from_shown_suggestions(scheduler, history, rules):
    executions(history, "make test", 3)
    scheduler.trigger_analysis()
    shown(history, "make test", 4, selected=True)
    shown(history, "make test", 2, selected=False)
    scheduler.trigger_analysis()
    perf = {r.type.value: r.performance for r in rules.get_rules()}
    assert perf["parameter"].usage_count == 6
    assert perf["parameter"].adoption_count == 4
    assert perf["parameter"].success_count == 4
    assert perf["context"].total_latency == pytest.approx(120.0)


def test_regressed_rules_are_reverted(scheduler, history, rules):
    executions(history, "make test", 3)
    scheduler.trigger_analysis()
    shown(history, "make test", 10, selected=False)
    summary = scheduler.trigger_analysis()
    assert summary["regressions"] == 2
    assert summary["version"] == 2
    assert rules.get_rules() == []
    assert rules.get_version(1).status == VersionStatus.ROLLBACK
    assert scheduler.active_rules() == []

    # blocked until the evidence doubles
    executions(history, "make test", 1)
    assert scheduler.trigger_analysis()["changes"] == 0


def test_failed_cycle_is_retried_without_double_counting(scheduler, history, rules):
    executions(history, "make test", 3)
    real = rules.update_state
    calls = {"n": 0}

    def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("database is locked")
        return real(*args, **kwargs)

    with mock.patch.object(rules, "update_state", side_effect=flaky):
        summary = scheduler.trigger_analysis()
    assert summary is not None
    assert summary["events"] == 3
    assert scheduler.failures == 1
    assert scheduler.cycles == 1
    assert scheduler.miner.pairs["context"]["make test @ /proj"] == 3
    assert rules.get_state(COMPONENT)["processed_count"] == 3


def test_cycle_gives_up_after_retries(scheduler, history):
    with mock.patch.object(history, "completion_events_after", side_effect=RuntimeError("down")):
        assert scheduler.trigger_analysis() is None
    assert scheduler.failures == scheduler.max_retries
    assert scheduler.cycles == 0


def test_overlapping_cycle_is_skipped(scheduler):
    with scheduler._cycle_lock:
        assert scheduler.trigger_analysis() is None
    assert scheduler.skipped == 1


def test_background_loop_runs_and_stops(history, rules):
    executions(history, "ls -la", 3, cwd="/tmp")
    s = AnalysisScheduler(history, rules, interval=0.05)
    s.start()
    assert s.running
    deadline = time.monotonic() + 5
    while s.cycles == 0 and time.monotonic() < deadline:
        time.sleep(0.02)
    s.stop()
    assert not s.running
    assert s.cycles >= 1
    assert s.status()["rules"] >= 1


def test_explicit_rollback(scheduler, history):
    executions(history, "make test", 3)
    scheduler.trigger_analysis()
    executions(history, "npm test", 3, cwd="/app")
    scheduler.trigger_analysis()
    assert len(scheduler.active_rules()) == 4
    new_version = scheduler.rollback(1)
    assert new_version == 3
    assert len(scheduler.active_rules()) == 2
    status = scheduler.status()
    assert status["active_version"] == 3
    assert status["running"] is False
