# tests/test_storage.py
# Database, migrations, HistoryStore and RuleStore against a temp SQLite file

from datetime import datetime, timedelta

import pytest

from shell_autocompleter.core.types import Rule, RuleType, VersionStatus
from shell_autocompleter.storage.database import Database, from_ts, to_ts
from shell_autocompleter.storage.history_store import HistoryStore
from shell_autocompleter.storage.migrations import MIGRATIONS, SCHEMA_VERSION, MigrationRunner


def test_migrations_create_schema_and_are_idempotent(tmp_path):
    d = Database(str(tmp_path / "m.db"))
    runner = MigrationRunner(d)
    assert runner.run() == list(range(1, SCHEMA_VERSION + 1))
    assert runner.run() == []
    assert runner.current_version() == SCHEMA_VERSION
    tables = set(d.table_names())
    for t in ("command_history", "command_relations", "command_usage", "completion_usage",
              "completion_rules", "rule_versions", "rule_performance", "analysis_state", "pattern_state"):
        assert t in tables
    d.close()


def test_existing_database_upgrades_in_place(tmp_path):
    d = Database(str(tmp_path / "old.db"))
    assert MigrationRunner(d, MIGRATIONS[:1]).run() == [1]
    ts = to_ts()
    for command, freq in (("git add .", 4), ("git commit", 3)):
        d.execute("INSERT INTO command_history (command, context, frequency, last_used) VALUES (?, '/repo', ?, ?)",
                  (command, freq, ts))
    d.execute(
        """
        INSERT INTO command_relations (command1_id, command2_id, relation_type, frequency, last_used)
        SELECT a.id, b.id, 'sequence', 2, ? FROM command_history a, command_history b
        WHERE a.command = 'git add .' AND b.command = 'git commit'
        """,
        (ts,),
    )

    runner = MigrationRunner(d)
    assert runner.run() == list(range(2, SCHEMA_VERSION + 1))
    assert runner.current_version() == SCHEMA_VERSION

    rows = d.query("SELECT command, frequency, outputs FROM command_history ORDER BY command")
    assert [(r["command"], r["frequency"], r["outputs"]) for r in rows] == [
        ("git add .", 4, "[]"), ("git commit", 3, "[]")]
    history = HistoryStore(d)
    assert history.get("git add .").outputs == []
    assert history.chain_counts() == {"git add .": {"git commit": 2}}
    tables = set(d.table_names())
    for t in ("command_usage", "completion_usage", "completion_rules", "rule_versions", "rule_performance",
              "analysis_state", "pattern_state"):
        assert t in tables
    d.close()


def test_in_memory_database_is_shared_across_connections():
    d = Database(":memory:")
    MigrationRunner(d).run()
    d.execute("INSERT INTO command_usage (command, last_used, created_at) VALUES ('ls', ?, ?)", (to_ts(), to_ts()))
    assert d.query("SELECT COUNT(*) AS n FROM command_usage")[0]["n"] == 1
    d.close()


def test_failed_transaction_rolls_back(db):
    with pytest.raises(RuntimeError):
        with db.connection() as conn:
            conn.execute("INSERT INTO command_usage (command, last_used, created_at) VALUES ('x', ?, ?)",
                         (to_ts(), to_ts()))
            raise RuntimeError("abort")
    assert db.query("SELECT COUNT(*) AS n FROM command_usage")[0]["n"] == 0


def test_timestamp_helpers_round_trip():
    now = datetime(2024, 5, 1, 12, 30, 15, 123456)
    assert from_ts(to_ts(now)) == now
    assert from_ts(None) == datetime.fromtimestamp(0)
    assert from_ts("garbage") == datetime.fromtimestamp(0)


# History -----------------------------------------------------------------------

def test_add_or_update_deduplicates(history):
    first = history.add_or_update("git status", "/repo")
    second = history.add_or_update("git status", "/repo", success=False, outputs=["fatal"])
    assert first == second
    rec = history.get("git status")
    assert rec.frequency == 2
    assert rec.success is False
    assert rec.outputs == ["fatal"]
    assert history.count() == 1


def test_add_or_update_rejects_empty(history):
    with pytest.raises(ValueError):
        history.add_or_update("   ")


def test_search_prefix_orders_by_frequency_then_recency(history):
    old = datetime.now() - timedelta(days=2)
    history.add_or_update("git status", when=old)
    history.add_or_update("git stash")
    history.add_or_update("git push")
    history.add_or_update("git push")
    history.add_or_update("ls -la")
    found = [r.command for r in history.search_prefix("git s")]
    assert found == ["git stash", "git status"]
    assert [r.command for r in history.search_prefix("git")][0] == "git push"
    assert history.search_prefix("100%") == []


def test_relations_accumulate_and_feed_chains(history):
    a = history.add_or_update("git add .")
    b = history.add_or_update("git commit -m 'x'")
    history.add_relation(a, b, time_gap=4.0)
    history.add_relation(a, b, success=False, time_gap=2.0)
    rel = history.relations_from(a)[0]
    assert rel.frequency == 2
    assert rel.success_rate == pytest.approx(0.5)
    assert rel.avg_time_gap == pytest.approx(3.0)
    assert history.chain_counts() == {"git add .": {"git commit -m 'x'": 2}}


def test_completion_events_are_read_in_id_order(history):
    i1 = history.record_completion("git s", "git status", True, {"event": "completion", "cwd": "/r"})
    i2 = history.record_completion("git s", "git stash", False, {"event": "completion"})
    events = history.completion_events_after(0)
    assert [e["id"] for e in events] == [i1, i2]
    assert events[0]["is_selected"] and events[0]["context"]["cwd"] == "/r"
    assert history.completion_events_after(i1) == events[1:]


def test_usage_success_and_get_many(history):
    history.add_or_update("make test", success=False)
    history.add_or_update("make build")
    assert history.usage_success(["make test", "make build", "nope"]) == {"make test": False, "make build": True}
    assert set(history.get_many(["make test", "make build", "make test"])) == {"make test", "make build"}


def test_pattern_state_round_trip(history):
    history.save_pattern_state("directory", "/proj", {"commands": {"make test": 3}})
    history.save_pattern_state("directory", "/proj", {"commands": {"make test": 4}})
    assert history.load_pattern_state("directory") == {"/proj": {"commands": {"make test": 4}}}
    history.delete_pattern_state("directory", "/proj")
    assert history.load_pattern_state("directory") == {}


# Rules -------------------------------------------------------------------------

def test_rule_upsert_clips_and_tracks_performance(rules):
    rule = Rule(id="parameter_x", type=RuleType.PARAMETER, pattern="git status", weight=1.4, confidence=0.8)
    rules.upsert_rule(rule)
    rules.record_performance("parameter_x", used=4, succeeded=2, adopted=1, latency=40.0)
    got = rules.get_rule("parameter_x")
    assert got.weight == 1.0
    assert got.performance.usage_count == 4
    assert got.performance.adoption_rate == pytest.approx(0.25)
    assert got.performance.average_latency == pytest.approx(10.0)
    rules.reset_performance("parameter_x")
    assert rules.get_rule("parameter_x").performance.usage_count == 0
    rules.delete_rule("parameter_x")
    assert rules.get_rules() == []


def test_versions_and_analysis_state(rules):
    assert rules.max_version() == 0
    assert rules.active_version() is None
    rules.insert_version(1, [{"rule_id": "a"}], VersionStatus.ACTIVE)
    rules.insert_version(2, [], VersionStatus.ACTIVE)
    rules.set_version_status(1, VersionStatus.DEPRECATED)
    assert rules.active_version() == 2
    assert [v.version for v in rules.versions()] == [2, 1]
    assert rules.get_version(1).status == VersionStatus.DEPRECATED

    assert rules.get_state("rule_miner") is None
    rules.update_state("rule_miner", 42, 100, {"miner": {"pairs": {}}})
    state = rules.get_state("rule_miner")
    assert state["last_processed_id"] == 42
    assert state["processed_count"] == 100
    assert state["metrics"] == {"miner": {"pairs": {}}}
