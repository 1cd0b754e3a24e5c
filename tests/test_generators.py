# tests/test_generators.py
# history / heuristic / remote-probe candidate generators

from datetime import datetime, timedelta

import pytest
from conftest import FakeSession, Output

from shell_autocompleter.core.generators import (
    HeuristicGenerator,
    HistoryGenerator,
    RemoteProbeGenerator,
    history_score,
    make_suggestion,
    replace_last_word,
)
from shell_autocompleter.core.parser import CommandParser
from shell_autocompleter.core.probe_executor import ProbeExecutor
from shell_autocompleter.core.types import (
    ArgumentPattern,
    CompletionContext,
    EnvironmentState,
    ErrorCorrectionPattern,
    PatternBundle,
    SessionState,
    SuggestionSource,
)

_parser = CommandParser()


def ctx(text, session=None, env=None, patterns=None):
    return CompletionContext(
        input=text,
        cursor_position=len(text),
        parsed=_parser.parse(text),
        session=session or SessionState(),
        environment=env or EnvironmentState(),
        patterns=patterns or PatternBundle(),
    )


def fulls(suggestions):
    out = {}
    for s in suggestions:
        out[s.full_command] = max(out.get(s.full_command, 0.0), s.score)
    return out


def test_history_score_blends_frequency_and_recency():
    now = datetime(2024, 1, 31)
    assert history_score(10, now, now) == pytest.approx(1.0)
    assert history_score(5, now - timedelta(days=30), now) == pytest.approx(0.35)


def test_make_suggestion_skips_noop():
    assert make_suggestion("ls", "ls", SuggestionSource.HISTORY, 1.0) is None
    s = make_suggestion("git s", "git status", SuggestionSource.HISTORY, 1.5)
    assert s.suggestion == "tatus"
    assert s.score == 1.0
    assert replace_last_word("cd sr", "sr", "src/") == "cd src/"
    assert replace_last_word("git ", "", "status") == "git status"


def test_history_generator_prefix_matches(history):
    history.add_or_update("git status")
    history.add_or_update("git stash")
    history.add_or_update("ls")
    out = HistoryGenerator(history).generate(ctx("git s"))
    assert set(fulls(out)) == {"git status", "git stash"}
    assert all(s.source == SuggestionSource.HISTORY for s in out)


def test_heuristic_command_position():
    out = fulls(HeuristicGenerator().generate(ctx("gi")))
    assert out["git"] == pytest.approx(0.6)


def test_heuristic_subcommands_prefer_common_ones():
    out = fulls(HeuristicGenerator().generate(ctx("git s")))
    assert out["git status"] == pytest.approx(0.8)
    assert out["git stash"] == pytest.approx(0.75)


def test_heuristic_flags():
    out = fulls(HeuristicGenerator().generate(ctx("ls -l")))
    assert out["ls -la"] == pytest.approx(0.8)
    out = fulls(HeuristicGenerator().generate(ctx("grep --")))
    assert out["grep --help"] == pytest.approx(0.7)


def test_heuristic_variables_and_directories():
    out = fulls(HeuristicGenerator().generate(ctx("echo $HO")))
    assert "echo $HOME" in out
    out = fulls(HeuristicGenerator().generate(ctx("echo ${PA")))
    assert "echo ${PATH}" in out
    out = fulls(HeuristicGenerator().generate(ctx("cd s")))
    assert out["cd src/"] == pytest.approx(0.5)


def test_heuristic_file_types_use_environment_and_learning():
    env = EnvironmentState(recent_files=["notes.md", "app.py", "server.log"])
    patterns = PatternBundle(file_type_commands={".py": [("vim", 3)]})
    out = fulls(HeuristicGenerator().generate(ctx("vim ", env=env, patterns=patterns)))
    assert out["vim app.py"] == pytest.approx(0.8)
    assert out["vim notes.md"] == pytest.approx(0.7)
    assert out["vim server.log"] == pytest.approx(0.55)
    out = fulls(HeuristicGenerator().generate(ctx("tail ", env=env)))
    assert out["tail server.log"] == pytest.approx(0.7)
    assert out["tail app.py"] == pytest.approx(0.55)


def test_heuristic_redirect_and_quoted_targets():
    env = EnvironmentState(recent_files=["out.txt", "my notes.txt"])
    out = fulls(HeuristicGenerator().generate(ctx("echo hi > o", env=env)))
    assert "echo hi > out.txt" in out
    out = fulls(HeuristicGenerator().generate(ctx("cat 'my", env=env)))
    assert "cat 'my notes.txt'" in out


def test_heuristic_learned_patterns():
    patterns = PatternBundle(
        arguments=[ArgumentPattern("git", "checkout", 10, datetime.now(), 1.0)],
        directory_commands=[("make test", 10), ("make lint", 1)],
        corrections=[ErrorCorrectionPattern("gti status", "git status", 2, 0.5)],
    )
    out = fulls(HeuristicGenerator().generate(ctx("git ch", patterns=patterns)))
    assert out["git checkout"] == pytest.approx(0.9)
    out = fulls(HeuristicGenerator().generate(ctx("make ", patterns=patterns)))
    assert out["make test"] == pytest.approx(0.9)
    assert out["make lint"] == pytest.approx(0.63)
    out = fulls(HeuristicGenerator().generate(ctx("gti status", patterns=patterns)))
    assert out["git status"] == pytest.approx(0.85)


def test_heuristic_empty_input_only_offers_directory_habits():
    patterns = PatternBundle(directory_commands=[("make test", 5)])
    out = HeuristicGenerator().generate(ctx("", patterns=patterns))
    assert [s.full_command for s in out] == ["make test"]
    assert HeuristicGenerator().generate(ctx("")) == []


def test_heuristic_error_input_does_not_raise():
    assert HeuristicGenerator().generate(ctx("| ls")) == []


def remote(responses, env=None):
    session = FakeSession(env=env, responses=responses)
    return RemoteProbeGenerator(ProbeExecutor(session, default_timeout=1.0), timeout=1.0), session


def test_remote_lists_paths():
    gen, _ = remote({"ls -1Ap": Output(stdout="src/\nsetup.py\nREADME.md\n")})
    out = fulls(gen.generate(ctx("cd s", session=SessionState(session_id="s1"))))
    assert out == {"cd src/": pytest.approx(0.95), "cd setup.py": pytest.approx(0.9)}


def test_remote_lists_nested_paths():
    gen, session = remote({"ls -1Ap src/": Output(stdout="main.py\nutil/\n")})
    out = fulls(gen.generate(ctx("vim src/m", session=SessionState(session_id="s1"))))
    assert out == {"vim src/main.py": pytest.approx(0.9)}
    assert "ls -1Ap src/" in session.calls


def test_remote_commands_and_variables():
    gen, _ = remote({"compgen": Output(stdout="docker\ndocker-compose\n")}, env={"DOCKER_HOST": "x", "HOME": "/h"})
    out = fulls(gen.generate(ctx("dock", session=SessionState(session_id="s1"))))
    assert set(out) == {"docker", "docker-compose"}
    out = fulls(gen.generate(ctx("echo $DO", session=SessionState(session_id="s1"))))
    assert out == {"echo $DOCKER_HOST": pytest.approx(0.65)}


def test_remote_skips_without_session_or_input():
    gen, session = remote({"ls": Output(stdout="a\n")})
    assert gen.generate(ctx("cd a")) == []
    assert gen.generate(ctx("", session=SessionState(session_id="s1"))) == []
    assert session.calls == []
    assert RemoteProbeGenerator(None).generate(ctx("cd ", session=SessionState(session_id="s1"))) == []


def test_remote_probe_failure_yields_nothing():
    gen, _ = remote({"ls": ConnectionError("gone")})
    assert gen.generate(ctx("cd s", session=SessionState(session_id="s1"))) == []
