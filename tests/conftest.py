# tests/conftest.py
# shared fixtures: temp databases, a scripted remote session, a ready engine

import threading
from dataclasses import dataclass
from typing import Dict, Optional

import pytest

from shell_autocompleter.core.autocompleter import ShellAutocompleter
from shell_autocompleter.storage.database import Database
from shell_autocompleter.storage.history_store import HistoryStore
from shell_autocompleter.storage.migrations import MigrationRunner
from shell_autocompleter.storage.rule_store import RuleStore


@dataclass
class Output:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


class FakeSession:
    """
    Scripted RemoteSession. `responses` maps a command prefix to an Output, an exception
    instance (raised) or a callable returning either.
    """

    supports_concurrent = True

    def __init__(self, cwd: str = "/home/user", env: Optional[Dict[str, str]] = None,
                 responses: Optional[Dict[str, object]] = None):
        self.cwd = cwd
        self.env = env if env is not None else {"HOME": "/home/user", "PATH": "/usr/bin"}
        self.responses = dict(responses or {})
        self.calls = []
        self._lock = threading.Lock()

    def execute(self, session_id: str, command: str, timeout: float):
        with self._lock:
            self.calls.append(command)
        for prefix in sorted(self.responses, key=len, reverse=True):
            if command.startswith(prefix):
                value = self.responses[prefix]
                if callable(value):
                    value = value()
                if isinstance(value, BaseException):
                    raise value
                return value
        return Output(exit_code=1)

    def current_working_directory(self, session_id: str) -> str:
        return self.cwd

    def environment_variables(self, session_id: str) -> Dict[str, str]:
        return dict(self.env)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def db(tmp_path):
    d = Database(str(tmp_path / "store.db"))
    MigrationRunner(d).run()
    yield d
    d.close()


@pytest.fixture
def history(db):
    return HistoryStore(db)


@pytest.fixture
def rules(db):
    return RuleStore(db)


@pytest.fixture
def make_engine(tmp_path):
    engines = []

    def _make(session=None, **kwargs) -> ShellAutocompleter:
        kwargs.setdefault("db_path", str(tmp_path / f"engine{len(engines)}.db"))
        kwargs.setdefault("start_scheduler", False)
        kwargs.setdefault("latency_budget", 2.0)
        eng = ShellAutocompleter(session, **kwargs)
        assert eng.wait_ready(timeout=10)
        engines.append(eng)
        return eng

    yield _make
    for eng in engines:
        eng.shutdown()


@pytest.fixture
def engine(make_engine):
    return make_engine()


def run_and_flush(engine: ShellAutocompleter, command: str, exit_code: int = 0,
                  cwd: Optional[str] = None, outputs=None) -> None:
    engine.record_command_execution(command, outputs or [], exit_code, cwd=cwd)
    assert engine.flush(timeout=5)


@pytest.fixture
def run():
    return run_and_flush
