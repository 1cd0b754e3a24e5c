# tests/test_probe_executor.py
# ProbeExecutor: timeouts, failure isolation, reconnect with backoff

import threading
import time

from conftest import FakeSession, Output

from shell_autocompleter.core.probe_executor import ProbeExecutor


def test_execute_returns_output():
    session = FakeSession(responses={"echo": Output(stdout="hi\n")})
    ex = ProbeExecutor(session, default_timeout=1.0)
    res = ex.execute("s1", "echo hi")
    assert res.ok
    assert res.stdout == "hi\n"
    assert ex.lines("s1", "echo hi") == ["hi"]
    ex.close()


def test_no_session_is_unavailable():
    ex = ProbeExecutor(FakeSession())
    res = ex.execute(None, "ls")
    assert not res.available
    assert res.reason == "no-session"
    assert ex.current_directory(None) is None
    assert ex.environment_variables(None) == {}
    ex.close()


def test_slow_probe_times_out_without_blocking_caller():
    gate = threading.Event()

    def slow():
        gate.wait(2.0)
        return Output(stdout="late")

    ex = ProbeExecutor(FakeSession(responses={"sleep": slow}), default_timeout=0.05)
    t0 = time.monotonic()
    res = ex.execute("s1", "sleep 10")
    assert time.monotonic() - t0 < 1.0
    assert not res.available
    assert res.reason == "timeout"
    gate.set()
    ex.close()


def test_transport_timeout_error_is_reported():
    ex = ProbeExecutor(FakeSession(responses={"ls": TimeoutError("slow")}))
    res = ex.execute("s1", "ls")
    assert res.reason == "timeout"
    assert ex.lines("s1", "ls") == []
    ex.close()


def test_other_errors_are_isolated():
    ex = ProbeExecutor(FakeSession(responses={"boom": RuntimeError("bad"), "ok": Output(stdout="fine")}))
    assert ex.execute("s1", "boom").reason == "error"
    assert ex.execute("s1", "ok").stdout == "fine"
    ex.close()


def test_connection_loss_reconnects_on_next_probe():
    attempts = {"n": 0}

    def flaky():
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise ConnectionError("dropped")
        return Output(stdout="back")

    session = FakeSession(responses={"pwd": flaky})
    reconnects = []
    session.reconnect = lambda sid: reconnects.append(sid)
    ex = ProbeExecutor(session, retries=1)
    res = ex.execute("s1", "pwd")
    assert res.stdout == "back"
    assert reconnects == ["s1"]
    assert ex.is_connected("s1")
    ex.close()


def test_repeated_reconnect_failures_back_off():
    now = {"t": 100.0}
    session = FakeSession(responses={"pwd": ConnectionError("down")})

    def refuse(sid):
        raise ConnectionError("still down")

    session.reconnect = refuse
    ex = ProbeExecutor(session, retries=1, backoff_base=0.5, clock=lambda: now["t"])
    assert not ex.execute("s1", "pwd").available
    assert not ex.is_connected("s1")
    # still inside the backoff window: no reconnect attempt is made
    assert ex.execute("s1", "pwd").reason == "reconnecting"
    ex.close()


def test_sessions_are_independent():
    session = FakeSession(responses={"ls": Output(stdout="a\nb\n")})
    ex = ProbeExecutor(session)
    assert ex.lines("s1", "ls") == ["a", "b"]
    assert ex.lines("s2", "ls") == ["a", "b"]
    assert ex.current_directory("s1") == "/home/user"
    assert ex.environment_variables("s2")["HOME"] == "/home/user"
    ex.close()


def test_closed_executor_returns_unavailable():
    ex = ProbeExecutor(FakeSession(responses={"ls": Output(stdout="x")}))
    ex.close()
    assert ex.execute("s1", "ls").reason == "closed"


class SerialSession(FakeSession):
    """Transport that records how many calls were in flight at once, per session and overall."""

    supports_concurrent = False

    def __init__(self, hold=0.05, **kw):
        super().__init__(**kw)
        self.hold = hold
        self.active = {}
        self.peak = {}
        self.total = 0
        self.peak_total = 0

    def execute(self, session_id, command, timeout):
        with self._lock:
            self.active[session_id] = self.active.get(session_id, 0) + 1
            self.total += 1
            self.peak[session_id] = max(self.peak.get(session_id, 0), self.active[session_id])
            self.peak_total = max(self.peak_total, self.total)
        try:
            time.sleep(self.hold)
            return Output(stdout=f"{session_id}\n")
        finally:
            with self._lock:
                self.active[session_id] -= 1
                self.total -= 1


def fire(ex, session_ids, per_session=4):
    results = []
    threads = [threading.Thread(target=lambda sid=sid: results.append(ex.execute(sid, "ls", timeout=2.0)))
               for sid in session_ids for _ in range(per_session)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)
    return results


def test_single_session_without_concurrency_is_serialized():
    session = SerialSession()
    ex = ProbeExecutor(session, default_timeout=2.0)
    results = fire(ex, ["hostA"])
    ex.close()
    assert len(results) == 4 and all(r.ok for r in results)
    assert session.peak["hostA"] == 1


def test_separate_sessions_still_run_side_by_side():
    session = SerialSession(hold=0.2)
    ex = ProbeExecutor(session, default_timeout=2.0)
    results = fire(ex, ["hostA", "hostB"], per_session=2)
    ex.close()
    assert all(r.ok for r in results)
    assert session.peak == {"hostA": 1, "hostB": 1}
    assert session.peak_total == 2
