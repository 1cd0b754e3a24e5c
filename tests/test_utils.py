# tests/test_utils.py
# config file handling, metrics, the parallel runner, logging setup and the local session

import json
import logging
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from shell_autocompleter.cli.cli import LocalShellSession
from shell_autocompleter.core.errors import ConfigError
from shell_autocompleter.utils.config_manager import DEFAULTS, Config
from shell_autocompleter.utils.logger_utils import Log, configure_logging
from shell_autocompleter.utils.metrics_tracker import Metrics
from shell_autocompleter.utils.threaded_runner import run_parallel


# -------------------------
# Config
# -------------------------
def test_config_writes_defaults_on_first_use(tmp_path):
    path = tmp_path / "conf" / "config.json"
    cfg = Config(str(path))
    assert path.exists()
    assert json.loads(path.read_text()) == DEFAULTS
    assert cfg.get("max_suggestions") == 8
    assert cfg.get("missing", "x") == "x"


def test_config_set_coerces_and_persists(tmp_path):
    path = tmp_path / "config.json"
    cfg = Config(str(path))
    cfg.set("max_suggestions", "5")
    cfg.set("cache_ttl", "0.5")
    cfg.set("weights", '{"chain": 0.4}')
    reloaded = Config(str(path))
    assert reloaded.get("max_suggestions") == 5
    assert reloaded.get("cache_ttl") == pytest.approx(0.5)
    assert reloaded.weights() == {"chain": 0.4}


def test_config_rejects_unknown_keys_and_bad_values(tmp_path):
    cfg = Config(str(tmp_path / "config.json"))
    with pytest.raises(ConfigError):
        cfg.set("colour", "red")
    with pytest.raises(ConfigError):
        cfg.set("max_suggestions", "many")
    with pytest.raises(ConfigError):
        cfg.set("weights", "{not json")
    assert cfg.get("max_suggestions") == 8


def test_config_ignores_unknown_and_survives_garbage(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"history_window": 5, "theme": "dark"}))
    cfg = Config(str(path))
    assert cfg.get("history_window") == 5
    assert "theme" not in cfg.show()

    path.write_text("{{{")
    assert Config(str(path)).get("history_window") == DEFAULTS["history_window"]


def test_engine_kwargs(tmp_path):
    cfg = Config(str(tmp_path / "config.json"))
    cfg.set("latency_budget_ms", 250)
    kw = cfg.as_engine_kwargs()
    assert kw["latency_budget"] == pytest.approx(0.25)
    assert kw["ranker_preset"] == "balanced"
    assert kw["weights"] == {}
    assert set(kw) >= {"db_path", "max_suggestions", "cache_ttl", "environment_ttl", "probe_timeout",
                       "analysis_interval", "history_window"}


def test_config_without_path_stays_in_memory():
    cfg = Config(None)
    cfg.set("log_level", "DEBUG")
    assert cfg.get("log_level") == "DEBUG"


# -------------------------
# Metrics
# -------------------------
def test_metrics_average_and_persist(tmp_path):
    path = tmp_path / "metrics.json"
    m = Metrics(str(path))
    m.record("latency_ms", 10.0)
    m.record("latency_ms", 30.0)
    m.incr("cache_hit")
    assert m.avg("latency_ms") == pytest.approx(20.0)
    assert m.count("cache_hit") == 1
    assert m.avg("nothing") == 0.0
    m.save()
    again = Metrics(str(path))
    assert again.summary()["latency_ms"] == {"avg": pytest.approx(20.0), "count": 2}


# -------------------------
# run_parallel
# -------------------------
def test_run_parallel_keeps_what_finishes_in_time():
    gate = threading.Event()

    def slow():
        gate.wait(2)
        return "late"

    def boom():
        raise RuntimeError("no")

    with ThreadPoolExecutor(max_workers=4) as pool:
        t0 = time.monotonic()
        out = run_parallel(pool, {"fast": lambda: 1, "slow": slow, "boom": boom}, timeout=0.2)
        elapsed = time.monotonic() - t0
        gate.set()
    assert out == {"fast": 1}
    assert elapsed < 1.0


def test_run_parallel_per_task_limit():
    gate = threading.Event()
    with ThreadPoolExecutor(max_workers=2) as pool:
        out = run_parallel(pool, {"probe": lambda: gate.wait(2), "quick": lambda: "ok"},
                           timeout=1.0, per_task_timeout={"probe": 0.05})
        gate.set()
    assert out == {"quick": "ok"}
    assert run_parallel(pool, {}, timeout=1.0) == {}


# -------------------------
# Logging
# -------------------------
def test_configure_logging_replaces_its_handlers(tmp_path):
    path = tmp_path / "logs" / "engine.log"
    pkg = configure_logging("debug", path=str(path), console=False)
    configure_logging("debug", path=str(path), console=False)
    ours = [h for h in pkg.handlers if isinstance(h, logging.FileHandler)]
    assert len(ours) == 1
    assert pkg.level == logging.DEBUG
    Log.write("engine ready")
    with Log.time_block("unit") as t:
        pass
    assert t.elapsed >= 0.0
    ours[0].flush()
    assert "engine ready" in path.read_text()
    configure_logging("INFO", console=False)


# -------------------------
# Local session
# -------------------------
def test_local_session_tracks_cd(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "file.txt").write_text("x")
    s = LocalShellSession(cwd=str(tmp_path))
    assert s.run_user_command("cd sub").exit_code == 0
    assert s.current_working_directory("local") == str(tmp_path / "sub")
    assert s.run_user_command("cd ../missing").exit_code == 1
    assert s.run_user_command("cd ../file.txt").exit_code == 1
    assert s.cwd == str(tmp_path / "sub")


@pytest.mark.skipif(shutil.which("bash") is None, reason="needs bash")
def test_local_session_runs_commands_in_cwd(tmp_path):
    s = LocalShellSession(cwd=str(tmp_path))
    out = s.execute("local", "pwd; exit 3", timeout=5)
    assert out.stdout.strip() == str(tmp_path.resolve()) or out.stdout.strip() == str(tmp_path)
    assert out.exit_code == 3
    assert s.run_user_command("sleep 2", timeout=0.1).exit_code == 124
