# logger_utils.py - logging setup plus helpers for metrics and timing code blocks

import logging
import os
import time
from typing import Optional

# Directory where log files go when file logging is switched on
LOG_DIR = "logs"
DEFAULT_LOG_PATH = os.path.join(LOG_DIR, "shell_autocompleter.log")

LOG_FORMAT = "[%(asctime)s] %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_metrics_logger = logging.getLogger("shell_autocompleter.metrics")
_HANDLER_TAG = "_shell_autocompleter_handler"


def configure_logging(level: str = "INFO", path: Optional[str] = None, console: bool = True) -> logging.Logger:
    """
    Attach handlers to the package logger. Safe to call more than once,
    previously attached handlers are replaced rather than duplicated.
    """
    pkg = logging.getLogger("shell_autocompleter")
    pkg.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for h in list(pkg.handlers):
        if getattr(h, _HANDLER_TAG, False):
            pkg.removeHandler(h)
            h.close()

    fmt = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    handlers = []
    if console:
        handlers.append(logging.StreamHandler())
    if path:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    for h in handlers:
        h.setFormatter(fmt)
        setattr(h, _HANDLER_TAG, True)
        pkg.addHandler(h)
    return pkg


class Log:
    """Small static facade used across the engine for one-line events and metrics."""

    @staticmethod
    def write(msg: str, level: int = logging.INFO) -> None:
        logging.getLogger("shell_autocompleter").log(level, msg)

    @staticmethod
    def metric(tag: str, value, unit: str = "") -> None:
        """
        Record a metric (timing, counts ...) on the metrics logger at DEBUG level.
        Example line: engine.suggest_latency: 0.012s
        """
        _metrics_logger.debug("%s: %s%s", tag, value, unit)

    @staticmethod
    def time_block(label: str) -> "_Timer":
        """
        Measure how long a block takes:
            with Log.time_block("scheduler.cycle"):
                run_cycle()
        """
        return _Timer(label)


class _Timer:
    """Context manager used by Log.time_block."""

    def __init__(self, label: str):
        self.label = label
        self.start = time.perf_counter()
        self.elapsed = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = round(time.perf_counter() - self.start, 6)
        Log.metric(f"{self.label} done", self.elapsed, "s")
        return False
