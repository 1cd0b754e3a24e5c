# metrics_tracker.py - in-memory counters and running averages (latency, cache hits ...)

import json
import os
import threading
from collections import defaultdict
from typing import Dict, Optional


class Metrics:
    def __init__(self, path: Optional[str] = None):
        self.path = path
        self.m: Dict[str, float] = defaultdict(float)
        self.n: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf8") as f:
                d = json.load(f)
        except (OSError, ValueError):
            return
        for k, v in d.items():
            self.m[k] = v["sum"]
            self.n[k] = v["count"]

    def save(self) -> None:
        if not self.path:
            return
        with self._lock:
            d = {k: {"sum": self.m[k], "count": self.n[k]} for k in self.m}
        with open(self.path, "w", encoding="utf8") as f:
            json.dump(d, f, indent=2)

    def record(self, key: str, val: float) -> None:
        with self._lock:
            self.m[key] += val
            self.n[key] += 1

    def incr(self, key: str) -> None:
        self.record(key, 1.0)

    def count(self, key: str) -> int:
        return self.n.get(key, 0)

    def avg(self, key: str) -> float:
        with self._lock:
            if self.n.get(key, 0) == 0:
                return 0.0
            return self.m[key] / self.n[key]

    def summary(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {k: {"avg": self.m[k] / self.n[k] if self.n[k] else 0.0, "count": self.n[k]} for k in self.m}
