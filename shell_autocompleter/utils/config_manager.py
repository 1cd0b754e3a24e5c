# config_manager.py - JSON config manager for the completion engine

import json
import logging
import os
from typing import Any, Dict, Optional

from shell_autocompleter.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "db_path": os.path.join("data", "completion.db"),
    "max_suggestions": 8,
    "cache_ttl": 2.0,  # seconds
    "environment_ttl": 5.0,
    "latency_budget_ms": 150,
    "probe_timeout": 0.5,
    "ranker_preset": "balanced",
    "weights": {},  # factor -> weight overrides on top of the preset
    "analysis_interval": 300.0,
    "history_window": 20,
    "log_level": "INFO",
}


class Config:
    def __init__(self, path: Optional[str] = "config.json", autosave: bool = True):
        self.path = path
        self.autosave = autosave
        self.data: Dict[str, Any] = json.loads(json.dumps(DEFAULTS))
        self._load()

    def _load(self) -> None:
        if not self.path:
            return
        if os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf8") as f:
                    loaded = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("config %s unreadable, using defaults: %s", self.path, e)
                return
            for k, v in loaded.items():
                if k in self.data:
                    self.data[k] = v
                else:
                    logger.warning("ignoring unknown config key %r", k)
        elif self.autosave:
            self.save()

    def save(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(self.path, "w", encoding="utf8") as f:
            json.dump(self.data, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def show(self) -> Dict[str, Any]:
        return dict(self.data)

    def set(self, key: str, val: Any) -> None:
        if key not in self.data:
            raise ConfigError(f"No such option: {key}")
        current = self.data[key]
        try:
            if isinstance(current, dict):
                val = json.loads(val) if isinstance(val, str) else dict(val)
            elif isinstance(current, bool):
                val = val if isinstance(val, bool) else str(val).lower() in ("1", "true", "yes", "on")
            else:
                val = type(current)(val)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Bad value for {key}: {val!r}") from e
        self.data[key] = val
        if self.autosave:
            self.save()

    def weights(self) -> Dict[str, float]:
        return {k: float(v) for k, v in (self.data.get("weights") or {}).items()}

    def as_engine_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ShellAutocompleter(...)."""
        d = self.data
        return {
            "db_path": d["db_path"],
            "max_suggestions": int(d["max_suggestions"]),
            "cache_ttl": float(d["cache_ttl"]),
            "environment_ttl": float(d["environment_ttl"]),
            "latency_budget": float(d["latency_budget_ms"]) / 1000.0,
            "probe_timeout": float(d["probe_timeout"]),
            "ranker_preset": d["ranker_preset"],
            "weights": self.weights(),
            "analysis_interval": float(d["analysis_interval"]),
            "history_window": int(d["history_window"]),
        }
