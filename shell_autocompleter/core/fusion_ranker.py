# shell_autocompleter/core/fusion_ranker.py
"""
FusionRanker - blends per-candidate factors into one score and orders the list.

Factors (each in [0,1]):
 - base:        the generator's own score
 - frequency:   min(freq / 100, 1) from command_history
 - recency:     linear decay to 0 over 30 days since last use
 - prefix:      match quality of what was typed against the candidate
 - chain:       share of transitions from the previous command to this one
 - time:        share of this command in the current hour-of-day bucket
 - directory:   share of this command among commands run in the current directory
 - environment: +1/3 each for git-in-repo, file command on a recent file, process command on a live process
 - rule:        optional nudge from mined rules (served from memory)

Design notes:
 - weights come from a preset and can be overridden (tunable, renormalized to sum 1)
 - NumPy does the weighted sum on larger candidate sets
 - deterministic: score desc, suggestion text asc; scores rounded to 6 places
 - debug_contributions() explains a single score
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable, Dict, List, Optional

import numpy as np

from shell_autocompleter.context.user_patterns import share
from shell_autocompleter.core import heuristics
from shell_autocompleter.core.parser import CommandParser, unquote
from shell_autocompleter.core.protocols import FactorMap, RuleBoostProvider
from shell_autocompleter.core.types import CompletionContext, CompletionSuggestion, HistoryRecord

logger = logging.getLogger(__name__)

Weights = Dict[str, float]
HistoryLookup = Callable[[List[str]], Dict[str, HistoryRecord]]

FACTORS = ("base", "frequency", "recency", "prefix", "chain", "time", "directory", "environment", "rule")
RECENCY_DAYS = 30.0
NUMPY_THRESHOLD = 16

# Preset weight profiles
_PRESETS: Dict[str, Weights] = {
    "balanced":   {"base": 0.25, "frequency": 0.15, "recency": 0.10, "prefix": 0.15, "chain": 0.12,
                   "time": 0.05, "directory": 0.10, "environment": 0.05, "rule": 0.03},
    "history":    {"base": 0.20, "frequency": 0.25, "recency": 0.20, "prefix": 0.10, "chain": 0.10,
                   "time": 0.05, "directory": 0.05, "environment": 0.03, "rule": 0.02},
    "contextual": {"base": 0.20, "frequency": 0.08, "recency": 0.07, "prefix": 0.10, "chain": 0.20,
                   "time": 0.08, "directory": 0.17, "environment": 0.07, "rule": 0.03},
}


def preset_names() -> List[str]:
    return sorted(_PRESETS)


def _safe_normalize_weights(weights: Optional[Weights], preset: str = "balanced") -> Weights:
    base = dict(_PRESETS.get(preset, _PRESETS["balanced"]))
    if weights:
        for k, v in weights.items():
            if k not in FACTORS:
                logger.warning("ignoring unknown ranking factor %r", k)
                continue
            v = float(v)
            base[k] = v if math.isfinite(v) and v > 0 else 0.0
    s = sum(base.values()) or 1.0
    return {k: float(v) / s for k, v in base.items()}


def _clip(v: float) -> float:
    if not math.isfinite(v):
        return 0.0
    return max(0.0, min(1.0, float(v)))


# -------------------------
# Factor functions
# -------------------------
def frequency_factor(record: Optional[HistoryRecord]) -> float:
    return min(record.frequency / 100.0, 1.0) if record else 0.0


def recency_factor(record: Optional[HistoryRecord], now: datetime) -> float:
    if record is None:
        return 0.0
    days = max(0.0, (now - record.last_used).total_seconds() / 86400.0)
    return max(0.0, 1.0 - days / RECENCY_DAYS)


def prefix_factor(typed: str, candidate: str) -> float:
    if not typed:
        return 1.0
    if not candidate:
        return 0.0
    if candidate == typed:
        return 1.0
    ratio = min(1.0, len(typed) / len(candidate))
    if candidate.startswith(typed):
        return 0.8 + 0.2 * ratio
    if candidate.lower().startswith(typed.lower()):
        return 0.7 + 0.2 * ratio
    if typed.lower() in candidate.lower():
        return 0.4 + 0.2 * ratio
    d = heuristics.levenshtein_with_cutoff(typed.lower(), candidate[: len(typed)].lower(), 2)
    if d <= 2:
        return 0.3 - 0.1 * d
    return 0.0


class FusionRanker:
    """
    rank(candidates, context, topn) -> ranked, unique suggestions
    factors(candidate, context)     -> FactorMap for one candidate
    debug_contributions(candidate, context) -> weighted contribution per factor
    """

    def __init__(self,
                 preset: str = "balanced",
                 weights: Optional[Weights] = None,
                 history_lookup: Optional[HistoryLookup] = None,
                 rule_provider: Optional[RuleBoostProvider] = None,
                 topn: int = 8):
        if preset not in _PRESETS:
            logger.warning("unknown ranker preset %r, using balanced", preset)
            preset = "balanced"
        self.preset = preset
        self.weights = _safe_normalize_weights(weights, preset)
        self.history_lookup = history_lookup
        self.rule_provider = rule_provider
        self.topn = int(topn)
        self.parser = CommandParser()

    def set_weights(self, weights: Optional[Weights] = None, preset: Optional[str] = None) -> None:
        if preset is not None:
            self.preset = preset if preset in _PRESETS else "balanced"
        self.weights = _safe_normalize_weights(weights, self.preset)

    # ---------------------------------
    # Factors
    # ---------------------------------
    def _records(self, candidates: List[CompletionSuggestion], context: CompletionContext) -> Dict[str, HistoryRecord]:
        records = {r.command: r for r in context.recent_history}
        missing = [c.full_command for c in candidates if c.full_command not in records]
        if missing and self.history_lookup is not None:
            try:
                records.update(self.history_lookup(missing))
            except Exception as e:
                logger.debug("history lookup failed during ranking: %s", e)
        return records

    def _environment_factor(self, full_command: str, context: CompletionContext) -> float:
        env = context.environment
        parsed = self.parser.parse(full_command)
        if not parsed.name:
            return 0.0
        args = [unquote(a) for a in parsed.args]
        bonus = 0.0
        if parsed.name == "git" and env.is_git_repo:
            bonus += 1.0 / 3.0
        if (parsed.name in heuristics.FILE_COMMANDS or parsed.name in heuristics.FILE_ASSOCIATIONS) and env.recent_files:
            recent = set(env.recent_files)
            if any(a in recent or a.lstrip("./") in recent for a in args):
                bonus += 1.0 / 3.0
        if parsed.name in heuristics.PROCESS_COMMANDS and env.running_processes:
            if any(a in env.running_processes for a in args):
                bonus += 1.0 / 3.0
        return min(1.0, bonus)

    def factors(self, candidate: CompletionSuggestion, context: CompletionContext,
                records: Optional[Dict[str, HistoryRecord]] = None) -> FactorMap:
        if records is None:
            records = self._records([candidate], context)
        full = candidate.full_command
        record = records.get(full)
        up = context.user_patterns
        chain_entry = up.command_chains.get(context.last_command or "")
        rule = 0.0
        if self.rule_provider is not None:
            try:
                rule = self.rule_provider.rule_boost(full, context)
            except Exception as e:
                logger.debug("rule boost failed: %s", e)
        return FactorMap(
            base=_clip(candidate.score),
            frequency=_clip(frequency_factor(record)),
            recency=_clip(recency_factor(record, context.now)),
            prefix=_clip(prefix_factor(context.typed.lstrip(), full)),
            chain=_clip(share(chain_entry.next_commands, full) if chain_entry else 0.0),
            time=_clip(share(up.time_patterns.get(context.now.hour, {}), full)),
            directory=_clip(share(dict(context.patterns.directory_commands), full)),
            environment=_clip(self._environment_factor(full, context)),
            rule=_clip(rule),
        )

    # ---------------------------------
    # Ranking
    # ---------------------------------
    def rank(self, candidates: List[CompletionSuggestion], context: CompletionContext,
             topn: Optional[int] = None) -> List[CompletionSuggestion]:
        if not candidates:
            return []
        topn = self.topn if topn is None else int(topn)
        records = self._records(candidates, context)
        rows = [self.factors(c, context, records) for c in candidates]
        feature_keys = list(self.weights.keys())

        if len(candidates) > NUMPY_THRESHOLD:
            A = np.array([[float(r.get(f, 0.0)) for f in feature_keys] for r in rows], dtype=float)
            w = np.array([self.weights[f] for f in feature_keys], dtype=float)
            scores = (A @ w).tolist()
        else:
            scores = []
            for r in rows:
                s = 0.0
                for f in feature_keys:
                    s += self.weights[f] * float(r.get(f, 0.0))
                scores.append(s)

        best: Dict[str, CompletionSuggestion] = {}
        for cand, sc in zip(candidates, scores):
            sc = round(_clip(sc), 6)
            cur = best.get(cand.suggestion)
            if cur is None or sc > cur.score or (sc == cur.score and cand.full_command < cur.full_command):
                best[cand.suggestion] = cand.with_score(sc)

        ranked = sorted(best.values(), key=lambda s: (-s.score, s.suggestion))
        return ranked[: max(0, topn)]

    # -----------------------------
    # Explainability
    # ------------------------------
    def debug_contributions(self, candidate: CompletionSuggestion, context: CompletionContext) -> Dict[str, float]:
        """Weighted contribution of every factor for one candidate, plus the final sum."""
        row = self.factors(candidate, context)
        out = {f: round(self.weights[f] * float(row.get(f, 0.0)), 6) for f in self.weights}
        out["final"] = round(sum(out.values()), 6)
        return out
