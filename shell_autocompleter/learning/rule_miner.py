# shell_autocompleter/learning/rule_miner.py
"""
RuleMiner - turns usage events into candidate completion rules.

Events come from completion_usage: executions ({"event": "execution", "cwd", "previous"}) and
suggestion lists shown to the user ({"event": "completion", ...} with is_selected on the accepted one).
Only executions and accepted suggestions count as evidence.

Rule kinds and their patterns:
  parameter  "<command name> <first argument>"     confidence = pair count / command count
  context    "<full command> @ <cwd>"              confidence = pair count / commands run in cwd
  sequence   "<previous> && <next>"                confidence = pair count / times previous was followed

Counts survive between cycles through to_state()/load_state(); the tables are capped and the
rarest entries are dropped first.
"""

from __future__ import annotations

import base64
import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shell_autocompleter.core.parser import CommandParser, unquote
from shell_autocompleter.core.types import CommandKind, Rule, RuleType

logger = logging.getLogger(__name__)

CONTEXT_SEP = " @ "
SEQUENCE_SEP = " && "


def rule_id(rule_type: RuleType, pattern: str) -> str:
    encoded = base64.urlsafe_b64encode(pattern.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{rule_type.value}_{encoded}"


def parameter_pattern(name: str, argument: str) -> str:
    return f"{name} {argument}"


def context_pattern(command: str, cwd: str) -> str:
    return f"{command}{CONTEXT_SEP}{cwd}"


def sequence_pattern(previous: str, following: str) -> str:
    return f"{previous}{SEQUENCE_SEP}{following}"


def _first_argument(parser: CommandParser, command: str) -> Optional[Tuple[str, str]]:
    parsed = parser.parse(command)
    if parsed.kind != CommandKind.COMMAND or not parsed.name or not parsed.args:
        return None
    return parsed.name, unquote(parsed.args[0])


def rule_matches(rule: Rule, command: str, cwd: Optional[str] = None, previous: Optional[str] = None,
                 parser: Optional[CommandParser] = None) -> bool:
    """Whether `command` (run in cwd, after previous) is what `rule` predicts."""
    if rule.type == RuleType.PARAMETER:
        pair = _first_argument(parser or CommandParser(), command)
        return pair is not None and parameter_pattern(*pair) == rule.pattern
    if rule.type == RuleType.CONTEXT:
        return bool(cwd) and context_pattern(command, cwd) == rule.pattern
    if rule.type == RuleType.SEQUENCE:
        return bool(previous) and sequence_pattern(previous, command) == rule.pattern
    return False


def match_patterns(command: str, cwd: Optional[str] = None, previous: Optional[str] = None,
                   parser: Optional[CommandParser] = None) -> Dict[RuleType, str]:
    """The pattern each rule kind would need to predict `command`; one parse per call."""
    out: Dict[RuleType, str] = {}
    pair = _first_argument(parser or CommandParser(), command)
    if pair is not None:
        out[RuleType.PARAMETER] = parameter_pattern(*pair)
    if cwd:
        out[RuleType.CONTEXT] = context_pattern(command, cwd)
    if previous:
        out[RuleType.SEQUENCE] = sequence_pattern(previous, command)
    return out


class RuleMiner:
    def __init__(self, min_frequency: int = 3, min_confidence: float = 0.6, max_tracked: int = 5000,
                 parser: Optional[CommandParser] = None):
        self.min_frequency = int(min_frequency)
        self.min_confidence = float(min_confidence)
        self.max_tracked = int(max_tracked)
        self.parser = parser or CommandParser()
        self.pairs: Dict[str, Counter] = {t.value: Counter() for t in RuleType}
        self.totals: Dict[str, Counter] = {t.value: Counter() for t in RuleType}
        self.blocked: Dict[str, int] = {}
        self._last_accepted: Optional[str] = None

    # -------------------------
    # Evidence
    # -------------------------
    def observe(self, event: Dict[str, Any]) -> bool:
        """Count one completion_usage row. Returns False when the row carries no evidence."""
        ctx = event.get("context") or {}
        kind = ctx.get("event", "completion")
        command = (event.get("suggestion") or "").strip()
        if not command:
            return False
        if kind == "execution":
            if ctx.get("exit_code", 0) not in (0, None):
                return False
            previous = ctx.get("previous")
        elif event.get("is_selected"):
            previous = self._last_accepted
            self._last_accepted = command
        else:
            return False
        self._count(command, ctx.get("cwd"), previous)
        return True

    def observe_all(self, events: Iterable[Dict[str, Any]]) -> int:
        return sum(1 for ev in events if self.observe(ev))

    def _count(self, command: str, cwd: Optional[str], previous: Optional[str]) -> None:
        pair = _first_argument(self.parser, command)
        if pair is not None:
            self.pairs[RuleType.PARAMETER.value][parameter_pattern(*pair)] += 1
            self.totals[RuleType.PARAMETER.value][pair[0]] += 1
        if cwd:
            self.pairs[RuleType.CONTEXT.value][context_pattern(command, cwd)] += 1
            self.totals[RuleType.CONTEXT.value][cwd] += 1
        if previous and previous != command:
            self.pairs[RuleType.SEQUENCE.value][sequence_pattern(previous, command)] += 1
            self.totals[RuleType.SEQUENCE.value][previous] += 1
        self._cap()

    def _cap(self) -> None:
        for table in list(self.pairs.values()) + list(self.totals.values()):
            if len(table) > self.max_tracked:
                for key, _ in table.most_common()[self.max_tracked:]:
                    del table[key]

    # -------------------------
    # Candidates
    # -------------------------
    @staticmethod
    def _total_key(rule_type: RuleType, pattern: str) -> str:
        if rule_type == RuleType.PARAMETER:
            return pattern.split(" ", 1)[0]
        if rule_type == RuleType.CONTEXT:
            return pattern.rsplit(CONTEXT_SEP, 1)[1]
        return pattern.split(SEQUENCE_SEP, 1)[0]

    def candidates(self) -> List[Rule]:
        out: List[Rule] = []
        for rule_type in RuleType:
            pairs = self.pairs[rule_type.value]
            totals = self.totals[rule_type.value]
            for pattern, count in pairs.items():
                if count < self.min_frequency:
                    continue
                total = totals.get(self._total_key(rule_type, pattern), 0)
                confidence = min(1.0, count / total) if total else 0.0
                if confidence < self.min_confidence:
                    continue
                rid = rule_id(rule_type, pattern)
                if rid in self.blocked and count < 2 * self.blocked[rid]:
                    continue
                weight = 0.5 * confidence + 0.5 * min(count / 20.0, 1.0)
                out.append(Rule(
                    id=rid,
                    type=rule_type,
                    pattern=pattern,
                    weight=round(weight, 4),
                    confidence=round(confidence, 4),
                    metadata={"count": count, "total": total},
                ))
        out.sort(key=lambda r: r.id)
        return out

    def block(self, rid: str) -> None:
        """Keep a regressed rule out until its evidence doubles."""
        for rule_type in RuleType:
            if rid.startswith(rule_type.value + "_"):
                pattern = base64.urlsafe_b64decode(self._pad(rid[len(rule_type.value) + 1:])).decode("utf-8")
                self.blocked[rid] = max(1, self.pairs[rule_type.value].get(pattern, 0))
                return

    @staticmethod
    def _pad(text: str) -> str:
        return text + "=" * (-len(text) % 4)

    # -------------------------
    # Persistence
    # -------------------------
    def to_state(self) -> Dict[str, Any]:
        return {
            "pairs": {k: dict(v) for k, v in self.pairs.items()},
            "totals": {k: dict(v) for k, v in self.totals.items()},
            "blocked": dict(self.blocked),
            "last_accepted": self._last_accepted,
        }

    def load_state(self, state: Optional[Dict[str, Any]]) -> None:
        """Replace all counts with `state` (an empty state resets the miner)."""
        state = state or {}
        for k in self.pairs:
            self.pairs[k] = Counter({p: int(n) for p, n in (state.get("pairs", {}).get(k) or {}).items()})
            self.totals[k] = Counter({p: int(n) for p, n in (state.get("totals", {}).get(k) or {}).items()})
        self.blocked = {r: int(n) for r, n in (state.get("blocked") or {}).items()}
        self._last_accepted = state.get("last_accepted")
