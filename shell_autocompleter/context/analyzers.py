# shell_autocompleter/context/analyzers.py
"""
Pattern analyzers - incremental learners fed by every executed command.

 - ArgumentAnalyzer        per command name: literal arguments, frequency, rolling success rate
 - DirectoryAnalyzer       per working directory: full commands run there
 - FileTypeAnalyzer        per file extension: command names used on such files
 - ErrorCorrectionAnalyzer per failed command: corrections derived from the error output

Common surface:
    update_pattern(result) -> keys touched
    get_patterns(key)      -> ranked list (frequency desc, then key asc)
    prune(older_than)      -> keys changed by the age-based cleanup
    snapshot(key) / load(key, payload) for pattern_state persistence

Each analyzer guards its maps with its own lock; callers never lock.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from shell_autocompleter.core import heuristics
from shell_autocompleter.core.parser import CommandParser, simple_commands, unquote
from shell_autocompleter.core.types import (
    ArgumentPattern,
    CommandKind,
    DirectoryPattern,
    ErrorCorrectionPattern,
    ExecutionResult,
    FileTypePattern,
)
from shell_autocompleter.storage.database import from_ts, to_ts

logger = logging.getLogger(__name__)


def normalize_cwd(cwd: Optional[str]) -> Optional[str]:
    if not cwd:
        return None
    cwd = cwd.strip()
    if len(cwd) > 1:
        cwd = cwd.rstrip("/") or "/"
    return cwd or None


def _ranked(counts: Dict[str, int]) -> List[Tuple[str, int]]:
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))


class _Analyzer:
    kind = ""

    def __init__(self, parser: Optional[CommandParser] = None):
        self.parser = parser or CommandParser()
        self._lock = threading.Lock()

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._store())

    def _store(self) -> Dict[str, Any]:
        raise NotImplementedError


# -------------------------
# Arguments
# -------------------------
class ArgumentAnalyzer(_Analyzer):
    kind = "argument"

    def __init__(self, parser: Optional[CommandParser] = None):
        super().__init__(parser)
        self._patterns: Dict[str, Dict[str, ArgumentPattern]] = {}

    def _store(self):
        return self._patterns

    def update_pattern(self, result: ExecutionResult) -> List[str]:
        touched = []
        parsed = self.parser.parse(result.command)
        if not parsed.ok:
            return touched
        with self._lock:
            for cmd in simple_commands(parsed):
                values = [unquote(a) for a in cmd.args if a]
                if not values:
                    continue
                per_cmd = self._patterns.setdefault(cmd.name, {})
                for v in values:
                    p = per_cmd.get(v)
                    if p is None:
                        p = per_cmd[v] = ArgumentPattern(cmd.name, v, 0, result.timestamp, 1.0)
                    s = 1.0 if result.success else 0.0
                    p.success_rate = (p.success_rate * p.frequency + s) / (p.frequency + 1)
                    p.frequency += 1
                    p.last_used = max(p.last_used, result.timestamp)
                touched.append(cmd.name)
        return sorted(set(touched))

    def get_patterns(self, key: str) -> List[ArgumentPattern]:
        with self._lock:
            items = list(self._patterns.get(key, {}).values())
        return sorted(items, key=lambda p: (-p.frequency, p.value))

    def prune(self, older_than: datetime) -> List[str]:
        changed = []
        with self._lock:
            for name in list(self._patterns):
                per_cmd = self._patterns[name]
                stale = [v for v, p in per_cmd.items() if p.last_used < older_than]
                for v in stale:
                    del per_cmd[v]
                if stale:
                    changed.append(name)
                if not per_cmd:
                    del self._patterns[name]
        return changed

    def snapshot(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            per_cmd = self._patterns.get(key)
            if not per_cmd:
                return None
            return {v: {"frequency": p.frequency, "last_used": to_ts(p.last_used),
                        "success_rate": p.success_rate} for v, p in per_cmd.items()}

    def load(self, key: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._patterns[key] = {
                v: ArgumentPattern(key, v, int(d.get("frequency", 0)), from_ts(d.get("last_used")),
                                   float(d.get("success_rate", 1.0)))
                for v, d in payload.items()
            }


# -------------------------
# Directories
# -------------------------
class DirectoryAnalyzer(_Analyzer):
    kind = "directory"

    def __init__(self, parser: Optional[CommandParser] = None):
        super().__init__(parser)
        self._patterns: Dict[str, DirectoryPattern] = {}

    def _store(self):
        return self._patterns

    def update_pattern(self, result: ExecutionResult) -> List[str]:
        cwd = normalize_cwd(result.cwd)
        command = result.command.strip()
        if not cwd or not command:
            return []
        with self._lock:
            p = self._patterns.get(cwd)
            if p is None:
                p = self._patterns[cwd] = DirectoryPattern(cwd, {}, result.timestamp)
            p.command_frequency[command] = p.command_frequency.get(command, 0) + 1
            p.last_used = max(p.last_used, result.timestamp)
        return [cwd]

    def get_patterns(self, key: str) -> List[Tuple[str, int]]:
        cwd = normalize_cwd(key)
        with self._lock:
            p = self._patterns.get(cwd) if cwd else None
            counts = dict(p.command_frequency) if p else {}
        return _ranked(counts)

    def prune(self, older_than: datetime) -> List[str]:
        with self._lock:
            stale = [k for k, p in self._patterns.items() if p.last_used < older_than]
            for k in stale:
                del self._patterns[k]
        return stale

    def snapshot(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            p = self._patterns.get(key)
            if p is None:
                return None
            return {"commands": dict(p.command_frequency), "last_used": to_ts(p.last_used)}

    def load(self, key: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._patterns[key] = DirectoryPattern(
                key, {c: int(n) for c, n in payload.get("commands", {}).items()}, from_ts(payload.get("last_used")))


# -------------------------
# File types
# -------------------------
class FileTypeAnalyzer(_Analyzer):
    kind = "file_type"

    def __init__(self, parser: Optional[CommandParser] = None):
        super().__init__(parser)
        self._patterns: Dict[str, FileTypePattern] = {}

    def _store(self):
        return self._patterns

    def update_pattern(self, result: ExecutionResult) -> List[str]:
        parsed = self.parser.parse(result.command)
        if not parsed.ok:
            return []
        touched = set()
        with self._lock:
            for cmd in simple_commands(parsed):
                for arg in cmd.args:
                    ext = heuristics.extension_of(unquote(arg))
                    if not ext:
                        continue
                    p = self._patterns.get(ext)
                    if p is None:
                        p = self._patterns[ext] = FileTypePattern(ext, {}, result.timestamp)
                    p.command_frequency[cmd.name] = p.command_frequency.get(cmd.name, 0) + 1
                    p.last_used = max(p.last_used, result.timestamp)
                    touched.add(ext)
        return sorted(touched)

    def get_patterns(self, key: str) -> List[Tuple[str, int]]:
        ext = key.lower() if key.startswith(".") else heuristics.extension_of(key)
        with self._lock:
            p = self._patterns.get(ext) if ext else None
            counts = dict(p.command_frequency) if p else {}
        return _ranked(counts)

    def prune(self, older_than: datetime) -> List[str]:
        with self._lock:
            stale = [k for k, p in self._patterns.items() if p.last_used < older_than]
            for k in stale:
                del self._patterns[k]
        return stale

    def snapshot(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            p = self._patterns.get(key)
            if p is None:
                return None
            return {"commands": dict(p.command_frequency), "last_used": to_ts(p.last_used)}

    def load(self, key: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._patterns[key] = FileTypePattern(
                key, {c: int(n) for c, n in payload.get("commands", {}).items()}, from_ts(payload.get("last_used")))


# -------------------------
# Error corrections
# -------------------------
_NOT_FOUND = re.compile(r"command not found|not found|unknown command", re.IGNORECASE)
_PERMISSION = re.compile(r"permission denied|operation not permitted", re.IGNORECASE)
_NO_SUCH_FILE = re.compile(r"no such file or directory", re.IGNORECASE)
_BAD_OPTION = re.compile(
    r"(?:invalid|unrecognized|illegal|unknown) option(?:\s+--)?\s*[`'\"‘]?(-{0,2}[\w-]+)", re.IGNORECASE)
_NOT_A_DIR = re.compile(r"not a directory", re.IGNORECASE)
_IS_A_DIR = re.compile(r"is a directory", re.IGNORECASE)

FILE_VIEWER = "less"
VIEWER_COMMANDS = frozenset({"cat", "less", "more", "head", "tail", "vim", "nano"})


class ErrorCorrectionAnalyzer(_Analyzer):
    kind = "error_correction"

    def __init__(self, parser: Optional[CommandParser] = None):
        super().__init__(parser)
        # original command -> corrected command -> pattern
        self._patterns: Dict[str, Dict[str, ErrorCorrectionPattern]] = {}
        self._successes: Dict[Tuple[str, str], int] = {}

    def _store(self):
        return self._patterns

    def correct(self, command: str, output: str) -> Optional[str]:
        """Correction for a failed `command` given its error output, or None."""
        command = command.strip()
        parsed = self.parser.parse(command)
        if parsed.kind != CommandKind.COMMAND or not parsed.name:
            return None

        fix: Optional[str] = None
        if _PERMISSION.search(output):
            if parsed.name != "sudo":
                fix = "sudo " + command
        elif _BAD_OPTION.search(output):
            fix = self._drop_option(command, parsed.words, _BAD_OPTION.search(output).group(1))
        elif _NOT_A_DIR.search(output) and parsed.name == "cd" and parsed.args:
            fix = f"{FILE_VIEWER} {parsed.args[0]}"
        elif _IS_A_DIR.search(output) and parsed.name in VIEWER_COMMANDS and parsed.args:
            fix = f"cd {parsed.args[-1]}"
        elif _NO_SUCH_FILE.search(output):
            fix = self._fix_paths(parsed.name, parsed.words)
        elif _NOT_FOUND.search(output):
            fix = heuristics.fix_typo(command)
            if fix is None:
                close = heuristics.closest_commands(parsed.name)
                if close:
                    fix = " ".join([close[0][0]] + parsed.words)
        if fix is None or fix.strip() == command:
            return None
        return fix.strip()

    @staticmethod
    def _fix_paths(name: str, words: List[str]) -> Optional[str]:
        fixed = []
        for w in words:
            if "/" in w and not w.startswith("-"):
                w = re.sub(r"/{2,}", "/", w)
                if len(w) > 1:
                    w = w.rstrip("/") or "/"
            fixed.append(w)
        if fixed == words:
            return None
        return " ".join([name] + fixed)

    @staticmethod
    def _drop_option(command: str, words: List[str], bad: str) -> Optional[str]:
        bare = bad.lstrip("-")
        head = command.split()[0]
        kept = [w for w in words if w not in (bad, "-" + bare, "--" + bare)]
        if len(kept) == len(words) and len(bare) == 1:
            # combined short flags such as -lZ
            kept = []
            for w in words:
                if w.startswith("-") and not w.startswith("--") and bare in w[1:]:
                    w = w.replace(bare, "")
                    if w == "-":
                        continue
                kept.append(w)
        if kept == words:
            return None
        return " ".join([head] + kept)

    def update_pattern(self, result: ExecutionResult) -> List[str]:
        command = result.command.strip()
        if not command:
            return []
        if result.success:
            return self._credit(command)
        fix = self.correct(command, result.output_text)
        if fix is None:
            return []
        with self._lock:
            per_orig = self._patterns.setdefault(command, {})
            p = per_orig.get(fix)
            if p is None:
                p = per_orig[fix] = ErrorCorrectionPattern(command, fix, 0, 0.0, result.timestamp)
            p.frequency += 1
            p.last_used = max(p.last_used, result.timestamp)
            p.success_rate = self._rate(command, fix, p.frequency)
        logger.debug("learned correction %r -> %r", command, fix)
        return [command]

    def _rate(self, original: str, corrected: str, frequency: int) -> float:
        return min(1.0, self._successes.get((original, corrected), 0) / max(1, frequency))

    def _credit(self, command: str) -> List[str]:
        """A successful run of a suggested correction raises that correction's success rate."""
        touched = []
        with self._lock:
            for original, per_orig in self._patterns.items():
                p = per_orig.get(command)
                if p is None:
                    continue
                key = (original, command)
                self._successes[key] = self._successes.get(key, 0) + 1
                p.success_rate = self._rate(original, command, p.frequency)
                touched.append(original)
        return touched

    def get_patterns(self, key: str) -> List[ErrorCorrectionPattern]:
        key = key.strip()
        if not key:
            return []
        with self._lock:
            items = [p for orig, per in self._patterns.items() if orig.startswith(key) for p in per.values()]
        return sorted(items, key=lambda p: (-p.frequency, p.original_command, p.corrected_command))

    def prune(self, older_than: datetime) -> List[str]:
        changed = []
        with self._lock:
            for orig in list(self._patterns):
                per = self._patterns[orig]
                stale = [c for c, p in per.items() if p.last_used < older_than]
                for c in stale:
                    del per[c]
                    self._successes.pop((orig, c), None)
                if stale:
                    changed.append(orig)
                if not per:
                    del self._patterns[orig]
        return changed

    def snapshot(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            per = self._patterns.get(key)
            if not per:
                return None
            return {c: {"frequency": p.frequency, "successes": self._successes.get((key, c), 0),
                        "last_used": to_ts(p.last_used)} for c, p in per.items()}

    def load(self, key: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            per = {}
            for c, d in payload.items():
                freq = int(d.get("frequency", 0))
                self._successes[(key, c)] = int(d.get("successes", 0))
                per[c] = ErrorCorrectionPattern(key, c, freq, self._rate(key, c, freq), from_ts(d.get("last_used")))
            self._patterns[key] = per


def default_analyzers(parser: Optional[CommandParser] = None) -> Dict[str, _Analyzer]:
    parser = parser or CommandParser()
    return {
        a.kind: a for a in (
            ArgumentAnalyzer(parser),
            DirectoryAnalyzer(parser),
            FileTypeAnalyzer(parser),
            ErrorCorrectionAnalyzer(parser),
        )
    }
