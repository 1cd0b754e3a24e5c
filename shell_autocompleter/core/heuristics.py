# shell_autocompleter/core/heuristics.py
"""
Static rule tables used by the heuristic generator and the error-correction analyzer.

 - KNOWN_COMMANDS: command names offered at command position
 - SUBCOMMANDS: first-argument completions for tools with a subcommand interface
 - GENERIC_FLAGS / LS_OPTIONS: flag completions when the word under the cursor starts with "-"
 - FILE_ASSOCIATIONS: extensions a command usually operates on
 - DIRECTORY_COMMANDS / COMMON_DIRECTORIES: directory-name completions
 - COMMON_TYPOS: frequent misspellings and their fix
 - levenshtein_with_cutoff / closest_commands: typo-tolerant lookup with an early exit
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

KNOWN_COMMANDS: Tuple[str, ...] = (
    "ls", "ll", "cd", "pwd", "mkdir", "rmdir", "rm", "cp", "mv", "touch", "ln",
    "cat", "less", "more", "head", "tail", "grep", "find", "sed", "awk", "sort", "uniq", "wc",
    "ps", "top", "htop", "kill", "pkill", "df", "du", "free", "uname", "whoami",
    "git", "npm", "node", "python", "python3", "pip", "make", "gcc", "javac",
    "curl", "wget", "ssh", "scp", "rsync", "tar", "unzip", "gunzip",
    "vim", "nano", "code", "chmod", "chown", "sudo", "echo", "export", "env", "history",
    "systemctl", "service", "journalctl", "docker", "kubectl", "helm",
)

SUBCOMMANDS: Dict[str, Tuple[str, ...]] = {
    "git": ("status", "add", "commit", "push", "pull", "checkout", "branch", "merge",
            "rebase", "log", "fetch", "clone", "stash", "diff", "reset", "tag"),
    "docker": ("ps", "images", "run", "build", "stop", "rm", "rmi", "exec", "logs",
               "pull", "push", "compose", "network", "volume"),
    "npm": ("install", "run", "test", "start", "build", "init", "publish", "update", "uninstall", "ci"),
    "kubectl": ("get", "describe", "apply", "delete", "logs", "exec", "create", "edit",
                "rollout", "port-forward", "config"),
    "systemctl": ("status", "start", "stop", "restart", "reload", "enable", "disable",
                  "daemon-reload", "list-units"),
    "make": ("all", "build", "test", "install", "clean", "check", "run"),
    "pip": ("install", "uninstall", "list", "show", "freeze", "download", "--upgrade"),
}

# Follow-ups most people run after the bare tool name, in order of preference.
PREFERRED_SUBCOMMANDS: Dict[str, Tuple[str, ...]] = {
    "git": ("status", "commit", "push", "pull", "branch"),
    "docker": ("ps", "build", "run", "images", "logs"),
}

GENERIC_FLAGS: Tuple[str, ...] = ("-h", "--help", "-v", "--version")
GENERIC_FLAG_SCORE = 0.7

LS_OPTIONS: Tuple[str, ...] = ("-l", "-la", "-lh", "-lt", "-ltr", "-a", "-R")

COMMON_VARIABLES: Tuple[str, ...] = (
    "HOME", "PATH", "USER", "SHELL", "PWD", "LANG", "TERM", "DISPLAY", "EDITOR", "PAGER", "TMPDIR",
)

FILE_COMMANDS = frozenset({"cat", "vim", "nano", "less", "more", "tail", "head", "cp", "mv", "rm", "code"})

FILE_ASSOCIATIONS: Dict[str, Tuple[str, ...]] = {
    "vim": (".txt", ".md", ".json", ".yaml", ".yml", ".conf"),
    "nano": (".txt", ".md", ".json", ".yaml", ".yml", ".conf"),
    "code": (".js", ".ts", ".py", ".json", ".md", ".html", ".css"),
    "cat": (".txt", ".md", ".json", ".log", ".conf"),
    "less": (".txt", ".md", ".log"),
    "tail": (".log",),
    "gcc": (".c", ".h"),
    "javac": (".java",),
    "python": (".py",),
    "python3": (".py",),
    "node": (".js", ".mjs"),
    "tar": (".tar", ".tar.gz", ".tgz"),
    "unzip": (".zip",),
    "gunzip": (".gz",),
}

DIRECTORY_COMMANDS = frozenset({"cd", "ls", "mkdir", "rmdir", "cp", "mv"})

COMMON_DIRECTORIES: Tuple[str, ...] = (
    "src/", "dist/", "build/", "docs/", "test/", "tests/", "config/", "scripts/",
    "node_modules/", "target/", "bin/", "lib/",
)

# Commands whose arguments name running processes.
PROCESS_COMMANDS = frozenset({"kill", "pkill", "killall", "pgrep"})

COMMON_TYPOS: Dict[str, str] = {
    "gti": "git",
    "sl": "ls",
    "grpe": "grep",
    "pythno": "python",
    "mkidr": "mkdir",
    "rmd": "rm -d",
    "cta": "cat",
    "lesss": "less",
    "cd..": "cd ..",
    "gitp": "git push",
    "gitc": "git commit",
    "dokcer": "docker",
    "suod": "sudo",
}

MULTI_PART_EXTENSIONS: Tuple[str, ...] = (".tar.gz", ".tar.bz2", ".tar.xz")


def extension_of(word: str) -> Optional[str]:
    """Lower-cased extension of a path-like word (".tar.gz" style suffixes kept whole)."""
    base = word.rstrip("/").rsplit("/", 1)[-1].lower()
    if not base or base.startswith("-"):
        return None
    for ext in MULTI_PART_EXTENSIONS:
        if base.endswith(ext) and len(base) > len(ext):
            return ext
    dot = base.rfind(".")
    if dot <= 0 or dot == len(base) - 1:
        return None
    return base[dot:]


def levenshtein_with_cutoff(a: str, b: str, max_dist: Optional[int] = None) -> int:
    """
    Edit distance between a and b. With max_dist set, stops as soon as every cell of a row
    exceeds it and returns max_dist + 1.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    la, lb = len(a), len(b)
    if max_dist is not None and la - lb > max_dist:
        return max_dist + 1
    if lb == 0:
        return la

    prev = list(range(lb + 1))
    for i in range(1, la + 1):
        cur = [i] + [0] * lb
        row_min = cur[0]
        ca = a[i - 1]
        for j in range(1, lb + 1):
            cost = 0 if ca == b[j - 1] else 1
            cur[j] = min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost)
            if cur[j] < row_min:
                row_min = cur[j]
        if max_dist is not None and row_min > max_dist:
            return max_dist + 1
        prev = cur
    return prev[lb]


def closest_commands(word: str,
                     candidates: Iterable[str] = KNOWN_COMMANDS,
                     max_dist: int = 2) -> List[Tuple[str, int]]:
    """(command, distance) pairs within max_dist, closest first, ties alphabetical."""
    w = word.strip().lower()
    if not w:
        return []
    out = []
    for cand in set(candidates):
        if cand == w:
            continue
        d = levenshtein_with_cutoff(w, cand, max_dist)
        if d <= max_dist:
            out.append((cand, d))
    out.sort(key=lambda item: (item[1], item[0]))
    return out


def fix_typo(command: str) -> Optional[str]:
    """Apply COMMON_TYPOS to the first word; None when nothing changes."""
    stripped = command.strip()
    if stripped in COMMON_TYPOS:
        return COMMON_TYPOS[stripped]
    head, sep, rest = stripped.partition(" ")
    fix = COMMON_TYPOS.get(head)
    if fix is None:
        return None
    return fix + sep + rest
