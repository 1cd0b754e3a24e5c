# shell_autocompleter/core/types.py
"""
Data model shared by every component of the completion engine.

 - parser output (ParsedCommand, Redirect)
 - suggestions returned to the UI (CompletionSuggestion)
 - persisted history rows (HistoryRecord, CommandRelation)
 - learned patterns (ArgumentPattern, DirectoryPattern, FileTypePattern, ErrorCorrectionPattern)
 - request/execution inputs (SessionState, ExecutionResult) and the assembled CompletionContext
 - mined rules (Rule, RuleVersion)

Every optional field has an explicit default so callers never have to guess a shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class CommandKind(str, Enum):
    PROGRAM = "program"
    COMMAND = "command"
    PIPELINE = "pipeline"
    ERROR = "error"
    UNKNOWN = "unknown"


class SuggestionSource(str, Enum):
    HISTORY = "history"
    HEURISTIC = "heuristic"
    REMOTE_PROBE = "remote-probe"


class RelationType(str, Enum):
    SEQUENCE = "sequence"
    SIMILAR = "similar"
    VARIANT = "variant"


class RuleType(str, Enum):
    PARAMETER = "parameter"
    CONTEXT = "context"
    SEQUENCE = "sequence"


class VersionStatus(str, Enum):
    ACTIVE = "active"
    ROLLBACK = "rollback"
    DEPRECATED = "deprecated"


# Parser output ---------------------------------------------------------------

@dataclass(frozen=True)
class Redirect:
    operator: str
    target: str = ""
    fd: Optional[int] = None


@dataclass
class ParsedCommand:
    """
    Structured view of one line of input.

    For pipelines and programs, `commands` holds the stages/items and the top-level
    name/args/options/redirects mirror the last simple command (the one being typed).
    """
    kind: CommandKind
    name: str = ""
    args: List[str] = field(default_factory=list)
    options: List[str] = field(default_factory=list)
    redirects: List[Redirect] = field(default_factory=list)
    raw: str = ""
    message: Optional[str] = None
    commands: List["ParsedCommand"] = field(default_factory=list)
    operators: List[str] = field(default_factory=list)
    assignments: List[str] = field(default_factory=list)
    words: List[str] = field(default_factory=list)  # everything after the name, in order
    has_trailing_space: bool = False
    open_quote: Optional[str] = None
    redirect_pending: bool = False

    @property
    def ok(self) -> bool:
        return self.kind not in (CommandKind.ERROR, CommandKind.UNKNOWN)

    @property
    def last_word(self) -> str:
        """The word under the cursor, "" when the input ends with whitespace."""
        if self.redirect_pending and self.redirects:
            return "" if self.has_trailing_space else self.redirects[-1].target
        if self.has_trailing_space:
            return ""
        if self.words:
            return self.words[-1]
        return self.name

    @property
    def at_command_position(self) -> bool:
        if not self.name:
            return True
        return not self.words and not self.redirects and not self.has_trailing_space


# Suggestions -----------------------------------------------------------------

@dataclass(frozen=True)
class CompletionSuggestion:
    full_command: str
    suggestion: str
    source: SuggestionSource
    score: float = 0.0

    def with_score(self, score: float) -> "CompletionSuggestion":
        return CompletionSuggestion(self.full_command, self.suggestion, self.source, score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "full_command": self.full_command,
            "suggestion": self.suggestion,
            "source": self.source.value,
            "score": self.score,
        }


# Persisted rows --------------------------------------------------------------

@dataclass
class HistoryRecord:
    id: int
    command: str
    context: str = ""
    frequency: int = 1
    last_used: datetime = field(default_factory=datetime.now)
    success: bool = True
    outputs: List[str] = field(default_factory=list)


@dataclass
class CommandRelation:
    from_id: int
    to_id: int
    relation_type: RelationType = RelationType.SEQUENCE
    frequency: int = 1
    success_rate: float = 1.0
    avg_time_gap: float = 0.0
    last_used: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None


# Learned patterns ------------------------------------------------------------

@dataclass
class ArgumentPattern:
    command_name: str
    value: str
    frequency: int = 0
    last_used: datetime = field(default_factory=datetime.now)
    success_rate: float = 1.0


@dataclass
class DirectoryPattern:
    path: str
    command_frequency: Dict[str, int] = field(default_factory=dict)
    last_used: datetime = field(default_factory=datetime.now)


@dataclass
class FileTypePattern:
    extension: str
    command_frequency: Dict[str, int] = field(default_factory=dict)
    last_used: datetime = field(default_factory=datetime.now)


@dataclass
class ErrorCorrectionPattern:
    original_command: str
    corrected_command: str
    frequency: int = 0
    success_rate: float = 0.0
    last_used: datetime = field(default_factory=datetime.now)


@dataclass
class PatternBundle:
    """Analyzer output relevant to one request."""
    arguments: List[ArgumentPattern] = field(default_factory=list)
    directory_commands: List[Tuple[str, int]] = field(default_factory=list)  # (command, count)
    file_type_commands: Dict[str, List[Tuple[str, int]]] = field(default_factory=dict)  # ext -> ranked
    corrections: List[ErrorCorrectionPattern] = field(default_factory=list)


# Request / execution inputs --------------------------------------------------

@dataclass
class SessionState:
    session_id: Optional[str] = None
    cwd: str = "~"
    shell_type: str = "bash"
    field_id: str = "default"

    @property
    def has_session(self) -> bool:
        return self.session_id is not None


@dataclass
class ExecutionResult:
    command: str
    outputs: List[str] = field(default_factory=list)
    exit_code: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    cwd: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output_text(self) -> str:
        return "\n".join(self.outputs)


@dataclass
class ProbeResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    available: bool = True
    reason: Optional[str] = None

    @classmethod
    def unavailable(cls, reason: str) -> "ProbeResult":
        return cls(exit_code=-1, available=False, reason=reason)

    @property
    def ok(self) -> bool:
        return self.available and self.exit_code == 0


@dataclass
class EnvironmentState:
    cwd: str = "~"
    is_git_repo: bool = False
    recent_files: List[str] = field(default_factory=list)
    running_processes: List[str] = field(default_factory=list)


@dataclass
class ChainEntry:
    next_commands: Dict[str, int] = field(default_factory=dict)
    frequency: int = 0
    last_used: datetime = field(default_factory=datetime.now)


@dataclass
class UserPatternsSnapshot:
    command_chains: Dict[str, ChainEntry] = field(default_factory=dict)
    time_patterns: Dict[int, Dict[str, int]] = field(default_factory=dict)
    context_patterns: Dict[str, Dict[str, int]] = field(default_factory=dict)


@dataclass
class CompletionContext:
    input: str
    cursor_position: int
    parsed: ParsedCommand
    session: SessionState
    recent_history: List[HistoryRecord] = field(default_factory=list)
    environment: EnvironmentState = field(default_factory=EnvironmentState)
    user_patterns: UserPatternsSnapshot = field(default_factory=UserPatternsSnapshot)
    patterns: PatternBundle = field(default_factory=PatternBundle)
    last_command: Optional[str] = None
    now: datetime = field(default_factory=datetime.now)

    @property
    def typed(self) -> str:
        """Input up to the cursor."""
        return self.input[: self.cursor_position]


# Rules -----------------------------------------------------------------------

@dataclass
class RulePerformance:
    usage_count: int = 0
    success_count: int = 0
    adoption_count: int = 0
    total_latency: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.success_count / self.usage_count if self.usage_count else 0.0

    @property
    def adoption_rate(self) -> float:
        return self.adoption_count / self.usage_count if self.usage_count else 0.0

    @property
    def average_latency(self) -> float:
        return self.total_latency / self.usage_count if self.usage_count else 0.0


@dataclass
class Rule:
    id: str
    type: RuleType
    pattern: str
    weight: float = 0.5
    confidence: float = 0.5
    version: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)
    performance: RulePerformance = field(default_factory=RulePerformance)


@dataclass
class RuleVersion:
    version: int
    changes: List[Dict[str, Any]] = field(default_factory=list)
    status: VersionStatus = VersionStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)
