# shell_autocompleter/core/protocols.py
"""
Protocol interfaces for the collaborators of the completion engine.

The engine depends on these small Protocols rather than on concrete classes so tests can pass
stubs and the host application can plug in its own remote-session transport.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, runtime_checkable

from typing_extensions import TypedDict

from shell_autocompleter.core.types import (
    CompletionContext,
    CompletionSuggestion,
    ExecutionResult,
)


# Typed structures --------------------------------------------------------------

class FactorMap(TypedDict, total=False):
    """
    Per-candidate factor values in [0.0, 1.0], as consumed by FusionRanker.

    Example:
      {"base": 0.9, "frequency": 0.2, "recency": 0.7, "prefix": 1.0,
       "chain": 0.0, "time": 0.1, "directory": 0.0, "environment": 0.33}
    """
    base: float
    frequency: float
    recency: float
    prefix: float
    chain: float
    time: float
    directory: float
    environment: float


# Protocols ----------------------------------------------------------------------

@runtime_checkable
class CommandOutput(Protocol):
    stdout: str
    stderr: str
    exit_code: int


@runtime_checkable
class RemoteSession(Protocol):
    """
    The remote-shell capability the engine consumes. Connection lifecycle and auth belong
    to the host application.

    Implementations raise ConnectionError when the connection is lost and TimeoutError when
    a command overruns. They may also expose:
      - reconnect(session_id) -> None
      - supports_concurrent: bool (several commands in flight on one session)
    """

    def execute(self, session_id: str, command: str, timeout: float) -> CommandOutput:
        ...

    def current_working_directory(self, session_id: str) -> str:
        ...

    def environment_variables(self, session_id: str) -> Dict[str, str]:
        ...


class PatternAnalyzerProtocol(Protocol):
    """Incremental learner fed by execution events."""

    def update_pattern(self, result: ExecutionResult) -> None:
        ...

    def get_patterns(self, key: str) -> List:
        """Ranked list of patterns for `key` (command name, directory, extension ...)."""
        ...


class SuggestionGeneratorProtocol(Protocol):
    """Produces candidate suggestions for one request."""

    name: str

    def generate(self, context: CompletionContext) -> List[CompletionSuggestion]:
        ...


class RuleBoostProvider(Protocol):
    """Optional nudge from mined rules; must answer from memory without blocking."""

    def rule_boost(self, full_command: str, context: Optional[CompletionContext] = None) -> float:
        ...
