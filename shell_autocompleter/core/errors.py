# shell_autocompleter/core/errors.py
"""Error taxonomy. Only EngineNotReady ever reaches a get_suggestions() caller."""

from __future__ import annotations


class AutocompleterError(Exception):
    """Base class for engine errors."""


class ParseFailure(AutocompleterError):
    """Raised inside the parser; always converted into a kind=error ParsedCommand."""

    def __init__(self, message: str, position: int = -1):
        super().__init__(message)
        self.position = position


class ProbeUnavailable(AutocompleterError):
    """A remote probe timed out or its session is unreachable."""


class StoreWriteFailure(AutocompleterError):
    """A persistence write failed after its retries were used up."""


class EngineNotReady(AutocompleterError):
    """The engine was used before start() finished."""


class AnalysisCycleFailure(AutocompleterError):
    """A scheduler cycle failed; the scheduler logs it and moves on."""


class ConfigError(ValueError):
    """Invalid configuration key or value."""
