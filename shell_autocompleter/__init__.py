"""
shell_autocompleter

Adaptive completion engine for interactive shell sessions.
Entry point is ShellAutocompleter; Config builds its keyword arguments from a JSON file.
"""

from .core.autocompleter import ShellAutocompleter
from .core.types import CompletionSuggestion, ExecutionResult, SessionState, SuggestionSource
from .utils.config_manager import Config

__all__ = [
    "ShellAutocompleter",
    "Config",
    "CompletionSuggestion",
    "ExecutionResult",
    "SessionState",
    "SuggestionSource",
]

__version__ = "0.1.0"
