# shell_autocompleter/context/__init__.py
# components that assemble the CompletionContext for one request

from .analyzers import (
    ArgumentAnalyzer,
    DirectoryAnalyzer,
    ErrorCorrectionAnalyzer,
    FileTypeAnalyzer,
    default_analyzers,
)  # pattern learners fed by executed commands
from .user_patterns import UserPatterns  # command chains, time of day and context habits
from .environment import EnvironmentProbe  # git / recent files / processes, cached per cwd
from .context_builder import ContextBuilder

__all__ = [
    "ArgumentAnalyzer",
    "DirectoryAnalyzer",
    "FileTypeAnalyzer",
    "ErrorCorrectionAnalyzer",
    "default_analyzers",
    "UserPatterns",
    "EnvironmentProbe",
    "ContextBuilder",
]
