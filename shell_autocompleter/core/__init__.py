"""
shell_autocompleter.core

The request path of the engine.
Contains:
 - the shell parser (CommandParser)
 - probe execution against the live session (ProbeExecutor)
 - candidate generators (history, heuristic, remote probe)
 - weighted ranking of candidates (FusionRanker) and the short-lived SuggestionCache
 - the facade tying it together (ShellAutocompleter)
"""

from .parser import CommandParser
from .probe_executor import ProbeExecutor
from .generators import HeuristicGenerator, HistoryGenerator, RemoteProbeGenerator
from .fusion_ranker import FusionRanker
from .suggestion_cache import SuggestionCache
from .autocompleter import ShellAutocompleter

__all__ = [
    "CommandParser",
    "ProbeExecutor",
    "HistoryGenerator",
    "HeuristicGenerator",
    "RemoteProbeGenerator",
    "FusionRanker",
    "SuggestionCache",
    "ShellAutocompleter",
]

__version__ = "0.1.0"
