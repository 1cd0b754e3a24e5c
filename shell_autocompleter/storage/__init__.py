# shell_autocompleter/storage/__init__.py
"""
SQLite persistence: connection handling, schema migrations, history and rule stores.
"""

from .database import Database
from .migrations import MigrationRunner
from .history_store import HistoryStore
from .rule_store import RuleStore

__all__ = ["Database", "MigrationRunner", "HistoryStore", "RuleStore"]
