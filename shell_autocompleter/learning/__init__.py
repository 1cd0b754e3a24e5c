# shell_autocompleter/learning/__init__.py
"""
Background learning: rule mining, rule versioning with rollback, data retention.
"""

from .rule_miner import RuleMiner
from .rule_versions import RuleVersionManager
from .data_cleaner import DataCleaner
from .scheduler import AnalysisScheduler

__all__ = ["RuleMiner", "RuleVersionManager", "DataCleaner", "AnalysisScheduler"]
