# shell_autocompleter/learning/data_cleaner.py
"""
DataCleaner - explicit age-based pruning of learning data.

 - command_usage rows not used for `max_age_days`
 - completion_usage events older than `max_age_days`, and the oldest events beyond `max_records`
 - analyzer patterns last seen before the cutoff (their pattern_state rows follow)

Runs from the scheduler once a day; never from the interactive path.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Optional

from shell_autocompleter.storage.database import Database, to_ts
from shell_autocompleter.storage.history_store import HistoryStore
from shell_autocompleter.utils.logger_utils import Log

logger = logging.getLogger(__name__)


class DataCleaner:
    def __init__(self,
                 db: Database,
                 history: HistoryStore,
                 analyzers: Iterable[object] = (),
                 max_age_days: float = 30.0,
                 max_records: int = 100_000,
                 clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.history = history
        self.analyzers = list(analyzers)
        self.max_age_days = float(max_age_days)
        self.max_records = int(max_records)
        self._clock = clock

    def cleanup(self, max_age_days: Optional[float] = None) -> Dict[str, int]:
        age = self.max_age_days if max_age_days is None else float(max_age_days)
        cutoff = self._clock() - timedelta(days=age)
        stamp = to_ts(cutoff)
        with Log.time_block("cleaner.cleanup"), self.db.connection() as conn:
            usage = conn.execute("DELETE FROM command_usage WHERE last_used < ?", (stamp,)).rowcount
            events = conn.execute("DELETE FROM completion_usage WHERE created_at < ?", (stamp,)).rowcount
            overflow = conn.execute(
                """
                DELETE FROM completion_usage WHERE id NOT IN (
                    SELECT id FROM completion_usage ORDER BY id DESC LIMIT ?
                )
                """,
                (self.max_records,),
            ).rowcount
        patterns = self._prune_patterns(cutoff)
        self.db.execute("PRAGMA optimize")

        result = {"command_usage": usage, "completion_usage": events + overflow, "patterns": patterns}
        logger.info("cleanup before %s removed %s", stamp, result)
        return result

    def _prune_patterns(self, cutoff: datetime) -> int:
        changed = 0
        for analyzer in self.analyzers:
            for key in analyzer.prune(cutoff):
                payload = analyzer.snapshot(key)
                if payload is None:
                    self.history.delete_pattern_state(analyzer.kind, key)
                else:
                    self.history.save_pattern_state(analyzer.kind, key, payload)
                changed += 1
        return changed
