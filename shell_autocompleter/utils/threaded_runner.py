# threaded_runner.py - run named callables on a shared pool and keep whatever finishes in time.

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Executor, wait
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def run_parallel(pool: Executor,
                 tasks: Dict[str, Callable[[], Any]],
                 timeout: float,
                 per_task_timeout: Optional[Dict[str, float]] = None) -> Dict[str, Any]:
    """
    Submit zero-argument callables to `pool` and collect results by name.

    - the whole call returns after `timeout` seconds at most
    - a task may have a tighter limit in `per_task_timeout`; it is dropped once that passes
    - tasks that raise or do not finish in time are simply missing from the result
    Unfinished futures are cancelled when possible; running ones are left to finish on their own.
    """
    if not tasks:
        return {}
    start = time.monotonic()
    deadline = start + max(0.0, timeout)
    futs = {pool.submit(fn): name for name, fn in tasks.items()}
    limits = {name: start + t for name, t in (per_task_timeout or {}).items()}
    out: Dict[str, Any] = {}
    pending = set(futs)

    while pending:
        now = time.monotonic()
        expired = {f for f in pending if futs[f] in limits and now >= limits[futs[f]]}
        for f in expired:
            f.cancel()
            logger.debug("task %s exceeded its time limit", futs[f])
        pending -= expired
        if not pending or now >= deadline:
            break
        next_limit = min([limits[futs[f]] for f in pending if futs[f] in limits] + [deadline])
        done, pending = wait(pending, timeout=max(0.0, next_limit - now), return_when=FIRST_COMPLETED)
        for f in done:
            name = futs[f]
            try:
                out[name] = f.result()
            except Exception as e:
                logger.debug("task %s failed: %s", name, e)

    for f in pending:
        f.cancel()
        logger.debug("task %s missed the %.3fs budget", futs[f], timeout)
    return out
