"""
Bounded fan-out for per-result model calls.

Citation extraction and clause enrichment call an external model once per
item. run_bounded() runs those calls on a small thread pool and returns
whatever finished: a failed, timed-out or cancelled task leaves None in
its slot instead of failing the whole request.
"""

import math
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from typing import Callable, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# How often a waiting fan-out re-checks its cancel event (seconds)
POLL_INTERVAL = 0.1


def run_bounded(
    fn: Callable[[T], R],
    items: Sequence[T],
    max_workers: int = 5,
    task_timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    label: str = "task",
) -> list[Optional[R]]:
    """
    Apply fn to every item concurrently with bounded parallelism.

    Args:
        fn: Function called once per item
        items: Inputs
        max_workers: Upper bound on concurrent calls
        task_timeout: Seconds allowed per task; the fan-out deadline is this
            times the number of waves (ceil(len(items) / workers))
        cancel_event: When set, pending tasks are cancelled and the
            results gathered so far are returned
        label: Name used in log messages

    Returns:
        One entry per item in input order; None where the task did not succeed
    """
    results: list[Optional[R]] = [None] * len(items)
    if not items:
        return results
    if cancel_event is not None and cancel_event.is_set():
        logger.info(f"{label}: cancelled before start")
        return results

    workers = max(1, min(max_workers, len(items)))
    deadline = None
    if task_timeout is not None:
        deadline = time.monotonic() + task_timeout * math.ceil(len(items) / workers)

    t0 = time.time()
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=label)
    futures = {executor.submit(fn, item): i for i, item in enumerate(items)}
    pending = set(futures)
    failed = 0

    try:
        while pending:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"{label}: cancelled with {len(pending)} tasks pending")
                break

            wait_for = POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(f"{label}: {len(pending)} tasks timed out")
                    break
                wait_for = min(wait_for, remaining)

            done, pending = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)
            for future in done:
                index = futures[future]
                try:
                    results[index] = future.result()
                except Exception as e:
                    failed += 1
                    logger.warning(f"{label} {index} failed: {e}")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    completed = sum(1 for r in results if r is not None)
    logger.debug(
        f"{label}: {completed}/{len(items)} completed, {failed} failed "
        f"in {(time.time() - t0) * 1000:.0f}ms"
    )
    return results
