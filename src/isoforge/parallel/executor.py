"""Thread-pool execution of independent tasks.

This module runs per-isoform work (such as consensus calling) on a pool
of worker threads while isolating failures: an exception raised by one
task is captured in its ``TaskResult`` and never aborts its siblings.

Example:
    >>> from isoforge.parallel.executor import ParallelExecutor
    >>> executor = ParallelExecutor(n_workers=8)
    >>> results, stats = executor.map_items(call_consensus, clusters, ids)
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, Callable, Sequence, TypeVar

import attrs

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(slots=True)
class TaskResult:
    """Result from one task."""

    task_id: str
    success: bool
    result: Any | None = None
    error: str | None = None
    duration_seconds: float = 0.0


@attrs.define(slots=True)
class ExecutionStats:
    """Statistics from one ``map_items`` call."""

    total_tasks: int
    successful: int
    failed: int
    total_duration: float
    max_task_duration: float

    @classmethod
    def empty(cls) -> ExecutionStats:
        """Statistics for a run without tasks."""
        return cls(0, 0, 0, 0.0, 0.0)


def _run_timed(func: Callable[[T], R], item: T, task_id: str) -> TaskResult:
    """Run one task, capturing its result or error."""
    start_time = time.time()
    try:
        result = func(item)
    except Exception as e:
        return TaskResult(
            task_id=task_id,
            success=False,
            error=f"{type(e).__name__}: {e}",
            duration_seconds=time.time() - start_time,
        )
    return TaskResult(
        task_id=task_id,
        success=True,
        result=result,
        duration_seconds=time.time() - start_time,
    )


# =============================================================================
# Parallel Executor
# =============================================================================


class ParallelExecutor:
    """Execute independent tasks on a fixed thread pool.

    Results come back in input order, and failed tasks are reported
    rather than raised.

    Example:
        >>> executor = ParallelExecutor(n_workers=4)
        >>> results, stats = executor.map_items(work, items)
        >>> print(f"Processed {stats.successful}/{stats.total_tasks} items")
    """

    def __init__(self, n_workers: int = 1) -> None:
        """Initialize executor.

        Args:
            n_workers: Number of worker threads.
        """
        self.n_workers = max(1, n_workers)

    def map_items(
        self,
        func: Callable[[T], R],
        items: Sequence[T],
        ids: Sequence[str] | None = None,
    ) -> tuple[list[TaskResult], ExecutionStats]:
        """Apply a function to each item.

        Args:
            func: Function taking one item.
            items: Items to process.
            ids: Task identifiers (defaults to ``item_000000``...).

        Returns:
            Tuple of (results in input order, execution_stats).

        Raises:
            ValueError: If ``ids`` and ``items`` differ in length.
        """
        if not items:
            return [], ExecutionStats.empty()

        if ids is None:
            ids = [f"item_{i:06d}" for i in range(len(items))]
        elif len(ids) != len(items):
            raise ValueError(f"Got {len(ids)} task ids for {len(items)} items")

        logger.info(f"Processing {len(items)} tasks with {self.n_workers} threads")
        start_time = time.time()

        by_id: dict[str, TaskResult] = {}
        with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
            futures: dict[Future, str] = {
                pool.submit(_run_timed, func, item, task_id): task_id
                for item, task_id in zip(items, ids)
            }
            for future in as_completed(futures):
                by_id[futures[future]] = future.result()
        results = [by_id[task_id] for task_id in ids]

        total_duration = time.time() - start_time
        successful = sum(1 for r in results if r.success)
        stats = ExecutionStats(
            total_tasks=len(results),
            successful=successful,
            failed=len(results) - successful,
            total_duration=total_duration,
            max_task_duration=max(r.duration_seconds for r in results),
        )

        logger.info(
            f"Completed: {successful}/{len(items)} tasks, "
            f"duration={total_duration:.1f}s"
        )
        for r in results:
            if not r.success:
                logger.warning(f"Task {r.task_id} failed: {r.error}")

        return results, stats
