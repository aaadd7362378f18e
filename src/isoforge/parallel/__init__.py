"""Parallelization utilities for isoforge.

Example:
    >>> from isoforge.parallel import ParallelExecutor
    >>> executor = ParallelExecutor(n_workers=4)
    >>> results, stats = executor.map_items(work, items)
"""

from isoforge.parallel.executor import (
    ExecutionStats,
    ParallelExecutor,
    TaskResult,
)

__all__ = [
    "ExecutionStats",
    "ParallelExecutor",
    "TaskResult",
]
