"""Tests for isoforge.parallel.executor module.

Tests cover:
- ExecutionStats defaults
- Ordered results from the thread pool
- Per-task failure isolation
"""

import threading

import pytest

from isoforge.parallel import ExecutionStats, ParallelExecutor


def square(x):
    return x * x


def fail_on_three(x):
    if x == 3:
        raise ValueError("three is not allowed")
    return x


class TestExecutionStats:
    """Tests for ExecutionStats data structure."""

    def test_empty(self):
        stats = ExecutionStats.empty()
        assert stats.total_tasks == 0
        assert stats.failed == 0


# =============================================================================
# ParallelExecutor Tests
# =============================================================================


class TestParallelExecutor:
    """Tests for ParallelExecutor class."""

    def test_worker_count_floor(self):
        assert ParallelExecutor(n_workers=0).n_workers == 1

    def test_empty_input(self):
        results, stats = ParallelExecutor(n_workers=2).map_items(square, [])
        assert results == []
        assert stats.total_tasks == 0

    @pytest.mark.parametrize("n_workers", [1, 4])
    def test_results_in_input_order(self, n_workers):
        executor = ParallelExecutor(n_workers=n_workers)
        results, stats = executor.map_items(square, list(range(20)))

        assert [r.result for r in results] == [x * x for x in range(20)]
        assert [r.task_id for r in results] == [f"item_{i:06d}" for i in range(20)]
        assert stats.successful == 20

    def test_custom_ids(self):
        results, _ = ParallelExecutor(n_workers=2).map_items(square, [1, 2, 3], ids=["a", "b", "c"])
        assert [(r.task_id, r.result) for r in results] == [("a", 1), ("b", 4), ("c", 9)]

    @pytest.mark.parametrize("n_workers", [1, 3])
    def test_failure_isolated(self, n_workers):
        """Test a failing task is captured and siblings still complete."""
        executor = ParallelExecutor(n_workers=n_workers)
        results, stats = executor.map_items(fail_on_three, [1, 2, 3, 4])

        assert [r.success for r in results] == [True, True, False, True]
        assert results[2].error == "ValueError: three is not allowed"
        assert results[3].result == 4
        assert stats.failed == 1
        assert stats.successful == 3

    def test_runs_on_worker_threads(self):
        main_thread = threading.get_ident()
        results, _ = ParallelExecutor(n_workers=2).map_items(lambda _: threading.get_ident(), [1, 2])
        assert all(r.result != main_thread for r in results)

    def test_ids_length_mismatch(self):
        with pytest.raises(ValueError, match="task ids"):
            ParallelExecutor().map_items(square, [1, 2], ids=["a"])
