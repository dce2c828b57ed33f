"""
Unit tests for the parallel fitness evaluation infrastructure.

Tests FitnessExecutor and its worker functions for correctness,
ordering and error handling.
"""

from pathlib import Path
import pickle
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.acceleration import FitnessExecutor
from pso_registration.acceleration import parallel_executor
from pso_registration.registration.fitness import FitnessEvaluator
from pso_registration.registration.transform import RigidTransform


# Module-level evaluator subclass for pickling compatibility
class _FailingEvaluator(FitnessEvaluator):
    """Evaluator that raises for every transform."""

    def evaluate(self, transform):
        raise ValueError("Intentional evaluation error")


def _make_evaluator(cls=FitnessEvaluator, seed: int = 0) -> FitnessEvaluator:
    rng = np.random.default_rng(seed)
    src = rng.normal(size=(150, 3))
    tgt = rng.normal(size=(200, 3))
    return cls(src, tgt)


def _translations(n: int):
    return [RigidTransform.from_translation([0.1 * i, 0.0, 0.0]) for i in range(n)]


class TestFitnessExecutor:
    """Test suite for FitnessExecutor."""

    def test_executor_initialization(self):
        """Test executor initializes with correct worker count."""
        evaluator = _make_evaluator()

        # Default initialization
        executor = FitnessExecutor(evaluator)
        assert executor.n_workers >= 1

        # Explicit worker count
        executor = FitnessExecutor(evaluator, n_workers=4)
        assert executor.n_workers == 4

        # Minimum workers (should be at least 1)
        executor = FitnessExecutor(evaluator, n_workers=0)
        assert executor.n_workers == 1

    def test_sequential_one_worker(self):
        """Test executor evaluates in-process with 1 worker."""
        evaluator = _make_evaluator()
        transforms = _translations(5)

        with FitnessExecutor(evaluator, n_workers=1) as executor:
            costs = executor.map_costs(transforms)
            assert executor._pool is None

        np.testing.assert_array_equal(costs, [evaluator.evaluate(T) for T in transforms])
        assert executor.total_evaluations == 5

    def test_parallel_processing_order_preserved(self):
        """Test parallel evaluation returns costs in input order."""
        evaluator = _make_evaluator(seed=1)
        transforms = _translations(12)

        with FitnessExecutor(evaluator, n_workers=2) as executor:
            costs = executor.map_costs(transforms)
            # Pool is reused across generations
            pool = executor._pool
            again = executor.map_costs(transforms)
            assert executor._pool is pool

        expected = np.array([evaluator.evaluate(T) for T in transforms])
        np.testing.assert_array_equal(costs, expected)
        np.testing.assert_array_equal(again, expected)
        assert executor._pool is None

    def test_empty_transform_list(self):
        """Test executor handles an empty generation gracefully."""
        executor = FitnessExecutor(_make_evaluator(), n_workers=4)
        costs = executor.map_costs([])
        assert costs.shape == (0,)
        assert executor._pool is None

    def test_worker_error_handling(self):
        """Test executor surfaces worker errors."""
        with FitnessExecutor(_make_evaluator(_FailingEvaluator), n_workers=2) as executor:
            with pytest.raises(RuntimeError, match="failed"):
                executor.map_costs(_translations(4))

    def test_sequential_error_handling(self):
        with FitnessExecutor(_make_evaluator(_FailingEvaluator), n_workers=1) as executor:
            with pytest.raises(RuntimeError, match="failed"):
                executor.map_costs(_translations(3))

    def test_timing_statistics(self):
        executor = FitnessExecutor(_make_evaluator(), n_workers=1)
        assert executor.mean_evaluation_time == 0.0
        executor.map_costs(_translations(3))
        assert executor.total_time >= 0.0
        assert executor.mean_evaluation_time == pytest.approx(executor.total_time / 3)


class TestWorkerFunctions:
    """Test suite for worker functions."""

    def test_worker_is_picklable(self):
        """Test that worker functions can be pickled for multiprocessing."""
        assert pickle.loads(pickle.dumps(parallel_executor._worker_wrapper))
        assert pickle.loads(pickle.dumps(parallel_executor._init_worker))

    def test_worker_wrapper_reports_errors(self):
        evaluator = _make_evaluator()
        T = RigidTransform.identity()

        parallel_executor._init_worker(evaluator)
        try:
            idx, cost, err = parallel_executor._worker_wrapper((3, T))
            assert idx == 3
            assert err is None
            assert cost == evaluator.evaluate(T)

            parallel_executor._init_worker(_make_evaluator(_FailingEvaluator))
            idx, cost, err = parallel_executor._worker_wrapper((7, T))
            assert idx == 7
            assert cost is None
            assert "ValueError" in err
        finally:
            parallel_executor._init_worker(None)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
