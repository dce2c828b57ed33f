"""
Parallel execution infrastructure for fitness evaluation.

Provides FitnessExecutor for distributing the per-particle fitness
evaluations of one generation across multiple CPU cores using
multiprocessing. Evaluations are independent reads of the shared clouds
and spatial index, so only the candidate transforms travel per generation.
"""

from __future__ import annotations

import logging
import time
from multiprocessing import Pool, cpu_count
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..registration.fitness import FitnessEvaluator
from ..registration.transform import RigidTransform

logger = logging.getLogger(__name__)

# Evaluator installed in each worker process by the pool initializer
_WORKER_EVALUATOR: Optional[FitnessEvaluator] = None


def _init_worker(evaluator: FitnessEvaluator) -> None:
    """
    Pool initializer: keep one evaluator per worker process.

    Must be at module level for pickling under spawn/forkserver.
    """
    global _WORKER_EVALUATOR
    _WORKER_EVALUATOR = evaluator


def _worker_wrapper(args: Tuple[int, RigidTransform]) -> Tuple[int, Optional[float], Optional[str]]:
    """
    Evaluate one transform in a worker.

    Args:
        args: Tuple of (particle_index, transform)

    Returns:
        Tuple of (particle_index, cost, error_message)
    """
    idx, transform = args
    try:
        if _WORKER_EVALUATOR is None:
            raise RuntimeError("worker evaluator not initialized")
        return (idx, _WORKER_EVALUATOR.evaluate(transform), None)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        logger.error(f"Worker error on particle {idx}: {error_msg}")
        return (idx, None, error_msg)


class FitnessExecutor:
    """
    Executor for per-generation fitness evaluation.

    With one worker, evaluates sequentially in the calling process (no pool
    overhead). With more, keeps a long-lived worker pool whose processes
    each receive the evaluator once, then maps transforms over it and
    returns costs in input order.

    Example:
        with FitnessExecutor(evaluator, n_workers=4) as executor:
            costs = executor.map_costs(transforms)
    """

    def __init__(self, evaluator: FitnessEvaluator, n_workers: Optional[int] = None):
        """
        Initialize executor.

        Args:
            evaluator: Fitness evaluator shared (read-only) by every evaluation.
            n_workers: Number of worker processes. If None, uses cpu_count - 1
                to leave one core for the coordinating process. Minimum is 1.
        """
        if n_workers is None:
            n_workers = max(1, cpu_count() - 1)
        else:
            n_workers = max(1, int(n_workers))

        self.evaluator = evaluator
        self.n_workers = n_workers
        self._pool = None
        self.total_evaluations = 0
        self.total_time = 0.0

        logger.info(
            f"Initialized FitnessExecutor with {self.n_workers} workers "
            f"(total CPUs: {cpu_count()})"
        )

    def map_costs(self, transforms: Sequence[RigidTransform]) -> np.ndarray:
        """
        Evaluate every transform and return costs in input order.

        Acts as the generation barrier: returns only when all evaluations
        have finished.

        Args:
            transforms: Candidate transforms, one per particle

        Returns:
            Array of costs with the same length and order as `transforms`

        Raises:
            RuntimeError: If any evaluation fails
        """
        n = len(transforms)
        if n == 0:
            return np.empty(0, dtype=np.float64)

        start_time = time.time()
        if self.n_workers == 1 or n == 1:
            try:
                costs = self.evaluator.evaluate_many(transforms)
            except Exception as e:
                logger.error(f"Fitness evaluation failed: {e}", exc_info=True)
                raise RuntimeError(f"Fitness evaluation failed: {e}") from e
        else:
            costs = self._parallel_map(transforms)

        self.total_evaluations += n
        self.total_time += time.time() - start_time
        return costs

    def _parallel_map(self, transforms: Sequence[RigidTransform]) -> np.ndarray:
        """
        Execute evaluations on the worker pool.

        Uses imap_unordered for responsiveness, then reorders results to
        match the input order.
        """
        n = len(transforms)
        pool = self._ensure_pool()

        results = {}
        errors: List[Tuple[int, str]] = []
        chunksize = max(1, n // (4 * self.n_workers))
        for idx, cost, error in pool.imap_unordered(
            _worker_wrapper, list(enumerate(transforms)), chunksize=chunksize
        ):
            if error:
                errors.append((idx, error))
            else:
                results[idx] = cost

        if errors:
            error_msg = f"{len(errors)} fitness evaluations failed out of {n}"
            logger.error(error_msg)
            for idx, error in errors[:5]:  # Log first 5 errors
                logger.error(f"  Particle {idx}: {error}")
            if len(errors) > 5:
                logger.error(f"  ... and {len(errors) - 5} more errors")
            raise RuntimeError(error_msg)

        return np.array([results[i] for i in range(n)], dtype=np.float64)

    def _ensure_pool(self):
        if self._pool is None:
            logger.debug(f"Starting worker pool with {self.n_workers} processes")
            self._pool = Pool(
                processes=self.n_workers,
                initializer=_init_worker,
                initargs=(self.evaluator,),
            )
        return self._pool

    @property
    def mean_evaluation_time(self) -> float:
        return self.total_time / self.total_evaluations if self.total_evaluations else 0.0

    def close(self) -> None:
        """Let in-flight work drain, then stop the workers."""
        if self._pool is not None:
            self._pool.close()
            self._pool.join()
            self._pool = None

    def __enter__(self) -> "FitnessExecutor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
