"""
Alignment Fitness Evaluation

Scores a candidate rigid transform by the mean squared distance from each
transformed source point to its nearest neighbour in the target cloud.
The k-d tree over the target is built once and shared by every evaluation.
"""

from typing import Iterable, Optional
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .transform import RigidTransform
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def _validate_cloud(points: np.ndarray, name: str) -> np.ndarray:
    points = np.ascontiguousarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"{name} cloud must be (N, 3), got {points.shape}")
    if len(points) == 0:
        raise ValueError(f"{name} cloud is empty; fitness cannot be evaluated")
    return points


class FitnessEvaluator:
    """
    Nearest-neighbour alignment cost between a transformed source and a target.

    The cost is exactly reproducible for a fixed transform and fixed clouds:
    no randomness is involved in `evaluate`. When `max_source_points` is set,
    the source subset is drawn once at construction from `subsample_seed`.
    """

    def __init__(
        self,
        source: np.ndarray,
        target: np.ndarray,
        max_source_points: Optional[int] = None,
        subsample_seed: int = 0,
    ):
        """
        Build the evaluator and the target spatial index.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3).
            max_source_points: Optional cap on the number of source points scored.
            subsample_seed: Seed of the one-off source subsampling.

        Raises:
            ValueError: If either cloud is empty or not (N, 3).
        """
        source = _validate_cloud(source, "Source")
        target = _validate_cloud(target, "Target")

        if max_source_points is not None and len(source) > max_source_points:
            rng = np.random.default_rng(subsample_seed)
            idx = np.sort(rng.choice(len(source), max_source_points, replace=False))
            logger.info(
                "Scoring fitness on %d of %d source points.", max_source_points, len(source)
            )
            source = source[idx]

        self.source = source
        self.target = target

        build_start = time.time()
        self.nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)
        logger.debug(
            "Built target KD-Tree over %d points in %.4f s.", len(target), time.time() - build_start
        )

        # Reused for every evaluation in this process
        self._buffer = np.empty_like(self.source)

    @property
    def n_source(self) -> int:
        return len(self.source)

    @property
    def n_target(self) -> int:
        return len(self.target)

    def nearest_distances(self, points: np.ndarray) -> np.ndarray:
        """
        Distance from each point to its nearest target point.

        Args:
            points: Query points (K x 3).

        Returns:
            Distances (K,).
        """
        distances, _ = self.nbrs.kneighbors(points)
        return distances.ravel()

    def evaluate(self, transform: RigidTransform) -> float:
        """
        Mean squared nearest-neighbour distance of the transformed source.

        Args:
            transform: Candidate transform applied to the source cloud.

        Returns:
            Non-negative alignment cost (lower is better).
        """
        moved = transform.apply(self.source, out=self._buffer)
        distances = self.nearest_distances(moved)
        return float(np.mean(distances * distances))

    def evaluate_many(self, transforms: Iterable[RigidTransform]) -> np.ndarray:
        return np.array([self.evaluate(T) for T in transforms], dtype=np.float64)

    def rmse(self, transform: RigidTransform) -> float:
        return float(np.sqrt(self.evaluate(transform)))

    def __getstate__(self):
        # The scratch buffer is rebuilt on unpickling in worker processes
        state = self.__dict__.copy()
        state.pop("_buffer", None)
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._buffer = np.empty_like(self.source)
