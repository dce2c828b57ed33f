"""
ICP Refinement

Point-to-point Iterative Closest Point used to polish the transform found by
the swarm. The swarm gets close to the global optimum; a few ICP iterations
then remove the residual jitter of the stochastic search.
"""

from typing import Optional, Tuple
import time

import numpy as np
from scipy.spatial.transform import Rotation
from sklearn.neighbors import NearestNeighbors

from .transform import RigidTransform, compose
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class ICPRefiner:
    """
    Implementation of ICP for refining a rigid transform.

    The ICP algorithm iteratively:
    1. Finds closest point correspondences
    2. Estimates optimal transformation (rotation + translation)
    3. Applies transformation to source points
    4. Repeats until convergence or the iteration budget is spent
    """

    def __init__(
        self,
        max_iterations: int = 10,
        tolerance: float = 1e-10,
        max_correspondence_distance: Optional[float] = None,
    ):
        """
        Initialize ICP parameters.

        Args:
            max_iterations: Maximum number of ICP iterations.
            tolerance: Convergence tolerance on change in mean squared error.
            max_correspondence_distance: Maximum distance for point correspondences
                (None accepts every correspondence).
        """
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance

    def refine(
        self,
        source: np.ndarray,
        target: np.ndarray,
        initial_transform: Optional[RigidTransform] = None,
        nbrs: Optional[NearestNeighbors] = None,
    ) -> Tuple[RigidTransform, float]:
        """
        Refine a transform aligning source onto target.

        Args:
            source: Source point cloud (N x 3).
            target: Target point cloud (M x 3).
            initial_transform: Starting transform (identity if None).
            nbrs: Optional pre-built NearestNeighbors fitted on the target.

        Returns:
            Tuple of (refined_transform, final_rmse).
        """
        transform = initial_transform.copy() if initial_transform is not None else RigidTransform.identity()

        if len(source) == 0 or len(target) == 0:
            logger.warning(
                "ICP called with empty source or target (source=%d, target=%d); "
                "returning the initial transform and infinite error.",
                len(source),
                len(target),
            )
            return transform, float("inf")

        if nbrs is None:
            logger.debug("Building CPU KD-Tree for target point cloud...")
            nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)

        current_source = transform.apply(source)
        previous_error = float("inf")
        icp_start = time.time()
        n_iterations = 0

        for iteration in range(self.max_iterations):
            distances, indices = nbrs.kneighbors(current_source)
            distances = distances.ravel()
            indices = indices.ravel()

            valid_mask = np.ones(len(distances), dtype=bool)
            if self.max_correspondence_distance is not None:
                valid_mask = distances < self.max_correspondence_distance
            if np.sum(valid_mask) < 3:  # Need at least 3 points to define a rigid motion
                logger.warning("Not enough valid correspondences found. Stopping ICP.")
                break

            delta = self.estimate_transformation(
                current_source[valid_mask], target[indices[valid_mask]]
            )
            transform = compose(transform, delta)

            # Re-apply the cumulative transform to the original source to avoid compounding error
            current_source = transform.apply(source)
            current_error = float(np.mean(distances[valid_mask] ** 2))
            n_iterations = iteration + 1

            logger.debug(
                "Iteration %d: MSE=%.6e, |dt|=%.3e, dtheta=%.3e rad",
                n_iterations,
                current_error,
                float(np.linalg.norm(delta.translation)),
                delta.rotation_angle(),
            )

            if abs(previous_error - current_error) < self.tolerance:
                logger.info(
                    "ICP converged after %d iterations (MSE change < %.3e).",
                    n_iterations,
                    self.tolerance,
                )
                break
            previous_error = current_error

        final_distances, _ = nbrs.kneighbors(current_source)
        final_error = float(np.sqrt(np.mean(final_distances.ravel() ** 2)))
        logger.info(
            "ICP refinement finished in %.4f s (%d iterations). Final RMSE: %.6g",
            time.time() - icp_start,
            n_iterations,
            final_error,
        )
        return transform, final_error

    @staticmethod
    def estimate_transformation(source_points: np.ndarray, target_points: np.ndarray) -> RigidTransform:
        """
        Estimate optimal rigid transformation between corresponding point sets (Kabsch).

        Args:
            source_points: Source points (N x 3).
            target_points: Corresponding target points (N x 3).

        Returns:
            RigidTransform mapping source_points onto target_points.
        """
        source_centroid = np.mean(source_points, axis=0)
        target_centroid = np.mean(target_points, axis=0)

        # Cross-covariance of the centred sets
        H = (source_points - source_centroid).T @ (target_points - target_centroid)
        U, _, Vt = np.linalg.svd(H)
        R = Vt.T @ U.T

        # Ensure proper rotation (det(R) should be 1)
        if np.linalg.det(R) < 0:
            Vt[-1, :] *= -1
            R = Vt.T @ U.T

        t = target_centroid - R @ source_centroid
        return RigidTransform(Rotation.from_matrix(R), t)
