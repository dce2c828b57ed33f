"""
Initial Guess Methods

Provides the transform around which the swarm is initialized.

Methods implemented:
- centroid: translation-only alignment by centroids
- pca: rigid alignment by principal axes (3D), then centroid translation
- none: identity

All methods return a RigidTransform mapping source -> target.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation
from sklearn.neighbors import NearestNeighbors

from .transform import RigidTransform
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass
class InitialGuess:
    method: str = "centroid"  # centroid | pca | none

    def compute(self, source: np.ndarray, target: np.ndarray) -> RigidTransform:
        """
        Compute an initial transform aligning source -> target.

        Args:
            source: Nx3 array
            target: Mx3 array

        Returns:
            RigidTransform
        """
        method = self.method.lower()
        if method == "none":
            return RigidTransform.identity()

        if source.size == 0 or target.size == 0:
            logger.warning("InitialGuess: empty inputs; returning identity transform.")
            return RigidTransform.identity()

        if method == "centroid":
            return self._centroid_transform(source, target)
        if method == "pca":
            T = self._pca_transform(source, target)
            return self._validate_or_fallback(source, target, T)

        raise ValueError(f"Unknown initial guess method '{self.method}'")

    # ------------------------ Methods ------------------------
    def _centroid_transform(self, src: np.ndarray, dst: np.ndarray) -> RigidTransform:
        return RigidTransform.from_translation(np.mean(dst, axis=0) - np.mean(src, axis=0))

    def _pca_transform(self, src: np.ndarray, dst: np.ndarray) -> RigidTransform:
        c_src = np.mean(src, axis=0)
        c_dst = np.mean(dst, axis=0)
        A = src - c_src
        B = dst - c_dst

        # Small regularization keeps eigh stable on degenerate clouds
        C_A = (A.T @ A) / max(1, len(A)) + 1e-12 * np.eye(3)
        C_B = (B.T @ B) / max(1, len(B)) + 1e-12 * np.eye(3)

        wA, VA = np.linalg.eigh(C_A)
        wB, VB = np.linalg.eigh(C_B)
        # Sort by descending eigenvalues
        VA = VA[:, np.argsort(wA)[::-1]]
        VB = VB[:, np.argsort(wB)[::-1]]

        R = VB @ VA.T
        # Fix reflection if needed
        if np.linalg.det(R) < 0:
            VB[:, -1] *= -1
            R = VB @ VA.T

        return RigidTransform(Rotation.from_matrix(R), c_dst - R @ c_src)

    # ------------------------ Helpers ------------------------
    def _validate_or_fallback(
        self, src: np.ndarray, dst: np.ndarray, T: RigidTransform, *, threshold: float = 1.1
    ) -> RigidTransform:
        """Fall back to the centroid guess if the candidate scores clearly worse."""
        rmse_T = self._score_rmse(src, dst, T)
        T_cent = self._centroid_transform(src, dst)
        rmse_C = self._score_rmse(src, dst, T_cent)
        if not np.isfinite(rmse_T) or rmse_T > threshold * rmse_C:
            logger.warning(
                "InitialGuess: PCA transform worse than centroid (rmse %.3f vs %.3f). Using centroid.",
                rmse_T, rmse_C,
            )
            return T_cent
        return T

    def _score_rmse(self, src: np.ndarray, dst: np.ndarray, T: RigidTransform, *, max_pairs: int = 3000) -> float:
        rng = np.random.default_rng(0)
        idx_s = rng.choice(len(src), max_pairs, replace=False) if len(src) > max_pairs else np.arange(len(src))
        moved = T.apply(src[idx_s])
        nn = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(dst)
        d, _ = nn.kneighbors(moved)
        return float(np.sqrt(np.mean(d.ravel() ** 2)))
