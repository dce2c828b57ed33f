"""
Tests for the ICP refinement used on the final swarm transform.

These focus on correctness of the recovered transform and basic
convergence behaviour on synthetic data.
"""

from pathlib import Path
import sys

import numpy as np
from scipy.spatial.transform import Rotation
from sklearn.neighbors import NearestNeighbors

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.registration.refinement import ICPRefiner
from pso_registration.registration.transform import RigidTransform


def _make_random_cloud(n: int = 2000, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    # Anisotropic spread to avoid degenerate covariance
    base = rng.normal(size=(n, 3)) * np.array([10.0, 5.0, 2.0])
    base += np.array([100.0, -50.0, 20.0])
    return base.astype(float)


def _small_motion() -> RigidTransform:
    return RigidTransform(Rotation.from_euler("z", 5.0, degrees=True), np.array([1.5, -0.7, 0.3]))


def test_icp_recovers_known_transform():
    """ICP should approximately recover a known rigid transform."""
    src = _make_random_cloud(n=2000, seed=1)
    truth = _small_motion()
    tgt = truth.apply(src)

    icp = ICPRefiner(max_iterations=50, tolerance=1e-12, max_correspondence_distance=5.0)
    T_est, final_err = icp.refine(src, tgt)

    nn = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(tgt)
    d0, _ = nn.kneighbors(src)
    baseline_rmse = float(np.sqrt(np.mean(d0 ** 2)))

    # ICP should significantly reduce RMSE vs the identity baseline
    assert final_err < baseline_rmse * 0.8


def test_icp_from_close_start_is_exact():
    src = _make_random_cloud(n=1000, seed=2)
    truth = _small_motion()
    tgt = truth.apply(src)
    start = RigidTransform(
        Rotation.from_euler("z", 4.0, degrees=True), truth.translation + np.array([0.05, 0.0, 0.0])
    )

    T_est, final_err = ICPRefiner(max_iterations=30, tolerance=1e-14).refine(src, tgt, start)

    np.testing.assert_allclose(T_est.as_matrix(), truth.as_matrix(), atol=1e-6)
    assert final_err < 1e-6


def test_icp_reuses_prebuilt_index():
    src = _make_random_cloud(n=500, seed=3)
    truth = _small_motion()
    tgt = truth.apply(src)
    nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(tgt)

    icp = ICPRefiner(max_iterations=30, tolerance=1e-14)
    a, err_a = icp.refine(src, tgt, truth, nbrs=nbrs)
    b, err_b = icp.refine(src, tgt, truth)

    np.testing.assert_allclose(a.as_matrix(), b.as_matrix(), atol=1e-12)
    assert err_a == err_b


def test_zero_iterations_returns_start():
    src = _make_random_cloud(n=200, seed=4)
    tgt = src + 1.0
    start = RigidTransform.from_translation([0.5, 0.5, 0.5])
    T, _ = ICPRefiner(max_iterations=0).refine(src, tgt, start)
    np.testing.assert_allclose(T.as_matrix(), start.as_matrix())


def test_estimate_transformation_is_proper_rotation():
    rng = np.random.default_rng(5)
    A = rng.normal(size=(100, 3))
    # Reflected correspondences must still yield det(R) = +1
    B = A * np.array([1.0, 1.0, -1.0])
    T = ICPRefiner.estimate_transformation(A, B)
    assert abs(np.linalg.det(T.rotation.as_matrix()) - 1.0) < 1e-9


def test_icp_handles_empty_inputs_gracefully():
    """ICP should not crash on empty point sets."""
    icp = ICPRefiner()
    src = np.empty((0, 3), dtype=float)
    tgt = np.empty((0, 3), dtype=float)

    T, err = icp.refine(src, tgt)

    assert np.isfinite(T.as_matrix()).all()
    # With no points, error is expected to be inf
    assert err == float("inf")
