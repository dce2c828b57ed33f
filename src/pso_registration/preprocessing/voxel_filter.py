"""
Voxel Grid Downsampling

Replaces all points falling in the same cubic voxel by their centroid.
"""

import numpy as np

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def voxel_downsample(points: np.ndarray, leaf_size: float) -> np.ndarray:
    """Downsample a point cloud on a voxel grid.

    The grid is anchored at the minimum corner of the cloud. Output points
    are ordered by voxel key, so the result is deterministic for a given input.

    Args:
        points: (N, 3) array of point coordinates
        leaf_size: Voxel edge length. 0 disables filtering.

    Returns:
        (M, 3) array with M <= N

    Raises:
        ValueError: If leaf_size is negative or points is not (N, 3)

    Examples:
        >>> pts = np.array([[0.1, 0.1, 0.1], [0.3, 0.3, 0.3], [2.0, 2.0, 2.0]])
        >>> voxel_downsample(pts, 1.0)
        array([[0.2, 0.2, 0.2],
               [2. , 2. , 2. ]])
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"points must be (N, 3), got {points.shape}")
    if leaf_size < 0:
        raise ValueError(f"leaf_size must be >= 0, got {leaf_size}")
    if leaf_size == 0 or len(points) == 0:
        return points.copy()

    keys = np.floor((points - points.min(axis=0)) / leaf_size).astype(np.int64)
    # unique sorts rows lexicographically: deterministic voxel order
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)

    sums = np.zeros((len(counts), 3), dtype=np.float64)
    np.add.at(sums, inverse, points)
    downsampled = sums / counts[:, None]

    logger.info(
        f"Voxel filter (leaf {leaf_size:g}): {len(points)} -> {len(downsampled)} points"
    )
    return downsampled
