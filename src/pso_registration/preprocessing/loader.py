"""
Point Cloud Data Loader

This module handles loading and initial validation of point cloud files.
"""

from pathlib import Path
from typing import Union

import laspy
import numpy as np

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

SUPPORTED_EXTENSIONS = ['.las', '.laz', '.pcd', '.xyz', '.txt', '.csv', '.npy']


class PointCloudLoader:
    """
    A class for loading point cloud coordinates from disk.

    Features:
    - LAS/LAZ via laspy
    - PCD via Open3D (ascii, binary and binary_compressed)
    - Plain text (.xyz, .txt, .csv) and NumPy (.npy) arrays
    - Removal of non-finite points
    """

    def __init__(self, *, drop_non_finite: bool = True):
        """
        Initialize the point cloud loader.

        Args:
            drop_non_finite: If True, remove points with NaN/inf coordinates (default True)
        """
        self.drop_non_finite = drop_non_finite

    def load(self, file_path: str) -> np.ndarray:
        """
        Load a point cloud file and return its XYZ coordinates.

        Args:
            file_path: Path to the point cloud file

        Returns:
            (N, 3) float64 array of coordinates

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file format is unsupported or invalid
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        logger.info(f"Loading point cloud data from {file_path}")

        try:
            if suffix in ('.las', '.laz'):
                points = self._load_las(file_path)
            elif suffix == '.pcd':
                points = read_pcd(file_path)
            elif suffix == '.npy':
                points = np.load(file_path, allow_pickle=False)
            else:
                delimiter = ',' if suffix == '.csv' else None
                points = np.loadtxt(file_path, delimiter=delimiter, ndmin=2)
        except (FileNotFoundError, ValueError, ImportError):
            raise
        except Exception as e:
            logger.error(f"Error loading point cloud data from {file_path}: {e}")
            raise ValueError(f"Could not parse point cloud {file_path}: {e}") from e

        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] < 3:
            raise ValueError(f"Expected at least 3 columns in {file_path}, got shape {points.shape}")
        points = np.ascontiguousarray(points[:, :3])

        if self.drop_non_finite:
            finite = np.isfinite(points).all(axis=1)
            n_bad = int(np.sum(~finite))
            if n_bad:
                logger.warning(f"Dropping {n_bad} non-finite points from {file_path}")
                points = points[finite]

        logger.info(f"Loaded {len(points)} points from {file_path.name}")
        return points

    def validate_file(self, file_path: str) -> bool:
        """
        Validate a point cloud file.

        Args:
            file_path: Path to the point cloud file

        Returns:
            True if the file loads and holds at least one finite point, False otherwise
        """
        try:
            points = self.load(file_path)
        except (FileNotFoundError, ValueError) as e:
            logger.warning(f"File validation failed for {file_path}: {e}")
            return False
        if len(points) == 0:
            logger.warning(f"No points found in file: {file_path}")
            return False
        return True

    def _load_las(self, file_path: Path) -> np.ndarray:
        las = laspy.read(file_path)
        return np.column_stack([
            np.array(las.x, dtype=np.float64),
            np.array(las.y, dtype=np.float64),
            np.array(las.z, dtype=np.float64),
        ])


def read_pcd(file_path: Union[str, Path]) -> np.ndarray:
    """
    Read XYZ coordinates from a PCD file with Open3D.

    Handles every PCD encoding Open3D reads (ascii, binary and
    binary_compressed).

    Args:
        file_path: Path to the .pcd file

    Returns:
        (N, 3) float64 array

    Raises:
        ImportError: If Open3D is not installed
        ValueError: If Open3D reads no points from the file
    """
    try:
        import open3d as o3d  # type: ignore
    except Exception as e:
        raise ImportError("Open3D is required for reading PCD files") from e

    pcd = o3d.io.read_point_cloud(str(file_path), format='pcd')
    points = np.asarray(pcd.points, dtype=np.float64)
    # Open3D reports parse failures as an empty cloud
    if len(points) == 0:
        raise ValueError(f"No points could be read from PCD file {file_path}")
    return points.reshape(-1, 3)
