"""
Export utilities for registration results.

Provides functions to write:
- Aligned point clouds (PCD, LAS/LAZ, plain text, NumPy)
- 4x4 transformation matrices as text
"""

from pathlib import Path
from typing import Union

import numpy as np

from .logging import setup_logger
from ..registration.transform import RigidTransform

logger = setup_logger(__name__)


def write_pcd(points: np.ndarray, output_path: Union[str, Path]) -> None:
    """
    Write XYZ points as an ASCII PCD file with Open3D.

    ASCII output avoids the float32 rounding Open3D applies to binary PCD
    data, which matters for projected coordinates in the millions.

    Args:
        points: (N, 3) array of point coordinates
        output_path: Destination .pcd path

    Raises:
        ImportError: If Open3D is not installed
        OSError: If Open3D fails to write the file
    """
    try:
        import open3d as o3d  # type: ignore
    except Exception as e:
        raise ImportError("Open3D is required for writing PCD files") from e

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.ascontiguousarray(points, dtype=np.float64))
    if not o3d.io.write_point_cloud(str(output_path), pcd, write_ascii=True):
        raise OSError(f"Open3D could not write PCD file {output_path}")


def save_point_cloud(points: np.ndarray, output_path: Union[str, Path]) -> str:
    """
    Save a point cloud; the extension selects the format.

    Args:
        points: (N, 3) array of point coordinates
        output_path: Destination path (.pcd, .las, .laz, .xyz, .txt, .csv or .npy)

    Returns:
        Path to created file

    Raises:
        ValueError: If points is not (N, 3) or the extension is unsupported
    """
    import laspy

    output_path = Path(output_path)
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"points must be (N, 3), got {points.shape}")

    suffix = output_path.suffix.lower()
    if suffix not in ('.pcd', '.las', '.laz', '.xyz', '.txt', '.csv', '.npy'):
        raise ValueError(f"Unsupported output format: {output_path.suffix}")

    if output_path.parent and not output_path.parent.exists():
        output_path.parent.mkdir(parents=True, exist_ok=True)

    if suffix == '.pcd':
        write_pcd(points, output_path)
    elif suffix in ('.las', '.laz'):
        header = laspy.LasHeader(point_format=3, version="1.2")
        if len(points):
            header.offsets = np.floor(points.min(axis=0))
        header.scales = np.array([0.0001, 0.0001, 0.0001])
        las = laspy.LasData(header)
        las.x = points[:, 0]
        las.y = points[:, 1]
        las.z = points[:, 2]
        las.write(str(output_path))
    elif suffix == '.npy':
        np.save(output_path, points)
    else:
        delimiter = ',' if suffix == '.csv' else ' '
        np.savetxt(output_path, points, fmt="%.10g", delimiter=delimiter)

    logger.info(f"Saved {len(points)} points to {output_path}")
    return str(output_path)


def save_transform_matrix(transform: Union[RigidTransform, np.ndarray], output_file: Union[str, Path]) -> None:
    """Save a transformation matrix to a text file.

    Args:
        transform: RigidTransform or 4x4 transformation matrix
        output_file: Path to output file
    """
    matrix = transform.as_matrix() if isinstance(transform, RigidTransform) else np.asarray(transform)
    if matrix.shape != (4, 4):
        raise ValueError(f"Transform must be 4x4 matrix, got {matrix.shape}")
    np.savetxt(output_file, matrix, fmt='%.18e', header='4x4 transformation matrix')
    logger.info(f"Saved transformation matrix to {output_file}")


def load_transform_matrix(input_file: Union[str, Path]) -> RigidTransform:
    """Load a transformation matrix from a text file.

    Args:
        input_file: Path to input file

    Returns:
        RigidTransform built from the 4x4 matrix
    """
    matrix = np.loadtxt(input_file)
    if matrix.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {matrix.shape}")
    logger.info(f"Loaded transformation matrix from {input_file}")
    return RigidTransform.from_matrix(matrix)
