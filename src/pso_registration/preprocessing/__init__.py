"""
Preprocessing Module

Loading of point cloud files and voxel grid downsampling.
"""

from .loader import PointCloudLoader, read_pcd
from .voxel_filter import voxel_downsample

__all__ = [
    "PointCloudLoader",
    "read_pcd",
    "voxel_downsample",
]
