"""
Visualization Module

Live viewer for the registration progress.
"""

from .point_cloud import PointCloudVisualizer

__all__ = [
    "PointCloudVisualizer",
]
