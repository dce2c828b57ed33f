"""
Utility Functions Module

This module provides common utility functions used across the project.
- Logging setup
- Typed configuration loading
- Export of aligned clouds and transformation matrices
"""

from .logging import setup_logger
from .config import AppConfig, SwarmConfig, load_config
from .export import (
    save_point_cloud,
    write_pcd,
    save_transform_matrix,
    load_transform_matrix,
)

__all__ = [
    "setup_logger",
    "AppConfig",
    "SwarmConfig",
    "load_config",
    "save_point_cloud",
    "write_pcd",
    "save_transform_matrix",
    "load_transform_matrix",
]
