"""
Acceleration Module

Parallel fitness evaluation across CPU cores.
"""

from .parallel_executor import FitnessExecutor

__all__ = [
    "FitnessExecutor",
]
