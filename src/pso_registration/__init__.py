"""
PSO Point Cloud Registration Package

A Python package for rigid registration of two 3D point clouds with particle
swarm optimization. Each particle is a candidate rigid transform; fitness is
the mean squared nearest-neighbour distance of the moved source to the target.
The swarm combines the classic velocity update with occasional heavy-tailed
jumps drawn from a Student's t distribution, and a final ICP pass polishes
the best transform found.
"""

__version__ = "0.1.0"

from .preprocessing import *
from .registration import *
from .acceleration import *
from .utils import *

__all__ = [
    "preprocessing",
    "registration",
    "acceleration",
    "utils",
]
