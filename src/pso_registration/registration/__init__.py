"""
Registration Module

This module provides the particle swarm registration engine: rigid
transforms, the nearest-neighbour fitness, particles, the swarm update loop
and its convergence monitor, plus the initial guess and ICP refinement used
around the swarm.
"""

from .transform import RigidTransform, compose, difference, perturb, random_near, identity
from .fitness import FitnessEvaluator
from .particle import Particle
from .convergence import ConvergenceMonitor
from .initial_guess import InitialGuess
from .refinement import ICPRefiner
from .swarm import Swarm

__all__ = [
    "RigidTransform",
    "compose",
    "difference",
    "perturb",
    "random_near",
    "identity",
    "FitnessEvaluator",
    "Particle",
    "ConvergenceMonitor",
    "InitialGuess",
    "ICPRefiner",
    "Swarm",
]
