"""
Swarm particle state.

A particle is a candidate transform with a velocity, its personal best and
an independent random stream keyed by (run seed, particle index).
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .transform import PARAMETER_SIZE, RigidTransform


def particle_rng(seed: int, index: int) -> np.random.Generator:
    """Random stream of one particle; independent of scheduling order."""
    return np.random.default_rng([int(seed), int(index)])


@dataclass
class Particle:
    index: int
    rng: np.random.Generator
    transform: RigidTransform = field(default_factory=RigidTransform.identity)
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(PARAMETER_SIZE))
    best_transform: RigidTransform = field(default_factory=RigidTransform.identity)
    best_cost: float = float("inf")
    cost: float = float("inf")
    jumped: bool = False

    @classmethod
    def create(cls, index: int, seed: int) -> "Particle":
        return cls(index=index, rng=particle_rng(seed, index))

    def update_best(self, cost: float) -> bool:
        """
        Record the cost of the current transform; keep it if it beats the personal best.

        Returns:
            True if the personal best improved.
        """
        self.cost = float(cost)
        if self.cost < self.best_cost:
            self.best_cost = self.cost
            self.best_transform = self.transform.copy()
            return True
        return False

    def describe(self) -> str:
        return (
            f"particle {self.index:3d} | cost {self.cost:.6g} | best {self.best_cost:.6g} | "
            f"|v| {np.linalg.norm(self.velocity):.4g}{' | jump' if self.jumped else ''}"
        )
