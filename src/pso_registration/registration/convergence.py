"""
Convergence Monitoring

Counts consecutive generations whose global-best cost drop is below a
threshold and signals convergence once the count reaches a limit.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque


@dataclass
class ConvergenceMonitor:
    cost_drop_threshold: float = 0.01
    cost_drop_iterations: int = 5
    previous_cost: float = float("inf")
    low_drop_count: int = 0
    # Most recent drops only; the window is cost_drop_iterations long
    drops: Deque[float] = field(init=False, repr=False)

    def __post_init__(self):
        if self.cost_drop_iterations < 1:
            raise ValueError(f"cost_drop_iterations must be >= 1, got {self.cost_drop_iterations}")
        self.drops = deque(maxlen=self.cost_drop_iterations)

    def reset(self, initial_cost: float) -> None:
        """Start monitoring from the cost established by the first fitness pass."""
        self.previous_cost = float(initial_cost)
        self.low_drop_count = 0
        self.drops.clear()

    def update(self, cost: float) -> bool:
        """
        Record the global-best cost of a finished generation.

        Returns:
            True if convergence is signalled after this generation.
        """
        cost = float(cost)
        drop = self.previous_cost - cost
        self.previous_cost = cost
        return self.record_drop(drop)

    def record_drop(self, drop: float) -> bool:
        self.drops.append(float(drop))
        if drop < self.cost_drop_threshold:
            self.low_drop_count += 1
        else:
            self.low_drop_count = 0
        return self.converged

    @property
    def converged(self) -> bool:
        return self.low_drop_count >= self.cost_drop_iterations
