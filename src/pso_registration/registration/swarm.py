"""
Particle Swarm Registration

The swarm searches for the rigid transform that best superimposes a source
cloud onto a target cloud. Each generation:

1. Every particle computes its next transform from the global best read at
   the start of the generation (or, occasionally, takes a heavy-tailed jump).
2. All candidate transforms are scored (possibly in parallel); this is the
   generation barrier.
3. Personal bests are updated, then the global best is updated once by a
   min-reduction over the personal bests (lowest particle index wins ties).

Internally the source cloud is centred on its centroid so that rotation and
translation parameters are decoupled; transforms handed back to callers are
expressed in the original source frame.
"""

from __future__ import annotations

from typing import List, Optional, Union

import numpy as np

from .convergence import ConvergenceMonitor
from .fitness import FitnessEvaluator
from .initial_guess import InitialGuess
from .particle import Particle
from .transform import RigidTransform, compose, difference, perturb, random_near
from ..acceleration.parallel_executor import FitnessExecutor
from ..utils.config import SwarmConfig
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class Swarm:
    """
    Particle swarm optimizer over rigid transforms.

    Typical use:
        swarm = Swarm(source, target, SwarmConfig(particle_count=20))
        for _ in range(swarm.config.particle_count):
            swarm.add_particle()
        swarm.init()
        for _ in range(100):
            swarm.evolve()
            if swarm.has_converged():
                break
        T = swarm.get_best_transform()
    """

    def __init__(
        self,
        source: np.ndarray,
        target: np.ndarray,
        config: Optional[SwarmConfig] = None,
        *,
        initial_guess: Union[RigidTransform, str] = "centroid",
        max_source_points: Optional[int] = None,
        subsample_seed: int = 0,
        n_workers: Optional[int] = 1,
    ):
        """
        Set up the swarm and its fitness evaluator.

        Args:
            source: Source point cloud (N x 3), moved onto the target.
            target: Target point cloud (M x 3).
            config: Swarm configuration; defaults to SwarmConfig().
            initial_guess: Transform (source frame -> target frame) around which
                particles are spread, or the name of an InitialGuess method.
            max_source_points: Optional cap on the source points used for fitness.
            subsample_seed: Seed for the source subsampling.
            n_workers: Worker processes for fitness evaluation (1 = in-process,
                None = cpu_count - 1).

        Raises:
            ValueError: If either cloud is empty or malformed.
        """
        self.config = config if config is not None else SwarmConfig()

        source = np.asarray(source, dtype=np.float64)
        target = np.asarray(target, dtype=np.float64)
        if source.ndim != 2 or source.shape[1] != 3 or len(source) == 0:
            raise ValueError(f"Source cloud must be a non-empty (N, 3) array, got {source.shape}")
        if target.ndim != 2 or target.shape[1] != 3 or len(target) == 0:
            raise ValueError(f"Target cloud must be a non-empty (N, 3) array, got {target.shape}")

        self.origin = np.mean(source, axis=0)
        self.evaluator = FitnessEvaluator(
            source - self.origin,
            target,
            max_source_points=max_source_points,
            subsample_seed=subsample_seed,
        )
        self._executor = FitnessExecutor(self.evaluator, n_workers=n_workers)

        if isinstance(initial_guess, str):
            initial_guess = InitialGuess(initial_guess).compute(source, target)
        self.initial_guess = initial_guess
        self._center = self._to_centered(initial_guess)

        diagonal = float(np.linalg.norm(target.max(axis=0) - target.min(axis=0)))
        guess_offset = float(np.linalg.norm(np.mean(target, axis=0) - initial_guess.apply(self.origin)))
        if self.config.translation_spread is not None:
            self.translation_spread = self.config.translation_spread
        else:
            # Wide enough to reach the target centroid from the guess
            self.translation_spread = max(0.25 * diagonal, guess_offset)
        self.rotation_spread = self.config.rotation_spread
        if self.config.max_translation_step is not None:
            self.max_translation_step = self.config.max_translation_step
        else:
            self.max_translation_step = self.translation_spread
        self.max_rotation_step = self.config.max_rotation_step

        spreads = np.array([self.rotation_spread] * 3 + [self.translation_spread] * 3)
        self._velocity_scales = self.config.velocity_spread * spreads
        self._jump_scales = self.config.jump_scale * spreads

        self.particles: List[Particle] = []
        self.monitor = ConvergenceMonitor(
            cost_drop_threshold=self.config.cost_drop_threshold,
            cost_drop_iterations=self.config.cost_drop_iterations,
        )
        self.generation = 0
        self.best_index = -1
        self._best_transform: Optional[RigidTransform] = None
        self._best_cost = float("inf")
        self._initialized = False

        logger.info(
            "Swarm set up with %d source and %d target points "
            "(translation spread %.4g, rotation spread %.4g rad).",
            self.evaluator.n_source,
            self.evaluator.n_target,
            self.translation_spread,
            self.rotation_spread,
        )

    # ------------------------ Frames ------------------------
    def _to_centered(self, transform: RigidTransform) -> RigidTransform:
        # T(x) = T_c(x - origin)  =>  T_c = T o translate(+origin)
        return compose(RigidTransform.from_translation(self.origin), transform)

    def _from_centered(self, transform: RigidTransform) -> RigidTransform:
        return compose(RigidTransform.from_translation(-self.origin), transform)

    # ------------------------ Population ------------------------
    def add_particle(self) -> Particle:
        """
        Append a particle with its own random stream.

        Returns:
            The new particle (state is drawn in init()).
        """
        if self._initialized:
            raise RuntimeError("Particles must be added before init()")
        particle = Particle.create(index=len(self.particles), seed=self.config.seed)
        self.particles.append(particle)
        return particle

    def init(self) -> float:
        """
        Draw initial states, run the first fitness pass and set all bests.

        Particle 0 starts exactly on the initial guess; the others are spread
        around it.

        Returns:
            Global-best cost after initialization.

        Raises:
            ValueError: If no particles were added.
        """
        if not self.particles:
            raise ValueError("Swarm has no particles; add at least one before init()")

        for particle in self.particles:
            if particle.index == 0:
                particle.transform = self._center.copy()
            else:
                particle.transform = random_near(
                    self._center, particle.rng, self.translation_spread, self.rotation_spread
                )
            particle.velocity = particle.rng.normal(size=6) * self._velocity_scales
            particle.best_cost = float("inf")

        costs = self._executor.map_costs([p.transform for p in self.particles])
        for particle, cost in zip(self.particles, costs):
            particle.update_best(cost)

        self._best_cost = float("inf")
        self._reduce()
        self.monitor.reset(self._best_cost)
        self.generation = 0
        self._initialized = True

        logger.info("Initialized swarm with %d particles. %s", len(self.particles), self.summary())
        return self._best_cost

    # ------------------------ Evolution ------------------------
    def evolve(self) -> float:
        """
        Run exactly one PSO generation.

        Returns:
            Global-best cost after the generation.
        """
        if not self._initialized:
            raise RuntimeError("Swarm.init() must be called before evolve()")

        # Every particle sees the same global best within a generation
        global_best = self._best_transform
        for particle in self.particles:
            self._step(particle, global_best)

        costs = self._executor.map_costs([p.transform for p in self.particles])
        for particle, cost in zip(self.particles, costs):
            particle.update_best(cost)

        improved = self._reduce()
        self.generation += 1
        self.monitor.update(self._best_cost)

        logger.info(self.summary())
        if self.config.verbose:
            for particle in self.particles:
                logger.info(particle.describe())
        if improved:
            logger.debug("New global best from particle %d.", self.best_index)
        if self.has_converged():
            logger.debug(
                "Cost drop below %.3g for %d generations.",
                self.config.cost_drop_threshold,
                self.monitor.low_drop_count,
            )
        return self._best_cost

    def _step(self, particle: Particle, global_best: RigidTransform) -> None:
        cfg = self.config
        low, high = cfg.coefficient_range
        r1, r2 = particle.rng.uniform(low, high, size=2)

        velocity = (
            cfg.inertia * particle.velocity
            + cfg.cognitive_weight * r1 * difference(particle.best_transform, particle.transform)
            + cfg.social_weight * r2 * difference(global_best, particle.transform)
        )
        particle.velocity = self._clamp(velocity)

        particle.jumped = bool(particle.rng.random() < cfg.jump_probability)
        if particle.jumped:
            jump = particle.rng.standard_t(cfg.degrees_of_freedom, size=6) * self._jump_scales
            particle.transform = perturb(particle.transform, jump)
        else:
            particle.transform = perturb(particle.transform, particle.velocity)

    def _clamp(self, velocity: np.ndarray) -> np.ndarray:
        rot_norm = float(np.linalg.norm(velocity[:3]))
        if rot_norm > self.max_rotation_step:
            velocity[:3] *= self.max_rotation_step / rot_norm
        trans_norm = float(np.linalg.norm(velocity[3:]))
        if self.max_translation_step > 0 and trans_norm > self.max_translation_step:
            velocity[3:] *= self.max_translation_step / trans_norm
        return velocity

    def _reduce(self) -> bool:
        """Single-writer min-reduction of personal bests into the global best."""
        best_costs = np.array([p.best_cost for p in self.particles])
        idx = int(np.argmin(best_costs))  # first minimum = lowest index
        if best_costs[idx] < self._best_cost:
            self._best_cost = float(best_costs[idx])
            self._best_transform = self.particles[idx].best_transform.copy()
            self.best_index = idx
            return True
        return False

    # ------------------------ Results ------------------------
    def get_best_transform(self) -> RigidTransform:
        """Best transform so far, mapping the original source frame onto the target."""
        if self._best_transform is None:
            raise RuntimeError("Swarm.init() must be called before reading the best transform")
        return self._from_centered(self._best_transform)

    def get_best_cost(self) -> float:
        return self._best_cost

    def score(self, transform: RigidTransform) -> float:
        """Fitness of a transform expressed in the original source frame."""
        return self.evaluator.evaluate(self._to_centered(transform))

    def has_converged(self) -> bool:
        return self.monitor.converged

    def summary(self) -> str:
        return (
            f"Generation {self.generation} | best cost {self._best_cost:.6g} "
            f"(rmse {np.sqrt(self._best_cost):.6g}) | particle {self.best_index} | "
            f"low-drop streak {self.monitor.low_drop_count}/{self.config.cost_drop_iterations}"
        )

    def log_summary(self) -> None:
        best = self.get_best_transform()
        logger.info("PSO summary")
        logger.info("  Generations: %d (converged: %s)", self.generation, self.has_converged())
        logger.info("  Particles: %d", len(self.particles))
        logger.info("  Best cost: %.6g (rmse %.6g)", self._best_cost, np.sqrt(self._best_cost))
        logger.info("  Rotation angle: %.4f deg", np.rad2deg(best.rotation_angle()))
        logger.info("  Translation: %s", np.array2string(best.translation, precision=6))
        logger.info(
            "  Fitness evaluations: %d (mean %.4f ms)",
            self._executor.total_evaluations,
            1000.0 * self._executor.mean_evaluation_time,
        )

    def __str__(self) -> str:
        return self.summary()

    # ------------------------ Resources ------------------------
    def close(self) -> None:
        self._executor.close()

    def __enter__(self) -> "Swarm":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
