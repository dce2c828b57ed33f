"""
Configuration management for pso-point-cloud-registration.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Tuple, Any, Dict

from pydantic import BaseModel, Field, ValidationError, field_validator
import yaml


# -----------------------
# Typed config structures
# -----------------------


class SwarmConfig(BaseModel):
    particle_count: int = Field(default=50, ge=1, description="Number of particles in the swarm")
    generation_limit: int = Field(
        default=1000,
        ge=0,
        description="Upper bound for the caller's generation loop (the swarm itself never reads it)",
    )
    degrees_of_freedom: float = Field(
        default=5.0,
        gt=0.0,
        description="Degrees of freedom of the Student's t distribution used for long jumps",
    )
    cost_drop_threshold: float = Field(
        default=0.01,
        ge=0.0,
        description="A generation whose global-best cost drop is below this value counts as insignificant",
    )
    cost_drop_iterations: int = Field(
        default=5,
        ge=1,
        description="Consecutive insignificant generations before convergence is signalled",
    )
    max_iterations: int = Field(
        default=10,
        ge=0,
        description="Iteration budget of the ICP refinement run on the final global best (0 = disabled)",
    )
    seed: int = Field(default=0, ge=0, description="Run seed; each particle stream is keyed by (seed, index)")

    inertia: float = Field(default=0.7298)
    cognitive_weight: float = Field(default=1.49618)
    social_weight: float = Field(default=1.49618)
    coefficient_range: Tuple[float, float] = Field(
        default=(0.0, 1.0),
        description="Bounds of the uniform draws r1, r2 scaling the cognitive and social terms",
    )

    jump_probability: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Probability that a particle takes a heavy-tailed jump instead of the PSO step",
    )
    jump_scale: float = Field(default=0.5, gt=0.0, description="Jump size relative to the initial spreads")

    rotation_spread: float = Field(
        default=0.3,
        ge=0.0,
        description="Std-dev (radians) of the initial rotation offsets around the initial guess",
    )
    translation_spread: Optional[float] = Field(
        default=None,
        ge=0.0,
        description="Std-dev of the initial translation offsets (None = the larger of 25% of the target bounding box diagonal and the guess-to-target centroid distance)",
    )
    velocity_spread: float = Field(
        default=0.1,
        ge=0.0,
        description="Initial velocity std-dev relative to the rotation/translation spreads",
    )
    max_rotation_step: float = Field(default=0.5, gt=0.0, description="Clamp on the rotation part of a velocity (radians)")
    max_translation_step: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Clamp on the translation part of a velocity (None = translation spread)",
    )

    verbose: bool = Field(default=False, description="Log every particle after each generation")
    summary: bool = Field(default=True, description="Log a summary block when the run finishes")

    @field_validator("coefficient_range")
    @classmethod
    def _check_range(cls, value: Tuple[float, float]) -> Tuple[float, float]:
        low, high = value
        if not low < high:
            raise ValueError(f"coefficient_range must satisfy low < high, got {value}")
        return value


class FitnessConfig(BaseModel):
    max_source_points: Optional[int] = Field(
        default=None,
        ge=1,
        description="Evaluate on a fixed random subset of the source cloud (None = all points)",
    )
    subsample_seed: int = Field(default=0)


class InitialGuessConfig(BaseModel):
    method: Literal["centroid", "pca", "none"] = Field(default="centroid")


class RefinementConfig(BaseModel):
    tolerance: float = Field(default=1e-10, description="Convergence tolerance on the change in mean squared error")
    max_correspondence_distance: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Correspondence gate for ICP (None = no gate)",
    )


class PreprocessingConfig(BaseModel):
    source_filter_size: float = Field(default=0.0, ge=0.0, description="Voxel leaf size for the source cloud (0 = off)")
    target_filter_size: float = Field(default=0.0, ge=0.0, description="Voxel leaf size for the target cloud (0 = off)")


class ParallelConfig(BaseModel):
    enabled: bool = Field(default=False, description="Evaluate particle fitness in a worker pool")
    n_workers: Optional[int] = Field(default=None, description="Number of worker processes (None = cpu_count - 1)")


class VisualizationConfig(BaseModel):
    enabled: bool = Field(default=False)
    backend: Literal["pyvista", "plotly"] = Field(default="pyvista")
    render_timeout_ms: int = Field(default=1, ge=1)
    sample_size: Optional[int] = Field(default=None, description="Downsample clouds for display")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class OutputConfig(BaseModel):
    cloud_path: str = Field(default="output.pcd", description="Where the aligned source cloud is written")
    transform_path: Optional[str] = Field(
        default=None,
        description="Where the 4x4 transform is written (None = next to cloud_path)",
    )


class AppConfig(BaseModel):
    swarm: SwarmConfig = Field(default_factory=SwarmConfig)
    fitness: FitnessConfig = Field(default_factory=FitnessConfig)
    initial_guess: InitialGuessConfig = Field(default_factory=InitialGuessConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    visualization: VisualizationConfig = Field(default_factory=VisualizationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/pso_registration/utils/config.py
    parents sequence:
      0 -> .../src/pso_registration/utils
      1 -> .../src/pso_registration
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_raw_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> Dict[str, Any]:
    """
    Read the YAML configuration as a plain dictionary without validating it.

    The command line driver merges its overrides into this dictionary
    before validation so that every value goes through the same checks.

    Args:
        path: Explicit YAML file path. None means repo_root/config/default.yaml.
        allow_missing: If True, returns an empty dict when the file is missing.

    Returns:
        Dictionary of raw configuration values
    """
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing and path is None:
            return {}
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {cfg_path}: {e}")

    if not isinstance(raw, dict):
        raise ValueError(f"Invalid configuration in {cfg_path}: top level must be a mapping")
    return raw


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when the default file is missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    raw = load_raw_config(path, allow_missing=allow_missing)
    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {path or 'config/default.yaml'}: {e}")
