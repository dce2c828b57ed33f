"""
Command line driver for PSO point cloud registration.

Loads a source and a target cloud, optionally downsamples them, runs the
particle swarm until the generation limit or convergence, optionally polishes
the result with ICP, and writes the aligned source cloud.

Usage:
    pso-register source.pcd target.pcd -p 50 -e 1000 -g ground_truth.pcd
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
from pydantic import ValidationError
from sklearn.neighbors import NearestNeighbors

from .preprocessing.loader import PointCloudLoader
from .preprocessing.voxel_filter import voxel_downsample
from .registration.refinement import ICPRefiner
from .registration.swarm import Swarm
from .utils.config import AppConfig, load_raw_config
from .utils.export import save_point_cloud, save_transform_matrix
from .utils.logging import setup_logger, set_package_level

logger = setup_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pso-register",
        description="Rigid point cloud registration with particle swarm optimization",
    )
    parser.add_argument("source_file_name", help="The path of the source point cloud")
    parser.add_argument("target_file_name", help="The path of the target point cloud")
    parser.add_argument(
        "-s", "--source-filter-size", "--source_filter_size",
        dest="source_filter_size", type=float, default=None,
        help="The leaf size of the voxel filter of the source cloud (0 = no filtering)",
    )
    parser.add_argument(
        "-t", "--target-filter-size", "--target_filter_size",
        dest="target_filter_size", type=float, default=None,
        help="The leaf size of the voxel filter of the target cloud (0 = no filtering)",
    )
    parser.add_argument(
        "-p", "--num-part", "--num_part",
        dest="num_part", type=int, default=None,
        help="The number of particles of the swarm (default 50)",
    )
    parser.add_argument(
        "-e", "--num-it", "--num_it",
        dest="num_gen", type=int, default=None,
        help="The number of iterations (generations) of the algorithm (default 1000)",
    )
    parser.add_argument(
        "-g", "--ground-truth", "--ground_truth",
        dest="ground_truth", type=str, default=None,
        help="The path of the ground truth for the source cloud, if available",
    )
    parser.add_argument(
        "-i", "--num-iter", "--num_iter",
        dest="num_iter", type=int, default=None,
        help="The maximum number of ICP refinement iterations on the final transform (0 = off, default 10)",
    )
    parser.add_argument(
        "-d", "--dof",
        dest="dof", type=float, default=None,
        help="The degrees of freedom of the t-distribution used for long jumps (default 5)",
    )
    parser.add_argument(
        "-c", "--cost-drop-threshold", "--cost_drop_treshold",
        dest="cost_drop_threshold", type=float, default=None,
        help="If the cost drop stays below this threshold for too many generations, the run stops (default 0.01)",
    )
    parser.add_argument(
        "-n", "--num-drop-iter", "--num_drop_iter",
        dest="num_drop_iter", type=int, default=None,
        help="The number of generations the cost drop may stay under the threshold (default 5)",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to YAML configuration file")
    parser.add_argument("--seed", type=int, default=None, help="Run seed for the particle random streams")
    parser.add_argument("--output", type=str, default=None, help="Path of the aligned source cloud (default output.pcd)")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes for fitness evaluation (enables parallel mode)")
    parser.add_argument("--visualize", action="store_true", help="Show the registration progress")
    parser.add_argument("--backend", choices=["pyvista", "plotly"], default=None, help="Visualization backend")
    parser.add_argument("--verbose", action="store_true", help="Log every particle after each generation")
    return parser


def _apply_overrides(raw: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Merge command line values into the raw YAML dictionary."""
    def section(name: str) -> Dict[str, Any]:
        value = raw.get(name)
        if not isinstance(value, dict):
            value = {}
            raw[name] = value
        return value

    overrides = [
        ("preprocessing", "source_filter_size", args.source_filter_size),
        ("preprocessing", "target_filter_size", args.target_filter_size),
        ("swarm", "particle_count", args.num_part),
        ("swarm", "generation_limit", args.num_gen),
        ("swarm", "max_iterations", args.num_iter),
        ("swarm", "degrees_of_freedom", args.dof),
        ("swarm", "cost_drop_threshold", args.cost_drop_threshold),
        ("swarm", "cost_drop_iterations", args.num_drop_iter),
        ("swarm", "seed", args.seed),
        ("output", "cloud_path", args.output),
        ("visualization", "backend", args.backend),
    ]
    for section_name, key, value in overrides:
        if value is not None:
            section(section_name)[key] = value

    if args.workers is not None:
        section("parallel").update({"enabled": True, "n_workers": args.workers})
    if args.visualize:
        section("visualization")["enabled"] = True
    if args.verbose:
        section("swarm")["verbose"] = True
    return raw


def _nn_rmse(points: np.ndarray, reference: np.ndarray) -> float:
    nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(reference)
    d, _ = nbrs.kneighbors(points)
    return float(np.sqrt(np.mean(d.ravel() ** 2)))


def _load_ground_truth(loader: PointCloudLoader, path: str, leaf_size: float) -> Optional[np.ndarray]:
    logger.info(f"Loading ground truth point cloud from {path}")
    try:
        points = loader.load(path)
    except (FileNotFoundError, ValueError) as e:
        logger.warning(f"Could not load ground truth ({e}); ground truth reporting disabled")
        return None
    if len(points) == 0:
        logger.warning("Ground truth cloud is empty; ground truth reporting disabled")
        return None
    if leaf_size != 0:
        points = voxel_downsample(points, leaf_size)
    return points


def _create_viewer(cfg: AppConfig):
    # Imported lazily: the viewer pulls in VTK and is never needed by the engine
    try:
        from .visualization.point_cloud import PointCloudVisualizer
        return PointCloudVisualizer(backend=cfg.visualization.backend, sample_size=cfg.visualization.sample_size)
    except Exception as e:
        logger.warning(f"Visualization unavailable ({e}); continuing without viewer")
        return None


def run(cfg: AppConfig, source_path: str, target_path: str, ground_truth_path: Optional[str] = None) -> int:
    """
    Execute a full registration run.

    Args:
        cfg: Validated application configuration
        source_path: Source cloud path
        target_path: Target cloud path
        ground_truth_path: Optional path of the source cloud in its true pose

    Returns:
        Process exit status (0 on success)
    """
    loader = PointCloudLoader()

    logger.info(f"Loading source point cloud from {source_path}")
    try:
        source = loader.load(source_path)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load source cloud ({e}), closing")
        return 1

    logger.info(f"Loading target point cloud from {target_path}")
    try:
        target = loader.load(target_path)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load target cloud ({e}), closing")
        return 1

    pre = cfg.preprocessing
    if pre.source_filter_size != 0:
        source = voxel_downsample(source, pre.source_filter_size)
    if pre.target_filter_size != 0:
        target = voxel_downsample(target, pre.target_filter_size)

    ground_truth = None
    if ground_truth_path is not None:
        ground_truth = _load_ground_truth(loader, ground_truth_path, pre.source_filter_size)

    viewer = _create_viewer(cfg) if cfg.visualization.enabled else None
    if viewer is not None:
        viewer.add_cloud("target", target, color="green")
        viewer.add_cloud("source", source, color="blue")
        if ground_truth is not None:
            viewer.add_cloud("groundTruth", ground_truth, color="red")

    n_workers = (cfg.parallel.n_workers if cfg.parallel.enabled else 1)
    try:
        swarm = Swarm(
            source,
            target,
            cfg.swarm,
            initial_guess=cfg.initial_guess.method,
            max_source_points=cfg.fitness.max_source_points,
            subsample_seed=cfg.fitness.subsample_seed,
            n_workers=n_workers,
        )
    except ValueError as e:
        logger.error(f"Invalid registration input: {e}")
        return 1

    with swarm:
        for _ in range(cfg.swarm.particle_count):
            swarm.add_particle()
        swarm.init()

        best = swarm.get_best_transform()
        for _ in range(cfg.swarm.generation_limit):
            swarm.evolve()
            best = swarm.get_best_transform()
            if viewer is not None:
                viewer.update_pose("source", best)
                viewer.render_frame(cfg.visualization.render_timeout_ms)
            if swarm.has_converged():
                logger.info(f"Swarm converged after {swarm.generation} generations")
                break

        best_cost = swarm.get_best_cost()
        if cfg.swarm.summary:
            swarm.log_summary()

        if cfg.swarm.max_iterations > 0:
            refiner = ICPRefiner(
                max_iterations=cfg.swarm.max_iterations,
                tolerance=cfg.refinement.tolerance,
                max_correspondence_distance=cfg.refinement.max_correspondence_distance,
            )
            refined, _ = refiner.refine(source, target, best, nbrs=swarm.evaluator.nbrs)
            refined_cost = swarm.score(refined)
            if refined_cost < best_cost:
                logger.info(f"ICP refinement lowered cost from {best_cost:.6g} to {refined_cost:.6g}")
                best, best_cost = refined, refined_cost
            else:
                logger.info("ICP refinement did not improve the swarm result; keeping it")

    aligned = best.apply(source)
    logger.info(f"Final cost {best_cost:.6g}; transform:\n{np.array2string(best.as_matrix(), precision=6)}")
    if ground_truth is not None:
        logger.info(f"RMSE to ground truth: {_nn_rmse(aligned, ground_truth):.6g}")

    output_path = Path(cfg.output.cloud_path)
    transform_path = cfg.output.transform_path or str(output_path.with_name(f"{output_path.stem}_transform.txt"))
    try:
        save_point_cloud(aligned, output_path)
        save_transform_matrix(best, transform_path)
    except (OSError, ValueError) as e:
        logger.error(f"Could not write results: {e}")
        return 1

    if viewer is not None:
        viewer.update_pose("source", best)
        if cfg.visualization.backend == "plotly":
            viewer.show()
        viewer.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function to run the registration workflow.
    """
    args = build_parser().parse_args(argv)

    try:
        raw = load_raw_config(args.config)
        cfg = AppConfig.model_validate(_apply_overrides(raw, args))
    except (FileNotFoundError, ValueError, ValidationError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    set_package_level(log_level, cfg.logging.file)

    logger.info("PSO Point Cloud Registration")
    logger.info("============================")
    return run(cfg, args.source_file_name, args.target_file_name, args.ground_truth)


if __name__ == "__main__":
    sys.exit(main())
