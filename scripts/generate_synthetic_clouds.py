"""
Generate a synthetic registration problem: a source cloud, a target cloud and
the ground truth pose of the source.

- Creates a terrain-like surface with hills, a mound and noise, so the cloud
  has no rotational symmetry.
- The target is a resampling of the surface (different points than the source).
- The source is the same surface moved by a known rigid transform.
- The ground truth is the source before the misalignment, i.e. the pose a
  perfect registration recovers.
- Writes source/target/ground_truth clouds plus the true transform to
  data/synthetic/ by default.
"""
from __future__ import annotations

import argparse
import math
from pathlib import Path
import sys

import numpy as np
from scipy.spatial.transform import Rotation

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.registration.transform import RigidTransform
from pso_registration.utils.export import save_point_cloud, save_transform_matrix


def make_surface(nx=120, ny=120, spacing=0.5, seed=42):
    rng = np.random.default_rng(seed)
    x = (np.arange(nx) - nx/2) * spacing
    y = (np.arange(ny) - ny/2) * spacing
    X, Y = np.meshgrid(x, y)
    # Base surface: gentle hills
    Z = 1.5 * np.sin(0.08*X) * np.cos(0.06*Y) + 0.3 * np.sin(0.2*X + 0.3) + 0.2 * np.cos(0.15*Y - 0.7)
    # Off-centre mound breaks the symmetry
    Z += 3.0 * np.exp(-((X - 8.0)**2 + (Y + 5.0)**2) / (2 * 4.0**2))
    # Add low-amplitude noise
    Z += 0.02 * rng.standard_normal(size=Z.shape)
    return X, Y, Z


def to_points(X, Y, Z, keep_ratio=0.3, seed=123):
    rng = np.random.default_rng(seed)
    H, W = Z.shape
    idx = rng.choice(H*W, size=int(keep_ratio*H*W), replace=False)
    xi = idx % W
    yi = idx // W
    pts = np.column_stack([X[yi, xi], Y[yi, xi], Z[yi, xi]])
    return pts


def misalignment(translation=(4.0, -2.5, 1.0), rot_deg=(10.0, -5.0, 25.0)) -> RigidTransform:
    rotation = Rotation.from_euler("xyz", [math.radians(a) for a in rot_deg])
    return RigidTransform(rotation, np.asarray(translation, dtype=float))


def main():
    parser = argparse.ArgumentParser(description="Generate a synthetic registration problem")
    parser.add_argument(
        "--out-dir",
        type=str,
        default=str(Path(__file__).parent.parent / "data" / "synthetic"),
        help="Output directory",
    )
    parser.add_argument("--format", choices=["pcd", "las", "laz", "xyz", "npy"], default="pcd")
    parser.add_argument("--seed", type=int, default=1)
    args = parser.parse_args()

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    X, Y, Z = make_surface(seed=args.seed)
    ground_truth = to_points(X, Y, Z, keep_ratio=0.25, seed=args.seed + 1)
    target = to_points(X, Y, Z, keep_ratio=0.25, seed=args.seed + 2)

    # The source is the ground truth moved out of place; registration must undo this
    offset = misalignment()
    source = offset.apply(ground_truth)

    ext = args.format
    save_point_cloud(source, out_dir / f"source.{ext}")
    save_point_cloud(target, out_dir / f"target.{ext}")
    save_point_cloud(ground_truth, out_dir / f"ground_truth.{ext}")
    save_transform_matrix(offset.inverse(), out_dir / "true_transform.txt")

    print(f"Wrote: {out_dir / f'source.{ext}'}")
    print(f"Wrote: {out_dir / f'target.{ext}'}")
    print(f"Wrote: {out_dir / f'ground_truth.{ext}'}")
    print(f"Wrote: {out_dir / 'true_transform.txt'}")


if __name__ == "__main__":
    main()
