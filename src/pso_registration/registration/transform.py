"""
Rigid Transform Representation

A rigid transform maps a point x to R x + t. The rotation is held as a
scipy Rotation (unit quaternion), so every transform produced here stays a
proper member of SO(3) without explicit re-orthonormalization of matrices.

Velocities and differences between transforms live in a 6-dimensional
parameter space [rx, ry, rz, tx, ty, tz]: an axis-angle rotation delta
followed by a translation delta.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.spatial.transform import Rotation


PARAMETER_SIZE = 6


class RigidTransform:
    """Rotation plus translation in 3D (no scale, no shear)."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation: Optional[Rotation] = None, translation: Optional[np.ndarray] = None):
        if rotation is None:
            rotation = Rotation.identity()
        if translation is None:
            translation = np.zeros(3)
        translation = np.asarray(translation, dtype=np.float64).reshape(-1)
        if translation.shape != (3,):
            raise ValueError(f"translation must have 3 components, got shape {translation.shape}")
        self.rotation = rotation
        self.translation = translation

    # ------------------------ Constructors ------------------------
    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls()

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "RigidTransform":
        """
        Build a transform from a 4x4 homogeneous matrix.

        The upper-left 3x3 block is projected onto the closest rotation, so a
        slightly non-orthonormal input still yields a valid transform.

        Args:
            matrix: Homogeneous transformation matrix (4 x 4).

        Returns:
            RigidTransform equivalent to the matrix.
        """
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4 matrix, got {matrix.shape}")
        return cls(Rotation.from_matrix(matrix[:3, :3]), matrix[:3, 3].copy())

    @classmethod
    def from_vector(cls, params: np.ndarray) -> "RigidTransform":
        """Build a transform from a 6-vector [rotation vector, translation]."""
        params = np.asarray(params, dtype=np.float64)
        if params.shape != (PARAMETER_SIZE,):
            raise ValueError(f"Expected a {PARAMETER_SIZE}-vector, got shape {params.shape}")
        return cls(Rotation.from_rotvec(params[:3]), params[3:].copy())

    @classmethod
    def from_translation(cls, translation) -> "RigidTransform":
        return cls(Rotation.identity(), np.asarray(translation, dtype=np.float64))

    # ------------------------ Geometry ------------------------
    def apply(self, points: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Apply the transform to a single point (3,) or a point set (N x 3).

        Args:
            points: Points to transform.
            out: Optional preallocated (N x 3) array receiving the result.

        Returns:
            Transformed points, same shape as the input.
        """
        points = np.asarray(points, dtype=np.float64)
        R = self.rotation.as_matrix()
        if points.ndim == 1:
            return R @ points + self.translation
        if out is None:
            return points @ R.T + self.translation
        np.matmul(points, R.T, out=out)
        out += self.translation
        return out

    def inverse(self) -> "RigidTransform":
        inv_rotation = self.rotation.inv()
        return RigidTransform(inv_rotation, -inv_rotation.apply(self.translation))

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.rotation.as_matrix()
        T[:3, 3] = self.translation
        return T

    def as_vector(self) -> np.ndarray:
        """Return the 6-vector [rotation vector, translation]."""
        return np.concatenate([self.rotation.as_rotvec(), self.translation])

    def rotation_angle(self) -> float:
        """Rotation magnitude in radians, in [0, pi]."""
        return float(self.rotation.magnitude())

    def copy(self) -> "RigidTransform":
        return RigidTransform(Rotation.from_quat(self.rotation.as_quat()), self.translation.copy())

    def __matmul__(self, other: "RigidTransform") -> "RigidTransform":
        # self @ other applies other first, matching matrix products
        return compose(other, self)

    def __repr__(self) -> str:
        rx, ry, rz = self.rotation.as_rotvec()
        tx, ty, tz = self.translation
        return (
            f"RigidTransform(rotvec=[{rx:.6f}, {ry:.6f}, {rz:.6f}], "
            f"translation=[{tx:.6f}, {ty:.6f}, {tz:.6f}])"
        )


def compose(a: RigidTransform, b: RigidTransform) -> RigidTransform:
    """
    Compose two transforms so that the result applies `b` after `a`.

    Args:
        a: First transform applied.
        b: Second transform applied.

    Returns:
        Transform equivalent to x -> b(a(x)).
    """
    return RigidTransform(b.rotation * a.rotation, b.rotation.apply(a.translation) + b.translation)


def perturb(transform: RigidTransform, velocity: np.ndarray) -> RigidTransform:
    """
    Move a transform by a velocity in parameter space.

    The rotation part of the velocity is an axis-angle delta applied on the
    left of the current rotation; the translation part is added directly.

    Args:
        transform: Transform to move.
        velocity: 6-vector [rotation delta, translation delta].

    Returns:
        New transform with a normalized rotation.
    """
    velocity = np.asarray(velocity, dtype=np.float64)
    rotation = Rotation.from_rotvec(velocity[:3]) * transform.rotation
    # Renormalize the quaternion so drift cannot accumulate across generations
    quat = rotation.as_quat()
    rotation = Rotation.from_quat(quat / np.linalg.norm(quat))
    return RigidTransform(rotation, transform.translation + velocity[3:])


def difference(a: RigidTransform, b: RigidTransform) -> np.ndarray:
    """
    Parameter-space difference a - b.

    Returns the 6-vector d such that perturb(b, d) equals a.
    """
    rotation_delta = (a.rotation * b.rotation.inv()).as_rotvec()
    return np.concatenate([rotation_delta, a.translation - b.translation])


def random_near(
    center: RigidTransform,
    rng: np.random.Generator,
    translation_scale: float,
    rotation_scale: float,
) -> RigidTransform:
    """
    Draw a transform around `center`.

    Rotation offsets are normal rotation vectors with std-dev `rotation_scale`
    (radians), translation offsets are normal with std-dev `translation_scale`.

    Args:
        center: Transform around which to sample.
        rng: Random stream used for the draw.
        translation_scale: Spread of the translation offset.
        rotation_scale: Spread of the rotation offset in radians.

    Returns:
        Sampled transform.
    """
    offset = np.concatenate([
        rng.normal(scale=rotation_scale, size=3),
        rng.normal(scale=translation_scale, size=3),
    ])
    return perturb(center, offset)


def identity() -> RigidTransform:
    return RigidTransform.identity()
