"""
Rigid 2D Transforms.

RigidTransform2D maps a construction group's table frame into puzzle space
(rotation around origin, then translation). fit_rigid() estimates such a
transform from point correspondences (least squares, no scaling).
"""

from __future__ import annotations
from dataclasses import dataclass
import math

import numpy as np

from tangram_engine.models import Pose2D

EPS = 1e-9


@dataclass(frozen=True)
class RigidTransform2D:
    """
    2D rigid transformation: rotation + translation.

    Attributes:
        x: Translation in x (world units)
        y: Translation in y (world units)
        theta: Rotation angle in radians (CCW)

    Rotation convention:
        - CCW (positive theta = counter-clockwise)
        - Example: theta=pi/2 rotates point (1,0) to (0,1)
    """
    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    @classmethod
    def from_rotation_translation(cls, theta: float, translation: np.ndarray) -> RigidTransform2D:
        return cls(float(translation[0]), float(translation[1]), float(theta))

    @property
    def translation(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=float)

    def rotation_matrix(self) -> np.ndarray:
        return rotation_matrix(self.theta)

    def to_matrix(self) -> np.ndarray:
        """
        Convert to 3x3 homogeneous transformation matrix.

        Returns:
            3x3 numpy array: [[cos(t) -sin(t) x]
                              [sin(t)  cos(t) y]
                              [0       0      1]]
        """
        c = math.cos(self.theta)
        s = math.sin(self.theta)
        return np.array([
            [c, -s, self.x],
            [s,  c, self.y],
            [0,  0, 1]
        ], dtype=float)

    @classmethod
    def from_matrix(cls, mat: np.ndarray) -> RigidTransform2D:
        """Create from a 3x3 homogeneous matrix (rotation read via arctan2)."""
        theta = math.atan2(mat[1, 0], mat[0, 0])
        return cls(float(mat[0, 2]), float(mat[1, 2]), theta)

    def compose(self, other: RigidTransform2D) -> RigidTransform2D:
        """
        Compose: result = self o other (other applied first, then self).
        """
        return RigidTransform2D.from_matrix(self.to_matrix() @ other.to_matrix())

    def inverse(self) -> RigidTransform2D:
        return RigidTransform2D.from_matrix(np.linalg.inv(self.to_matrix()))

    def apply(self, points: np.ndarray) -> np.ndarray:
        """
        Apply transform to points.

        Args:
            points: (N, 2) array or a single (2,) point

        Returns:
            Transformed points with the input's shape

        Raises:
            ValueError: If points is neither (2,) nor (N, 2)
        """
        pts = np.asarray(points, dtype=float)
        if pts.ndim == 1 and pts.shape[0] == 2:
            return self.rotation_matrix() @ pts + self.translation
        if pts.ndim != 2 or pts.shape[1] != 2:
            raise ValueError(f"Expected (N, 2) array, got shape {pts.shape}")
        return pts @ self.rotation_matrix().T + self.translation

    def apply_pose(self, pose: Pose2D, flip_parity: bool = False) -> Pose2D:
        """Map a pose: position transformed, rotation offset, flip XOR parity."""
        mapped = self.apply(pose.position)
        return Pose2D(float(mapped[0]), float(mapped[1]), pose.theta + self.theta,
                      bool(pose.flip) ^ bool(flip_parity))


def rotation_matrix(theta: float) -> np.ndarray:
    c = math.cos(theta)
    s = math.sin(theta)
    return np.array([[c, -s], [s, c]], dtype=float)


def fit_rigid(src: np.ndarray, dst: np.ndarray) -> RigidTransform2D:
    """
    Least-squares rigid transform mapping src onto dst (2D Kabsch).

    Args:
        src: Source points (N, 2), N >= 1
        dst: Destination points (N, 2)

    Returns:
        RigidTransform2D with dst ~ R(theta) src + t

    Raises:
        ValueError: On shape mismatch or empty input

    Notes:
        - theta = atan2(sum(p x q), sum(p . q)) over centered points
        - Degenerate spread (all src points coincide) yields theta = 0
    """
    src = np.asarray(src, dtype=float)
    dst = np.asarray(dst, dtype=float)
    if src.ndim != 2 or src.shape[1] != 2 or src.shape != dst.shape or len(src) == 0:
        raise ValueError(f"Expected two matching (N, 2) arrays, got {src.shape} and {dst.shape}")

    src_mean = src.mean(axis=0)
    dst_mean = dst.mean(axis=0)
    p = src - src_mean
    q = dst - dst_mean

    dot = float(np.sum(p[:, 0] * q[:, 0] + p[:, 1] * q[:, 1]))
    cross = float(np.sum(p[:, 0] * q[:, 1] - p[:, 1] * q[:, 0]))
    if abs(dot) < EPS and abs(cross) < EPS:
        theta = 0.0
    else:
        theta = math.atan2(cross, dot)

    t = dst_mean - rotation_matrix(theta) @ src_mean
    return RigidTransform2D(float(t[0]), float(t[1]), theta)
