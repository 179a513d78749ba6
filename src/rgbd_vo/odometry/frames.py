"""
Rigid transforms for rgbd-vo.

Motion estimates map reference optical-frame points into the current
optical frame (p_cur = R p_ref + t). Chaining those edges gives camera
poses in the frame of the first reference.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from rgbd_vo.utils.math3d import (
    quaternion_to_rotation_matrix,
    rotation_angle,
    rotation_matrix_to_quaternion,
)


@dataclass
class Transform3D:
    """
    3D rigid transformation (rotation + translation).

    Attributes:
        R: 3x3 rotation matrix.
        t: 3-element translation vector.
    """

    R: NDArray[np.float64]
    t: NDArray[np.float64]

    @classmethod
    def identity(cls) -> "Transform3D":
        """Return the identity transform."""
        return cls(R=np.eye(3), t=np.zeros(3))

    def apply(self, points: NDArray[np.float64]) -> NDArray[np.float64]:
        """Apply transform to a point (3,) or points (N, 3): p_out = R @ p_in + t."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            return self.R @ points + self.t
        return points @ self.R.T + self.t

    def inverse(self) -> "Transform3D":
        """Return inverse transform."""
        R_inv = self.R.T
        t_inv = -R_inv @ self.t
        return Transform3D(R=R_inv, t=t_inv)

    def compose(self, other: "Transform3D") -> "Transform3D":
        """Compose with another transform: T_out = self * other."""
        R_new = self.R @ other.R
        t_new = self.R @ other.t + self.t
        return Transform3D(R=R_new, t=t_new)

    @property
    def quat_wxyz(self) -> NDArray[np.float64]:
        """Rotation as quaternion (w, x, y, z)."""
        return rotation_matrix_to_quaternion(self.R)

    @property
    def angle_rad(self) -> float:
        """Rotation angle in radians."""
        return rotation_angle(self.R)

    @property
    def distance_m(self) -> float:
        """Translation norm in meters."""
        return float(np.linalg.norm(self.t))


@dataclass
class Pose3D:
    """
    Camera pose (position + orientation) in the odometry frame.

    Attributes:
        position_m: Position in meters (x, y, z).
        quat_wxyz: Quaternion orientation (w, x, y, z).
    """

    position_m: NDArray[np.float64]
    quat_wxyz: NDArray[np.float64]

    @classmethod
    def from_transform(cls, world_from_camera: Transform3D) -> "Pose3D":
        """Pose of a camera given the transform from its frame to the world."""
        return cls(
            position_m=np.asarray(world_from_camera.t, dtype=np.float64).copy(),
            quat_wxyz=world_from_camera.quat_wxyz,
        )

    def to_transform(self) -> Transform3D:
        """World-from-camera transform of this pose."""
        return Transform3D(
            R=quaternion_to_rotation_matrix(self.quat_wxyz),
            t=np.asarray(self.position_m, dtype=np.float64).copy(),
        )

    @property
    def x(self) -> float:
        """X position."""
        return float(self.position_m[0])

    @property
    def y(self) -> float:
        """Y position."""
        return float(self.position_m[1])

    @property
    def z(self) -> float:
        """Z position."""
        return float(self.position_m[2])
