"""
3D math utilities for rgbd-vo.

Provides rotation conversions and small geometric helpers.
"""

import numpy as np
from numpy.typing import NDArray


def euler_to_rotation_matrix(
    roll: float, pitch: float, yaw: float
) -> NDArray[np.float64]:
    """
    Convert Euler angles to rotation matrix.

    Uses ZYX convention (yaw-pitch-roll).

    Args:
        roll: Roll angle in radians.
        pitch: Pitch angle in radians.
        yaw: Yaw angle in radians.

    Returns:
        3x3 rotation matrix.
    """
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)

    R = np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
            [-sp, cp * sr, cp * cr],
        ],
        dtype=np.float64,
    )

    return R


def quaternion_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert quaternion to rotation matrix.

    The quaternion is normalized first, so poses read back from rounded
    logs still give an orthonormal matrix.

    Args:
        q: Quaternion [w, x, y, z].

    Returns:
        3x3 rotation matrix.

    Raises:
        ValueError: If the quaternion has zero norm.
    """
    q = np.asarray(q, dtype=np.float64).reshape(4)
    norm = np.linalg.norm(q)
    if norm == 0.0:
        raise ValueError("zero quaternion")
    w, x, y, z = q / norm

    R = np.array(
        [
            [1 - 2 * (y**2 + z**2), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x**2 + z**2), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x**2 + y**2)],
        ],
        dtype=np.float64,
    )

    return R


def rotation_matrix_to_quaternion(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert rotation matrix to quaternion.

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Quaternion [w, x, y, z] with w >= 0.
    """
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    q = np.array([w, x, y, z], dtype=np.float64)
    if q[0] < 0:
        q = -q
    return q


def rotation_angle(R: NDArray[np.float64]) -> float:
    """
    Angle of a rotation matrix about its axis.

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Rotation angle in radians, in [0, pi].
    """
    cos_angle = np.clip((np.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    return float(np.arccos(cos_angle))


def is_rotation_matrix(R: NDArray[np.float64], atol: float = 1e-6) -> bool:
    """
    Check that R is a proper 3x3 rotation (orthonormal, det +1).

    Args:
        R: Candidate matrix.
        atol: Absolute tolerance.

    Returns:
        True if R is a rotation matrix.
    """
    R = np.asarray(R)
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return False
    return bool(
        np.allclose(R @ R.T, np.eye(3), atol=atol)
        and abs(np.linalg.det(R) - 1.0) < atol
    )


def extract_guess_angles(R: NDArray[np.float64]) -> tuple[float, float, float]:
    """
    Extract roll, pitch, yaw from a reference-to-current rotation guess.

    The rotation maps reference camera coordinates into current camera
    coordinates, so the vehicle angles come out of the camera axes as
    roll = atan2(R01, R00), pitch = atan2(R12, R22), yaw = asin(-R02).
    A matrix with R00 == 0 is treated as empty.

    Args:
        R: 3x3 rotation guess.

    Returns:
        Tuple of (roll, pitch, yaw) in radians.
    """
    if R[0, 0] == 0.0:
        return 0.0, 0.0, 0.0

    phi = np.arctan2(R[1, 2], R[2, 2])
    theta = np.arcsin(np.clip(-R[0, 2], -1.0, 1.0))
    psi = np.arctan2(R[0, 1], R[0, 0])

    return float(psi), float(phi), float(theta)
