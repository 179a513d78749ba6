"""
Pose covariance for rgbd-vo.

Propagates pixel and depth noise of the winning minimal sample through the
rigid-alignment solution to a 7x7 covariance over
(tx, ty, tz, qw, qx, qy, qz):

1. per-point 3D covariance from (u, v, z) noise,
2. covariance of the centered points,
3. covariance of the cross-covariance matrix H,
4. rotation covariance through the SVD perturbation of H
   (T. Papadopoulo, M. Lourakis, "Estimating the Jacobian of the Singular
   Value Decomposition", ECCV 2000),
5. quaternion and translation covariances.

Translation and quaternion blocks are scaled by empirical factors and their
cross terms are left at zero.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from rgbd_vo.logging import get_logger
from rgbd_vo.odometry.geometry import SvdFactors, find_centroid
from rgbd_vo.perception.calib import CameraIntrinsics

logger = get_logger(__name__)

_PAIRS = ((0, 1), (0, 2), (1, 2))


@dataclass
class NoiseModel:
    """Measurement noise of a single depth-camera observation."""

    pixel_variance_u: float = 4.0
    pixel_variance_v: float = 4.0
    depth_variance: float = 1.0e-4

    @property
    def matrix(self) -> NDArray[np.float64]:
        """Diagonal 3x3 covariance over (u, v, z)."""
        return np.diag(
            [self.pixel_variance_u, self.pixel_variance_v, self.depth_variance]
        )


@dataclass
class PoseCovariance:
    """
    Propagated pose covariance.

    Attributes:
        matrix: 7x7 covariance over (tx, ty, tz, qw, qx, qy, qz).
        rotation: 9x9 covariance of the row-major rotation matrix.
        singular_values_unique: False if any singular value pair was
            degenerate and the least-squares fallback was used.
    """

    matrix: NDArray[np.float64]
    rotation: NDArray[np.float64]
    singular_values_unique: bool = True


def fixed_covariance(diagonal: list[float]) -> NDArray[np.float64]:
    """Constant 7x7 covariance with the given diagonal."""
    values = np.asarray(diagonal, dtype=np.float64)
    if values.shape != (7,):
        raise ValueError(f"expected 7 diagonal entries, got {values.shape}")
    return np.diag(values)


def point_covariances(
    points_px: NDArray[np.float64],
    points_3d: NDArray[np.float64],
    intrinsics: CameraIntrinsics,
    noise: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    3D covariance of back-projected points, J N J^T.

    Args:
        points_px: Idealized pixels, shape (N, 2).
        points_3d: Back-projected points, shape (N, 3).
        intrinsics: Camera intrinsics.
        noise: 3x3 (u, v, z) noise covariance.

    Returns:
        Covariances, shape (N, 3, 3).
    """
    points_px = np.asarray(points_px, dtype=np.float64).reshape(-1, 2)
    z = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)[:, 2]
    fx, fy, cx, cy = intrinsics.fx, intrinsics.fy, intrinsics.cx, intrinsics.cy

    J = np.zeros((len(z), 3, 3), dtype=np.float64)
    J[:, 0, 0] = z / fx
    J[:, 0, 2] = (points_px[:, 0] - cx) / fx
    J[:, 1, 1] = z / fy
    J[:, 1, 2] = (points_px[:, 1] - cy) / fy
    J[:, 2, 2] = 1.0

    return J @ noise @ J.transpose(0, 2, 1)


def centered_covariances(covariances: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Covariance of each point after subtracting the set centroid.

    cov(p_i - mean) = (1 - 1/n)^2 C_i + sum_{j != i} C_j / n^2.
    """
    n = len(covariances)
    total = covariances.sum(axis=0)
    others = total[None, :, :] - covariances
    return (1.0 - 1.0 / n) ** 2 * covariances + others / n**2


def cross_covariance_covariance(
    reference_centered: NDArray[np.float64],
    current_centered: NDArray[np.float64],
    reference_covariances: NDArray[np.float64],
    current_covariances: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    9x9 covariance of row-major vec(H), H = sum_i r_i c_i^T.

    Each pair contributes through dH[a, b]/dr_i[a] = c_i[b] and
    dH[a, b]/dc_i[b] = r_i[a].
    """
    cov_H = np.zeros((9, 9), dtype=np.float64)
    for r, c, cov_r, cov_c in zip(
        reference_centered, current_centered, reference_covariances, current_covariances
    ):
        J_r = np.kron(np.eye(3), c.reshape(3, 1))
        J_c = np.kron(r.reshape(3, 1), np.eye(3))
        cov_H += J_r @ cov_r @ J_r.T + J_c @ cov_c @ J_c.T
    return cov_H


def singular_values_distinct(d_k: float, d_l: float, tolerance: float) -> bool:
    """Relative gap test between two singular values."""
    return abs(d_k - d_l) > tolerance * max(1.0, abs(d_k), abs(d_l))


def rotation_jacobian(
    svd: SvdFactors, tolerance: float = 0.01
) -> tuple[NDArray[np.float64], bool]:
    """
    Jacobian of the row-major rotation with respect to row-major vec(H).

    For every entry H[i, j] the 2x2 systems

        d_l W_U[k,l] + d_k W_V[k,l] = U[i,k] V[j,l]
        d_k W_U[k,l] + d_l W_V[k,l] = -U[i,l] V[j,k]

    give the antisymmetric generators W_U = U^T dU and W_V = dV^T V, and
    dR = -V W_V D U^T - V D W_U U^T with D = diag(1, 1, det(V U^T)).
    When d_k and d_l are not distinct the system is singular and its
    minimum-norm least-squares solution is used instead.

    Args:
        svd: SVD factors of H.
        tolerance: Relative singular value gap considered distinct.

    Returns:
        Tuple of (9x9 Jacobian, whether every pair was distinct).
    """
    U, d, V = svd.U, svd.singular_values, svd.V
    D = np.diag([1.0, 1.0, svd.reflection_sign])

    distinct = {
        (k, l): singular_values_distinct(d[k], d[l], tolerance) for k, l in _PAIRS
    }
    unique = all(distinct.values())

    J = np.zeros((9, 9), dtype=np.float64)
    for i in range(3):
        for j in range(3):
            omega_U = np.zeros((3, 3), dtype=np.float64)
            omega_V = np.zeros((3, 3), dtype=np.float64)

            for k, l in _PAIRS:
                rhs = np.array([U[i, k] * V[j, l], -U[i, l] * V[j, k]])
                if distinct[(k, l)]:
                    det = d[l] ** 2 - d[k] ** 2
                    w_u = (d[l] * rhs[0] - d[k] * rhs[1]) / det
                    w_v = (-d[k] * rhs[0] + d[l] * rhs[1]) / det
                else:
                    A = np.array([[d[l], d[k]], [d[k], d[l]]])
                    w_u, w_v = np.linalg.lstsq(A, rhs, rcond=None)[0]

                omega_U[k, l], omega_U[l, k] = w_u, -w_u
                omega_V[k, l], omega_V[l, k] = w_v, -w_v

            dR = -V @ omega_V @ D @ U.T - V @ D @ omega_U @ U.T
            J[:, 3 * i + j] = dR.reshape(9)

    return J, unique


def quaternion_jacobian(
    rotation: NDArray[np.float64], min_qw: float = 1.0e-3
) -> NDArray[np.float64]:
    """
    4x9 Jacobian of (qw, qx, qy, qz) with respect to the row-major rotation.

    Uses qw = sqrt(1 + trace) / 2 and q_xyz = skew parts / (4 qw). qw is
    floored at ``min_qw`` near 180 degree rotations.
    """
    R = np.asarray(rotation, dtype=np.float64)
    qw = 0.5 * np.sqrt(max(1.0 + np.trace(R), 0.0))
    if qw < min_qw:
        logger.warning("quaternion_jacobian_qw_floored", qw=float(qw), floor=min_qw)
        qw = min_qw

    qx = (R[2, 1] - R[1, 2]) / (4.0 * qw)
    qy = (R[0, 2] - R[2, 0]) / (4.0 * qw)
    qz = (R[1, 0] - R[0, 1]) / (4.0 * qw)

    diagonal = (0, 4, 8)
    J = np.zeros((4, 9), dtype=np.float64)
    J[0, list(diagonal)] = 1.0 / (8.0 * qw)

    for row, q, plus, minus in ((1, qx, 7, 5), (2, qy, 2, 6), (3, qz, 3, 1)):
        J[row, plus] = 1.0 / (4.0 * qw)
        J[row, minus] = -1.0 / (4.0 * qw)
        J[row, list(diagonal)] = -q / (8.0 * qw**2)

    return J


def translation_covariance(
    rotation: NDArray[np.float64],
    rotation_covariance: NDArray[np.float64],
    reference_centroid: NDArray[np.float64],
    reference_centroid_covariance: NDArray[np.float64],
    current_centroid_covariance: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    3x3 covariance of T = c_cur - R c_ref.

    Inputs are treated as independent: rotation, reference centroid and
    current centroid.
    """
    J = np.zeros((3, 15), dtype=np.float64)
    for a in range(3):
        J[a, 3 * a : 3 * a + 3] = -reference_centroid
    J[:, 9:12] = -rotation
    J[:, 12:15] = np.eye(3)

    joint = np.zeros((15, 15), dtype=np.float64)
    joint[:9, :9] = rotation_covariance
    joint[9:12, 9:12] = reference_centroid_covariance
    joint[12:15, 12:15] = current_centroid_covariance

    return J @ joint @ J.T


def _symmetrize(matrix: NDArray[np.float64]) -> NDArray[np.float64]:
    return 0.5 * (matrix + matrix.T)


class CovariancePropagator:
    """
    Propagates measurement noise of a minimal sample to pose covariance.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        noise: Optional[NoiseModel] = None,
        uniqueness_tolerance: float = 0.01,
        translation_scale: float = 20.0,
        quaternion_scale: float = 1.0e6,
        min_qw: float = 1.0e-3,
    ) -> None:
        """
        Initialize propagator.

        Args:
            intrinsics: Camera intrinsics.
            noise: Observation noise model.
            uniqueness_tolerance: Relative singular value gap.
            translation_scale: Scale applied to the translation block.
            quaternion_scale: Scale applied to the quaternion block.
            min_qw: Floor on qw in the quaternion Jacobian.
        """
        self._intrinsics = intrinsics
        self._noise = noise or NoiseModel()
        self._tolerance = uniqueness_tolerance
        self._translation_scale = translation_scale
        self._quaternion_scale = quaternion_scale
        self._min_qw = min_qw

    def propagate(
        self,
        reference_px: NDArray[np.float64],
        reference_3d: NDArray[np.float64],
        current_px: NDArray[np.float64],
        current_3d: NDArray[np.float64],
        rotation: NDArray[np.float64],
        svd: SvdFactors,
    ) -> PoseCovariance:
        """
        Covariance of the pose estimated from a sample.

        Args:
            reference_px: Idealized reference pixels of the sample, shape (n, 2).
            reference_3d: Reference points of the sample, shape (n, 3).
            current_px: Idealized current pixels of the sample, shape (n, 2).
            current_3d: Current points of the sample, shape (n, 3).
            rotation: Estimated rotation.
            svd: SVD factors of the sample's cross-covariance.

        Returns:
            PoseCovariance with the 7x7 matrix.
        """
        noise = self._noise.matrix
        cov_ref = point_covariances(reference_px, reference_3d, self._intrinsics, noise)
        cov_cur = point_covariances(current_px, current_3d, self._intrinsics, noise)
        n = len(cov_ref)

        ref_centered, ref_centroid = find_centroid(reference_3d)
        cur_centered, _ = find_centroid(current_3d)

        cov_H = cross_covariance_covariance(
            ref_centered,
            cur_centered,
            centered_covariances(cov_ref),
            centered_covariances(cov_cur),
        )

        J_R, unique = rotation_jacobian(svd, self._tolerance)
        if not unique:
            logger.warning(
                "singular_values_not_unique",
                singular_values=svd.singular_values.tolist(),
            )
        cov_R = J_R @ cov_H @ J_R.T

        J_q = quaternion_jacobian(rotation, self._min_qw)
        cov_q = J_q @ cov_R @ J_q.T

        cov_T = translation_covariance(
            rotation,
            cov_R,
            ref_centroid,
            cov_ref.sum(axis=0) / n**2,
            cov_cur.sum(axis=0) / n**2,
        )

        matrix = np.zeros((7, 7), dtype=np.float64)
        matrix[:3, :3] = _symmetrize(cov_T * self._translation_scale)
        matrix[3:, 3:] = _symmetrize(cov_q * self._quaternion_scale)

        return PoseCovariance(
            matrix=matrix, rotation=cov_R, singular_values_unique=unique
        )
