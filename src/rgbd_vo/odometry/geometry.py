"""
Minimal-sample geometric solvers for rgbd-vo.

Two interchangeable solvers feed RANSAC:

- ``align_rigid``: closed-form least-squares rigid transform between two 3D
  point sets (K.S. Arun, T.S. Huang, S.D. Blostein, "Least-Squares Fitting of
  Two 3-D Point Sets", PAMI 1987). Also returns the SVD factors the
  covariance propagation needs.
- ``solve_p3p``: absolute pose from three 3D points and their bearings
  (L. Kneip, D. Scaramuzza, R. Siegwart, "A Novel Parametrization of the
  Perspective-Three-Point Problem", CVPR 2011), reduced to a quartic solved
  by ``solve_quartic``.

All transforms follow p_current = R @ p_reference + T.
"""

import cmath
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass
class SvdFactors:
    """
    SVD of the centered cross-covariance matrix H = U diag(S) V^T.

    Attributes:
        U: Left singular vectors (3x3).
        singular_values: Singular values in descending order (3,).
        V: Right singular vectors (3x3), not transposed.
    """

    U: NDArray[np.float64]
    singular_values: NDArray[np.float64]
    V: NDArray[np.float64]

    @property
    def reflection_sign(self) -> float:
        """Sign of det(V U^T): -1 when the raw solution is a reflection."""
        return -1.0 if np.linalg.det(self.V @ self.U.T) < 0 else 1.0


@dataclass
class RigidAlignment:
    """
    Result of a rigid alignment.

    Attributes:
        rotation: 3x3 rotation, reference -> current.
        translation: Translation (3,), expressed in the current frame.
        svd: SVD factors of the cross-covariance matrix.
        reference_centroid: Centroid of the reference points.
        current_centroid: Centroid of the current points.
    """

    rotation: NDArray[np.float64]
    translation: NDArray[np.float64]
    svd: SvdFactors
    reference_centroid: NDArray[np.float64]
    current_centroid: NDArray[np.float64]


def find_centroid(
    points: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Center a point set.

    Args:
        points: Points, shape (N, 3).

    Returns:
        Tuple of (centered points (N, 3), centroid (3,)).
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    centroid = points.mean(axis=0)
    return points - centroid, centroid


def cross_covariance(
    reference_centered: NDArray[np.float64], current_centered: NDArray[np.float64]
) -> NDArray[np.float64]:
    """H = sum_i r_i c_i^T over centered reference/current points."""
    return reference_centered.T @ current_centered


def align_rigid(
    reference: NDArray[np.float64], current: NDArray[np.float64]
) -> RigidAlignment:
    """
    Least-squares rigid transform mapping reference points onto current points.

    R = V diag(1, 1, det(V U^T)) U^T and T = c_cur - R c_ref, where
    H = U S V^T is the cross-covariance of the centered sets. The determinant
    term turns a reflection into the closest proper rotation.

    Args:
        reference: Reference points, shape (N, 3), N >= 3.
        current: Corresponding current points, shape (N, 3).

    Returns:
        RigidAlignment with rotation, translation and SVD factors.

    Raises:
        ValueError: If the sets differ in size or have fewer than 3 points.
    """
    reference = np.asarray(reference, dtype=np.float64).reshape(-1, 3)
    current = np.asarray(current, dtype=np.float64).reshape(-1, 3)

    if reference.shape != current.shape:
        raise ValueError("reference and current must have the same shape")
    if len(reference) < 3:
        raise ValueError("at least 3 point pairs are required")

    reference_centered, reference_centroid = find_centroid(reference)
    current_centered, current_centroid = find_centroid(current)

    H = cross_covariance(reference_centered, current_centered)
    U, S, Vt = np.linalg.svd(H)
    svd = SvdFactors(U=U, singular_values=S, V=Vt.T)

    D = np.diag([1.0, 1.0, svd.reflection_sign])
    rotation = svd.V @ D @ svd.U.T
    translation = current_centroid - rotation @ reference_centroid

    return RigidAlignment(
        rotation=rotation,
        translation=translation,
        svd=svd,
        reference_centroid=reference_centroid,
        current_centroid=current_centroid,
    )


def solve_quartic(factors: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Roots of a*x^4 + b*x^3 + c*x^2 + d*x + e via Ferrari's method.

    The quartic is depressed, the resolvent cubic solved in closed form, and
    the four roots recovered. Only real parts are returned; callers reject
    roots that are not geometrically meaningful.

    Args:
        factors: Coefficients (a, b, c, d, e), a != 0.

    Returns:
        Real parts of the 4 roots.
    """
    a, b, c, d, e = (float(f) for f in factors)
    if a == 0.0:
        raise ValueError("leading coefficient must be non-zero")

    alpha = -3.0 * b**2 / (8.0 * a**2) + c / a
    beta = b**3 / (8.0 * a**3) - b * c / (2.0 * a**2) + d / a
    gamma = (
        -3.0 * b**4 / (256.0 * a**4)
        + b**2 * c / (16.0 * a**3)
        - b * d / (4.0 * a**2)
        + e / a
    )
    shift = -b / (4.0 * a)

    if abs(beta) < 1e-14:
        # Biquadratic: y^4 + alpha y^2 + gamma = 0
        disc = cmath.sqrt(alpha**2 - 4.0 * gamma)
        roots = []
        for z in ((-alpha + disc) / 2.0, (-alpha - disc) / 2.0):
            y = cmath.sqrt(z)
            roots.extend([shift + y, shift - y])
        return np.array([r.real for r in roots], dtype=np.float64)

    p = complex(-(alpha**2) / 12.0 - gamma, 0.0)
    q = complex(-(alpha**3) / 108.0 + alpha * gamma / 3.0 - beta**2 / 8.0, 0.0)
    r = -q / 2.0 + cmath.sqrt(q**2 / 4.0 + p**3 / 27.0)
    u = r ** (1.0 / 3.0)

    if u == 0:
        y = -5.0 * alpha / 6.0 - q ** (1.0 / 3.0)
    else:
        y = -5.0 * alpha / 6.0 - p / (3.0 * u) + u

    w = cmath.sqrt(alpha + 2.0 * y)
    plus = cmath.sqrt(-(3.0 * alpha + 2.0 * y + 2.0 * beta / w))
    minus = cmath.sqrt(-(3.0 * alpha + 2.0 * y - 2.0 * beta / w))

    roots = [
        shift + 0.5 * (w + plus),
        shift + 0.5 * (w - plus),
        shift + 0.5 * (-w + minus),
        shift + 0.5 * (-w - minus),
    ]
    return np.array([r.real for r in roots], dtype=np.float64)


def bearing_vectors(
    points_px: NDArray[np.float64], K: NDArray[np.float64]
) -> NDArray[np.float64]:
    """
    Unit bearing vectors for idealized pixel coordinates.

    Args:
        points_px: Pixel coordinates, shape (N, 2).
        K: 3x3 camera matrix.

    Returns:
        Unit vectors, shape (N, 3).
    """
    points_px = np.asarray(points_px, dtype=np.float64).reshape(-1, 2)
    homogeneous = np.column_stack([points_px, np.ones(len(points_px))])
    rays = homogeneous @ np.linalg.inv(K).T
    return rays / np.linalg.norm(rays, axis=1, keepdims=True)


def _intermediate_frame(
    f1: NDArray[np.float64], f2: NDArray[np.float64]
) -> NDArray[np.float64]:
    """Rows e1 = f1, e2, e3 = f1 x f2 (normalized)."""
    e3 = np.cross(f1, f2)
    e3 = e3 / np.linalg.norm(e3)
    e2 = np.cross(e3, f1)
    return np.vstack([f1, e2, e3])


def solve_p3p(
    world_points: NDArray[np.float64], bearings: NDArray[np.float64]
) -> list[tuple[NDArray[np.float64], NDArray[np.float64]]]:
    """
    Perspective-three-point pose candidates.

    Args:
        world_points: Three reference-frame 3D points, shape (3, 3).
        bearings: Their unit bearing vectors in the current camera, shape (3, 3).

    Returns:
        Up to four (rotation, translation) candidates with
        p_current = R @ p_reference + T. Empty when the points are collinear.
    """
    world = np.asarray(world_points, dtype=np.float64).reshape(3, 3)
    feats = np.asarray(bearings, dtype=np.float64).reshape(3, 3)

    P1, P2, P3 = world[0], world[1], world[2]
    if np.linalg.norm(np.cross(P2 - P1, P3 - P1)) == 0.0:
        return []

    f1, f2, f3_raw = feats[0], feats[1], feats[2]
    if np.linalg.norm(np.cross(f1, f2)) == 0.0:
        return []

    T = _intermediate_frame(f1, f2)
    f3 = T @ f3_raw

    # Keep theta in [0, pi]
    if f3[2] > 0:
        f1, f2 = f2, f1
        P1, P2 = P2, P1
        T = _intermediate_frame(f1, f2)
        f3 = T @ f3_raw

    n1 = (P2 - P1) / np.linalg.norm(P2 - P1)
    n3 = np.cross(n1, P3 - P1)
    n3 = n3 / np.linalg.norm(n3)
    n2 = np.cross(n3, n1)
    N = np.vstack([n1, n2, n3])

    P3_n = N @ (P3 - P1)
    d_12 = float(np.linalg.norm(P2 - P1))
    f_1 = f3[0] / f3[2]
    f_2 = f3[1] / f3[2]
    p_1 = P3_n[0]
    p_2 = P3_n[1]

    cos_beta = float(f1 @ f2)
    b = 1.0 / (1.0 - cos_beta**2) - 1.0
    b = -np.sqrt(b) if cos_beta < 0 else np.sqrt(b)

    f_1_pw2 = f_1**2
    f_2_pw2 = f_2**2
    p_1_pw2 = p_1**2
    p_1_pw3 = p_1_pw2 * p_1
    p_1_pw4 = p_1_pw3 * p_1
    p_2_pw2 = p_2**2
    p_2_pw3 = p_2_pw2 * p_2
    p_2_pw4 = p_2_pw3 * p_2
    d_12_pw2 = d_12**2
    b_pw2 = b**2

    factors = np.array(
        [
            -f_2_pw2 * p_2_pw4 - p_2_pw4 * f_1_pw2 - p_2_pw4,
            2 * p_2_pw3 * d_12 * b
            + 2 * f_2_pw2 * p_2_pw3 * d_12 * b
            - 2 * f_2 * p_2_pw3 * f_1 * d_12,
            -f_2_pw2 * p_2_pw2 * p_1_pw2
            - f_2_pw2 * p_2_pw2 * d_12_pw2 * b_pw2
            - f_2_pw2 * p_2_pw2 * d_12_pw2
            + f_2_pw2 * p_2_pw4
            + p_2_pw4 * f_1_pw2
            + 2 * p_1 * p_2_pw2 * d_12
            + 2 * f_1 * f_2 * p_1 * p_2_pw2 * d_12 * b
            - p_2_pw2 * p_1_pw2 * f_1_pw2
            + 2 * p_1 * p_2_pw2 * f_2_pw2 * d_12
            - p_2_pw2 * d_12_pw2 * b_pw2
            - 2 * p_1_pw2 * p_2_pw2,
            2 * p_1_pw2 * p_2 * d_12 * b
            + 2 * f_2 * p_2_pw3 * f_1 * d_12
            - 2 * f_2_pw2 * p_2_pw3 * d_12 * b
            - 2 * p_1 * p_2 * d_12_pw2 * b,
            -2 * f_2 * p_2_pw2 * f_1 * p_1 * d_12 * b
            + f_2_pw2 * p_2_pw2 * d_12_pw2
            + 2 * p_1_pw3 * d_12
            - p_1_pw2 * d_12_pw2
            + f_2_pw2 * p_2_pw2 * p_1_pw2
            - p_1_pw4
            - 2 * f_2_pw2 * p_2_pw2 * p_1 * d_12
            + p_2_pw2 * f_1_pw2 * p_1_pw2
            + f_2_pw2 * p_2_pw2 * d_12_pw2 * b_pw2,
        ]
    )

    candidates: list[tuple[NDArray[np.float64], NDArray[np.float64]]] = []
    for cos_theta in solve_quartic(factors):
        if abs(cos_theta) > 1.0:
            continue

        cot_alpha = (-f_1 * p_1 / f_2 - cos_theta * p_2 + d_12 * b) / (
            -f_1 * cos_theta * p_2 / f_2 + p_1 - d_12
        )
        sin_theta = np.sqrt(1.0 - cos_theta**2)
        sin_alpha = np.sqrt(1.0 / (cot_alpha**2 + 1.0))
        cos_alpha = np.sqrt(1.0 - sin_alpha**2)
        if cot_alpha < 0:
            cos_alpha = -cos_alpha

        scale = d_12 * sin_alpha * (sin_alpha * b + cos_alpha)
        C = np.array(
            [
                d_12 * cos_alpha * (sin_alpha * b + cos_alpha),
                cos_theta * scale,
                sin_theta * scale,
            ]
        )
        C = P1 + N.T @ C

        R = np.array(
            [
                [-cos_alpha, -sin_alpha * cos_theta, -sin_alpha * sin_theta],
                [sin_alpha, -cos_alpha * cos_theta, -cos_alpha * sin_theta],
                [0.0, -sin_theta, cos_theta],
            ]
        )
        # Camera orientation in the reference frame
        R = N.T @ R.T @ T

        rotation = R.T
        translation = -rotation @ C
        if np.all(np.isfinite(rotation)) and np.all(np.isfinite(translation)):
            candidates.append((rotation, translation))

    return candidates
