"""
RANSAC pose fitting for rgbd-vo.

Repeatedly fits a pose to a random minimal sample of correspondences,
scores it by reprojecting every reference 3D point into the current image,
and keeps the best-supported hypothesis. Stops early once a hypothesis
reaches the consensus fraction.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from rgbd_vo.config.schema import SolverType
from rgbd_vo.logging import get_logger
from rgbd_vo.odometry.geometry import (
    SvdFactors,
    align_rigid,
    bearing_vectors,
    solve_p3p,
)
from rgbd_vo.perception.calib import CameraIntrinsics

logger = get_logger(__name__)

SAMPLE_SIZE = 3


class RansacState(str, Enum):
    """Lifecycle of a single RANSAC run."""

    IDLE = "idle"
    SAMPLING = "sampling"
    SOLVING = "solving"
    SCORING = "scoring"
    TERMINATED = "terminated"


@dataclass
class RansacResult:
    """
    Outcome of a RANSAC run.

    Attributes:
        rotation: Best rotation, reference -> current. None when no fit.
        translation: Best translation. None when no fit.
        inliers: Indices of inlier correspondences.
        sample: Indices of the minimal sample that produced the best fit.
        svd: SVD factors of the rigid alignment of the best sample.
        total_error: Sum of squared pixel errors over the inliers.
        iterations: Iterations actually run.
    """

    rotation: Optional[NDArray[np.float64]] = None
    translation: Optional[NDArray[np.float64]] = None
    inliers: NDArray[np.intp] = field(
        default_factory=lambda: np.empty(0, dtype=np.intp)
    )
    sample: NDArray[np.intp] = field(
        default_factory=lambda: np.empty(0, dtype=np.intp)
    )
    svd: Optional[SvdFactors] = None
    total_error: float = float("inf")
    iterations: int = 0

    @property
    def inlier_count(self) -> int:
        """Number of inliers supporting the best fit."""
        return int(len(self.inliers))

    @property
    def success(self) -> bool:
        """Whether a usable 3x3 rotation was found."""
        return (
            self.rotation is not None
            and self.rotation.shape == (3, 3)
            and self.inlier_count > 0
        )


def sample_indices(rng: np.random.Generator, k: int, n: int) -> NDArray[np.intp]:
    """
    Draw k distinct indices uniformly from [0, n).

    Uses rejection against the already drawn set, which is cheap for k << n.

    Args:
        rng: Random generator.
        k: Sample size.
        n: Population size.

    Returns:
        Indices in draw order, shape (k,).
    """
    if k > n:
        raise ValueError(f"cannot draw {k} distinct indices from {n}")

    drawn: set[int] = set()
    order: list[int] = []
    while len(order) < k:
        idx = int(rng.integers(0, n))
        if idx not in drawn:
            drawn.add(idx)
            order.append(idx)
    return np.array(order, dtype=np.intp)


def reprojection_errors(
    rotation: NDArray[np.float64],
    translation: NDArray[np.float64],
    reference_3d: NDArray[np.float64],
    current_px: NDArray[np.float64],
    intrinsics: CameraIntrinsics,
) -> NDArray[np.float64]:
    """
    Squared pixel distance between projected reference points and observations.

    Points transformed behind the camera get an infinite error.

    Args:
        rotation: 3x3 rotation, reference -> current.
        translation: Translation (3,).
        reference_3d: Reference points, shape (N, 3).
        current_px: Idealized current pixels, shape (N, 2).
        intrinsics: Camera intrinsics.

    Returns:
        Squared errors, shape (N,).
    """
    transformed = reference_3d @ rotation.T + translation
    projected = intrinsics.project(transformed)
    errors = np.sum((projected - current_px) ** 2, axis=1)
    return np.where(np.isfinite(errors), errors, np.inf)


class RansacEngine:
    """
    RANSAC over 3-point minimal samples.

    With the rigid solver each sample is aligned 3D-to-3D; with the P3P
    solver every returned candidate is scored and the best one kept.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        iterations: int = 300,
        inlier_threshold_px: float = 20.0,
        consensus: float = 0.95,
        solver: SolverType = SolverType.RIGID,
        seed: Optional[int] = None,
    ) -> None:
        """
        Initialize engine.

        Args:
            intrinsics: Camera intrinsics used for reprojection.
            iterations: Maximum number of iterations.
            inlier_threshold_px: Pixel distance below which a match is an inlier.
            consensus: Inlier fraction that ends the search early.
            solver: Minimal solver.
            seed: Optional seed for reproducible sampling.
        """
        if iterations <= 0:
            raise ValueError("iterations must be positive")
        if not 0.0 < consensus <= 1.0:
            raise ValueError("consensus must be in (0, 1]")

        self._intrinsics = intrinsics
        self._iterations = iterations
        self._threshold_sq = inlier_threshold_px**2
        self._consensus = consensus
        self._solver = SolverType(solver)
        self._rng = np.random.default_rng(seed)
        self._state = RansacState.IDLE

    @property
    def state(self) -> RansacState:
        """Current lifecycle state."""
        return self._state

    def run(
        self,
        reference_3d: NDArray[np.float64],
        current_3d: NDArray[np.float64],
        current_px: NDArray[np.float64],
    ) -> RansacResult:
        """
        Search for the pose best supported by the correspondences.

        Args:
            reference_3d: Reference points, shape (N, 3).
            current_3d: Current points, shape (N, 3).
            current_px: Idealized current pixels, shape (N, 2).

        Returns:
            RansacResult. ``success`` is False if N < 3 or no hypothesis
            ever gained an inlier.
        """
        reference_3d = np.asarray(reference_3d, dtype=np.float64).reshape(-1, 3)
        current_3d = np.asarray(current_3d, dtype=np.float64).reshape(-1, 3)
        current_px = np.asarray(current_px, dtype=np.float64).reshape(-1, 2)

        n = len(reference_3d)
        if len(current_3d) != n or len(current_px) != n:
            raise ValueError("correspondence arrays must have equal length")

        result = RansacResult()
        if n < SAMPLE_SIZE:
            self._state = RansacState.TERMINATED
            logger.warning("ransac_too_few_points", count=n)
            return result

        bearings = (
            bearing_vectors(current_px, self._intrinsics.K)
            if self._solver == SolverType.P3P
            else None
        )
        consensus_count = self._consensus * n

        for iteration in range(1, self._iterations + 1):
            result.iterations = iteration

            self._state = RansacState.SAMPLING
            sample = sample_indices(self._rng, SAMPLE_SIZE, n)

            self._state = RansacState.SOLVING
            if self._solver == SolverType.P3P:
                hypotheses = solve_p3p(reference_3d[sample], bearings[sample])
            else:
                alignment = align_rigid(reference_3d[sample], current_3d[sample])
                hypotheses = [(alignment.rotation, alignment.translation)]

            self._state = RansacState.SCORING
            for rotation, translation in hypotheses:
                errors = reprojection_errors(
                    rotation, translation, reference_3d, current_px, self._intrinsics
                )
                inliers = np.flatnonzero(errors <= self._threshold_sq)
                total_error = float(np.sum(errors[inliers]))

                if self._is_better(len(inliers), total_error, result):
                    result.rotation = rotation
                    result.translation = translation
                    result.inliers = inliers
                    result.sample = sample
                    result.total_error = total_error

            if result.inlier_count >= consensus_count:
                logger.debug(
                    "ransac_consensus_reached",
                    iteration=iteration,
                    inliers=result.inlier_count,
                    total=n,
                )
                break

        self._state = RansacState.TERMINATED

        if not result.success:
            logger.warning("ransac_no_fit", correspondences=n, iterations=result.iterations)
            return result

        # Covariance propagation needs the SVD of the winning sample
        result.svd = align_rigid(
            reference_3d[result.sample], current_3d[result.sample]
        ).svd
        return result

    @staticmethod
    def _is_better(count: int, total_error: float, best: RansacResult) -> bool:
        """More inliers wins; equal counts fall back to lower summed error."""
        if count == 0:
            return False
        if count != best.inlier_count:
            return count > best.inlier_count
        return total_error < best.total_error
