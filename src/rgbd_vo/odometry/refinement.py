"""
Pose refinement for rgbd-vo.

A refiner polishes the RANSAC pose on all inliers by minimizing
reprojection error of the reference points in the current image.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import cv2
import numpy as np
from numpy.typing import NDArray

from rgbd_vo.logging import get_logger
from rgbd_vo.odometry.frames import Transform3D
from rgbd_vo.perception.calib import CameraIntrinsics

logger = get_logger(__name__)


@dataclass
class PoseObservations:
    """
    Inlier observations used for refinement.

    Attributes:
        reference_3d: Reference points, shape (N, 3).
        current_px: Idealized current pixels, shape (N, 2).
    """

    reference_3d: NDArray[np.float64]
    current_px: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.reference_3d)


class IPoseRefiner(ABC):
    """
    Abstract base class for pose refiners.
    """

    @abstractmethod
    def refine(
        self, pose: Transform3D, observations: PoseObservations
    ) -> Transform3D:
        """
        Refine a pose.

        Args:
            pose: Initial reference -> current transform.
            observations: Inlier observations.

        Returns:
            Refined transform.
        """
        pass


class LevenbergMarquardtRefiner(IPoseRefiner):
    """
    Reprojection-error refinement with OpenCV's Levenberg-Marquardt PnP.
    """

    MIN_POINTS = 4

    def __init__(self, intrinsics: CameraIntrinsics, iterations: int = 20) -> None:
        self._intrinsics = intrinsics
        self._criteria = (
            cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
            iterations,
            1e-6,
        )

    def refine(
        self, pose: Transform3D, observations: PoseObservations
    ) -> Transform3D:
        if len(observations) < self.MIN_POINTS:
            logger.debug("refinement_skipped", points=len(observations))
            return pose

        rvec, _ = cv2.Rodrigues(np.asarray(pose.R, dtype=np.float64))
        tvec = np.asarray(pose.t, dtype=np.float64).reshape(3, 1)

        # Pixels are already idealized
        rvec, tvec = cv2.solvePnPRefineLM(
            np.asarray(observations.reference_3d, dtype=np.float64).reshape(-1, 1, 3),
            np.asarray(observations.current_px, dtype=np.float64).reshape(-1, 1, 2),
            self._intrinsics.K,
            np.zeros(5, dtype=np.float64),
            rvec,
            tvec,
            self._criteria,
        )

        R, _ = cv2.Rodrigues(rvec)
        return Transform3D(R=R, t=tvec.flatten())
