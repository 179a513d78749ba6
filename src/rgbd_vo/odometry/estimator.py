"""
Frame-to-reference motion estimation for rgbd-vo.

``PoseEstimator`` holds one reference RGB-D view and estimates the rigid
motion of each new view relative to it:

    detect -> undistort -> lift to 3D -> mutual match -> RANSAC
    -> (optional refine) -> covariance

A call may promote the current view to be the new reference. The reference
is an immutable snapshot swapped under a lock, so an estimate in flight
keeps working on the view it started with.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from rgbd_vo.config.schema import CovarianceMethod, VoConfig
from rgbd_vo.logging import get_logger
from rgbd_vo.odometry.correspondence import (
    CorrespondenceBuilder,
    CorrespondenceSet,
    FrameObservation,
)
from rgbd_vo.odometry.covariance import (
    CovariancePropagator,
    NoiseModel,
    fixed_covariance,
)
from rgbd_vo.odometry.frames import Transform3D
from rgbd_vo.odometry.ransac import RansacEngine, RansacResult
from rgbd_vo.odometry.refinement import (
    IPoseRefiner,
    LevenbergMarquardtRefiner,
    PoseObservations,
)
from rgbd_vo.perception.calib import CameraIntrinsics
from rgbd_vo.perception.camera import RgbdFrame
from rgbd_vo.perception.features import GridFeatureExtractor, IFeatureExtractor
from rgbd_vo.utils.math3d import rotation_matrix_to_quaternion

logger = get_logger(__name__)


class ReferenceNotSetError(RuntimeError):
    """Raised when estimating motion before a reference view exists."""


class EstimateFailure(str, Enum):
    """Why an estimate did not produce a pose."""

    NO_FEATURES = "no_features"
    CALIBRATION_FAILED = "calibration_failed"
    TOO_FEW_MATCHES = "too_few_matches"
    NO_FIT = "no_fit"


@dataclass(frozen=True)
class ReferenceFrame:
    """
    Immutable reference view.

    Attributes:
        frame: The RGB-D frame (color, depth, mask).
        observation: Its features, idealized pixels and 3D points.
    """

    frame: RgbdFrame
    observation: FrameObservation

    @property
    def frame_id(self) -> int:
        return self.frame.frame_id

    @property
    def feature_count(self) -> int:
        return len(self.observation)


@dataclass
class MotionEstimate:
    """
    Result of one estimate call.

    On failure the pose is identity, the covariance is zero and ``failure``
    says why.

    Attributes:
        success: Whether a pose was estimated.
        rotation: 3x3 rotation, reference -> current.
        translation: Translation (3,) in meters.
        covariance: 7x7 covariance over (tx, ty, tz, qw, qx, qy, qz).
        refined_rotation: Refined rotation (identity when not refined).
        refined_translation: Refined translation (zero when not refined).
        inliers: Number of RANSAC inliers.
        correspondences: Number of mutual correspondences.
        total_features: Features detected in the current view.
        inlier_indices: Inlier indices into the correspondence set.
        failure: Failure reason, None on success.
        promoted_reference: Whether the current view became the reference.
        frame_id: Current frame id.
        reference_frame_id: Id of the reference the estimate is relative to.
    """

    success: bool
    rotation: NDArray[np.float64] = field(default_factory=lambda: np.eye(3))
    translation: NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    covariance: NDArray[np.float64] = field(default_factory=lambda: np.zeros((7, 7)))
    refined_rotation: NDArray[np.float64] = field(default_factory=lambda: np.eye(3))
    refined_translation: NDArray[np.float64] = field(
        default_factory=lambda: np.zeros(3)
    )
    inliers: int = 0
    correspondences: int = 0
    total_features: int = 0
    inlier_indices: NDArray[np.intp] = field(
        default_factory=lambda: np.empty(0, dtype=np.intp)
    )
    failure: Optional[EstimateFailure] = None
    promoted_reference: bool = False
    frame_id: int = 0
    reference_frame_id: int = 0

    @property
    def quat_wxyz(self) -> NDArray[np.float64]:
        """Rotation as quaternion (w, x, y, z)."""
        return rotation_matrix_to_quaternion(self.rotation)

    @property
    def transform(self) -> Transform3D:
        """Reference -> current transform."""
        return Transform3D(R=self.rotation, t=self.translation)

    @property
    def inlier_ratio(self) -> float:
        """Inliers as a fraction of correspondences."""
        if self.correspondences == 0:
            return 0.0
        return self.inliers / self.correspondences


class PoseEstimator:
    """
    Estimates the motion of RGB-D views relative to a reference view.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        config: Optional[VoConfig] = None,
        extractor: Optional[IFeatureExtractor] = None,
        refiner: Optional[IPoseRefiner] = None,
    ) -> None:
        """
        Initialize estimator.

        Args:
            intrinsics: Camera intrinsics.
            config: Configuration (defaults when omitted).
            extractor: Feature extractor (grid FAST + ORB when omitted).
            refiner: Pose refiner. Built from config when refinement is
                enabled and none is given.
        """
        self._config = config or VoConfig()
        self._intrinsics = intrinsics

        features = self._config.features
        if extractor is None:
            extractor = GridFeatureExtractor(
                max_features=self._config.feature_budget,
                grid_rows=features.grid_rows,
                grid_cols=features.grid_cols,
                fast_threshold=features.fast_threshold,
                blur_kernel=features.blur_kernel,
                blur_sigma=features.blur_sigma,
            )
        if refiner is None and self._config.refinement.enabled:
            refiner = LevenbergMarquardtRefiner(
                intrinsics, iterations=self._config.refinement.iterations
            )
        self._refiner = refiner

        self._builder = CorrespondenceBuilder(
            intrinsics,
            extractor,
            matching=self._config.matching,
            fallback_depth_m=self._config.depth.fallback_depth_m,
        )

        ransac = self._config.ransac
        self._ransac = RansacEngine(
            intrinsics,
            iterations=self._config.ransac_iterations,
            inlier_threshold_px=ransac.inlier_threshold_px,
            consensus=ransac.consensus,
            solver=ransac.solver,
            seed=ransac.seed,
        )

        cov = self._config.covariance
        self._propagator = CovariancePropagator(
            intrinsics,
            noise=NoiseModel(
                pixel_variance_u=cov.pixel_variance_u,
                pixel_variance_v=cov.pixel_variance_v,
                depth_variance=cov.depth_variance,
            ),
            uniqueness_tolerance=cov.uniqueness_tolerance,
            translation_scale=cov.translation_scale,
            quaternion_scale=cov.quaternion_scale,
            min_qw=cov.min_qw,
        )

        self._reference: Optional[ReferenceFrame] = None
        self._reference_lock = threading.Lock()

    @property
    def config(self) -> VoConfig:
        return self._config

    @property
    def has_reference(self) -> bool:
        """Whether a reference view is set."""
        with self._reference_lock:
            return self._reference is not None

    @property
    def reference(self) -> Optional[ReferenceFrame]:
        """Current reference snapshot."""
        with self._reference_lock:
            return self._reference

    def reset(self) -> None:
        """Drop the reference view."""
        self._swap_reference(None)
        logger.info("reference_cleared")

    def set_reference_view(self, frame: RgbdFrame) -> bool:
        """
        Make a frame the reference if it has enough features.

        Args:
            frame: RGB-D frame.

        Returns:
            True if the reference was replaced; False leaves it untouched.
        """
        observation = self._builder.observe(frame)
        required = self._config.features.min_reference_features

        if len(observation) < required:
            logger.warning(
                "reference_rejected",
                frame_id=frame.frame_id,
                features=len(observation),
                required=required,
            )
            return False

        self._swap_reference(ReferenceFrame(frame=frame, observation=observation))
        logger.info(
            "reference_set", frame_id=frame.frame_id, features=len(observation)
        )
        return True

    def estimate(
        self,
        frame: RgbdFrame,
        set_as_reference: bool = False,
        rotation_guess: Optional[NDArray[np.float64]] = None,
    ) -> MotionEstimate:
        """
        Estimate the motion of a frame relative to the reference.

        When ``set_as_reference`` is True the frame becomes the new reference
        unless it has no features at all, in which case the reference is
        cleared and must be set again. A frame whose features could not be
        undistorted is neither promoted nor allowed to clear the reference.

        Args:
            frame: Current RGB-D frame.
            set_as_reference: Promote the frame to reference afterwards.
            rotation_guess: Optional expected rotation, sizes the match window.

        Returns:
            MotionEstimate.

        Raises:
            ReferenceNotSetError: If no reference view is set.
        """
        reference = self.reference
        if reference is None:
            raise ReferenceNotSetError("set a reference view before estimating")

        observation = self._builder.observe(frame)
        total_features = len(observation)

        if observation.calibration_failed:
            # Detection worked, so tracking is not lost; keep the reference
            return MotionEstimate(
                success=False,
                failure=EstimateFailure.CALIBRATION_FAILED,
                total_features=observation.detected_count,
                frame_id=frame.frame_id,
                reference_frame_id=reference.frame_id,
            )

        if total_features == 0:
            logger.warning("no_features", frame_id=frame.frame_id)
            if set_as_reference:
                self.reset()
            return MotionEstimate(
                success=False,
                failure=EstimateFailure.NO_FEATURES,
                frame_id=frame.frame_id,
                reference_frame_id=reference.frame_id,
            )

        correspondences = self._builder.match(
            observation, reference.observation, rotation_guess
        )

        if len(correspondences) < self._config.matching.min_correspondences:
            logger.warning(
                "too_few_matches",
                frame_id=frame.frame_id,
                correspondences=len(correspondences),
            )
            return self._failed(
                frame,
                observation,
                reference,
                EstimateFailure.TOO_FEW_MATCHES,
                len(correspondences),
                set_as_reference,
            )

        fit = self._ransac.run(
            correspondences.reference_3d,
            correspondences.current_3d,
            correspondences.current_px,
        )

        if not fit.success:
            return self._failed(
                frame,
                observation,
                reference,
                EstimateFailure.NO_FIT,
                len(correspondences),
                set_as_reference,
            )

        refined = self._refine(fit, correspondences)
        covariance = self._covariance(fit, correspondences)

        result = MotionEstimate(
            success=True,
            rotation=fit.rotation,
            translation=fit.translation,
            covariance=covariance,
            refined_rotation=refined.R,
            refined_translation=refined.t,
            inliers=fit.inlier_count,
            correspondences=len(correspondences),
            total_features=total_features,
            inlier_indices=fit.inliers,
            frame_id=frame.frame_id,
            reference_frame_id=reference.frame_id,
        )

        if set_as_reference:
            self._promote(frame, observation)
            result.promoted_reference = True

        logger.debug(
            "motion_estimated",
            frame_id=frame.frame_id,
            reference_frame_id=reference.frame_id,
            inliers=result.inliers,
            correspondences=result.correspondences,
            iterations=fit.iterations,
        )
        return result

    def _failed(
        self,
        frame: RgbdFrame,
        observation: FrameObservation,
        reference: ReferenceFrame,
        failure: EstimateFailure,
        correspondences: int,
        set_as_reference: bool,
    ) -> MotionEstimate:
        result = MotionEstimate(
            success=False,
            failure=failure,
            correspondences=correspondences,
            total_features=len(observation),
            frame_id=frame.frame_id,
            reference_frame_id=reference.frame_id,
        )
        if set_as_reference:
            self._promote(frame, observation)
            result.promoted_reference = True
        return result

    def _refine(
        self, fit: RansacResult, correspondences: CorrespondenceSet
    ) -> Transform3D:
        if self._refiner is None:
            return Transform3D.identity()

        observations = PoseObservations(
            reference_3d=correspondences.reference_3d[fit.inliers],
            current_px=correspondences.current_px[fit.inliers],
        )
        return self._refiner.refine(
            Transform3D(R=fit.rotation, t=fit.translation), observations
        )

    def _covariance(
        self, fit: RansacResult, correspondences: CorrespondenceSet
    ) -> NDArray[np.float64]:
        cov = self._config.covariance
        if cov.method == CovarianceMethod.FIXED:
            return fixed_covariance(cov.fixed_diagonal)

        sample = fit.sample
        propagated = self._propagator.propagate(
            correspondences.reference_px[sample],
            correspondences.reference_3d[sample],
            correspondences.current_px[sample],
            correspondences.current_3d[sample],
            fit.rotation,
            fit.svd,
        )

        if not np.all(np.isfinite(propagated.matrix)):
            logger.error("covariance_not_finite", sample=sample.tolist())
            return fixed_covariance(cov.fixed_diagonal)
        return propagated.matrix

    def _promote(self, frame: RgbdFrame, observation: FrameObservation) -> None:
        self._swap_reference(ReferenceFrame(frame=frame, observation=observation))
        logger.info(
            "reference_promoted", frame_id=frame.frame_id, features=len(observation)
        )

    def _swap_reference(self, reference: Optional[ReferenceFrame]) -> None:
        with self._reference_lock:
            self._reference = reference
