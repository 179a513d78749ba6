"""
Sequence tracking for rgbd-vo.

Chains frame-to-keyframe motion estimates into camera poses expressed in
the frame of the first keyframe, and decides when the current view should
replace the keyframe.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from rgbd_vo.config.schema import TrackingConfig
from rgbd_vo.logging import OdometryTelemetry, TelemetryCollector, get_logger
from rgbd_vo.odometry.estimator import MotionEstimate, PoseEstimator
from rgbd_vo.odometry.frames import Pose3D, Transform3D
from rgbd_vo.perception.camera import RgbdFrame
from rgbd_vo.utils.time import Timer, get_timestamp_s

logger = get_logger(__name__)


@dataclass
class TrackingStep:
    """
    Outcome of processing one frame.

    Attributes:
        frame_id: Frame identifier.
        pose: Camera pose in the odometry frame, None before initialization.
        estimate: Motion estimate, None when the frame (re)initialized tracking.
        initialized: Whether the frame became the first keyframe.
        latency_ms: Processing time.
    """

    frame_id: int
    pose: Optional[Pose3D]
    estimate: Optional[MotionEstimate] = None
    initialized: bool = False
    latency_ms: float = 0.0


class OdometryTracker:
    """
    Keyframe-based visual odometry over a frame sequence.

    A frame is promoted to keyframe when the previous estimate was weak
    (inlier ratio below the threshold) or after a fixed number of frames.
    Failed estimates that promote anyway lose the motion edge; the tracker
    keeps the last known pose for the new keyframe and counts the drop.
    """

    def __init__(
        self,
        estimator: PoseEstimator,
        config: Optional[TrackingConfig] = None,
        telemetry: Optional[TelemetryCollector] = None,
        initial_pose: Optional[Pose3D] = None,
    ) -> None:
        """
        Initialize tracker.

        Args:
            estimator: Estimator owning the keyframe.
            config: Keyframe policy.
            telemetry: Collector for per-frame records.
            initial_pose: Pose of the first keyframe, identity when omitted.
        """
        self._estimator = estimator
        self._config = config or TrackingConfig()
        self._telemetry = telemetry or TelemetryCollector()

        start = initial_pose.to_transform() if initial_pose else Transform3D.identity()
        self._world_from_keyframe = start
        self._world_from_camera = start
        self._frames_since_keyframe = 0
        self._promote_next = False
        self._initialized = False
        self._dropped_edges = 0

    @property
    def telemetry(self) -> TelemetryCollector:
        return self._telemetry

    @property
    def dropped_edges(self) -> int:
        """Keyframe changes that happened without a motion estimate."""
        return self._dropped_edges

    @property
    def world_from_camera(self) -> Transform3D:
        """Latest camera pose as a transform into the odometry frame."""
        return self._world_from_camera

    @property
    def pose(self) -> Pose3D:
        """Latest camera pose."""
        return Pose3D.from_transform(self._world_from_camera)

    def process(
        self, frame: RgbdFrame, rotation_guess: Optional[NDArray[np.float64]] = None
    ) -> TrackingStep:
        """
        Process the next frame of the sequence.

        Args:
            frame: RGB-D frame.
            rotation_guess: Optional expected rotation relative to the keyframe.

        Returns:
            TrackingStep with the updated pose.
        """
        with Timer() as timer:
            if not self._estimator.has_reference:
                step = self._initialize(frame)
            else:
                step = self._track(frame, rotation_guess)
        step.latency_ms = timer.elapsed_ms

        if step.estimate is not None:
            estimate = step.estimate
            self._telemetry.record(
                OdometryTelemetry(
                    timestamp_s=get_timestamp_s(),
                    latency_ms=step.latency_ms,
                    success=estimate.success,
                    total_features=estimate.total_features,
                    correspondences=estimate.correspondences,
                    inliers=estimate.inliers,
                    promoted_reference=estimate.promoted_reference,
                    failure=estimate.failure.value if estimate.failure else None,
                    frame_id=frame.frame_id,
                )
            )
        return step

    def _initialize(self, frame: RgbdFrame) -> TrackingStep:
        if not self._estimator.set_reference_view(frame):
            return TrackingStep(frame_id=frame.frame_id, pose=None)

        if self._initialized:
            # Re-initialization after a hard reset: the edge is lost
            self._dropped_edges += 1
        self._initialized = True
        self._world_from_keyframe = self._world_from_camera
        self._frames_since_keyframe = 0
        self._promote_next = False

        logger.info("keyframe_initialized", frame_id=frame.frame_id)
        return TrackingStep(frame_id=frame.frame_id, pose=self.pose, initialized=True)

    def _track(
        self, frame: RgbdFrame, rotation_guess: Optional[NDArray[np.float64]]
    ) -> TrackingStep:
        self._frames_since_keyframe += 1
        promote = (
            self._promote_next
            or self._frames_since_keyframe >= self._config.max_frames_per_keyframe
        )

        estimate = self._estimator.estimate(
            frame, set_as_reference=promote, rotation_guess=rotation_guess
        )

        if estimate.success:
            keyframe_from_camera = estimate.transform.inverse()
            self._world_from_camera = self._world_from_keyframe.compose(
                keyframe_from_camera
            )
            self._promote_next = estimate.inlier_ratio < self._config.min_inlier_ratio
        else:
            self._promote_next = False

        if estimate.promoted_reference:
            if not estimate.success:
                self._dropped_edges += 1
                logger.warning(
                    "keyframe_edge_dropped",
                    frame_id=frame.frame_id,
                    failure=estimate.failure.value if estimate.failure else None,
                )
            self._world_from_keyframe = self._world_from_camera
            self._frames_since_keyframe = 0

        return TrackingStep(frame_id=frame.frame_id, pose=self.pose, estimate=estimate)
