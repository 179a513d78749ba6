"""
Visual odometry core for rgbd-vo.

Geometry solvers, RANSAC, correspondence building, covariance propagation,
the frame-to-reference estimator and sequence tracking.
"""

from rgbd_vo.odometry.geometry import (
    RigidAlignment,
    SvdFactors,
    align_rigid,
    bearing_vectors,
    find_centroid,
    solve_p3p,
    solve_quartic,
)
from rgbd_vo.odometry.ransac import RansacEngine, RansacResult, sample_indices
from rgbd_vo.odometry.correspondence import (
    CorrespondenceBuilder,
    CorrespondenceSet,
    FrameObservation,
    mutual_matches,
    select_window,
    windowed_matching_mask,
)
from rgbd_vo.odometry.covariance import (
    CovariancePropagator,
    NoiseModel,
    PoseCovariance,
    fixed_covariance,
)
from rgbd_vo.odometry.frames import Pose3D, Transform3D
from rgbd_vo.odometry.refinement import (
    IPoseRefiner,
    LevenbergMarquardtRefiner,
    PoseObservations,
)
from rgbd_vo.odometry.estimator import (
    EstimateFailure,
    MotionEstimate,
    PoseEstimator,
    ReferenceFrame,
    ReferenceNotSetError,
)
from rgbd_vo.odometry.tracking import OdometryTracker, TrackingStep

__all__ = [
    "RigidAlignment",
    "SvdFactors",
    "align_rigid",
    "bearing_vectors",
    "find_centroid",
    "solve_p3p",
    "solve_quartic",
    "RansacEngine",
    "RansacResult",
    "sample_indices",
    "CorrespondenceBuilder",
    "CorrespondenceSet",
    "FrameObservation",
    "mutual_matches",
    "select_window",
    "windowed_matching_mask",
    "CovariancePropagator",
    "NoiseModel",
    "PoseCovariance",
    "fixed_covariance",
    "Pose3D",
    "Transform3D",
    "IPoseRefiner",
    "LevenbergMarquardtRefiner",
    "PoseObservations",
    "EstimateFailure",
    "MotionEstimate",
    "PoseEstimator",
    "ReferenceFrame",
    "ReferenceNotSetError",
    "OdometryTracker",
    "TrackingStep",
]
